"""Table state store: one owned container for every grid state slice."""

import copy
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from .extensions import TableExtension

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10

# Slices that make up the canonical query; changing any of them may refetch
QUERY_SLICES = ("sorting", "pagination", "global_filter", "column_filter")

# Slices persisted as layout (long-lived) rather than session state
LAYOUT_SLICES = ("column_visibility", "column_order", "column_sizing", "column_pinning")

Listener = Callable[[Dict[str, Any], str], None]


def functional_update(updater: Any, old: Any) -> Any:
    """
    Resolve a setter argument against the previous value.

    Args:
        updater: New value, or a callable taking the previous value
        old: Previous value

    Returns:
        The new value
    """
    if callable(updater):
        return updater(old)
    return updater


def default_table_state(page_size: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
    """Get the core slices with their mount-time defaults."""
    return {
        "sorting": [],
        "pagination": {"page_index": 0, "page_size": page_size},
        "global_filter": "",
        "column_order": [],
        "column_pinning": {"left": [], "right": []},
        "column_visibility": {},
        "column_sizing": {},
    }


def normalize_sorting(sorting: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """
    Drop sort entries without a column id and normalize directions.

    Three-state sort cycling can briefly produce an entry with an empty
    column id; such entries are never stored.
    """
    result = []
    for entry in sorting or []:
        if not entry or not entry.get("column_id"):
            continue
        direction = "desc" if entry.get("direction") == "desc" else "asc"
        result.append({"column_id": entry["column_id"], "direction": direction})
    return result


def validate_pagination(pagination: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a pagination dict.

    Raises:
        ValueError: If page_index is negative or page_size is not positive
    """
    page_index = pagination.get("page_index", 0)
    page_size = pagination.get("page_size")
    if not isinstance(page_index, int) or isinstance(page_index, bool) or page_index < 0:
        raise ValueError(f"page_index must be a non-negative int, got {page_index!r}")
    if not isinstance(page_size, int) or isinstance(page_size, bool) or page_size <= 0:
        raise ValueError(f"page_size must be a positive int, got {page_size!r}")
    return {"page_index": page_index, "page_size": page_size}


class TableStateStore:
    """
    Owns sorting, pagination, filtering, layout and extension state.

    Every setter takes either a new value or an updater callable of the
    previous value. State is replaced, never mutated in place, and
    listeners are notified synchronously after each replacement with the
    new state and the name of the changed slice.

    A counter increments on every replacement so observers can tell
    whether anything changed since they last looked.

    Features are added through extensions (see ``TableExtension``): each
    contributes initial slices and a methods object, available through
    ``store.extension(name)``.

    Example:
        store = TableStateStore([ColumnFilterExtension(), SelectionExtension()])
        unsubscribe = store.subscribe(lambda state, name: print(name))
        store.set_pagination(lambda p: {**p, "page_size": 25})
    """

    def __init__(
        self,
        extensions: Optional[List["TableExtension"]] = None,
        initial_state: Optional[Dict[str, Any]] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        """
        Initialize the store.

        Args:
            extensions: Extensions composed into this store
            initial_state: Slice values overriding the defaults. Also used
                as the target of ``reset_all()``.
            page_size: Default page size when initial_state has no pagination
        """
        state = default_table_state(page_size)
        self._extensions: Dict[str, "TableExtension"] = {}
        for extension in extensions or []:
            if extension.name in self._extensions:
                raise ValueError(f"Extension '{extension.name}' is already registered")
            self._extensions[extension.name] = extension
            state.update(extension.initial_state())

        for key, value in (initial_state or {}).items():
            if key not in state:
                raise ValueError(
                    f"Unknown state slice '{key}'. Available slices: {sorted(state)}"
                )
            if key == "column_filter" and isinstance(value, dict):
                value = {**state["column_filter"], **value}
            state[key] = copy.deepcopy(value)

        state["sorting"] = normalize_sorting(state["sorting"])
        state["pagination"] = validate_pagination(state["pagination"])

        self._initial_state = copy.deepcopy(state)
        self._state = state
        self._counter = 0
        self._listeners: List[Listener] = []

        self._methods: Dict[str, Any] = {}
        for name, extension in self._extensions.items():
            self._methods[name] = extension.create_methods(self)

    # =========================================================================
    # Core access
    # =========================================================================

    @property
    def counter(self) -> int:
        """Number of state replacements so far."""
        return self._counter

    def get_state(self) -> Dict[str, Any]:
        """Get a deep copy of the full state."""
        return copy.deepcopy(self._state)

    def get(self, name: str) -> Any:
        """Get a deep copy of one slice."""
        return copy.deepcopy(self._state[name])

    def extension(self, name: str) -> Any:
        """
        Get the methods object of a registered extension.

        Raises:
            KeyError: If no extension is registered with that name
        """
        if name not in self._methods:
            raise KeyError(
                f"No extension registered with name '{name}'. "
                f"Available extensions: {list(self._methods)}"
            )
        return self._methods[name]

    def has_extension(self, name: str) -> bool:
        return name in self._methods

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called as ``listener(state, slice_name)``.

        Returns:
            A function that unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _replace(self, changes: Dict[str, Any], name: str) -> None:
        """Swap in a new state dict and notify listeners."""
        new_state = dict(self._state)
        new_state.update(changes)
        self._state = new_state
        self._counter += 1
        logger.debug("State slice '%s' replaced (counter=%d)", name, self._counter)

        for listener in list(self._listeners):
            listener(self.get_state(), name)

    def set_state(self, name: str, updater: Any) -> None:
        """
        Replace a slice without special-case handling.

        Prefer the dedicated setters for sorting, pagination, global filter
        and column filter, which apply page resets.
        """
        if name not in self._state:
            raise KeyError(f"Unknown state slice '{name}'")
        value = functional_update(updater, self.get(name))
        self._replace({name: value}, name)

    # =========================================================================
    # Query slices
    # =========================================================================

    def _first_page(self) -> Dict[str, Any]:
        return {"page_index": 0, "page_size": self._state["pagination"]["page_size"]}

    def set_sorting(self, updater: Any) -> None:
        """Replace sorting; invalid entries are dropped and the page resets."""
        sorting = normalize_sorting(functional_update(updater, self.get("sorting")))
        self._replace({"sorting": sorting, "pagination": self._first_page()}, "sorting")

    def set_pagination(self, updater: Any) -> None:
        """
        Replace pagination.

        A change of page size resets the page index to 0, since the old
        index may point past the last page.
        """
        old = self._state["pagination"]
        new = dict(functional_update(updater, self.get("pagination")))
        new.setdefault("page_size", old["page_size"])
        new.setdefault("page_index", old["page_index"])
        if new["page_size"] != old["page_size"]:
            new["page_index"] = 0
        self._replace({"pagination": validate_pagination(new)}, "pagination")

    def set_page_index(self, page_index: int) -> None:
        self.set_pagination(lambda p: {**p, "page_index": page_index})

    def set_page_size(self, page_size: int) -> None:
        self.set_pagination(lambda p: {**p, "page_size": page_size})

    def set_global_filter(self, updater: Any) -> None:
        """Replace the global filter text and go back to the first page."""
        text = functional_update(updater, self._state["global_filter"])
        text = "" if text is None else str(text)
        self._replace(
            {"global_filter": text, "pagination": self._first_page()}, "global_filter"
        )

    def set_column_filter(self, updater: Any, apply: bool = False) -> None:
        """
        Replace the column filter state.

        Args:
            updater: New state or updater callable
            apply: True when the change applies filters to the query, which
                also returns to the first page
        """
        value = functional_update(updater, self.get("column_filter"))
        changes: Dict[str, Any] = {"column_filter": value}
        if apply:
            changes["pagination"] = self._first_page()
        self._replace(changes, "column_filter")

    # =========================================================================
    # Layout slices
    # =========================================================================

    def set_column_order(self, updater: Any) -> None:
        self.set_state("column_order", lambda old: list(functional_update(updater, old)))

    def set_column_pinning(self, updater: Any) -> None:
        def pin(old):
            value = functional_update(updater, old) or {}
            return {"left": list(value.get("left", [])), "right": list(value.get("right", []))}

        self.set_state("column_pinning", pin)

    def set_column_visibility(self, updater: Any) -> None:
        self.set_state("column_visibility", lambda old: dict(functional_update(updater, old)))

    def set_column_sizing(self, updater: Any) -> None:
        self.set_state("column_sizing", lambda old: dict(functional_update(updater, old)))

    # =========================================================================
    # Derived query, restore and reset
    # =========================================================================

    def get_query(self, include_selection: bool = False) -> Dict[str, Any]:
        """
        Derive the canonical query from the current state.

        Only applied filters are part of the query; pending (draft)
        filters never are.

        Args:
            include_selection: Also include the selection slice

        Returns:
            Dict with sorting, pagination, global_filter and column_filter
        """
        column_filter = self._state.get("column_filter") or {}
        query = {
            "sorting": copy.deepcopy(self._state["sorting"]),
            "pagination": dict(self._state["pagination"]),
            "global_filter": self._state["global_filter"],
            "column_filter": {
                "filters": copy.deepcopy(column_filter.get("filters", [])),
                "logic": column_filter.get("logic", "AND"),
            },
        }
        if include_selection and "selection" in self._state:
            query["selection"] = copy.deepcopy(self._state["selection"])
        return query

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """
        Replay a partial state snapshot through the setters.

        Pagination is applied last and its page index re-applied after the
        page size, so page resets caused by the other setters don't lose
        the saved page.
        """
        setters = {
            "sorting": self.set_sorting,
            "global_filter": self.set_global_filter,
            "column_filter": self.set_column_filter,
            "column_order": self.set_column_order,
            "column_pinning": self.set_column_pinning,
            "column_visibility": self.set_column_visibility,
            "column_sizing": self.set_column_sizing,
        }
        for name, setter in setters.items():
            if name in snapshot and snapshot[name] is not None:
                if name == "column_filter" and "column_filter" not in self._state:
                    continue
                setter(copy.deepcopy(snapshot[name]))

        pagination = snapshot.get("pagination")
        if pagination:
            self.set_pagination(lambda p: {**p, "page_size": pagination.get("page_size", p["page_size"])})
            self.set_page_index(pagination.get("page_index", 0))

    def reset_all(self) -> None:
        """Restore every slice to its initial value."""
        self._replace(copy.deepcopy(self._initial_state), "*")

    def __repr__(self) -> str:
        return (
            f"TableStateStore(counter={self._counter}, "
            f"extensions={list(self._extensions)}, "
            f"query={self.get_query()})"
        )
