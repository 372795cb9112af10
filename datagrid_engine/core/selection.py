"""Include/exclude row selection over a store's ``selection`` slice."""

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .extensions import TableExtension
from .state import functional_update

if TYPE_CHECKING:
    from .state import TableStateStore

logger = logging.getLogger(__name__)

INCLUDE = "include"
EXCLUDE = "exclude"

SELECT_MODES = ("page", "all")
DATA_MODES = ("client", "server")


def generate_row_id(row: Any, index: int, id_key: str = "id") -> str:
    """
    Get the id of a row.

    Args:
        row: Row dict
        index: Position of the row in its page
        id_key: Field holding the row id

    Returns:
        String form of ``row[id_key]``, or ``row-<index>`` when absent
    """
    if isinstance(row, dict):
        value = row.get(id_key)
        if value is not None:
            return str(value)
    return f"row-{index}"


def empty_selection() -> Dict[str, Any]:
    return {"ids": [], "type": INCLUDE}


def normalize_selection(selection: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Dedupe ids (keeping first occurrence) and coerce the type."""
    selection = selection or {}
    seen = set()
    ids = []
    for row_id in selection.get("ids") or []:
        key = str(row_id)
        if key not in seen:
            seen.add(key)
            ids.append(key)
    type_ = EXCLUDE if selection.get("type") == EXCLUDE else INCLUDE
    return {"ids": ids, "type": type_}


class SelectionEngine:
    """
    Row selection state machine.

    Selection is stored as a set of ids that are either the selected rows
    (``include``) or the rows excluded from an implicit universe
    (``exclude``). In ``all`` mode the universe is every row matching the
    current query, across all pages; in ``page`` mode it is the current
    page.

    Operations never raise. Ids not present in the loaded page still
    apply, since the row may be fetched later. An optional
    ``is_row_selectable(row)`` predicate gates every operation on loaded
    rows.

    Example:
        engine = store.extension("selection")
        engine.select_all()
        engine.deselect_row("r5")
        engine.selected_count(500)  # 499 in all mode
    """

    def __init__(
        self,
        store: "TableStateStore",
        select_mode: str = "page",
        data_mode: str = "client",
        is_row_selectable: Optional[Callable[[Dict[str, Any]], bool]] = None,
        get_page_rows: Optional[Callable[[], List[Dict[str, Any]]]] = None,
        id_key: str = "id",
    ):
        """
        Initialize the engine.

        Args:
            store: Store holding the ``selection`` slice
            select_mode: "page" or "all"
            data_mode: "client" or "server"
            is_row_selectable: Optional predicate over loaded rows
            get_page_rows: Callable returning the rows of the current page
            id_key: Row field holding the row id

        Raises:
            ValueError: If select_mode or data_mode is not recognised
        """
        if select_mode not in SELECT_MODES:
            raise ValueError(f"select_mode must be one of {SELECT_MODES}, got '{select_mode}'")
        if data_mode not in DATA_MODES:
            raise ValueError(f"data_mode must be one of {DATA_MODES}, got '{data_mode}'")

        self._store = store
        self.select_mode = select_mode
        self.data_mode = data_mode
        self.is_row_selectable = is_row_selectable
        self.get_page_rows = get_page_rows or (lambda: [])
        self.id_key = id_key

    # =========================================================================
    # State
    # =========================================================================

    def get_selection_state(self) -> Dict[str, Any]:
        return self._store.get("selection")

    def set_selection_state(self, updater: Any) -> None:
        """Replace the selection; ids are deduplicated."""
        self._store.set_state(
            "selection",
            lambda old: normalize_selection(functional_update(updater, old)),
        )

    def _page_rows_by_id(self) -> Dict[str, Dict[str, Any]]:
        return {
            generate_row_id(row, index, self.id_key): row
            for index, row in enumerate(self.get_page_rows() or [])
        }

    def _selectable_page_ids(self) -> List[str]:
        ids = []
        for index, row in enumerate(self.get_page_rows() or []):
            if self.is_row_selectable is None or self.is_row_selectable(row):
                ids.append(generate_row_id(row, index, self.id_key))
        return ids

    def can_select_row(self, row_id: Any) -> bool:
        """
        Check the selectability predicate for a row.

        Rows not in the loaded page are selectable since the predicate
        can't be evaluated for them.
        """
        if self.is_row_selectable is None:
            return True
        row = self._page_rows_by_id().get(str(row_id))
        if row is None:
            return True
        return bool(self.is_row_selectable(row))

    # =========================================================================
    # Row operations
    # =========================================================================

    def _with_id(self, selection: Dict[str, Any], row_id: str, present: bool) -> Dict[str, Any]:
        ids = [i for i in selection["ids"] if i != row_id]
        if present:
            ids.append(row_id)
        return {"ids": ids, "type": selection["type"]}

    def select_row(self, row_id: Any) -> None:
        """Select a row: un-exclude in exclude mode, add in include mode."""
        if not self.can_select_row(row_id):
            return
        row_id = str(row_id)
        self.set_selection_state(
            lambda s: self._with_id(s, row_id, present=s["type"] == INCLUDE)
        )

    def deselect_row(self, row_id: Any) -> None:
        """Deselect a row: exclude in exclude mode, remove in include mode."""
        if not self.can_select_row(row_id):
            return
        row_id = str(row_id)
        self.set_selection_state(
            lambda s: self._with_id(s, row_id, present=s["type"] == EXCLUDE)
        )

    def toggle_row(self, row_id: Any) -> None:
        if self.is_selected(row_id):
            self.deselect_row(row_id)
        else:
            self.select_row(row_id)

    def is_selected(self, row_id: Any) -> bool:
        selection = self.get_selection_state()
        contained = str(row_id) in selection["ids"]
        return not contained if selection["type"] == EXCLUDE else contained

    # =========================================================================
    # Bulk operations
    # =========================================================================

    def select_all(self) -> None:
        """
        Select everything in scope.

        All mode selects every matching row (``exclude`` with no ids).
        Page mode replaces the selection with the selectable rows of the
        current page.
        """
        if self.select_mode == "all":
            self.set_selection_state({"ids": [], "type": EXCLUDE})
        else:
            self.set_selection_state({"ids": self._selectable_page_ids(), "type": INCLUDE})
        logger.debug("Selected all rows (%s mode)", self.select_mode)

    def deselect_all(self) -> None:
        self.set_selection_state(empty_selection())

    def toggle_all(self) -> None:
        if self.is_all_selected():
            self.deselect_all()
        else:
            self.select_all()

    def is_all_selected(self) -> bool:
        if self.select_mode == "all":
            selection = self.get_selection_state()
            return selection["type"] == EXCLUDE and not selection["ids"]

        page_ids = self._selectable_page_ids()
        if not page_ids:
            return False
        return all(self.is_selected(row_id) for row_id in page_ids)

    def is_some_selected(self) -> bool:
        if self.select_mode == "all":
            return bool(self.get_selection_state()["ids"])

        page_ids = self._selectable_page_ids()
        selected = sum(1 for row_id in page_ids if self.is_selected(row_id))
        return 0 < selected < len(page_ids)

    def selected_count(self, total: int) -> int:
        """
        Count selected rows.

        Args:
            total: Number of rows matching the current query

        Returns:
            ``total - len(ids)`` in exclude mode, ``len(ids)`` otherwise
        """
        selection = self.get_selection_state()
        if selection["type"] == EXCLUDE:
            return max(0, total - len(selection["ids"]))
        return len(selection["ids"])

    # =========================================================================
    # Selected rows and export snapshot
    # =========================================================================

    def get_selected_rows(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Filter loaded rows down to the selected ones."""
        return [
            row for index, row in enumerate(rows)
            if self.is_selected(generate_row_id(row, index, self.id_key))
        ]

    def get_selected_row_ids(self, rows: Optional[List[Dict[str, Any]]] = None) -> List[str]:
        """
        Get selected ids.

        In include mode this is the id list itself; in exclude mode only
        ids of the given (or current page) rows can be enumerated.
        """
        selection = self.get_selection_state()
        if selection["type"] == INCLUDE:
            return list(selection["ids"])
        rows = self.get_page_rows() if rows is None else rows
        return [
            generate_row_id(row, index, self.id_key)
            for index, row in enumerate(rows)
            if self.is_selected(generate_row_id(row, index, self.id_key))
        ]

    def snapshot(self) -> Dict[str, Any]:
        """
        Selection in the shape handed to remote export hosts.

        Returns:
            Dict with has_selection, select_all_matching, selected_ids
            and excluded_ids
        """
        selection = self.get_selection_state()
        exclude = selection["type"] == EXCLUDE
        return {
            "has_selection": exclude or bool(selection["ids"]),
            "select_all_matching": exclude,
            "selected_ids": [] if exclude else list(selection["ids"]),
            "excluded_ids": list(selection["ids"]) if exclude else [],
        }

    def __repr__(self) -> str:
        return (
            f"SelectionEngine(select_mode='{self.select_mode}', "
            f"selection={self.get_selection_state()})"
        )


class SelectionExtension(TableExtension):
    """Adds the ``selection`` slice and a SelectionEngine."""

    name = "selection"

    def __init__(
        self,
        select_mode: str = "page",
        data_mode: str = "client",
        is_row_selectable: Optional[Callable[[Dict[str, Any]], bool]] = None,
        get_page_rows: Optional[Callable[[], List[Dict[str, Any]]]] = None,
        id_key: str = "id",
    ):
        self.select_mode = select_mode
        self.data_mode = data_mode
        self.is_row_selectable = is_row_selectable
        self.get_page_rows = get_page_rows
        self.id_key = id_key

    def initial_state(self) -> Dict[str, Any]:
        return {"selection": empty_selection()}

    def create_methods(self, store: "TableStateStore") -> SelectionEngine:
        return SelectionEngine(
            store,
            select_mode=self.select_mode,
            data_mode=self.data_mode,
            is_row_selectable=self.is_row_selectable,
            get_page_rows=self.get_page_rows,
            id_key=self.id_key,
        )
