"""Pluggable table extensions composed into a TableStateStore."""

import copy
import uuid
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .state import TableStateStore


class TableExtension(ABC):
    """
    Abstract base for table features.

    An extension contributes initial state slices and a methods object
    operating on them. The store composes extensions at construction, so a
    feature never needs to touch another feature's state.

    Subclasses must implement:
        - ``name``: Unique extension name (class attribute)
        - ``initial_state()``: Slices this extension adds
        - ``create_methods(store)``: Object exposing the feature's operations
    """

    name: str = ""

    @abstractmethod
    def initial_state(self) -> Dict[str, Any]:
        """
        Get the state slices this extension adds to the store.

        Returns:
            Dict mapping slice name to initial value
        """
        pass

    @abstractmethod
    def create_methods(self, store: "TableStateStore") -> Any:
        """
        Build the methods object for a store.

        Args:
            store: The store this extension was composed into

        Returns:
            Object exposing the feature's operations
        """
        pass


def new_filter_id() -> str:
    """Generate a unique filter rule id."""
    return f"filter_{uuid.uuid4().hex[:12]}"


def _logic(value: Optional[str]) -> str:
    if isinstance(value, str) and value.upper() == "OR":
        return "OR"
    return "AND"


def default_column_filter() -> Dict[str, Any]:
    return {
        "filters": [],
        "logic": "AND",
        "pending_filters": [],
        "pending_logic": "AND",
    }


class ColumnFilterMethods:
    """
    Draft/apply column filtering on top of a store's ``column_filter`` slice.

    Pending filters are edited freely without affecting the query.
    ``apply_pending_filters()`` copies them into the applied filters in one
    replacement, which is the only pending operation that changes the
    query. The direct ``*_filter`` methods edit the applied filters.

    Filter ids are generated here and never change; ``id`` keys passed
    in updates are ignored.
    """

    def __init__(self, store: "TableStateStore", enabled: bool = True):
        self._store = store
        self.enabled = enabled

    def _update(self, changes: Dict[str, Any], apply: bool = False) -> None:
        if not self.enabled:
            return
        self._store.set_column_filter(lambda old: {**old, **changes}, apply=apply)

    @staticmethod
    def _new_rule(
        column_id: str,
        operator: str,
        value: Any = None,
        column_type: str = "text",
    ) -> Dict[str, Any]:
        return {
            "id": new_filter_id(),
            "column_id": column_id,
            "operator": operator,
            "value": value,
            "column_type": column_type,
        }

    @staticmethod
    def _patched(filters: List[Dict[str, Any]], filter_id: str, updates: Dict[str, Any]):
        updates = {k: v for k, v in updates.items() if k != "id"}
        return [
            {**rule, **updates} if rule.get("id") == filter_id else rule
            for rule in filters
        ]

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def get_state(self) -> Dict[str, Any]:
        return self._store.get("column_filter")

    def set_state(self, updater: Any, apply: bool = False) -> None:
        """Replace the whole column filter slice."""
        if not self.enabled:
            return
        self._store.set_column_filter(updater, apply=apply)

    def get_active_filters(self) -> List[Dict[str, Any]]:
        """Applied filters that name both a column and an operator."""
        return [
            rule for rule in self.get_state()["filters"]
            if rule.get("column_id") and rule.get("operator")
        ]

    def get_pending_filters(self) -> List[Dict[str, Any]]:
        return self.get_state()["pending_filters"]

    # -------------------------------------------------------------------------
    # Pending (draft) filters
    # -------------------------------------------------------------------------

    def add_pending_filter(
        self,
        column_id: str,
        operator: str,
        value: Any = None,
        column_type: str = "text",
    ) -> Optional[str]:
        """
        Add a draft filter rule.

        Returns:
            The new rule's id, or None when filtering is disabled
        """
        if not self.enabled:
            return None
        rule = self._new_rule(column_id, operator, value, column_type)
        pending = self.get_pending_filters() + [rule]
        self._update({"pending_filters": pending})
        return rule["id"]

    def update_pending_filter(self, filter_id: str, updates: Dict[str, Any]) -> None:
        pending = self._patched(self.get_pending_filters(), filter_id, updates)
        self._update({"pending_filters": pending})

    def remove_pending_filter(self, filter_id: str) -> None:
        pending = [r for r in self.get_pending_filters() if r.get("id") != filter_id]
        self._update({"pending_filters": pending})

    def clear_pending_filters(self) -> None:
        self._update({"pending_filters": []})

    def set_pending_logic(self, logic: str) -> None:
        self._update({"pending_logic": _logic(logic)})

    def apply_pending_filters(self) -> None:
        """Copy pending filters and logic into the applied group."""
        state = self.get_state()
        self._update(
            {
                "filters": copy.deepcopy(state["pending_filters"]),
                "logic": state["pending_logic"],
            },
            apply=True,
        )

    def reset(self) -> None:
        """Clear applied and pending filters."""
        self._update(default_column_filter(), apply=True)

    # -------------------------------------------------------------------------
    # Applied filters, edited directly
    # -------------------------------------------------------------------------

    def add_filter(
        self,
        column_id: str,
        operator: str,
        value: Any = None,
        column_type: str = "text",
    ) -> Optional[str]:
        if not self.enabled:
            return None
        rule = self._new_rule(column_id, operator, value, column_type)
        self._update({"filters": self.get_state()["filters"] + [rule]})
        return rule["id"]

    def update_filter(self, filter_id: str, updates: Dict[str, Any]) -> None:
        filters = self._patched(self.get_state()["filters"], filter_id, updates)
        self._update({"filters": filters})

    def remove_filter(self, filter_id: str) -> None:
        filters = [r for r in self.get_state()["filters"] if r.get("id") != filter_id]
        self._update({"filters": filters})

    def clear_filters(self) -> None:
        self._update({"filters": []})

    def set_logic(self, logic: str) -> None:
        self._update({"logic": _logic(logic)})


class ColumnFilterExtension(TableExtension):
    """Adds the ``column_filter`` slice with draft/apply filter editing."""

    name = "column_filter"

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def initial_state(self) -> Dict[str, Any]:
        return {"column_filter": default_column_filter()}

    def create_methods(self, store: "TableStateStore") -> ColumnFilterMethods:
        return ColumnFilterMethods(store, enabled=self.enabled)
