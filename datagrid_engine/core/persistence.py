"""Snapshot and restore of grid layout and session state."""

import copy
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

import numpy as np

from .state import LAYOUT_SLICES

if TYPE_CHECKING:
    from .state import TableStateStore

logger = logging.getLogger(__name__)

SESSION_SLICES = ("sorting", "pagination", "global_filter", "column_filter")


class KeyValueStore(Protocol):
    """External storage for snapshots."""

    def get(self, key: str) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class InMemoryStore:
    """Dict-backed KeyValueStore, for tests and single-process hosts."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SessionStateStore:
    """
    KeyValueStore backed by Streamlit's session_state.

    Snapshots live in a dict under ``session_key`` together with a random
    session id and a counter incremented on every write, so a host can
    keep independent grids apart by using different session keys.
    """

    def __init__(self, session_key: str = "datagrid_state"):
        """
        Initialize the store.

        Args:
            session_key: Key in Streamlit session_state holding the snapshots
        """
        self._session_key = session_key
        self._ensure_session_state()

    def _ensure_session_state(self) -> None:
        """Ensure session state is initialized."""
        import streamlit as st

        if self._session_key not in st.session_state:
            st.session_state[self._session_key] = {
                "counter": 0,
                "id": float(np.random.random()),
                "snapshots": {},
            }

    @property
    def _state(self) -> Dict[str, Any]:
        import streamlit as st

        self._ensure_session_state()
        return st.session_state[self._session_key]

    @property
    def session_id(self) -> float:
        return self._state["id"]

    @property
    def counter(self) -> int:
        return self._state["counter"]

    def get(self, key: str) -> Any:
        return copy.deepcopy(self._state["snapshots"].get(key))

    def set(self, key: str, value: Any) -> None:
        self._state["snapshots"][key] = copy.deepcopy(value)
        self._state["counter"] += 1

    def clear(self) -> None:
        """Drop every snapshot of this session key."""
        self._state["snapshots"] = {}
        self._state["counter"] += 1

    def __repr__(self) -> str:
        return (
            f"SessionStateStore(session_key='{self._session_key}', "
            f"counter={self.counter}, keys={list(self._state['snapshots'])})"
        )


# =============================================================================
# Snapshots
# =============================================================================


def layout_snapshot(store: "TableStateStore") -> Dict[str, Any]:
    """
    Capture column layout.

    Returns:
        Dict with column_visibility, column_order, column_sizing and
        column_pinning
    """
    return {name: store.get(name) for name in LAYOUT_SLICES}


def restore_layout(store: "TableStateStore", layout: Optional[Dict[str, Any]]) -> None:
    """Replay a layout snapshot through the store setters."""
    if not layout:
        return
    store.restore({name: layout[name] for name in LAYOUT_SLICES if name in layout})


def session_snapshot(
    store: "TableStateStore", show_deleted: Optional[bool] = None
) -> Dict[str, Any]:
    """
    Capture the query-related session state.

    Args:
        store: Store to read
        show_deleted: Host flag stored alongside, omitted when None

    Returns:
        Dict with sorting, pagination, global_filter, column_filter and
        optionally show_deleted
    """
    state = store.get_state()
    snapshot = {name: state[name] for name in SESSION_SLICES if name in state}
    if show_deleted is not None:
        snapshot["show_deleted"] = bool(show_deleted)
    return snapshot


def restore_session(store: "TableStateStore", snapshot: Optional[Dict[str, Any]]) -> None:
    """Replay a session snapshot through the store setters."""
    if not snapshot:
        return
    store.restore({name: snapshot[name] for name in SESSION_SLICES if name in snapshot})


class GridPersistence:
    """
    Saves and restores a grid's layout and session state.

    Layout and session state go to separate stores since they usually
    have different lifetimes.

    Example:
        persistence = GridPersistence(grid, InMemoryStore(), SessionStateStore(), key="orders")
        persistence.save_layout()
        persistence.restore_layout()
    """

    def __init__(
        self,
        grid: Any,
        layout_store: Optional[KeyValueStore] = None,
        session_store: Optional[KeyValueStore] = None,
        key: str = "datagrid",
    ):
        self._store: "TableStateStore" = getattr(grid, "store", grid)
        self.layout_store = layout_store
        self.session_store = session_store
        self.key = key

    @property
    def layout_key(self) -> str:
        return f"{self.key}:layout"

    @property
    def session_key(self) -> str:
        return f"{self.key}:session"

    def save_layout(self) -> None:
        if self.layout_store is not None:
            self.layout_store.set(self.layout_key, layout_snapshot(self._store))

    def restore_layout(self) -> bool:
        """
        Restore the saved layout.

        Returns:
            True if a snapshot was found and restored
        """
        if self.layout_store is None:
            return False
        layout = self.layout_store.get(self.layout_key)
        if not layout:
            return False
        restore_layout(self._store, layout)
        logger.debug("Restored layout '%s'", self.layout_key)
        return True

    def save_session(self, show_deleted: Optional[bool] = None) -> None:
        if self.session_store is not None:
            self.session_store.set(
                self.session_key, session_snapshot(self._store, show_deleted)
            )

    def restore_session(self) -> Optional[Dict[str, Any]]:
        """
        Restore the saved session state.

        Returns:
            The restored snapshot (including host flags such as
            show_deleted), or None if nothing was saved
        """
        if self.session_store is None:
            return None
        snapshot = self.session_store.get(self.session_key)
        if not snapshot:
            return None
        restore_session(self._store, snapshot)
        logger.debug("Restored session state '%s'", self.session_key)
        return snapshot
