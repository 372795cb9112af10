"""Core state, selection, fetching and persistence."""

from .columns import build_column_definitions, normalize_columns
from .errors import (
    DataGridError,
    ExportError,
    ExportProcessingError,
    OperatorRegistrationError,
)
from .extensions import ColumnFilterExtension, ColumnFilterMethods, TableExtension
from .fetch import DEFAULT_DEBOUNCE_DELAY, FetchCoordinator, compute_query_key
from .persistence import (
    GridPersistence,
    InMemoryStore,
    KeyValueStore,
    SessionStateStore,
    layout_snapshot,
    restore_layout,
    restore_session,
    session_snapshot,
)
from .selection import SelectionEngine, SelectionExtension, generate_row_id
from .state import DEFAULT_PAGE_SIZE, TableStateStore, functional_update

__all__ = [
    "build_column_definitions",
    "normalize_columns",
    "DataGridError",
    "ExportError",
    "ExportProcessingError",
    "OperatorRegistrationError",
    "TableExtension",
    "ColumnFilterExtension",
    "ColumnFilterMethods",
    "DEFAULT_DEBOUNCE_DELAY",
    "FetchCoordinator",
    "compute_query_key",
    "KeyValueStore",
    "InMemoryStore",
    "SessionStateStore",
    "GridPersistence",
    "layout_snapshot",
    "restore_layout",
    "session_snapshot",
    "restore_session",
    "SelectionEngine",
    "SelectionExtension",
    "generate_row_id",
    "DEFAULT_PAGE_SIZE",
    "TableStateStore",
    "functional_update",
]
