"""
DataGrid Engine - Headless data grid state, querying and export.

This package provides the engine behind an interactive data table: filter
compilation, include/exclude row selection, a single state store with
pluggable extensions, debounced fetching and CSV/XLSX export.
"""

from .components.grid import DataGrid
from .core.errors import DataGridError, ExportError, OperatorRegistrationError
from .core.extensions import ColumnFilterExtension, TableExtension
from .core.fetch import FetchCoordinator
from .core.persistence import GridPersistence, InMemoryStore, SessionStateStore
from .core.selection import SelectionEngine, SelectionExtension
from .core.state import TableStateStore
from .export import (
    CancellationSignal,
    ExportService,
    LocalRowSource,
    RemoteRowSource,
    export_data,
)
from .query import LocalDataSource, combine, compile_rule, register_operator

__version__ = "0.1.0"

__all__ = [
    # Core
    "TableStateStore",
    "TableExtension",
    "ColumnFilterExtension",
    "SelectionEngine",
    "SelectionExtension",
    "FetchCoordinator",
    "DataGridError",
    "ExportError",
    "OperatorRegistrationError",
    # Query
    "compile_rule",
    "combine",
    "register_operator",
    "LocalDataSource",
    # Export
    "export_data",
    "ExportService",
    "LocalRowSource",
    "RemoteRowSource",
    "CancellationSignal",
    # Grid
    "DataGrid",
    # Persistence
    "GridPersistence",
    "InMemoryStore",
    "SessionStateStore",
]
