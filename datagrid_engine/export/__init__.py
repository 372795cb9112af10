"""CSV/XLSX export of grid rows."""

from .pipeline import (
    DEFAULT_EXPORT_CHUNK_SIZE,
    ExportArtifact,
    ExportProgress,
    ExportResult,
    LocalRowSource,
    RemoteRowSource,
    classify_error,
    export_data,
)
from .projection import project_row, resolve_header, resolve_value, to_export_string
from .serialization import build_frame, to_csv_bytes, to_xlsx_bytes
from .service import ExportService
from .signal import CancellationSignal

__all__ = [
    "DEFAULT_EXPORT_CHUNK_SIZE",
    "ExportArtifact",
    "ExportProgress",
    "ExportResult",
    "LocalRowSource",
    "RemoteRowSource",
    "classify_error",
    "export_data",
    "project_row",
    "resolve_header",
    "resolve_value",
    "to_export_string",
    "build_frame",
    "to_csv_bytes",
    "to_xlsx_bytes",
    "ExportService",
    "CancellationSignal",
]
