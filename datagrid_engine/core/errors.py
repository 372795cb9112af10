"""Exceptions and error codes used across the engine.

Filter compilation and selection never raise; these types exist for
registration-time validation and for the export pipeline, which reports
failures through callbacks rather than raising into the host.
"""

# Export error codes delivered through ExportError.code
CANCELLED = "CANCELLED"
MEMORY_ERROR = "MEMORY_ERROR"
PROCESSING_ERROR = "PROCESSING_ERROR"
UNKNOWN = "UNKNOWN"
EXPORT_IN_PROGRESS = "EXPORT_IN_PROGRESS"

EXPORT_ERROR_CODES = (
    CANCELLED,
    MEMORY_ERROR,
    PROCESSING_ERROR,
    UNKNOWN,
    EXPORT_IN_PROGRESS,
)


class DataGridError(Exception):
    """Base class for engine errors."""

    pass


class OperatorRegistrationError(DataGridError, ValueError):
    """Raised when an operator builder is registered for an invalid or
    already-taken (column_type, operator) pair.

    This is a construction-time error: it surfaces when the operator table
    is built, never while rows are being evaluated.
    """

    pass


class ExportProcessingError(DataGridError):
    """Raised inside the export pipeline for data problems.

    Examples: the source produced no rows, a remote page came back in an
    unexpected shape, or the fetched row count disagrees with the announced
    total under strict checking. The pipeline converts it into a
    PROCESSING_ERROR delivered via ``on_error``.
    """

    pass


class ExportCancelledError(DataGridError):
    """Internal signal that an export run observed its cancellation signal."""

    pass


class ExportError(DataGridError):
    """
    Failure outcome of an export run, delivered through ``on_error``.

    Attributes:
        code: One of CANCELLED, MEMORY_ERROR, PROCESSING_ERROR, UNKNOWN
            or EXPORT_IN_PROGRESS
        cause: Original exception, if any
    """

    def __init__(self, code: str, message: str = "", cause: Exception = None):
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.cause = cause

    def __repr__(self) -> str:
        return f"ExportError(code='{self.code}', message='{self.message}')"
