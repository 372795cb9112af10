"""Export pipeline: project rows, report progress, serialize and write."""

import asyncio
import copy
import inspect
import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.columns import normalize_columns, visible_columns
from ..core.errors import (
    CANCELLED,
    MEMORY_ERROR,
    PROCESSING_ERROR,
    UNKNOWN,
    ExportCancelledError,
    ExportError,
    ExportProcessingError,
)
from ..core.fetch import normalize_result
from .projection import project_row, resolve_header
from .serialization import (
    build_frame,
    export_filename,
    mime_type_for,
    normalize_format,
    serialize,
    write_file,
)
from .signal import CancellationSignal

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_CHUNK_SIZE = 1000

# Phases reported through on_state_change
STARTING = "starting"
FETCHING = "fetching"
PROCESSING = "processing"
WRITING = "writing"
COMPLETED = "completed"
PHASE_CANCELLED = "cancelled"
PHASE_ERROR = "error"


@dataclass
class ExportProgress:
    """Progress of an export run.

    Attributes:
        processed_rows: Rows projected so far
        total_rows: Rows the run expects to export
        percentage: ``processed_rows * 100 // total_rows``
        current_chunk: 1-based chunk (local) or page (remote) number
        total_chunks: Expected number of chunks or pages
    """

    processed_rows: int
    total_rows: int
    percentage: int
    current_chunk: Optional[int] = None
    total_chunks: Optional[int] = None


@dataclass
class ExportArtifact:
    """Serialized export output. ``path`` is set when written to disk."""

    filename: str
    mime_type: str
    content: bytes
    path: Optional[Path] = None


@dataclass
class ExportResult:
    """Outcome of a completed export run."""

    success: bool
    filename: str
    total_rows: int
    total_columns: int
    processing_time: float
    file_size: int
    artifact: Optional[ExportArtifact] = None


def classify_error(error: BaseException) -> ExportError:
    """Map an exception raised during an export to an ExportError."""
    if isinstance(error, ExportError):
        return error
    if isinstance(error, MemoryError):
        return ExportError(MEMORY_ERROR, "Not enough memory to complete the export", error)
    if isinstance(error, (ExportProcessingError, ValueError, TypeError, KeyError)):
        return ExportError(PROCESSING_ERROR, str(error) or "Export processing failed", error)
    return ExportError(UNKNOWN, str(error) or "Export failed", error)


class ExportRun:
    """Per-run bookkeeping shared between the pipeline and row sources."""

    def __init__(
        self,
        signal: CancellationSignal,
        chunk_size: int = DEFAULT_EXPORT_CHUNK_SIZE,
        on_progress: Optional[Callable[[ExportProgress], None]] = None,
        on_state_change: Optional[Callable[[str], None]] = None,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.signal = signal
        self.chunk_size = chunk_size
        self.on_progress = on_progress
        self.on_state_change = on_state_change
        self.phase: Optional[str] = None
        self.last_percentage = 0

    def set_phase(self, phase: str) -> None:
        if phase == self.phase:
            return
        self.phase = phase
        logger.debug("Export phase: %s", phase)
        if self.on_state_change is not None:
            self.on_state_change(phase)

    def check_cancelled(self) -> None:
        if self.signal.cancelled:
            raise ExportCancelledError()

    def report(
        self,
        processed: int,
        total: int,
        current_chunk: Optional[int] = None,
        total_chunks: Optional[int] = None,
    ) -> None:
        """Emit progress; the percentage never decreases."""
        percentage = processed * 100 // total if total > 0 else 100
        percentage = max(min(percentage, 100), self.last_percentage)
        self.last_percentage = percentage
        if self.on_progress is not None:
            self.on_progress(
                ExportProgress(processed, total, percentage, current_chunk, total_chunks)
            )

    async def race(self, awaitable: Any) -> Any:
        """
        Await a page fetch, giving up as soon as the signal is cancelled.

        Raises:
            ExportCancelledError: If cancellation won the race
        """
        fetch = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(self.signal.wait())
        try:
            done, _ = await asyncio.wait(
                {fetch, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancelled.cancel()
            if not fetch.done():
                fetch.cancel()

        if fetch not in done:
            raise ExportCancelledError()
        return fetch.result()


class LocalRowSource:
    """
    Rows already in memory.

    Progress is reported per row; control is yielded to the event loop
    after every ``chunk_size`` rows.
    """

    def __init__(self, rows: List[Dict[str, Any]]):
        self.rows = list(rows)

    async def project(self, run: ExportRun, columns: List[Dict[str, Any]]) -> List[List[str]]:
        total = len(self.rows)
        if total == 0:
            raise ExportProcessingError("No data to export")

        run.set_phase(PROCESSING)
        total_chunks = math.ceil(total / run.chunk_size)
        records = []
        for index, row in enumerate(self.rows):
            run.check_cancelled()
            records.append(project_row(row, columns))
            run.report(index + 1, total, index // run.chunk_size + 1, total_chunks)
            if (index + 1) % run.chunk_size == 0:
                await asyncio.sleep(0)
        return records

    def __repr__(self) -> str:
        return f"LocalRowSource(rows={len(self.rows)})"


class RemoteRowSource:
    """
    Rows fetched page by page from the host.

    ``fetch_page(query, selection)`` returns ``{"data", "total"}`` (or
    an awaitable of it). The query and selection are copied when the
    source is created, so later table changes don't alter a running
    export.
    """

    def __init__(
        self,
        fetch_page: Callable[..., Any],
        query: Dict[str, Any],
        selection: Optional[Dict[str, Any]] = None,
        page_size: Optional[int] = None,
    ):
        self.fetch_page = fetch_page
        self.query = copy.deepcopy(query)
        self.selection = copy.deepcopy(selection)
        self.page_size = page_size
        self.strict_total_check = False

    async def _fetch(self, query: Dict[str, Any]) -> Any:
        result = self.fetch_page(query, self.selection)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _page_query(self, page_index: int, page_size: int) -> Dict[str, Any]:
        query = copy.deepcopy(self.query)
        query["pagination"] = {"page_index": page_index, "page_size": page_size}
        return query

    async def project(self, run: ExportRun, columns: List[Dict[str, Any]]) -> List[List[str]]:
        page_size = self.page_size or run.chunk_size
        records: List[List[str]] = []
        total: Optional[int] = None
        total_pages = None
        page_index = 0

        while True:
            run.check_cancelled()
            run.set_phase(FETCHING)
            result = await run.race(self._fetch(self._page_query(page_index, page_size)))
            run.check_cancelled()

            try:
                rows, page_total = normalize_result(result)
            except ValueError as e:
                raise ExportProcessingError(f"Invalid page received: {e}") from e

            if total is None:
                total = page_total
                if total == 0:
                    raise ExportProcessingError("No data to export")
                total_pages = math.ceil(total / page_size)
            if not rows:
                break

            run.set_phase(PROCESSING)
            records.extend(project_row(row, columns) for row in rows)
            page_index += 1
            run.report(min(len(records), total), total, page_index, total_pages)
            if len(records) >= total:
                break

        if self.strict_total_check and len(records) != total:
            raise ExportProcessingError(
                f"Fetched {len(records)} rows but the server announced {total}"
            )
        if len(records) < total:
            # The server ran out of rows early
            run.report(len(records), len(records), page_index, page_index)
        return records

    def __repr__(self) -> str:
        return f"RemoteRowSource(page_size={self.page_size}, query={self.query})"


async def export_data(
    source: Union[LocalRowSource, RemoteRowSource],
    columns: List[Dict[str, Any]],
    format: str = "csv",
    filename: str = "export",
    on_progress: Optional[Callable[[ExportProgress], None]] = None,
    on_complete: Optional[Callable[[ExportResult], None]] = None,
    on_error: Optional[Callable[[ExportError], None]] = None,
    on_cancel: Optional[Callable[[], None]] = None,
    on_state_change: Optional[Callable[[str], None]] = None,
    signal: Optional[CancellationSignal] = None,
    include_headers: bool = True,
    sanitize_csv: bool = False,
    strict_total_check: bool = False,
    output_dir: Optional[Union[str, Path]] = None,
    chunk_size: int = DEFAULT_EXPORT_CHUNK_SIZE,
    column_visibility: Optional[Dict[str, bool]] = None,
    column_order: Optional[List[str]] = None,
    column_pinning: Optional[Dict[str, List[str]]] = None,
) -> Optional[ExportResult]:
    """
    Export rows from a source to CSV or XLSX.

    Outcomes are delivered through the callbacks; this coroutine does not
    raise for export failures. On cancellation neither further progress
    nor ``on_complete`` is reported; ``on_error`` receives a CANCELLED
    error and ``on_cancel`` is called, each exactly once.

    Args:
        source: LocalRowSource or RemoteRowSource
        columns: Column definitions; hidden and ``hide_in_export`` columns
            are skipped
        format: "csv" or "excel"
        filename: Output name, extension added when missing
        on_progress: Called with ExportProgress after each row or page
        on_complete: Called with the ExportResult
        on_error: Called with an ExportError
        on_cancel: Called when the run was cancelled
        on_state_change: Called with each new phase name
        signal: Cancellation signal
        include_headers: Write a header row
        sanitize_csv: Prefix formula-like CSV values with a quote
        strict_total_check: Fail when a remote export's row count differs
            from the announced total
        output_dir: Directory to write the file to; kept in memory if None
        chunk_size: Rows per chunk (local) or page (remote)
        column_visibility: Visibility map applied to the columns
        column_order: Column order applied to the columns
        column_pinning: Column pinning applied to the columns

    Returns:
        ExportResult on success, None on failure or cancellation
    """
    signal = signal or CancellationSignal()
    started = time.perf_counter()
    run = None

    try:
        run = ExportRun(signal, chunk_size, on_progress, on_state_change)
        run.set_phase(STARTING)
        format = normalize_format(format)

        export_columns = visible_columns(
            normalize_columns(columns),
            column_visibility,
            column_order,
            column_pinning,
            for_export=True,
        )
        if not export_columns:
            raise ExportProcessingError("No columns to export")
        headers = [resolve_header(column) for column in export_columns]

        if isinstance(source, RemoteRowSource):
            source.strict_total_check = strict_total_check
        records = await source.project(run, export_columns)
        run.check_cancelled()

        run.set_phase(WRITING)
        frame = build_frame(headers, records)
        content = await asyncio.to_thread(
            serialize, frame, format, include_headers, sanitize_csv
        )
        run.check_cancelled()

        name = export_filename(filename, format)
        path = write_file(content, output_dir, name) if output_dir is not None else None
        artifact = ExportArtifact(name, mime_type_for(format), content, path)
        result = ExportResult(
            success=True,
            filename=name,
            total_rows=len(records),
            total_columns=len(headers),
            processing_time=time.perf_counter() - started,
            file_size=len(content),
            artifact=artifact,
        )
        run.set_phase(COMPLETED)

    except ExportCancelledError:
        logger.info("Export '%s' cancelled", filename)
        if run is not None:
            run.set_phase(PHASE_CANCELLED)
        if on_error is not None:
            on_error(ExportError(CANCELLED, "Export cancelled"))
        if on_cancel is not None:
            on_cancel()
        return None

    except Exception as e:
        export_error = classify_error(e)
        logger.exception("Export '%s' failed (%s)", filename, export_error.code)
        if run is not None:
            run.set_phase(PHASE_ERROR)
        if on_error is not None:
            on_error(export_error)
        return None

    logger.info(
        "Exported %d rows x %d columns to '%s' in %.2fs",
        result.total_rows, result.total_columns, result.filename, result.processing_time,
    )
    if on_complete is not None:
        on_complete(result)
    return result
