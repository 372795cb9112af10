"""Export service enforcing one running export at a time."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..core.errors import CANCELLED, EXPORT_IN_PROGRESS, ExportError
from .pipeline import DEFAULT_EXPORT_CHUNK_SIZE, ExportResult, export_data
from .signal import CancellationSignal

logger = logging.getLogger(__name__)

IGNORE_IF_RUNNING = "ignore_if_running"
CANCEL_AND_RESTART = "cancel_and_restart"
QUEUE = "queue"

CONCURRENCY_POLICIES = (IGNORE_IF_RUNNING, CANCEL_AND_RESTART, QUEUE)


class ExportService:
    """
    Runs exports one at a time under a concurrency policy.

    Policies for an export requested while another is running:
        - ``ignore_if_running``: the new export fails with EXPORT_IN_PROGRESS
        - ``cancel_and_restart``: the running export is cancelled and the
          new one starts once it has stopped
        - ``queue``: the new export waits for the running one to finish

    Example:
        service = ExportService(concurrency="queue")
        result = await service.export(LocalRowSource(rows), columns, format="excel")
    """

    def __init__(
        self,
        concurrency: str = CANCEL_AND_RESTART,
        chunk_size: int = DEFAULT_EXPORT_CHUNK_SIZE,
    ):
        if concurrency not in CONCURRENCY_POLICIES:
            raise ValueError(
                f"concurrency must be one of {CONCURRENCY_POLICIES}, got '{concurrency}'"
            )
        self.concurrency = concurrency
        self.chunk_size = chunk_size
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._signal: Optional[CancellationSignal] = None
        self._ticket = 0

    @property
    def is_exporting(self) -> bool:
        return self._lock is not None and self._lock.locked()

    def _get_lock(self) -> asyncio.Lock:
        """Return the lock for the running event loop, creating it on first use."""
        loop = asyncio.get_running_loop()
        if self._lock is None or (self._lock_loop is not loop and not self._lock.locked()):
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def cancel(self) -> None:
        """Cancel the running export, if any."""
        if self._signal is not None:
            self._signal.cancel()

    async def export(
        self, source: Any, columns: List[Dict[str, Any]], **options: Any
    ) -> Optional[ExportResult]:
        """
        Run an export, applying the concurrency policy.

        Args:
            source: LocalRowSource or RemoteRowSource
            columns: Column definitions
            **options: Keyword arguments for ``export_data``

        Returns:
            ExportResult, or None if the export failed, was cancelled or
            was rejected
        """
        options.setdefault("chunk_size", self.chunk_size)
        options.pop("signal", None)
        self._ticket += 1
        ticket = self._ticket
        lock = self._get_lock()

        if lock.locked():
            if self.concurrency == IGNORE_IF_RUNNING:
                logger.info("Export already running; request ignored")
                on_error = options.get("on_error")
                if on_error is not None:
                    on_error(ExportError(EXPORT_IN_PROGRESS, "An export is already running"))
                return None
            if self.concurrency == CANCEL_AND_RESTART:
                self.cancel()

        async with lock:
            if self.concurrency == CANCEL_AND_RESTART and ticket != self._ticket:
                # A newer request replaced this one while it waited
                if options.get("on_error") is not None:
                    options["on_error"](ExportError(CANCELLED, "Export superseded"))
                if options.get("on_cancel") is not None:
                    options["on_cancel"]()
                return None

            signal = CancellationSignal()
            self._signal = signal
            try:
                return await export_data(source, columns, signal=signal, **options)
            finally:
                self._signal = None

    def __repr__(self) -> str:
        return (
            f"ExportService(concurrency='{self.concurrency}', "
            f"is_exporting={self.is_exporting})"
        )
