"""Cooperative cancellation for export runs."""

import asyncio


class CancellationSignal:
    """
    One-shot cancellation flag that can also be awaited.

    The export pipeline checks ``cancelled`` between units of work and
    races ``wait()`` against long-running page fetches.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until the signal is cancelled."""
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationSignal(cancelled={self.cancelled})"
