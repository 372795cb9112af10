"""Debounced, generation-tracked fetching of query results."""

import asyncio
import copy
import hashlib
import inspect
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_DELAY = 0.3

FetchResult = Dict[str, Any]


def compute_query_key(query: Dict[str, Any]) -> str:
    """
    Compute a key identifying a query by value.

    Args:
        query: Canonical query dict

    Returns:
        SHA256 hex digest of the sort-keyed JSON form of the query
    """
    payload = json.dumps(query, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()


def normalize_result(result: Any) -> Tuple[List[Dict[str, Any]], int]:
    """
    Read rows and total from a host fetch result.

    Args:
        result: ``{"data": rows, "total": n}`` dict or ``(rows, total)`` tuple

    Returns:
        Tuple of (rows, total)

    Raises:
        ValueError: If the result carries no list of rows
    """
    if isinstance(result, dict):
        rows = result.get("data")
        total = result.get("total")
    elif isinstance(result, (tuple, list)) and len(result) == 2 and isinstance(result[0], list):
        rows, total = result
    else:
        rows, total = None, None

    if not isinstance(rows, list):
        raise ValueError(
            f"Fetch result must provide a list of rows, got {type(result).__name__}"
        )
    if total is None:
        total = len(rows)
    return rows, int(total)


class FetchCoordinator:
    """
    Runs host fetches for canonical queries.

    Each accepted request bumps a generation counter. The request waits for
    the debounce window and only fetches if no newer request arrived in the
    meantime; a result is only applied if its generation is still the
    latest when it resolves. Stale requests resolve to None.

    Requests for the same query as the last completed one are skipped
    unless forced.

    Fetch failures are logged and leave the loaded rows untouched.

    Example:
        coordinator = FetchCoordinator(source.fetch, debounce_delay=0.3)
        task = coordinator.request(store.get_query())
        result = await task  # None if superseded or failed
    """

    def __init__(
        self,
        fetch_fn: Optional[Callable[[Dict[str, Any]], Any]],
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
        on_result: Optional[Callable[[FetchResult], None]] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            fetch_fn: Host fetch, ``query -> {"data", "total"}``. May be a
                coroutine function or return an awaitable. None when the host
                pushes results with set_result instead.
            debounce_delay: Seconds to wait before fetching
            on_result: Called with each applied result
        """
        self._fetch_fn = fetch_fn
        self.debounce_delay = debounce_delay
        self.on_result = on_result

        self._generation = 0
        self._loading_generation: Optional[int] = None
        self._last_completed_key: Optional[str] = None
        self._rows: List[Dict[str, Any]] = []
        self._total = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_loading(self) -> bool:
        return self._loading_generation is not None

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return list(self._rows)

    @property
    def total(self) -> int:
        return self._total

    @property
    def last_completed_key(self) -> Optional[str]:
        return self._last_completed_key

    def request(
        self,
        query: Dict[str, Any],
        delay: Optional[float] = None,
        force: bool = False,
    ) -> Optional[asyncio.Task]:
        """
        Request results for a query.

        Must be called from a running event loop.

        Args:
            query: Canonical query
            delay: Debounce override in seconds (default: debounce_delay)
            force: Fetch even if the query equals the last completed one

        Returns:
            Task resolving to the applied result (or None), or None when
            the request was skipped
        """
        key = compute_query_key(query)
        if not force and key == self._last_completed_key:
            # The loaded rows already answer this query; pending requests
            # for other queries are now stale.
            self.cancel_pending()
            logger.debug("Query unchanged since last fetch; request skipped")
            return None

        self._generation += 1
        wait = self.debounce_delay if delay is None else delay
        task = asyncio.get_running_loop().create_task(
            self._run(self._generation, key, copy.deepcopy(query), wait)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self, generation: int, key: str, query: Dict[str, Any], wait: float
    ) -> Optional[FetchResult]:
        if wait > 0:
            await asyncio.sleep(wait)
        if generation != self._generation:
            return None

        self._loading_generation = generation
        try:
            result = self._fetch_fn(query)
            if inspect.isawaitable(result):
                result = await result
            rows, total = normalize_result(result)
        except Exception:
            logger.exception("Fetch failed for generation %d", generation)
            return None
        finally:
            if self._loading_generation == generation:
                self._loading_generation = None

        if generation != self._generation:
            logger.debug(
                "Discarding stale result of generation %d (latest %d)",
                generation, self._generation,
            )
            return None

        self._rows = rows
        self._total = total
        self._last_completed_key = key
        applied = {"data": list(rows), "total": total}
        if self.on_result is not None:
            self.on_result(applied)
        return applied

    def set_result(self, rows: List[Dict[str, Any]], total: Optional[int] = None) -> None:
        """Replace loaded rows directly (for hosts that push data)."""
        self._rows = list(rows)
        self._total = len(rows) if total is None else int(total)

    def cancel_pending(self) -> None:
        """Invalidate every outstanding request."""
        self._generation += 1
        self._loading_generation = None

    def close(self) -> None:
        """Invalidate and cancel outstanding request tasks."""
        self.cancel_pending()
        for task in list(self._tasks):
            task.cancel()

    def __repr__(self) -> str:
        return (
            f"FetchCoordinator(generation={self._generation}, "
            f"rows={len(self._rows)}, total={self._total}, "
            f"is_loading={self.is_loading})"
        )
