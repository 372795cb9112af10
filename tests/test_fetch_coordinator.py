"""Tests for debounced, generation-tracked fetching."""

import asyncio
import logging

import pytest

from datagrid_engine.core.fetch import (
    FetchCoordinator,
    compute_query_key,
    normalize_result,
)


def query(n):
    return {
        "sorting": [],
        "pagination": {"page_index": n, "page_size": 10},
        "global_filter": "",
        "column_filter": {"filters": [], "logic": "AND"},
    }


class RecordingFetch:
    """Fetch function recording the queries it is called with."""

    def __init__(self):
        self.calls = []

    async def __call__(self, q):
        self.calls.append(q)
        page = q["pagination"]["page_index"]
        return {"data": [{"id": page}], "total": 100}


class TestQueryKey:
    def test_key_uses_value_equality(self):
        a = {"b": 1, "a": [1, 2]}
        b = {"a": [1, 2], "b": 1}
        assert compute_query_key(a) == compute_query_key(b)
        assert compute_query_key(a) != compute_query_key({"a": [2, 1], "b": 1})


class TestNormalizeResult:
    def test_dict_and_tuple(self):
        assert normalize_result({"data": [{"id": 1}], "total": 5}) == ([{"id": 1}], 5)
        assert normalize_result(([{"id": 1}], 5)) == ([{"id": 1}], 5)

    def test_missing_total_uses_row_count(self):
        assert normalize_result({"data": [{}, {}]}) == ([{}, {}], 2)

    def test_rows_required(self):
        with pytest.raises(ValueError):
            normalize_result({"total": 3})


class TestDebounce:
    """Rapid requests coalesce into one fetch."""

    @pytest.mark.asyncio
    async def test_rapid_requests_execute_only_the_last(self):
        fetch = RecordingFetch()
        coordinator = FetchCoordinator(fetch, debounce_delay=0.02)

        tasks = [coordinator.request(query(n)) for n in range(5)]
        results = await asyncio.gather(*tasks)

        assert fetch.calls == [query(4)]
        assert results[:4] == [None, None, None, None]
        assert results[4] == {"data": [{"id": 4}], "total": 100}
        assert coordinator.rows == [{"id": 4}]

    @pytest.mark.asyncio
    async def test_delay_override(self):
        fetch = RecordingFetch()
        coordinator = FetchCoordinator(fetch, debounce_delay=10)

        result = await coordinator.request(query(1), delay=0)

        assert result["data"] == [{"id": 1}]


class TestStaleResults:
    """Only the latest generation's result is applied."""

    @pytest.mark.asyncio
    async def test_slow_older_result_is_discarded(self):
        started_a = asyncio.Event()
        release_a = asyncio.Event()

        async def fetch(q):
            if q["pagination"]["page_index"] == 1:
                started_a.set()
                await release_a.wait()
                return {"data": [{"id": "A"}], "total": 1}
            return {"data": [{"id": "B"}], "total": 2}

        coordinator = FetchCoordinator(fetch, debounce_delay=0)

        task_a = coordinator.request(query(1))
        await started_a.wait()
        assert coordinator.is_loading

        result_b = await coordinator.request(query(2))
        release_a.set()
        result_a = await task_a

        assert result_b == {"data": [{"id": "B"}], "total": 2}
        assert result_a is None
        assert coordinator.rows == [{"id": "B"}]
        assert coordinator.total == 2
        assert not coordinator.is_loading

    @pytest.mark.asyncio
    async def test_cancel_pending_invalidates_requests(self):
        fetch = RecordingFetch()
        coordinator = FetchCoordinator(fetch, debounce_delay=0.01)

        task = coordinator.request(query(1))
        coordinator.cancel_pending()

        assert await task is None
        assert fetch.calls == []


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_same_query_as_last_completed_is_skipped(self):
        fetch = RecordingFetch()
        coordinator = FetchCoordinator(fetch, debounce_delay=0)

        await coordinator.request(query(1))

        assert coordinator.request(query(1)) is None
        assert coordinator.last_completed_key == compute_query_key(query(1))

        forced = coordinator.request(query(1), force=True)
        assert forced is not None
        await forced
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_revert_to_completed_query_supersedes_pending(self):
        fetch = RecordingFetch()
        coordinator = FetchCoordinator(fetch, debounce_delay=0.02)
        await coordinator.request(query(1), delay=0)

        pending = coordinator.request(query(2))
        assert coordinator.request(query(1)) is None

        assert await pending is None
        assert fetch.calls == [query(1)]
        assert coordinator.rows == [{"id": 1}]
        assert not coordinator.is_loading


class TestFailures:
    """Fetch failures are logged and keep the loaded rows."""

    @pytest.mark.asyncio
    async def test_failure_keeps_rows_and_clears_loading(self, caplog):
        fail = {"enabled": False}

        async def fetch(q):
            if fail["enabled"]:
                raise ConnectionError("server unavailable")
            return {"data": [{"id": 1}], "total": 1}

        coordinator = FetchCoordinator(fetch, debounce_delay=0)
        await coordinator.request(query(1))

        fail["enabled"] = True
        with caplog.at_level(logging.ERROR, logger="datagrid_engine.core.fetch"):
            result = await coordinator.request(query(2))

        assert result is None
        assert coordinator.rows == [{"id": 1}]
        assert coordinator.total == 1
        assert not coordinator.is_loading
        assert "Fetch failed" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_result_is_a_failure(self):
        async def fetch(q):
            return {"rows": []}

        coordinator = FetchCoordinator(fetch, debounce_delay=0)

        assert await coordinator.request(query(1)) is None
        assert coordinator.last_completed_key is None

    @pytest.mark.asyncio
    async def test_sync_fetch_function_and_on_result(self):
        applied = []
        coordinator = FetchCoordinator(
            lambda q: ([{"id": 9}], 1), debounce_delay=0, on_result=applied.append
        )

        await coordinator.request(query(1))

        assert applied == [{"data": [{"id": 9}], "total": 1}]


class TestLoopRequirement:
    def test_request_needs_running_loop(self):
        coordinator = FetchCoordinator(RecordingFetch())
        with pytest.raises(RuntimeError):
            coordinator.request(query(1))
