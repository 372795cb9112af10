"""DataGrid facade composing state, selection, fetching and export."""

import asyncio
import logging
import math
from typing import Any, Callable, Dict, List, Optional

from ..core.columns import build_column_definitions, normalize_columns, visible_columns
from ..core.extensions import ColumnFilterExtension, ColumnFilterMethods
from ..core.fetch import DEFAULT_DEBOUNCE_DELAY, FetchCoordinator, compute_query_key
from ..core.selection import DATA_MODES, SelectionEngine, SelectionExtension
from ..core.state import DEFAULT_PAGE_SIZE, TableStateStore
from ..export.pipeline import (
    DEFAULT_EXPORT_CHUNK_SIZE,
    ExportResult,
    LocalRowSource,
    RemoteRowSource,
)
from ..export.service import CANCEL_AND_RESTART, ExportService
from ..query.compiler import build_filter_query
from ..query.local import LocalDataSource, TableData

logger = logging.getLogger(__name__)


def _has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class FilteringAPI(ColumnFilterMethods):
    """Column filters (draft/apply and direct) plus the global filter."""

    def __init__(self, grid: "DataGrid", enabled: bool = True):
        super().__init__(grid.store, enabled=enabled)
        self._grid = grid

    def set_global_filter(self, text: Any) -> None:
        self._store.set_global_filter(text)

    def clear_global_filter(self) -> None:
        self._store.set_global_filter("")

    def get_global_filter(self) -> str:
        return self._store.get("global_filter")

    def reset_all_filters(self) -> None:
        """Clear column filters and the global filter."""
        self.reset()
        self.clear_global_filter()

    def to_query(self) -> Optional[Dict[str, Any]]:
        """Applied filters as a declarative ``{"and"|"or": [...]}`` tree."""
        return build_filter_query(self.get_state(), self._grid.column_types)


class SortingAPI:
    """Sort state operations."""

    def __init__(self, store: TableStateStore):
        self._store = store

    def get_sorting(self) -> List[Dict[str, Any]]:
        return self._store.get("sorting")

    def set_sorting(self, updater: Any) -> None:
        self._store.set_sorting(updater)

    def sort_by(self, column_id: str, direction: str = "asc", multi: bool = False) -> None:
        """
        Sort by a column.

        Args:
            column_id: Column to sort by
            direction: "asc" or "desc"
            multi: Keep existing sort entries, adding this one last
        """
        entry = {"column_id": column_id, "direction": direction}

        def update(sorting):
            if not multi:
                return [entry]
            return [s for s in sorting if s["column_id"] != column_id] + [entry]

        self._store.set_sorting(update)

    def toggle_sort(self, column_id: str, multi: bool = False) -> None:
        """Cycle a column through unsorted, ascending and descending."""
        current = {s["column_id"]: s["direction"] for s in self.get_sorting()}.get(column_id)
        if current is None:
            self.sort_by(column_id, "asc", multi=multi)
        elif current == "asc":
            self.sort_by(column_id, "desc", multi=multi)
        else:
            self.clear_sorting(column_id)

    def clear_sorting(self, column_id: Optional[str] = None) -> None:
        if column_id is None:
            self._store.set_sorting([])
        else:
            self._store.set_sorting(
                lambda sorting: [s for s in sorting if s["column_id"] != column_id]
            )


class PaginationAPI:
    """Page navigation bounded by the last known total."""

    def __init__(self, store: TableStateStore, get_total: Callable[[], int]):
        self._store = store
        self._get_total = get_total

    def get_state(self) -> Dict[str, Any]:
        return self._store.get("pagination")

    @property
    def page_count(self) -> int:
        page_size = self.get_state()["page_size"]
        return max(1, math.ceil(self._get_total() / page_size))

    def go_to_page(self, page_index: int) -> None:
        page_index = min(max(page_index, 0), self.page_count - 1)
        self._store.set_page_index(page_index)

    def next_page(self) -> None:
        self.go_to_page(self.get_state()["page_index"] + 1)

    def previous_page(self) -> None:
        self.go_to_page(self.get_state()["page_index"] - 1)

    def first_page(self) -> None:
        self.go_to_page(0)

    def last_page(self) -> None:
        self.go_to_page(self.page_count - 1)

    def set_page_size(self, page_size: int) -> None:
        self._store.set_page_size(page_size)


class ColumnsAPI:
    """Column layout: visibility, order, pinning and sizing."""

    def __init__(self, grid: "DataGrid"):
        self._grid = grid
        self._store = grid.store

    def set_visibility(self, column_id: str, visible: bool) -> None:
        self._store.set_column_visibility(lambda v: {**v, column_id: bool(visible)})

    def toggle_visibility(self, column_id: str) -> None:
        visible = self._store.get("column_visibility").get(column_id, True)
        self.set_visibility(column_id, not visible)

    def set_order(self, column_ids: List[str]) -> None:
        self._store.set_column_order(list(column_ids))

    def pin(self, column_id: str, side: str = "left") -> None:
        """
        Pin a column to the left or right edge.

        Raises:
            ValueError: If side is not 'left' or 'right'
        """
        if side not in ("left", "right"):
            raise ValueError(f"side must be 'left' or 'right', got '{side}'")

        def update(pinning):
            left = [c for c in pinning["left"] if c != column_id]
            right = [c for c in pinning["right"] if c != column_id]
            (left if side == "left" else right).append(column_id)
            return {"left": left, "right": right}

        self._store.set_column_pinning(update)

    def unpin(self, column_id: str) -> None:
        self._store.set_column_pinning(
            lambda p: {
                "left": [c for c in p["left"] if c != column_id],
                "right": [c for c in p["right"] if c != column_id],
            }
        )

    def set_size(self, column_id: str, width: float) -> None:
        self._store.set_column_sizing(lambda s: {**s, column_id: width})

    def get_visible_columns(self) -> List[Dict[str, Any]]:
        """Visible column definitions in layout order."""
        return visible_columns(
            self._grid.column_definitions,
            self._store.get("column_visibility"),
            self._store.get("column_order"),
            self._store.get("column_pinning"),
        )

    def reset_layout(self) -> None:
        self._store.set_column_visibility({})
        self._store.set_column_order([])
        self._store.set_column_pinning({"left": [], "right": []})
        self._store.set_column_sizing({})


class DataAPI:
    """Loaded rows, refreshing and pushed data."""

    def __init__(self, grid: "DataGrid"):
        self._grid = grid

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return self._grid.coordinator.rows

    @property
    def total(self) -> int:
        return self._grid.coordinator.total

    @property
    def is_loading(self) -> bool:
        return self._grid.coordinator.is_loading

    def refresh(self, reset_pagination: bool = False, force: bool = False) -> Optional[asyncio.Task]:
        """
        Refetch the current query immediately.

        Args:
            reset_pagination: Go back to the first page first
            force: Fetch even if the query equals the last completed one

        Returns:
            The fetch task, or None when nothing was fetched
        """
        if reset_pagination:
            self._grid.store.set_page_index(0)
        return self._grid._request(self._grid.store.get_query(), delay=0, force=force)

    def set_data(self, rows: Any, total: Optional[int] = None) -> Optional[asyncio.Task]:
        """
        Replace the grid's data.

        In pull mode the rows are the current page as evaluated by the
        host. In client mode they replace the in-memory table, which is
        then re-queried.
        """
        if self._grid.source is None:
            rows = list(rows)
            self._grid.coordinator.set_result(rows, total)
            return None
        self._grid.source.set_data(rows)
        return self.refresh(force=True)

    def get_all_rows(self) -> List[Dict[str, Any]]:
        """Rows matching the current filters and sort, across all pages."""
        if self._grid.source is None:
            return self.rows
        return self._grid.source.filtered_rows(self._grid.store.get_query())


class ExportAPI:
    """Exports of the current view, respecting filters, selection and layout."""

    def __init__(self, grid: "DataGrid", service: ExportService):
        self._grid = grid
        self._service = service

    @property
    def is_exporting(self) -> bool:
        return self._service.is_exporting

    def cancel(self) -> None:
        self._service.cancel()

    def build_source(self) -> Any:
        """
        Build the row source for an export of the current state.

        Client data exports the selected rows, or every filtered row when
        nothing is selected. Server data is fetched page by page with the
        current query and selection snapshot.
        """
        grid = self._grid
        query = grid.store.get_query()

        if grid.source is None and grid.export_fetch is None and grid.fetch_data is None:
            return LocalRowSource(grid.coordinator.rows)

        if grid.source is not None:
            rows = grid.source.filtered_rows(query)
            selection = grid.store.get("selection")
            if selection["ids"] or selection["type"] == "exclude":
                selected = grid.selection.get_selected_rows(rows)
                if selected:
                    rows = selected
            return LocalRowSource(rows)

        fetch_page = grid.export_fetch
        if fetch_page is None:
            fetch_data = grid.fetch_data

            def fetch_page(page_query, selection):
                return fetch_data(page_query)

        return RemoteRowSource(fetch_page, query, grid.selection.snapshot())

    async def export(
        self, format: str = "csv", filename: str = "export", **options: Any
    ) -> Optional[ExportResult]:
        """
        Export the current view.

        Args:
            format: "csv" or "excel"
            filename: Output file name
            **options: Further ``export_data`` keyword arguments (callbacks,
                ``sanitize_csv``, ``output_dir``...)

        Returns:
            ExportResult, or None on failure or cancellation
        """
        store = self._grid.store
        options.setdefault("column_visibility", store.get("column_visibility"))
        options.setdefault("column_order", store.get("column_order"))
        options.setdefault("column_pinning", store.get("column_pinning"))
        return await self._service.export(
            self.build_source(),
            self._grid.column_definitions,
            format=format,
            filename=filename,
            **options,
        )


class DataGrid:
    """
    Headless data grid engine.

    Owns the table state, selection, data fetching and exports for one
    table and exposes them grouped by concern: ``grid.filtering``,
    ``grid.sorting``, ``grid.pagination``, ``grid.selection``,
    ``grid.data``, ``grid.columns`` and ``grid.export``.

    Data modes:
    - client: ``data`` is held in memory and queried locally
    - server: every query is forwarded to ``fetch_data``
    - pull: with neither ``data`` nor ``fetch_data``, query changes are
      announced through ``on_fetch_state_change`` and the host pushes
      rows with ``grid.data.set_data(rows, total)``

    Whenever a state change alters the canonical query, a fetch is
    scheduled first and ``on_data_state_change`` is called second.

    Example:
        grid = DataGrid(data=orders_df, page_size=25, select_mode="all")
        grid.filtering.add_pending_filter("status", "equals", "open")
        grid.filtering.apply_pending_filters()
        await grid.data.refresh()
        grid.data.rows
    """

    def __init__(
        self,
        columns: Optional[List[Dict[str, Any]]] = None,
        data: Optional[TableData] = None,
        fetch_data: Optional[Callable[[Dict[str, Any]], Any]] = None,
        export_fetch: Optional[Callable[..., Any]] = None,
        data_mode: Optional[str] = None,
        select_mode: str = "page",
        id_key: str = "id",
        page_size: int = DEFAULT_PAGE_SIZE,
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
        is_row_selectable: Optional[Callable[[Dict[str, Any]], bool]] = None,
        on_data_state_change: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_fetch_state_change: Optional[Callable[[Dict[str, Any]], None]] = None,
        initial_state: Optional[Dict[str, Any]] = None,
        enable_column_filter: bool = True,
        export_chunk_size: int = DEFAULT_EXPORT_CHUNK_SIZE,
        export_concurrency: str = CANCEL_AND_RESTART,
    ):
        """
        Initialize the grid.

        Args:
            columns: Column definitions. Generated from the data schema
                when omitted in client mode.
            data: In-memory data (polars, pandas or list of row dicts)
            fetch_data: Host fetch ``query -> {"data", "total"}``
            export_fetch: Host export fetch ``(query, selection) -> {"data", "total"}``
            data_mode: "client" or "server" (default: "server" when
                fetch_data is given, else "client")
            select_mode: "page" or "all"
            id_key: Row field holding the row id
            page_size: Initial page size
            debounce_delay: Seconds to wait before fetching
            is_row_selectable: Optional row selectability predicate
            on_data_state_change: Called with the canonical query after
                each query change
            on_fetch_state_change: Called with the canonical query when a
                server or pull mode query changes
            initial_state: Initial slice values
            enable_column_filter: Enable column filter editing
            export_chunk_size: Rows per export chunk or page
            export_concurrency: Export concurrency policy

        Raises:
            ValueError: If data_mode is invalid or server mode lacks a
                fetch function while data is given
        """
        if data_mode is None:
            data_mode = "server" if fetch_data is not None else "client"
        if data_mode not in DATA_MODES:
            raise ValueError(f"data_mode must be one of {DATA_MODES}, got '{data_mode}'")
        if data_mode == "server" and data is not None and fetch_data is None:
            raise ValueError("Server mode needs fetch_data; pass data_mode='client' for in-memory data")

        self.data_mode = data_mode
        self.fetch_data = fetch_data
        self.export_fetch = export_fetch
        self.on_data_state_change = on_data_state_change
        self.on_fetch_state_change = on_fetch_state_change

        self.source: Optional[LocalDataSource] = None
        if data_mode == "client" and data is not None:
            self.source = LocalDataSource(data, columns)

        if columns:
            self.column_definitions = normalize_columns(columns)
        elif self.source is not None:
            self.column_definitions = build_column_definitions(self.source.schema())
        else:
            self.column_definitions = []

        fetch_fn = self.source.fetch if self.source is not None else fetch_data
        self.coordinator = FetchCoordinator(fetch_fn, debounce_delay=debounce_delay)

        self.store = TableStateStore(
            [
                ColumnFilterExtension(enabled=enable_column_filter),
                SelectionExtension(
                    select_mode=select_mode,
                    data_mode=data_mode,
                    is_row_selectable=is_row_selectable,
                    get_page_rows=lambda: self.coordinator.rows,
                    id_key=id_key,
                ),
            ],
            initial_state=initial_state,
            page_size=page_size,
        )

        self.selection: SelectionEngine = self.store.extension("selection")
        self.filtering = FilteringAPI(self, enabled=enable_column_filter)
        self.sorting = SortingAPI(self.store)
        self.pagination = PaginationAPI(self.store, lambda: self.coordinator.total)
        self.columns = ColumnsAPI(self)
        self.data = DataAPI(self)
        self.export = ExportAPI(
            self, ExportService(export_concurrency, chunk_size=export_chunk_size)
        )

        initial_query = self.store.get_query()
        self._last_query_key = compute_query_key(initial_query)
        self._unsubscribe = self.store.subscribe(self._on_state_change)
        self._disposed = False

        self._request(initial_query, delay=0)

    @property
    def is_pull_mode(self) -> bool:
        return self.source is None and self.fetch_data is None

    @property
    def column_types(self) -> Dict[str, str]:
        if self.source is not None:
            return self.source.column_types
        return {c["id"]: c["type"] for c in self.column_definitions if c.get("type")}

    def _request(
        self, query: Dict[str, Any], delay: Optional[float] = None, force: bool = False
    ) -> Optional[asyncio.Task]:
        """Hand a query to the fetch path for the current data mode."""
        if self.is_pull_mode or self.data_mode == "server":
            if self.on_fetch_state_change is not None:
                self.on_fetch_state_change(query)
        if self.is_pull_mode:
            return None

        if not _has_running_loop():
            if self.source is not None:
                result = self.source.run(query)
                self.coordinator.set_result(result["data"], result["total"])
            else:
                logger.debug("No running event loop; fetch deferred until refresh()")
            return None

        return self.coordinator.request(query, delay=delay, force=force)

    def _on_state_change(self, state: Dict[str, Any], name: str) -> None:
        query = self.store.get_query()
        key = compute_query_key(query)
        if key == self._last_query_key:
            return
        self._last_query_key = key
        self._request(query)
        if self.on_data_state_change is not None:
            self.on_data_state_change(query)

    def dispose(self) -> None:
        """Cancel pending work and stop observing the store."""
        if self._disposed:
            return
        self._disposed = True
        self._unsubscribe()
        self.coordinator.close()
        self.export.cancel()

    def __repr__(self) -> str:
        return (
            f"DataGrid(data_mode='{self.data_mode}', "
            f"columns={[c['id'] for c in self.column_definitions]}, "
            f"rows={len(self.coordinator.rows)}, total={self.coordinator.total})"
        )
