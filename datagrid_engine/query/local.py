"""Client-side evaluation of canonical queries over in-memory data."""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd
import polars as pl

from ..core.columns import (
    build_column_definitions,
    get_column_types,
    normalize_columns,
)
from .compiler import compile_filter_state

logger = logging.getLogger(__name__)

TableData = Union[pl.LazyFrame, pl.DataFrame, pd.DataFrame, Sequence[Dict[str, Any]]]


def to_lazyframe(data: Optional[TableData]) -> pl.LazyFrame:
    """
    Convert supported table inputs to a polars LazyFrame.

    Args:
        data: LazyFrame, DataFrame, pandas DataFrame or a list of row dicts

    Returns:
        LazyFrame over the data

    Raises:
        ValueError: If the input type is not supported
    """
    if data is None:
        return pl.LazyFrame()
    if isinstance(data, pl.LazyFrame):
        return data
    if isinstance(data, pl.DataFrame):
        return data.lazy()
    if isinstance(data, pd.DataFrame):
        return pl.from_pandas(data).lazy()
    if isinstance(data, (list, tuple)):
        if len(data) == 0:
            return pl.LazyFrame()
        return pl.DataFrame(list(data), infer_schema_length=None).lazy()
    raise ValueError(
        f"Unsupported data type {type(data).__name__}. Provide a polars "
        f"LazyFrame/DataFrame, a pandas DataFrame or a list of row dicts."
    )


def _is_searchable_dtype(dtype: Any) -> bool:
    """Only scalar columns take part in the global text search."""
    if dtype.is_nested():
        return False
    return dtype not in (pl.Object, pl.Binary, pl.Null)


def apply_global_filter(
    data: pl.LazyFrame,
    text: Optional[str],
    columns: Optional[List[str]] = None,
) -> pl.LazyFrame:
    """
    Keep rows where any searchable column contains the text (case-insensitive).

    Args:
        data: LazyFrame to filter
        text: Search text; blank text leaves the data unchanged
        columns: Columns to search (default: all scalar columns)

    Returns:
        Filtered LazyFrame
    """
    if not text or not str(text).strip():
        return data

    schema = data.collect_schema()
    names = columns if columns is not None else schema.names()
    searchable = [
        name for name in names
        if name in schema and _is_searchable_dtype(schema[name])
    ]
    if not searchable:
        return data

    needle = str(text).strip().lower()
    matches = [
        pl.col(name)
        .cast(pl.Utf8)
        .str.to_lowercase()
        .str.contains(needle, literal=True)
        .fill_null(False)
        for name in searchable
    ]
    return data.filter(pl.any_horizontal(matches))


def apply_sorting(df: pl.DataFrame, sorting: Optional[List[Dict[str, Any]]]) -> pl.DataFrame:
    """
    Sort by the sort entries in priority order (first entry is primary).

    Entries naming unknown columns are skipped. Nulls sort last and equal
    keys keep their original order.
    """
    by = []
    descending = []
    for entry in sorting or []:
        column_id = entry.get("column_id")
        if not column_id or column_id not in df.columns:
            if column_id:
                logger.debug("Skipping sort on unknown column '%s'", column_id)
            continue
        by.append(column_id)
        descending.append(entry.get("direction") == "desc")

    if not by:
        return df
    return df.sort(by, descending=descending, nulls_last=True, maintain_order=True)


def apply_pagination(df: pl.DataFrame, pagination: Optional[Dict[str, Any]]) -> pl.DataFrame:
    """Slice a DataFrame down to the requested page."""
    if not pagination:
        return df
    page_size = int(pagination.get("page_size") or 0)
    if page_size <= 0:
        return df
    page_index = max(int(pagination.get("page_index") or 0), 0)
    return df.slice(page_index * page_size, page_size)


def filter_frame(
    data: pl.LazyFrame,
    query: Dict[str, Any],
    column_types: Optional[Dict[str, str]] = None,
    search_columns: Optional[List[str]] = None,
) -> pl.DataFrame:
    """
    Apply global filter, column filters and sorting, then collect.

    Column filters are pushed into the lazy query as polars expressions when
    every rule has one for its column dtype. Otherwise the compiled row
    predicates are evaluated on the collected rows.
    """
    data = apply_global_filter(data, query.get("global_filter"), search_columns)
    group = compile_filter_state(query.get("column_filter"), column_types)

    if group.is_empty:
        return apply_sorting(data.collect(), query.get("sorting"))

    expr = group.to_expr(data.collect_schema())
    if expr is not None:
        return apply_sorting(data.filter(expr).collect(), query.get("sorting"))

    logger.debug("Column filters evaluated per row: %s", group)
    df = data.collect()
    if df.height > 0:
        mask = [group.matches(row) for row in df.iter_rows(named=True)]
        df = df.filter(pl.Series("mask", mask, dtype=pl.Boolean))
    return apply_sorting(df, query.get("sorting"))


def apply_query(
    data: Union[pl.LazyFrame, pl.DataFrame],
    query: Dict[str, Any],
    column_types: Optional[Dict[str, str]] = None,
    search_columns: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Evaluate a canonical query against in-memory data.

    Args:
        data: Polars data to query
        query: Canonical query dict
        column_types: Optional column id to type mapping for filter rules
        search_columns: Columns included in the global text search

    Returns:
        Dict with ``data`` (list of row dicts for the page) and ``total``
        (row count after filtering, before pagination)
    """
    if isinstance(data, pl.DataFrame):
        data = data.lazy()

    df = filter_frame(data, query, column_types, search_columns)
    total = df.height
    page = apply_pagination(df, query.get("pagination"))
    return {"data": page.to_dicts(), "total": total}


def query_total(
    data: Union[pl.LazyFrame, pl.DataFrame],
    query: Dict[str, Any],
    column_types: Optional[Dict[str, str]] = None,
) -> int:
    """Count the rows matching a query, ignoring pagination."""
    if isinstance(data, pl.DataFrame):
        data = data.lazy()
    return filter_frame(data, query, column_types).height


class LocalDataSource:
    """
    In-memory data source used as the fetch function in client mode.

    The fetch is an identity fetch followed by local filtering, sorting and
    pagination, so the engine treats client and server data the same way.

    Example:
        source = LocalDataSource(pl.LazyFrame({"id": [1, 2], "name": ["a", "b"]}))
        result = await source.fetch(query)
        # {"data": [...], "total": 2}
    """

    def __init__(
        self,
        data: Optional[TableData] = None,
        columns: Optional[List[Dict[str, Any]]] = None,
    ):
        """
        Initialize the data source.

        Args:
            data: Table data (polars, pandas or list of row dicts)
            columns: Column definitions. Column types and ``searchable``
                flags are read from them; types missing there are inferred
                from the data schema.
        """
        self._columns = normalize_columns(columns) if columns else None
        self.set_data(data)

    def set_data(self, data: Optional[TableData]) -> None:
        """Replace the underlying data."""
        self._data = to_lazyframe(data)
        schema = self._data.collect_schema()

        inferred = get_column_types(build_column_definitions(schema))
        declared = get_column_types(self._columns or [])
        self._column_types = {**inferred, **declared}

        if self._columns:
            self._search_columns = [
                col["id"] for col in self._columns
                if col.get("searchable", True) and col["id"] in schema
            ]
        else:
            self._search_columns = None

    @property
    def data(self) -> pl.LazyFrame:
        return self._data

    @property
    def column_types(self) -> Dict[str, str]:
        return dict(self._column_types)

    def schema(self) -> Any:
        """Get the polars schema of the data."""
        return self._data.collect_schema()

    def run(self, query: Dict[str, Any]) -> Dict[str, Any]:
        """Evaluate a query synchronously."""
        return apply_query(
            self._data, query, self._column_types, self._search_columns
        )

    async def fetch(self, query: Dict[str, Any]) -> Dict[str, Any]:
        """Fetch contract: ``query -> {"data", "total"}``."""
        return self.run(query)

    __call__ = fetch

    def filtered_rows(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """All rows matching the query's filters and sort, without pagination."""
        df = filter_frame(
            self._data, query, self._column_types, self._search_columns
        )
        return df.to_dicts()

    def all_rows(self) -> List[Dict[str, Any]]:
        """Every row of the data, unfiltered."""
        return self._data.collect().to_dicts()

    def __repr__(self) -> str:
        return f"LocalDataSource(columns={self.schema().names()})"
