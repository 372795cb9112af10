"""Column definitions: generation from a schema, normalization and layout."""

from typing import Any, Dict, Iterable, List, Optional

import polars as pl

NUMERIC_DTYPES = (
    pl.Int8,
    pl.Int16,
    pl.Int32,
    pl.Int64,
    pl.UInt8,
    pl.UInt16,
    pl.UInt32,
    pl.UInt64,
    pl.Float32,
    pl.Float64,
)


def column_type_for_dtype(dtype: Any) -> str:
    """
    Map a polars dtype to a filter column type.

    Args:
        dtype: Polars data type

    Returns:
        One of 'number', 'boolean', 'date' or 'text'
    """
    if dtype in NUMERIC_DTYPES:
        return "number"
    if dtype == pl.Boolean:
        return "boolean"
    if dtype in (pl.Date, pl.Datetime, pl.Time):
        return "date"
    return "text"


def build_column_definitions(schema: Any) -> List[Dict[str, Any]]:
    """
    Auto-generate column definitions from a polars schema.

    Args:
        schema: Polars Schema (or any mapping of names to dtypes)

    Returns:
        List of column definition dicts with id, header, accessor_key and type
    """
    definitions = []
    for name, dtype in schema.items():
        definitions.append({
            "id": name,
            "header": name.replace("_", " ").title(),
            "accessor_key": name,
            "type": column_type_for_dtype(dtype),
        })
    return definitions


def normalize_columns(columns: Optional[Iterable[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """
    Return copies of column definitions with an ``id`` on every column.

    The id is taken from ``id``, then ``accessor_key``, then ``field``.

    Raises:
        ValueError: If a column has no usable identifier or ids repeat
    """
    normalized: List[Dict[str, Any]] = []
    seen = set()
    for column in columns or []:
        col_def = dict(column)
        column_id = (
            col_def.get("id")
            or col_def.get("accessor_key")
            or col_def.get("field")
        )
        if not column_id:
            raise ValueError(
                f"Column definition {column!r} needs an 'id', 'accessor_key' or 'field'"
            )
        if column_id in seen:
            raise ValueError(f"Duplicate column id '{column_id}'")
        seen.add(column_id)
        col_def["id"] = column_id
        normalized.append(col_def)
    return normalized


def get_column_types(columns: Iterable[Dict[str, Any]]) -> Dict[str, str]:
    """Map column ids to their declared types (columns without a type are skipped)."""
    return {col["id"]: col["type"] for col in columns if col.get("type")}


def ordered_columns(
    columns: List[Dict[str, Any]],
    column_order: Optional[List[str]] = None,
    column_pinning: Optional[Dict[str, List[str]]] = None,
) -> List[Dict[str, Any]]:
    """
    Order columns the way the grid lays them out.

    Left-pinned columns come first, then unpinned columns, then
    right-pinned columns. Within each region, ids listed in
    ``column_order`` come first in that order, followed by the remaining
    columns in definition order.
    """
    by_id = {col["id"]: col for col in columns}
    order = [cid for cid in (column_order or []) if cid in by_id]
    ordered_ids = order + [col["id"] for col in columns if col["id"] not in order]

    pinning = column_pinning or {}
    left = [cid for cid in pinning.get("left", []) if cid in by_id]
    right = [cid for cid in pinning.get("right", []) if cid in by_id and cid not in left]
    center = [cid for cid in ordered_ids if cid not in left and cid not in right]

    return [by_id[cid] for cid in left + center + right]


def visible_columns(
    columns: List[Dict[str, Any]],
    column_visibility: Optional[Dict[str, bool]] = None,
    column_order: Optional[List[str]] = None,
    column_pinning: Optional[Dict[str, List[str]]] = None,
    for_export: bool = False,
) -> List[Dict[str, Any]]:
    """
    Get the visible columns in layout order.

    A column is hidden when the visibility map holds False for its id.
    With ``for_export``, columns flagged ``hide_in_export`` are dropped too.
    """
    visibility = column_visibility or {}
    result = []
    for col in ordered_columns(columns, column_order, column_pinning):
        if visibility.get(col["id"], True) is False:
            continue
        if for_export and col.get("hide_in_export"):
            continue
        result.append(col)
    return result
