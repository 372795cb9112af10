"""Projection of rows onto export columns."""

import json
import logging
import math
from datetime import date, datetime, time
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


def resolve_header(column: Dict[str, Any]) -> str:
    """
    Get the export header of a column.

    ``export_header`` wins over a string ``header``, which wins over the id.
    """
    if column.get("export_header"):
        return str(column["export_header"])
    if isinstance(column.get("header"), str) and column["header"]:
        return column["header"]
    return str(column["id"])


def to_export_string(value: Any) -> str:
    """
    Convert a cell value to its exported text.

    None and NaN become empty strings, booleans lowercase, dates and times
    ISO 8601, containers JSON.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isnan(value):
        return ""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def _raw_value(column: Dict[str, Any], row: Any) -> Any:
    key = column.get("accessor_key") or column["id"]
    if isinstance(row, dict):
        return row.get(key)
    return getattr(row, key, None)


def resolve_value(column: Dict[str, Any], row: Any) -> Any:
    """
    Resolve the display value of a cell.

    The value comes from ``value_getter``, then a callable ``accessor``,
    then the row field named by ``accessor_key`` or the column id. An
    optional ``value_formatter`` is applied last. A failing getter or
    formatter is logged and the raw field value used instead.
    """
    value_getter = column.get("value_getter")
    accessor = column.get("accessor")
    try:
        if callable(value_getter):
            value = value_getter(row)
        elif callable(accessor):
            value = accessor(row)
        else:
            value = _raw_value(column, row)
    except Exception as e:
        logger.warning("Value getter for column '%s' failed: %s", column["id"], e)
        value = _raw_value(column, row)

    value_formatter = column.get("value_formatter")
    if callable(value_formatter):
        try:
            value = value_formatter(value)
        except Exception as e:
            logger.warning("Value formatter for column '%s' failed: %s", column["id"], e)
    return value


def project_row(row: Any, columns: List[Dict[str, Any]]) -> List[str]:
    """Project one row onto the export columns as strings."""
    return [to_export_string(resolve_value(column, row)) for column in columns]
