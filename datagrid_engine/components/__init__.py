"""Grid facade."""

from .grid import (
    ColumnsAPI,
    DataAPI,
    DataGrid,
    ExportAPI,
    FilteringAPI,
    PaginationAPI,
    SortingAPI,
)

__all__ = [
    "DataGrid",
    "FilteringAPI",
    "SortingAPI",
    "PaginationAPI",
    "ColumnsAPI",
    "DataAPI",
    "ExportAPI",
]
