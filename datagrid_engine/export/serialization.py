"""CSV and XLSX serialization of projected export records."""

import csv
import io
import os
from pathlib import Path
from typing import Any, List, Union

import pandas as pd
from openpyxl.utils import get_column_letter

CSV = "csv"
EXCEL = "excel"

FORMATS = {
    CSV: ("csv", "text/csv"),
    EXCEL: ("xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
}

SHEET_NAME = "Export"

# Leading characters spreadsheet apps interpret as a formula
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

MIN_COLUMN_WIDTH = 10
MAX_COLUMN_WIDTH = 50
WIDTH_SAMPLE_ROWS = 100


def normalize_format(format: str) -> str:
    """
    Map a format name to ``csv`` or ``excel`` (``xlsx`` is accepted too).

    Raises:
        ValueError: If the format is not supported
    """
    name = (format or "").lower()
    if name == "xlsx":
        name = EXCEL
    if name not in FORMATS:
        raise ValueError(f"Unsupported export format '{format}'. Use 'csv' or 'excel'.")
    return name


def build_frame(headers: List[str], records: List[List[str]]) -> pd.DataFrame:
    """Build the intermediate frame both formats are written from."""
    return pd.DataFrame(records, columns=headers, dtype=object)


def sanitize_csv_value(value: Any) -> Any:
    """Prefix formula-like strings with a quote so they stay text."""
    if isinstance(value, str) and value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


def to_csv_bytes(
    frame: pd.DataFrame, include_headers: bool = True, sanitize: bool = False
) -> bytes:
    """
    Write the frame as UTF-8 CSV.

    Values containing the delimiter, the quote character or a newline are
    quoted, with quotes doubled.
    """
    if sanitize and not frame.empty:
        frame = frame.apply(lambda column: column.map(sanitize_csv_value))
    text = frame.to_csv(
        index=False,
        header=include_headers,
        quoting=csv.QUOTE_MINIMAL,
        lineterminator="\n",
    )
    return text.encode("utf-8")


def autosize_columns(sheet: Any, frame: pd.DataFrame, include_headers: bool = True) -> None:
    """Size worksheet columns to their header and first rows of content."""
    for position, header in enumerate(frame.columns, start=1):
        sample = frame.iloc[:WIDTH_SAMPLE_ROWS, position - 1]
        lengths = [len(str(value)) for value in sample]
        if include_headers:
            lengths.append(len(str(header)))
        width = max(lengths + [MIN_COLUMN_WIDTH])
        sheet.column_dimensions[get_column_letter(position)].width = min(width, MAX_COLUMN_WIDTH)


def to_xlsx_bytes(frame: pd.DataFrame, include_headers: bool = True) -> bytes:
    """Write the frame as a single-sheet XLSX workbook."""
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=SHEET_NAME, index=False, header=include_headers)
        autosize_columns(writer.sheets[SHEET_NAME], frame, include_headers)
    return buffer.getvalue()


def serialize(
    frame: pd.DataFrame,
    format: str,
    include_headers: bool = True,
    sanitize_csv: bool = False,
) -> bytes:
    """Serialize the frame in the given format."""
    if normalize_format(format) == CSV:
        return to_csv_bytes(frame, include_headers, sanitize_csv)
    return to_xlsx_bytes(frame, include_headers)


def export_filename(filename: str, format: str) -> str:
    """Append the format's extension unless the name already has it."""
    extension = FORMATS[normalize_format(format)][0]
    if filename.lower().endswith(f".{extension}"):
        return filename
    return f"{filename}.{extension}"


def write_file(content: bytes, output_dir: Union[str, Path], filename: str) -> Path:
    """
    Write content to ``output_dir/filename`` through a temporary file.

    The temporary file is removed if writing fails, so no partial output
    is left behind.
    """
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    tmp_path = directory / f".{filename}.part"
    try:
        tmp_path.write_bytes(content)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path


def mime_type_for(format: str) -> str:
    return FORMATS[normalize_format(format)][1]