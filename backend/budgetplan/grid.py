from __future__ import annotations

import io
import zipfile
from datetime import date, datetime, time
from typing import Dict, List

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .dates import datetime_to_serial
from .errors import WorkbookReadError
from .models import Cell, Grid


def normalize_cell(value: object) -> Cell:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, datetime):
        return datetime_to_serial(value)
    if isinstance(value, date):
        return datetime_to_serial(datetime(value.year, value.month, value.day))
    if isinstance(value, time):
        return str(value)
    if isinstance(value, (int, float, str)):
        return value
    return str(value)


def read_workbook(file_bytes: bytes, filename: str = "workbook.xlsx") -> Dict[str, Grid]:
    """Convert every sheet of an xlsx workbook into a row-major grid.

    Date-formatted cells come back as spreadsheet serials so the header
    heuristics see the same numbers a raw sheet export would carry.
    """
    try:
        workbook = load_workbook(io.BytesIO(file_bytes), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise WorkbookReadError(f"Could not read workbook '{filename}': {exc}") from exc

    sheets: Dict[str, Grid] = {}
    try:
        for ws in workbook.worksheets:
            rows: Grid = []
            for row in ws.iter_rows(values_only=True):
                rows.append([normalize_cell(value) for value in row])
            sheets[ws.title] = trim_grid(rows)
    finally:
        workbook.close()
    return sheets


def trim_grid(rows: Grid) -> Grid:
    trimmed: Grid = []
    for row in rows:
        values = list(row)
        while values and values[-1] is None:
            values.pop()
        trimmed.append(values)
    while trimmed and not trimmed[-1]:
        trimmed.pop()
    return trimmed


def cell(row: List[Cell], index: int) -> Cell:
    if row is None or index < 0 or index >= len(row):
        return None
    return row[index]


def text(value: Cell) -> str:
    if value is None or isinstance(value, bool):
        return ""
    return str(value).strip()
