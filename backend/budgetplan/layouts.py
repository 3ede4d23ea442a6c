"""Layout strategies that locate month columns and work-package blocks.

A sheet carries no schema: the month header is recognised by the date serials
it holds and work-package blocks by a short code in one of the first columns.
Each ``BlockLayout`` turns a grid into a ``SheetLayout`` (month columns plus
blocks of raw resource rows); turning those rows into allocations is left to
the assembler so every layout shares the same date and bounds logic.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .dates import decode_serial, is_number, is_plan_year, is_serial_date, serial_to_date
from .grid import cell, text
from .models import Cell, Grid, ProjectMetadata, SkipRecord

BLOCK_CODE_RE = re.compile(r"^(WP|A)\d+$", re.IGNORECASE)
BLOCK_SCAN_COLUMNS = 5
MIN_HEADER_DATES = 3
MIN_BARE_YEARS = 3
AGGREGATE_MARKERS = ("total", "subtotal", "contagem", "células cinza")
# Salary source rows also carry engineering summary lines.
SALARY_AGGREGATE_MARKERS = AGGREGATE_MARKERS + ("eng.",)

REPORT_SERIAL_CEILING = 60000
_ACTIVITY_CODE_RE = re.compile(r"^([A-Za-z0-9.\-]+)\s+(.+)$")


@dataclass
class MonthColumn:
    index: int
    serial: float
    month: int
    year: int


@dataclass
class BlockRow:
    row_index: int
    resource_name: str
    name_column: int
    cells: List[Cell]

    def month_values(self, month_columns: List[MonthColumn]) -> List[Cell]:
        """Values under each month column, in ``month_columns`` order.

        Some exports pack the monthly values right after the resource name
        instead of under the header serials; when nothing numeric sits under
        the month columns the packed run is read positionally instead.
        """
        aligned = [cell(self.cells, column.index) for column in month_columns]
        if any(is_number(value) for value in aligned) or not month_columns:
            return aligned
        first = self.name_column + 1
        if month_columns[0].index <= first:
            return aligned
        return [cell(self.cells, first + offset) for offset in range(len(month_columns))]


@dataclass
class Block:
    code: str
    name: str
    row_index: int
    rows: List[BlockRow] = field(default_factory=list)


@dataclass
class SheetLayout:
    kind: str
    month_columns: List[MonthColumn] = field(default_factory=list)
    blocks: List[Block] = field(default_factory=list)
    metadata: ProjectMetadata = field(default_factory=ProjectMetadata)
    percent_values: bool = False
    header_row: Optional[int] = None
    skips: List[SkipRecord] = field(default_factory=list)


def is_aggregate_name(name: object, markers: Sequence[str] = AGGREGATE_MARKERS) -> bool:
    value = text(name).lower()
    if not value:
        return True
    return any(marker in value for marker in markers)


def find_month_header_row(grid: Grid) -> Optional[int]:
    for idx, row in enumerate(grid):
        if not row:
            continue
        dates = sum(1 for value in row if is_serial_date(value))
        years = sum(1 for value in row if is_plan_year(value))
        if years >= MIN_BARE_YEARS and dates == 0:
            continue
        if dates >= MIN_HEADER_DATES:
            return idx

    # Short plans: a row whose only numbers are date serials.
    for idx, row in enumerate(grid):
        if not row or find_block_start(row) is not None:
            continue
        numbers = [value for value in row if is_number(value)]
        if numbers and all(is_serial_date(value) and value < REPORT_SERIAL_CEILING for value in numbers):
            return idx
    return None


def month_columns(row: List[Cell]) -> List[MonthColumn]:
    columns: List[MonthColumn] = []
    for idx, value in enumerate(row or []):
        if is_serial_date(value):
            month, year = decode_serial(value)
            columns.append(MonthColumn(index=idx, serial=value, month=month, year=year))
    return columns


def find_block_start(row: List[Cell]) -> Optional[int]:
    for idx in range(min(BLOCK_SCAN_COLUMNS, len(row or []))):
        value = row[idx]
        if isinstance(value, str) and BLOCK_CODE_RE.match(value.strip()):
            return idx
    return None


class BlockLayout:
    kind = "base"

    def matches(self, grid: Grid) -> bool:
        raise NotImplementedError

    def scan(self, grid: Grid, sheet: str = "") -> SheetLayout:
        raise NotImplementedError


class CodeBlockLayout(BlockLayout):
    """Blocks opened by a ``WP1``/``A3`` code: code, name, resource columns."""

    kind = "code_blocks"

    def matches(self, grid: Grid) -> bool:
        return any(find_block_start(row) is not None for row in grid)

    def scan(self, grid: Grid, sheet: str = "") -> SheetLayout:
        layout = SheetLayout(kind=self.kind)
        layout.header_row = find_month_header_row(grid)
        if layout.header_row is not None:
            layout.month_columns = month_columns(grid[layout.header_row])
        else:
            layout.skips.append(SkipRecord("no_month_header", "No row with month date serials", sheet))

        current: Optional[Block] = None
        name_column = -1
        for idx, row in enumerate(grid):
            if not row or idx == layout.header_row:
                continue
            start = find_block_start(row)
            if start is not None:
                current = Block(
                    code=row[start].strip(),
                    name=text(cell(row, start + 1)),
                    row_index=idx,
                )
                layout.blocks.append(current)
                name_column = start + 2
            if current is None:
                continue

            resource_name = cell(row, name_column)
            if not isinstance(resource_name, str) or is_aggregate_name(resource_name):
                if text(resource_name):
                    layout.skips.append(
                        SkipRecord("aggregate_row", f"Row label {text(resource_name)!r}", sheet, idx)
                    )
                continue
            current.rows.append(
                BlockRow(row_index=idx, resource_name=resource_name.strip(), name_column=name_column, cells=row)
            )

        if not layout.blocks:
            layout.skips.append(SkipRecord("no_blocks", "No work-package code found", sheet))
        return layout


class ReportLayout(BlockLayout):
    """REPORT sheet: one row per resource and activity under a month header."""

    kind = "report"

    def matches(self, grid: Grid) -> bool:
        return self._header_index(grid) is not None

    def _header_index(self, grid: Grid) -> Optional[int]:
        for idx, row in enumerate(grid):
            if text(cell(row, 0)) == "Recursos" and text(cell(row, 1)) == "Atividades":
                if any(self._is_month(value) for value in row[2:]):
                    return idx
        return None

    @staticmethod
    def _is_month(value: Cell) -> bool:
        return is_serial_date(value) and value < REPORT_SERIAL_CEILING

    def scan(self, grid: Grid, sheet: str = "") -> SheetLayout:
        layout = SheetLayout(kind=self.kind, percent_values=True)
        layout.metadata = self._metadata(grid)

        header = self._header_index(grid)
        if header is None:
            layout.skips.append(SkipRecord("no_month_header", "No 'Recursos'/'Atividades' header", sheet))
            return layout
        layout.header_row = header

        row = grid[header]
        started = False
        for col in range(2, len(row)):
            value = row[col]
            if self._is_month(value):
                month, year = decode_serial(value)
                layout.month_columns.append(MonthColumn(index=col, serial=value, month=month, year=year))
                started = True
            elif started:
                break

        blocks = {}
        for idx in range(header + 1, len(grid)):
            row = grid[idx]
            first = text(cell(row, 0))
            if first.lower() == "total" or all(text(value) == "" for value in row or []):
                break
            resource = cell(row, 0)
            activity = cell(row, 1)
            if not isinstance(resource, str) or not isinstance(activity, str):
                continue
            resource_name = resource.strip()
            activity_name = activity.strip()
            if (
                not resource_name
                or not activity_name
                or "total" in resource_name.lower()
                or "total" in activity_name.lower()
            ):
                layout.skips.append(SkipRecord("aggregate_row", f"Row label {resource_name!r}", sheet, idx))
                continue

            block = blocks.get(activity_name)
            if block is None:
                parts = _ACTIVITY_CODE_RE.match(activity_name)
                code = parts.group(1) if parts else activity_name
                block = Block(code=code, name=activity_name, row_index=idx)
                blocks[activity_name] = block
                layout.blocks.append(block)
            block.rows.append(BlockRow(row_index=idx, resource_name=resource_name, name_column=0, cells=row))
        return layout

    def _metadata(self, grid: Grid) -> ProjectMetadata:
        metadata = ProjectMetadata()
        for row in grid:
            label = text(cell(row, 0))
            value = cell(row, 1)
            if label == "Data de arranque:" and is_number(value):
                metadata.project_start = serial_to_date(value)
            elif label == "Data de conclusão:" and is_number(value):
                metadata.project_end = serial_to_date(value)
            elif label == "Nome Projeto:" and isinstance(value, str):
                metadata.name = value.strip()
            elif label == "Taxa de financiamento:" and is_number(value):
                metadata.funding_rate_percent = round(value * 100, 2)
        return metadata


LAYOUTS: List[BlockLayout] = [ReportLayout(), CodeBlockLayout()]


def detect_layout(grid: Grid) -> BlockLayout:
    for layout in LAYOUTS:
        if layout.matches(grid):
            return layout
    return LAYOUTS[-1]
