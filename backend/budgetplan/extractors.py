from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from .dates import is_number
from .grid import cell, text
from .layouts import SALARY_AGGREGATE_MARKERS, is_aggregate_name
from .models import FacetResult, Grid, Material, MaterialCategory, SalaryIndex, SkipRecord

# Reported cost = base salary * employer overhead (1.223) * 14 payments / 11 months.
EMPLOYER_OVERHEAD = 1.223
PAYMENTS_PER_YEAR = 14
WORKING_MONTHS = 11
SALARY_DIVISOR = EMPLOYER_OVERHEAD * PAYMENTS_PER_YEAR / WORKING_MONTHS

SALARY_NAME_COLUMN = 5
FUNDING_LABEL_COLUMN = 6
ETI_LABEL_COLUMN = 4
MATERIALS_FIRST_ROW = 6

PROJECT_NAME_LABEL = "Nome do projeto"
FUNDING_TYPE_LABEL = "Tipo de projeto"
FUNDING_RATE_LABEL = "Taxa de financiamento"
OVERHEAD_LABEL = "Custos indiretos"

CATEGORY_LABELS: Dict[str, MaterialCategory] = {
    "Materiais": MaterialCategory.MATERIAIS,
    "Serviços Terceiros": MaterialCategory.SERVICOS_TERCEIROS,
    "Outros Serviços": MaterialCategory.OUTROS_SERVICOS,
    "Deslocações e Estadas": MaterialCategory.DESLOCACAO_ESTADAS,
    "Outros Custos": MaterialCategory.OUTROS_CUSTOS,
    "Custos Estrutura": MaterialCategory.CUSTOS_ESTRUTURA,
}


def map_category(label: object) -> MaterialCategory:
    return CATEGORY_LABELS.get(text(label), MaterialCategory.MATERIAIS)


def extract_project_name(grid: Grid) -> FacetResult:
    result = FacetResult(facet="project_name")
    for row in grid:
        if text(cell(row, 0)) == PROJECT_NAME_LABEL and text(cell(row, 1)):
            result.value = text(cell(row, 1))
            result.found = True
            break
    return result


def extract_funding(grid: Grid) -> FacetResult:
    funding: Dict[str, object] = {"funding_type": None, "funding_rate_percent": None, "overhead_percent": None}
    result = FacetResult(facet="funding", value=funding)
    label_col = FUNDING_LABEL_COLUMN
    for row in grid:
        label = text(cell(row, label_col))
        value = cell(row, label_col + 1)
        if label == FUNDING_TYPE_LABEL and text(value):
            funding["funding_type"] = text(value)
        elif label == FUNDING_RATE_LABEL:
            if is_number(value):
                funding["funding_rate_percent"] = round(float(value), 2)
            else:
                result.notes.append(f"Non-numeric funding rate {value!r}")
        elif label == OVERHEAD_LABEL:
            if is_number(value):
                funding["overhead_percent"] = round(float(value), 2)
            else:
                result.notes.append(f"Non-numeric overhead {value!r}")
    result.found = any(value is not None for value in funding.values())
    return result


def extract_eti_value(grid: Grid) -> FacetResult:
    result = FacetResult(facet="eti_unit_value")
    for row in grid:
        label = cell(row, ETI_LABEL_COLUMN)
        value = cell(row, ETI_LABEL_COLUMN + 1)
        if isinstance(label, str) and label.strip() and is_number(value) and value > 0:
            result.value = round(float(value), 2)
            result.found = True
            break
    return result


def extract_materials(grid: Grid, sheet: str = "", today: Optional[date] = None) -> FacetResult:
    current_year = (today or date.today()).year
    materials: List[Material] = []
    result = FacetResult(facet="materials", value=materials)

    for idx in range(MATERIALS_FIRST_ROW, len(grid)):
        row = grid[idx]
        name = text(cell(row, 0))
        if not name:
            continue
        activity = text(cell(row, 1))
        year = cell(row, 3)
        unit_cost = cell(row, 5)
        units = cell(row, 6)
        if not activity or not unit_cost or not units:
            continue
        if not is_number(unit_cost) or not is_number(units):
            result.skips.append(SkipRecord("invalid_number", f"Material {name!r} has non-numeric cost or units", sheet, idx))
            continue
        quantity = int(units)
        if quantity < 1 or quantity != units:
            result.skips.append(SkipRecord("invalid_number", f"Material {name!r} has quantity {units!r}", sheet, idx))
            continue
        materials.append(
            Material(
                name=name,
                unit_price=Decimal(str(unit_cost)),
                quantity=quantity,
                usage_year=int(year) if is_number(year) else current_year,
                category=map_category(cell(row, 4)),
                work_package_ref=activity,
            )
        )

    result.found = bool(materials)
    return result


def salary_keys(name: str) -> List[str]:
    normalized = name.strip().lower()
    keys = [normalized]
    for separator in (" - ", "-"):
        if separator in normalized:
            prefix = normalized.split(separator)[0].strip()
            if prefix and prefix not in keys:
                keys.append(prefix)
    return keys


def normalize_salary(reported: float) -> float:
    return reported / SALARY_DIVISOR


def infer_salaries(grid: Grid, name_column: int = SALARY_NAME_COLUMN) -> SalaryIndex:
    salaries: SalaryIndex = {}
    for row in grid:
        name = cell(row, name_column)
        reported = cell(row, name_column + 1)
        if not isinstance(name, str) or is_aggregate_name(name, SALARY_AGGREGATE_MARKERS):
            continue
        if not is_number(reported) or reported <= 0:
            continue
        base = normalize_salary(float(reported))
        for key in salary_keys(name):
            salaries[key] = base
    return salaries


def lookup_salary(salaries: SalaryIndex, name: str) -> Optional[float]:
    for key in salary_keys(name):
        if key in salaries:
            return salaries[key]
    return None


def extract_salaries(grid: Grid, name_column: int = SALARY_NAME_COLUMN) -> FacetResult:
    salaries = infer_salaries(grid, name_column)
    return FacetResult(facet="salaries", value=salaries, found=bool(salaries))
