from __future__ import annotations

import logging
import re
from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .config import ImportConfig
from .dates import is_number
from .extractors import (
    extract_eti_value,
    extract_funding,
    extract_materials,
    extract_project_name,
    extract_salaries,
    lookup_salary,
)
from .layouts import Block, ReportLayout, SheetLayout, detect_layout
from .matching import as_identities, explain_match
from .models import (
    Cell,
    FacetResult,
    Grid,
    ImportedPlan,
    ImportReport,
    Material,
    MonthlyAllocation,
    ProjectMetadata,
    Resource,
    SalaryIndex,
    SkipRecord,
    WorkPackage,
)

logger = logging.getLogger(__name__)

_MATERIAL_CODE_RE = re.compile(r"^A\d+")


def allocation_fraction(value: Cell, percent_values: bool = False) -> Optional[float]:
    if not is_number(value):
        return None
    if 0 < value <= 1:
        return float(value)
    if percent_values and 1 < value <= 100:
        return round(float(value) / 100, 4)
    return None


def read_allocations(
    values: Sequence[Cell],
    layout: SheetLayout,
) -> List[MonthlyAllocation]:
    allocations: List[MonthlyAllocation] = []
    seen = set()
    for column, value in zip(layout.month_columns, values):
        fraction = allocation_fraction(value, layout.percent_values)
        if fraction is None or (column.month, column.year) in seen:
            continue
        seen.add((column.month, column.year))
        allocations.append(MonthlyAllocation(month=column.month, year=column.year, fraction=fraction))
    return allocations


def merge_allocations(resource: Resource, allocations: List[MonthlyAllocation]) -> None:
    months = {(a.month, a.year) for a in resource.allocations}
    for allocation in allocations:
        if (allocation.month, allocation.year) not in months:
            resource.allocations.append(allocation)
            months.add((allocation.month, allocation.year))
    resource.allocations.sort(key=lambda a: (a.year, a.month))


def infer_bounds(items: Sequence[object]) -> Tuple[Optional[date], Optional[date]]:
    starts = [item.inferred_start for item in items if item.inferred_start is not None]
    ends = [item.inferred_end for item in items if item.inferred_end is not None]
    return (min(starts) if starts else None, max(ends) if ends else None)


def build_work_package(
    block: Block,
    layout: SheetLayout,
    identities: Sequence[object],
    salaries: SalaryIndex,
    config: ImportConfig,
    report: ImportReport,
    sheet: str = "",
) -> WorkPackage:
    wp = WorkPackage(code=block.code, name=block.name)
    by_name: Dict[Tuple[str, Optional[str]], Resource] = {}

    for row in block.rows:
        allocations = read_allocations(row.month_values(layout.month_columns), layout)
        if not allocations:
            layout.skips.append(
                SkipRecord("no_allocation", f"Resource {row.resource_name!r} has no monthly occupancy", sheet, row.row_index)
            )
            continue

        match = explain_match(
            row.resource_name,
            identities,
            threshold=config.match_threshold,
            hiring_threshold=config.hiring_match_threshold,
        )
        if match.identity_id is None:
            if row.resource_name not in report.unmatched_resources:
                report.unmatched_resources.append(row.resource_name)
            if match.method == "ambiguous":
                logger.warning("Resource %r is ambiguous (%d candidates)", row.resource_name, match.candidates)

        key = (row.resource_name.lower(), match.identity_id)
        resource = by_name.get(key)
        if resource is None:
            resource = Resource(
                display_name=row.resource_name,
                identity_id=match.identity_id,
                monthly_salary_base=lookup_salary(salaries, row.resource_name),
            )
            by_name[key] = resource
            wp.resources.append(resource)
        merge_allocations(resource, allocations)

    wp.inferred_start, wp.inferred_end = infer_bounds(wp.resources)
    return wp


def build_work_packages(
    layout: SheetLayout,
    identities: Sequence[object],
    salaries: Optional[SalaryIndex] = None,
    config: Optional[ImportConfig] = None,
    report: Optional[ImportReport] = None,
    sheet: str = "",
) -> List[WorkPackage]:
    config = config or ImportConfig()
    report = report if report is not None else ImportReport()
    identities = as_identities(identities)
    return [
        build_work_package(block, layout, identities, salaries or {}, config, report, sheet)
        for block in layout.blocks
    ]


def _work_package_code(wp: WorkPackage) -> str:
    return wp.name.split(" - ")[0].strip()


def resolve_work_package(label: str, work_packages: Sequence[WorkPackage]) -> Optional[WorkPackage]:
    for wp in work_packages:
        if wp.name == label:
            return wp
    for wp in work_packages:
        code = _work_package_code(wp)
        if code and code == label:
            return wp
    code_match = _MATERIAL_CODE_RE.match(label)
    if code_match:
        for wp in work_packages:
            if wp.code == code_match.group(0):
                return wp
    return None


def assign_materials(work_packages: List[WorkPackage], materials: List[Material]) -> List[Material]:
    """Attach each material to a work package; return those that fell back.

    Unresolved labels go to the first work package so no line item is lost.
    """
    fallback: List[Material] = []
    if not work_packages:
        return list(materials)
    for material in materials:
        wp = resolve_work_package(material.work_package_ref, work_packages)
        if wp is None:
            wp = work_packages[0]
            fallback.append(material)
        wp.materials.append(material)
    return fallback


def scan_block_sheet(
    grid: Grid,
    sheet: str,
    identities: Sequence[object],
    config: ImportConfig,
    report: ImportReport,
) -> Tuple[List[WorkPackage], SheetLayout]:
    strategy = detect_layout(grid)
    layout = strategy.scan(grid, sheet)
    report_layout = isinstance(strategy, ReportLayout)
    salaries: SalaryIndex = {}
    if not report_layout:
        salary_facet = extract_salaries(grid, config.salary_name_column)
        report.facets.append(salary_facet)
        salaries = salary_facet.value
    work_packages = build_work_packages(layout, identities, salaries, config, report, sheet)
    # Blocks without any allocated resource carry no plan information.
    if report_layout:
        work_packages = [wp for wp in work_packages if wp.resources]
    return work_packages, layout


def import_workbook(
    sheets: Mapping[str, Grid],
    identities: Sequence[object],
    config: Optional[ImportConfig] = None,
    today: Optional[date] = None,
) -> ImportedPlan:
    """Turn named sheet grids into a plan. Missing sheets leave facets empty."""
    config = config or ImportConfig()
    identities = as_identities(identities)
    report = ImportReport()
    metadata = ProjectMetadata()
    work_packages: List[WorkPackage] = []

    name_facet = FacetResult(facet="project_name")
    funding_facet = FacetResult(facet="funding")
    for grid in sheets.values():
        if not name_facet.found:
            name_facet = extract_project_name(grid)
        if not funding_facet.found:
            funding_facet = extract_funding(grid)
    report.facets.extend([name_facet, funding_facet])
    if name_facet.found:
        metadata.name = name_facet.value
    if funding_facet.found:
        metadata.funding_type = funding_facet.value["funding_type"]
        metadata.funding_rate_percent = funding_facet.value["funding_rate_percent"]
        metadata.overhead_percent = funding_facet.value["overhead_percent"]

    rh_grid = sheets.get(config.rh_sheet)
    blocks_facet = FacetResult(facet="work_packages")
    if rh_grid is not None:
        eti_facet = extract_eti_value(rh_grid)
        report.facets.append(eti_facet)
        metadata.eti_unit_value = eti_facet.value
        work_packages, layout = scan_block_sheet(rh_grid, config.rh_sheet, identities, config, report)
        report.layout = layout.kind
        blocks_facet.skips.extend(layout.skips)
        _merge_metadata(metadata, layout.metadata)
    else:
        blocks_facet.notes.append(f"Sheet {config.rh_sheet!r} not found")

    report_grid = sheets.get(config.report_sheet)
    if not work_packages and report_grid is not None:
        work_packages, layout = scan_block_sheet(report_grid, config.report_sheet, identities, config, report)
        report.layout = layout.kind
        blocks_facet.skips.extend(layout.skips)
        _merge_metadata(metadata, layout.metadata)

    blocks_facet.value = work_packages
    blocks_facet.found = bool(work_packages)
    report.facets.append(blocks_facet)

    materials: List[Material] = []
    materials_grid = sheets.get(config.materials_sheet)
    if materials_grid is not None:
        materials_facet = extract_materials(materials_grid, config.materials_sheet, today)
        materials = materials_facet.value
        fallback = assign_materials(work_packages, materials)
        for material in fallback:
            materials_facet.notes.append(
                f"Material {material.name!r} ({material.work_package_ref!r}) assigned to first work package"
            )
    else:
        materials_facet = FacetResult(facet="materials", value=[], notes=[f"Sheet {config.materials_sheet!r} not found"])
    report.facets.append(materials_facet)

    inferred_start, inferred_end = infer_bounds(work_packages)
    metadata.project_start = metadata.project_start or inferred_start
    metadata.project_end = metadata.project_end or inferred_end

    logger.info(
        "Imported %d work packages, %d materials, %d unmatched resources",
        len(work_packages),
        len(materials),
        len(report.unmatched_resources),
    )
    return ImportedPlan(metadata=metadata, work_packages=work_packages, materials=materials, report=report)


def _merge_metadata(target: ProjectMetadata, source: ProjectMetadata) -> None:
    for field_name in ("name", "funding_rate_percent", "project_start", "project_end"):
        if getattr(target, field_name) is None and getattr(source, field_name) is not None:
            setattr(target, field_name, getattr(source, field_name))


def bind_identities(plan: ImportedPlan, bindings: Mapping[str, str]) -> List[str]:
    """Bind unmatched resources by display name; return names still unbound."""
    for wp in plan.work_packages:
        for resource in wp.resources:
            if resource.identity_id is None and resource.display_name in bindings:
                resource.identity_id = bindings[resource.display_name]
    unbound = sorted(
        {
            resource.display_name
            for wp in plan.work_packages
            for resource in wp.resources
            if resource.identity_id is None
        }
    )
    plan.report.unmatched_resources = unbound
    return unbound
