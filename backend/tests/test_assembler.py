from datetime import date
from decimal import Decimal

from budgetplan.assembler import (
    allocation_fraction,
    assign_materials,
    bind_identities,
    import_workbook,
    infer_bounds,
)
from budgetplan.models import Material, MaterialCategory, MonthlyAllocation, Resource, WorkPackage


def _material(name, ref):
    return Material(
        name=name,
        unit_price=Decimal("10"),
        quantity=1,
        usage_year=2025,
        category=MaterialCategory.MATERIAIS,
        work_package_ref=ref,
    )


def test_allocation_bounds_filter():
    for value in (0, 1.5, -0.2, "0.5", None):
        assert allocation_fraction(value) is None
    assert allocation_fraction(0.31) == 0.31
    assert allocation_fraction(1.0) == 1.0
    assert allocation_fraction(50, percent_values=True) == 0.5


def test_bounds_span_all_resources():
    first = Resource("Ana", allocations=[MonthlyAllocation(3, 2024, 0.5), MonthlyAllocation(4, 2024, 0.5)])
    second = Resource("Rui", allocations=[MonthlyAllocation(1, 2024, 0.2)])
    assert infer_bounds([first, second]) == (date(2024, 1, 1), date(2024, 4, 30))
    assert infer_bounds([Resource("Sem meses")]) == (None, None)


def test_materials_resolved_by_name_code_or_fallback():
    gestao = WorkPackage(code="A1", name="A1 - Gestão")
    dev = WorkPackage(code="A2", name="A2 - Desenvolvimento")
    materials = [
        _material("Portátil", "A1 - Gestão"),
        _material("Servidor", "A2"),
        _material("Testes", "A2.3 Testes"),
        _material("Seguro", "Sem atividade"),
    ]
    fallback = assign_materials([gestao, dev], materials)

    assert [m.name for m in gestao.materials] == ["Portátil", "Seguro"]
    assert [m.name for m in dev.materials] == ["Servidor", "Testes"]
    assert [m.name for m in fallback] == ["Seguro"]
    assert assign_materials([], materials) == materials


def test_end_to_end_two_month_sheet():
    sheets = {
        "RH_Budget_SUBM": [
            [None] * 5 + [44562, 44593],
            ["WP1", "Work Package One", "Ana Silva", 0.5, 0.3],
        ]
    }
    plan = import_workbook(sheets, [{"id": "a1", "name": "Ana Silva"}])

    assert len(plan.work_packages) == 1
    wp = plan.work_packages[0]
    assert wp.name == "Work Package One"
    assert len(wp.resources) == 1
    resource = wp.resources[0]
    assert resource.identity_id == "a1"
    assert [(a.month, a.year, a.fraction) for a in resource.allocations] == [(1, 2022, 0.5), (2, 2022, 0.3)]
    assert (wp.inferred_start, wp.inferred_end) == (date(2022, 1, 1), date(2022, 2, 28))
    assert plan.metadata.project_start == date(2022, 1, 1)
    assert plan.report.unmatched_resources == []


def test_unmatched_resources_reported_and_bound_later():
    sheets = {
        "RH_Budget_SUBM": [
            [None] * 5 + [44562, 44593],
            ["WP1", "Work Package One", "Ana Silva", 0.5, 0.3],
            [None, None, "Contratado 1", 0.2, 0.2],
            [None, None, "Sem horas"],
        ],
        "Outros_Budget": [["Outros custos"]] * 6 + [["Portátil", "Sem atividade", None, 2022, "Materiais", 900, 1]],
    }
    plan = import_workbook(sheets, [{"id": "a1", "name": "Ana Silva"}])

    assert plan.report.unmatched_resources == ["Contratado 1"]
    assert [m.name for m in plan.work_packages[0].materials] == ["Portátil"]
    assert "no_allocation" in {skip.category for skip in plan.report.skipped}

    assert bind_identities(plan, {"Contratado 1": "c1"}) == []
    assert plan.work_packages[0].resources[1].identity_id == "c1"


def test_report_sheet_used_when_no_blocks():
    sheets = {
        "REPORT": [
            ["Nome Projeto:", "Projeto Report"],
            ["Data de arranque:", 45292],
            ["Taxa de financiamento:", 0.85],
            ["Recursos", "Atividades", "TOTAL", 2024, 45292, 45323, "x"],
            ["Ana Silva", "A1 Gestão", 1.0, None, 50, 0.25],
            ["Rui Costa", "A1 Gestão", None, None, None, None],
            ["Total"],
        ]
    }
    plan = import_workbook(sheets, [{"id": "a1", "name": "Ana Silva"}])

    assert plan.report.layout == "report"
    assert plan.metadata.name == "Projeto Report"
    assert plan.metadata.funding_rate_percent == 85.0
    assert plan.metadata.project_start == date(2024, 1, 1)
    assert plan.metadata.project_end == date(2024, 2, 29)
    wp = plan.work_packages[0]
    assert wp.code == "A1"
    assert [r.display_name for r in wp.resources] == ["Ana Silva"]
    assert [(a.month, a.fraction) for a in wp.resources[0].allocations] == [(1, 0.5), (2, 0.25)]


def test_empty_workbook_reports_missing_facets():
    plan = import_workbook({}, [])
    assert plan.work_packages == []
    assert plan.materials == []
    assert {"project_name", "funding", "work_packages"} <= set(plan.report.missing)


def test_layout_chosen_from_sheet_content():
    sheets = {
        "RH_Budget_SUBM": [
            ["Recursos", "Atividades", "TOTAL", 45292, 45323],
            ["Ana Silva", "A2 Testes", 1.0, 0.5, 0.5],
        ]
    }
    plan = import_workbook(sheets, [{"id": "a1", "name": "Ana Silva"}])

    assert plan.report.layout == "report"
    assert [wp.code for wp in plan.work_packages] == ["A2"]
    assert plan.work_packages[0].resources[0].identity_id == "a1"
