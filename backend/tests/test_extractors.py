from datetime import date
from decimal import Decimal

import pytest

from budgetplan.extractors import (
    extract_eti_value,
    extract_funding,
    extract_materials,
    extract_project_name,
    infer_salaries,
    lookup_salary,
)
from budgetplan.models import MaterialCategory


def test_salary_normalized_and_found_by_prefix():
    grid = [
        [None] * 5 + ["Ana Isabel Carvalho - Investigadora", 34300],
        [None] * 5 + ["Total", 99999],
        [None] * 5 + ["Eng. responsável", 5000],
        [None] * 5 + ["Rui Costa", -5],
    ]
    salaries = infer_salaries(grid)
    expected = 34300 / (1.223 * 14 / 11)

    assert salaries["ana isabel carvalho - investigadora"] == pytest.approx(expected)
    assert salaries["ana isabel carvalho"] == pytest.approx(expected)
    assert lookup_salary(salaries, "Ana Isabel Carvalho") == pytest.approx(expected)
    assert "total" not in salaries
    assert "eng. responsável" not in salaries
    assert lookup_salary(salaries, "Rui Costa") is None


def test_materials_parsed_and_invalid_rows_skipped():
    header = [["Outros custos"]] * 6
    grid = header + [
        ["Portátil", "A1 - Gestão", None, 2025, "Materiais", 1200, 2],
        ["Viagem", "WP9", None, "n/a", "Deslocações e Estadas", 300, 1],
        ["Consultoria", "A2", None, 2025, "Serviços Terceiros", "mil", 1],
        ["Licença", "A1", None, 2025, "Outra rubrica", 99.5, 1.5],
        [None, "A1", None, 2025, "Materiais", 10, 1],
    ]
    result = extract_materials(grid, "Outros_Budget", today=date(2026, 5, 1))
    materials = result.value

    assert result.found
    assert [m.name for m in materials] == ["Portátil", "Viagem"]
    assert materials[0].unit_price == Decimal("1200")
    assert materials[0].total == Decimal("2400")
    assert materials[0].category is MaterialCategory.MATERIAIS
    assert materials[1].usage_year == 2026
    assert materials[1].category is MaterialCategory.DESLOCACAO_ESTADAS
    assert [skip.row for skip in result.skips] == [8, 9]


def test_funding_values_and_notes():
    grid = [
        [None] * 6 + ["Tipo de projeto", "Portugal 2030"],
        [None] * 6 + ["Taxa de financiamento", 85],
        [None] * 6 + ["Custos indiretos", "a definir"],
    ]
    result = extract_funding(grid)

    assert result.found
    assert result.value["funding_type"] == "Portugal 2030"
    assert result.value["funding_rate_percent"] == 85.0
    assert result.value["overhead_percent"] is None
    assert len(result.notes) == 1


def test_eti_and_project_name():
    assert extract_eti_value([[None] * 4 + ["Valor ETI", 3200.5]]).value == 3200.5
    assert not extract_eti_value([[None] * 4 + ["Valor ETI", 0]]).found
    assert extract_project_name([["Nome do projeto", " Projeto X "]]).value == "Projeto X"


def test_missing_facets_degrade_to_empty():
    assert not extract_funding([]).found
    assert extract_materials([]).value == []
    assert not extract_project_name([["Outro", "valor"]]).found
