from __future__ import annotations

import io
from typing import Dict, List

import pandas as pd

from .models import BucketState, ImportedPlan


def _allocation_rows(plan: ImportedPlan) -> List[dict]:
    rows = []
    for wp in plan.work_packages:
        for resource in wp.resources:
            for allocation in resource.allocations:
                rows.append(
                    {
                        "Codigo": wp.code,
                        "Workpackage": wp.name,
                        "Recurso": resource.display_name,
                        "Utilizador": resource.identity_id or "",
                        "Mes": allocation.month,
                        "Ano": allocation.year,
                        "Ocupacao": allocation.fraction,
                        "Salario_base": resource.monthly_salary_base,
                    }
                )
    return rows


def _material_rows(plan: ImportedPlan) -> List[dict]:
    rows = []
    for wp in plan.work_packages:
        for material in wp.materials:
            rows.append(
                {
                    "Workpackage": wp.name,
                    "Nome": material.name,
                    "Rubrica": material.category.value,
                    "Ano": material.usage_year,
                    "Preco": float(material.unit_price),
                    "Quantidade": material.quantity,
                    "Total": float(material.total),
                    "Atividade_origem": material.work_package_ref,
                }
            )
    return rows


def build_plan_excel(plan: ImportedPlan) -> bytes:
    allocations = pd.DataFrame(
        _allocation_rows(plan),
        columns=["Codigo", "Workpackage", "Recurso", "Utilizador", "Mes", "Ano", "Ocupacao", "Salario_base"],
    )
    materials = pd.DataFrame(
        _material_rows(plan),
        columns=["Workpackage", "Nome", "Rubrica", "Ano", "Preco", "Quantidade", "Total", "Atividade_origem"],
    )
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        allocations.to_excel(writer, index=False, sheet_name="Alocacoes")
        materials.to_excel(writer, index=False, sheet_name="Materiais")
    output.seek(0)
    return output.read()


def build_reconciliation_excel(states: Dict[int, BucketState]) -> bytes:
    data = [
        {
            "Mes": state.month,
            "Ano": state.year,
            "Real": float(state.real),
            "Submetido": float(state.submitted),
            "Diferenca": float(state.difference),
            "Estado": state.state.value,
        }
        for state in states.values()
    ]
    df = pd.DataFrame(data)
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="Reconciliacao")
    output.seek(0)
    return output.read()
