from __future__ import annotations

import json
import re
import threading
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from .errors import DivergentCommitError, ProjectNotFoundError
from .models import (
    AllocationEdit,
    ApprovedSnapshot,
    ImportedPlan,
    ImportReport,
    FacetResult,
    Material,
    MaterialCategory,
    MonthlyAllocation,
    Project,
    ProjectMetadata,
    ProjectState,
    ProjectWorkPackage,
    RealAllocation,
    Resource,
    SkipRecord,
    SnapshotMaterial,
    SnapshotTask,
    SnapshotWorkPackage,
    SubmittedAllocation,
    Task,
    WorkPackage,
)
from .projects import approve_project, reject_project
from .reconciliation import TOUCHED, apply_edits, can_commit


def to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {key: to_jsonable(item) for key, item in asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(item) for item in value]
    return value


def write_json(path: Path, payload: Any) -> None:
    path.write_text(json.dumps(to_jsonable(payload), indent=2, ensure_ascii=False), encoding="utf-8")


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def slugify(value: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9_-]+", "-", value.strip()).strip("-")
    return cleaned.lower() or "project"


def _date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _material(data: dict) -> Material:
    return Material(
        name=data["name"],
        unit_price=Decimal(data["unit_price"]),
        quantity=int(data["quantity"]),
        usage_year=int(data["usage_year"]),
        category=MaterialCategory(data["category"]),
        work_package_ref=data.get("work_package_ref", ""),
    )


def metadata_from_dict(data: dict) -> ProjectMetadata:
    return ProjectMetadata(
        name=data.get("name"),
        funding_type=data.get("funding_type"),
        funding_rate_percent=data.get("funding_rate_percent"),
        overhead_percent=data.get("overhead_percent"),
        eti_unit_value=data.get("eti_unit_value"),
        project_start=_date(data.get("project_start")),
        project_end=_date(data.get("project_end")),
    )


def plan_from_dict(data: dict) -> ImportedPlan:
    work_packages: List[WorkPackage] = []
    for wp in data.get("work_packages", []):
        work_packages.append(
            WorkPackage(
                code=wp["code"],
                name=wp["name"],
                resources=[
                    Resource(
                        display_name=resource["display_name"],
                        identity_id=resource.get("identity_id"),
                        monthly_salary_base=resource.get("monthly_salary_base"),
                        allocations=[MonthlyAllocation(**item) for item in resource.get("allocations", [])],
                    )
                    for resource in wp.get("resources", [])
                ],
                materials=[_material(item) for item in wp.get("materials", [])],
                inferred_start=_date(wp.get("inferred_start")),
                inferred_end=_date(wp.get("inferred_end")),
            )
        )
    report_data = data.get("report", {})
    report = ImportReport(
        facets=[
            FacetResult(
                facet=facet["facet"],
                found=facet.get("found", False),
                notes=list(facet.get("notes", [])),
                skips=[SkipRecord(**skip) for skip in facet.get("skips", [])],
            )
            for facet in report_data.get("facets", [])
        ],
        unmatched_resources=list(report_data.get("unmatched_resources", [])),
        layout=report_data.get("layout"),
    )
    return ImportedPlan(
        metadata=metadata_from_dict(data.get("metadata", {})),
        work_packages=work_packages,
        materials=[_material(item) for item in data.get("materials", [])],
        report=report,
    )


def plan_to_dict(plan: ImportedPlan) -> dict:
    payload = to_jsonable(plan)
    # Facet values duplicate the plan body; only the diagnostics are kept.
    for facet in payload["report"]["facets"]:
        facet.pop("value", None)
    return payload


def snapshot_from_dict(data: dict) -> ApprovedSnapshot:
    return ApprovedSnapshot(
        project_id=data["project_id"],
        approved_at=datetime.fromisoformat(data["approved_at"]),
        name=data["name"],
        start=_date(data.get("start")),
        end=_date(data.get("end")),
        work_packages=tuple(
            SnapshotWorkPackage(
                id=wp["id"],
                code=wp["code"],
                name=wp["name"],
                start=_date(wp.get("start")),
                end=_date(wp.get("end")),
                tasks=tuple(
                    SnapshotTask(
                        id=task["id"],
                        name=task["name"],
                        start=_date(task.get("start")),
                        end=_date(task.get("end")),
                        done=bool(task.get("done")),
                    )
                    for task in wp.get("tasks", [])
                ),
                materials=tuple(
                    SnapshotMaterial(
                        name=item["name"],
                        unit_price=Decimal(item["unit_price"]),
                        quantity=int(item["quantity"]),
                        usage_year=int(item["usage_year"]),
                        category=MaterialCategory(item["category"]),
                    )
                    for item in wp.get("materials", [])
                ),
                allocations=tuple(
                    SubmittedAllocation(
                        work_package_id=item["work_package_id"],
                        resource_id=item["resource_id"],
                        month=int(item["month"]),
                        year=int(item["year"]),
                        occupancy=Decimal(item["occupancy"]),
                    )
                    for item in wp.get("allocations", [])
                ),
            )
            for wp in data.get("work_packages", [])
        ),
    )


def project_from_dict(data: dict) -> Project:
    snapshot = data.get("snapshot")
    return Project(
        id=data["id"],
        name=data["name"],
        state=ProjectState(data.get("state", ProjectState.DRAFT.value)),
        start=_date(data.get("start")),
        end=_date(data.get("end")),
        metadata=metadata_from_dict(data.get("metadata", {})),
        work_packages=[
            ProjectWorkPackage(
                id=wp["id"],
                code=wp["code"],
                name=wp["name"],
                start=_date(wp.get("start")),
                end=_date(wp.get("end")),
                tasks=[
                    Task(
                        id=task["id"],
                        name=task["name"],
                        start=_date(task.get("start")),
                        end=_date(task.get("end")),
                        done=bool(task.get("done")),
                    )
                    for task in wp.get("tasks", [])
                ],
                materials=[_material(item) for item in wp.get("materials", [])],
                allocations=[
                    RealAllocation(
                        work_package_id=item["work_package_id"],
                        resource_id=item["resource_id"],
                        month=int(item["month"]),
                        year=int(item["year"]),
                        occupancy=Decimal(item["occupancy"]),
                    )
                    for item in wp.get("allocations", [])
                ],
            )
            for wp in data.get("work_packages", [])
        ],
        snapshot=snapshot_from_dict(snapshot) if snapshot else None,
    )


class ProjectStore:
    """Projects kept as one JSON file each under ``root``.

    Every read-validate-write runs under one lock and re-reads the file, so a
    commit is always checked against the latest saved allocations.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def path(self, project_id: str) -> Path:
        return self.root / f"{slugify(project_id)}.json"

    def exists(self, project_id: str) -> bool:
        return self.path(project_id).exists()

    def load(self, project_id: str) -> Project:
        path = self.path(project_id)
        if not path.exists():
            raise ProjectNotFoundError(f"Project {project_id!r} not found")
        return project_from_dict(read_json(path))

    def save(self, project: Project) -> None:
        write_json(self.path(project.id), project)

    def update(self, project_id: str, change: Callable[[Project], Any]) -> Project:
        with self._lock:
            project = self.load(project_id)
            change(project)
            self.save(project)
            return project

    def commit_allocations(
        self,
        project_id: str,
        edits: Sequence[AllocationEdit],
        mode: str = TOUCHED,
        year: Optional[int] = None,
        resource_id: Optional[str] = None,
    ) -> Project:
        def change(project: Project) -> None:
            check = can_commit(project, edits, mode=mode, year=year, resource_id=resource_id)
            if not check.ok:
                raise DivergentCommitError(check.divergent_buckets)
            apply_edits(project, edits)

        return self.update(project_id, change)

    def approve(self, project_id: str, today: Optional[date] = None) -> Project:
        return self.update(project_id, lambda project: approve_project(project, today))

    def reject(self, project_id: str) -> Project:
        return self.update(project_id, reject_project)
