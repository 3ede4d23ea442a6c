from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional, Tuple

from .errors import UnboundResourceError
from .models import (
    ImportedPlan,
    Project,
    ProjectState,
    ProjectWorkPackage,
    RealAllocation,
)
from .reconciliation import freeze_snapshot, to_decimal

logger = logging.getLogger(__name__)


def project_from_plan(
    plan: ImportedPlan,
    project_id: Optional[str] = None,
    state: ProjectState = ProjectState.PENDING,
) -> Project:
    unbound = sorted(
        {
            resource.display_name
            for wp in plan.work_packages
            for resource in wp.resources
            if resource.identity_id is None
        }
    )
    if unbound:
        raise UnboundResourceError(unbound)

    project = Project(
        id=project_id or str(uuid.uuid4()),
        name=plan.metadata.name or "Projeto importado",
        state=state,
        start=plan.metadata.project_start,
        end=plan.metadata.project_end,
        metadata=plan.metadata,
    )
    for parsed in plan.work_packages:
        wp = ProjectWorkPackage(
            id=str(uuid.uuid4()),
            code=parsed.code,
            name=parsed.name,
            start=parsed.inferred_start,
            end=parsed.inferred_end,
            materials=list(parsed.materials),
        )
        # Two rows bound to the same identity collapse into one cell per month.
        cells: Dict[Tuple[str, int, int], Decimal] = {}
        for resource in parsed.resources:
            for allocation in resource.allocations:
                key = (resource.identity_id, allocation.month, allocation.year)
                cells[key] = cells.get(key, Decimal("0")) + to_decimal(allocation.fraction)
        wp.allocations = [
            RealAllocation(work_package_id=wp.id, resource_id=resource_id, month=month, year=year, occupancy=value)
            for (resource_id, month, year), value in sorted(cells.items(), key=lambda item: (item[0][2], item[0][1], item[0][0]))
        ]
        project.work_packages.append(wp)
    return project


def approve_project(project: Project, today: Optional[date] = None, approved_at: Optional[datetime] = None) -> Project:
    today = today or date.today()
    freeze_snapshot(project, approved_at)
    if project.start is not None and project.start <= today:
        project.state = ProjectState.IN_PROGRESS
    else:
        project.state = ProjectState.APPROVED
    logger.info("Project %s approved, state %s", project.id, project.state.value)
    return project


def reject_project(project: Project) -> Project:
    project.state = ProjectState.REJECTED
    logger.info("Project %s rejected", project.id)
    return project
