"""Real vs. submitted allocation reconciliation.

Real allocations live on the project graph and stay editable. Submitted
allocations are read only from the ``ApprovedSnapshot`` frozen at approval.
For every (month, year) bucket the two totals must agree within
``EPSILON`` before an edit batch may be committed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .errors import SnapshotExistsError
from .models import (
    AllocationEdit,
    AllocationKey,
    ApprovedSnapshot,
    BalanceState,
    BucketState,
    CommitCheck,
    Project,
    RealAllocation,
    SnapshotMaterial,
    SnapshotTask,
    SnapshotWorkPackage,
    SubmittedAllocation,
)

logger = logging.getLogger(__name__)

EPSILON = Decimal("0.001")
MONTHS = range(1, 13)

TOUCHED = "touched"
WHOLE_VIEW = "whole_view"


def to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def real_cells(project: Project) -> Dict[AllocationKey, Decimal]:
    cells: Dict[AllocationKey, Decimal] = {}
    for wp in project.work_packages:
        for allocation in wp.allocations:
            key = (wp.id, allocation.resource_id, allocation.month, allocation.year)
            cells[key] = cells.get(key, Decimal("0")) + to_decimal(allocation.occupancy)
    return cells


def submitted_cells(project: Project) -> Dict[AllocationKey, Decimal]:
    cells: Dict[AllocationKey, Decimal] = {}
    if project.snapshot is None:
        return cells
    for wp in project.snapshot.work_packages:
        for allocation in wp.allocations:
            key = (wp.id, allocation.resource_id, allocation.month, allocation.year)
            cells[key] = cells.get(key, Decimal("0")) + allocation.occupancy
    return cells


def _with_edits(cells: Dict[AllocationKey, Decimal], edits: Iterable[AllocationEdit]) -> Dict[AllocationKey, Decimal]:
    merged = dict(cells)
    for edit in edits:
        merged[(edit.work_package_id, edit.resource_id, edit.month, edit.year)] = to_decimal(edit.occupancy)
    return merged


def _bucket_totals(
    cells: Dict[AllocationKey, Decimal],
    year: int,
    resource_id: Optional[str],
) -> Dict[int, Decimal]:
    totals = {month: Decimal("0") for month in MONTHS}
    for (_, resource, month, cell_year), value in cells.items():
        if cell_year != year or (resource_id is not None and resource != resource_id):
            continue
        totals[month] += value
    return totals


def balance_state(real: Decimal, submitted: Decimal) -> BalanceState:
    if abs(real - submitted) < EPSILON:
        return BalanceState.BALANCED
    return BalanceState.DIVERGENT


def compute_bucket_states(
    project: Project,
    year: int,
    resource_id: Optional[str] = None,
    edits: Sequence[AllocationEdit] = (),
) -> Dict[int, BucketState]:
    """Per-month real/submitted totals for ``year``, with pending edits applied."""
    real = _bucket_totals(_with_edits(real_cells(project), edits), year, resource_id)
    submitted = _bucket_totals(submitted_cells(project), year, resource_id)
    return {
        month: BucketState(
            month=month,
            year=year,
            real=real[month],
            submitted=submitted[month],
            state=balance_state(real[month], submitted[month]),
        )
        for month in MONTHS
    }


def can_commit(
    project: Project,
    edits: Sequence[AllocationEdit],
    mode: str = TOUCHED,
    year: Optional[int] = None,
    resource_id: Optional[str] = None,
) -> CommitCheck:
    if project.snapshot is None:
        return CommitCheck(ok=True)

    if mode == WHOLE_VIEW:
        if year is None:
            raise ValueError("whole_view mode needs the active year")
        buckets: Set[Tuple[int, int]] = {(month, year) for month in MONTHS}
    elif mode == TOUCHED:
        buckets = {(edit.month, edit.year) for edit in edits}
    else:
        raise ValueError(f"Unknown commit mode {mode!r}")

    # A resource filter narrows the view, never the check: project totals must balance too.
    scopes: List[Optional[str]] = [None] if resource_id is None else [resource_id, None]
    divergent: List[Tuple[int, int]] = []
    states: Dict[Tuple[int, Optional[str]], Dict[int, BucketState]] = {}
    for month, bucket_year in sorted(buckets, key=lambda item: (item[1], item[0])):
        for scope in scopes:
            if (bucket_year, scope) not in states:
                states[(bucket_year, scope)] = compute_bucket_states(project, bucket_year, scope, edits)
            if states[(bucket_year, scope)][month].state is BalanceState.DIVERGENT:
                divergent.append((month, bucket_year))
                break

    if divergent:
        logger.info("Commit rejected for project %s: divergent buckets %s", project.id, divergent)
        return CommitCheck(ok=False, divergent_buckets=divergent)
    return CommitCheck(ok=True)


def apply_edits(project: Project, edits: Sequence[AllocationEdit]) -> None:
    """Write edits into the live graph. A zero occupancy removes the cell."""
    for edit in edits:
        wp = project.work_package(edit.work_package_id)
        if wp is None:
            raise KeyError(f"Unknown work package {edit.work_package_id!r}")
        occupancy = to_decimal(edit.occupancy)
        kept: List[RealAllocation] = [
            allocation
            for allocation in wp.allocations
            if (allocation.resource_id, allocation.month, allocation.year)
            != (edit.resource_id, edit.month, edit.year)
        ]
        if occupancy != 0:
            kept.append(
                RealAllocation(
                    work_package_id=wp.id,
                    resource_id=edit.resource_id,
                    month=edit.month,
                    year=edit.year,
                    occupancy=occupancy,
                )
            )
        wp.allocations = kept


def freeze_snapshot(project: Project, approved_at: Optional[datetime] = None) -> ApprovedSnapshot:
    if project.snapshot is not None:
        raise SnapshotExistsError(f"Project {project.id} already has an approved snapshot")
    snapshot = ApprovedSnapshot(
        project_id=project.id,
        approved_at=approved_at or datetime.now(timezone.utc),
        name=project.name,
        start=project.start,
        end=project.end,
        work_packages=tuple(
            SnapshotWorkPackage(
                id=wp.id,
                code=wp.code,
                name=wp.name,
                start=wp.start,
                end=wp.end,
                tasks=tuple(
                    SnapshotTask(id=task.id, name=task.name, start=task.start, end=task.end, done=task.done)
                    for task in wp.tasks
                ),
                materials=tuple(
                    SnapshotMaterial(
                        name=material.name,
                        unit_price=material.unit_price,
                        quantity=material.quantity,
                        usage_year=material.usage_year,
                        category=material.category,
                    )
                    for material in wp.materials
                ),
                allocations=tuple(
                    SubmittedAllocation(
                        work_package_id=wp.id,
                        resource_id=allocation.resource_id,
                        month=allocation.month,
                        year=allocation.year,
                        occupancy=to_decimal(allocation.occupancy),
                    )
                    for allocation in wp.allocations
                ),
            )
            for wp in project.work_packages
        ),
    )
    project.snapshot = snapshot
    logger.info("Froze snapshot for project %s with %d work packages", project.id, len(snapshot.work_packages))
    return snapshot
