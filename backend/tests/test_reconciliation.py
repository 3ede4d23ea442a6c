import dataclasses
from decimal import Decimal

import pytest

from budgetplan.errors import SnapshotExistsError
from budgetplan.models import AllocationEdit, BalanceState, Project, ProjectWorkPackage, RealAllocation
from budgetplan.reconciliation import (
    WHOLE_VIEW,
    apply_edits,
    can_commit,
    compute_bucket_states,
    freeze_snapshot,
)


def _project(cells):
    """cells: (work package id, resource id, month, year, occupancy)."""
    project = Project(id="p1", name="Projeto")
    for wp_id in sorted({cell[0] for cell in cells}):
        project.work_packages.append(ProjectWorkPackage(id=wp_id, code=wp_id.upper(), name=wp_id))
    for wp_id, resource_id, month, year, occupancy in cells:
        project.work_package(wp_id).allocations.append(
            RealAllocation(wp_id, resource_id, month, year, Decimal(occupancy))
        )
    return project


def _approved_project():
    project = _project([("wp1", "r1", 6, 2025, "0.40"), ("wp2", "r1", 6, 2025, "0.30")])
    freeze_snapshot(project)
    return project


def test_balanced_after_approval():
    states = compute_bucket_states(_approved_project(), 2025)
    assert len(states) == 12
    assert states[6].real == Decimal("0.70")
    assert states[6].submitted == Decimal("0.70")
    assert states[6].state is BalanceState.BALANCED


def test_single_change_diverges_and_blocks_commit():
    project = _approved_project()
    edits = [AllocationEdit("wp1", "r1", 6, 2025, Decimal("0.42"))]

    assert compute_bucket_states(project, 2025, edits=edits)[6].state is BalanceState.DIVERGENT
    check = can_commit(project, edits)
    assert not check.ok
    assert check.divergent_buckets == [(6, 2025)]


def test_moving_occupancy_between_work_packages_commits():
    project = _approved_project()
    edits = [
        AllocationEdit("wp1", "r1", 6, 2025, Decimal("0.42")),
        AllocationEdit("wp2", "r1", 6, 2025, Decimal("0.28")),
    ]
    assert can_commit(project, edits).ok


def test_decimal_sums_do_not_drift():
    project = _project([(f"wp{idx}", "r1", 1, 2025, "0.1") for idx in range(10)])
    freeze_snapshot(project)
    edits = [AllocationEdit("wp0", "r1", 1, 2025, Decimal("0.6"))] + [
        AllocationEdit(f"wp{idx}", "r1", 1, 2025, Decimal("0")) for idx in range(1, 6)
    ]
    assert can_commit(project, edits).ok


def test_snapshot_ignores_later_edits():
    project = _approved_project()
    apply_edits(project, [AllocationEdit("wp1", "r1", 6, 2025, Decimal("0.50"))])

    state = compute_bucket_states(project, 2025)[6]
    assert state.submitted == Decimal("0.70")
    assert state.real == Decimal("0.80")
    assert state.state is BalanceState.DIVERGENT
    with pytest.raises(dataclasses.FrozenInstanceError):
        project.snapshot.name = "Outro"


def test_without_snapshot_nothing_is_enforced():
    project = _project([("wp1", "r1", 6, 2025, "0.40")])
    assert can_commit(project, [AllocationEdit("wp1", "r1", 6, 2025, Decimal("0.9"))]).ok


def test_whole_view_checks_untouched_months():
    project = _approved_project()
    project.work_package("wp1").allocations.append(RealAllocation("wp1", "r1", 3, 2025, Decimal("0.2")))
    edits = [AllocationEdit("wp1", "r1", 6, 2025, Decimal("0.40"))]

    assert can_commit(project, edits).ok
    check = can_commit(project, edits, mode=WHOLE_VIEW, year=2025)
    assert check.divergent_buckets == [(3, 2025)]
    with pytest.raises(ValueError):
        can_commit(project, edits, mode=WHOLE_VIEW)


def test_resource_filter():
    project = _project([("wp1", "r1", 6, 2025, "0.40"), ("wp1", "r2", 6, 2025, "0.60")])
    freeze_snapshot(project)
    states = compute_bucket_states(project, 2025, resource_id="r2")
    assert states[6].real == Decimal("0.60")


def test_apply_edits_replaces_and_removes():
    project = _project([("wp1", "r1", 6, 2025, "0.40"), ("wp1", "r1", 7, 2025, "0.40")])
    apply_edits(
        project,
        [
            AllocationEdit("wp1", "r1", 6, 2025, Decimal("0.25")),
            AllocationEdit("wp1", "r1", 7, 2025, Decimal("0")),
        ],
    )
    cells = {(a.month, a.occupancy) for a in project.work_package("wp1").allocations}
    assert cells == {(6, Decimal("0.25"))}
    with pytest.raises(KeyError):
        apply_edits(project, [AllocationEdit("nope", "r1", 6, 2025, Decimal("0.1"))])


def test_snapshot_is_written_once():
    project = _approved_project()
    with pytest.raises(SnapshotExistsError):
        freeze_snapshot(project)


def test_resource_filter_does_not_hide_other_edits():
    project = _project([("wp1", "r1", 6, 2025, "0.40"), ("wp1", "r2", 6, 2025, "0.30")])
    freeze_snapshot(project)
    edits = [AllocationEdit("wp1", "r2", 6, 2025, Decimal("0.90"))]

    assert compute_bucket_states(project, 2025, resource_id="r1", edits=edits)[6].state is BalanceState.BALANCED
    check = can_commit(project, edits, resource_id="r1")
    assert not check.ok
    assert check.divergent_buckets == [(6, 2025)]
