from datetime import date
from decimal import Decimal

import pytest

from budgetplan.errors import DivergentCommitError, ProjectNotFoundError, SnapshotExistsError
from budgetplan.models import AllocationEdit, Material, MaterialCategory, Project, ProjectWorkPackage, RealAllocation
from budgetplan.store import ProjectStore, slugify


def _project():
    wp = ProjectWorkPackage(
        id="wp1",
        code="WP1",
        name="Work Package One",
        start=date(2025, 6, 1),
        end=date(2025, 6, 30),
        materials=[
            Material("Portátil", Decimal("999.90"), 1, 2025, MaterialCategory.MATERIAIS, "WP1"),
        ],
        allocations=[RealAllocation("wp1", "r1", 6, 2025, Decimal("0.70"))],
    )
    return Project(id="p1", name="Projeto", start=date(2025, 6, 1), work_packages=[wp])


def test_round_trip_keeps_decimals_and_snapshot(tmp_path):
    store = ProjectStore(tmp_path / "projects")
    store.save(_project())
    store.approve("p1", today=date(2025, 1, 1))

    loaded = store.load("p1")
    wp = loaded.work_package("wp1")
    assert wp.allocations[0].occupancy == Decimal("0.70")
    assert wp.materials[0].unit_price == Decimal("999.90")
    assert loaded.snapshot.work_packages[0].allocations[0].occupancy == Decimal("0.70")
    assert loaded.snapshot.work_packages[0].materials[0].name == "Portátil"


def test_divergent_commit_leaves_file_untouched(tmp_path):
    store = ProjectStore(tmp_path)
    store.save(_project())
    store.approve("p1", today=date(2025, 1, 1))
    before = store.path("p1").read_text(encoding="utf-8")

    with pytest.raises(DivergentCommitError) as exc:
        store.commit_allocations("p1", [AllocationEdit("wp1", "r1", 6, 2025, Decimal("0.72"))])
    assert exc.value.buckets == [(6, 2025)]
    assert "06/2025" in str(exc.value)
    assert store.path("p1").read_text(encoding="utf-8") == before


def test_balanced_commit_is_saved(tmp_path):
    store = ProjectStore(tmp_path)
    store.save(_project())
    store.approve("p1", today=date(2025, 1, 1))

    store.commit_allocations(
        "p1",
        [
            AllocationEdit("wp1", "r1", 6, 2025, Decimal("0.50")),
            AllocationEdit("wp1", "r2", 6, 2025, Decimal("0.20")),
        ],
    )
    allocations = store.load("p1").work_package("wp1").allocations
    assert {(a.resource_id, a.occupancy) for a in allocations} == {("r1", Decimal("0.50")), ("r2", Decimal("0.20"))}


def test_second_approval_and_unknown_project(tmp_path):
    store = ProjectStore(tmp_path)
    store.save(_project())
    store.approve("p1")
    with pytest.raises(SnapshotExistsError):
        store.approve("p1")
    with pytest.raises(ProjectNotFoundError):
        store.load("missing")


def test_slugify():
    assert slugify(" Projeto Água/2025 ") == "projeto-gua-2025"
    assert slugify("///") == "project"
