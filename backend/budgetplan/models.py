from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

Cell = object
Grid = List[List[Cell]]


class MaterialCategory(str, Enum):
    MATERIAIS = "MATERIAIS"
    SERVICOS_TERCEIROS = "SERVICOS_TERCEIROS"
    OUTROS_SERVICOS = "OUTROS_SERVICOS"
    DESLOCACAO_ESTADAS = "DESLOCACAO_ESTADAS"
    OUTROS_CUSTOS = "OUTROS_CUSTOS"
    CUSTOS_ESTRUTURA = "CUSTOS_ESTRUTURA"


class ProjectState(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    IN_PROGRESS = "IN_PROGRESS"
    REJECTED = "REJECTED"


class BalanceState(str, Enum):
    BALANCED = "BALANCED"
    DIVERGENT = "DIVERGENT"


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


# --- parsed plan -----------------------------------------------------------


@dataclass
class MonthlyAllocation:
    month: int
    year: int
    fraction: float


@dataclass
class Resource:
    display_name: str
    identity_id: Optional[str] = None
    monthly_salary_base: Optional[float] = None
    allocations: List[MonthlyAllocation] = field(default_factory=list)

    @property
    def inferred_start(self) -> Optional[date]:
        if not self.allocations:
            return None
        first = min(self.allocations, key=lambda a: (a.year, a.month))
        return month_start(first.year, first.month)

    @property
    def inferred_end(self) -> Optional[date]:
        if not self.allocations:
            return None
        last = max(self.allocations, key=lambda a: (a.year, a.month))
        return month_end(last.year, last.month)


@dataclass
class Material:
    name: str
    unit_price: Decimal
    quantity: int
    usage_year: int
    category: MaterialCategory
    work_package_ref: str

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class WorkPackage:
    code: str
    name: str
    resources: List[Resource] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    inferred_start: Optional[date] = None
    inferred_end: Optional[date] = None


@dataclass
class ProjectMetadata:
    name: Optional[str] = None
    funding_type: Optional[str] = None
    funding_rate_percent: Optional[float] = None
    overhead_percent: Optional[float] = None
    eti_unit_value: Optional[float] = None
    project_start: Optional[date] = None
    project_end: Optional[date] = None


@dataclass
class SkipRecord:
    """One row or cell that was left out of the plan, and why."""

    category: str
    detail: str
    sheet: str = ""
    row: Optional[int] = None


@dataclass
class FacetResult:
    """Outcome of one extractor: the value it found plus what it noticed."""

    facet: str
    value: object = None
    found: bool = False
    notes: List[str] = field(default_factory=list)
    skips: List[SkipRecord] = field(default_factory=list)


@dataclass
class ImportReport:
    facets: List[FacetResult] = field(default_factory=list)
    unmatched_resources: List[str] = field(default_factory=list)
    layout: Optional[str] = None

    @property
    def skipped(self) -> List[SkipRecord]:
        return [skip for facet in self.facets for skip in facet.skips]

    @property
    def missing(self) -> List[str]:
        return [facet.facet for facet in self.facets if not facet.found]


@dataclass
class ImportedPlan:
    metadata: ProjectMetadata
    work_packages: List[WorkPackage]
    materials: List[Material]
    report: ImportReport = field(default_factory=ImportReport)


@dataclass
class Identity:
    id: str
    name: str


# --- live project graph ----------------------------------------------------


@dataclass
class RealAllocation:
    work_package_id: str
    resource_id: str
    month: int
    year: int
    occupancy: Decimal


@dataclass
class Task:
    id: str
    name: str
    start: Optional[date] = None
    end: Optional[date] = None
    done: bool = False


@dataclass
class ProjectWorkPackage:
    id: str
    code: str
    name: str
    start: Optional[date] = None
    end: Optional[date] = None
    tasks: List[Task] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    allocations: List[RealAllocation] = field(default_factory=list)


@dataclass(frozen=True)
class SubmittedAllocation:
    work_package_id: str
    resource_id: str
    month: int
    year: int
    occupancy: Decimal


@dataclass(frozen=True)
class SnapshotTask:
    id: str
    name: str
    start: Optional[date]
    end: Optional[date]
    done: bool


@dataclass(frozen=True)
class SnapshotMaterial:
    name: str
    unit_price: Decimal
    quantity: int
    usage_year: int
    category: MaterialCategory


@dataclass(frozen=True)
class SnapshotWorkPackage:
    id: str
    code: str
    name: str
    start: Optional[date]
    end: Optional[date]
    tasks: Tuple[SnapshotTask, ...]
    materials: Tuple[SnapshotMaterial, ...]
    allocations: Tuple[SubmittedAllocation, ...]


@dataclass(frozen=True)
class ApprovedSnapshot:
    project_id: str
    approved_at: datetime
    name: str
    start: Optional[date]
    end: Optional[date]
    work_packages: Tuple[SnapshotWorkPackage, ...]


@dataclass
class Project:
    id: str
    name: str
    state: ProjectState = ProjectState.DRAFT
    start: Optional[date] = None
    end: Optional[date] = None
    metadata: ProjectMetadata = field(default_factory=ProjectMetadata)
    work_packages: List[ProjectWorkPackage] = field(default_factory=list)
    snapshot: Optional[ApprovedSnapshot] = None

    def work_package(self, work_package_id: str) -> Optional[ProjectWorkPackage]:
        for wp in self.work_packages:
            if wp.id == work_package_id:
                return wp
        return None


# --- reconciliation --------------------------------------------------------


@dataclass(frozen=True)
class AllocationEdit:
    work_package_id: str
    resource_id: str
    month: int
    year: int
    occupancy: Decimal


@dataclass
class BucketState:
    month: int
    year: int
    real: Decimal
    submitted: Decimal
    state: BalanceState

    @property
    def difference(self) -> Decimal:
        return self.real - self.submitted


@dataclass
class CommitCheck:
    ok: bool
    divergent_buckets: List[Tuple[int, int]] = field(default_factory=list)


AllocationKey = Tuple[str, str, int, int]
SalaryIndex = Dict[str, float]
