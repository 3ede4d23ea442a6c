from __future__ import annotations

from typing import List, Tuple


class BudgetPlanError(Exception):
    pass


class WorkbookReadError(BudgetPlanError):
    pass


class SnapshotExistsError(BudgetPlanError):
    pass


class ProjectNotFoundError(BudgetPlanError):
    pass


class UnboundResourceError(BudgetPlanError):
    def __init__(self, names: List[str]) -> None:
        self.names = names
        super().__init__("Resources without identity: " + ", ".join(names))


class DivergentCommitError(BudgetPlanError):
    def __init__(self, buckets: List[Tuple[int, int]]) -> None:
        self.buckets = buckets
        labels = ", ".join(f"{month:02d}/{year}" for month, year in buckets)
        super().__init__(f"Real allocations do not match the approved totals for {labels}")
