from __future__ import annotations

import dataclasses
from enum import StrEnum, auto

from pydantic import BaseModel, ConfigDict

from stacks.circulation.fines import DamageSeverity
from stacks.sqlalchemy.model.catalog import CopyCondition, CopyStatus
from stacks.sqlalchemy.model.fine import Fine
from stacks.sqlalchemy.model.hold import HoldRequest
from stacks.sqlalchemy.model.loan import Loan


@dataclasses.dataclass(frozen=True, kw_only=True)
class ReturnCondition:
    """What the desk recorded about a copy when it came back."""

    condition: CopyCondition | None = None
    is_damaged: bool = False
    is_lost: bool = False
    damage_severity: DamageSeverity | None = None
    damage_details: str | None = None
    notes: str | None = None

    @property
    def copy_status(self) -> CopyStatus:
        # A lost copy can't also be sent to repair.
        if self.is_lost:
            return CopyStatus.LOST
        if self.is_damaged:
            return CopyStatus.UNDER_REPAIR
        return CopyStatus.AVAILABLE

    @property
    def label(self) -> str:
        if self.is_lost:
            return "Lost"
        if self.is_damaged:
            return "Damaged"
        return str(self.condition or CopyCondition.GOOD)


@dataclasses.dataclass(kw_only=True)
class ReturnResult:
    loan: Loan
    fines: list[Fine] = dataclasses.field(default_factory=list)
    admission: AdmissionResult | None = None


class AdmissionOutcome(StrEnum):
    ADMITTED = auto()
    NO_ELIGIBLE_WAITER = auto()


@dataclasses.dataclass(kw_only=True)
class AdmissionResult:
    """The outcome of trying to serve the next patron in an item's queue.

    `skipped` holds the hold requests that were rejected on the way
    because their patron could no longer borrow.
    """

    outcome: AdmissionOutcome
    loan: Loan | None = None
    hold_request: HoldRequest | None = None
    skipped: list[HoldRequest] = dataclasses.field(default_factory=list)

    @property
    def admitted(self) -> bool:
        return self.outcome == AdmissionOutcome.ADMITTED

    @classmethod
    def no_eligible_waiter(
        cls, skipped: list[HoldRequest] | None = None
    ) -> AdmissionResult:
        return cls(outcome=AdmissionOutcome.NO_ELIGIBLE_WAITER, skipped=skipped or [])


class OverdueSweepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    loans_marked_overdue: int = 0
    fines_created: int = 0
    failures: int = 0
