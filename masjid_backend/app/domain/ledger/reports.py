"""
Outcome records returned by the ledger engine entry points.

Each report tells a caller whether anything changed (created /
transitioned / settled ids) and which items failed, so "already up to
date" can be shown differently from a hard failure.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Set

ZERO = Decimal("0.00")


@dataclass
class GenerationReport:
    """Result of monthly or historical dues generation."""
    year: Optional[int] = None
    month: Optional[int] = None
    member_id: Optional[int] = None
    created_debt_ids: List[int] = field(default_factory=list)
    skipped: int = 0
    failures: Dict[int, str] = field(default_factory=dict)
    total_debt: Optional[Decimal] = None

    @property
    def created(self) -> int:
        return len(self.created_debt_ids)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class AllocationResult:
    """How one payment was spread over a member's outstanding debts."""
    member_id: int
    payment_amount: Decimal
    outstanding_before: Decimal = ZERO
    applied_amount: Decimal = ZERO
    # Surplus over the outstanding total; discarded, never credited
    unapplied_amount: Decimal = ZERO
    settled_debt_ids: List[int] = field(default_factory=list)
    remainder_debt_id: Optional[int] = None
    remainder_amount: Decimal = ZERO
    total_debt: Optional[Decimal] = None
    total_debt_stale: bool = False


@dataclass
class OverdueSweepReport:
    checked_at: datetime
    transitioned_debt_ids: List[int] = field(default_factory=list)
    member_ids: Set[int] = field(default_factory=set)

    @property
    def transitioned(self) -> int:
        return len(self.transitioned_debt_ids)


@dataclass
class MonthlyCycleReport:
    """Combined outcome of generation, overdue sweep and recalculation."""
    generation: Optional[GenerationReport] = None
    sweep: Optional[OverdueSweepReport] = None
    recalculated: Dict[int, Decimal] = field(default_factory=dict)
    recalculation_failures: Dict[int, str] = field(default_factory=dict)
    step_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        generation_ok = self.generation.ok if self.generation else False
        return generation_ok and not self.recalculation_failures and not self.step_errors


@dataclass
class InitializationReport:
    members: Dict[int, GenerationReport] = field(default_factory=dict)
    failures: Dict[int, str] = field(default_factory=dict)

    @property
    def created(self) -> int:
        return sum(report.created for report in self.members.values())

    @property
    def ok(self) -> bool:
        return not self.failures
