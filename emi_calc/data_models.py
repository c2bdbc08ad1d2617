"""Data models for the EMI calculator.

This module defines dataclasses representing the entities used by the
calculator: the loan terms, the two kinds of mid-term events (part payments
and interest-rate changes) and the rows of the resulting ledger. Events and
terms are frozen so that a calculation run works on an immutable snapshot of
its inputs.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterator, List, Optional

# Reanchor policies. After an event the schedule either keeps the tenure and
# lowers the installment, or keeps the installment and lets the tenure shrink.
REDUCE_INSTALLMENT = "installment"
REDUCE_TENURE = "tenure"
REANCHOR_POLICIES = (REDUCE_INSTALLMENT, REDUCE_TENURE)

LOAN_TYPES = ("gold", "personal")


@dataclass(frozen=True)
class LoanTerms:
    """Terms of a loan for one calculation run.

    Attributes
    ----------
    principal: Decimal
        The amount borrowed.
    rate: Decimal
        Annual nominal interest rate in percent (``12`` means 12 % p.a.).
    tenure: int
        Number of scheduled monthly payments.
    start_date: date
        The month of the first installment. Only the year and month matter
        for matching events; the day is kept for exact-date matching.
    loan_type: str
        ``"gold"`` or ``"personal"``. Used to pick the engine configuration
        and to name exported files.
    """

    principal: Decimal
    rate: Decimal
    tenure: int
    start_date: date
    loan_type: str = "personal"


@dataclass(frozen=True)
class RateChange:
    """A change of the annual interest rate from ``date`` onwards.

    ``reanchor`` is only honoured when the engine runs with a per-event
    reanchor scope; otherwise the global policy applies.
    """

    date: date
    rate: Decimal
    reanchor: str = REDUCE_INSTALLMENT


@dataclass(frozen=True)
class PartPayment:
    """An extra lump-sum payment applied to the principal.

    Attributes
    ----------
    date: date
        The month in which the payment is made.
    amount: Decimal
        The requested amount. The engine never applies more than what is
        left of the balance.
    reanchor: Optional[str]
        Per-event policy, used under a per-event reanchor scope. ``None``
        falls back to the global policy.
    """

    date: date
    amount: Decimal
    reanchor: Optional[str] = None


@dataclass(frozen=True)
class RecurringPartPayment:
    """A part payment repeated ``count`` times every ``interval_months``."""

    first_date: date
    amount: Decimal
    count: int = 1
    interval_months: int = 1
    reanchor: Optional[str] = None


@dataclass(frozen=True)
class LedgerRow:
    """One month of the amortization schedule.

    ``closing_balance`` already accounts for ``part_payment``. The
    ``principal`` column is the amortizing part of the installment only.
    """

    month: int
    date: date
    opening_balance: Decimal
    installment: Decimal
    principal: Decimal
    interest: Decimal
    closing_balance: Decimal
    rate: Decimal
    is_part_payment: bool = False
    part_payment: Optional[Decimal] = None


@dataclass
class Diagnostics:
    """Recoverable conditions noticed while building a ledger."""

    incomplete_terms: bool = False
    skipped_events: List[str] = field(default_factory=list)
    unmatched_events: List[str] = field(default_factory=list)
    ceiling_hit: bool = False

    @property
    def clean(self) -> bool:
        return not (
            self.incomplete_terms
            or self.skipped_events
            or self.unmatched_events
            or self.ceiling_hit
        )

    def messages(self) -> List[str]:
        """Return human-readable notices, one per condition."""
        notes: List[str] = []
        if self.incomplete_terms:
            notes.append("Loan terms are incomplete; enter values to see results.")
        notes.extend(f"Skipped: {s}" for s in self.skipped_events)
        notes.extend(f"Not applied: {s}" for s in self.unmatched_events)
        if self.ceiling_hit:
            notes.append("Schedule stopped at the maximum number of months.")
        return notes


@dataclass
class ScheduleResult:
    """The ledger produced by one run together with its diagnostics."""

    rows: List[LedgerRow] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def __iter__(self) -> Iterator[LedgerRow]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index):
        return self.rows[index]
