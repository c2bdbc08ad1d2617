"""Core calculation engine for the EMI calculator.

This module implements the amortization logic: the EMI (annuity) formula and
the month-by-month schedule generator that re-anchors the installment or the
tenure when a part payment or an interest-rate change occurs. Results are
returned as a ``ScheduleResult`` holding the ledger rows together with
diagnostics about anything that was skipped along the way. The generator
never raises on bad input; it returns an empty or truncated ledger instead.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, getcontext
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .config import MATCH_EXACT, EngineConfig
from .data_models import (
    REANCHOR_POLICIES,
    REDUCE_INSTALLMENT,
    Diagnostics,
    LedgerRow,
    LoanTerms,
    PartPayment,
    RateChange,
    RecurringPartPayment,
    ScheduleResult,
)
from .utils import add_months, coerce_decimal, format_month, month_key

getcontext().prec = 28  # increase precision for financial calculations

logger = logging.getLogger(__name__)

# Upper bound on ledger length. A schedule whose installment no longer covers
# the interest would otherwise never reach a zero balance.
MAX_MONTHS = 1000

# Balances smaller than half a cent are treated as fully repaid.
RESIDUAL = Decimal("0.005")

ZERO = Decimal("0")

AnyPartPayment = Union[PartPayment, RecurringPartPayment]


def calculate_emi(principal, rate, tenure: int) -> Decimal:
    """Return the equal monthly installment for a reducing-balance loan.

    The formula is:

        emi = P * (i * (1 + i)^n) / ((1 + i)^n - 1)

    where ``P`` is the principal, ``i`` the monthly rate (annual percent
    divided by 1200) and ``n`` the number of payments. When the interest rate
    is zero, the installment simplifies to ``P / n``.
    """
    if tenure <= 0:
        raise ValueError("Tenure must be positive")
    principal = principal if isinstance(principal, Decimal) else Decimal(str(principal))
    rate = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    rate_per_month = rate / Decimal(1200)
    if rate_per_month == 0:
        return principal / Decimal(tenure)
    factor = (1 + rate_per_month) ** tenure
    return principal * (rate_per_month * factor) / (factor - 1)


def _as_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _describe(event) -> str:
    when = getattr(event, "date", None) or getattr(event, "first_date", None)
    when = format_month(when) if isinstance(when, date) else repr(when)
    if isinstance(event, RateChange):
        return f"rate change {when} to {event.rate}%"
    return f"part payment {when} of {getattr(event, 'amount', None)}"


def expand_part_payments(payments: Iterable[AnyPartPayment]) -> List[PartPayment]:
    """Expand recurring part payments into one ``PartPayment`` per occurrence.

    The k-th occurrence falls ``k * interval_months`` after ``first_date``.
    Raises ``ValueError`` for a recurrence with a non-positive count or
    interval.
    """
    expanded: List[PartPayment] = []
    for pp in payments:
        if not isinstance(pp, RecurringPartPayment):
            expanded.append(pp)
            continue
        if int(pp.count) < 1 or int(pp.interval_months) < 1:
            raise ValueError(
                f"Recurring part payment needs count and interval of at least 1; got {pp.count}, {pp.interval_months}"
            )
        for k in range(int(pp.count)):
            expanded.append(
                PartPayment(
                    date=add_months(pp.first_date, k * int(pp.interval_months)),
                    amount=pp.amount,
                    reanchor=pp.reanchor,
                )
            )
    return expanded


def normalize_part_payments(
    payments: Iterable[AnyPartPayment], diagnostics: Optional[Diagnostics] = None
) -> List[PartPayment]:
    """Expand, validate and sort part payments.

    Payments with a malformed date, a non-positive amount or an unknown
    reanchor policy are left out and recorded in ``diagnostics``. The sort is
    stable, so payments in the same month keep their input order.
    """
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    valid: List[PartPayment] = []
    for item in payments:
        if isinstance(item, RecurringPartPayment) and _as_date(item.first_date) is None:
            _skip(diagnostics, item, "invalid date")
            continue
        try:
            occurrences = expand_part_payments([item])
        except (TypeError, ValueError) as exc:
            _skip(diagnostics, item, str(exc))
            continue
        for pp in occurrences:
            when = _as_date(getattr(pp, "date", None))
            amount = coerce_decimal(getattr(pp, "amount", None))
            reanchor = getattr(pp, "reanchor", None)
            if when is None:
                _skip(diagnostics, pp, "invalid date")
            elif amount is None or amount <= 0:
                _skip(diagnostics, pp, "amount must be positive")
            elif reanchor is not None and reanchor not in REANCHOR_POLICIES:
                _skip(diagnostics, pp, f"unknown reanchor policy {reanchor!r}")
            else:
                valid.append(PartPayment(date=when, amount=amount, reanchor=reanchor))
    return sorted(valid, key=lambda p: p.date)


def normalize_rate_changes(
    changes: Iterable[RateChange], diagnostics: Optional[Diagnostics] = None
) -> List[RateChange]:
    """Validate and stable-sort rate changes by date.

    A rate must lie between 0 and 100 percent; a zero rate is allowed here
    and amortizes straight-line.
    """
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    valid: List[RateChange] = []
    for rc in changes:
        when = _as_date(getattr(rc, "date", None))
        rate = coerce_decimal(getattr(rc, "rate", None))
        reanchor = getattr(rc, "reanchor", REDUCE_INSTALLMENT)
        if when is None:
            _skip(diagnostics, rc, "invalid date")
        elif rate is None or rate < 0 or rate > 100:
            _skip(diagnostics, rc, "rate must be between 0 and 100")
        elif reanchor not in REANCHOR_POLICIES:
            _skip(diagnostics, rc, f"unknown reanchor policy {reanchor!r}")
        else:
            valid.append(RateChange(date=when, rate=rate, reanchor=reanchor))
    return sorted(valid, key=lambda r: r.date)


def _skip(diagnostics: Diagnostics, event, reason: str) -> None:
    message = f"{_describe(event)} ({reason})"
    diagnostics.skipped_events.append(message)
    logger.debug("Skipping %s", message)


def _checked_terms(terms) -> Optional[Tuple[Decimal, Decimal, int, date]]:
    """Return ``(principal, rate, tenure, start_date)`` or ``None`` if incomplete."""
    principal = coerce_decimal(getattr(terms, "principal", None))
    rate = coerce_decimal(getattr(terms, "rate", None))
    tenure = coerce_decimal(getattr(terms, "tenure", None))
    start_date = _as_date(getattr(terms, "start_date", None))
    if principal is None or principal <= 0:
        return None
    if rate is None or rate <= 0 or rate > 100:
        return None
    if tenure is None or tenure <= 0 or tenure != tenure.to_integral_value():
        return None
    if start_date is None:
        return None
    return principal, rate, int(tenure), start_date


def _active_policy(event_policy: Optional[str], policy: str, config: EngineConfig) -> str:
    if config.per_event and event_policy is not None:
        return event_policy
    return policy


def _match_rate_change(
    pending: List[RateChange], current_date: date, config: EngineConfig, diagnostics: Diagnostics
) -> Optional[RateChange]:
    """Pop and return the rate change that applies to ``current_date``."""
    if config.rate_change_matching == MATCH_EXACT:
        due = [rc for rc in pending if rc.date <= current_date]
        if not due:
            return None
        latest = max(rc.date for rc in due)
        match = next(rc for rc in due if rc.date == latest)
        for rc in due:
            pending.remove(rc)
            if rc is not match:
                diagnostics.unmatched_events.append(f"{_describe(rc)} (superseded)")
        return match
    key = month_key(current_date)
    for rc in pending:
        if month_key(rc.date) == key:
            pending.remove(rc)
            return rc
    return None


def _match_part_payment(pending: List[PartPayment], current_date: date) -> Optional[PartPayment]:
    key = month_key(current_date)
    for pp in pending:
        if month_key(pp.date) == key:
            pending.remove(pp)
            return pp
    return None


def generate_schedule(
    terms: LoanTerms,
    part_payments: Iterable[AnyPartPayment] = (),
    rate_changes: Iterable[RateChange] = (),
    policy: str = REDUCE_INSTALLMENT,
    config: Optional[EngineConfig] = None,
) -> ScheduleResult:
    """Build the month-by-month amortization ledger for a loan.

    Parameters
    ----------
    terms: LoanTerms
        Principal, annual rate, tenure in months and start month.
    part_payments: Iterable[PartPayment | RecurringPartPayment]
        Extra payments; recurring ones are expanded first.
    rate_changes: Iterable[RateChange]
        Interest-rate changes.
    policy: str
        Global reanchor policy, ``"installment"`` or ``"tenure"``.
    config: EngineConfig
        Matching and reanchor-scope settings. Defaults to month matching
        with a global scope.

    Returns
    -------
    ScheduleResult
        The ledger rows (empty when the terms are incomplete) and the
        diagnostics of the run.
    """
    config = config or EngineConfig()
    result = ScheduleResult()
    diagnostics = result.diagnostics

    checked = _checked_terms(terms)
    if checked is None:
        diagnostics.incomplete_terms = True
        logger.debug("Loan terms incomplete, returning empty ledger: %r", terms)
        return result
    principal, annual_rate, tenure, start_date = checked

    if policy not in REANCHOR_POLICIES:
        logger.warning("Unknown reanchor policy %r, using %r", policy, REDUCE_INSTALLMENT)
        policy = REDUCE_INSTALLMENT

    pending_payments = normalize_part_payments(part_payments, diagnostics)
    if config.allow_rate_changes:
        pending_changes = normalize_rate_changes(rate_changes, diagnostics)
    else:
        pending_changes = []
        for rc in rate_changes:
            _skip(diagnostics, rc, "rate changes are not available for this loan")

    logger.debug(
        "Generating schedule: principal=%s rate=%s tenure=%s start=%s policy=%s "
        "part_payments=%d rate_changes=%d",
        principal, annual_rate, tenure, start_date, policy,
        len(pending_payments), len(pending_changes),
    )

    rate = annual_rate
    installment = calculate_emi(principal, rate, tenure)
    balance = principal
    remaining = tenure
    month = 0

    while balance > 0:
        month += 1
        if month > MAX_MONTHS:
            diagnostics.ceiling_hit = True
            logger.warning(
                "Schedule did not converge within %d months; returning partial ledger "
                "(balance %.2f, installment %.2f, rate %s)",
                MAX_MONTHS, balance, installment, rate,
            )
            break
        current_date = add_months(start_date, month - 1)
        opening = balance

        # Rate change first, then the part payment of the same month.
        change = _match_rate_change(pending_changes, current_date, config, diagnostics)
        if change is not None:
            rate = change.rate
            if _active_policy(change.reanchor, policy, config) == REDUCE_INSTALLMENT:
                installment = calculate_emi(opening, rate, max(remaining, 1))

        interest = opening * (rate / Decimal(1200))
        payment = _match_part_payment(pending_payments, current_date)
        principal_part = min(installment - interest, opening)

        applied = ZERO
        if payment is not None:
            # Never more than the balance; unpaid interest carries over.
            cap = min(opening, opening - principal_part)
            applied = max(min(payment.amount, cap), ZERO)
            if applied == 0:
                diagnostics.unmatched_events.append(f"{_describe(payment)} (nothing left to repay)")

        closing = opening - principal_part - applied
        if closing.copy_abs() < RESIDUAL:
            closing = ZERO

        result.rows.append(
            LedgerRow(
                month=month,
                date=current_date,
                opening_balance=opening,
                installment=installment,
                principal=principal_part,
                interest=interest,
                closing_balance=closing,
                rate=rate,
                is_part_payment=applied > 0,
                part_payment=applied if applied > 0 else None,
            )
        )

        if applied > 0 and closing > 0:
            if _active_policy(payment.reanchor, policy, config) == REDUCE_INSTALLMENT:
                installment = calculate_emi(closing, rate, max(tenure - month, 1))

        remaining -= 1
        balance = closing

    for event in list(pending_changes) + list(pending_payments):
        diagnostics.unmatched_events.append(_describe(event))
    return result


def compute_scenarios(
    terms: LoanTerms,
    part_payments: Iterable[AnyPartPayment] = (),
    rate_changes: Iterable[RateChange] = (),
    policy: str = REDUCE_INSTALLMENT,
    config: Optional[EngineConfig] = None,
) -> Tuple[ScheduleResult, ScheduleResult]:
    """Return the baseline ledger (rate changes only) and the modified one.

    The baseline is what the borrower pays without any part payment, so the
    difference between the two is what the part payments save.
    """
    rate_changes = list(rate_changes)
    baseline = generate_schedule(terms, (), rate_changes, policy, config)
    modified = generate_schedule(terms, part_payments, rate_changes, policy, config)
    return baseline, modified


def summarize_schedule(rows: Iterable[LedgerRow], terms: Optional[LoanTerms] = None) -> Dict[str, object]:
    """Compute aggregate metrics for a ledger.

    Returns a dictionary with the number of months, interest, principal and
    part-payment totals, the first and last installment and the end date.
    When complete ``terms`` are given the principal and the contractual end date are
    included as well.
    """
    rows = list(rows)
    total_interest = sum((r.interest for r in rows), ZERO)
    total_principal = sum((r.principal for r in rows), ZERO)
    total_part_payments = sum((r.part_payment or ZERO for r in rows), ZERO)
    summary: Dict[str, object] = {
        "months": len(rows),
        "total_interest": float(total_interest),
        "total_principal": float(total_principal),
        "total_part_payments": float(total_part_payments),
        "total_paid": float(total_interest + total_principal + total_part_payments),
        "first_installment": float(rows[0].installment) if rows else 0.0,
        "last_installment": float(rows[-1].installment) if rows else 0.0,
        "end_date": format_month(rows[-1].date) if rows else None,
    }
    checked = _checked_terms(terms)
    if checked is not None:
        principal, _, tenure, start_date = checked
        summary["principal"] = float(principal)
        summary["original_end_date"] = format_month(add_months(start_date, tenure - 1))
    return summary


def compare_schedules(baseline: Sequence[LedgerRow], modified: Sequence[LedgerRow]) -> Dict[str, object]:
    """Compare a baseline ledger with a modified one.

    ``interest_saved`` and ``months_saved`` are positive when the modified
    ledger is cheaper or shorter.
    """
    baseline = list(baseline)
    modified = list(modified)
    baseline_interest = sum((r.interest for r in baseline), ZERO)
    modified_interest = sum((r.interest for r in modified), ZERO)
    return {
        "baseline_total_interest": float(baseline_interest),
        "modified_total_interest": float(modified_interest),
        "interest_saved": float(baseline_interest - modified_interest),
        "baseline_months": len(baseline),
        "modified_months": len(modified),
        "months_saved": len(baseline) - len(modified),
        "baseline_installment": float(baseline[0].installment) if baseline else 0.0,
        "modified_installment": float(modified[-1].installment) if modified else 0.0,
    }
