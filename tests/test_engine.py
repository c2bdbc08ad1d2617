"""
Tests for the EMI solver and the schedule generator.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from emi_calc.config import EngineConfig, resolve_engine_config
from emi_calc.data_models import (
    REDUCE_INSTALLMENT,
    REDUCE_TENURE,
    LoanTerms,
    PartPayment,
    RateChange,
    RecurringPartPayment,
)
from emi_calc.engine import (
    MAX_MONTHS,
    calculate_emi,
    compare_schedules,
    compute_scenarios,
    expand_part_payments,
    generate_schedule,
    normalize_part_payments,
    normalize_rate_changes,
    summarize_schedule,
)

TOLERANCE = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"))


@pytest.fixture
def terms():
    return LoanTerms(
        principal=Decimal("100000"),
        rate=Decimal("12"),
        tenure=12,
        start_date=date(2024, 1, 1),
    )


def assert_ledger_invariants(rows, principal):
    assert rows[0].opening_balance == principal
    for i, row in enumerate(rows):
        if i > 0:
            assert row.opening_balance == rows[i - 1].closing_balance
        assert row.interest == row.opening_balance * (row.rate / Decimal(1200))
        assert row.principal == min(row.installment - row.interest, row.opening_balance)
        part = row.part_payment or Decimal("0")
        expected_close = row.opening_balance - row.principal - part
        assert abs(row.closing_balance - expected_close) < Decimal("0.005")
        assert row.closing_balance >= 0
        assert row.month == i + 1
    assert rows[-1].closing_balance == 0
    assert all(r.closing_balance > 0 for r in rows[:-1])


class TestCalculateEmi:
    """The annuity formula and its zero-rate fallback."""

    def test_reference_installment(self):
        assert money(calculate_emi(Decimal("100000"), Decimal("12"), 12)) == Decimal("8884.88")

    def test_accepts_plain_numbers(self):
        assert money(calculate_emi(100000, 12, 12)) == Decimal("8884.88")

    def test_zero_rate_is_straight_line(self):
        assert calculate_emi(Decimal("1200"), Decimal("0"), 12) == Decimal("100")

    def test_single_month_repays_principal_plus_interest(self):
        assert calculate_emi(Decimal("1000"), Decimal("12"), 1) == Decimal("1010")

    def test_non_positive_tenure_rejected(self):
        with pytest.raises(ValueError):
            calculate_emi(Decimal("1000"), Decimal("12"), 0)


class TestBaselineSchedule:
    """Schedules without any mid-term event."""

    def test_twelve_month_loan(self, terms):
        result = generate_schedule(terms)

        assert len(result) == 12
        assert money(result[0].installment) == Decimal("8884.88")
        assert abs(result[-1].closing_balance) < TOLERANCE
        assert result.diagnostics.clean

    def test_principal_components_sum_to_principal(self, terms):
        result = generate_schedule(terms)

        total = sum(r.principal for r in result)
        assert abs(total - terms.principal) < TOLERANCE

    def test_ledger_invariants_hold(self, terms):
        result = generate_schedule(terms)
        assert_ledger_invariants(result.rows, terms.principal)

    def test_dates_advance_one_month_at_a_time(self, terms):
        result = generate_schedule(terms)

        assert result[0].date == date(2024, 1, 1)
        assert result[11].date == date(2024, 12, 1)

    def test_month_end_start_date_is_clamped(self):
        terms = LoanTerms(Decimal("50000"), Decimal("9"), 3, date(2024, 1, 31))
        result = generate_schedule(terms)

        assert [r.date for r in result] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]

    def test_balance_is_monotonically_decreasing(self, terms):
        rows = generate_schedule(terms).rows
        for prev, row in zip(rows, rows[1:]):
            assert row.closing_balance < prev.closing_balance

    def test_generation_is_idempotent(self, terms):
        payments = [PartPayment(date(2024, 4, 1), Decimal("5000"))]
        changes = [RateChange(date(2024, 7, 1), Decimal("11"))]

        first = generate_schedule(terms, payments, changes, REDUCE_INSTALLMENT)
        second = generate_schedule(terms, payments, changes, REDUCE_INSTALLMENT)

        assert first.rows == second.rows
        assert first.diagnostics == second.diagnostics

    def test_inputs_are_not_mutated(self, terms):
        payments = [PartPayment(date(2024, 6, 1), Decimal("1000")), PartPayment(date(2024, 2, 1), Decimal("1000"))]
        snapshot = list(payments)

        generate_schedule(terms, payments)

        assert payments == snapshot


class TestIncompleteTerms:
    """Incomplete terms give an empty ledger instead of an error."""

    @pytest.mark.parametrize(
        "principal, rate, tenure, start",
        [
            (Decimal("0"), Decimal("12"), 12, date(2024, 1, 1)),
            (None, Decimal("12"), 12, date(2024, 1, 1)),
            (Decimal("100000"), Decimal("0"), 12, date(2024, 1, 1)),
            (Decimal("100000"), Decimal("12"), 0, date(2024, 1, 1)),
            (Decimal("100000"), Decimal("12"), 12, None),
            (Decimal("100000"), Decimal("12"), 12, "2024-01"),
            ("abc", Decimal("12"), 12, date(2024, 1, 1)),
        ],
    )
    def test_returns_empty_ledger(self, principal, rate, tenure, start):
        result = generate_schedule(LoanTerms(principal, rate, tenure, start))

        assert len(result) == 0
        assert result.diagnostics.incomplete_terms

    def test_datetime_start_is_accepted(self):
        result = generate_schedule(LoanTerms(Decimal("1000"), Decimal("12"), 2, datetime(2024, 1, 1, 9, 30)))
        assert result[0].date == date(2024, 1, 1)


class TestPartPayments:
    """Part payments with both reanchor policies."""

    def test_reduce_tenure_shortens_ledger(self, terms):
        result = generate_schedule(
            terms, [PartPayment(date(2024, 6, 1), Decimal("20000"))], policy=REDUCE_TENURE
        )

        assert len(result) < 12
        assert all(money(r.installment) == Decimal("8884.88") for r in result)
        assert result[5].is_part_payment
        assert result[5].part_payment == Decimal("20000")
        assert_ledger_invariants(result.rows, terms.principal)

    def test_principal_component_excludes_part_payment(self, terms):
        baseline = generate_schedule(terms)
        result = generate_schedule(
            terms, [PartPayment(date(2024, 6, 1), Decimal("20000"))], policy=REDUCE_TENURE
        )

        assert result[5].principal == baseline[5].principal
        assert result[5].closing_balance == baseline[5].closing_balance - Decimal("20000")

    def test_reduce_installment_lowers_later_installments(self, terms):
        result = generate_schedule(
            terms, [PartPayment(date(2024, 6, 1), Decimal("20000"))], policy=REDUCE_INSTALLMENT
        )

        first = result[0].installment
        assert all(r.installment == first for r in result.rows[:6])
        assert all(r.installment < first for r in result.rows[6:])
        assert len(result) == 12
        assert_ledger_invariants(result.rows, terms.principal)

    def test_part_payment_saves_interest(self, terms):
        baseline = generate_schedule(terms)
        for policy in (REDUCE_INSTALLMENT, REDUCE_TENURE):
            modified = generate_schedule(terms, [PartPayment(date(2024, 3, 1), Decimal("1000"))], policy=policy)
            assert sum(r.interest for r in modified) < sum(r.interest for r in baseline)

    @pytest.mark.parametrize("month", range(1, 12))
    def test_reduce_installment_keeps_contract_end(self, terms, month):
        baseline = generate_schedule(terms)
        payment = PartPayment(date(2024, month, 1), Decimal("1000"))
        result = generate_schedule(terms, [payment], policy=REDUCE_INSTALLMENT)

        assert len(result) == terms.tenure
        assert sum(r.interest for r in result) < sum(r.interest for r in baseline)
        assert_ledger_invariants(result.rows, terms.principal)

    def test_oversized_payment_is_clamped_to_balance(self, terms):
        result = generate_schedule(terms, [PartPayment(date(2024, 3, 1), Decimal("1000000"))])

        assert len(result) == 3
        last = result[-1]
        assert last.closing_balance == 0
        assert last.part_payment == last.opening_balance - last.principal

    def test_payment_during_negative_amortization_is_capped_at_balance(self):
        terms = LoanTerms(Decimal("100000"), Decimal("1"), 240, date(2024, 1, 1))
        result = generate_schedule(
            terms,
            [PartPayment(date(2024, 3, 1), Decimal("1000000"))],
            [RateChange(date(2024, 2, 1), Decimal("12"))],
            policy=REDUCE_TENURE,
        )

        row = result[2]
        assert row.principal < 0
        assert row.part_payment == row.opening_balance
        assert abs(row.closing_balance + row.principal) < Decimal("0.000001")
        assert len(result) == 5
        assert_ledger_invariants(result.rows, terms.principal)

    def test_payment_outside_ledger_is_reported(self, terms):
        result = generate_schedule(terms, [PartPayment(date(2030, 1, 1), Decimal("500"))])

        assert len(result) == 12
        assert not any(r.is_part_payment for r in result)
        assert len(result.diagnostics.unmatched_events) == 1

    def test_only_first_payment_in_a_month_applies(self, terms):
        payments = [
            PartPayment(date(2024, 6, 20), Decimal("7000")),
            PartPayment(date(2024, 6, 1), Decimal("5000")),
            PartPayment(date(2024, 6, 1), Decimal("3000")),
        ]
        result = generate_schedule(terms, payments, policy=REDUCE_TENURE)

        assert result[5].part_payment == Decimal("5000")
        assert len(result.diagnostics.unmatched_events) == 2

    def test_recurring_payment_applies_every_interval(self, terms):
        recurring = RecurringPartPayment(date(2024, 2, 1), Decimal("1000"), count=3, interval_months=2)
        result = generate_schedule(terms, [recurring], policy=REDUCE_TENURE)

        months = [r.month for r in result if r.is_part_payment]
        assert months == [2, 4, 6]

    def test_malformed_payments_are_skipped(self, terms):
        payments = [
            PartPayment("2024-06", Decimal("1000")),
            PartPayment(date(2024, 6, 1), Decimal("-5")),
            PartPayment(date(2024, 6, 1), "lots"),
            PartPayment(date(2024, 6, 1), Decimal("100"), reanchor="sideways"),
            PartPayment(date(2024, 7, 1), Decimal("2500")),
        ]
        result = generate_schedule(terms, payments)

        assert len(result.diagnostics.skipped_events) == 4
        assert [r.month for r in result if r.is_part_payment] == [7]


class TestRateChanges:
    """Rate changes with month and exact-date matching."""

    def test_reduce_installment_reanchors_emi(self, terms):
        result = generate_schedule(
            terms, rate_changes=[RateChange(date(2024, 6, 1), Decimal("10"))], policy=REDUCE_INSTALLMENT
        )

        assert len(result) == 12
        for row in result.rows[:5]:
            assert row.rate == Decimal("12")
            assert money(row.installment) == Decimal("8884.88")
        for row in result.rows[5:]:
            assert row.rate == Decimal("10")
            assert row.installment < Decimal("8884.87")
        assert abs(result[-1].closing_balance) < TOLERANCE
        assert_ledger_invariants(result.rows, terms.principal)

    def test_reduce_tenure_keeps_installment_and_shortens_loan(self):
        terms = LoanTerms(Decimal("1000000"), Decimal("12"), 240, date(2024, 1, 1))
        baseline = generate_schedule(terms)
        result = generate_schedule(
            terms, rate_changes=[RateChange(date(2025, 1, 1), Decimal("6"))], policy=REDUCE_TENURE
        )

        assert len(result) < len(baseline)
        assert len({r.installment for r in result}) == 1
        assert result[12].rate == Decimal("6")

    def test_rate_and_payment_in_same_month(self, terms):
        result = generate_schedule(
            terms,
            [PartPayment(date(2024, 6, 1), Decimal("10000"))],
            [RateChange(date(2024, 6, 1), Decimal("10"))],
            REDUCE_INSTALLMENT,
        )

        row = result[5]
        assert row.rate == Decimal("10")
        assert row.is_part_payment
        assert row.interest == row.opening_balance * (Decimal("10") / Decimal(1200))

    def test_month_matching_uses_first_change_of_the_month(self):
        terms = LoanTerms(Decimal("100000"), Decimal("12"), 12, date(2024, 1, 15))
        changes = [RateChange(date(2024, 3, 20), Decimal("9")), RateChange(date(2024, 3, 10), Decimal("10"))]
        result = generate_schedule(terms, rate_changes=changes)

        assert result[2].rate == Decimal("10")
        assert result[3].rate == Decimal("10")
        assert len(result.diagnostics.unmatched_events) == 1

    def test_exact_matching_applies_changes_on_their_dates(self):
        terms = LoanTerms(Decimal("100000"), Decimal("12"), 12, date(2024, 1, 15))
        changes = [RateChange(date(2024, 3, 20), Decimal("9")), RateChange(date(2024, 3, 10), Decimal("10"))]
        result = generate_schedule(terms, rate_changes=changes, config=EngineConfig(rate_change_matching="exact"))

        assert result[1].rate == Decimal("12")
        assert result[2].rate == Decimal("10")
        assert result[3].rate == Decimal("9")

    def test_exact_matching_latest_due_change_supersedes(self):
        terms = LoanTerms(Decimal("100000"), Decimal("12"), 12, date(2024, 3, 1))
        changes = [RateChange(date(2024, 2, 1), Decimal("11")), RateChange(date(2024, 2, 5), Decimal("10"))]

        exact = generate_schedule(terms, rate_changes=changes, config=EngineConfig(rate_change_matching="exact"))
        monthly = generate_schedule(terms, rate_changes=changes)

        assert exact[0].rate == Decimal("10")
        assert any("superseded" in s for s in exact.diagnostics.unmatched_events)
        assert all(r.rate == Decimal("12") for r in monthly)
        assert len(monthly.diagnostics.unmatched_events) == 2

    def test_exact_matching_same_date_tie_goes_to_first_listed(self):
        terms = LoanTerms(Decimal("100000"), Decimal("12"), 12, date(2024, 1, 1))
        changes = [RateChange(date(2024, 4, 1), Decimal("8")), RateChange(date(2024, 4, 1), Decimal("14"))]
        result = generate_schedule(terms, rate_changes=changes, config=EngineConfig(rate_change_matching="exact"))

        assert result[3].rate == Decimal("8")

    def test_per_event_scope_uses_event_policy(self, terms):
        change = RateChange(date(2024, 6, 1), Decimal("10"), reanchor=REDUCE_TENURE)

        per_event = generate_schedule(
            terms, rate_changes=[change], policy=REDUCE_INSTALLMENT, config=EngineConfig(reanchor_scope="per_event")
        )
        global_scope = generate_schedule(terms, rate_changes=[change], policy=REDUCE_INSTALLMENT)

        assert per_event[5].installment == per_event[0].installment
        assert global_scope[5].installment < global_scope[0].installment

    def test_per_event_scope_applies_to_part_payments(self, terms):
        payment = PartPayment(date(2024, 6, 1), Decimal("20000"), reanchor=REDUCE_INSTALLMENT)
        result = generate_schedule(
            terms, [payment], policy=REDUCE_TENURE, config=EngineConfig(reanchor_scope="per_event")
        )

        assert result[6].installment < result[0].installment

    def test_disabled_rate_changes_are_skipped(self, terms):
        result = generate_schedule(
            terms, rate_changes=[RateChange(date(2024, 6, 1), Decimal("10"))], config=resolve_engine_config("gold", {})
        )

        assert all(r.rate == Decimal("12") for r in result)
        assert len(result.diagnostics.skipped_events) == 1

    def test_malformed_rate_changes_are_skipped(self, terms):
        changes = [
            RateChange(None, Decimal("10")),
            RateChange(date(2024, 6, 1), Decimal("150")),
            RateChange(date(2024, 6, 1), Decimal("10"), reanchor="never"),
        ]
        result = generate_schedule(terms, rate_changes=changes)

        assert len(result.diagnostics.skipped_events) == 3
        assert len(result) == 12

    def test_rate_change_to_zero_amortizes_straight_line(self, terms):
        result = generate_schedule(terms, rate_changes=[RateChange(date(2024, 7, 1), Decimal("0"))])

        row = result[6]
        assert row.interest == 0
        assert row.installment == row.opening_balance / 6
        assert len(result) == 12


class TestSafetyCeiling:
    """A schedule that never converges stops at the ceiling."""

    def test_runaway_schedule_is_truncated(self):
        terms = LoanTerms(Decimal("100000"), Decimal("1"), 360, date(2024, 1, 1))
        result = generate_schedule(
            terms, rate_changes=[RateChange(date(2024, 2, 1), Decimal("12"))], policy=REDUCE_TENURE
        )

        assert len(result) == MAX_MONTHS
        assert result.diagnostics.ceiling_hit
        assert result[-1].closing_balance > terms.principal

    def test_ceiling_is_logged(self, caplog):
        terms = LoanTerms(Decimal("100000"), Decimal("1"), 360, date(2024, 1, 1))
        with caplog.at_level("WARNING", logger="emi_calc.engine"):
            generate_schedule(terms, rate_changes=[RateChange(date(2024, 2, 1), Decimal("12"))], policy=REDUCE_TENURE)

        assert any("did not converge" in r.getMessage() for r in caplog.records)


class TestNormalization:
    """Event expansion and sorting before generation."""

    def test_expand_recurring(self):
        expanded = expand_part_payments(
            [RecurringPartPayment(date(2024, 11, 30), Decimal("500"), count=3, interval_months=3)]
        )
        assert [p.date for p in expanded] == [date(2024, 11, 30), date(2025, 2, 28), date(2025, 5, 30)]

    def test_expand_rejects_bad_recurrence(self):
        with pytest.raises(ValueError):
            expand_part_payments([RecurringPartPayment(date(2024, 1, 1), Decimal("500"), count=0)])

    def test_bad_recurrence_is_skipped_during_normalization(self):
        payments = normalize_part_payments(
            [RecurringPartPayment(date(2024, 1, 1), Decimal("500"), interval_months=0)]
        )
        assert payments == []

    def test_sorting_is_stable(self):
        changes = normalize_rate_changes(
            [
                RateChange(date(2024, 5, 1), Decimal("9")),
                RateChange(date(2024, 2, 1), Decimal("11")),
                RateChange(date(2024, 5, 1), Decimal("8")),
            ]
        )
        assert [c.rate for c in changes] == [Decimal("11"), Decimal("9"), Decimal("8")]


class TestSummaries:
    """Summary metrics and the savings comparator."""

    def test_summary_of_baseline(self, terms):
        summary = summarize_schedule(generate_schedule(terms).rows, terms)

        assert summary["months"] == 12
        assert summary["total_interest"] == pytest.approx(6618.55, abs=0.01)
        assert summary["total_principal"] == pytest.approx(100000, abs=0.01)
        assert summary["total_part_payments"] == 0
        assert summary["end_date"] == "2024-12"
        assert summary["original_end_date"] == "2024-12"

    def test_summary_of_empty_ledger(self):
        summary = summarize_schedule([])
        assert summary["months"] == 0
        assert summary["end_date"] is None

    @pytest.mark.parametrize(
        "terms",
        [
            LoanTerms(None, Decimal("12"), 12, None),
            LoanTerms(Decimal("100000"), Decimal("12"), 12, None),
            LoanTerms(Decimal("100000"), Decimal("12"), 0, date(2024, 1, 1)),
        ],
    )
    def test_summary_with_incomplete_terms(self, terms):
        result = generate_schedule(terms)
        summary = summarize_schedule(result.rows, terms)

        assert summary["months"] == 0
        assert "principal" not in summary
        assert "original_end_date" not in summary

    def test_compare_reports_savings(self, terms):
        baseline, modified = compute_scenarios(
            terms, [PartPayment(date(2024, 6, 1), Decimal("20000"))], policy=REDUCE_TENURE
        )
        comparison = compare_schedules(baseline.rows, modified.rows)

        assert comparison["interest_saved"] > 0
        assert comparison["months_saved"] >= 1
        assert comparison["baseline_installment"] == pytest.approx(8884.88, abs=0.01)
        assert comparison["interest_saved"] == pytest.approx(
            comparison["baseline_total_interest"] - comparison["modified_total_interest"]
        )

    def test_baseline_keeps_rate_changes(self, terms):
        changes = [RateChange(date(2024, 6, 1), Decimal("10"))]
        baseline, modified = compute_scenarios(terms, [], changes)

        assert baseline.rows == modified.rows
        assert baseline[5].rate == Decimal("10")
