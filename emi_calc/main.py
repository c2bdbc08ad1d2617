"""Command-line interface for the EMI calculator.

This module uses the ``click`` library to implement a multi-command
interface. Users can compute full amortization schedules for gold and
personal loans, view summaries or compare a loan with and without its part
payments. Results can be printed to the terminal or exported to
XLSX/JSON/CSV files.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import click

from .config import LOAN_DEFAULTS, EngineConfig, resolve_engine_config
from .data_models import (
    LOAN_TYPES,
    REANCHOR_POLICIES,
    LoanTerms,
    PartPayment,
    RateChange,
    RecurringPartPayment,
)
from .engine import compute_scenarios, compare_schedules, generate_schedule, summarize_schedule
from .export import export_to_csv, export_to_excel, export_to_json, write_excel
from .formatter import print_comparison, print_diagnostics, print_schedule, print_summary
from .utils import decimal_from_str, parse_year_month, tenure_in_months

logger = logging.getLogger(__name__)

MAX_PRINTED_ROWS = 120


def parse_amount(value: str) -> float:
    """Parse a numeric string with optional suffixes.

    Accepts plain floats ("500000") and shorthand with ``k``/``m`` suffixes
    (e.g., "500k" meaning 500_000). Returns a float.
    """
    value = value.strip().lower()
    value = value.replace(",", "")
    factor = 1.0
    if value.endswith("k"):
        factor = 1_000.0
        value = value[:-1]
    elif value.endswith("m"):
        factor = 1_000_000.0
        value = value[:-1]
    try:
        return float(value) * factor
    except ValueError:
        raise click.BadParameter(f"Invalid amount: {value}")


def _to_decimal(value) -> Decimal:
    try:
        return decimal_from_str(str(value))
    except ValueError as exc:
        raise click.BadParameter(str(exc))


def _parse_date(ym: str):
    try:
        return parse_year_month(ym)
    except ValueError as exc:
        raise click.BadParameter(str(exc))


def _parse_policy(value: str) -> str:
    policy = value.strip().lower()
    if policy not in REANCHOR_POLICIES:
        raise click.BadParameter(
            f"Reanchor policy must be 'installment' or 'tenure'; got {value}"
        )
    return policy


def parse_part_payment_strings(
    values: Tuple[str, ...],
) -> List[Union[PartPayment, RecurringPartPayment]]:
    """Parse ``YYYY-MM:AMOUNT[:COUNT:INTERVAL][:POLICY]`` entries."""
    payments: List[Union[PartPayment, RecurringPartPayment]] = []
    for item in values:
        parts = item.split(":")
        if len(parts) not in (2, 3, 4, 5):
            raise click.BadParameter(
                f"Part payment must be in YYYY-MM:AMOUNT[:COUNT:INTERVAL][:POLICY] format; got {item}"
            )
        dt = _parse_date(parts[0])
        amount = _to_decimal(parse_amount(parts[1]))
        policy = None
        if len(parts) in (3, 5):
            policy = _parse_policy(parts[-1])
        if len(parts) >= 4:
            try:
                count = int(parts[2])
                interval = int(parts[3])
            except ValueError:
                raise click.BadParameter(f"Recurrence count and interval must be integers; got {item}")
            if count < 1 or interval < 1:
                raise click.BadParameter(f"Recurrence count and interval must be at least 1; got {item}")
            payments.append(
                RecurringPartPayment(
                    first_date=dt, amount=amount, count=count, interval_months=interval, reanchor=policy
                )
            )
        else:
            payments.append(PartPayment(date=dt, amount=amount, reanchor=policy))
    return payments


def parse_rate_change_strings(values: Tuple[str, ...]) -> List[RateChange]:
    """Parse ``YYYY-MM[-DD]:RATE[:POLICY]`` entries."""
    changes: List[RateChange] = []
    for item in values:
        parts = item.split(":")
        if len(parts) not in (2, 3):
            raise click.BadParameter(
                f"Rate change must be in YYYY-MM:RATE[:POLICY] format; got {item}"
            )
        dt = _parse_date(parts[0])
        rate = _to_decimal(parts[1].rstrip("%"))
        if len(parts) == 3:
            changes.append(RateChange(date=dt, rate=rate, reanchor=_parse_policy(parts[2])))
        else:
            changes.append(RateChange(date=dt, rate=rate))
    return changes


def build_inputs_from_options(
    principal: Optional[str],
    rate: Optional[float],
    tenure: Optional[int],
    tenure_unit: str,
    start_date: str,
    loan_type: str,
    part_payment: Tuple[str, ...] = (),
    rate_change: Tuple[str, ...] = (),
) -> Tuple[LoanTerms, List[Union[PartPayment, RecurringPartPayment]], List[RateChange]]:
    """Turn raw option values into loan terms and event lists.

    Missing principal, rate or tenure fall back to the defaults of the
    loan type.
    """
    defaults = LOAN_DEFAULTS[loan_type]
    principal_value = (
        _to_decimal(parse_amount(principal)) if principal else defaults["principal"]
    )
    rate_value = _to_decimal(rate) if rate is not None else defaults["rate"]
    try:
        months = tenure_in_months(tenure, tenure_unit) if tenure is not None else defaults["tenure"]
    except ValueError as exc:
        raise click.BadParameter(str(exc))
    terms = LoanTerms(
        principal=principal_value,
        rate=rate_value,
        tenure=months,
        start_date=_parse_date(start_date),
        loan_type=loan_type,
    )
    payments = parse_part_payment_strings(part_payment) if part_payment else []
    changes = parse_rate_change_strings(rate_change) if rate_change else []
    return terms, payments, changes


def _resolve(loan_type: str, matching: Optional[str], scope: Optional[str]) -> EngineConfig:
    try:
        return resolve_engine_config(
            loan_type, rate_change_matching=matching, reanchor_scope=scope
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc))


def loan_options(func):
    """Attach the options shared by every command."""
    options = [
        click.option("--loan-type", "loan_type", type=click.Choice(LOAN_TYPES), default="personal", help="Loan product"),
        click.option("--principal", "-p", "principal", help="Loan amount (accepts k/m suffixes)"),
        click.option("--rate", "-r", "rate", type=float, help="Annual interest rate (percent)"),
        click.option("--tenure", "-t", "tenure", type=int, help="Loan tenure"),
        click.option("--tenure-unit", "tenure_unit", type=click.Choice(["months", "years"]), default="months", help="Unit of --tenure"),
        click.option("--start-date", "-s", "start_date", required=True, help="First installment month (YYYY-MM)"),
        click.option("--part-payment", "part_payment", multiple=True, help="Part payment in YYYY-MM:AMOUNT[:COUNT:INTERVAL][:POLICY] format"),
        click.option("--rate-change", "rate_change", multiple=True, help="Rate change in YYYY-MM:RATE[:POLICY] format"),
        click.option("--reduce", "policy", type=click.Choice(list(REANCHOR_POLICIES)), help="What a part payment reduces (default depends on the loan type)"),
        click.option("--matching", "matching", type=click.Choice(["month", "exact"]), help="Rate change matching"),
        click.option("--scope", "scope", type=click.Choice(["global", "per_event"]), help="Whether events carry their own reanchor policy"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _run(params: Dict[str, Any], with_baseline: bool = False):
    loan_type = params["loan_type"]
    terms, payments, changes = build_inputs_from_options(
        params["principal"],
        params["rate"],
        params["tenure"],
        params["tenure_unit"],
        params["start_date"],
        loan_type,
        params["part_payment"],
        params["rate_change"],
    )
    policy = params["policy"] or LOAN_DEFAULTS[loan_type]["policy"]
    config = _resolve(loan_type, params["matching"], params["scope"])
    logger.debug("Running %s loan with policy %s and %s", loan_type, policy, config)
    if with_baseline:
        baseline, modified = compute_scenarios(terms, payments, changes, policy, config)
        return terms, baseline, modified
    return terms, None, generate_schedule(terms, payments, changes, policy, config)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log engine activity to stderr")
def cli(verbose: bool) -> None:
    """A command-line EMI calculator for gold and personal loans."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@loan_options
@click.option("--output", "output", type=str, help="Output file (.xlsx, .json or .csv) or a directory for the xlsx export")
def schedule(output: Optional[str], **params: Any) -> None:
    """Compute and print the full repayment schedule."""
    terms, _, result = _run(params)
    print_diagnostics(result.diagnostics.messages())
    summary_data = summarize_schedule(result.rows, terms)
    if output:
        path = Path(output)
        include_part_payment = any(row.is_part_payment for row in result.rows)
        if path.is_dir():
            path = export_to_excel(result.rows, terms.loan_type, path, include_part_payment)
        elif path.suffix.lower() == ".xlsx":
            write_excel(path, result.rows, include_part_payment)
        elif path.suffix.lower() == ".json":
            export_to_json(path, result.rows, summary_data)
        elif path.suffix.lower() == ".csv":
            export_to_csv(path, result.rows)
        else:
            raise click.BadParameter("Unsupported output format; use .xlsx, .json or .csv")
        click.echo(f"Schedule exported to {path}")
        return
    print_summary(summary_data)
    rows = result.rows
    if len(rows) > MAX_PRINTED_ROWS:
        click.echo(f"Schedule has {len(rows)} rows; showing first {MAX_PRINTED_ROWS} rows.")
        rows = rows[:MAX_PRINTED_ROWS]
    print_schedule(rows, show_rate=bool(params["rate_change"]))


@cli.command()
@loan_options
@click.option("--output", "output", type=str, help="Output file path (.json)")
def summary(output: Optional[str], **params: Any) -> None:
    """Compute and print only the summary metrics for a loan."""
    terms, _, result = _run(params)
    print_diagnostics(result.diagnostics.messages())
    summary_data = summarize_schedule(result.rows, terms)
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Summary export must use .json extension")
        with path.open("w", encoding="utf-8") as f:
            json.dump({"summary": summary_data}, f, indent=2)
        click.echo(f"Summary exported to {path}")
    else:
        print_summary(summary_data)


@cli.command()
@loan_options
def compare(**params: Any) -> None:
    """Compare the loan with and without its part payments.

    Rate changes apply to both ledgers, so the difference is what the part
    payments save:

        emi-calc compare -s 2024-01 -p 300k -r 12 -t 36 --part-payment 2024-07:50k
    """
    terms, baseline, modified = _run(params, with_baseline=True)
    print_diagnostics(modified.diagnostics.messages())
    print_summary(summarize_schedule(modified.rows, terms))
    print_comparison(compare_schedules(baseline.rows, modified.rows))


if __name__ == "__main__":
    cli()
