"""Output helpers for the EMI calculator.

This module renders ledgers, summaries and savings comparisons in a tabular
text format for the terminal. Output goes through ``click.echo`` so that it
can be captured by the CLI test runner.
"""

from __future__ import annotations

from typing import Dict, Iterable, List

import click

from .data_models import LedgerRow

RULE = "-" * 72


def print_summary(summary: Dict[str, object]) -> None:
    """Print a summary of loan metrics in a human-readable format."""
    click.echo("Summary")
    click.echo(RULE)
    if "principal" in summary:
        click.echo(f"Principal          : {summary['principal']:.2f}")
    click.echo(f"Monthly EMI        : {summary['first_installment']:.2f}")
    if summary["last_installment"] != summary["first_installment"]:
        click.echo(f"Final EMI          : {summary['last_installment']:.2f}")
    click.echo(f"Total interest     : {summary['total_interest']:.2f}")
    if summary.get("total_part_payments"):
        click.echo(f"Part payments      : {summary['total_part_payments']:.2f}")
    click.echo(f"Total paid         : {summary['total_paid']:.2f}")
    click.echo(f"Months             : {summary['months']}")
    if summary.get("original_end_date"):
        click.echo(f"Original end date  : {summary['original_end_date']}")
    click.echo(f"End date           : {summary['end_date'] or '-'}")
    click.echo(RULE)


def print_schedule(rows: Iterable[LedgerRow], show_rate: bool = False) -> None:
    """Print the ledger as a tab-separated table.

    Parameters
    ----------
    rows: Iterable[LedgerRow]
        The ledger rows to print.
    show_rate: bool
        Whether to include the rate column. Useful when rate changes were
        applied.
    """
    headers: List[str] = [
        "Month",
        "Date",
        "Opening",
        "EMI",
        "Principal",
        "Interest",
        "PartPay",
        "Closing",
    ]
    if show_rate:
        headers.append("Rate")
    click.echo("\t".join(headers))
    for row in rows:
        cells = [
            str(row.month),
            row.date.strftime("%Y-%m"),
            f"{row.opening_balance:.2f}",
            f"{row.installment:.2f}",
            f"{row.principal:.2f}",
            f"{row.interest:.2f}",
            f"{row.part_payment:.2f}" if row.part_payment else "",
            f"{row.closing_balance:.2f}",
        ]
        if show_rate:
            cells.append(f"{row.rate}%")
        click.echo("\t".join(cells))


def print_comparison(comparison: Dict[str, object]) -> None:
    """Print the savings of a modified ledger against its baseline."""
    click.echo("Savings")
    click.echo("=" * 72)
    click.echo(f"{'Metric':20s} {'Baseline':>15s} {'Modified':>15s} {'Difference':>15s}")
    pairs = [
        ("EMI", "baseline_installment", "modified_installment"),
        ("Total interest", "baseline_total_interest", "modified_total_interest"),
        ("Months", "baseline_months", "modified_months"),
    ]
    for label, left, right in pairs:
        v1 = comparison[left]
        v2 = comparison[right]
        click.echo(f"{label:20s} {v1:15.2f} {v2:15.2f} {v2 - v1:15.2f}")
    click.echo(f"Interest saved     : {comparison['interest_saved']:.2f}")
    if comparison.get("months_saved"):
        click.echo(f"Tenure reduction   : {int(comparison['months_saved'])} months")
    click.echo("=" * 72)


def print_diagnostics(messages: Iterable[str], err: bool = True) -> int:
    """Print diagnostic notices, returning how many were printed."""
    count = 0
    for message in messages:
        click.echo(f"note: {message}", err=err)
        count += 1
    return count
