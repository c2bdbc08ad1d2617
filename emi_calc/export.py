"""Export helpers for ledgers.

The spreadsheet export writes one worksheet with a fixed column order and
two-decimal number formatting using ``xlsxwriter``. JSON and CSV exports are
kept for scripting.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import xlsxwriter

from .data_models import LedgerRow

SHEET_NAME = "Loan Schedule"

EXCEL_COLUMNS = [
    ("Month", 6),
    ("Payment Date", 12),
    ("Opening Balance", 15),
    ("EMI", 10),
    ("Principal", 10),
    ("Interest", 10),
    ("Closing Balance", 15),
]
PART_PAYMENT_COLUMN = ("Part Payment", 12)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def export_filename(loan_type: str, on: Optional[date] = None) -> str:
    """Return the download name for a ledger exported on ``on`` (default today).

    ``export_filename("gold", date(2024, 5, 1))`` gives
    ``gold-loan-schedule-2024-05-01.xlsx``.
    """
    on = on or date.today()
    return f"{loan_type}-loan-schedule-{on.isoformat()}.xlsx"


def _two_places(value) -> float:
    return round(float(value), 2)


def serialize_rows(rows: Iterable[LedgerRow]) -> List[Dict[str, Any]]:
    """Convert ledger rows into JSON-serialisable dictionaries."""
    serialized = []
    for row in rows:
        serialized.append(
            {
                "month": row.month,
                "date": row.date.strftime("%Y-%m"),
                "opening_balance": _two_places(row.opening_balance),
                "installment": _two_places(row.installment),
                "principal": _two_places(row.principal),
                "interest": _two_places(row.interest),
                "closing_balance": _two_places(row.closing_balance),
                "rate": float(row.rate),
                "part_payment": _two_places(row.part_payment) if row.part_payment else None,
            }
        )
    return serialized


def write_excel(
    target: Union[str, Path, io.BytesIO],
    rows: Iterable[LedgerRow],
    include_part_payment: bool = False,
) -> None:
    """Write the ledger to an xlsx workbook at ``target`` (a path or a buffer)."""
    options = {"in_memory": True} if isinstance(target, io.BytesIO) else {}
    workbook = xlsxwriter.Workbook(target if isinstance(target, io.BytesIO) else str(target), options)
    try:
        sheet = workbook.add_worksheet(SHEET_NAME)
        header_fmt = workbook.add_format({"bold": True})
        money_fmt = workbook.add_format({"num_format": "0.00"})
        columns = list(EXCEL_COLUMNS)
        if include_part_payment:
            columns.append(PART_PAYMENT_COLUMN)
        for col, (title, width) in enumerate(columns):
            sheet.set_column(col, col, width)
            sheet.write_string(0, col, title, header_fmt)
        for line, row in enumerate(rows, start=1):
            sheet.write_number(line, 0, row.month)
            sheet.write_string(line, 1, row.date.strftime("%b %Y"))
            amounts = [
                row.opening_balance,
                row.installment,
                row.principal,
                row.interest,
                row.closing_balance,
            ]
            for col, amount in enumerate(amounts, start=2):
                sheet.write_number(line, col, _two_places(amount), money_fmt)
            if include_part_payment and row.is_part_payment and row.part_payment:
                sheet.write_number(line, len(EXCEL_COLUMNS), _two_places(row.part_payment), money_fmt)
    finally:
        workbook.close()


def export_to_excel(
    rows: Iterable[LedgerRow],
    loan_type: str,
    directory: Union[str, Path] = ".",
    include_part_payment: bool = False,
    on: Optional[date] = None,
) -> Path:
    """Write the ledger into ``directory`` under ``export_filename`` and return the path."""
    path = Path(directory) / export_filename(loan_type, on)
    write_excel(path, rows, include_part_payment)
    return path


def excel_bytes(rows: Iterable[LedgerRow], include_part_payment: bool = False) -> bytes:
    """Return the xlsx workbook for the ledger as bytes, for downloads."""
    buffer = io.BytesIO()
    write_excel(buffer, rows, include_part_payment)
    return buffer.getvalue()


def export_to_json(path: Path, rows: Iterable[LedgerRow], summary: Dict[str, Any]) -> None:
    """Export ledger and summary to a JSON file."""
    data = {"summary": summary, "schedule": serialize_rows(rows)}
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def export_to_csv(path: Path, rows: Iterable[LedgerRow]) -> None:
    """Export the ledger to a CSV file using the spreadsheet column order."""
    header = [title for title, _ in EXCEL_COLUMNS] + [PART_PAYMENT_COLUMN[0]]
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for row in rows:
            writer.writerow(
                [
                    row.month,
                    row.date.strftime("%Y-%m"),
                    f"{row.opening_balance:.2f}",
                    f"{row.installment:.2f}",
                    f"{row.principal:.2f}",
                    f"{row.interest:.2f}",
                    f"{row.closing_balance:.2f}",
                    f"{row.part_payment:.2f}" if row.part_payment else "",
                ]
            )
