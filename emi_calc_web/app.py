import logging
import os

import click
from flask import Flask, Response, render_template, request

from emi_calc.config import LOAN_DEFAULTS, resolve_engine_config
from emi_calc.data_models import LOAN_TYPES, REANCHOR_POLICIES
from emi_calc.engine import compare_schedules, compute_scenarios, summarize_schedule
from emi_calc.export import XLSX_MIME, excel_bytes, export_filename, serialize_rows
from emi_calc.main import build_inputs_from_options

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")

MAX_PREVIEW_ROWS = 120


def parse_form_list(value: str) -> list[str]:
    """Parse a comma or newline separated list of entries from a form field.

    Returns a list of trimmed strings, skipping any empty entries.
    """
    if not value:
        return []
    parts = [p.strip() for p in value.replace("\n", ",").split(",")]
    return [p for p in parts if p]


def _loan_type(form) -> str:
    loan_type = form.get("loan_type", "personal").lower()
    return loan_type if loan_type in LOAN_TYPES else "personal"


def _optional_float(value: str):
    value = (value or "").strip()
    return float(value) if value else None


def _optional_int(value: str):
    value = (value or "").strip()
    return int(value) if value else None


def _run_analysis(form):
    loan_type = _loan_type(form)
    terms, payments, changes = build_inputs_from_options(
        form.get("principal", "").strip() or None,
        _optional_float(form.get("rate", "")),
        _optional_int(form.get("tenure", "")),
        form.get("tenure_unit", "months"),
        form.get("start_date", "").strip(),
        loan_type,
        tuple(parse_form_list(form.get("part_payments", ""))),
        tuple(parse_form_list(form.get("rate_changes", ""))),
    )
    policy = form.get("reduce") or LOAN_DEFAULTS[loan_type]["policy"]
    if policy not in REANCHOR_POLICIES:
        raise ValueError(f"Reanchor policy must be 'installment' or 'tenure'; got {policy}")
    config = resolve_engine_config(loan_type)
    baseline, modified = compute_scenarios(terms, payments, changes, policy, config)
    return terms, baseline, modified


def _has_events(form) -> bool:
    return bool(parse_form_list(form.get("part_payments", "")) or parse_form_list(form.get("rate_changes", "")))


@app.route("/", methods=["GET", "POST"])
def index():
    summary = None
    comparison = None
    schedule = None
    notes = []
    truncated = 0
    error = None
    loan_type = _loan_type(request.form) if request.method == "POST" else request.args.get("loan_type", "personal")
    if loan_type not in LOAN_TYPES:
        loan_type = "personal"

    if request.method == "POST":
        try:
            terms, baseline, modified = _run_analysis(request.form)
            summary = summarize_schedule(modified.rows, terms)
            if _has_events(request.form):
                comparison = compare_schedules(baseline.rows, modified.rows)
            notes = modified.diagnostics.messages()
            schedule = serialize_rows(modified.rows[:MAX_PREVIEW_ROWS])
            truncated = max(len(modified.rows) - MAX_PREVIEW_ROWS, 0)
        except (ValueError, click.BadParameter) as exc:
            logger.info("Rejected loan form: %s", exc)
            error = str(exc)

    return render_template(
        "index.html",
        loan_type=loan_type,
        loan_types=LOAN_TYPES,
        defaults=LOAN_DEFAULTS[loan_type],
        form=request.form,
        summary=summary,
        comparison=comparison,
        schedule=schedule,
        truncated=truncated,
        notes=notes,
        error=error,
    )


@app.post("/export")
def export():
    try:
        terms, _, modified = _run_analysis(request.form)
    except (ValueError, click.BadParameter) as exc:
        return Response(str(exc), status=400, mimetype="text/plain")
    include_part_payment = bool(parse_form_list(request.form.get("part_payments", "")))
    payload = excel_bytes(modified.rows, include_part_payment)
    filename = export_filename(terms.loan_type)
    return Response(
        payload,
        mimetype=XLSX_MIME,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print("Starting EMI calculator web app...")
    app.run(host="0.0.0.0", port=8710, debug=True)
