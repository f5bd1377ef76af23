"""Structural validation and confidence scoring of extraction candidates.

Both functions are pure: they never raise for bad data and never touch the
database. The score is advisory; a low score only prioritises the invoice for
manual review and never blocks persistence.
"""

from decimal import Decimal

from invoice_pipeline.schemas.invoice import ExtractionCandidate
from invoice_pipeline.services.types import ValidationReport

AMOUNT_TOLERANCE = Decimal("0.01")


def validate_candidate(candidate: ExtractionCandidate) -> ValidationReport:
    """Check required fields, date order and line-item totals against the header."""
    report = ValidationReport(errors=[], warnings=[], date_errors=0, amount_mismatch=False)
    header = candidate.invoice_header

    if not header.invoice_number:
        report["errors"].append("Invoice number is missing")
    if not header.customer_name:
        report["errors"].append("Customer name is missing")

    if header.due_date and header.invoice_date and header.due_date < header.invoice_date:
        report["warnings"].append("Due date is before invoice date")
        report["date_errors"] += 1

    if candidate.line_items:
        line_total = sum(
            (item.total_amount or Decimal(0) for item in candidate.line_items), Decimal(0)
        )
        invoice_total = header.total_amount or Decimal(0)
        if abs(line_total - invoice_total) > abs(line_total * AMOUNT_TOLERANCE):
            report["warnings"].append(
                f"Line item total {line_total} does not match invoice total {invoice_total}"
            )
            report["amount_mismatch"] = True

    return report


def score_confidence(candidate: ExtractionCandidate, report: ValidationReport) -> float:
    """Return a completeness/reliability score in [0, 1], rounded to two decimals."""
    header = candidate.invoice_header
    score = 1.0

    if not header.invoice_number:
        score -= 0.3
    if not header.customer_name:
        score -= 0.3

    if header.invoice_date is None:
        score -= 0.1
    if header.total_amount is None:
        score -= 0.1

    score -= 0.05 * report["date_errors"]
    if report["amount_mismatch"]:
        score -= 0.1

    if not candidate.line_items:
        score -= 0.2

    if candidate.confidence_notes and "uncertain" in candidate.confidence_notes.lower():
        score -= 0.1

    return round(max(0.0, min(1.0, score)), 2)
