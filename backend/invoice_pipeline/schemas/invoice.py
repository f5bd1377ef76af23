"""Pydantic schemas for the structured output of the extraction provider."""

import re
from datetime import date
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, Field, field_validator

_CURRENCY_RE = re.compile(r"[$€£\s]")
# Optional comma thousands groups, dot as the only decimal separator.
_GROUPED_AMOUNT_RE = re.compile(r"-?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?|-?\.\d+")


def parse_amount(v: object) -> Decimal | None:
    """Coerce an extracted amount ("$1,234.50", "(12.00)", 7, None...) to Decimal.

    Returns None for anything that is not recognisably a finite number.
    """
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float, Decimal)):
        amount = Decimal(str(v))
        return amount if amount.is_finite() else None
    s = str(v).strip()
    # Accounting notation: (12.00) means -12.00
    negative = s.startswith("(") and s.endswith(")")
    if negative:
        s = s[1:-1]
    try:
        amount = Decimal(s)
    except InvalidOperation:
        s = _CURRENCY_RE.sub("", s)
        if not _GROUPED_AMOUNT_RE.fullmatch(s):
            return None
        amount = Decimal(s.replace(",", ""))
    if not amount.is_finite():
        return None
    return -amount if negative else amount


def parse_partial_date(v: object) -> date | None:
    """Parse an extracted date; returns None for blanks and unrecognised formats."""
    if v is None or v == "":
        return None
    if isinstance(v, date):
        return v
    # Normalise unicode dashes and slashes to ASCII hyphen before splitting
    s = str(v).strip()[:10].replace("–", "-").replace("—", "-").replace("/", "-")
    parts = s.split("-")
    try:
        if len(parts) != 3:
            return None
        a, b, c = int(parts[0]), int(parts[1]), int(parts[2])
        if a > 31:  # YYYY-MM-DD
            return date(a, b, c)
        if c > 31:
            if a > 12:  # first part can't be a month → DD-MM-YYYY
                return date(c, b, a)
            return date(c, a, b)  # ambiguous; US invoices → MM-DD-YYYY
        return None
    except ValueError:
        return None


def _blank_to_none(v: object) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


class InvoiceHeader(BaseModel):
    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    issue_date: date | None = None
    service_period_start: date | None = None
    service_period_end: date | None = None
    currency: str | None = None
    amount_due: Decimal | None = None
    total_amount: Decimal | None = None
    subtotal: Decimal | None = None
    total_taxes: Decimal | None = None
    total_fees: Decimal | None = None
    total_recurring: Decimal | None = None
    total_one_time: Decimal | None = None
    total_usage: Decimal | None = None
    purchase_order_number: str | None = None
    payment_terms: str | None = None
    customer_name: str | None = None
    customer_account_number: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None

    model_config = {"extra": "ignore"}

    @field_validator(
        "invoice_number",
        "currency",
        "purchase_order_number",
        "payment_terms",
        "customer_name",
        "customer_account_number",
        "contact_email",
        "contact_phone",
        mode="before",
    )
    @classmethod
    def _text(cls, v: object) -> str | None:
        return _blank_to_none(v)

    @field_validator(
        "invoice_date",
        "due_date",
        "issue_date",
        "service_period_start",
        "service_period_end",
        mode="before",
    )
    @classmethod
    def _date(cls, v: object) -> date | None:
        return parse_partial_date(v)

    @field_validator(
        "amount_due",
        "total_amount",
        "subtotal",
        "total_taxes",
        "total_fees",
        "total_recurring",
        "total_one_time",
        "total_usage",
        mode="before",
    )
    @classmethod
    def _amount(cls, v: object) -> Decimal | None:
        return parse_amount(v)


class LineItemData(BaseModel):
    line_number: int | None = None
    description: str | None = None
    category: str | None = None
    charge_type: str | None = None
    service_period_start: date | None = None
    service_period_end: date | None = None
    quantity: Decimal | None = None
    unit_of_measure: str | None = None
    unit_price: Decimal | None = None
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    fee_amount: Decimal | None = None
    total_amount: Decimal | None = None
    sku: str | None = None
    product_code: str | None = None

    model_config = {"extra": "ignore"}

    @field_validator("line_number", mode="before")
    @classmethod
    def _line_number(cls, v: object) -> int | None:
        amount = parse_amount(v)
        return int(amount) if amount is not None else None

    @field_validator(
        "description",
        "category",
        "charge_type",
        "unit_of_measure",
        "sku",
        "product_code",
        mode="before",
    )
    @classmethod
    def _text(cls, v: object) -> str | None:
        return _blank_to_none(v)

    @field_validator("service_period_start", "service_period_end", mode="before")
    @classmethod
    def _date(cls, v: object) -> date | None:
        return parse_partial_date(v)

    @field_validator(
        "quantity",
        "unit_price",
        "subtotal",
        "tax_amount",
        "fee_amount",
        "total_amount",
        mode="before",
    )
    @classmethod
    def _amount(cls, v: object) -> Decimal | None:
        return parse_amount(v)


class ExtractionCandidate(BaseModel):
    """One document's extraction result before validation and scoring."""

    invoice_header: InvoiceHeader
    line_items: list[LineItemData] = Field(default_factory=list)
    confidence_notes: str | None = None

    @field_validator("confidence_notes", mode="before")
    @classmethod
    def _notes(cls, v: object) -> str | None:
        return _blank_to_none(v)
