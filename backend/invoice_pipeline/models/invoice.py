"""Invoice ORM model — the persisted output of one processed document."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from invoice_pipeline.db import Base, utcnow

_AMOUNT = Numeric(12, 2)


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vendors.id"), nullable=False, index=True
    )
    batch_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("processing_batches.id"), nullable=True, index=True
    )

    # Header fields. Nullable: an incomplete extraction is persisted and scored, not rejected.
    invoice_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    invoice_date: Mapped[date | None] = mapped_column(nullable=True)
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    issue_date: Mapped[date | None] = mapped_column(nullable=True)
    service_period_start: Mapped[date | None] = mapped_column(nullable=True)
    service_period_end: Mapped[date | None] = mapped_column(nullable=True)
    currency: Mapped[str | None] = mapped_column(String(10), nullable=True)

    amount_due: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    total_amount: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    subtotal: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    total_taxes: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    total_fees: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    total_recurring: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    total_one_time: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    total_usage: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)

    purchase_order_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_terms: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_account_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Provenance
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_type: Mapped[str] = mapped_column(String(10), nullable=False)
    original_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)

    processing_status: Mapped[str] = mapped_column(String(50), nullable=False, default="processed")
    confidence_score: Mapped[float] = mapped_column(nullable=False)
    line_item_count: Mapped[int] = mapped_column(nullable=False, default=0)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("invoice_number", "vendor_id", name="uq_invoice_vendor"),)
