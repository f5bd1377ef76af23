"""LineItem ORM model."""

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from invoice_pipeline.db import Base

_AMOUNT = Numeric(12, 2)
_PRECISE = Numeric(12, 4)


class LineItem(Base):
    __tablename__ = "line_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_number: Mapped[int | None] = mapped_column(nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    charge_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    service_period_start: Mapped[date | None] = mapped_column(nullable=True)
    service_period_end: Mapped[date | None] = mapped_column(nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(_PRECISE, nullable=True)
    unit_of_measure: Mapped[str | None] = mapped_column(String(50), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(_PRECISE, nullable=True)
    subtotal: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    tax_amount: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    fee_amount: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    total_amount: Mapped[Decimal | None] = mapped_column(_AMOUNT, nullable=True)
    sku: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_code: Mapped[str | None] = mapped_column(String(255), nullable=True)
