"""Committed receiving record — header plus one row per received line.

Written exactly once by the commit protocol when a receiving draft is
submitted, and never updated afterwards.

``idempotency_key`` is derived from the draft id, so a resubmitted draft
finds its existing header instead of creating a second one.
``line_number`` carries the draft's item id; together with the header id
it identifies a row, which lets a retry insert only the rows still missing.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer,
    Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from freshintake.database import Base

# Quantities are stored at the same fixed precision the wizard compares at
QUANTITY = Numeric(12, 3)


class ReceivingRecord(Base):
    __tablename__ = "receiving_records"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False, index=True
    )

    # ── Order ────────────────────────────────────────────────
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=False, index=True
    )
    order_date: Mapped[date] = mapped_column(Date, nullable=False)

    # ── Drop confirmation ────────────────────────────────────
    is_dropped: Mapped[bool] = mapped_column(Boolean, default=False)
    drop_time: Mapped[datetime | None] = mapped_column(DateTime)
    drop_notes: Mapped[str | None] = mapped_column(Text)

    has_returns: Mapped[bool] = mapped_column(Boolean, default=False)
    # Number of item rows the header expects; lets a retry tell a
    # complete record from one left short by an interrupted commit.
    item_count: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )

    client = relationship("Client")
    items = relationship(
        "ReceivingItem",
        back_populates="receiving",
        order_by="ReceivingItem.line_number",
    )


class ReceivingItem(Base):
    __tablename__ = "receiving_items"
    __table_args__ = (
        UniqueConstraint("receiving_id", "line_number", name="uq_receiving_items_line"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    receiving_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("receiving_records.id"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    produce_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("produce.id"), index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(30))

    # ── Quantities ───────────────────────────────────────────
    ordered_quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    grade_a: Mapped[Decimal] = mapped_column(QUANTITY, default=Decimal("0"))
    grade_b: Mapped[Decimal] = mapped_column(QUANTITY, default=Decimal("0"))
    grade_c: Mapped[Decimal] = mapped_column(QUANTITY, default=Decimal("0"))
    returned_quantity: Mapped[Decimal] = mapped_column(QUANTITY, default=Decimal("0"))

    # ── Notes ────────────────────────────────────────────────
    return_reason: Mapped[str | None] = mapped_column(String(50))
    return_notes: Mapped[str | None] = mapped_column(Text)
    field_notes: Mapped[str | None] = mapped_column(Text)
    grading_notes: Mapped[str | None] = mapped_column(Text)

    receiving = relationship("ReceivingRecord", back_populates="items")
    produce = relationship("Produce")
