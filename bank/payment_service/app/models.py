"""SQLAlchemy models for the payment service."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for payment service ORM models."""


class PaymentStatus(str, enum.Enum):
    # Outcome with the bank not yet known.
    PROCESSING = "processing"
    # Funds are guaranteed; goods may be released to the customer.
    APPROVED = "approved"
    # Refused by the bank for a business reason (e.g. insufficient funds).
    DECLINED = "declined"
    # Could not complete (e.g. the bank was unreachable).
    FAILED = "failed"


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    card_number: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    refunds: Mapped[list[Refund]] = relationship(back_populates="payment", lazy="raise")


class Refund(Base):
    """A partial or full refund of an approved payment.

    Rows are permanent: once written the money is considered credited back.
    """

    __tablename__ = "refunds"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("payments.id"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    payment: Mapped[Payment] = relationship(back_populates="refunds", lazy="raise")
