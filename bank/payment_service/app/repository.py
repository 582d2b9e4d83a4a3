"""Database helpers for the payment service."""

from __future__ import annotations

import uuid

from sqlalchemy import Integer, Uuid, exists, func, insert, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Payment, PaymentStatus, Refund


class PaymentRepository:
    """Persistence utilities for payments."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_payment(self, *, amount: int, card_number: str, status: PaymentStatus) -> Payment:
        """Insert a payment row.

        Raises ``IntegrityError`` when the card number was already used.
        """

        payment = Payment(amount=amount, card_number=card_number, status=status.value)
        self.session.add(payment)
        await self.session.flush()
        await self.session.refresh(payment, attribute_names=["created_at", "updated_at"])
        return payment

    async def get_payment(self, payment_id: uuid.UUID) -> Payment | None:
        return await self.session.get(Payment, payment_id)

    async def transition_status(
        self,
        payment_id: uuid.UUID,
        *,
        expected: PaymentStatus,
        status: PaymentStatus,
    ) -> bool:
        """Move a payment to ``status`` only if it is currently ``expected``."""

        result = await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == expected.value)
            .values(status=status.value, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class RefundRepository:
    """Persistence utilities for refunds."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def lock_payment(self, payment_id: uuid.UUID) -> Payment | None:
        """Load a payment, holding a row lock where the backend supports one."""

        result = await self.session.execute(
            select(Payment).where(Payment.id == payment_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def payment_status(self, payment_id: uuid.UUID) -> PaymentStatus | None:
        result = await self.session.execute(select(Payment.status).where(Payment.id == payment_id))
        value = result.scalar_one_or_none()
        return PaymentStatus(value) if value is not None else None

    async def insert_within_balance(self, *, payment_id: uuid.UUID, amount: int) -> Refund | None:
        """Insert a refund only if the payment is approved and has room for it.

        The eligibility check and the write are one ``INSERT ... SELECT``
        statement, so concurrent refunds can never jointly exceed the payment
        amount. Returns ``None`` when nothing was inserted.
        """

        refund_id = uuid.uuid4()
        refunded = (
            select(func.coalesce(func.sum(Refund.amount), 0))
            .where(Refund.payment_id == payment_id)
            .correlate(None)
            .scalar_subquery()
        )
        eligible = exists().where(
            Payment.id == payment_id,
            Payment.status == PaymentStatus.APPROVED.value,
            Payment.amount - refunded >= amount,
        )
        statement = insert(Refund.__table__).from_select(
            ["id", "payment_id", "amount"],
            select(
                literal(refund_id, Uuid()),
                literal(payment_id, Uuid()),
                literal(amount, Integer()),
            ).where(eligible),
        )
        result = await self.session.execute(statement)
        if result.rowcount != 1:
            return None
        return await self.session.get(Refund, refund_id)

    async def get_refund(self, refund_id: uuid.UUID) -> Refund | None:
        return await self.session.get(Refund, refund_id)

    async def list_refunds(self, payment_id: uuid.UUID) -> list[Refund]:
        result = await self.session.execute(
            select(Refund)
            .where(Refund.payment_id == payment_id)
            .order_by(Refund.created_at.asc(), Refund.id.asc())
        )
        return list(result.scalars())

