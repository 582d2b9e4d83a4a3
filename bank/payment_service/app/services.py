"""Settlement saga and refund accounting."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Coroutine
from dataclasses import dataclass
from typing import Any, Final, TypeVar

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bank.common import lifespan_session

from .accounts import AccountErrorReason, AccountService, AccountServiceError, Hold
from .errors import (
    LEDGER_FAILURE,
    CardAlreadyUsed,
    Classification,
    ExcessiveRefund,
    InvalidRefundAmount,
    InvalidTransition,
    LedgerUnavailable,
    MalformedCard,
    NegativeAmount,
    PaymentNotEligible,
    PaymentRejected,
    RefundRejected,
    Severity,
    ZeroAmount,
    classify,
)
from .instruments import Card, InvalidCardNumber
from .metrics import HOLD_RELEASES_TOTAL, PAYMENT_OUTCOMES_TOTAL, PAYMENT_REJECTIONS_TOTAL, REFUND_REQUESTS_TOTAL
from .models import PaymentStatus, Refund
from .repository import PaymentRepository, RefundRepository

_LOGGER = logging.getLogger(__name__)
_TRACER = trace.get_tracer(__name__)

T = TypeVar("T")

# Approved may still fall back when the withdrawal fails after the optimistic write.
_TRANSITIONS: Final[dict[PaymentStatus, frozenset[PaymentStatus]]] = {
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.APPROVED, PaymentStatus.DECLINED, PaymentStatus.FAILED}
    ),
    PaymentStatus.APPROVED: frozenset({PaymentStatus.DECLINED, PaymentStatus.FAILED}),
}

_INFLIGHT: set[asyncio.Task[Any]] = set()


async def _run_to_completion(coro: Coroutine[Any, Any, T]) -> T:
    """Await ``coro`` without letting the caller's cancellation abort it."""

    task = asyncio.ensure_future(coro)
    _INFLIGHT.add(task)
    task.add_done_callback(_INFLIGHT.discard)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        # Nobody is left to receive the outcome.
        task.add_done_callback(_log_orphaned_failure)
        raise


def _log_orphaned_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _LOGGER.error("Settlement failed after its caller went away", exc_info=exc)


async def _classified(operation: str, call: Awaitable[T]) -> T:
    """Await an account service call, reporting stray failures as ``unknown``."""

    try:
        return await call
    except AccountServiceError:
        raise
    except Exception as exc:
        _LOGGER.exception("Account service %s failed unexpectedly", operation)
        raise AccountServiceError(AccountErrorReason.UNKNOWN, str(exc)) from exc


@dataclass(slots=True)
class Settlement:
    """Result of a settlement attempt that reached a terminal status."""

    id: uuid.UUID
    amount: int
    card_number: str
    status: PaymentStatus
    severity: Severity | None = None

    @property
    def approved(self) -> bool:
        return self.status is PaymentStatus.APPROVED


def validate_payment_request(amount: int, card_number: str) -> Card:
    """Reject requests that must never reach the ledger or the bank."""

    if amount == 0:
        raise ZeroAmount()
    if amount < 0:
        raise NegativeAmount()
    try:
        return Card.parse(card_number)
    except InvalidCardNumber as exc:
        raise MalformedCard() from exc


class PaymentProcessor:
    """Settles card payments against the account service.

    The payment row is written as ``processing`` before any hold is placed;
    the unique card number on that row is what stops two concurrent requests
    for the same card from both reaching the bank. Every outcome after that
    point is recorded on the row before returning.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        accounts: AccountService,
        *,
        release_on_withdraw_failure: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._accounts = accounts
        self._release_on_withdraw_failure = release_on_withdraw_failure

    async def create_payment(self, *, amount: int, card_number: str) -> Settlement:
        try:
            card = validate_payment_request(amount, card_number)
            payment_id = await self._reserve(amount, card)
        except PaymentRejected as exc:
            PAYMENT_REJECTIONS_TOTAL.labels(reason=exc.reason).inc()
            raise
        return await _run_to_completion(self._settle(payment_id, amount, card))

    async def _reserve(self, amount: int, card: Card) -> uuid.UUID:
        try:
            async with lifespan_session(self._session_factory) as session:
                payment = await PaymentRepository(session).create_payment(
                    amount=amount,
                    card_number=card.number,
                    status=PaymentStatus.PROCESSING,
                )
        except IntegrityError as exc:
            raise CardAlreadyUsed() from exc
        except SQLAlchemyError as exc:
            raise LedgerUnavailable("could not record payment") from exc
        _LOGGER.info("Payment %s reserved for account %s", payment.id, card.account_number)
        return payment.id

    async def _settle(self, payment_id: uuid.UUID, amount: int, card: Card) -> Settlement:
        with _TRACER.start_as_current_span("payment.settle") as span:
            span.set_attribute("payment.id", str(payment_id))
            span.set_attribute("payment.amount", amount)
            span.set_attribute("account.number", card.account_number)
            settlement = await self._run_saga(payment_id, amount, card)
            span.set_attribute("payment.status", settlement.status.value)
            return settlement

    async def _run_saga(self, payment_id: uuid.UUID, amount: int, card: Card) -> Settlement:
        try:
            hold = await _classified("place_hold", self._accounts.place_hold(card.account_number, amount))
        except AccountServiceError as exc:
            _LOGGER.warning("Hold refused for payment %s: %s", payment_id, exc.reason.value)
            return await self._conclude(payment_id, amount, card, PaymentStatus.PROCESSING, classify(exc.reason))

        try:
            await self._transition(payment_id, PaymentStatus.PROCESSING, PaymentStatus.APPROVED)
        except LedgerUnavailable:
            _LOGGER.exception("Could not approve payment %s; abandoning its hold", payment_id)
            await self._release(payment_id, hold)
            return await self._conclude(payment_id, amount, card, PaymentStatus.PROCESSING, LEDGER_FAILURE)

        try:
            await _classified("withdraw_funds", self._accounts.withdraw_funds(hold))
        except AccountServiceError as exc:
            _LOGGER.warning("Withdrawal failed for payment %s: %s", payment_id, exc.reason.value)
            if self._release_on_withdraw_failure:
                await self._release(payment_id, hold)
            else:
                _LOGGER.error("Hold for payment %s left in place after failed withdrawal", payment_id)
            return await self._conclude(payment_id, amount, card, PaymentStatus.APPROVED, classify(exc.reason))

        PAYMENT_OUTCOMES_TOTAL.labels(status=PaymentStatus.APPROVED.value).inc()
        _LOGGER.info("Payment %s approved", payment_id)
        return Settlement(payment_id, amount, card.number, PaymentStatus.APPROVED)

    async def _conclude(
        self,
        payment_id: uuid.UUID,
        amount: int,
        card: Card,
        current: PaymentStatus,
        classification: Classification,
    ) -> Settlement:
        await self._transition(payment_id, current, classification.status)
        PAYMENT_OUTCOMES_TOTAL.labels(status=classification.status.value).inc()
        _LOGGER.info("Payment %s %s (%s)", payment_id, classification.status.value, classification.severity.value)
        return Settlement(
            payment_id,
            amount,
            card.number,
            classification.status,
            severity=classification.severity,
        )

    async def _transition(self, payment_id: uuid.UUID, current: PaymentStatus, status: PaymentStatus) -> None:
        if status not in _TRANSITIONS.get(current, frozenset()):
            raise InvalidTransition(f"payment cannot move from {current.value} to {status.value}")
        try:
            async with lifespan_session(self._session_factory) as session:
                moved = await PaymentRepository(session).transition_status(
                    payment_id, expected=current, status=status
                )
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"could not mark payment {payment_id} {status.value}") from exc
        if not moved:
            raise InvalidTransition(f"payment {payment_id} is no longer {current.value}")

    async def _release(self, payment_id: uuid.UUID, hold: Hold) -> None:
        try:
            await _classified("release_hold", self._accounts.release_hold(hold))
        except AccountServiceError as exc:
            HOLD_RELEASES_TOTAL.labels(outcome="failed").inc()
            _LOGGER.error(
                "Hold for payment %s could not be released (%s); funds remain held",
                payment_id,
                exc.reason.value,
            )
            return
        HOLD_RELEASES_TOTAL.labels(outcome="released").inc()
        _LOGGER.info("Hold for payment %s released", payment_id)


class RefundProcessor:
    """Accepts refunds without ever letting their sum exceed the payment."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def request_refund(self, *, payment_id: uuid.UUID, amount: int) -> Refund:
        with _TRACER.start_as_current_span("refund.request") as span:
            span.set_attribute("payment.id", str(payment_id))
            span.set_attribute("refund.amount", amount)
            try:
                refund = await self._insert(payment_id, amount)
            except RefundRejected as exc:
                span.set_attribute("refund.outcome", exc.outcome)
                REFUND_REQUESTS_TOTAL.labels(outcome=exc.outcome).inc()
                raise
        REFUND_REQUESTS_TOTAL.labels(outcome="accepted").inc()
        _LOGGER.info("Refund %s of %s accepted for payment %s", refund.id, amount, payment_id)
        return refund

    async def _insert(self, payment_id: uuid.UUID, amount: int) -> Refund:
        if amount <= 0:
            raise InvalidRefundAmount()
        try:
            async with lifespan_session(self._session_factory) as session:
                repository = RefundRepository(session)
                payment = await repository.lock_payment(payment_id)
                if payment is None:
                    raise PaymentNotEligible(found=False)
                if payment.status != PaymentStatus.APPROVED.value:
                    raise PaymentNotEligible(found=True)

                refund = await repository.insert_within_balance(payment_id=payment_id, amount=amount)
                if refund is None:
                    if await repository.payment_status(payment_id) is not PaymentStatus.APPROVED:
                        raise PaymentNotEligible(found=True)
                    raise ExcessiveRefund()
                return refund
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"could not record refund for payment {payment_id}") from exc
