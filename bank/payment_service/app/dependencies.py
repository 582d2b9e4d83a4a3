"""Dependency helpers for payment service."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bank.common import lifespan_session

from .accounts import AccountService
from .repository import PaymentRepository, RefundRepository
from .services import PaymentProcessor, RefundProcessor


def get_session_maker(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


async def get_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> AsyncIterator[AsyncSession]:
    """Yield an AsyncSession for the current request lifecycle."""

    async with lifespan_session(session_factory) as session:
        yield session


def get_account_service(request: Request) -> AccountService:
    return request.app.state.account_service


def get_payment_repository(session: AsyncSession = Depends(get_session)) -> PaymentRepository:
    return PaymentRepository(session)


def get_refund_repository(session: AsyncSession = Depends(get_session)) -> RefundRepository:
    return RefundRepository(session)


def get_payment_processor(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    accounts: AccountService = Depends(get_account_service),
) -> PaymentProcessor:
    """Return a processor that commits each ledger write on its own session."""

    return PaymentProcessor(
        session_factory,
        accounts,
        release_on_withdraw_failure=request.app.state.settings.release_hold_on_withdraw_failure,
    )


def get_refund_processor(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> RefundProcessor:
    return RefundProcessor(session_factory)
