import asyncio
import random
from collections import Counter

import pytest

from bank.payment_service.app.accounts import (
    AccountErrorReason,
    AccountServiceError,
    DummyAccountService,
    Hold,
)


class ScriptedAccountService(DummyAccountService):
    """Dummy account service that records calls and can be told to fail."""

    def __init__(
        self,
        *,
        hold_error: AccountErrorReason | None = None,
        withdraw_error: AccountErrorReason | None = None,
        release_error: AccountErrorReason | None = None,
    ) -> None:
        super().__init__()
        self.hold_error = hold_error
        self.withdraw_error = withdraw_error
        self.release_error = release_error
        self.calls: Counter[str] = Counter()

    async def place_hold(self, account_number: str, amount: int) -> Hold:
        self.calls["place_hold"] += 1
        # Let concurrent requests interleave at the bank boundary.
        await asyncio.sleep(0)
        if self.hold_error is not None:
            raise AccountServiceError(self.hold_error)
        return await super().place_hold(account_number, amount)

    async def release_hold(self, hold: Hold) -> None:
        self.calls["release_hold"] += 1
        if self.release_error is not None:
            raise AccountServiceError(self.release_error)
        await super().release_hold(hold)

    async def withdraw_funds(self, hold: Hold) -> None:
        self.calls["withdraw_funds"] += 1
        if self.withdraw_error is not None:
            raise AccountServiceError(self.withdraw_error)
        await super().withdraw_funds(hold)


def make_card_number(account_number: str | None = None) -> str:
    prefix = account_number if account_number is not None else f"{random.randint(10, 98)}"
    return f"{prefix}{random.randrange(10**13):013d}"


@pytest.fixture
def accounts() -> ScriptedAccountService:
    return ScriptedAccountService()


@pytest.fixture
def card_number() -> str:
    return make_card_number()
