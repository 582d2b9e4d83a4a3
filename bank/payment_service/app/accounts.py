"""Clients for the remote service that holds customer accounts.

Every successful ``place_hold`` must be matched by exactly one call to
either ``release_hold`` or ``withdraw_funds``. Failures are reported as
:class:`AccountServiceError` with a stable :class:`AccountErrorReason`,
never as free-form messages.
"""

from __future__ import annotations

import enum
import logging
import uuid
from typing import Any, Protocol

import httpx

from .metrics import ACCOUNT_SERVICE_ERRORS_TOTAL

_LOGGER = logging.getLogger(__name__)


class AccountErrorReason(str, enum.Enum):
    INVALID_ACCOUNT_NUMBER = "invalid_account_number"
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UNKNOWN = "unknown"

    @classmethod
    def from_code(cls, code: Any) -> AccountErrorReason:
        """Map a raw error code from the wire onto a known reason."""

        try:
            return cls(str(code).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class AccountServiceError(Exception):
    """Raised when the account service rejects or fails an operation."""

    def __init__(self, reason: AccountErrorReason, message: str | None = None) -> None:
        super().__init__(message or reason.value)
        self.reason = reason


class Hold:
    """Opaque reference to funds held on an account.

    Callers pass it back unchanged to ``release_hold`` or ``withdraw_funds``.
    """

    __slots__ = ("_reference",)

    def __init__(self, reference: str) -> None:
        self._reference = reference

    def __repr__(self) -> str:
        return "Hold(<opaque>)"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Hold):
            return NotImplemented
        return self._reference == other._reference

    def __hash__(self) -> int:
        return hash(self._reference)


def _reference(hold: Hold) -> str:
    return hold._reference


class AccountService(Protocol):
    async def place_hold(self, account_number: str, amount: int) -> Hold: ...

    async def release_hold(self, hold: Hold) -> None: ...

    async def withdraw_funds(self, hold: Hold) -> None: ...


def _fail(operation: str, reason: AccountErrorReason, message: str | None = None) -> AccountServiceError:
    ACCOUNT_SERVICE_ERRORS_TOTAL.labels(operation=operation, reason=reason.value).inc()
    return AccountServiceError(reason, message)


class DummyAccountService:
    """In-process account service for development and tests.

    Balances are not tracked; sentinel values trigger the unhappy paths:

    - account ``00`` fails with ``invalid_account_number``;
    - account ``99`` fails with ``service_unavailable``;
    - a negative amount fails with ``invalid_amount``;
    - an amount above ``MAX_VALID_AMOUNT`` fails with ``insufficient_funds``.

    Live holds are remembered so that resolving a hold twice, or resolving
    one that was never placed, fails with ``unknown``.
    """

    INVALID_ACCOUNT_NUMBER = "00"
    UNAVAILABLE_ACCOUNT_NUMBER = "99"
    MIN_VALID_AMOUNT = 0
    MAX_VALID_AMOUNT = 100_000_00

    def __init__(self) -> None:
        self._holds: dict[str, tuple[str, int]] = {}

    @property
    def outstanding_holds(self) -> int:
        return len(self._holds)

    async def place_hold(self, account_number: str, amount: int) -> Hold:
        if account_number == self.INVALID_ACCOUNT_NUMBER:
            raise _fail("place_hold", AccountErrorReason.INVALID_ACCOUNT_NUMBER)
        if account_number == self.UNAVAILABLE_ACCOUNT_NUMBER:
            raise _fail("place_hold", AccountErrorReason.SERVICE_UNAVAILABLE)
        if amount < self.MIN_VALID_AMOUNT:
            raise _fail("place_hold", AccountErrorReason.INVALID_AMOUNT)
        if amount > self.MAX_VALID_AMOUNT:
            raise _fail("place_hold", AccountErrorReason.INSUFFICIENT_FUNDS)
        reference = str(uuid.uuid4())
        self._holds[reference] = (account_number, amount)
        return Hold(reference)

    async def release_hold(self, hold: Hold) -> None:
        self._resolve("release_hold", hold)

    async def withdraw_funds(self, hold: Hold) -> None:
        self._resolve("withdraw_funds", hold)

    def _resolve(self, operation: str, hold: Hold) -> None:
        if self._holds.pop(_reference(hold), None) is None:
            raise _fail(operation, AccountErrorReason.UNKNOWN, "hold is not active")


class HttpAccountService:
    """Account service client speaking JSON over HTTP."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def from_url(cls, base_url: str, *, timeout: float) -> HttpAccountService:
        return cls(httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout))

    async def close(self) -> None:
        await self._client.aclose()

    async def place_hold(self, account_number: str, amount: int) -> Hold:
        payload = await self._post("place_hold", f"/accounts/{account_number}/holds", {"amount": amount})
        reference = payload.get("id") if isinstance(payload, dict) else None
        if not reference:
            raise _fail("place_hold", AccountErrorReason.UNKNOWN, "hold response is missing an id")
        return Hold(str(reference))

    async def release_hold(self, hold: Hold) -> None:
        await self._post("release_hold", f"/holds/{_reference(hold)}/release")

    async def withdraw_funds(self, hold: Hold) -> None:
        await self._post("withdraw_funds", f"/holds/{_reference(hold)}/withdraw")

    async def _post(self, operation: str, path: str, body: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._client.post(path, json=body)
        except httpx.TransportError as exc:
            # The call may or may not have reached the service.
            _LOGGER.warning("Account service %s transport failure: %s", operation, exc)
            raise _fail(operation, AccountErrorReason.SERVICE_UNAVAILABLE, str(exc)) from exc
        except httpx.HTTPError as exc:
            # Reached the service, but the reply could not be read.
            _LOGGER.warning("Account service %s unreadable response: %s", operation, exc)
            raise _fail(operation, AccountErrorReason.UNKNOWN, str(exc)) from exc

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise _fail(operation, AccountErrorReason.UNKNOWN, "malformed response body") from exc

        raise _fail(operation, _reason_from_response(response), f"HTTP {response.status_code}")


def _reason_from_response(response: httpx.Response) -> AccountErrorReason:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error") is not None:
        return AccountErrorReason.from_code(body["error"])
    if response.status_code == httpx.codes.SERVICE_UNAVAILABLE:
        return AccountErrorReason.SERVICE_UNAVAILABLE
    return AccountErrorReason.UNKNOWN
