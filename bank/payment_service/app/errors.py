"""Error taxonomy for settlement and refunds."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Final

from .accounts import AccountErrorReason
from .models import PaymentStatus


class Severity(str, enum.Enum):
    """Externally observable class of a failed settlement."""

    FORBIDDEN = "forbidden"
    BAD_REQUEST = "bad_request"
    PAYMENT_REQUIRED = "payment_required"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True, slots=True)
class Classification:
    status: PaymentStatus
    severity: Severity


_CLASSIFICATIONS: Final[dict[AccountErrorReason, Classification]] = {
    AccountErrorReason.INVALID_ACCOUNT_NUMBER: Classification(PaymentStatus.DECLINED, Severity.FORBIDDEN),
    AccountErrorReason.INVALID_AMOUNT: Classification(PaymentStatus.DECLINED, Severity.BAD_REQUEST),
    AccountErrorReason.INSUFFICIENT_FUNDS: Classification(PaymentStatus.DECLINED, Severity.PAYMENT_REQUIRED),
    AccountErrorReason.SERVICE_UNAVAILABLE: Classification(PaymentStatus.FAILED, Severity.INTERNAL_ERROR),
    AccountErrorReason.UNKNOWN: Classification(PaymentStatus.FAILED, Severity.INTERNAL_ERROR),
}

LEDGER_FAILURE: Final = Classification(PaymentStatus.FAILED, Severity.INTERNAL_ERROR)


def classify(reason: AccountErrorReason) -> Classification:
    """Return the payment status and severity for an account service failure.

    The same table applies whether the failure happened while placing the
    hold or while withdrawing the funds.
    """

    return _CLASSIFICATIONS[reason]


class PaymentRejected(Exception):
    """Raised when a payment request is refused before any money moves."""

    reason = "rejected"


class ZeroAmount(PaymentRejected):
    reason = "zero_amount"

    def __init__(self) -> None:
        super().__init__("Amount shouldn't be 0")


class NegativeAmount(PaymentRejected):
    reason = "negative_amount"

    def __init__(self) -> None:
        super().__init__("Amount shouldn't be negative")


class MalformedCard(PaymentRejected):
    reason = "malformed_card"

    def __init__(self) -> None:
        super().__init__("Bad Card Number format")


class CardAlreadyUsed(PaymentRejected):
    reason = "card_already_used"

    def __init__(self) -> None:
        super().__init__("card_number already used")


class RefundRejected(Exception):
    """Raised when a refund request cannot be accepted."""

    outcome = "rejected"


class PaymentNotEligible(RefundRejected):
    outcome = "not_eligible"

    def __init__(self, *, found: bool) -> None:
        super().__init__("has a status other than approved" if found else "payment doesn't exist")
        self.found = found


class ExcessiveRefund(RefundRejected):
    outcome = "excessive"

    def __init__(self) -> None:
        super().__init__("excessive refund amount requested")


class InvalidRefundAmount(RefundRejected):
    outcome = "invalid_amount"

    def __init__(self) -> None:
        super().__init__("refund amount must be positive")


class LedgerUnavailable(Exception):
    """Raised when the ledger store fails underneath a processor."""


class InvalidTransition(LedgerUnavailable):
    """Raised when a payment is not in the status a transition expects."""
