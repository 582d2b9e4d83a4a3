"""Prometheus metrics for the payment service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter

# Settlement ------------------------------------------------------------------------------
PAYMENT_OUTCOMES_TOTAL: Final = Counter(
    "payment_outcomes_total",
    "Payments that reached a terminal status.",
    labelnames=("status",),
)

PAYMENT_REJECTIONS_TOTAL: Final = Counter(
    "payment_rejections_total",
    "Payment requests rejected before any hold was attempted.",
    labelnames=("reason",),
)

ACCOUNT_SERVICE_ERRORS_TOTAL: Final = Counter(
    "account_service_errors_total",
    "Account service operations that failed, by classified reason.",
    labelnames=("operation", "reason"),
)

HOLD_RELEASES_TOTAL: Final = Counter(
    "hold_releases_total",
    "Compensating hold releases issued after a payment was abandoned.",
    labelnames=("outcome",),
)

# Refunds ---------------------------------------------------------------------------------
REFUND_REQUESTS_TOTAL: Final = Counter(
    "refund_requests_total",
    "Refund requests by outcome.",
    labelnames=("outcome",),
)
