"""HTTP endpoints for refunds against settled payments."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies import get_payment_repository, get_refund_processor, get_refund_repository
from ..errors import ExcessiveRefund, InvalidRefundAmount, LedgerUnavailable, PaymentNotEligible
from ..repository import PaymentRepository, RefundRepository
from ..schemas import RefundCreate, RefundListResponse, RefundResponse
from ..services import RefundProcessor

router = APIRouter(prefix="/payments/{payment_id}/refunds", tags=["refunds"])


@router.post("", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
async def create_refund(
    payment_id: uuid.UUID,
    payload: RefundCreate,
    processor: RefundProcessor = Depends(get_refund_processor),
) -> RefundResponse:
    try:
        refund = await processor.request_refund(payment_id=payment_id, amount=payload.amount)
    except PaymentNotEligible as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (ExcessiveRefund, InvalidRefundAmount) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except LedgerUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="ledger unavailable") from exc
    return RefundResponse.model_validate(refund)


@router.get("", response_model=RefundListResponse)
async def list_refunds(
    payment_id: uuid.UUID,
    payments: PaymentRepository = Depends(get_payment_repository),
    refunds: RefundRepository = Depends(get_refund_repository),
) -> RefundListResponse:
    payment = await payments.get_payment(payment_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    items = await refunds.list_refunds(payment_id)
    refunded_total = sum(refund.amount for refund in items)
    return RefundListResponse(
        items=[RefundResponse.model_validate(refund) for refund in items],
        refunded_total=refunded_total,
        remaining=payment.amount - refunded_total,
    )


@router.get("/{refund_id}", response_model=RefundResponse)
async def get_refund(
    payment_id: uuid.UUID,
    refund_id: uuid.UUID,
    refunds: RefundRepository = Depends(get_refund_repository),
) -> RefundResponse:
    refund = await refunds.get_refund(refund_id)
    if refund is None or refund.payment_id != payment_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Refund not found")
    return RefundResponse.model_validate(refund)
