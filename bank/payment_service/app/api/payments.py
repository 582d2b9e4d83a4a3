"""HTTP endpoints for settling payments."""

from __future__ import annotations

import uuid
from typing import Final

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..dependencies import get_payment_processor, get_payment_repository
from ..errors import (
    CardAlreadyUsed,
    LedgerUnavailable,
    MalformedCard,
    NegativeAmount,
    Severity,
    ZeroAmount,
)
from ..repository import PaymentRepository
from ..schemas import PaymentCreate, PaymentResponse
from ..services import PaymentProcessor

router = APIRouter(prefix="/payments", tags=["payments"])

_SEVERITY_STATUS: Final[dict[Severity, int]] = {
    Severity.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    Severity.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    Severity.PAYMENT_REQUIRED: status.HTTP_402_PAYMENT_REQUIRED,
    Severity.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_204_NO_CONTENT: {"description": "Amount was zero"}},
)
async def create_payment(
    payload: PaymentCreate,
    response: Response,
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> PaymentResponse | Response:
    try:
        settlement = await processor.create_payment(amount=payload.amount, card_number=payload.card_number)
    except ZeroAmount:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except NegativeAmount as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (MalformedCard, CardAlreadyUsed) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except LedgerUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="ledger unavailable") from exc

    if settlement.severity is not None:
        response.status_code = _SEVERITY_STATUS[settlement.severity]
    return PaymentResponse.model_validate(settlement)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: uuid.UUID,
    repository: PaymentRepository = Depends(get_payment_repository),
) -> PaymentResponse:
    payment = await repository.get_payment(payment_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return PaymentResponse.model_validate(payment)
