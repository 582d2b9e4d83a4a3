"""Pydantic schemas for the payment service."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, Field, PositiveInt

from .models import PaymentStatus

# Amounts are stored in 32-bit integer columns.
_MAX_AMOUNT = 2**31 - 1


class PaymentCreate(BaseModel):
    amount: int = Field(ge=-_MAX_AMOUNT, le=_MAX_AMOUNT)
    card_number: str = Field(max_length=255)


class PaymentResponse(BaseModel):
    id: uuid.UUID
    amount: int
    card_number: str
    status: PaymentStatus

    model_config = ConfigDict(from_attributes=True)


class RefundCreate(BaseModel):
    amount: PositiveInt = Field(le=_MAX_AMOUNT)


class RefundResponse(BaseModel):
    id: uuid.UUID
    amount: int
    payment_id: uuid.UUID

    model_config = ConfigDict(from_attributes=True)


class RefundListResponse(BaseModel):
    items: list[RefundResponse]
    refunded_total: int
    remaining: int
