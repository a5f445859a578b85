"""API request/response schemas for gateway endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, StrictInt


class SessionCreateRequest(BaseModel):
    """Merchant payload for `POST /v1/payment_sessions`.

    `amount` is checked by the session manager so every bad amount maps to
    the same `invalid_amount` error. Strict so booleans and numeric strings
    are rejected instead of coerced.
    """

    amount: StrictInt | None = None
    currency: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    return_url: str | None = None
    cancel_url: str | None = None


class SessionCreateResponse(BaseModel):
    id: str
    hosted_url: str
    widget_token: str
    amount: int
    currency: str
    status: str
    expires_at: datetime


class CheckoutSessionView(BaseModel):
    """Public session view for the hosted checkout page."""

    id: str
    merchant_id: str
    amount: int
    currency: str
    description: str
    status: str
    expires_at: datetime


class CardDetails(BaseModel):
    number: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None
    cvc: str | None = None


class BankDetails(BaseModel):
    routing: str | None = None
    account: str | None = None


class CheckoutConfirmRequest(BaseModel):
    method: str
    card: CardDetails | None = None
    bank: BankDetails | None = None


class PaymentResponse(BaseModel):
    """Mirrors the stored payment entity."""

    id: str
    session_id: str
    merchant_id: str
    amount: int
    currency: str
    method: str
    masked_details: str
    status: str
    failure_reason: str | None
    fee_amount: int
    net_amount: int
    created_at: datetime
