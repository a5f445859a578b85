"""Gateway database models.

Merchants and API keys are owned by external merchant tooling; the gateway
reads them. Sessions, payments and fraud flags are written only here.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sandpay.common.db import Base, JSONType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Merchant(Base):
    """Merchant account; only `status == "approved"` may create sessions."""

    __tablename__ = "merchants"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    business_name: Mapped[str] = mapped_column(String)
    contact_email: Mapped[str | None] = mapped_column(String, nullable=True)
    website_url: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ApiKey(Base):
    """Secret API key; only its SHA-256 hash is stored."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    merchant_id: Mapped[str] = mapped_column(ForeignKey("merchants.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    public_key: Mapped[str] = mapped_column(String, unique=True)
    secret_key_hash: Mapped[str] = mapped_column(String, unique=True, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class PaymentSession(Base):
    """Time-boxed intent to collect one payment of a fixed amount."""

    __tablename__ = "payment_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    merchant_id: Mapped[str] = mapped_column(ForeignKey("merchants.id"), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    description: Mapped[str] = mapped_column(Text, default="")
    # `metadata` is reserved on declarative classes.
    session_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    return_url: Mapped[str | None] = mapped_column(String, nullable=True)
    cancel_url: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Payment(Base):
    """Outcome of the single processing attempt of a session. Immutable."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    session_id: Mapped[str] = mapped_column(ForeignKey("payment_sessions.id"), unique=True, index=True)
    merchant_id: Mapped[str] = mapped_column(ForeignKey("merchants.id"), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    method: Mapped[str] = mapped_column(String)
    masked_details: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, index=True)
    failure_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    fee_amount: Mapped[int] = mapped_column(Integer, default=0)
    net_amount: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def to_dict(self) -> dict:
        """JSON-safe representation used in API responses and webhook envelopes."""

        created_at = self.created_at
        return {
            "id": self.id,
            "session_id": self.session_id,
            "merchant_id": self.merchant_id,
            "amount": self.amount,
            "currency": self.currency,
            "method": self.method,
            "masked_details": self.masked_details,
            "status": self.status,
            "failure_reason": self.failure_reason,
            "fee_amount": self.fee_amount,
            "net_amount": self.net_amount,
            "created_at": created_at.isoformat() if created_at is not None else None,
        }


class FraudFlag(Base):
    """Review marker raised for a succeeded payment."""

    __tablename__ = "fraud_flags"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    payment_id: Mapped[str] = mapped_column(ForeignKey("payments.id"), index=True)
    reason: Mapped[str] = mapped_column(String)
    score: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class PlatformSetting(Base):
    """Operator-editable key/value overrides (fee and fraud policy)."""

    __tablename__ = "platform_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
