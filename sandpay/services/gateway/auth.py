"""API-key authentication for merchant server-to-server calls."""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from sandpay.common.errors import InvalidCredential, MerchantNotApproved, MissingCredential
from sandpay.common.logging import logger
from sandpay.common.metrics import auth_failures_total
from sandpay.services.gateway.models import ApiKey, Merchant

BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class AuthenticatedMerchant:
    merchant_id: str
    api_key_id: str


@dataclass(frozen=True)
class IssuedApiKey:
    """Returned once at creation; the secret is never readable again."""

    api_key_id: str
    public_key: str
    secret_key: str


def hash_secret(secret: str) -> str:
    """SHA-256 hex digest used as the stored key fingerprint."""

    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def extract_credential(authorization: str | None, x_api_key: str | None) -> str | None:
    """Pick the raw key from request headers.

    A `Bearer` authorization value wins over `X-API-Key`; blank values are
    skipped.
    """

    if authorization and authorization.lower().startswith(BEARER_PREFIX):
        token = authorization[len(BEARER_PREFIX):].strip()
        if token:
            return token
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    return None


def issue_api_key(db, merchant_id: str, name: str = "default") -> IssuedApiKey:
    """Generate a `pk_`/`sk_` pair for a merchant and stage the hashed row."""

    public_key = f"pk_{secrets.token_hex(12)}"
    secret_key = f"sk_{secrets.token_hex(24)}"
    row = ApiKey(
        merchant_id=merchant_id,
        name=name,
        public_key=public_key,
        secret_key_hash=hash_secret(secret_key),
        active=True,
    )
    db.add(row)
    db.flush()
    return IssuedApiKey(api_key_id=row.id, public_key=public_key, secret_key=secret_key)


class ApiKeyAuthenticator:
    """Resolves a raw secret key to the approved merchant that owns it."""

    def __init__(self, session_factory, service_name: str = "gateway", clock=None) -> None:
        self.session_factory = session_factory
        self.service_name = service_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _reject(self, error):
        auth_failures_total.labels(service=self.service_name, code=error.code).inc()
        return error

    def authenticate(self, raw_key: str | None) -> AuthenticatedMerchant:
        if not raw_key:
            raise self._reject(MissingCredential())

        key_hash = hash_secret(raw_key)
        with self.session_factory() as db:
            row = db.execute(
                select(ApiKey.id, ApiKey.merchant_id, Merchant.status)
                .join(Merchant, Merchant.id == ApiKey.merchant_id)
                .where(ApiKey.secret_key_hash == key_hash, ApiKey.active.is_(True))
            ).one_or_none()

        if row is None:
            raise self._reject(InvalidCredential())
        if row.status != "approved":
            raise self._reject(MerchantNotApproved())

        self._touch_last_used(row.id)
        return AuthenticatedMerchant(merchant_id=row.merchant_id, api_key_id=row.id)

    def _touch_last_used(self, api_key_id: str) -> None:
        """Best-effort `last_used_at` bump; never fails the request."""

        try:
            with self.session_factory() as db:
                db.execute(update(ApiKey).where(ApiKey.id == api_key_id).values(last_used_at=self.clock()))
                db.commit()
        except SQLAlchemyError as exc:
            logger.warning("api_key_last_used_update_failed api_key_id=%s error=%s", api_key_id, exc)
