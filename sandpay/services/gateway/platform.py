"""Effective fee/fraud policy: env settings overlaid with `platform_settings` rows."""

import math
from dataclasses import dataclass

from sqlalchemy import select

from sandpay.common.config import GatewaySettings
from sandpay.common.logging import logger
from sandpay.services.gateway.models import PlatformSetting

FEE_PERCENTAGE_KEY = "fee_percentage"
FEE_FIXED_KEY = "fee_fixed"
FRAUD_THRESHOLD_KEY = "fraud_amount_threshold"
FRAUD_SCORE_KEY = "fraud_score"
FRAUD_SCORE_RANGE = (0, 100)


@dataclass(frozen=True)
class PlatformPolicy:
    fee_percent: float
    fee_fixed: int
    fraud_amount_threshold: int
    fraud_score: int

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> "PlatformPolicy":
        return cls(
            fee_percent=settings.fee_percent,
            fee_fixed=settings.fee_fixed,
            fraud_amount_threshold=settings.fraud_amount_threshold,
            fraud_score=settings.fraud_score,
        )


def _parse(key: str, raw: str, cast, fallback, valid=None):
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        logger.warning("ignoring malformed platform setting key=%s value=%r", key, raw)
        return fallback
    if isinstance(value, float) and not math.isfinite(value):
        logger.warning("ignoring non-finite platform setting key=%s value=%r", key, raw)
        return fallback
    if valid is not None and not valid(value):
        logger.warning("ignoring out-of-range platform setting key=%s value=%r", key, raw)
        return fallback
    return value


def _score_in_range(score: int) -> bool:
    low, high = FRAUD_SCORE_RANGE
    return low <= score <= high


def load_policy(db, settings: GatewaySettings) -> PlatformPolicy:
    """Read operator overrides; malformed values fall back to the env default."""

    base = PlatformPolicy.from_settings(settings)
    rows = db.execute(select(PlatformSetting)).scalars().all()
    overrides = {row.key: row.value for row in rows}
    return PlatformPolicy(
        fee_percent=_parse(FEE_PERCENTAGE_KEY, overrides.get(FEE_PERCENTAGE_KEY, base.fee_percent), float, base.fee_percent),
        fee_fixed=_parse(FEE_FIXED_KEY, overrides.get(FEE_FIXED_KEY, base.fee_fixed), int, base.fee_fixed),
        fraud_amount_threshold=_parse(
            FRAUD_THRESHOLD_KEY,
            overrides.get(FRAUD_THRESHOLD_KEY, base.fraud_amount_threshold),
            int,
            base.fraud_amount_threshold,
        ),
        fraud_score=_parse(
            FRAUD_SCORE_KEY,
            overrides.get(FRAUD_SCORE_KEY, base.fraud_score),
            int,
            base.fraud_score,
            valid=_score_in_range,
        ),
    )


def set_platform_setting(db, key: str, value: str) -> None:
    """Upsert one override row (caller commits)."""

    row = db.get(PlatformSetting, key)
    if row is None:
        db.add(PlatformSetting(key=key, value=value))
    else:
        row.value = value
