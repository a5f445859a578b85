"""Platform fee calculation in integer minor units.

The percentage term is rounded half away from zero (`ROUND_HALF_UP` on
Decimal) before the fixed term is added.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

DEFAULT_FEE_PERCENT = 2.5
DEFAULT_FEE_FIXED = 30


@dataclass(frozen=True)
class FeeBreakdown:
    fee_amount: int
    net_amount: int


def percentage_fee(amount: int, fee_percent: float) -> int:
    """Round `amount * fee_percent / 100` half away from zero."""

    raw = Decimal(amount) * Decimal(str(fee_percent)) / Decimal(100)
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_fees(
    amount: int,
    succeeded: bool,
    fee_percent: float = DEFAULT_FEE_PERCENT,
    fee_fixed: int = DEFAULT_FEE_FIXED,
) -> FeeBreakdown:
    """Return fee and net for one payment; both are zero when it failed."""

    if not succeeded:
        return FeeBreakdown(fee_amount=0, net_amount=0)
    fee = percentage_fee(amount, fee_percent) + fee_fixed
    return FeeBreakdown(fee_amount=fee, net_amount=amount - fee)
