"""High-value transaction flagging for succeeded payments."""

from sandpay.services.gateway.models import FraudFlag, Payment

HIGH_VALUE_REASON = "high_value_transaction"


class FraudFlagEngine:
    """Threshold rule: a succeeded payment above `amount_threshold` gets one flag."""

    def __init__(self, amount_threshold: int = 100_000, score: int = 85) -> None:
        self.amount_threshold = amount_threshold
        self.score = score

    def evaluate(self, payment: Payment) -> FraudFlag | None:
        """Return the flag to persist, or None when the payment is not suspicious."""

        if payment.status != "succeeded":
            return None
        if payment.amount <= self.amount_threshold:
            return None
        return FraudFlag(payment_id=payment.id, reason=HIGH_VALUE_REASON, score=self.score)

    def flag(self, db, payment: Payment) -> FraudFlag | None:
        """Evaluate and stage the flag on `db` (caller commits)."""

        flag = self.evaluate(payment)
        if flag is not None:
            db.add(flag)
        return flag
