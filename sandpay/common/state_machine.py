"""Checkout session state machine enforced by the session manager."""

REQUIRES_PAYMENT_METHOD = "requires_payment_method"
PROCESSING = "processing"
SUCCEEDED = "succeeded"
FAILED = "failed"

TERMINAL_STATES = frozenset({SUCCEEDED, FAILED})

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    REQUIRES_PAYMENT_METHOD: {PROCESSING},
    # Back to requires_payment_method only when the payment write failed.
    PROCESSING: {SUCCEEDED, FAILED, REQUIRES_PAYMENT_METHOD},
    SUCCEEDED: set(),
    FAILED: set(),
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
