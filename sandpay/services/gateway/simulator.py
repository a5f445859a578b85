"""Simulated card and bank rails.

Outcomes are a pure function of the submitted details plus an injected
`OutcomeSource`, which decides the randomized branches (80% for unlisted
Luhn-valid cards, 90% for unlisted bank accounts).
"""

import random
import re
from dataclasses import dataclass
from typing import Protocol

SUCCESS_CARD = "4242424242424242"
DECLINE_CARD = "4000000000000002"
INSUFFICIENT_FUNDS_CARD = "4000000000009995"
SUCCESS_ROUTING = "110000000"
SUCCESS_ACCOUNT = "000123456789"
INVALID_ROUTING = "000000000"

CARD_SUCCESS_RATE = 0.8
BANK_SUCCESS_RATE = 0.9

GENERIC_DECLINE = "generic_decline"
INSUFFICIENT_FUNDS = "insufficient_funds"
INVALID_CARD_NUMBER = "invalid_card_number"
INVALID_ROUTING_NUMBER = "invalid_routing_number"

_NON_DIGITS = re.compile(r"\D")


class OutcomeSource(Protocol):
    """Decides whether a probabilistic branch succeeds."""

    def succeeds(self, probability: float) -> bool: ...


class RandomOutcomeSource:
    """`random.Random`-backed source; pass a seed for reproducible runs."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def succeeds(self, probability: float) -> bool:
        return self._rng.random() < probability


class FixedOutcomeSource:
    """Always answers the same way; used to force either branch in tests."""

    def __init__(self, outcome: bool) -> None:
        self.outcome = outcome
        self.calls: list[float] = []

    def succeeds(self, probability: float) -> bool:
        self.calls.append(probability)
        return self.outcome


@dataclass(frozen=True)
class SimulationOutcome:
    succeeded: bool
    failure_reason: str | None
    masked_details: str


def digits_only(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


def luhn_valid(number: str) -> bool:
    """Luhn checksum over a digit string (empty strings are invalid)."""

    digits = digits_only(number)
    if not digits:
        return False
    total = 0
    for index, char in enumerate(reversed(digits)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def mask_card(number: str) -> str:
    return f"**** **** **** {digits_only(number)[-4:]}"


def mask_bank(routing: str, account: str) -> str:
    return f"****{account[-4:]} ({routing})"


class PaymentMethodSimulator:
    """Outcome engine for the `card` and `bank` payment methods."""

    def __init__(self, outcomes: OutcomeSource | None = None) -> None:
        self.outcomes = outcomes or RandomOutcomeSource()

    def simulate_card(self, number: str) -> SimulationOutcome:
        digits = digits_only(number)
        masked = mask_card(digits)
        if digits == SUCCESS_CARD:
            return SimulationOutcome(True, None, masked)
        if digits == DECLINE_CARD:
            return SimulationOutcome(False, GENERIC_DECLINE, masked)
        if digits == INSUFFICIENT_FUNDS_CARD:
            return SimulationOutcome(False, INSUFFICIENT_FUNDS, masked)
        if luhn_valid(digits):
            if self.outcomes.succeeds(CARD_SUCCESS_RATE):
                return SimulationOutcome(True, None, masked)
            return SimulationOutcome(False, GENERIC_DECLINE, masked)
        return SimulationOutcome(False, INVALID_CARD_NUMBER, masked)

    def simulate_bank(self, routing: str, account: str) -> SimulationOutcome:
        masked = mask_bank(routing, account)
        if routing == SUCCESS_ROUTING and account == SUCCESS_ACCOUNT:
            return SimulationOutcome(True, None, masked)
        if routing == INVALID_ROUTING:
            return SimulationOutcome(False, INVALID_ROUTING_NUMBER, masked)
        if self.outcomes.succeeds(BANK_SUCCESS_RATE):
            return SimulationOutcome(True, None, masked)
        return SimulationOutcome(False, INSUFFICIENT_FUNDS, masked)
