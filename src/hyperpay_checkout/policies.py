"""
Pluggable decision policies.

Challenge policies decide whether a card must go through a 3-D Secure
challenge; success policies decide whether the simulated gateway approves an
attempt. Both are plain objects so tests can pin outcomes.
"""
from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from hyperpay_checkout.models import CardDetails, PaymentAttempt


class ChallengePolicy(ABC):
    """Decides whether a card is sent through a 3-D Secure challenge."""

    @abstractmethod
    def should_challenge(self, card: CardDetails) -> bool:
        pass


class CardPrefixChallengePolicy(ChallengePolicy):
    """Challenge cards whose number starts with one of the given prefixes."""

    def __init__(self, prefixes: Iterable[str] = ("4000",)):
        self.prefixes = tuple(prefixes)

    def should_challenge(self, card: CardDetails) -> bool:
        return any(card.card_number.startswith(p) for p in self.prefixes)


class FixedChallengePolicy(ChallengePolicy):
    """Always (or never) challenge."""

    def __init__(self, challenge: bool):
        self.challenge = challenge

    def should_challenge(self, card: CardDetails) -> bool:
        return self.challenge


class SuccessPolicy(ABC):
    """Decides whether a payment attempt is approved."""

    @abstractmethod
    def approve(self, attempt: PaymentAttempt) -> bool:
        pass


class FixedSuccessPolicy(SuccessPolicy):
    def __init__(self, approved: bool):
        self.approved = approved

    def approve(self, attempt: PaymentAttempt) -> bool:
        return self.approved


class RandomSuccessPolicy(SuccessPolicy):
    """
    Approve attempts with a fixed probability drawn from an injected source.

    Pass a seeded ``random.Random`` for reproducible runs.
    """

    def __init__(
        self,
        success_rate: float = 2 / 3,
        rng: Optional[random.Random] = None,
    ):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def approve(self, attempt: PaymentAttempt) -> bool:
        return self.rng.random() < self.success_rate
