"""Base payment gateway interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from hyperpay_checkout.models import CardDetails, PaymentAttempt, ThreeDSecureResult, Transaction


@dataclass(frozen=True)
class AuthorizationRequest:
    """Everything a gateway needs to authorize one attempt.

    Exactly one of ``card`` and ``registration_id`` is set for gateways that
    move money; the simulated gateway ignores both.
    """
    attempt: PaymentAttempt
    card: Optional[CardDetails] = None
    registration_id: Optional[str] = None
    three_d_secure_result: Optional[ThreeDSecureResult] = None

    @property
    def checkout_id(self) -> str:
        return self.attempt.checkout_id

    @property
    def amount(self) -> Decimal:
        return self.attempt.amount

    @property
    def currency(self) -> str:
        return self.attempt.currency


@dataclass(frozen=True)
class GatewayDecision:
    """Gateway answer for an authorization."""
    approved: bool
    transaction_id: Optional[str] = None
    result_code: Optional[str] = None
    message: Optional[str] = None


class PaymentGateway(ABC):
    """Abstract interface for payment gateways."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Gateway name (e.g., 'simulated', 'oppwa')."""
        pass

    @abstractmethod
    async def authorize(self, request: AuthorizationRequest) -> GatewayDecision:
        """
        Authorize and capture a payment.

        Args:
            request: AuthorizationRequest for the attempt

        Returns:
            GatewayDecision; a decline is a normal return, not an error

        Raises:
            TransportFailure: if the gateway cannot be reached
        """
        pass

    @abstractmethod
    async def refund(
        self,
        transaction: Transaction,
        amount: Decimal,
        reason: Optional[str] = None,
    ) -> str:
        """
        Refund part or all of a captured transaction.

        Returns:
            Gateway refund id

        Raises:
            TransportFailure: if the gateway cannot be reached
            InvalidState: if the gateway refuses the refund
        """
        pass

    async def register(self, card: CardDetails) -> Optional[str]:
        """
        Store the card with the gateway for later token payments.

        Returns the gateway's registration id, or None when the gateway
        keeps no card registrations.
        Raises PaymentDeclined when the gateway rejects the card.
        """
        return None

    async def close(self) -> None:
        """Release network resources."""
        return None
