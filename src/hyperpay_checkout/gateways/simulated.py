"""Simulated gateway driven by a success policy."""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from hyperpay_checkout.gateways.base import AuthorizationRequest, GatewayDecision, PaymentGateway
from hyperpay_checkout.models import Transaction, generate_id
from hyperpay_checkout.policies import FixedSuccessPolicy, SuccessPolicy

logger = logging.getLogger(__name__)


class SimulatedGateway(PaymentGateway):
    """Gateway that decides outcomes locally. No network, no money moves."""

    def __init__(
        self,
        success_policy: Optional[SuccessPolicy] = None,
        latency_seconds: float = 0.0,
    ):
        self.success_policy = success_policy or FixedSuccessPolicy(True)
        self.latency_seconds = latency_seconds

    @property
    def name(self) -> str:
        return "simulated"

    async def _simulate_latency(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    async def authorize(self, request: AuthorizationRequest) -> GatewayDecision:
        await self._simulate_latency()

        if self.success_policy.approve(request.attempt):
            return GatewayDecision(
                approved=True,
                transaction_id=generate_id("txn"),
                result_code="000.000.000",
                message="Transaction succeeded",
            )

        logger.debug(f"Simulated decline for checkout {request.checkout_id}")
        return GatewayDecision(
            approved=False,
            result_code="800.100.151",
            message="Payment processing failed",
        )

    async def refund(
        self,
        transaction: Transaction,
        amount: Decimal,
        reason: Optional[str] = None,
    ) -> str:
        await self._simulate_latency()
        return generate_id("ref")
