"""
3-D Secure challenge coordination.

When a card is selected for a challenge, the payment operation opens a
challenge here and suspends until one of:

- complete(): the host reports the issuer's authentication outcome
- cancel() / a CancellationToken: the challenge is aborted
- the challenge timeout elapses

``auto_complete_after`` makes every challenge authenticate itself after a
delay. It exists for tests and demos only.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Dict, Optional

from hyperpay_checkout.exceptions import InvalidState, NotFound, PaymentCancelled, PaymentDeclined
from hyperpay_checkout.models import ChallengeParameters, ThreeDSecureResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChallengeOutcome:
    """Result reported by the host once the cardholder finishes the challenge."""
    authenticated: bool
    result: Optional[ThreeDSecureResult] = None


class CancellationToken:
    """Lets a caller abort a payment that is waiting on a challenge."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Payment cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class ChallengeCoordinator:
    """Tracks open challenges per checkout and resolves them."""

    def __init__(
        self,
        acs_url: str = "https://acs.example.com",
        timeout_seconds: Optional[float] = 300.0,
        auto_complete_after: Optional[float] = None,
    ):
        self.acs_url = acs_url
        self.timeout_seconds = timeout_seconds
        self.auto_complete_after = auto_complete_after
        self._pending: Dict[str, asyncio.Future] = {}

    def is_open(self, checkout_id: str) -> bool:
        return checkout_id in self._pending

    @property
    def open_count(self) -> int:
        return len(self._pending)

    def open(self, checkout_id: str) -> ChallengeParameters:
        """Register a challenge for checkout_id and build its parameters."""
        if checkout_id in self._pending:
            raise InvalidState(f"Challenge already open for checkout {checkout_id}")

        loop = asyncio.get_running_loop()
        self._pending[checkout_id] = loop.create_future()
        logger.info(f"Opened 3-D Secure challenge for checkout {checkout_id}")

        return ChallengeParameters(
            acs_url=self.acs_url,
            pa_req=f"PA_REQ_{secrets.token_hex(12)}",
            md=f"MD_{secrets.token_hex(12)}",
        )

    async def wait(
        self,
        checkout_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ChallengeOutcome:
        """
        Suspend until the challenge for checkout_id resolves.

        Raises:
            PaymentCancelled: challenge cancelled or the token fired
            PaymentDeclined: challenge timed out
        """
        future = self._pending.get(checkout_id)
        if future is None:
            raise NotFound("challenge", checkout_id)

        loop = asyncio.get_running_loop()
        timer = None
        if self.auto_complete_after is not None:
            timer = loop.call_later(
                self.auto_complete_after, self._auto_complete, checkout_id, future
            )

        waiters = {future}
        cancel_task = None
        if cancel_token is not None:
            cancel_task = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if future in done:
                return future.result()
            if cancel_token is not None and cancel_token.cancelled:
                logger.info(f"Challenge for checkout {checkout_id} cancelled by token")
                raise PaymentCancelled(
                    cancel_token.reason or "Payment cancelled by caller",
                    details={"checkout_id": checkout_id},
                )
            logger.info(f"Challenge for checkout {checkout_id} timed out")
            raise PaymentDeclined(
                "3-D Secure challenge timed out",
                details={"checkout_id": checkout_id, "reason": "challenge_timeout"},
            )
        finally:
            if timer is not None:
                timer.cancel()
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()
            if not future.done():
                future.cancel()
            if self._pending.get(checkout_id) is future:
                del self._pending[checkout_id]

    def complete(self, checkout_id: str, outcome: ChallengeOutcome) -> None:
        """Deliver the authentication outcome for an open challenge."""
        future = self._pending.get(checkout_id)
        if future is None or future.done():
            raise NotFound("challenge", checkout_id)
        future.set_result(outcome)
        logger.info(
            f"Challenge for checkout {checkout_id} completed "
            f"(authenticated={outcome.authenticated})"
        )

    def cancel(self, checkout_id: str, reason: str = "3-D Secure challenge cancelled") -> None:
        future = self._pending.get(checkout_id)
        if future is None or future.done():
            raise NotFound("challenge", checkout_id)
        future.set_exception(PaymentCancelled(reason, details={"checkout_id": checkout_id}))

    def cancel_all(self, reason: str = "Session disposed") -> int:
        """Cancel every open challenge. Returns how many were cancelled."""
        cancelled = 0
        for checkout_id in list(self._pending):
            future = self._pending[checkout_id]
            if not future.done():
                future.set_exception(PaymentCancelled(reason, details={"checkout_id": checkout_id}))
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} open challenges: {reason}")
        return cancelled

    def _auto_complete(self, checkout_id: str, future: asyncio.Future) -> None:
        if not future.done():
            future.set_result(ChallengeOutcome(authenticated=True))
            logger.debug(f"Auto-completed challenge for checkout {checkout_id}")
