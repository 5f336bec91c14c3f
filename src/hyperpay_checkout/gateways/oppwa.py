"""HyperPay (OPPWA REST API) gateway."""
from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import httpx

from hyperpay_checkout.config import HyperPaySettings
from hyperpay_checkout.exceptions import InvalidArgument, InvalidState, PaymentDeclined, TransportFailure
from hyperpay_checkout.gateways.base import AuthorizationRequest, GatewayDecision, PaymentGateway
from hyperpay_checkout.models import CardDetails, Session, Transaction

logger = logging.getLogger(__name__)

# Result codes for successfully processed transactions.
SUCCESS_CODE_PATTERN = re.compile(r"^(000\.000\.|000\.100\.1|000\.[36]|000\.400\.[1][12]0)")


def is_success_code(code: Optional[str]) -> bool:
    return bool(code) and SUCCESS_CODE_PATTERN.match(code) is not None


def format_amount(amount: Decimal) -> str:
    return f"{amount.quantize(Decimal('0.01'))}"


class OppwaGateway(PaymentGateway):
    """Gateway talking to the HyperPay REST API with httpx."""

    def __init__(
        self,
        access_token: str,
        entity_id: str,
        api_base: str = "https://eu-test.oppwa.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.entity_id = entity_id
        self.api_base = api_base.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.api_base,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "oppwa"

    async def _post(self, path: str, form: Dict[str, Any]) -> Dict[str, Any]:
        """POST a form and return the JSON body.

        Declines come back as 4xx with a result code, so only 5xx, network
        errors and unparseable bodies count as transport failures.
        """
        try:
            response = await self._client.post(path, data=form)
        except httpx.HTTPError as e:
            logger.warning(f"Gateway request to {path} failed: {e}")
            raise TransportFailure(f"Payment gateway unreachable: {e}") from e

        if response.status_code >= 500:
            raise TransportFailure(
                f"Payment gateway returned HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportFailure("Payment gateway returned an invalid response") from e

        if not isinstance(data, dict):
            raise TransportFailure("Payment gateway returned an invalid response")
        return data

    def _card_form(self, card: CardDetails) -> Dict[str, Any]:
        year = card.expiry_year if len(card.expiry_year) == 4 else f"20{card.expiry_year}"
        form = {
            "card.number": card.card_number,
            "card.holder": card.holder_name,
            "card.expiryMonth": card.expiry_month,
            "card.expiryYear": year,
            "card.cvv": card.cvv,
        }
        if card.brand:
            form["paymentBrand"] = card.brand
        return form

    async def authorize(self, request: AuthorizationRequest) -> GatewayDecision:
        form: Dict[str, Any] = {
            "entityId": self.entity_id,
            "amount": format_amount(request.amount),
            "currency": request.currency,
            "paymentType": "DB",
            "merchantTransactionId": request.checkout_id,
        }

        if request.registration_id:
            path = f"/registrations/{request.registration_id}/payments"
        elif request.card is not None:
            path = "/payments"
            form.update(self._card_form(request.card))
        else:
            raise InvalidArgument("Card details or a registered token are required")

        tds = request.three_d_secure_result
        if tds is not None:
            form["threeDSecure.eci"] = tds.eci
            form["threeDSecure.verificationId"] = tds.cavv
            form["threeDSecure.xid"] = tds.authentication_value

        data = await self._post(path, form)
        result = data.get("result") or {}
        code = result.get("code")
        message = result.get("description")

        if is_success_code(code):
            return GatewayDecision(
                approved=True,
                transaction_id=data.get("id"),
                result_code=code,
                message=message,
            )

        logger.info(f"Gateway declined checkout {request.checkout_id}: {code}")
        return GatewayDecision(approved=False, result_code=code, message=message)

    async def refund(
        self,
        transaction: Transaction,
        amount: Decimal,
        reason: Optional[str] = None,
    ) -> str:
        form = {
            "entityId": self.entity_id,
            "amount": format_amount(amount),
            "currency": transaction.currency,
            "paymentType": "RF",
        }
        if reason:
            form["descriptor"] = reason[:127]

        data = await self._post(f"/payments/{transaction.transaction_id}", form)
        code = (data.get("result") or {}).get("code")
        if not is_success_code(code):
            raise InvalidState(
                f"Refund rejected by gateway: {code}",
                details={"result_code": code},
            )
        return data.get("id", "")

    async def register(self, card: CardDetails) -> Optional[str]:
        form = {"entityId": self.entity_id, **self._card_form(card)}
        data = await self._post("/registrations", form)
        code = (data.get("result") or {}).get("code")
        if not is_success_code(code):
            raise PaymentDeclined(
                f"Card registration rejected by gateway: {code}",
                details={"result_code": code},
            )
        return data.get("id")

    async def close(self):
        """Close HTTP client."""
        await self._client.aclose()


def oppwa_gateway_factory(
    settings: HyperPaySettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Callable[[Session], PaymentGateway]:
    """Build gateways per session: merchant id as entity id, test or live host."""

    def factory(session: Session) -> PaymentGateway:
        return OppwaGateway(
            access_token=session.access_token,
            entity_id=session.merchant_id,
            api_base=settings.gateway_url(session.is_production),
            timeout=settings.gateway_timeout_seconds,
            transport=transport,
        )

    return factory
