"""Method-call dispatcher for host transports.

Maps wire method names (the names the mobile plugin invokes) to
PaymentSessionService operations. Arguments arrive as camelCase maps and are
parsed with pydantic models; results are returned as plain dicts ready for
the host codec.

Every call returns a dict shaped like::

    {"status": "success", "result": {...}}
    {"status": "error", "error": {"code": "...", "message": "...", "details": {...}}}

so a transport adapter never has to catch anything.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from hyperpay_checkout.exceptions import HyperPayError, InvalidArgument, MethodNotImplemented
from hyperpay_checkout.models import CardDetails, PaymentEvent
from hyperpay_checkout.service import PaymentSessionService

logger = logging.getLogger(__name__)

HostCallback = Callable[[dict[str, Any]], Any]


class WireModel(BaseModel):
    """Base for wire argument models: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class InitializeArgs(WireModel):
    merchant_id: str = Field(alias="merchantId")
    access_token: str = Field(alias="accessToken")
    is_production: bool = Field(default=False, alias="isProduction")
    brand: Optional[str] = None
    options: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("options", "configuration")
    )


class CreateCheckoutArgs(WireModel):
    # Validated by the service, which accepts numbers and numeric strings.
    amount: Any
    currency: str
    customer_email: str = Field(alias="customerEmail")
    three_d_secure_context: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("threeDSecureContext", "threeDSecureData"),
    )


class CardDetailsArgs(WireModel):
    holder_name: str = Field(alias="holderName")
    card_number: str = Field(alias="cardNumber", repr=False)
    expiry_month: str = Field(alias="expiryMonth")
    expiry_year: str = Field(alias="expiryYear")
    cvv: str = Field(repr=False)
    brand: Optional[str] = None

    def to_card(self) -> CardDetails:
        return CardDetails(
            holder_name=self.holder_name,
            card_number=self.card_number,
            expiry_month=self.expiry_month,
            expiry_year=self.expiry_year,
            cvv=self.cvv,
            brand=self.brand,
        )


CARD_FIELDS = ("holderName", "cardNumber", "expiryMonth", "expiryYear", "cvv", "brand")


class CardPaymentArgs(WireModel):
    """Card arguments, nested under cardDetails or flat at the top level."""

    checkout_id: str = Field(alias="checkoutId")
    card_details: CardDetailsArgs = Field(alias="cardDetails")

    @model_validator(mode="before")
    @classmethod
    def fold_flat_card_fields(cls, data: Any) -> Any:
        if isinstance(data, dict) and "cardDetails" not in data and "card_details" not in data:
            card = {key: data[key] for key in CARD_FIELDS if key in data}
            if card:
                data = {**data, "cardDetails": card}
        return data


class ProcessPaymentArgs(CardPaymentArgs):
    enable_3d_secure: bool = Field(default=True, alias="enable3DSecure")


class TokenizeArgs(CardPaymentArgs):
    pass


class TokenPaymentArgs(WireModel):
    checkout_id: str = Field(alias="checkoutId")
    token: str
    amount: Any
    currency: str


class CheckoutIdArgs(WireModel):
    checkout_id: str = Field(alias="checkoutId")


class SetLogLevelArgs(WireModel):
    level: str


class CompleteChallengeArgs(WireModel):
    checkout_id: str = Field(alias="checkoutId")
    authenticated: bool = True
    authentication_value: Optional[str] = Field(default=None, alias="authenticationValue")
    eci: Optional[str] = None
    cavv: Optional[str] = None


class TransactionIdArgs(WireModel):
    transaction_id: str = Field(alias="transactionId")


class HistoryArgs(WireModel):
    limit: int = 20
    offset: int = 0


class RefundArgs(WireModel):
    transaction_id: str = Field(alias="transactionId")
    amount: Any = None
    reason: Optional[str] = None


def _parse(model: type[WireModel], arguments: Optional[dict[str, Any]]) -> Any:
    """Validate wire arguments, converting pydantic errors to InvalidArgument."""
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise InvalidArgument("Arguments must be a map")
    try:
        return model.model_validate(arguments)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise InvalidArgument(
            f"Invalid value for {field}: {first.get('msg')}" if field else first.get("msg", "Invalid arguments"),
            field=field,
        ) from None


class MethodDispatcher:
    """Routes wire method calls to a PaymentSessionService.

    Args:
        service: The service instance owning the merchant session.
    """

    def __init__(self, service: PaymentSessionService) -> None:
        self.service = service
        self._handlers: dict[str, Callable[[Any], Awaitable[Any]]] = {
            "initialize": self._handle_initialize,
            "createCheckout": self._handle_create_checkout,
            "getCheckoutId": self._handle_create_checkout,
            "processPayment": self._handle_process_payment,
            "processPaymentWithUI": self._handle_process_payment_with_ui,
            "getPaymentStatus": self._handle_get_payment_status,
            "tokenizePaymentMethod": self._handle_tokenize,
            "processPaymentWithToken": self._handle_process_payment_with_token,
            "getSDKVersion": self._handle_get_sdk_version,
            "isInitialized": self._handle_is_initialized,
            "setLogLevel": self._handle_set_log_level,
            "dispose": self._handle_dispose,
            "completeChallenge": self._handle_complete_challenge,
            "cancelChallenge": self._handle_cancel_challenge,
            "verifyPayment": self._handle_verify_payment,
            "getTransactionHistory": self._handle_get_transaction_history,
            "refundPayment": self._handle_refund_payment,
        }

    @property
    def methods(self) -> list[str]:
        return sorted(self._handlers)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def dispatch(self, method: str, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Invoke a wire method and wrap its result or error.

        Args:
            method: Wire method name (e.g. ``"processPayment"``).
            arguments: camelCase argument map from the host.

        Returns:
            A dict with ``"status"`` (``"success"`` or ``"error"``) and
            a ``"result"`` or ``"error"`` key with the details.
        """
        handler = self._handlers.get(method)
        try:
            if handler is None:
                raise MethodNotImplemented(method)
            result = await handler(arguments)
            return {"status": "success", "result": result}
        except HyperPayError as exc:
            logger.debug(f"{method} failed: {exc.error_code}")
            return {"status": "error", "error": exc.to_dict()}
        except Exception:
            logger.exception(f"Unexpected error handling {method}")
            return {
                "status": "error",
                "error": {"code": "INTERNAL_ERROR", "message": "Internal error"},
            }

    def attach_listener(self, callback: HostCallback) -> None:
        """Forward every payment event to callback as a wire dict."""

        async def forward(event: PaymentEvent) -> None:
            result = callback(event.to_dict())
            if hasattr(result, "__await__"):
                await result

        self.service.attach_listener(forward)

    def detach_listener(self) -> None:
        self.service.detach_listener()

    # ------------------------------------------------------------------
    # Individual method handlers
    # ------------------------------------------------------------------

    async def _handle_initialize(self, arguments: Any) -> dict[str, Any]:
        args = _parse(InitializeArgs, arguments)
        await self.service.initialize(
            merchant_id=args.merchant_id,
            access_token=args.access_token,
            is_production=args.is_production,
            brand=args.brand,
            options=args.options,
        )
        return {"success": True}

    async def _handle_create_checkout(self, arguments: Any) -> dict[str, Any]:
        args = _parse(CreateCheckoutArgs, arguments)
        checkout = await self.service.create_checkout(
            amount=args.amount,
            currency=args.currency,
            customer_email=args.customer_email,
            three_d_secure_context=args.three_d_secure_context,
        )
        return {"checkoutId": checkout.checkout_id}

    async def _handle_process_payment(self, arguments: Any) -> dict[str, Any]:
        args = _parse(ProcessPaymentArgs, arguments)
        result = await self.service.process_payment(
            args.checkout_id,
            args.card_details.to_card(),
            enable_3d_secure=args.enable_3d_secure,
        )
        return result.to_dict()

    async def _handle_process_payment_with_ui(self, arguments: Any) -> dict[str, Any]:
        args = _parse(ProcessPaymentArgs, arguments)
        result = await self.service.process_payment_with_ui(
            args.checkout_id,
            args.card_details.to_card(),
            enable_3d_secure=args.enable_3d_secure,
        )
        return result.to_dict()

    async def _handle_get_payment_status(self, arguments: Any) -> dict[str, Any]:
        args = _parse(CheckoutIdArgs, arguments)
        status = await self.service.get_payment_status(args.checkout_id)
        return {"status": status.value}

    async def _handle_tokenize(self, arguments: Any) -> dict[str, Any]:
        args = _parse(TokenizeArgs, arguments)
        record = await self.service.tokenize_payment_method(
            args.checkout_id, args.card_details.to_card()
        )
        return {"token": record.token}

    async def _handle_process_payment_with_token(self, arguments: Any) -> dict[str, Any]:
        args = _parse(TokenPaymentArgs, arguments)
        result = await self.service.process_payment_with_token(
            args.checkout_id, args.token, args.amount, args.currency
        )
        return result.to_dict()

    async def _handle_get_sdk_version(self, arguments: Any) -> dict[str, Any]:
        return {"version": self.service.get_sdk_version()}

    async def _handle_is_initialized(self, arguments: Any) -> dict[str, Any]:
        return {"initialized": self.service.is_initialized()}

    async def _handle_set_log_level(self, arguments: Any) -> None:
        args = _parse(SetLogLevelArgs, arguments)
        self.service.set_log_level(args.level)

    async def _handle_dispose(self, arguments: Any) -> None:
        await self.service.dispose()

    async def _handle_complete_challenge(self, arguments: Any) -> None:
        args = _parse(CompleteChallengeArgs, arguments)
        self.service.complete_challenge(
            args.checkout_id,
            authenticated=args.authenticated,
            authentication_value=args.authentication_value,
            eci=args.eci,
            cavv=args.cavv,
        )

    async def _handle_cancel_challenge(self, arguments: Any) -> None:
        args = _parse(CheckoutIdArgs, arguments)
        self.service.cancel_challenge(args.checkout_id)

    async def _handle_verify_payment(self, arguments: Any) -> dict[str, Any]:
        args = _parse(TransactionIdArgs, arguments)
        transaction = await self.service.verify_payment(args.transaction_id)
        refunds = await self.service.list_refunds(transaction.transaction_id)
        return {**transaction.to_dict(), "refunds": [r.to_dict() for r in refunds]}

    async def _handle_get_transaction_history(self, arguments: Any) -> dict[str, Any]:
        args = _parse(HistoryArgs, arguments)
        transactions = await self.service.get_transaction_history(
            limit=args.limit, offset=args.offset
        )
        return {"transactions": [t.to_dict() for t in transactions]}

    async def _handle_refund_payment(self, arguments: Any) -> dict[str, Any]:
        args = _parse(RefundArgs, arguments)
        refund = await self.service.refund_payment(
            args.transaction_id, amount=args.amount, reason=args.reason
        )
        return refund.to_dict()
