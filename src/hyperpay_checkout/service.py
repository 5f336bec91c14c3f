"""
Payment session service.

This module owns the checkout-session protocol:
- Session initialization and disposal
- Checkout creation and status tracking
- Card and token payments through a pluggable gateway
- 3-D Secure challenge suspension and completion
- Tokenization, transaction history and refunds
- Event emission to the host (challenge required, success, failure)

One service instance holds one merchant session. Build one per host (or per
test); nothing here is process-global.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set

from hyperpay_checkout.challenges import CancellationToken, ChallengeCoordinator, ChallengeOutcome
from hyperpay_checkout.config import HyperPaySettings, load_settings
from hyperpay_checkout.events import EventChannel, EventListener
from hyperpay_checkout.exceptions import (
    HyperPayError,
    InvalidArgument,
    InvalidState,
    NotFound,
    NotInitialized,
    PaymentCancelled,
    PaymentDeclined,
)
from hyperpay_checkout.gateways.base import AuthorizationRequest, PaymentGateway
from hyperpay_checkout.gateways.simulated import SimulatedGateway
from hyperpay_checkout.logging import LogLevel, mask_card_number, set_log_level, setup_logging
from hyperpay_checkout.models import (
    TOKENIZED_BRAND,
    TOKENIZED_CARD_NUMBER,
    TOKENIZED_HOLDER_NAME,
    CardDetails,
    Checkout,
    CheckoutStatus,
    PaymentAttempt,
    PaymentEvent,
    PaymentEventType,
    PaymentResult,
    Refund,
    Session,
    ThreeDSecureResult,
    TokenRecord,
    Transaction,
    TransactionStatus,
    generate_id,
)
from hyperpay_checkout.policies import (
    CardPrefixChallengePolicy,
    ChallengePolicy,
    RandomSuccessPolicy,
    SuccessPolicy,
)
from hyperpay_checkout.store import CheckoutStore, InMemoryCheckoutStore
from hyperpay_checkout.tokens import TokenVault
from hyperpay_checkout.validators import (
    validate_amount,
    validate_card_details,
    validate_currency,
    validate_email,
    validate_non_empty,
)

logger = logging.getLogger(__name__)

DEFAULT_ECI = "05"

GatewayFactory = Callable[[Session], PaymentGateway]


@dataclass
class _SessionState:
    """Everything scoped to one initialize() call.

    In-flight operations keep a reference to the state they started with, so
    a dispose or re-initialize cannot leak their results into a new session.
    """
    session: Session
    store: CheckoutStore
    vault: TokenVault
    gateway: PaymentGateway
    owns_gateway: bool = False
    in_flight: Set[str] = field(default_factory=set)


class PaymentSessionService:
    """
    Checkout-session lifecycle and 3-D Secure flow for one merchant session.

    Collaborators are injected:
    - gateway / gateway_factory: who authorizes payments (simulated by default)
    - challenge_policy: which cards get a 3-D Secure challenge
    - success_policy: approval policy of the default simulated gateway
    - challenges: coordinator holding open challenges
    - events: push channel to the host

    The package log level follows settings.log_level. With
    configure_logging=True a stream handler is attached as well, emitting JSON
    lines when settings.log_json is set.
    """

    def __init__(
        self,
        settings: Optional[HyperPaySettings] = None,
        gateway: Optional[PaymentGateway] = None,
        gateway_factory: Optional[GatewayFactory] = None,
        challenge_policy: Optional[ChallengePolicy] = None,
        success_policy: Optional[SuccessPolicy] = None,
        challenges: Optional[ChallengeCoordinator] = None,
        events: Optional[EventChannel] = None,
        store_factory: Callable[[], CheckoutStore] = InMemoryCheckoutStore,
        configure_logging: bool = False,
    ):
        if gateway is not None and gateway_factory is not None:
            raise ValueError("Pass either gateway or gateway_factory, not both")

        self.settings = settings or load_settings()
        if configure_logging:
            setup_logging(self.settings.log_level, json_format=self.settings.log_json)
        else:
            set_log_level(self.settings.log_level)

        self.events = events or EventChannel()
        self.challenge_policy = challenge_policy or CardPrefixChallengePolicy(
            self.settings.challenge_card_prefixes
        )
        self.success_policy = success_policy or RandomSuccessPolicy(self.settings.success_rate)
        self.challenges = challenges or ChallengeCoordinator(
            acs_url=self.settings.acs_url,
            timeout_seconds=self.settings.challenge_timeout_seconds,
        )

        self._gateway_factory = gateway_factory
        self._gateway = gateway
        if gateway is None and gateway_factory is None:
            self._gateway = SimulatedGateway(self.success_policy)

        self._store_factory = store_factory
        self._state: Optional[_SessionState] = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def initialize(
        self,
        merchant_id: str,
        access_token: str,
        is_production: bool = False,
        brand: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Session:
        """
        Start a merchant session, replacing any existing one.

        Raises:
            InvalidArgument: merchant_id or access_token missing
        """
        merchant_id = validate_non_empty(merchant_id, "merchantId")
        access_token = validate_non_empty(access_token, "accessToken")
        if options is not None and not isinstance(options, dict):
            raise InvalidArgument("options must be a mapping", field="options")

        logger.info(
            f"Initializing SDK with merchantId: {merchant_id}, isProduction: {is_production}"
        )

        if self._state is not None:
            await self._teardown("Session re-initialized")

        session = Session(
            merchant_id=merchant_id,
            access_token=access_token,
            is_production=bool(is_production),
            brand=brand,
            options=dict(options or {}),
        )

        if self._gateway_factory is not None:
            gateway = self._gateway_factory(session)
            owns_gateway = True
        else:
            gateway = self._gateway
            owns_gateway = False

        self._state = _SessionState(
            session=session,
            store=self._store_factory(),
            vault=TokenVault(),
            gateway=gateway,
            owns_gateway=owns_gateway,
        )
        logger.info(f"SDK initialized successfully (gateway={gateway.name})")
        return session

    def is_initialized(self) -> bool:
        return self._state is not None

    @property
    def session(self) -> Optional[Session]:
        return self._state.session if self._state else None

    def get_sdk_version(self) -> str:
        return self.settings.sdk_version

    def set_log_level(self, level: Any) -> LogLevel:
        """Set package log level; raises InvalidArgument for unknown levels."""
        try:
            resolved = set_log_level(level)
        except ValueError as e:
            raise InvalidArgument(str(e), field="level") from None
        logger.info(f"Log level set to {resolved.value}")
        return resolved

    async def dispose(self) -> None:
        """Clear the session and detach the listener. Safe to call repeatedly."""
        self.events.detach()
        if self._state is None:
            return
        await self._teardown("Session disposed")
        logger.info("SDK disposed")

    async def _teardown(self, reason: str) -> None:
        state = self._state
        self._state = None
        if state is None:
            return
        self.challenges.cancel_all(reason)
        state.vault.clear()
        if state.owns_gateway:
            await state.gateway.close()

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    def attach_listener(self, listener: EventListener) -> None:
        self.events.attach(listener)

    def detach_listener(self) -> None:
        self.events.detach()

    async def _emit(self, state: _SessionState, event: PaymentEvent) -> None:
        if self._state is not state:
            logger.debug(f"Dropping {event.type.value} for {event.checkout_id}: session ended")
            return
        await self.events.emit(event)

    # ------------------------------------------------------------------
    # Checkouts
    # ------------------------------------------------------------------

    def _require_state(self) -> _SessionState:
        if self._state is None:
            raise NotInitialized()
        return self._state

    async def create_checkout(
        self,
        amount: Any,
        currency: str,
        customer_email: str,
        three_d_secure_context: Optional[Dict[str, Any]] = None,
    ) -> Checkout:
        """
        Create a pending checkout.

        Raises:
            NotInitialized: no active session
            InvalidArgument: bad amount, currency or email
        """
        state = self._require_state()
        checkout = Checkout(
            amount=validate_amount(amount),
            currency=validate_currency(currency, self.settings.supported_currencies),
            customer_email=validate_email(customer_email),
            three_d_secure_context=dict(three_d_secure_context or {}),
        )
        await state.store.create_checkout(checkout)
        logger.info(
            f"Checkout {checkout.checkout_id} created for {checkout.amount} {checkout.currency}"
        )
        return checkout

    async def get_payment_status(self, checkout_id: str) -> CheckoutStatus:
        state = self._require_state()
        checkout = await self._get_checkout(state, checkout_id)
        return checkout.status

    async def get_checkout(self, checkout_id: str) -> Checkout:
        state = self._require_state()
        return await self._get_checkout(state, checkout_id)

    async def list_payment_attempts(self, checkout_id: str) -> List[PaymentAttempt]:
        """Finalized attempts against a checkout, oldest first. Card references only."""
        state = self._require_state()
        checkout = await self._get_checkout(state, checkout_id)
        return await state.store.list_attempts(checkout.checkout_id)

    async def _get_checkout(self, state: _SessionState, checkout_id: Any) -> Checkout:
        checkout_id = validate_non_empty(checkout_id, "checkoutId")
        checkout = await state.store.get_checkout(checkout_id)
        if checkout is None:
            raise NotFound("checkout", checkout_id)
        return checkout

    def _ensure_payable(self, state: _SessionState, checkout: Checkout) -> None:
        if checkout.checkout_id in state.in_flight:
            raise InvalidState(
                f"Checkout {checkout.checkout_id} already has a payment in progress"
            )
        if checkout.status is not CheckoutStatus.PENDING:
            raise InvalidState(
                f"Checkout {checkout.checkout_id} is {checkout.status.value}",
                details={"status": checkout.status.value},
            )

    def _claim(self, state: _SessionState, checkout: Checkout) -> None:
        """Reserve a pending checkout for one payment attempt."""
        self._ensure_payable(state, checkout)
        state.in_flight.add(checkout.checkout_id)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def process_payment(
        self,
        checkout_id: str,
        card_details: CardDetails,
        enable_3d_secure: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PaymentResult:
        """
        Pay a pending checkout with card details.

        Flow:
        1. Validate session, checkout and card
        2. Run a 3-D Secure challenge if enabled and the policy selects the card
        3. Authorize through the gateway
        4. Complete or fail the checkout and emit the terminal event

        Raises:
            NotInitialized, NotFound, InvalidState, InvalidArgument
            PaymentDeclined: declined, failed authentication or challenge timeout
            PaymentCancelled: challenge cancelled
            TransportFailure: gateway unreachable
        """
        state = self._require_state()
        checkout = await self._get_checkout(state, checkout_id)
        self._ensure_payable(state, checkout)
        card = validate_card_details(card_details, enforce_luhn=self.settings.enforce_luhn)
        self._claim(state, checkout)

        logger.info(
            f"Processing payment: {checkout.amount} {checkout.currency} "
            f"with card {mask_card_number(card.card_number)} (3DS enabled: {enable_3d_secure})"
        )

        try:
            attempt = PaymentAttempt(
                checkout_id=checkout.checkout_id,
                amount=checkout.amount,
                currency=checkout.currency,
                card_reference=state.vault.fingerprint(card.card_number),
                brand=card.brand,
            )
            challenge = enable_3d_secure and self.challenge_policy.should_challenge(card)
            return await self._execute(
                state,
                checkout,
                attempt,
                card=card,
                challenge=challenge,
                cancel_token=cancel_token,
                holder_name=card.holder_name,
                card_number=mask_card_number(card.card_number),
                brand=card.brand,
                message="Payment processed successfully",
            )
        finally:
            state.in_flight.discard(checkout.checkout_id)

    async def process_payment_with_ui(
        self,
        checkout_id: str,
        card_details: CardDetails,
        enable_3d_secure: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PaymentResult:
        """Same as process_payment; rendering the hosted UI is the host's job."""
        logger.debug("Processing payment on behalf of hosted UI")
        return await self.process_payment(
            checkout_id,
            card_details,
            enable_3d_secure=enable_3d_secure,
            cancel_token=cancel_token,
        )

    async def tokenize_payment_method(
        self,
        checkout_id: str,
        card_details: CardDetails,
    ) -> TokenRecord:
        """
        Exchange card details for an opaque token usable in this session.

        The checkout is not transitioned and no money moves.
        """
        state = self._require_state()
        checkout = await self._get_checkout(state, checkout_id)
        card = validate_card_details(card_details, enforce_luhn=self.settings.enforce_luhn)

        registration_id = await state.gateway.register(card)
        return state.vault.tokenize(checkout.checkout_id, card, gateway_reference=registration_id)

    async def process_payment_with_token(
        self,
        checkout_id: str,
        token: str,
        amount: Any,
        currency: str,
    ) -> PaymentResult:
        """
        Pay a pending checkout with a token from tokenize_payment_method.

        Tokens are treated as pre-verified: no card validation and no
        3-D Secure challenge.
        """
        state = self._require_state()
        checkout = await self._get_checkout(state, checkout_id)
        self._ensure_payable(state, checkout)
        token = validate_non_empty(token, "token")
        amount = validate_amount(amount)
        currency = validate_currency(currency, self.settings.supported_currencies)

        record = state.vault.get(token)
        if record is None:
            raise NotFound("token", token)
        if amount != checkout.amount or currency != checkout.currency:
            raise InvalidArgument(
                f"Token payment of {amount} {currency} does not match checkout "
                f"{checkout.amount} {checkout.currency}",
                field="amount",
            )

        self._claim(state, checkout)
        logger.info(f"Processing token payment for checkout {checkout.checkout_id}")

        try:
            attempt = PaymentAttempt(
                checkout_id=checkout.checkout_id,
                amount=checkout.amount,
                currency=checkout.currency,
                card_reference=record.token,
                brand=TOKENIZED_BRAND,
            )
            return await self._execute(
                state,
                checkout,
                attempt,
                registration_id=record.gateway_reference,
                holder_name=TOKENIZED_HOLDER_NAME,
                card_number=TOKENIZED_CARD_NUMBER,
                brand=TOKENIZED_BRAND,
                message="Payment processed successfully with token",
            )
        finally:
            state.in_flight.discard(checkout.checkout_id)

    async def _execute(
        self,
        state: _SessionState,
        checkout: Checkout,
        attempt: PaymentAttempt,
        holder_name: str,
        card_number: str,
        brand: Optional[str],
        message: str,
        card: Optional[CardDetails] = None,
        registration_id: Optional[str] = None,
        challenge: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PaymentResult:
        """Run challenge + authorization and settle the checkout either way."""
        three_ds: Optional[ThreeDSecureResult] = None
        try:
            if challenge:
                three_ds = await self._run_challenge(state, checkout, cancel_token)

            decision = await state.gateway.authorize(
                AuthorizationRequest(
                    attempt=attempt,
                    card=card,
                    registration_id=registration_id,
                    three_d_secure_result=three_ds,
                )
            )
        except asyncio.CancelledError:
            await self._fail(state, checkout, attempt, PaymentCancelled("Payment task cancelled"))
            raise
        except Exception as e:
            await self._fail(state, checkout, attempt, e)
            raise

        if not decision.approved:
            error = PaymentDeclined(
                decision.message or "Payment processing failed",
                details={"checkout_id": checkout.checkout_id, "result_code": decision.result_code},
            )
            await self._fail(state, checkout, attempt, error)
            raise error

        transaction_id = decision.transaction_id or generate_id("txn")
        checkout.transition(CheckoutStatus.COMPLETED)
        await state.store.update_checkout(checkout)
        await state.store.add_attempt(
            replace(
                attempt,
                transaction_id=transaction_id,
                three_d_secure_result=three_ds,
                succeeded=True,
            )
        )
        await state.store.add_transaction(
            Transaction(
                transaction_id=transaction_id,
                checkout_id=checkout.checkout_id,
                amount=checkout.amount,
                currency=checkout.currency,
                customer_email=checkout.customer_email,
            )
        )

        result = PaymentResult(
            checkout_id=checkout.checkout_id,
            transaction_id=transaction_id,
            amount=checkout.amount,
            currency=checkout.currency,
            brand=brand,
            holder_name=holder_name,
            card_number=card_number,
            message=message,
            three_d_secure_result=three_ds,
        )
        logger.info(f"Payment successful for checkout {checkout.checkout_id}: {transaction_id}")
        await self._emit(
            state,
            PaymentEvent(PaymentEventType.PAYMENT_SUCCESS, checkout.checkout_id, data=result.to_dict()),
        )
        return result

    async def _run_challenge(
        self,
        state: _SessionState,
        checkout: Checkout,
        cancel_token: Optional[CancellationToken],
    ) -> ThreeDSecureResult:
        params = self.challenges.open(checkout.checkout_id)
        checkout.transition(CheckoutStatus.CHALLENGE_REQUIRED)
        await state.store.update_checkout(checkout)

        logger.info(f"Triggering 3D Secure challenge for checkout {checkout.checkout_id}")
        await self._emit(
            state,
            PaymentEvent(
                PaymentEventType.CHALLENGE_REQUIRED,
                checkout.checkout_id,
                data=params.to_dict(),
            ),
        )

        outcome = await self.challenges.wait(checkout.checkout_id, cancel_token)
        if not outcome.authenticated:
            raise PaymentDeclined(
                "3-D Secure authentication failed",
                details={"checkout_id": checkout.checkout_id, "reason": "authentication_failed"},
            )
        return outcome.result or ThreeDSecureResult(
            authentication_value=f"AUTH_{secrets.token_hex(10)}",
            eci=DEFAULT_ECI,
            cavv=f"CAVV_{secrets.token_hex(10)}",
        )

    async def _fail(
        self,
        state: _SessionState,
        checkout: Checkout,
        attempt: PaymentAttempt,
        error: BaseException,
    ) -> None:
        if not checkout.status.is_terminal:
            checkout.transition(CheckoutStatus.FAILED)
            await state.store.update_checkout(checkout)
        await state.store.add_attempt(replace(attempt, succeeded=False))

        if isinstance(error, HyperPayError):
            code, message = error.error_code, error.message
        else:
            logger.error(
                f"Unexpected error processing checkout {checkout.checkout_id}",
                exc_info=error,
            )
            code, message = "PAYMENT_ERROR", "Payment processing failed"

        logger.info(f"Payment failed for checkout {checkout.checkout_id}: {code}")
        await self._emit(
            state,
            PaymentEvent(
                PaymentEventType.PAYMENT_FAILED,
                checkout.checkout_id,
                data={"error": message, "code": code},
            ),
        )

    # ------------------------------------------------------------------
    # 3-D Secure signals
    # ------------------------------------------------------------------

    def complete_challenge(
        self,
        checkout_id: str,
        authenticated: bool = True,
        authentication_value: Optional[str] = None,
        eci: Optional[str] = None,
        cavv: Optional[str] = None,
    ) -> None:
        """Report the issuer's authentication outcome for an open challenge."""
        self._require_state()
        checkout_id = validate_non_empty(checkout_id, "checkoutId")

        result = None
        if authenticated and (authentication_value or eci or cavv):
            result = ThreeDSecureResult(
                authentication_value=authentication_value or f"AUTH_{secrets.token_hex(10)}",
                eci=eci or DEFAULT_ECI,
                cavv=cavv or f"CAVV_{secrets.token_hex(10)}",
            )
        self.challenges.complete(
            checkout_id, ChallengeOutcome(authenticated=bool(authenticated), result=result)
        )

    def cancel_challenge(self, checkout_id: str) -> None:
        self._require_state()
        checkout_id = validate_non_empty(checkout_id, "checkoutId")
        self.challenges.cancel(checkout_id)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def verify_payment(self, transaction_id: str) -> Transaction:
        state = self._require_state()
        return await self._get_transaction(state, transaction_id)

    async def get_transaction_history(self, limit: int = 20, offset: int = 0) -> List[Transaction]:
        """This session's transactions, newest first."""
        state = self._require_state()
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidArgument("limit must be a positive integer", field="limit")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidArgument("offset must be a non-negative integer", field="offset")
        return await state.store.list_transactions(limit=limit, offset=offset)

    async def list_refunds(self, transaction_id: str) -> List[Refund]:
        """Refunds issued against a transaction, oldest first.

        Raises:
            NotFound: unknown transaction
        """
        state = self._require_state()
        transaction = await self._get_transaction(state, transaction_id)
        return await state.store.list_refunds(transaction.transaction_id)

    async def refund_payment(
        self,
        transaction_id: str,
        amount: Any = None,
        reason: Optional[str] = None,
    ) -> Refund:
        """
        Refund a captured transaction in full or in part.

        Raises:
            NotFound: unknown transaction
            InvalidState: already fully refunded, or a refund is in progress
            InvalidArgument: amount exceeds what is left to refund
        """
        state = self._require_state()
        transaction = await self._get_transaction(state, transaction_id)
        if transaction.status is TransactionStatus.REFUNDED:
            raise InvalidState(f"Transaction {transaction.transaction_id} is already refunded")

        refund_amount: Decimal = (
            transaction.refundable_amount if amount is None else validate_amount(amount)
        )
        if refund_amount > transaction.refundable_amount:
            raise InvalidArgument(
                f"Refund amount {refund_amount} exceeds refundable "
                f"{transaction.refundable_amount}",
                field="amount",
            )

        lock_key = f"refund:{transaction.transaction_id}"
        if lock_key in state.in_flight:
            raise InvalidState(f"Refund already in progress for {transaction.transaction_id}")
        state.in_flight.add(lock_key)
        try:
            logger.info(
                f"Processing refund: {refund_amount} for transaction {transaction.transaction_id}"
            )
            refund_id = await state.gateway.refund(transaction, refund_amount, reason)

            transaction.refunded_amount += refund_amount
            transaction.status = (
                TransactionStatus.REFUNDED
                if transaction.refundable_amount <= 0
                else TransactionStatus.PARTIALLY_REFUNDED
            )
            await state.store.update_transaction(transaction)

            refund = Refund(
                refund_id=refund_id or generate_id("ref"),
                transaction_id=transaction.transaction_id,
                amount=refund_amount,
                currency=transaction.currency,
                reason=reason,
            )
            await state.store.add_refund(refund)
            return refund
        finally:
            state.in_flight.discard(lock_key)

    async def _get_transaction(self, state: _SessionState, transaction_id: Any) -> Transaction:
        transaction_id = validate_non_empty(transaction_id, "transactionId")
        transaction = await state.store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFound("transaction", transaction_id)
        return transaction
