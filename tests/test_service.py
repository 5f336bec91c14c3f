"""Tests for PaymentSessionService."""
import asyncio
import logging
from decimal import Decimal

import pytest

from hyperpay_checkout import (
    CancellationToken,
    ChallengeCoordinator,
    CheckoutStatus,
    FixedChallengePolicy,
    FixedSuccessPolicy,
    HyperPaySettings,
    InvalidArgument,
    InvalidState,
    NotFound,
    NotInitialized,
    PaymentCancelled,
    PaymentDeclined,
    PaymentEventType,
    PaymentSessionService,
    QueueListener,
    SimulatedGateway,
    TransactionStatus,
    TransportFailure,
)
from hyperpay_checkout.gateways.base import GatewayDecision, PaymentGateway
from hyperpay_checkout.logging import StructuredFormatter


def drain(listener: QueueListener) -> list:
    events = []
    while not listener.queue.empty():
        events.append(listener.queue.get_nowait())
    return events


class UnreachableGateway(PaymentGateway):
    """Gateway whose every call fails at the transport level."""

    @property
    def name(self) -> str:
        return "unreachable"

    async def authorize(self, request):
        raise TransportFailure("Payment gateway unreachable: connection refused")

    async def refund(self, transaction, amount, reason=None):
        raise TransportFailure("Payment gateway unreachable: connection refused")


class RecordingGateway(PaymentGateway):
    """Approves everything and remembers what it was asked."""

    def __init__(self):
        self.requests = []
        self.closed = False

    @property
    def name(self) -> str:
        return "recording"

    async def authorize(self, request):
        self.requests.append(request)
        return GatewayDecision(approved=True, transaction_id=f"txn_rec_{len(self.requests)}")

    async def refund(self, transaction, amount, reason=None):
        return "ref_rec"

    async def register(self, card):
        return "reg_8a8294174b7ecb28014b9699220015ca"

    async def close(self):
        self.closed = True


class TestSessionLifecycle:
    """initialize / isInitialized / dispose."""

    @pytest.mark.asyncio
    async def test_initialize_then_dispose(self, make_service):
        service = make_service()
        assert service.is_initialized() is False

        session = await service.initialize("M1", "TOK1", False)

        assert service.is_initialized() is True
        assert session.merchant_id == "M1"
        assert session.is_production is False
        assert "TOK1" not in repr(session)

        await service.dispose()
        assert service.is_initialized() is False

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, make_service):
        service = make_service()
        await service.dispose()
        await service.initialize("M1", "TOK1")
        await service.dispose()
        await service.dispose()
        assert service.is_initialized() is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "merchant_id,access_token,field",
        [
            ("", "TOK1", "merchantId"),
            ("   ", "TOK1", "merchantId"),
            (None, "TOK1", "merchantId"),
            ("M1", "", "accessToken"),
        ],
    )
    async def test_initialize_requires_credentials(self, make_service, merchant_id, access_token, field):
        service = make_service()
        with pytest.raises(InvalidArgument) as exc_info:
            await service.initialize(merchant_id, access_token)
        assert exc_info.value.field == field
        assert service.is_initialized() is False

    @pytest.mark.asyncio
    async def test_reinitialize_drops_previous_checkouts(self, service, checkout):
        await service.initialize("M2", "TOK2", True)

        assert service.session.merchant_id == "M2"
        with pytest.raises(NotFound):
            await service.get_payment_status(checkout.checkout_id)

    @pytest.mark.asyncio
    async def test_operations_fail_after_dispose(self, service, checkout, card):
        await service.dispose()

        with pytest.raises(NotInitialized):
            await service.get_payment_status(checkout.checkout_id)
        with pytest.raises(NotInitialized):
            await service.create_checkout("10", "USD", "a@b.com")

    def test_sdk_version_needs_no_session(self, make_service):
        assert make_service().get_sdk_version() == "1.0.0"

    def test_gateway_and_factory_are_exclusive(self, make_service):
        with pytest.raises(ValueError):
            make_service(gateway=RecordingGateway(), gateway_factory=lambda session: RecordingGateway())

    @pytest.mark.asyncio
    async def test_factory_gateway_closed_on_dispose(self, make_service):
        created = []

        def factory(session):
            gateway = RecordingGateway()
            created.append(gateway)
            return gateway

        service = make_service(gateway_factory=factory)
        await service.initialize("M1", "TOK1")
        await service.initialize("M1", "TOK1")
        await service.dispose()

        assert len(created) == 2
        assert all(gateway.closed for gateway in created)


class TestSetLogLevel:
    """setLogLevel adjusts the package logger only."""

    @pytest.fixture(autouse=True)
    def restore_level(self):
        package_logger = logging.getLogger("hyperpay_checkout")
        previous = package_logger.level
        yield
        package_logger.setLevel(previous)

    @pytest.mark.parametrize(
        "level,expected",
        [("DEBUG", logging.DEBUG), ("info", logging.INFO), ("Warn", logging.WARNING), ("ERROR", logging.ERROR)],
    )
    def test_accepts_known_levels(self, make_service, level, expected):
        make_service().set_log_level(level)
        assert logging.getLogger("hyperpay_checkout").level == expected

    @pytest.mark.parametrize("level", ["VERBOSE", "", None, 10])
    def test_rejects_unknown_levels(self, make_service, level):
        with pytest.raises(InvalidArgument):
            make_service().set_log_level(level)


class TestLoggingSettings:
    """Constructor applies log_level and, on request, log_json."""

    @pytest.fixture(autouse=True)
    def restore_logger(self):
        package_logger = logging.getLogger("hyperpay_checkout")
        handlers, level = list(package_logger.handlers), package_logger.level
        yield
        package_logger.handlers = handlers
        package_logger.setLevel(level)

    def test_log_level_setting_applied(self):
        PaymentSessionService(settings=HyperPaySettings(_env_file=None, log_level="DEBUG"))
        assert logging.getLogger("hyperpay_checkout").level == logging.DEBUG

    def test_warn_setting_applied(self):
        PaymentSessionService(settings=HyperPaySettings(_env_file=None, log_level="warning"))
        assert logging.getLogger("hyperpay_checkout").level == logging.WARNING

    def test_no_handler_unless_requested(self):
        package_logger = logging.getLogger("hyperpay_checkout")
        before = [h for h in package_logger.handlers if getattr(h, "_hyperpay_handler", False)]
        PaymentSessionService(settings=HyperPaySettings(_env_file=None, log_json=True))
        after = [h for h in package_logger.handlers if getattr(h, "_hyperpay_handler", False)]
        assert after == before

    def test_configure_logging_uses_json_setting(self):
        settings = HyperPaySettings(_env_file=None, log_level="ERROR", log_json=True)
        PaymentSessionService(settings=settings, configure_logging=True)
        PaymentSessionService(settings=settings, configure_logging=True)

        package_logger = logging.getLogger("hyperpay_checkout")
        ours = [h for h in package_logger.handlers if getattr(h, "_hyperpay_handler", False)]
        assert len(ours) == 1
        assert isinstance(ours[0].formatter, StructuredFormatter)
        assert package_logger.level == logging.ERROR


class TestCreateCheckout:

    @pytest.mark.asyncio
    async def test_new_checkout_is_pending(self, service):
        checkout = await service.create_checkout(100.0, "usd", "A@B.com")

        assert checkout.checkout_id.startswith("chk_")
        assert checkout.status is CheckoutStatus.PENDING
        assert checkout.amount == Decimal("100")
        assert checkout.currency == "USD"
        assert checkout.customer_email == "a@b.com"

    @pytest.mark.asyncio
    async def test_checkout_ids_are_unique(self, service):
        ids = set()
        for _ in range(50):
            checkout = await service.create_checkout("1.50", "EUR", "a@b.com")
            ids.add(checkout.checkout_id)
        assert len(ids) == 50

    @pytest.mark.asyncio
    async def test_uninitialized(self, make_service):
        with pytest.raises(NotInitialized):
            await make_service().create_checkout(100, "USD", "a@b.com")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "amount,currency,email,field",
        [
            (0, "USD", "a@b.com", "amount"),
            (-5, "USD", "a@b.com", "amount"),
            ("abc", "USD", "a@b.com", "amount"),
            (None, "USD", "a@b.com", "amount"),
            (10, "US", "a@b.com", "currency"),
            (10, "XYZ", "a@b.com", "currency"),
            (10, "USD", "not-an-email", "customerEmail"),
            (10, "USD", "", "customerEmail"),
        ],
    )
    async def test_rejects_invalid_input(self, service, amount, currency, email, field):
        with pytest.raises(InvalidArgument) as exc_info:
            await service.create_checkout(amount, currency, email)
        assert exc_info.value.field == field


class TestProcessPayment:

    @pytest.mark.asyncio
    async def test_approved_payment_completes_checkout(self, make_service, card):
        service = make_service(approve=True)
        await service.initialize("M1", "TOK1", False)
        listener = QueueListener()
        service.attach_listener(listener)
        checkout = await service.create_checkout(100.0, "USD", "a@b.com")

        result = await service.process_payment(checkout.checkout_id, card, enable_3d_secure=False)

        assert result.status is CheckoutStatus.COMPLETED
        assert result.transaction_id.startswith("txn_")
        assert result.card_number == "************1111"
        assert result.brand == "VISA"
        assert result.three_d_secure_result is None
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.COMPLETED

        events = drain(listener)
        assert [e.type for e in events] == [PaymentEventType.PAYMENT_SUCCESS]
        assert events[0].checkout_id == checkout.checkout_id
        assert events[0].data["cardNumber"] == "************1111"
        assert "4111111111111111" not in str(events[0].to_dict())
        await service.dispose()

    @pytest.mark.asyncio
    async def test_declined_payment_fails_checkout(self, make_service, card):
        service = make_service(approve=False)
        await service.initialize("M1", "TOK1", False)
        listener = QueueListener()
        service.attach_listener(listener)
        checkout = await service.create_checkout(100.0, "USD", "a@b.com")

        with pytest.raises(PaymentDeclined) as exc_info:
            await service.process_payment(checkout.checkout_id, card, enable_3d_secure=False)

        assert exc_info.value.error_code == "PAYMENT_FAILED"
        assert exc_info.value.retryable is True
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.FAILED

        with pytest.raises(InvalidState):
            await service.process_payment(checkout.checkout_id, card, enable_3d_secure=False)

        events = drain(listener)
        assert [e.type for e in events] == [PaymentEventType.PAYMENT_FAILED]
        assert events[0].data["code"] == "PAYMENT_FAILED"
        await service.dispose()

    @pytest.mark.asyncio
    async def test_completed_checkout_rejects_further_payments(self, service, checkout, card):
        await service.process_payment(checkout.checkout_id, card)

        for _ in range(3):
            with pytest.raises(InvalidState):
                await service.process_payment(checkout.checkout_id, card)
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_uninitialized_emits_nothing(self, make_service, card):
        service = make_service()
        listener = QueueListener()
        service.attach_listener(listener)

        with pytest.raises(NotInitialized):
            await service.process_payment("chk_missing", card)

        assert listener.queue.empty()

    @pytest.mark.asyncio
    async def test_unknown_checkout(self, service, card):
        with pytest.raises(NotFound):
            await service.process_payment("chk_does_not_exist", card)

    @pytest.mark.asyncio
    async def test_invalid_card_leaves_checkout_pending(self, service, listener, checkout, card):
        card.card_number = "4111111111111112"

        with pytest.raises(InvalidArgument) as exc_info:
            await service.process_payment(checkout.checkout_id, card)

        assert exc_info.value.field == "cardNumber"
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.PENDING
        assert listener.queue.empty()

    @pytest.mark.asyncio
    async def test_transport_failure_fails_checkout(self, make_service, card):
        service = make_service(gateway=UnreachableGateway())
        await service.initialize("M1", "TOK1")
        listener = QueueListener()
        service.attach_listener(listener)
        checkout = await service.create_checkout(25, "SAR", "a@b.com")

        with pytest.raises(TransportFailure):
            await service.process_payment(checkout.checkout_id, card)

        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.FAILED
        events = drain(listener)
        assert [e.type for e in events] == [PaymentEventType.PAYMENT_FAILED]
        assert events[0].data["code"] == "TRANSPORT_FAILURE"
        await service.dispose()

    @pytest.mark.asyncio
    async def test_concurrent_payment_on_same_checkout_rejected(self, make_service, card):
        gateway = SimulatedGateway(FixedSuccessPolicy(True), latency_seconds=0.05)
        service = make_service(gateway=gateway)
        await service.initialize("M1", "TOK1")
        checkout = await service.create_checkout(10, "USD", "a@b.com")

        first, second = await asyncio.gather(
            service.process_payment(checkout.checkout_id, card),
            service.process_payment(checkout.checkout_id, card),
            return_exceptions=True,
        )

        assert first.status is CheckoutStatus.COMPLETED
        assert isinstance(second, InvalidState)
        await service.dispose()

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_reach_caller(self, service, checkout, card):
        def broken_listener(event):
            raise RuntimeError("host channel closed")

        service.attach_listener(broken_listener)
        result = await service.process_payment(checkout.checkout_id, card)

        assert result.status is CheckoutStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_last_listener_wins(self, service, checkout, card):
        first, second = QueueListener(), QueueListener()
        service.attach_listener(first)
        service.attach_listener(second)

        await service.process_payment(checkout.checkout_id, card)

        assert first.queue.empty()
        assert len(drain(second)) == 1

    @pytest.mark.asyncio
    async def test_with_ui_behaves_like_process_payment(self, service, listener, checkout, card):
        result = await service.process_payment_with_ui(checkout.checkout_id, card)

        assert result.status is CheckoutStatus.COMPLETED
        assert [e.type for e in drain(listener)] == [PaymentEventType.PAYMENT_SUCCESS]


class TestThreeDSecure:

    @pytest.mark.asyncio
    async def test_challenge_then_success(self, service, listener, checkout, challenge_card):
        task = asyncio.create_task(service.process_payment(checkout.checkout_id, challenge_card))

        challenge = await listener.get(timeout=1)
        assert challenge.type is PaymentEventType.CHALLENGE_REQUIRED
        assert challenge.checkout_id == checkout.checkout_id
        assert set(challenge.data) == {"acsUrl", "paReq", "md"}
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.CHALLENGE_REQUIRED

        service.complete_challenge(checkout.checkout_id, eci="02", cavv="AAABBBCCC")
        result = await asyncio.wait_for(task, timeout=1)

        assert result.status is CheckoutStatus.COMPLETED
        assert result.three_d_secure_result.eci == "02"
        assert result.three_d_secure_result.cavv == "AAABBBCCC"

        terminal = await listener.get(timeout=1)
        assert terminal.type is PaymentEventType.PAYMENT_SUCCESS
        assert terminal.checkout_id == checkout.checkout_id
        assert terminal.data["threeDSecureResult"]["eci"] == "02"
        assert listener.queue.empty()

    @pytest.mark.asyncio
    async def test_challenge_skipped_when_disabled(self, service, listener, checkout, challenge_card):
        result = await service.process_payment(
            checkout.checkout_id, challenge_card, enable_3d_secure=False
        )

        assert result.three_d_secure_result is None
        assert [e.type for e in drain(listener)] == [PaymentEventType.PAYMENT_SUCCESS]

    @pytest.mark.asyncio
    async def test_failed_authentication_declines(self, service, listener, checkout, challenge_card):
        task = asyncio.create_task(service.process_payment(checkout.checkout_id, challenge_card))
        await listener.get(timeout=1)

        service.complete_challenge(checkout.checkout_id, authenticated=False)

        with pytest.raises(PaymentDeclined):
            await asyncio.wait_for(task, timeout=1)
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.FAILED
        terminal = await listener.get(timeout=1)
        assert terminal.type is PaymentEventType.PAYMENT_FAILED

    @pytest.mark.asyncio
    async def test_cancel_challenge(self, service, listener, checkout, challenge_card):
        task = asyncio.create_task(service.process_payment(checkout.checkout_id, challenge_card))
        await listener.get(timeout=1)

        service.cancel_challenge(checkout.checkout_id)

        with pytest.raises(PaymentCancelled):
            await asyncio.wait_for(task, timeout=1)
        terminal = await listener.get(timeout=1)
        assert terminal.type is PaymentEventType.PAYMENT_FAILED
        assert terminal.data["code"] == "PAYMENT_CANCELLED"

    @pytest.mark.asyncio
    async def test_cancellation_token(self, service, listener, checkout, challenge_card):
        token = CancellationToken()
        task = asyncio.create_task(
            service.process_payment(checkout.checkout_id, challenge_card, cancel_token=token)
        )
        await listener.get(timeout=1)

        token.cancel("User closed the payment sheet")

        with pytest.raises(PaymentCancelled) as exc_info:
            await asyncio.wait_for(task, timeout=1)
        assert exc_info.value.message == "User closed the payment sheet"
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.FAILED

    @pytest.mark.asyncio
    async def test_challenge_timeout_declines(self, make_service, challenge_card):
        service = make_service(challenges=ChallengeCoordinator(timeout_seconds=0.05))
        await service.initialize("M1", "TOK1")
        checkout = await service.create_checkout(10, "USD", "a@b.com")

        with pytest.raises(PaymentDeclined) as exc_info:
            await service.process_payment(checkout.checkout_id, challenge_card)

        assert not isinstance(exc_info.value, PaymentCancelled)
        assert exc_info.value.details["reason"] == "challenge_timeout"
        await service.dispose()

    @pytest.mark.asyncio
    async def test_auto_complete_fixture(self, make_service, challenge_card):
        service = make_service(challenges=ChallengeCoordinator(auto_complete_after=0.01))
        await service.initialize("M1", "TOK1")
        listener = QueueListener()
        service.attach_listener(listener)
        checkout = await service.create_checkout(10, "USD", "a@b.com")

        result = await asyncio.wait_for(
            service.process_payment(checkout.checkout_id, challenge_card), timeout=1
        )

        assert result.three_d_secure_result is not None
        assert result.three_d_secure_result.eci == "05"
        assert [e.type for e in drain(listener)] == [
            PaymentEventType.CHALLENGE_REQUIRED,
            PaymentEventType.PAYMENT_SUCCESS,
        ]
        await service.dispose()

    @pytest.mark.asyncio
    async def test_dispose_cancels_open_challenge(self, service, listener, checkout, challenge_card):
        task = asyncio.create_task(service.process_payment(checkout.checkout_id, challenge_card))
        await listener.get(timeout=1)

        await service.dispose()

        with pytest.raises(PaymentCancelled):
            await asyncio.wait_for(task, timeout=1)
        assert listener.queue.empty()
        assert service.challenges.open_count == 0

    @pytest.mark.asyncio
    async def test_complete_without_open_challenge(self, service, checkout):
        with pytest.raises(NotFound):
            service.complete_challenge(checkout.checkout_id)

    def test_complete_challenge_requires_session(self, make_service):
        with pytest.raises(NotInitialized):
            make_service().complete_challenge("chk_1")

    @pytest.mark.asyncio
    async def test_fixed_policy_challenges_any_card(self, make_service, card):
        service = make_service(
            challenge_policy=FixedChallengePolicy(True),
            challenges=ChallengeCoordinator(auto_complete_after=0.01),
        )
        await service.initialize("M1", "TOK1")
        checkout = await service.create_checkout(10, "USD", "a@b.com")

        result = await asyncio.wait_for(service.process_payment(checkout.checkout_id, card), timeout=1)

        assert result.three_d_secure_result is not None
        await service.dispose()


class TestTokenPayments:

    @pytest.mark.asyncio
    async def test_tokenize_and_pay(self, make_service, card):
        gateway = RecordingGateway()
        service = make_service(gateway=gateway)
        await service.initialize("M1", "TOK1")
        listener = QueueListener()
        service.attach_listener(listener)
        checkout = await service.create_checkout("100.00", "SAR", "a@b.com")

        record = await service.tokenize_payment_method(checkout.checkout_id, card)
        assert record.token.startswith("tok_")
        assert "4111111111111111" not in repr(record)
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.PENDING

        result = await service.process_payment_with_token(
            checkout.checkout_id, record.token, 100, "sar"
        )

        assert result.card_number == "**** **** **** ****"
        assert result.brand == "TOKENIZED"
        assert result.holder_name == "Tokenized Payment"
        assert result.message == "Payment processed successfully with token"
        assert gateway.requests[-1].registration_id == "reg_8a8294174b7ecb28014b9699220015ca"
        assert gateway.requests[-1].card is None
        assert [e.type for e in drain(listener)] == [PaymentEventType.PAYMENT_SUCCESS]
        await service.dispose()

    @pytest.mark.asyncio
    async def test_token_payment_skips_challenge(self, service, listener, checkout, challenge_card):
        record = await service.tokenize_payment_method(checkout.checkout_id, challenge_card)

        await service.process_payment_with_token(checkout.checkout_id, record.token, "100.00", "SAR")

        assert [e.type for e in drain(listener)] == [PaymentEventType.PAYMENT_SUCCESS]

    @pytest.mark.asyncio
    async def test_unknown_token(self, service, checkout):
        with pytest.raises(NotFound):
            await service.process_payment_with_token(checkout.checkout_id, "tok_unknown", "100.00", "SAR")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount,currency", [("99.99", "SAR"), ("100.00", "USD")])
    async def test_amount_and_currency_must_match(self, service, checkout, card, amount, currency):
        record = await service.tokenize_payment_method(checkout.checkout_id, card)

        with pytest.raises(InvalidArgument):
            await service.process_payment_with_token(checkout.checkout_id, record.token, amount, currency)
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.PENDING

    @pytest.mark.asyncio
    async def test_declined_token_payment(self, make_service, card):
        service = make_service(approve=False)
        await service.initialize("M1", "TOK1")
        checkout = await service.create_checkout(5, "USD", "a@b.com")
        record = await service.tokenize_payment_method(checkout.checkout_id, card)

        with pytest.raises(PaymentDeclined):
            await service.process_payment_with_token(checkout.checkout_id, record.token, 5, "USD")
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.FAILED
        await service.dispose()

    @pytest.mark.asyncio
    async def test_tokens_do_not_survive_reinitialize(self, service, checkout, card):
        record = await service.tokenize_payment_method(checkout.checkout_id, card)
        await service.initialize("M1", "TOK1")
        fresh = await service.create_checkout("100.00", "SAR", "a@b.com")

        with pytest.raises(NotFound):
            await service.process_payment_with_token(fresh.checkout_id, record.token, "100.00", "SAR")

    @pytest.mark.asyncio
    async def test_tokenize_requires_known_checkout(self, service, card):
        with pytest.raises(NotFound):
            await service.tokenize_payment_method("chk_missing", card)


class TestPaymentAttempts:

    @pytest.mark.asyncio
    async def test_declined_attempt_recorded(self, make_service, card):
        service = make_service(approve=False)
        await service.initialize("M1", "TOK1")
        checkout = await service.create_checkout(10, "USD", "a@b.com")
        with pytest.raises(PaymentDeclined):
            await service.process_payment(checkout.checkout_id, card, enable_3d_secure=False)

        attempts = await service.list_payment_attempts(checkout.checkout_id)

        assert len(attempts) == 1
        assert attempts[0].succeeded is False
        assert attempts[0].transaction_id is None
        assert "4111111111111111" not in repr(attempts[0])
        await service.dispose()

    @pytest.mark.asyncio
    async def test_challenged_attempt_records_authentication(self, make_service, challenge_card):
        service = make_service(challenges=ChallengeCoordinator(auto_complete_after=0.01))
        await service.initialize("M1", "TOK1")
        checkout = await service.create_checkout(10, "USD", "a@b.com")
        result = await asyncio.wait_for(
            service.process_payment(checkout.checkout_id, challenge_card), timeout=1
        )

        attempts = await service.list_payment_attempts(checkout.checkout_id)

        assert [a.succeeded for a in attempts] == [True]
        assert attempts[0].transaction_id == result.transaction_id
        assert attempts[0].three_d_secure_result.eci == "05"
        await service.dispose()

    @pytest.mark.asyncio
    async def test_token_attempt_references_token(self, service, checkout, card):
        record = await service.tokenize_payment_method(checkout.checkout_id, card)
        await service.process_payment_with_token(checkout.checkout_id, record.token, "100.00", "SAR")

        attempts = await service.list_payment_attempts(checkout.checkout_id)

        assert [a.card_reference for a in attempts] == [record.token]

    @pytest.mark.asyncio
    async def test_pending_checkout_has_no_attempts(self, service, checkout):
        assert await service.list_payment_attempts(checkout.checkout_id) == []

    @pytest.mark.asyncio
    async def test_unknown_checkout(self, service):
        with pytest.raises(NotFound):
            await service.list_payment_attempts("chk_missing")


class TestTransactions:

    @pytest.mark.asyncio
    async def test_verify_payment(self, service, checkout, card):
        result = await service.process_payment(checkout.checkout_id, card)

        transaction = await service.verify_payment(result.transaction_id)

        assert transaction.checkout_id == checkout.checkout_id
        assert transaction.status is TransactionStatus.COMPLETED
        assert transaction.amount == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_verify_unknown_transaction(self, service):
        with pytest.raises(NotFound):
            await service.verify_payment("txn_missing")

    @pytest.mark.asyncio
    async def test_history_newest_first(self, service, card):
        transaction_ids = []
        for amount in ("10", "20", "30"):
            checkout = await service.create_checkout(amount, "USD", "a@b.com")
            result = await service.process_payment(checkout.checkout_id, card)
            transaction_ids.append(result.transaction_id)

        history = await service.get_transaction_history()
        assert [t.transaction_id for t in history] == list(reversed(transaction_ids))

        page = await service.get_transaction_history(limit=1, offset=1)
        assert [t.transaction_id for t in page] == [transaction_ids[1]]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit,offset", [(0, 0), (-1, 0), (10, -1)])
    async def test_history_rejects_bad_paging(self, service, limit, offset):
        with pytest.raises(InvalidArgument):
            await service.get_transaction_history(limit=limit, offset=offset)

    @pytest.mark.asyncio
    async def test_partial_then_full_refund(self, service, checkout, card):
        result = await service.process_payment(checkout.checkout_id, card)

        partial = await service.refund_payment(result.transaction_id, "40.00", reason="damaged item")
        assert partial.amount == Decimal("40.00")
        transaction = await service.verify_payment(result.transaction_id)
        assert transaction.status is TransactionStatus.PARTIALLY_REFUNDED

        rest = await service.refund_payment(result.transaction_id)
        assert rest.amount == Decimal("60.00")
        transaction = await service.verify_payment(result.transaction_id)
        assert transaction.status is TransactionStatus.REFUNDED

        with pytest.raises(InvalidState):
            await service.refund_payment(result.transaction_id)
        assert await service.get_payment_status(checkout.checkout_id) is CheckoutStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_list_refunds(self, service, checkout, card):
        result = await service.process_payment(checkout.checkout_id, card)
        assert await service.list_refunds(result.transaction_id) == []

        first = await service.refund_payment(result.transaction_id, "30.00")
        second = await service.refund_payment(result.transaction_id, "20.00", reason="late")

        refunds = await service.list_refunds(result.transaction_id)
        assert [r.refund_id for r in refunds] == [first.refund_id, second.refund_id]
        assert [r.amount for r in refunds] == [Decimal("30.00"), Decimal("20.00")]

    @pytest.mark.asyncio
    async def test_list_refunds_unknown_transaction(self, service):
        with pytest.raises(NotFound):
            await service.list_refunds("txn_missing")

    @pytest.mark.asyncio
    async def test_list_refunds_requires_session(self, make_service):
        with pytest.raises(NotInitialized):
            await make_service().list_refunds("txn_1")

    @pytest.mark.asyncio
    async def test_refund_cannot_exceed_amount(self, service, checkout, card):
        result = await service.process_payment(checkout.checkout_id, card)

        with pytest.raises(InvalidArgument):
            await service.refund_payment(result.transaction_id, "100.01")

    @pytest.mark.asyncio
    async def test_refund_unknown_transaction(self, service):
        with pytest.raises(NotFound):
            await service.refund_payment("txn_missing")
