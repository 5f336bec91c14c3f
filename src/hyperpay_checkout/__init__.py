"""Checkout-session protocol and event model for the HyperPay mobile plugin."""

from .config import HyperPaySettings, load_settings
from .exceptions import (
    HyperPayError,
    NotInitialized,
    InvalidArgument,
    NotFound,
    InvalidState,
    PaymentDeclined,
    PaymentCancelled,
    TransportFailure,
    MethodNotImplemented,
)
from .models import (
    CardDetails,
    Checkout,
    CheckoutStatus,
    PaymentEvent,
    PaymentEventType,
    PaymentResult,
    Refund,
    Session,
    ThreeDSecureResult,
    Transaction,
    TransactionStatus,
)
from .policies import (
    ChallengePolicy,
    CardPrefixChallengePolicy,
    FixedChallengePolicy,
    SuccessPolicy,
    FixedSuccessPolicy,
    RandomSuccessPolicy,
)
from .events import EventChannel, QueueListener
from .challenges import CancellationToken, ChallengeCoordinator, ChallengeOutcome
from .gateways import PaymentGateway, SimulatedGateway, OppwaGateway, oppwa_gateway_factory
from .service import PaymentSessionService
from .dispatcher import MethodDispatcher
from .logging import LogLevel, mask_card_number, setup_logging

__version__ = "1.0.0"

__all__ = [
    "HyperPaySettings",
    "load_settings",
    "HyperPayError",
    "NotInitialized",
    "InvalidArgument",
    "NotFound",
    "InvalidState",
    "PaymentDeclined",
    "PaymentCancelled",
    "TransportFailure",
    "MethodNotImplemented",
    "CardDetails",
    "Checkout",
    "CheckoutStatus",
    "PaymentEvent",
    "PaymentEventType",
    "PaymentResult",
    "Refund",
    "Session",
    "ThreeDSecureResult",
    "Transaction",
    "TransactionStatus",
    "ChallengePolicy",
    "CardPrefixChallengePolicy",
    "FixedChallengePolicy",
    "SuccessPolicy",
    "FixedSuccessPolicy",
    "RandomSuccessPolicy",
    "EventChannel",
    "QueueListener",
    "CancellationToken",
    "ChallengeCoordinator",
    "ChallengeOutcome",
    "PaymentGateway",
    "SimulatedGateway",
    "OppwaGateway",
    "oppwa_gateway_factory",
    "PaymentSessionService",
    "MethodDispatcher",
    "LogLevel",
    "mask_card_number",
    "setup_logging",
]
