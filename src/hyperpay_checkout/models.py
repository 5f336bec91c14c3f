"""Checkout session data models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from hyperpay_checkout.logging import mask_card_number

TOKENIZED_BRAND = "TOKENIZED"
TOKENIZED_HOLDER_NAME = "Tokenized Payment"
TOKENIZED_CARD_NUMBER = "**** **** **** ****"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def generate_id(prefix: str) -> str:
    """Unpredictable, collision-free identifier such as ``chk_<hex>``."""
    return f"{prefix}_{uuid.uuid4().hex}"


class CheckoutStatus(str, Enum):
    """Checkout lifecycle states."""
    PENDING = "pending"
    CHALLENGE_REQUIRED = "challenge_required"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CheckoutStatus.COMPLETED, CheckoutStatus.FAILED)


# Allowed transitions; terminal states have none.
CHECKOUT_TRANSITIONS: Dict[CheckoutStatus, frozenset] = {
    CheckoutStatus.PENDING: frozenset({
        CheckoutStatus.CHALLENGE_REQUIRED,
        CheckoutStatus.COMPLETED,
        CheckoutStatus.FAILED,
    }),
    CheckoutStatus.CHALLENGE_REQUIRED: frozenset({
        CheckoutStatus.COMPLETED,
        CheckoutStatus.FAILED,
    }),
    CheckoutStatus.COMPLETED: frozenset(),
    CheckoutStatus.FAILED: frozenset(),
}


class PaymentEventType(str, Enum):
    """Event types pushed to the UI layer."""
    CHALLENGE_REQUIRED = "CHALLENGE_REQUIRED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"


class CardBrand(str, Enum):
    VISA = "VISA"
    MASTER = "MASTER"
    AMEX = "AMEX"
    MADA = "MADA"
    UNKNOWN = "UNKNOWN"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


@dataclass
class Session:
    """Active merchant session created by initialize."""
    merchant_id: str
    access_token: str = field(repr=False)
    is_production: bool = False
    brand: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    initialized: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Checkout:
    """A single tracked payment context, identified by checkout_id."""
    amount: Decimal
    currency: str
    customer_email: str
    checkout_id: str = field(default_factory=lambda: generate_id("chk"))
    status: CheckoutStatus = CheckoutStatus.PENDING
    three_d_secure_context: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def transition(self, new_status: CheckoutStatus) -> None:
        """Move to new_status; raises ValueError on an illegal transition."""
        if new_status not in CHECKOUT_TRANSITIONS[self.status]:
            raise ValueError(
                f"Checkout {self.checkout_id} cannot move from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.updated_at = utcnow()


@dataclass
class CardDetails:
    """Raw card data. Lives only for the duration of one operation."""
    holder_name: str
    card_number: str = field(repr=False)
    expiry_month: str
    expiry_year: str
    cvv: str = field(repr=False)
    brand: Optional[str] = None

    @property
    def masked_number(self) -> str:
        return mask_card_number(self.card_number)

    @property
    def last4(self) -> str:
        return self.card_number[-4:]

    def __repr__(self) -> str:
        return (
            f"CardDetails(holder_name={self.holder_name!r}, "
            f"card_number={self.masked_number!r}, brand={self.brand!r})"
        )


@dataclass(frozen=True)
class ThreeDSecureResult:
    """Issuer authentication artifacts returned after a challenge."""
    authentication_value: str
    eci: str
    cavv: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authenticationValue": self.authentication_value,
            "eci": self.eci,
            "cavv": self.cavv,
        }


@dataclass(frozen=True)
class ChallengeParameters:
    """Parameters the host needs to present a 3-D Secure challenge."""
    acs_url: str
    pa_req: str
    md: str

    def to_dict(self) -> Dict[str, Any]:
        return {"acsUrl": self.acs_url, "paReq": self.pa_req, "md": self.md}


@dataclass(frozen=True)
class PaymentAttempt:
    """One finalized attempt to pay a checkout. Never mutated."""
    checkout_id: str
    amount: Decimal
    currency: str
    card_reference: str  # card fingerprint or token, never the PAN
    brand: Optional[str] = None
    transaction_id: Optional[str] = None
    three_d_secure_result: Optional[ThreeDSecureResult] = None
    succeeded: bool = False
    attempt_id: str = field(default_factory=lambda: generate_id("att"))
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class PaymentResult:
    """Successful payment outcome as returned to the host."""
    checkout_id: str
    transaction_id: str
    amount: Decimal
    currency: str
    brand: Optional[str]
    holder_name: str
    card_number: str  # always masked
    status: CheckoutStatus = CheckoutStatus.COMPLETED
    message: str = "Payment processed successfully"
    three_d_secure_result: Optional[ThreeDSecureResult] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "checkoutId": self.checkout_id,
            "transactionId": self.transaction_id,
            "status": self.status.value,
            "amount": float(self.amount),
            "currency": self.currency,
            "brand": self.brand,
            "holderName": self.holder_name,
            "cardNumber": self.card_number,
            "message": self.message,
            "timestamp": epoch_millis(self.timestamp),
        }
        if self.three_d_secure_result is not None:
            data["threeDSecureResult"] = self.three_d_secure_result.to_dict()
        return data


@dataclass(frozen=True)
class PaymentEvent:
    """Record pushed on the event stream. Emitted, never stored."""
    type: PaymentEventType
    checkout_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "checkoutId": self.checkout_id,
            "data": self.data,
            "timestamp": epoch_millis(self.timestamp),
        }


@dataclass(frozen=True)
class TokenRecord:
    """Vault entry behind an opaque payment token. Holds no PAN."""
    token: str
    checkout_id: str
    fingerprint: str
    brand: Optional[str]
    last4: str
    holder_name: str
    gateway_reference: Optional[str] = field(default=None, repr=False)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Transaction:
    """Successful payment recorded for the lifetime of the session."""
    transaction_id: str
    checkout_id: str
    amount: Decimal
    currency: str
    customer_email: str
    status: TransactionStatus = TransactionStatus.COMPLETED
    refunded_amount: Decimal = Decimal("0")
    created_at: datetime = field(default_factory=utcnow)

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "checkoutId": self.checkout_id,
            "amount": float(self.amount),
            "currency": self.currency,
            "status": self.status.value,
            "refundedAmount": float(self.refunded_amount),
            "customerEmail": self.customer_email,
            "timestamp": epoch_millis(self.created_at),
        }


@dataclass(frozen=True)
class Refund:
    """Refund issued against a transaction."""
    refund_id: str
    transaction_id: str
    amount: Decimal
    currency: str
    reason: Optional[str] = None
    status: str = "completed"
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "refundId": self.refund_id,
            "transactionId": self.transaction_id,
            "amount": float(self.amount),
            "currency": self.currency,
            "reason": self.reason,
            "status": self.status,
            "timestamp": epoch_millis(self.created_at),
        }
