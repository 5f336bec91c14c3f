"""Exception hierarchy for HyperPay checkout.

Every error raised by the session service inherits from HyperPayError, so a
transport adapter can turn any failure into a structured response:

    try:
        result = await service.process_payment(checkout_id, card)
    except HyperPayError as e:
        reply(e.to_dict())

All exceptions have:
- error_code: Machine-readable error code (e.g., "NOT_INITIALIZED")
- retryable: Whether a caller may retry with a new checkout
- message: Human-readable error message
- details: Optional additional context dictionary
"""
from __future__ import annotations

from typing import Any, Optional


class HyperPayError(Exception):
    """Base exception for all HyperPay checkout errors."""

    error_code: str = "HYPERPAY_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to the wire error format."""
        result: dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class NotInitialized(HyperPayError):
    """Payment-affecting call made before initialize."""

    error_code = "NOT_INITIALIZED"

    def __init__(self, message: str = "SDK not initialized") -> None:
        super().__init__(message)


class InvalidArgument(HyperPayError):
    """Missing or malformed required argument."""

    error_code = "INVALID_ARGUMENTS"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        self.field = field
        super().__init__(message, details=details)


class NotFound(HyperPayError):
    """Referenced checkout, token, transaction or challenge does not exist."""

    error_code = "NOT_FOUND"

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} '{resource_id}' not found"
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = resource_id
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message, details=details)


class InvalidState(HyperPayError):
    """Operation not allowed in the checkout's current state."""

    error_code = "INVALID_STATE"


class PaymentDeclined(HyperPayError):
    """Gateway or policy rejected the payment. Expected, not a bug."""

    error_code = "PAYMENT_FAILED"
    retryable = True


class PaymentCancelled(PaymentDeclined):
    """An open 3-D Secure challenge was aborted before completion."""

    error_code = "PAYMENT_CANCELLED"


class TransportFailure(HyperPayError):
    """Payment gateway could not be reached or answered garbage."""

    error_code = "TRANSPORT_FAILURE"
    retryable = True


class MethodNotImplemented(HyperPayError):
    """Dispatcher received a method name it does not know."""

    error_code = "NOT_IMPLEMENTED"

    def __init__(self, method: str) -> None:
        super().__init__(
            f"Method '{method}' is not implemented",
            details={"method": method},
        )
        self.method = method
