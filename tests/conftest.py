"""
Pytest configuration and fixtures for hyperpay-checkout tests.
"""
from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
if str(package_src) not in sys.path:
    sys.path.insert(0, str(package_src))

from hyperpay_checkout import (  # noqa: E402
    CardDetails,
    FixedSuccessPolicy,
    HyperPaySettings,
    PaymentSessionService,
    QueueListener,
)

MERCHANT_ID = "8ac7a4c8_merchant"
ACCESS_TOKEN = "OGFjN2E0Yzg_test_access_token"


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def settings() -> HyperPaySettings:
    """Settings isolated from the environment and any .env file."""
    return HyperPaySettings(_env_file=None, challenge_timeout_seconds=5.0)


@pytest.fixture
def card() -> CardDetails:
    """Visa test card that is never challenged."""
    return CardDetails(
        holder_name="John Doe",
        card_number="4111111111111111",
        expiry_month="12",
        expiry_year="2030",
        cvv="123",
    )


@pytest.fixture
def challenge_card() -> CardDetails:
    """Visa test card selected for 3-D Secure by the default prefix policy."""
    return CardDetails(
        holder_name="Jane Roe",
        card_number="4000000000000002",
        expiry_month="01",
        expiry_year="2031",
        cvv="456",
    )


@pytest.fixture
def make_service(settings):
    """Factory for services with pinned decision policies."""

    def _make(approve: bool = True, **kwargs) -> PaymentSessionService:
        kwargs.setdefault("success_policy", FixedSuccessPolicy(approve))
        return PaymentSessionService(settings=settings, **kwargs)

    return _make


@pytest.fixture
async def service(make_service):
    """Initialized service that approves every payment."""
    svc = make_service(approve=True)
    await svc.initialize(MERCHANT_ID, ACCESS_TOKEN)
    yield svc
    await svc.dispose()


@pytest.fixture
def listener(service) -> QueueListener:
    """Queue listener attached to the service event stream."""
    queue_listener = QueueListener()
    service.attach_listener(queue_listener)
    return queue_listener


@pytest.fixture
async def checkout(service):
    """Pending 100.00 SAR checkout."""
    return await service.create_checkout(Decimal("100.00"), "SAR", "customer@example.com")

