"""Payment gateway implementations."""
from hyperpay_checkout.gateways.base import AuthorizationRequest, GatewayDecision, PaymentGateway
from hyperpay_checkout.gateways.oppwa import OppwaGateway, oppwa_gateway_factory
from hyperpay_checkout.gateways.simulated import SimulatedGateway

__all__ = [
    "AuthorizationRequest",
    "GatewayDecision",
    "PaymentGateway",
    "OppwaGateway",
    "oppwa_gateway_factory",
    "SimulatedGateway",
]
