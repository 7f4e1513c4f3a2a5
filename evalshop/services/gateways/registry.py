"""Lookup of gateway adapters by name."""

from evalshop.core.config import Settings
from evalshop.services.gateways.base import GatewayAdapter
from evalshop.services.gateways.bridgerpay import BridgerPayGateway
from evalshop.services.gateways.confirmo import ConfirmoGateway
from evalshop.services.gateways.paytiko import PaytikoGateway


def build_gateways(settings: Settings) -> dict[str, GatewayAdapter]:
    """Create one adapter per supported gateway, keyed by name."""
    adapters: list[GatewayAdapter] = [
        PaytikoGateway(settings.paytiko_merchant_secret),
        ConfirmoGateway(settings.confirmo_callback_password),
        BridgerPayGateway(settings.bridgerpay_webhook_secret),
    ]
    return {adapter.name: adapter for adapter in adapters}
