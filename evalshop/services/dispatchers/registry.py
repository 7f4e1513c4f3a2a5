"""Construction of the side-effect dispatchers run after settlement."""

import httpx

from evalshop.core.config import Settings
from evalshop.services.dispatchers.affiliate_ledger import AffiliateLedgerDispatcher
from evalshop.services.dispatchers.base import SideEffectDispatcher
from evalshop.services.dispatchers.commerce_mirror import CommerceMirrorDispatcher
from evalshop.services.dispatchers.hyros import HyrosDispatcher
from evalshop.services.dispatchers.klaviyo import KlaviyoDispatcher


def build_dispatchers(http: httpx.AsyncClient, settings: Settings) -> list[SideEffectDispatcher]:
    """Create every dispatcher sharing one HTTP client."""
    return [
        CommerceMirrorDispatcher(http, settings),
        AffiliateLedgerDispatcher(http, settings),
        KlaviyoDispatcher(http, settings),
        HyrosDispatcher(http, settings),
    ]
