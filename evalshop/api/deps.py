"""FastAPI dependency injection functions.

Long-lived clients are created once in the application lifespan and kept
on ``app.state``; services are built per request around them.
"""

from typing import Annotated

import httpx
from fastapi import Depends, Request
from supabase import Client

from evalshop.core.config import Settings, get_settings
from evalshop.services.catalog_service import CatalogService
from evalshop.services.coupon_service import CouponService
from evalshop.services.pricing_service import PricingService
from evalshop.services.purchase_service import PurchaseService
from evalshop.services.reconciliation_service import ReconciliationService


def get_db_client(request: Request) -> Client:
    """Get the Supabase client created at startup."""
    return request.app.state.supabase


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get the pooled downstream HTTP client created at startup."""
    return request.app.state.http_client


AppSettings = Annotated[Settings, Depends(get_settings)]
DbClient = Annotated[Client, Depends(get_db_client)]


def get_catalog_service(db: DbClient) -> CatalogService:
    return CatalogService(db)


Catalog = Annotated[CatalogService, Depends(get_catalog_service)]


def get_coupon_service(db: DbClient, catalog: Catalog) -> CouponService:
    return CouponService(db, catalog)


Coupons = Annotated[CouponService, Depends(get_coupon_service)]


def get_pricing_service(catalog: Catalog, coupons: Coupons) -> PricingService:
    return PricingService(catalog, coupons)


Pricing = Annotated[PricingService, Depends(get_pricing_service)]


def get_purchase_service(
    db: DbClient,
    settings: AppSettings,
    catalog: Catalog,
    coupons: Coupons,
    pricing: Pricing,
) -> PurchaseService:
    return PurchaseService(db, settings, catalog=catalog, coupons=coupons, pricing=pricing)


Purchases = Annotated[PurchaseService, Depends(get_purchase_service)]


def get_reconciliation_service(
    request: Request,
    db: DbClient,
    settings: AppSettings,
    catalog: Catalog,
    purchases: Purchases,
) -> ReconciliationService:
    """Build the reconciliation service around the startup-registered gateways and dispatchers."""
    return ReconciliationService(
        db,
        settings,
        catalog=catalog,
        purchases=purchases,
        gateways=request.app.state.gateways,
        dispatchers=request.app.state.dispatchers,
    )


Reconciliation = Annotated[ReconciliationService, Depends(get_reconciliation_service)]
