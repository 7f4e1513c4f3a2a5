"""Payment gateway callback routes."""

import logging

from fastapi import APIRouter, Request, status

from evalshop.api.deps import Reconciliation
from evalshop.schemas.webhook import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/{gateway}",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Handle payment gateway callbacks",
    description="Receives a gateway status notification. Requires a valid signature.",
    responses={
        400: {"description": "Body cannot be decoded"},
        401: {"description": "Invalid signature"},
        404: {"description": "Unknown gateway"},
    },
)
async def gateway_webhook(gateway: str, request: Request, reconciliation: Reconciliation) -> WebhookAck:
    """Handle a gateway callback.

    The raw body is passed through untouched because some gateways sign
    the exact bytes they sent.

    Args:
        gateway: Gateway name from the URL.
        request: FastAPI request for the raw body and headers.
        reconciliation: Reconciliation service.

    Returns:
        WebhookAck: ``{"status": "received"}`` once processed.
    """
    payload = await request.body()
    logger.debug("Received %s callback (%d bytes)", gateway, len(payload))
    return await reconciliation.handle(gateway, payload, request.headers)
