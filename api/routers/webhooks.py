"""
Inbound Webhook Endpoints.

Receives checkout webhooks and records them in `webhook_logs`.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from api.dependencies import ServiceContainer, get_services
from api.models import WebhookReceiptResponse
from domain.errors import StoreError
from services.webhook_service import WEBHOOK_TYPES

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/webhooks/{webhook_type}",
    response_model=WebhookReceiptResponse,
    summary="Receive Checkout Webhook",
)
async def receive_webhook(
    webhook_type: str,
    payload: Dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
):
    """
    Log an inbound webhook.

    The payload is logged before the type is checked, so rejected calls are
    still visible in the webhook log.

    **Responses:**
    - 200 `{"success": true}` for email, customer, address and payment
    - 400 for any other webhook type
    - 500 if the log row cannot be written
    """
    logger.info(f"[Webhook {webhook_type}] Received payload", extra={"webhook_type": webhook_type})

    try:
        await services.webhook_log_repository.log_webhook(webhook_type, payload)
    except StoreError as e:
        logger.error(f"[Webhook {webhook_type}] Error logging webhook: {e}")
        raise HTTPException(status_code=500, detail="Error processing webhook")

    if webhook_type not in WEBHOOK_TYPES:
        raise HTTPException(status_code=400, detail="Invalid webhook type")

    logger.info(f"[Webhook {webhook_type}] Processed")
    return WebhookReceiptResponse(success=True)
