"""
Checkout Step Endpoints.

Each completed checkout step is forwarded to the webhook URL configured for
it in the admin dashboard.
"""

from typing import Awaitable

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import ServiceContainer, get_services
from api.models import (
    AddressStepRequest,
    CheckoutStepResponse,
    CustomerStepRequest,
    EmailStepRequest,
    PaymentStepRequest,
)
from domain.errors import (
    ConfigurationError,
    StoreError,
    WebhookDeliveryError,
    WebhookRateLimitError,
)
from services.webhook_service import WebhookDispatcher

router = APIRouter()


def _dispatcher(services: ServiceContainer) -> WebhookDispatcher:
    if services.webhooks is None:
        raise HTTPException(status_code=503, detail="Checkout webhooks are not configured")
    return services.webhooks


async def _forward(webhook_type: str, call: Awaitable) -> CheckoutStepResponse:
    try:
        await call
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except WebhookRateLimitError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except WebhookDeliveryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=500, detail=f"Failed to load webhook settings: {str(e)}")
    return CheckoutStepResponse(success=True, webhook_type=webhook_type)


@router.post("/checkout/email", response_model=CheckoutStepResponse, summary="Submit Email Step")
async def submit_email(request: EmailStepRequest, services: ServiceContainer = Depends(get_services)):
    webhooks = _dispatcher(services)
    return await _forward("email", webhooks.send_email_webhook(request.email, request.product))


@router.post("/checkout/customer", response_model=CheckoutStepResponse, summary="Submit Customer Step")
async def submit_customer(request: CustomerStepRequest, services: ServiceContainer = Depends(get_services)):
    webhooks = _dispatcher(services)
    return await _forward(
        "customer",
        webhooks.send_customer_webhook(request.name, request.document, request.phone, request.product),
    )


@router.post("/checkout/address", response_model=CheckoutStepResponse, summary="Submit Address Step")
async def submit_address(request: AddressStepRequest, services: ServiceContainer = Depends(get_services)):
    webhooks = _dispatcher(services)
    address = request.model_dump(exclude={"product", "shipping_option"})
    return await _forward(
        "address",
        webhooks.send_address_webhook(address, request.product, shipping_option=request.shipping_option),
    )


@router.post("/checkout/payment", response_model=CheckoutStepResponse, summary="Submit Payment Step")
async def submit_payment(request: PaymentStepRequest, services: ServiceContainer = Depends(get_services)):
    """
    The forwarded payload includes `total_price`: the product price after the
    selected order bump / upsell percentage discounts.
    """
    webhooks = _dispatcher(services)
    return await _forward(
        "payment",
        webhooks.send_payment_webhook(
            request.method,
            request.product,
            installments=request.installments,
            order_bump=request.order_bump,
            upsell=request.upsell,
        ),
    )
