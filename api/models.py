"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from domain.attribution import AttributionContext
from domain.event import DEFAULT_CURRENCY, EventName, EventStatus, TrackedEvent


# ============================================================================
# Attribution Models
# ============================================================================

class AttributionCaptureRequest(BaseModel):
    """Query string of a page load to merge into a session's attribution."""
    session_id: str = Field(..., min_length=1, description="Client session identifier")
    query_string: str = Field("", description="Raw page query string, with or without '?'")

    class Config:
        json_schema_extra = {
            "example": {
                "session_id": "c0a8012e-7d4b-4f0e-9d61-3f1f2f6f9b1a",
                "query_string": "?utm_source=fb&utm_campaign=sale&fbclid=IwAR0abc",
            }
        }


class AttributionResponse(BaseModel):
    """Stored attribution context for a session."""
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None
    utm_token: Optional[str] = None
    fbclid: Optional[str] = None
    gclid: Optional[str] = None
    ttclid: Optional[str] = None

    @classmethod
    def from_context(cls, context: AttributionContext) -> "AttributionResponse":
        return cls(**context.to_storage_dict())


# ============================================================================
# Event Models
# ============================================================================

class TrackEventRequest(BaseModel):
    """Request to track a conversion event."""
    event_name: EventName
    session_id: Optional[str] = Field(None, description="Session whose attribution is attached")
    value: Optional[Decimal] = Field(None, ge=0)
    currency: str = Field(DEFAULT_CURRENCY, min_length=3, max_length=3)
    event_id: Optional[str] = Field(None, description="Dedup key; generated when omitted")
    data: Dict[str, Any] = Field(default_factory=dict, description="Content, order and user_data fields")

    class Config:
        json_schema_extra = {
            "example": {
                "event_name": "Purchase",
                "session_id": "c0a8012e-7d4b-4f0e-9d61-3f1f2f6f9b1a",
                "value": "197.00",
                "currency": "BRL",
                "data": {
                    "content_ids": ["prod_123"],
                    "transaction_id": "txn_987",
                    "user_data": {"email": "cliente@example.com"},
                },
            }
        }


class TrackEventResponse(BaseModel):
    accepted: bool
    queued: int


class EventResponse(BaseModel):
    """Single tracked event."""
    event_id: str
    event_name: str
    status: EventStatus
    occurred_at: datetime
    value: Optional[Decimal] = None
    currency: str
    attribution: AttributionResponse
    custom_data: Dict[str, Any]
    provider_response: Optional[Dict[str, Any]] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_event(cls, event: TrackedEvent) -> "EventResponse":
        return cls(
            event_id=event.event_id,
            event_name=event.event_name.value,
            status=event.status,
            occurred_at=event.occurred_at,
            value=event.value,
            currency=event.currency,
            attribution=AttributionResponse.from_context(event.attribution),
            custom_data=event.custom_data.to_dict(),
            provider_response=dict(event.provider_response) if event.provider_response else None,
            updated_at=event.updated_at,
        )


class EventListResponse(BaseModel):
    items: List[EventResponse]
    total_count: int
    status: EventStatus


# ============================================================================
# Webhook Models
# ============================================================================

class WebhookReceiptResponse(BaseModel):
    success: bool


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Invalid webhook type",
                "detail": "Expected one of: email, customer, address, payment",
                "status_code": 400
            }
        }


# ============================================================================
# Checkout Step Models
# ============================================================================

class EmailStepRequest(BaseModel):
    email: str = Field(..., min_length=3)
    product: Dict[str, Any]


class CustomerStepRequest(BaseModel):
    name: str = Field(..., min_length=1)
    document: str = Field(..., min_length=1, description="CPF")
    phone: str = Field(..., min_length=1)
    product: Dict[str, Any]


class AddressStepRequest(BaseModel):
    street: str
    number: str
    complement: Optional[str] = None
    neighborhood: str
    city: str
    state: str
    zipcode: str
    shipping_option: Optional[str] = None
    product: Dict[str, Any]


class PaymentStepRequest(BaseModel):
    method: str = Field(..., description="pix, credit_card or boleto")
    installments: Optional[int] = Field(None, ge=1)
    order_bump: bool = False
    upsell: bool = False
    product: Dict[str, Any]

    class Config:
        json_schema_extra = {
            "example": {
                "method": "credit_card",
                "installments": 3,
                "order_bump": True,
                "upsell": False,
                "product": {"id": "prod_123", "price": 197.0, "order_bump_discount": 10},
            }
        }


class CheckoutStepResponse(BaseModel):
    success: bool
    webhook_type: str
