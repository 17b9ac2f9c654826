"""
Domain: Tracked conversion events.

Rules implemented here:
- event_id is immutable and unique; it is the dedup key the ads provider uses,
  so every delivery attempt of the same logical event carries the same id.
- Status state machine:
    pending -> sent     (terminal)
    pending -> failed
    failed  -> sent     (terminal)
    failed  -> failed   (retried on the next sweep)
  No other transitions are valid.
- occurred_at / updated_at are UTC timestamps.

This module contains only pure domain entities: no I/O, no database, no HTTP.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import uuid4

from .attribution import AttributionContext
from .errors import InvalidTransitionError
from .time import require_utc_timestamp

DEFAULT_CURRENCY: str = "BRL"


class EventName(str, Enum):
    INITIATE_CHECKOUT = "InitiateCheckout"
    ADD_PAYMENT_INFO = "AddPaymentInfo"
    PURCHASE = "Purchase"
    COMPLETE_REGISTRATION = "CompleteRegistration"
    VIEW_CONTENT = "ViewContent"
    ADD_TO_CART = "AddToCart"


class EventStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is EventStatus.SENT

    def can_transition_to(self, target: "EventStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.PENDING: frozenset({EventStatus.SENT, EventStatus.FAILED}),
    EventStatus.FAILED: frozenset({EventStatus.SENT, EventStatus.FAILED}),
    EventStatus.SENT: frozenset(),
}

# Statuses the retry sweep picks up.
UNRESOLVED_STATUSES: tuple[EventStatus, ...] = (EventStatus.PENDING, EventStatus.FAILED)


def new_event_id() -> str:
    return str(uuid4())


@dataclass(frozen=True, slots=True)
class UserData:
    """
    Identity fields used for provider-side user matching.

    email .. external_id are hashed before leaving the process; the transport
    fields (ip, user agent, fbc, fbp) are sent verbatim.
    """

    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    external_id: Optional[str] = None
    client_ip_address: Optional[str] = None
    client_user_agent: Optional[str] = None
    fbc: Optional[str] = None
    fbp: Optional[str] = None

    # Alternate spellings accepted from checkout payloads.
    _ALIASES = {
        "em": "email",
        "ph": "phone",
        "fn": "first_name",
        "ln": "last_name",
        "ct": "city",
        "st": "state",
        "zp": "zip_code",
        "zip": "zip_code",
        "ip_address": "client_ip_address",
        "user_agent": "client_user_agent",
    }

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "UserData":
        if not data:
            return cls()
        names = {f.name for f in fields(cls)}
        values: dict[str, str] = {}
        for key, value in data.items():
            name = cls._ALIASES.get(key, key)
            if name in names and value not in (None, ""):
                values.setdefault(name, str(value))
        return cls(**values)

    def to_dict(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass(frozen=True, slots=True)
class EventData:
    """
    Optional-field payload attached to a tracked event.

    The content/order/customer correlators cover every checkout call site;
    anything else lands in `extra` and is still forwarded as custom data.
    """

    content_ids: tuple[str, ...] = ()
    content_name: Optional[str] = None
    content_type: Optional[str] = None
    content_category: Optional[str] = None
    num_items: Optional[int] = None
    order_id: Optional[str] = None
    customer_id: Optional[str] = None
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    user_data: UserData = field(default_factory=UserData)
    extra: Mapping[str, Any] = field(default_factory=dict)

    _SCALAR_FIELDS = (
        "content_name",
        "content_type",
        "content_category",
        "order_id",
        "customer_id",
        "transaction_id",
        "status",
    )

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "EventData":
        if not data:
            return cls()
        remaining = dict(data)

        content_ids = remaining.pop("content_ids", None) or ()
        if isinstance(content_ids, str):
            content_ids = (content_ids,)
        num_items = remaining.pop("num_items", None)
        user_data = UserData.from_mapping(remaining.pop("user_data", None))
        scalars = {}
        for name in cls._SCALAR_FIELDS:
            value = remaining.pop(name, None)
            if value is not None:
                scalars[name] = str(value)
        # Nested extras (stored rows) are flattened back in.
        nested_extra = remaining.pop("extra", None) or {}

        return cls(
            content_ids=tuple(str(item) for item in content_ids),
            num_items=int(num_items) if num_items is not None else None,
            user_data=user_data,
            extra={**nested_extra, **remaining},
            **scalars,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form used for the `custom_data` column."""

        data: dict[str, Any] = {}
        if self.content_ids:
            data["content_ids"] = list(self.content_ids)
        if self.num_items is not None:
            data["num_items"] = self.num_items
        for name in self._SCALAR_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        user_data = self.user_data.to_dict()
        if user_data:
            data["user_data"] = user_data
        if self.extra:
            data["extra"] = dict(self.extra)
        return data


@dataclass(frozen=True, slots=True)
class TrackedEvent:
    """
    Immutable record of one attribution-relevant user action.

    Status changes return a new instance via `transition()`; the event_id,
    name, timestamp and attribution snapshot never change.
    """

    event_id: str
    event_name: EventName
    occurred_at: datetime
    attribution: AttributionContext
    custom_data: EventData = field(default_factory=EventData)
    value: Optional[Decimal] = None
    currency: str = DEFAULT_CURRENCY
    status: EventStatus = EventStatus.PENDING
    provider_response: Optional[Mapping[str, Any]] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.event_id:
            raise ValueError("event_id is required")
        require_utc_timestamp("occurred_at", self.occurred_at)
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)

    @classmethod
    def create(
        cls,
        event_name: EventName,
        occurred_at: datetime,
        attribution: AttributionContext,
        custom_data: Optional[EventData] = None,
        value: Optional[Decimal] = None,
        currency: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> "TrackedEvent":
        """Build a new `pending` event with a fresh event_id unless one is given."""

        return cls(
            event_id=event_id or new_event_id(),
            event_name=EventName(event_name),
            occurred_at=occurred_at,
            attribution=attribution,
            custom_data=custom_data or EventData(),
            value=value,
            currency=currency or DEFAULT_CURRENCY,
            status=EventStatus.PENDING,
        )

    @property
    def is_unresolved(self) -> bool:
        return self.status in UNRESOLVED_STATUSES

    def transition(
        self,
        status: EventStatus,
        provider_response: Optional[Mapping[str, Any]],
        at: datetime,
    ) -> "TrackedEvent":
        """Return a copy in the new status, enforcing the state machine."""

        if not self.status.can_transition_to(status):
            raise InvalidTransitionError(
                f"Event {self.event_id}: cannot move from {self.status.value} to {status.value}"
            )
        return replace(self, status=status, provider_response=provider_response, updated_at=at)


__all__ = [
    "DEFAULT_CURRENCY",
    "EventData",
    "EventName",
    "EventStatus",
    "TrackedEvent",
    "UNRESOLVED_STATUSES",
    "UserData",
    "new_event_id",
]
