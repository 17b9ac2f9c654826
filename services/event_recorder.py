"""
Event recorder service.

Records an attribution-relevant user action:
1. Snapshot the session's attribution context
2. Insert a `pending` row with a fresh event_id
3. Attempt one immediate delivery
4. Write the delivery outcome back

If the insert fails there is no durable record to retry, so the event is
logged and dropped. If the final status update fails the row stays `pending`
and the next retry sweep resends it under the same event_id.

Nothing here raises to the caller: tracking must never block checkout.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from domain.attribution import AttributionContext
from domain.errors import StoreError
from domain.event import EventData, EventName, TrackedEvent
from domain.time import utc_now
from services.attribution_capture import SessionStorage, get_stored_attribution
from services.delivery_pipeline import DeliveryPipeline

logger = logging.getLogger(__name__)

EventDataInput = Union[EventData, Mapping[str, Any], None]


class EventRecorder:
    """Dual-write recorder: durable `pending` row plus a best-effort immediate send."""

    def __init__(self, repository, pipeline: DeliveryPipeline):
        self._repository = repository
        self._pipeline = pipeline

    async def track(
        self,
        event_name: Union[EventName, str],
        event_data: EventDataInput = None,
        *,
        attribution: Optional[AttributionContext] = None,
        storage: Optional[SessionStorage] = None,
        value: Optional[Decimal] = None,
        currency: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> Optional[TrackedEvent]:
        """
        Record and deliver one event.

        Args:
            event_name: One of the EventName values
            event_data: Typed EventData or a plain mapping of custom fields
            attribution: Attribution snapshot; read from `storage` when omitted
            storage: Session storage holding the captured attribution
            value: Monetary value of the action
            currency: Currency code (default: BRL)
            event_id: Fixed dedup key (generated when omitted)

        Returns:
            The event in its final known state, or None if it could not be stored.
        """

        if event_data is not None and not isinstance(event_data, EventData):
            # Checkout payloads carry value/currency inline; they belong to the event columns.
            event_data = dict(event_data)
            inline_value = event_data.pop("value", None)
            inline_currency = event_data.pop("currency", None)
            if value is None:
                value = inline_value
            if currency is None:
                currency = inline_currency

        try:
            event = TrackedEvent.create(
                event_name=EventName(event_name),
                occurred_at=utc_now(),
                attribution=attribution or get_stored_attribution(storage) or AttributionContext.empty(),
                custom_data=event_data if isinstance(event_data, EventData) else EventData.from_mapping(event_data),
                value=Decimal(str(value)) if value is not None else None,
                currency=currency,
                event_id=event_id,
            )
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.error(f"Discarding invalid {event_name} event: {e}")
            return None

        try:
            await self._repository.insert_event(event)
        except StoreError as e:
            logger.error(
                f"Could not store event {event.event_id}; dropping it: {e}",
                extra={"event_id": event.event_id, "event_name": event.event_name.value},
            )
            return None

        result = await self._pipeline.deliver(event)
        resolved = event.transition(result.status, result.response, utc_now())

        try:
            await self._repository.update_event_status(event.event_id, result.status, result.response)
        except StoreError as e:
            logger.error(
                f"Could not record outcome of event {event.event_id}; left pending for retry: {e}",
                extra={"event_id": event.event_id, "status": result.status.value},
            )
            return event

        logger.info(
            f"Tracked {event.event_name.value} event {event.event_id}: {resolved.status.value}",
            extra={"event_id": event.event_id, "status": resolved.status.value},
        )
        return resolved

    async def track_initiate_checkout(self, event_data: EventDataInput = None, **kwargs: Any) -> Optional[TrackedEvent]:
        return await self.track(EventName.INITIATE_CHECKOUT, event_data, **kwargs)

    async def track_add_payment_info(self, event_data: EventDataInput = None, **kwargs: Any) -> Optional[TrackedEvent]:
        return await self.track(EventName.ADD_PAYMENT_INFO, event_data, **kwargs)

    async def track_purchase(self, event_data: EventDataInput = None, **kwargs: Any) -> Optional[TrackedEvent]:
        if isinstance(event_data, EventData):
            transaction_id = event_data.transaction_id
        else:
            transaction_id = (event_data or {}).get("transaction_id")
        if not transaction_id:
            logger.warning("track_purchase called without a transaction_id")
        return await self.track(EventName.PURCHASE, event_data, **kwargs)

    async def track_view_content(self, event_data: EventDataInput = None, **kwargs: Any) -> Optional[TrackedEvent]:
        return await self.track(EventName.VIEW_CONTENT, event_data, **kwargs)

    async def track_add_to_cart(self, event_data: EventDataInput = None, **kwargs: Any) -> Optional[TrackedEvent]:
        return await self.track(EventName.ADD_TO_CART, event_data, **kwargs)

    async def track_complete_registration(
        self, event_data: EventDataInput = None, **kwargs: Any
    ) -> Optional[TrackedEvent]:
        return await self.track(EventName.COMPLETE_REGISTRATION, event_data, **kwargs)


__all__ = ["EventRecorder"]
