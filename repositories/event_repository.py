"""
Event repository (persistence).

This module provides *only* persistence operations for the TrackedEvent
domain entity against the Supabase `events` table. It does not deliver events
or decide retry policy; the scheduler and recorder services do that.

The one rule enforced here is the terminal `sent` state: status updates are
filtered on the row still being `pending` or `failed`, so a row that reached
`sent` is never rewritten by a late or duplicate delivery.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, List, Mapping, Optional

from domain.attribution import AttributionContext
from domain.errors import StoreError
from domain.event import (
    UNRESOLVED_STATUSES,
    EventData,
    EventName,
    EventStatus,
    TrackedEvent,
)
from domain.time import parse_utc_datetime, to_iso_utc, utc_now
from repositories.client import AsyncClient, execute_query

logger = logging.getLogger(__name__)

# Supabase table name for tracked events.
# Keep this aligned with your database schema.
_EVENTS_TABLE: str = "events"


def _event_to_row(event: TrackedEvent) -> dict[str, Any]:
    attribution = event.attribution
    row: dict[str, Any] = {
        "event_id": event.event_id,
        "event_name": event.event_name.value,
        "occurred_at_utc": to_iso_utc(event.occurred_at, name="occurred_at"),
        "value": str(event.value) if event.value is not None else None,
        "currency": event.currency,
        "status": event.status.value,
        "custom_data": event.custom_data.to_dict(),
        "provider_response": dict(event.provider_response) if event.provider_response else None,
        "updated_at_utc": to_iso_utc(event.updated_at, name="updated_at") if event.updated_at else None,
    }
    row.update(attribution.to_storage_dict())
    return row


def _row_to_event(row: Mapping[str, Any]) -> TrackedEvent:
    """Convert a Supabase row into a TrackedEvent."""

    value = row.get("value")
    return TrackedEvent(
        event_id=str(row["event_id"]),
        event_name=EventName(str(row["event_name"])),
        occurred_at=parse_utc_datetime(row["occurred_at_utc"]),
        attribution=AttributionContext.from_storage_dict(row),
        custom_data=EventData.from_mapping(row.get("custom_data")),
        value=Decimal(str(value)) if value is not None else None,
        currency=str(row.get("currency") or "BRL"),
        status=EventStatus(str(row["status"])),
        provider_response=row.get("provider_response"),
        updated_at=parse_utc_datetime(row["updated_at_utc"]) if row.get("updated_at_utc") else None,
    )


def _rows_to_events(rows: List[Mapping[str, Any]], action: str) -> List[TrackedEvent]:
    """
    Map rows one at a time; a row that cannot be mapped is logged and skipped
    so it cannot block the rest of the batch.
    """

    events: List[TrackedEvent] = []
    for row in rows:
        try:
            events.append(_row_to_event(row))
        except (KeyError, ValueError, TypeError, ArithmeticError) as e:
            event_id = row.get("event_id")
            logger.error(
                f"Skipping unreadable event row {event_id} during {action}: {e}",
                extra={"event_id": event_id, "error_type": e.__class__.__name__},
            )
    return events


class EventRepository:
    """Insert/update/query access to the `events` table."""

    def __init__(self, client: AsyncClient, table: str = _EVENTS_TABLE):
        self._client = client
        self._table = table

    async def insert_event(self, event: TrackedEvent) -> None:
        """
        Insert a new event row.

        Raises:
            StoreError: if Supabase rejects the insert (e.g. duplicate event_id).
        """

        await execute_query(
            self._client.table(self._table).insert(_event_to_row(event)),
            f"insert event {event.event_id}",
        )

    async def update_event_status(
        self,
        event_id: str,
        status: EventStatus,
        response: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Write a delivery outcome back to an unresolved event.

        Returns:
            True if a row was updated, False if no unresolved row matched
            (unknown id, or the event is already `sent`).
        """

        payload: dict[str, Any] = {
            "status": EventStatus(status).value,
            "provider_response": dict(response) if response is not None else None,
            "updated_at_utc": utc_now().isoformat(),
        }
        rows = await execute_query(
            self._client.table(self._table)
            .update(payload)
            .eq("event_id", event_id)
            .in_("status", [s.value for s in UNRESOLVED_STATUSES]),
            f"update event {event_id}",
        )
        if not rows:
            logger.info(
                f"Event {event_id} not updated: already resolved or missing",
                extra={"event_id": event_id, "status": payload["status"]},
            )
        return bool(rows)

    async def query_unresolved(self, limit: int = 50) -> List[TrackedEvent]:
        """Oldest-first batch of `pending` / `failed` events."""

        rows = await execute_query(
            self._client.table(self._table)
            .select("*")
            .in_("status", [s.value for s in UNRESOLVED_STATUSES])
            .order("occurred_at_utc", desc=False)
            .limit(limit),
            "query unresolved events",
        )
        return _rows_to_events(rows, "query unresolved events")

    async def get_event_by_id(self, event_id: str) -> Optional[TrackedEvent]:
        rows = await execute_query(
            self._client.table(self._table).select("*").eq("event_id", event_id).limit(1),
            f"get event {event_id}",
        )
        if not rows:
            return None
        try:
            return _row_to_event(rows[0])
        except (KeyError, ValueError, TypeError, ArithmeticError) as e:
            raise StoreError(f"Failed to read event {event_id}: {e}") from e

    async def list_events_by_status(self, status: EventStatus, limit: int = 100) -> List[TrackedEvent]:
        """Most recent events first for a single status."""

        rows = await execute_query(
            self._client.table(self._table)
            .select("*")
            .eq("status", EventStatus(status).value)
            .order("occurred_at_utc", desc=True)
            .limit(limit),
            f"list {EventStatus(status).value} events",
        )
        return _rows_to_events(rows, "list events")


__all__ = ["EventRepository"]
