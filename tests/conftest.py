"""
Pytest configuration and shared fakes.

This file adds the project root to the Python path so that tests can import
the domain, repositories, services and api packages, and provides in-memory
stand-ins for the Supabase event table and the Conversions API endpoint.
No test touches the network or a live Supabase project.
"""

import json
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.attribution import AttributionContext  # noqa: E402
from domain.errors import StoreError  # noqa: E402
from domain.event import UNRESOLVED_STATUSES, EventName, EventStatus, TrackedEvent  # noqa: E402
from services.delivery_pipeline import DeliveryPipeline  # noqa: E402
from services.settings import TrackingSettings  # noqa: E402

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_event(
    index: int = 0,
    status: EventStatus = EventStatus.PENDING,
    event_name: EventName = EventName.PURCHASE,
    attribution: Optional[AttributionContext] = None,
) -> TrackedEvent:
    """Event whose occurred_at grows with `index` (index 0 is the oldest)."""

    return TrackedEvent(
        event_id=f"evt-{index:04d}",
        event_name=event_name,
        occurred_at=BASE_TIME + timedelta(minutes=index),
        attribution=attribution or AttributionContext.empty(),
        status=status,
    )


class FakeEventRepository:
    """In-memory `events` table with the same contract as EventRepository."""

    def __init__(self) -> None:
        self.rows: Dict[str, TrackedEvent] = {}
        self.query_calls = 0
        self.query_limits: List[int] = []
        self.fail_insert = False
        self.fail_query = False
        self.fail_update = False

    async def insert_event(self, event: TrackedEvent) -> None:
        if self.fail_insert:
            raise StoreError("Failed to insert event: connection refused")
        if event.event_id in self.rows:
            raise StoreError(f"Failed to insert event {event.event_id}: duplicate key value")
        self.rows[event.event_id] = event

    async def update_event_status(self, event_id: str, status: EventStatus, response=None) -> bool:
        if self.fail_update:
            raise StoreError(f"Failed to update event {event_id}: connection reset")
        row = self.rows.get(event_id)
        if row is None or row.status not in UNRESOLVED_STATUSES:
            return False
        self.rows[event_id] = replace(
            row,
            status=EventStatus(status),
            provider_response=response,
            updated_at=datetime.now(timezone.utc),
        )
        return True

    async def query_unresolved(self, limit: int = 50) -> List[TrackedEvent]:
        self.query_calls += 1
        self.query_limits.append(limit)
        if self.fail_query:
            raise StoreError("Failed to query unresolved events: timeout")
        unresolved = [row for row in self.rows.values() if row.status in UNRESOLVED_STATUSES]
        return sorted(unresolved, key=lambda row: row.occurred_at)[:limit]

    async def get_event_by_id(self, event_id: str) -> Optional[TrackedEvent]:
        return self.rows.get(event_id)

    async def list_events_by_status(self, status: EventStatus, limit: int = 100) -> List[TrackedEvent]:
        matching = [row for row in self.rows.values() if row.status is EventStatus(status)]
        return sorted(matching, key=lambda row: row.occurred_at, reverse=True)[:limit]

    def statuses(self) -> Dict[str, EventStatus]:
        return {event_id: row.status for event_id, row in self.rows.items()}


class ProviderStub:
    """Conversions API endpoint backed by httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.responder: Callable[[Dict[str, Any]], httpx.Response] = lambda body: httpx.Response(
            200, json={"events_received": 1, "messages": [], "fbtrace_id": "trace"}
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        return self.responder(body)

    def succeed(self) -> None:
        self.responder = lambda body: httpx.Response(200, json={"events_received": 1, "messages": []})

    def reject(self, message: str = "invalid token", code: int = 190) -> None:
        self.responder = lambda body: httpx.Response(
            400,
            json={"error": {"message": message, "type": "OAuthException", "code": code}},
        )

    @property
    def sent_event_ids(self) -> List[str]:
        return [entry["event_id"] for body in self.requests for entry in body["data"]]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeQuery:
    """Chainable stand-in for a postgrest request builder."""

    def __init__(self, client: "FakeSupabaseClient", table: str) -> None:
        self.client = client
        self.table = table
        self.calls: List[tuple] = []

    def __getattr__(self, name: str):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self

        return method

    def call(self, name: str) -> tuple:
        return next(c for c in self.calls if c[0] == name)

    async def execute(self):
        self.client.executed.append(self)
        if self.client.error is not None:
            raise self.client.error
        data = self.client.responses.pop(0) if self.client.responses else []
        return SimpleNamespace(data=data)


class FakeSupabaseClient:
    def __init__(self) -> None:
        self.executed: List[FakeQuery] = []
        self.responses: List[List[Dict[str, Any]]] = []
        self.error: Optional[Exception] = None

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


@pytest.fixture
def settings() -> TrackingSettings:
    return TrackingSettings(access_token="test-token", pixel_id="1234567890", api_version="v17.0")


@pytest.fixture
def repository() -> FakeEventRepository:
    return FakeEventRepository()


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def pipeline(settings: TrackingSettings, provider: ProviderStub) -> DeliveryPipeline:
    return DeliveryPipeline(settings, http_client=provider.client())


@pytest.fixture
def supabase_client() -> FakeSupabaseClient:
    return FakeSupabaseClient()
