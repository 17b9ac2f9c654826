"""
Tests for the FastAPI application (`api/`).

The app is built with an in-memory service container; the lifespan starts and
stops the real RetryScheduler around each TestClient session.
"""

from __future__ import annotations

import json
from typing import Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from api.dependencies import ServiceContainer
from api.main import create_app
from conftest import FakeEventRepository, ProviderStub, make_event
from domain.errors import StoreError
from domain.event import EventStatus
from repositories.checkout_settings_repository import WebhookUrls
from services.delivery_pipeline import DeliveryPipeline
from services.event_recorder import EventRecorder
from services.retry_scheduler import RetryScheduler
from services.settings import TrackingSettings
from services.webhook_service import WebhookDispatcher, WebhookRateLimiter

QUIET_INTERVAL = 3600


class FakeWebhookLogRepository:
    def __init__(self) -> None:
        self.logged: list[tuple[str, dict]] = []
        self.fail = False

    async def log_webhook(self, webhook_type: str, payload, status: str = "success") -> None:
        if self.fail:
            raise StoreError("Failed to log webhook: connection refused")
        self.logged.append((webhook_type, dict(payload)))


class FakeSettingsRepository:
    def __init__(self, urls: WebhookUrls) -> None:
        self.urls = urls

    async def fetch_webhook_urls(self) -> WebhookUrls:
        return self.urls


class HookEndpoint:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(200, json={"ok": True})


@pytest.fixture
def webhook_logs() -> FakeWebhookLogRepository:
    return FakeWebhookLogRepository()


@pytest.fixture
def hook_endpoint() -> HookEndpoint:
    return HookEndpoint()


def _container(
    repository: FakeEventRepository,
    pipeline: DeliveryPipeline,
    webhook_logs: FakeWebhookLogRepository,
    hook_endpoint: HookEndpoint,
    *,
    with_recorder: bool = True,
    urls: WebhookUrls = WebhookUrls(
        webhook_email="https://hooks.example.com/email",
        webhook_customer="https://hooks.example.com/customer",
        webhook_address="https://hooks.example.com/address",
        webhook_payment="https://hooks.example.com/payment",
    ),
    rate_limiter: Optional[WebhookRateLimiter] = None,
) -> ServiceContainer:
    recorder = EventRecorder(repository, pipeline)
    scheduler = RetryScheduler(
        repository,
        pipeline,
        recorder if with_recorder else None,
        interval_seconds=QUIET_INTERVAL,
    )
    webhooks = WebhookDispatcher(
        FakeSettingsRepository(urls),
        TrackingSettings(webhook_key="secret-key"),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(hook_endpoint.handler)),
        rate_limiter=rate_limiter,
    )
    return ServiceContainer(
        event_repository=repository,
        webhook_log_repository=webhook_logs,
        pipeline=pipeline,
        recorder=recorder,
        scheduler=scheduler,
        webhooks=webhooks,
    )


@pytest.fixture
def container(repository, pipeline, webhook_logs, hook_endpoint) -> ServiceContainer:
    return _container(repository, pipeline, webhook_logs, hook_endpoint)


def test_health(container: ServiceContainer) -> None:
    with TestClient(create_app(container)) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_capture_then_track_attaches_session_attribution(
    container: ServiceContainer, repository: FakeEventRepository, provider: ProviderStub
) -> None:
    with TestClient(create_app(container)) as client:
        captured = client.post(
            "/api/v1/attribution/capture",
            json={"session_id": "s1", "query_string": "?utm_source=fb&utm_campaign=sale"},
        )
        client.post("/api/v1/attribution/capture", json={"session_id": "s1", "query_string": ""})
        tracked = client.post(
            "/api/v1/events",
            json={
                "event_name": "Purchase",
                "session_id": "s1",
                "value": "197.00",
                "event_id": "order-1",
                "data": {"transaction_id": "txn_1"},
            },
        )

    assert captured.status_code == 200
    assert captured.json()["utm_source"] == "fb"
    assert captured.json()["utm_token"]
    assert tracked.status_code == 202
    assert tracked.json()["accepted"] is True

    # Shutdown drains the queue before closing.
    row = repository.rows["order-1"]
    assert row.status is EventStatus.SENT
    assert row.attribution.utm_source == "fb"
    assert row.attribution.utm_campaign == "sale"
    assert provider.sent_event_ids == ["order-1"]


def test_track_rejects_unknown_event_name(container: ServiceContainer) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/api/v1/events", json={"event_name": "Refund"})

    assert response.status_code == 422


def test_track_returns_503_when_not_accepted(
    repository, pipeline, webhook_logs, hook_endpoint
) -> None:
    container = _container(repository, pipeline, webhook_logs, hook_endpoint, with_recorder=False)

    with TestClient(create_app(container)) as client:
        response = client.post("/api/v1/events", json={"event_name": "AddToCart"})

    assert response.status_code == 503


def test_reset_attribution(container: ServiceContainer) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/api/v1/attribution/capture", json={"session_id": "s2", "query_string": "utm_source=fb"})
        deleted = client.delete("/api/v1/attribution/s2")
        after = client.post("/api/v1/attribution/capture", json={"session_id": "s2", "query_string": ""})

    assert deleted.status_code == 204
    assert after.json()["utm_source"] is None


def test_get_event(container: ServiceContainer, repository: FakeEventRepository) -> None:
    event = make_event(3, status=EventStatus.SENT)
    repository.rows[event.event_id] = event

    with TestClient(create_app(container)) as client:
        found = client.get(f"/api/v1/events/{event.event_id}")
        missing = client.get("/api/v1/events/does-not-exist")

    assert found.status_code == 200
    assert found.json()["event_id"] == "evt-0003"
    assert found.json()["status"] == "sent"
    assert missing.status_code == 404


def test_list_failed_events(
    container: ServiceContainer, repository: FakeEventRepository, provider: ProviderStub
) -> None:
    provider.reject(code=190)
    for index in range(3):
        event = make_event(index, status=EventStatus.FAILED)
        repository.rows[event.event_id] = event

    with TestClient(create_app(container)) as client:
        response = client.get("/api/v1/events", params={"status": "failed", "limit": 2})

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "failed"
    assert body["total_count"] == 2
    # Newest first.
    assert [item["event_id"] for item in body["items"]] == ["evt-0002", "evt-0001"]


def test_inbound_webhook_is_logged(container: ServiceContainer, webhook_logs: FakeWebhookLogRepository) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/api/v1/webhooks/payment", json={"order_id": 7})

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert webhook_logs.logged == [("payment", {"order_id": 7})]


def test_unknown_webhook_type_is_logged_then_rejected(
    container: ServiceContainer, webhook_logs: FakeWebhookLogRepository
) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/api/v1/webhooks/refund", json={"order_id": 7})

    assert response.status_code == 400
    assert webhook_logs.logged == [("refund", {"order_id": 7})]


def test_webhook_log_failure_returns_500(
    container: ServiceContainer, webhook_logs: FakeWebhookLogRepository
) -> None:
    webhook_logs.fail = True

    with TestClient(create_app(container)) as client:
        response = client.post("/api/v1/webhooks/email", json={"email": "a@b.com"})

    assert response.status_code == 500


def test_payment_step_forwards_total_price(container: ServiceContainer, hook_endpoint: HookEndpoint) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post(
            "/api/v1/checkout/payment",
            json={
                "method": "pix",
                "order_bump": True,
                "upsell": True,
                "product": {"id": "p1", "price": 100, "order_bump_discount": 10, "upsell_discount": 20},
            },
        )

    assert response.status_code == 200
    assert response.json() == {"success": True, "webhook_type": "payment"}
    request = hook_endpoint.requests[0]
    assert str(request.url) == "https://hooks.example.com/payment"
    assert request.headers["Authorization"] == "Bearer secret-key"
    assert json.loads(request.content)["total_price"] == 72.0


def test_payment_step_without_price_is_400(container: ServiceContainer) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/api/v1/checkout/payment", json={"method": "pix", "product": {"id": "p1"}})

    assert response.status_code == 400


def test_address_step_sends_address_fields(container: ServiceContainer, hook_endpoint: HookEndpoint) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post(
            "/api/v1/checkout/address",
            json={
                "street": "Rua A",
                "number": "10",
                "neighborhood": "Centro",
                "city": "Recife",
                "state": "PE",
                "zipcode": "50000-000",
                "shipping_option": "express",
                "product": {"id": "p1"},
            },
        )

    assert response.status_code == 200
    body = json.loads(hook_endpoint.requests[0].content)
    assert body["city"] == "Recife"
    assert body["shipping_option"] == "express"
    assert "product" not in body
    assert body["product_info"] == {"id": "p1"}


def test_unconfigured_step_url_is_503(repository, pipeline, webhook_logs, hook_endpoint) -> None:
    container = _container(repository, pipeline, webhook_logs, hook_endpoint, urls=WebhookUrls())

    with TestClient(create_app(container)) as client:
        response = client.post("/api/v1/checkout/email", json={"email": "a@b.com", "product": {"id": "p1"}})

    assert response.status_code == 503
    assert hook_endpoint.requests == []


def test_rate_limited_step_is_429(repository, pipeline, webhook_logs, hook_endpoint) -> None:
    container = _container(
        repository, pipeline, webhook_logs, hook_endpoint, rate_limiter=WebhookRateLimiter(max_calls=1)
    )

    with TestClient(create_app(container)) as client:
        first = client.post("/api/v1/checkout/email", json={"email": "a@b.com", "product": {"id": "p1"}})
        second = client.post("/api/v1/checkout/email", json={"email": "a@b.com", "product": {"id": "p1"}})

    assert first.status_code == 200
    assert second.status_code == 429


def test_missing_dispatcher_is_503(container: ServiceContainer) -> None:
    container.webhooks = None

    with TestClient(create_app(container)) as client:
        response = client.post("/api/v1/checkout/email", json={"email": "a@b.com", "product": {"id": "p1"}})

    assert response.status_code == 503


def test_reset_releases_session(container: ServiceContainer) -> None:
    with TestClient(create_app(container)) as client:
        client.post("/api/v1/attribution/capture", json={"session_id": "s3", "query_string": "utm_source=fb"})
        assert "s3" in container.sessions
        client.delete("/api/v1/attribution/s3")

    assert "s3" not in container.sessions


def test_session_map_evicts_least_recently_used(container: ServiceContainer) -> None:
    container.max_sessions = 2

    with TestClient(create_app(container)) as client:
        for session_id in ("a", "b"):
            client.post("/api/v1/attribution/capture", json={"session_id": session_id, "query_string": ""})
        # Touch "a" so "b" becomes the oldest.
        client.post("/api/v1/attribution/capture", json={"session_id": "a", "query_string": "utm_source=fb"})
        client.post("/api/v1/attribution/capture", json={"session_id": "c", "query_string": ""})

    assert list(container.sessions) == ["a", "c"]


def test_tracking_unknown_session_does_not_create_one(container: ServiceContainer) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/api/v1/events", json={"event_name": "ViewContent", "session_id": "ghost"})

    assert response.status_code == 202
    assert "ghost" not in container.sessions
