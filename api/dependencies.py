"""
Service wiring for the API process.

All collaborators are constructed once at startup and kept on
`app.state.services`; route handlers reach them through `get_services`.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from repositories.checkout_settings_repository import CheckoutSettingsRepository
from repositories.client import create_supabase_client
from repositories.event_repository import EventRepository
from repositories.webhook_log_repository import WebhookLogRepository
from services.attribution_capture import MemorySessionStorage
from services.delivery_pipeline import DeliveryPipeline
from services.event_recorder import EventRecorder
from services.retry_scheduler import RetryScheduler
from services.settings import TrackingSettings
from services.webhook_service import WebhookDispatcher

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS: int = 10_000


@dataclass
class ServiceContainer:
    event_repository: EventRepository
    webhook_log_repository: WebhookLogRepository
    pipeline: DeliveryPipeline
    recorder: EventRecorder
    scheduler: RetryScheduler
    webhooks: Optional[WebhookDispatcher] = None
    max_sessions: int = DEFAULT_MAX_SESSIONS
    sessions: "OrderedDict[str, MemorySessionStorage]" = field(default_factory=OrderedDict)

    def session_storage(self, session_id: str) -> MemorySessionStorage:
        """
        Storage for a session, created on first use.

        Sessions are kept in least-recently-used order; once `max_sessions`
        is exceeded the oldest one is evicted.
        """

        storage = self.sessions.get(session_id)
        if storage is None:
            storage = self.sessions[session_id] = MemorySessionStorage()
        self.sessions.move_to_end(session_id)

        while len(self.sessions) > self.max_sessions:
            evicted, _ = self.sessions.popitem(last=False)
            logger.debug(f"Evicted attribution session {evicted}")
        return storage

    def find_session(self, session_id: str) -> Optional[MemorySessionStorage]:
        """Existing storage for a session, or None (never creates one)."""

        storage = self.sessions.get(session_id)
        if storage is not None:
            self.sessions.move_to_end(session_id)
        return storage

    def drop_session(self, session_id: str) -> Optional[MemorySessionStorage]:
        return self.sessions.pop(session_id, None)

    async def close(self) -> None:
        await self.pipeline.close()
        if self.webhooks is not None:
            await self.webhooks.close()


async def build_services(settings: Optional[TrackingSettings] = None) -> ServiceContainer:
    """
    Construct every collaborator from the environment.

    Raises:
        ConfigurationError: if Supabase or Conversions API settings are missing.
    """

    settings = settings or TrackingSettings.from_env()
    client = await create_supabase_client()

    event_repository = EventRepository(client)
    pipeline = DeliveryPipeline(settings)
    recorder = EventRecorder(event_repository, pipeline)
    scheduler = RetryScheduler(
        event_repository,
        pipeline,
        recorder,
        interval_seconds=settings.retry_interval_seconds,
        batch_size=settings.retry_batch_size,
    )
    return ServiceContainer(
        event_repository=event_repository,
        webhook_log_repository=WebhookLogRepository(client),
        pipeline=pipeline,
        recorder=recorder,
        scheduler=scheduler,
        webhooks=WebhookDispatcher(CheckoutSettingsRepository(client), settings),
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
