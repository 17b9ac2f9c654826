"""
Delivery pipeline for the Meta Conversions API.

Builds the provider payload for one TrackedEvent, POSTs it and interprets the
answer. Every outcome is returned as a DeliveryResult; nothing raises past
`deliver()`, so the recorder and the retry scheduler can persist results
uniformly.

Payload rules:
- event_id is sent verbatim on every attempt (provider-side dedup key).
- event_time is the event's occurred_at in unix seconds.
- Identity fields are normalised and SHA-256 hashed; transport fields
  (ip, user agent, fbc, fbp) are sent as-is.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from domain.event import EventStatus, TrackedEvent, UserData
from domain.time import to_unix_millis, to_unix_seconds
from services.settings import TrackingSettings

logger = logging.getLogger(__name__)

ACTION_SOURCE: str = "website"

# UserData attribute -> Conversions API key, for the fields that are hashed.
_HASHED_FIELDS: tuple[tuple[str, str], ...] = (
    ("email", "em"),
    ("phone", "ph"),
    ("first_name", "fn"),
    ("last_name", "ln"),
    ("city", "ct"),
    ("state", "st"),
    ("zip_code", "zp"),
    ("country", "country"),
    ("external_id", "external_id"),
)

_SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


def hash_identity(field_name: str, value: Optional[str]) -> Optional[str]:
    """
    SHA-256 of a normalised identity value (trimmed, lowercase).

    Phone numbers keep digits only. Values that are already SHA-256 digests
    are passed through unchanged.
    """

    if value is None:
        return None
    normalized = str(value).strip().lower()
    if field_name == "phone":
        normalized = "".join(ch for ch in normalized if ch.isdigit())
    if not normalized:
        return None
    if _SHA256_HEX.match(normalized):
        return normalized
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    """Outcome of one delivery attempt: `sent` or `failed` plus the body/error."""

    status: EventStatus
    response: Mapping[str, Any]

    @property
    def ok(self) -> bool:
        return self.status is EventStatus.SENT


def _failed(message: str, **details: Any) -> DeliveryResult:
    return DeliveryResult(status=EventStatus.FAILED, response={"error": {"message": message, **details}})


class DeliveryPipeline:
    """
    Sends TrackedEvents to the Conversions API.

    Raises ConfigurationError on construction when the access token or pixel
    id is missing; a misconfigured pipeline is never retried.
    """

    def __init__(self, settings: TrackingSettings, http_client: Optional[httpx.AsyncClient] = None):
        settings.require_conversions_api()
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=settings.request_timeout)

    def build_user_data(self, event: TrackedEvent) -> dict[str, Any]:
        user: UserData = event.custom_data.user_data
        data: dict[str, Any] = {}
        for attr, key in _HASHED_FIELDS:
            hashed = hash_identity(attr, getattr(user, attr))
            if hashed:
                data[key] = [hashed]

        if user.client_ip_address:
            data["client_ip_address"] = user.client_ip_address
        if user.client_user_agent:
            data["client_user_agent"] = user.client_user_agent
        if user.fbp:
            data["fbp"] = user.fbp

        fbclid = event.attribution.click_ids.fbclid
        if user.fbc:
            data["fbc"] = user.fbc
        elif fbclid:
            data["fbc"] = f"fb.1.{to_unix_millis(event.occurred_at)}.{fbclid}"
        return data

    def build_custom_data(self, event: TrackedEvent) -> dict[str, Any]:
        attribution = event.attribution
        event_data = event.custom_data
        data: dict[str, Any] = {
            "value": float(event.value) if event.value is not None else None,
            "currency": event.currency,
            "utm_source": attribution.utm_source,
            "utm_medium": attribution.utm_medium,
            "utm_campaign": attribution.utm_campaign,
            "utm_term": attribution.utm_term,
            "utm_content": attribution.utm_content,
            "content_ids": list(event_data.content_ids) or None,
            "content_name": event_data.content_name,
            "content_type": event_data.content_type,
            "content_category": event_data.content_category,
            "num_items": event_data.num_items,
            "order_id": event_data.order_id,
            "customer_id": event_data.customer_id,
            "transaction_id": event_data.transaction_id,
            "status": event_data.status,
        }
        # Event columns take precedence over free-form extras with the same key.
        columns = {key: value for key, value in data.items() if value is not None}
        merged = {**event_data.extra, **columns}
        return {key: value for key, value in merged.items() if value is not None}

    def build_payload(self, event: TrackedEvent) -> dict[str, Any]:
        event_payload = {
            "event_name": event.event_name.value,
            "event_time": to_unix_seconds(event.occurred_at),
            "event_id": event.event_id,
            "action_source": ACTION_SOURCE,
            "user_data": self.build_user_data(event),
            "custom_data": self.build_custom_data(event),
        }
        return {"data": [event_payload], "access_token": self._settings.access_token}

    async def deliver(self, event: TrackedEvent) -> DeliveryResult:
        """
        Send one event and classify the answer.

        Returns:
            DeliveryResult(status=sent, response=<provider body>) on success,
            DeliveryResult(status=failed, response=<body or {"error": ...}>) otherwise.
        """

        try:
            payload = self.build_payload(event)
            response = await self._client.post(self._settings.events_url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(
                f"Delivery of event {event.event_id} failed: {e}",
                extra={"event_id": event.event_id, "error_type": e.__class__.__name__},
            )
            return _failed(str(e) or e.__class__.__name__, type=e.__class__.__name__)
        except Exception as e:
            logger.exception(f"Unexpected error delivering event {event.event_id}")
            return _failed(str(e), type=e.__class__.__name__)

        result = self._interpret(response)
        if result.ok:
            logger.info(
                f"Event {event.event_id} ({event.event_name.value}) delivered",
                extra={"event_id": event.event_id, "status_code": response.status_code},
            )
        else:
            logger.warning(
                f"Event {event.event_id} rejected by provider: {result.response.get('error')}",
                extra={"event_id": event.event_id, "status_code": response.status_code},
            )
        return result

    @staticmethod
    def _interpret(response: httpx.Response) -> DeliveryResult:
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("error"):
            return DeliveryResult(status=EventStatus.FAILED, response=body)

        if not response.is_success:
            if isinstance(body, dict):
                return DeliveryResult(status=EventStatus.FAILED, response=body)
            return _failed(f"HTTP {response.status_code}", code=response.status_code)

        if not isinstance(body, dict):
            return _failed("Provider returned an undecodable response", code=response.status_code)

        return DeliveryResult(status=EventStatus.SENT, response=body)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["ACTION_SOURCE", "DeliveryPipeline", "DeliveryResult", "hash_identity"]
