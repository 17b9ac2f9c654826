"""
Checkout webhook dispatcher.

Each completed checkout step (email, customer, address, payment) is POSTed as
JSON to the URL configured for that step in `checkout_settings`.

Handles:
- Lazy lookup of the configured URLs (one query per dispatcher, cached)
- Bearer authorization with WEBHOOK_KEY
- Per-type rate limiting (60 calls per minute, fixed window)
- Total price calculation for the payment step

Errors:
- ConfigurationError: the step's URL is empty or malformed (no retry)
- WebhookRateLimitError: too many calls of one type within the window
- WebhookDeliveryError: the endpoint answered with a non-2xx status
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from domain.checkout import total_price_for_product
from domain.errors import WebhookDeliveryError, WebhookRateLimitError
from domain.time import utc_now
from repositories.checkout_settings_repository import CheckoutSettingsRepository, WebhookUrls
from services.settings import TrackingSettings, require_well_formed_url

logger = logging.getLogger(__name__)

WEBHOOK_TYPES: tuple[str, ...] = ("email", "customer", "address", "payment")


class WebhookRateLimiter:
    """
    Fixed-window call counter per webhook type.

    The window for a type opens on its first call and resets once
    `window_seconds` have elapsed since then.
    """

    def __init__(
        self,
        max_calls: int = 60,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_calls = max_calls
        self._window = window_seconds
        self._clock = clock
        self._windows: Dict[str, tuple[int, float]] = {}

    def check(self, webhook_type: str) -> None:
        """
        Count one call.

        Raises:
            WebhookRateLimitError: if the type already used its budget this window.
        """

        now = self._clock()
        count, started = self._windows.get(webhook_type, (0, now))

        if now - started > self._window:
            count, started = 0, now

        if count >= self._max_calls:
            raise WebhookRateLimitError(
                f"Webhook call limit exceeded for '{webhook_type}'. Try again in a few minutes."
            )

        self._windows[webhook_type] = (count + 1, started)


class WebhookDispatcher:
    def __init__(
        self,
        settings_repository: CheckoutSettingsRepository,
        settings: TrackingSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[WebhookRateLimiter] = None,
    ):
        self._settings_repository = settings_repository
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._rate_limiter = rate_limiter or WebhookRateLimiter()
        self._urls: Optional[WebhookUrls] = None

    async def fetch_webhook_urls(self, refresh: bool = False) -> WebhookUrls:
        if self._urls is None or refresh:
            self._urls = await self._settings_repository.fetch_webhook_urls()
        return self._urls

    async def _send(self, webhook_type: str, payload: Mapping[str, Any]) -> httpx.Response:
        urls = await self.fetch_webhook_urls()
        url = require_well_formed_url(f"webhook_{webhook_type}", urls.for_type(webhook_type))

        self._rate_limiter.check(webhook_type)

        response = await self._client.post(
            url,
            json=dict(payload),
            headers={"Authorization": f"Bearer {self._settings.webhook_key}"},
        )
        if not response.is_success:
            logger.warning(
                f"{webhook_type} webhook rejected: {response.status_code} {response.reason_phrase}",
                extra={"webhook_type": webhook_type, "status_code": response.status_code},
            )
            raise WebhookDeliveryError(
                f"{webhook_type} webhook failed: {response.status_code} {response.reason_phrase}"
            )

        logger.info(f"{webhook_type} webhook delivered", extra={"webhook_type": webhook_type})
        return response

    async def send_email_webhook(self, email: str, product: Mapping[str, Any]) -> httpx.Response:
        payload = {
            "email": email,
            "product_info": dict(product),
            "timestamp": utc_now().isoformat(),
        }
        return await self._send("email", payload)

    async def send_customer_webhook(
        self,
        name: str,
        document: str,
        phone: str,
        product: Mapping[str, Any],
    ) -> httpx.Response:
        payload = {
            "name": name,
            "document": document,
            "phone": phone,
            "product_info": dict(product),
            "timestamp": utc_now().isoformat(),
        }
        return await self._send("customer", payload)

    async def send_address_webhook(
        self,
        address: Mapping[str, Any],
        product: Mapping[str, Any],
        shipping_option: Optional[str] = None,
    ) -> httpx.Response:
        """
        Args:
            address: street, number, complement, neighborhood, city, state, zipcode
        """

        payload = {
            **dict(address),
            "shipping_option": shipping_option,
            "product_info": dict(product),
            "timestamp": utc_now().isoformat(),
        }
        return await self._send("address", payload)

    async def send_payment_webhook(
        self,
        method: str,
        product: Mapping[str, Any],
        installments: Optional[int] = None,
        order_bump: bool = False,
        upsell: bool = False,
    ) -> httpx.Response:
        """
        Raises:
            ValueError: if the product has no numeric price.
        """

        total_price = total_price_for_product(product, order_bump=order_bump, upsell=upsell)
        payload = {
            "method": method,
            "installments": installments,
            "order_bump": order_bump,
            "upsell": upsell,
            "product_info": dict(product),
            "total_price": float(total_price),
            "timestamp": utc_now().isoformat(),
        }
        return await self._send("payment", payload)

    async def send_n8n_webhook(self, data: Mapping[str, Any]) -> Optional[Any]:
        """Forward data to the optional n8n automation URL; no-op when unset."""

        if not self._settings.n8n_webhook_url:
            logger.warning("N8N_WEBHOOK_URL is not configured; skipping n8n webhook")
            return None

        url = require_well_formed_url("N8N_WEBHOOK_URL", self._settings.n8n_webhook_url)
        response = await self._client.post(url, json=dict(data))
        if not response.is_success:
            raise WebhookDeliveryError(f"n8n webhook failed: {response.reason_phrase}")
        return response.json()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["WEBHOOK_TYPES", "WebhookDispatcher", "WebhookRateLimiter"]
