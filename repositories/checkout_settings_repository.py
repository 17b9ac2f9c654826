"""
Checkout settings repository.

Reads the webhook target URLs that the admin dashboard stores in the single
`checkout_settings` row.
"""

from __future__ import annotations

from dataclasses import dataclass

from repositories.client import AsyncClient, execute_query

_SETTINGS_TABLE: str = "checkout_settings"
_WEBHOOK_COLUMNS = ("webhook_email", "webhook_customer", "webhook_address", "webhook_payment")


@dataclass(frozen=True, slots=True)
class WebhookUrls:
    """Target URL per checkout step; empty string means not configured."""

    webhook_email: str = ""
    webhook_customer: str = ""
    webhook_address: str = ""
    webhook_payment: str = ""

    def for_type(self, webhook_type: str) -> str:
        return getattr(self, f"webhook_{webhook_type}")


class CheckoutSettingsRepository:
    def __init__(self, client: AsyncClient, table: str = _SETTINGS_TABLE):
        self._client = client
        self._table = table

    async def fetch_webhook_urls(self) -> WebhookUrls:
        """
        Fetch the configured webhook URLs.

        Returns all-empty URLs when the settings row has not been created yet.

        Raises:
            StoreError: if the query fails.
        """

        rows = await execute_query(
            self._client.table(self._table).select(", ".join(_WEBHOOK_COLUMNS)).limit(1),
            "fetch webhook urls",
        )
        if not rows:
            return WebhookUrls()

        row = rows[0]
        return WebhookUrls(**{column: str(row.get(column) or "") for column in _WEBHOOK_COLUMNS})


__all__ = ["CheckoutSettingsRepository", "WebhookUrls"]
