"""
Webhook log repository.

Persists every inbound checkout webhook in the `webhook_logs` table so the
admin dashboard can show what was received.
"""

from __future__ import annotations

from typing import Any, Mapping

from domain.time import utc_now
from repositories.client import AsyncClient, execute_query

_WEBHOOK_LOGS_TABLE: str = "webhook_logs"


class WebhookLogRepository:
    def __init__(self, client: AsyncClient, table: str = _WEBHOOK_LOGS_TABLE):
        self._client = client
        self._table = table

    async def log_webhook(self, webhook_type: str, payload: Mapping[str, Any], status: str = "success") -> None:
        """
        Insert one webhook log row.

        Raises:
            StoreError: if Supabase rejects the insert.
        """

        await execute_query(
            self._client.table(self._table).insert(
                {
                    "webhook_type": webhook_type,
                    "payload": dict(payload),
                    "status": status,
                    "received_at_utc": utc_now().isoformat(),
                }
            ),
            f"log {webhook_type} webhook",
        )


__all__ = ["WebhookLogRepository"]
