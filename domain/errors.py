"""
Domain: error taxonomy.

- ConfigurationError: required configuration is missing or malformed. Raised
  once at the point of use; retrying cannot succeed.
- StoreError: the hosted event/settings tables rejected an insert, update or
  query.
- InvalidTransitionError: an event status change outside the allowed state
  machine.
- WebhookDeliveryError / WebhookRateLimitError: outgoing checkout webhooks.

Transient Conversions API failures are never raised; they are recorded as
`failed` event rows instead.
"""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when a required setting (token, pixel id, URL) is missing or malformed."""
    pass


class StoreError(RuntimeError):
    """Raised when a Supabase insert, update or query fails."""
    pass


class InvalidTransitionError(ValueError):
    """Raised when an event status change is not allowed."""
    pass


class WebhookDeliveryError(RuntimeError):
    """Raised when a checkout webhook endpoint answers with a non-2xx status."""
    pass


class WebhookRateLimitError(RuntimeError):
    """Raised when a webhook type exceeds its per-minute call budget."""
    pass


__all__ = [
    "ConfigurationError",
    "StoreError",
    "InvalidTransitionError",
    "WebhookDeliveryError",
    "WebhookRateLimitError",
]
