"""
Runtime settings read from the environment.

Environment variables (loaded from the project's .env file):
- META_ACCESS_TOKEN: Conversions API access token (required for delivery)
- META_PIXEL_ID: Pixel / dataset id events are reported to (required for delivery)
- META_API_VERSION: Graph API version (default: v17.0)
- META_REQUEST_TIMEOUT: Outbound request timeout in seconds (default: 30)
- WEBHOOK_KEY: Bearer token sent with checkout webhooks
- N8N_WEBHOOK_URL: Optional automation webhook
- RETRY_INTERVAL_SECONDS: Seconds between retry sweeps (default: 60)
- RETRY_BATCH_SIZE: Maximum events per sweep (default: 50)

Values are opaque strings; only URLs are checked for shape.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from domain.errors import ConfigurationError

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_API_VERSION: str = "v17.0"
DEFAULT_RETRY_INTERVAL_SECONDS: float = 60.0
DEFAULT_RETRY_BATCH_SIZE: int = 50


def is_well_formed_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def require_well_formed_url(name: str, url: Optional[str]) -> str:
    """
    Validate a configured URL.

    Raises:
        ConfigurationError: if the URL is empty or not an absolute http(s) URL.
    """

    if not url:
        raise ConfigurationError(f"{name} is not configured")
    if not is_well_formed_url(url):
        raise ConfigurationError(f"{name} is not a valid http(s) URL: {url!r}")
    return url


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class TrackingSettings:
    """Conversions API, webhook and retry configuration."""

    access_token: str = ""
    pixel_id: str = ""
    api_version: str = DEFAULT_API_VERSION
    request_timeout: float = 30.0
    webhook_key: str = ""
    n8n_webhook_url: str = ""
    retry_interval_seconds: float = DEFAULT_RETRY_INTERVAL_SECONDS
    retry_batch_size: int = DEFAULT_RETRY_BATCH_SIZE

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "TrackingSettings":
        env = os.environ if env is None else env
        return cls(
            access_token=env.get("META_ACCESS_TOKEN", ""),
            pixel_id=env.get("META_PIXEL_ID", ""),
            api_version=env.get("META_API_VERSION") or DEFAULT_API_VERSION,
            request_timeout=_float(env, "META_REQUEST_TIMEOUT", 30.0),
            webhook_key=env.get("WEBHOOK_KEY", ""),
            n8n_webhook_url=env.get("N8N_WEBHOOK_URL", ""),
            retry_interval_seconds=_float(env, "RETRY_INTERVAL_SECONDS", DEFAULT_RETRY_INTERVAL_SECONDS),
            retry_batch_size=int(_float(env, "RETRY_BATCH_SIZE", DEFAULT_RETRY_BATCH_SIZE)),
        )

    @property
    def events_url(self) -> str:
        return f"https://graph.facebook.com/{self.api_version}/{self.pixel_id}/events"

    def require_conversions_api(self) -> None:
        """
        Raises:
            ConfigurationError: if the access token or pixel id is missing.
        """

        if not self.access_token:
            raise ConfigurationError(
                "Missing environment variable: META_ACCESS_TOKEN. "
                "Set it to your Conversions API access token."
            )
        if not self.pixel_id:
            raise ConfigurationError(
                "Missing environment variable: META_PIXEL_ID. "
                "Set it to the pixel id events should be reported to."
            )


__all__ = [
    "TrackingSettings",
    "is_well_formed_url",
    "require_well_formed_url",
]
