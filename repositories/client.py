"""
Supabase client initialization.

This module contains *only* the database connection setup and the shared
query executor. Repository classes receive the client through their
constructor, so the API and the retry worker each create one client at
startup and share it.

Environment variables required:
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use a server-side key only on the backend)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Mapping

from dotenv import load_dotenv
import httpx
from postgrest.exceptions import APIError

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import AsyncClient, acreate_client  # type: ignore[import-not-found]

from domain.errors import ConfigurationError, StoreError

# Load environment variables from the project's .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _require_env(name: str, hint: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"Missing environment variable: {name}. {hint}")
    return value


async def create_supabase_client() -> AsyncClient:
    """
    Create the async Supabase client used by every repository.

    Raises:
        ConfigurationError: if SUPABASE_URL or SUPABASE_KEY is not set.
    """

    url = _require_env("SUPABASE_URL", "Set SUPABASE_URL to your Supabase project URL.")
    key = _require_env("SUPABASE_KEY", "Set SUPABASE_KEY to your Supabase API key.")
    return await acreate_client(url, key)


async def execute_query(query: Any, action: str) -> List[Mapping[str, Any]]:
    """
    Run a postgrest query and return its rows.

    supabase-py raises APIError for most failures but some responses still carry
    an `error` attribute, and transport failures (connection refused, timeouts)
    surface as httpx errors; all of them are normalised into StoreError.
    """

    try:
        response = await query.execute()
    except APIError as e:
        raise StoreError(f"Failed to {action}: {e}") from e
    except httpx.HTTPError as e:
        raise StoreError(f"Failed to {action}: {e.__class__.__name__}: {e}") from e

    error = getattr(response, "error", None)
    if error:
        raise StoreError(f"Failed to {action}: {error}")

    return getattr(response, "data", None) or []


__all__ = ["AsyncClient", "create_supabase_client", "execute_query"]
