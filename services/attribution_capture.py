"""
UTM / click-id capture service.

Reads a page's query string, merges it into the attribution context already
stored for the session and writes the result back. Capture never fails: if
the session storage cannot be read or written, a warning is logged and an
all-null context is returned.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Protocol

from domain.attribution import AttributionContext, merge_attribution, parse_query_params

logger = logging.getLogger(__name__)

# Storage key holding the serialized context.
STORAGE_KEY: str = "utm_data"


class SessionStorage(Protocol):
    """Key-value string storage scoped to one client session."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemorySessionStorage:
    """In-process SessionStorage; the API keeps one per session id."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


def get_stored_attribution(storage: Optional[SessionStorage]) -> Optional[AttributionContext]:
    """
    Load the stored context, or None when nothing (readable) is stored.
    """

    if storage is None:
        return None
    try:
        raw = storage.get_item(STORAGE_KEY)
        if not raw:
            return None
        data = json.loads(raw)
    except (OSError, ValueError, TypeError) as e:
        logger.warning(f"Could not read stored attribution: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning("Stored attribution is not an object; ignoring it")
        return None
    return AttributionContext.from_storage_dict(data)


def capture(query_string: str, storage: Optional[SessionStorage]) -> AttributionContext:
    """
    Capture attribution parameters for one page load.

    Args:
        query_string: Raw query string of the current page (with or without '?')
        storage: The session's key-value storage

    Returns:
        The merged AttributionContext (all-null if storage is unavailable)

    Example:
        capture("?utm_source=fb&utm_campaign=sale", storage)
        capture("", storage).utm_source  # still "fb"
    """

    if storage is None:
        return AttributionContext.empty()

    try:
        existing = get_stored_attribution(storage)
        merged = merge_attribution(existing, parse_query_params(query_string or ""))
        if merged.has_any_value():
            storage.set_item(STORAGE_KEY, json.dumps(merged.to_storage_dict()))
    except (OSError, ValueError, TypeError) as e:
        logger.warning(f"Attribution capture degraded to empty context: {e}")
        return AttributionContext.empty()

    return merged


def clear_attribution(storage: Optional[SessionStorage]) -> None:
    """Explicit reset: drop the session's stored context."""

    if storage is None:
        return
    try:
        storage.remove_item(STORAGE_KEY)
    except OSError as e:
        logger.warning(f"Could not clear stored attribution: {e}")


def has_valid_attribution(storage: Optional[SessionStorage]) -> bool:
    stored = get_stored_attribution(storage)
    return stored is not None and stored.has_any_value()


__all__ = [
    "MemorySessionStorage",
    "STORAGE_KEY",
    "SessionStorage",
    "capture",
    "clear_attribution",
    "get_stored_attribution",
    "has_valid_attribution",
]
