"""
Domain: Attribution context.

One AttributionContext exists per client session. It carries the marketing
source identifiers (UTM parameters and ad-platform click ids) used to credit a
conversion to a traffic source.

Rules implemented here:
- A field that is already set is never replaced by an absent value; only a
  present, non-empty URL parameter may overwrite it.
- The session token is generated once and reused on every later merge.

This module is pure: storage access lives in services/attribution_capture.py.
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs

UTM_KEYS: tuple[str, ...] = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
)
CLICK_ID_KEYS: tuple[str, ...] = ("fbclid", "gclid", "ttclid")
TRACKED_KEYS: tuple[str, ...] = UTM_KEYS + CLICK_ID_KEYS

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


def generate_token() -> str:
    """Session correlator: `<epoch-ms>-<9 random base36 chars>`."""

    suffix = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True, slots=True)
class ClickIds:
    fbclid: Optional[str] = None
    gclid: Optional[str] = None
    ttclid: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AttributionContext:
    """
    Immutable snapshot of a session's attribution identifiers.

    Stored flat (the `utm_data` layout) so the token is kept under `utm_token`
    and click ids sit next to the UTM fields.
    """

    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None
    click_ids: ClickIds = field(default_factory=ClickIds)
    token: Optional[str] = None

    @classmethod
    def empty(cls) -> "AttributionContext":
        return cls()

    def get(self, key: str) -> Optional[str]:
        """Look up a recognized key (UTM or click id) by name."""

        if key in CLICK_ID_KEYS:
            return getattr(self.click_ids, key)
        if key in UTM_KEYS:
            return getattr(self, key)
        if key in ("utm_token", "token"):
            return self.token
        raise KeyError(key)

    def has_any_value(self) -> bool:
        return self.token is not None or any(self.get(key) is not None for key in TRACKED_KEYS)

    def to_storage_dict(self) -> dict[str, Optional[str]]:
        data: dict[str, Optional[str]] = {key: self.get(key) for key in UTM_KEYS}
        data["utm_token"] = self.token
        for key in CLICK_ID_KEYS:
            data[key] = self.get(key)
        return data

    @classmethod
    def from_storage_dict(cls, data: Mapping[str, Any]) -> "AttributionContext":
        def _text(key: str) -> Optional[str]:
            value = data.get(key)
            if value is None or value == "":
                return None
            return str(value)

        return cls(
            utm_source=_text("utm_source"),
            utm_medium=_text("utm_medium"),
            utm_campaign=_text("utm_campaign"),
            utm_term=_text("utm_term"),
            utm_content=_text("utm_content"),
            click_ids=ClickIds(
                fbclid=_text("fbclid"),
                gclid=_text("gclid"),
                ttclid=_text("ttclid"),
            ),
            token=_text("utm_token"),
        )


def parse_query_params(query_string: str) -> dict[str, str]:
    """
    Extract the recognized keys from a raw query string.

    Accepts a leading '?'. Blank values are treated as absent and the first
    occurrence of a repeated key wins.
    """

    parsed = parse_qs(query_string.lstrip("?"), keep_blank_values=False)
    return {key: parsed[key][0] for key in TRACKED_KEYS if parsed.get(key)}


def merge_attribution(
    existing: Optional[AttributionContext],
    params: Mapping[str, str],
    *,
    token_factory=generate_token,
) -> AttributionContext:
    """
    Merge fresh URL parameters into a stored context.

    For each recognized key: URL value if present, else the stored value,
    else None. The token is kept if one exists, otherwise a new one is made.
    """

    base = existing or AttributionContext.empty()

    def _pick(key: str) -> Optional[str]:
        value = params.get(key)
        if value:
            return value
        return base.get(key)

    return AttributionContext(
        utm_source=_pick("utm_source"),
        utm_medium=_pick("utm_medium"),
        utm_campaign=_pick("utm_campaign"),
        utm_term=_pick("utm_term"),
        utm_content=_pick("utm_content"),
        click_ids=ClickIds(
            fbclid=_pick("fbclid"),
            gclid=_pick("gclid"),
            ttclid=_pick("ttclid"),
        ),
        token=base.token or token_factory(),
    )


__all__ = [
    "AttributionContext",
    "ClickIds",
    "CLICK_ID_KEYS",
    "TRACKED_KEYS",
    "UTM_KEYS",
    "generate_token",
    "merge_attribution",
    "parse_query_params",
]
