"""
Tests for `domain/attribution.py` and `services/attribution_capture.py`.

Covers rules:
- A stored field is never replaced by an absent value on a later page load.
- A present URL parameter overwrites the stored value.
- The session token is generated once and reused.
- Capture degrades to an all-null context when storage is unavailable.
"""

from __future__ import annotations

import json
import re
from dataclasses import FrozenInstanceError

import pytest

from domain.attribution import (
    TRACKED_KEYS,
    AttributionContext,
    generate_token,
    merge_attribution,
    parse_query_params,
)
from services.attribution_capture import (
    STORAGE_KEY,
    MemorySessionStorage,
    capture,
    clear_attribution,
    get_stored_attribution,
    has_valid_attribution,
)


class BrokenStorage:
    """Storage whose every access fails (e.g. storage disabled in the browser)."""

    def get_item(self, key):
        raise OSError("storage unavailable")

    def set_item(self, key, value):
        raise OSError("storage unavailable")

    def remove_item(self, key):
        raise OSError("storage unavailable")


def test_page_load_without_query_keeps_captured_utms() -> None:
    """?utm_source=fb&utm_campaign=sale followed by a bare page load keeps both values."""

    storage = MemorySessionStorage()

    capture("?utm_source=fb&utm_campaign=sale", storage)
    context = capture("", storage)

    assert context.utm_source == "fb"
    assert context.utm_campaign == "sale"

    stored = get_stored_attribution(storage)
    assert stored is not None
    assert stored.utm_source == "fb"
    assert stored.utm_campaign == "sale"


def test_populated_fields_never_become_null_across_page_loads() -> None:
    """Walk a sequence of page loads and check no populated field is ever lost."""

    storage = MemorySessionStorage()
    page_loads = [
        "?utm_source=google&gclid=abc",
        "",
        "?utm_medium=cpc",
        "?fbclid=xyz&utm_source=",
        "?unrelated=1",
        "?utm_term=shoes&utm_content=banner",
        "",
    ]

    seen: dict[str, str] = {}
    for query in page_loads:
        context = capture(query, storage)
        for key in TRACKED_KEYS:
            if key in seen:
                assert context.get(key) is not None, f"{key} was reset by {query!r}"
            if context.get(key) is not None:
                seen[key] = context.get(key)

    final = get_stored_attribution(storage)
    assert final.utm_source == "google"
    assert final.utm_medium == "cpc"
    assert final.utm_term == "shoes"
    assert final.utm_content == "banner"
    assert final.click_ids.gclid == "abc"
    assert final.click_ids.fbclid == "xyz"


def test_present_parameter_overwrites_stored_value() -> None:
    storage = MemorySessionStorage()

    capture("?utm_source=fb", storage)
    context = capture("?utm_source=tiktok&ttclid=t1", storage)

    assert context.utm_source == "tiktok"
    assert context.click_ids.ttclid == "t1"


def test_token_is_generated_once_and_reused() -> None:
    storage = MemorySessionStorage()

    first = capture("?utm_source=fb", storage)
    second = capture("?utm_source=google", storage)

    assert first.token is not None
    assert second.token == first.token


def test_token_format() -> None:
    assert re.fullmatch(r"\d{13}-[0-9a-z]{9}", generate_token())


def test_capture_persists_flat_storage_layout() -> None:
    storage = MemorySessionStorage()

    capture("utm_source=fb&fbclid=click-1", storage)

    raw = json.loads(storage.get_item(STORAGE_KEY))
    assert raw["utm_source"] == "fb"
    assert raw["fbclid"] == "click-1"
    assert raw["utm_token"]
    assert raw["gclid"] is None


def test_capture_with_broken_storage_returns_empty_context() -> None:
    context = capture("?utm_source=fb", BrokenStorage())

    assert context == AttributionContext.empty()


def test_capture_without_storage_returns_empty_context() -> None:
    assert capture("?utm_source=fb", None) == AttributionContext.empty()


def test_corrupt_stored_value_is_ignored() -> None:
    storage = MemorySessionStorage()
    storage.set_item(STORAGE_KEY, "{not json")

    context = capture("?utm_medium=email", storage)

    assert context.utm_medium == "email"
    assert context.utm_source is None


def test_clear_attribution_resets_session() -> None:
    storage = MemorySessionStorage()
    capture("?utm_source=fb", storage)
    assert has_valid_attribution(storage) is True

    clear_attribution(storage)

    assert get_stored_attribution(storage) is None
    assert has_valid_attribution(storage) is False


def test_parse_query_params_ignores_blank_and_unknown_keys() -> None:
    params = parse_query_params("?utm_source=fb&utm_medium=&foo=bar&utm_source=second")

    assert params == {"utm_source": "fb"}


def test_merge_uses_token_factory_only_without_existing_token() -> None:
    calls = []

    def factory() -> str:
        calls.append(1)
        return "tok"

    merged = merge_attribution(None, {"utm_source": "fb"}, token_factory=factory)
    again = merge_attribution(merged, {}, token_factory=factory)

    assert merged.token == "tok"
    assert again.token == "tok"
    assert len(calls) == 1


def test_attribution_context_is_immutable() -> None:
    context = AttributionContext(utm_source="fb")

    with pytest.raises(FrozenInstanceError):
        context.utm_source = "google"  # type: ignore[misc]


def test_storage_dict_round_trip_keeps_click_ids() -> None:
    context = merge_attribution(None, {"fbclid": "f", "gclid": "g"}, token_factory=lambda: "t")

    restored = AttributionContext.from_storage_dict(context.to_storage_dict())

    assert restored == context
