"""Slug utilities for product addresses."""

from __future__ import annotations

import re
import unicodedata

SLUG_PATTERN = re.compile(r"[a-z0-9]+(?:-[a-z0-9]+)*")
PRODUCT_ID_PATTERN = re.compile(r"[0-9a-f]{32}")
DEFAULT_MAX_LENGTH = 80
FALLBACK_PREFIX = "product"
# Letters NFKD does not decompose into an ASCII base.
TRANSLITERATIONS = str.maketrans({
    "ø": "o",
    "ł": "l",
    "đ": "d",
    "ß": "ss",
    "æ": "ae",
    "œ": "oe",
    "þ": "th",
})


class SlugError(ValueError):
    """Raised when a slug value cannot be used."""


def slugify(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Convert a display name into a lowercase hyphenated slug candidate.

    Never fails: input without any usable character yields ``""`` and the
    caller decides which fallback seed to use.
    """
    if not isinstance(text, str):
        return ""
    normalized = unicodedata.normalize("NFKD", text)
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    normalized = normalized.lower().translate(TRANSLITERATIONS)
    normalized = re.sub(r"[^a-z0-9\s-]", "", normalized)
    normalized = re.sub(r"[\s-]+", "-", normalized).strip("-")
    if max_length and len(normalized) > max_length:
        truncated = normalized[:max_length]
        # Cut on a word boundary when one is available.
        if normalized[max_length] != "-" and "-" in truncated:
            truncated = truncated.rsplit("-", 1)[0]
        normalized = truncated.strip("-")
    return normalized


def is_slug(value: object) -> bool:
    """Return True when value matches the managed slug pattern."""
    return isinstance(value, str) and bool(SLUG_PATTERN.fullmatch(value))


def is_product_id(value: object) -> bool:
    """Return True when value has the shape of an opaque product identifier."""
    return isinstance(value, str) and bool(PRODUCT_ID_PATTERN.fullmatch(value))


def fallback_seed(product_id: str) -> str:
    """Seed used when a display name produces an empty slug."""
    if not is_product_id(product_id):
        raise SlugError("A fallback slug needs a valid product identifier.")
    return f"{FALLBACK_PREFIX}-{product_id[:8]}"


def with_suffix(candidate: str, suffix: int) -> str:
    """Return the probe value for the given collision suffix."""
    if suffix <= 0:
        return candidate
    return f"{candidate}-{suffix}"
