"""Form and query-string encoding with stable key ordering.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from urllib.parse import parse_qs, quote_plus

FormValues = Mapping[str, "str | Sequence[str]"]


def encode(values: FormValues) -> str:
    """Encode values as ``application/x-www-form-urlencoded``, sorted by key.

    Multi-valued keys keep their value order.
    """
    parts: list[str] = []
    for key in sorted(values):
        value = values[key]
        items = [value] if isinstance(value, str) else list(value)
        prefix = quote_plus(key, safe="") + "="
        parts.extend(prefix + quote_plus(item, safe="") for item in items)
    return "&".join(parts)


def parse(text: str) -> dict[str, list[str]]:
    """Parse a form-encoded body or query string, keeping blank values.

    Empty pairs such as a trailing ``&`` are skipped and a pair without
    ``=`` is read as a key with a blank value.

    Raises:
        ValueError: If a pair contains a semicolon.

    """
    for pair in text.split("&"):
        if ";" in pair:
            raise ValueError(f"invalid semicolon separator in form data: {pair!r}")
    return parse_qs(text, keep_blank_values=True)


def first(values: Mapping[str, list[str]], key: str) -> str:
    """Return the first value for ``key``, or an empty string."""
    found = values.get(key)
    return found[0] if found else ""
