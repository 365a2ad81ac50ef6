"""Tests for the token model and form encoding helpers.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from tokenflow import _urlvalues
from tokenflow.models.token_models import Token, utcnow


def test_token_without_expiry_never_expires() -> None:
    token = Token(access_token="abc")
    assert not token.expired()
    assert token.valid


def test_token_expires_early() -> None:
    """A token counts as expired ten seconds before its expiry."""
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    token = Token(access_token="abc", expiry=now + timedelta(seconds=9))

    assert token.expired(now)
    assert not token.expired(now - timedelta(seconds=5))


def test_empty_access_token_is_invalid() -> None:
    token = Token(access_token="", expiry=utcnow() + timedelta(hours=1))
    assert not token.valid


def test_naive_expiry_is_utc() -> None:
    token = Token(access_token="abc", expiry=datetime(2030, 1, 1))
    assert token.expiry == datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("token_type", "expected"),
    [("", "Bearer"), ("bearer", "Bearer"), ("MaC", "MAC"), ("basic", "Basic"), ("DPoP", "DPoP")],
)
def test_canonical_type(token_type: str, expected: str) -> None:
    assert Token(access_token="abc", token_type=token_type).canonical_type() == expected


def test_set_auth_header() -> None:
    request = httpx.Request("GET", "https://api.tokenflow.test/")
    Token(access_token="abc", token_type="bearer").set_auth_header(request)
    assert request.headers["Authorization"] == "Bearer abc"


def test_extra_fields() -> None:
    token = Token(access_token="abc").with_extra({"id_token": "jwt", "expires": 10})

    assert token.extra_field("id_token") == "jwt"
    assert token.extra_field("expires") == 10
    assert token.extra_field("missing") is None


def test_encode_sorts_keys_and_escapes() -> None:
    encoded = _urlvalues.encode({"scope": "a b", "b": ["2", "1"], "a": "x&y"})
    assert encoded == "a=x%26y&b=2&b=1&scope=a+b"


def test_parse_keeps_blank_values() -> None:
    values = _urlvalues.parse("access_token=abc&scope=&expires_in=60")

    assert _urlvalues.first(values, "scope") == ""
    assert _urlvalues.first(values, "expires_in") == "60"
    assert _urlvalues.first(values, "missing") == ""


def test_parse_skips_empty_pairs() -> None:
    values = _urlvalues.parse("access_token=abc&&flag&")

    assert values == {"access_token": ["abc"], "flag": [""]}


def test_parse_rejects_semicolons() -> None:
    with pytest.raises(ValueError, match="semicolon"):
        _urlvalues.parse("access_token=abc;scope=user")
