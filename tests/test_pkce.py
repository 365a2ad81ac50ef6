"""Tests for PKCE verifier and challenge generation.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import base64
import hashlib
from collections import Counter

import pytest

from tokenflow.exceptions import ConfigurationError, InternalError
from tokenflow.pkce import (
    DEFAULT_VERIFIER_LENGTH,
    PKCE,
    VERIFIER_ALPHABET,
    PKCEMethod,
    calculate_challenge,
)


def _apply(options: list) -> dict:
    params: dict = {}
    for option in options:
        option(params)
    return params


def test_new_defaults_to_s256() -> None:
    """A default pair uses S256 and a 64 character unreserved verifier."""
    pkce = PKCE.new()

    assert pkce.method is PKCEMethod.S256
    assert len(pkce.verifier) == DEFAULT_VERIFIER_LENGTH
    assert set(pkce.verifier) <= set(VERIFIER_ALPHABET)
    digest = hashlib.sha256(pkce.verifier.encode()).digest()
    assert pkce.challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def test_plain_challenge_is_verifier() -> None:
    pkce = PKCE.new_with_method_verifier_length(PKCEMethod.PLAIN, 43)
    assert pkce.challenge == pkce.verifier


@pytest.mark.parametrize(
    ("method", "algorithm"),
    [("S384", hashlib.sha384), ("S512", hashlib.sha512)],
)
def test_longer_hash_methods(method: str, algorithm) -> None:
    """S384 and S512 hash the verifier with the matching SHA-2 function."""
    pkce = PKCE.new_with_method_verifier_length(method, 128)
    expected = base64.urlsafe_b64encode(algorithm(pkce.verifier.encode()).digest())
    assert pkce.challenge == expected.rstrip(b"=").decode()
    assert "=" not in pkce.challenge


@pytest.mark.parametrize("length", [42, 129])
def test_verifier_length_out_of_range(length: int) -> None:
    with pytest.raises(ConfigurationError, match="between 43 and 128"):
        PKCE.new_with_method_verifier_length(PKCEMethod.S256, length)


def test_unknown_method_rejected() -> None:
    with pytest.raises(ConfigurationError, match="invalid method"):
        calculate_challenge("x" * 43, "S1")


def test_challenge_is_stable() -> None:
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    # RFC 7636 appendix B.
    assert calculate_challenge(verifier, "S256") == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
    assert calculate_challenge(verifier, "S256") == calculate_challenge(verifier, PKCEMethod.S256)


def test_options() -> None:
    """URL options carry the challenge; exchange options carry the verifier."""
    pkce = PKCE.new()

    assert _apply(pkce.auth_code_url_options()) == {
        "code_challenge": pkce.challenge,
        "code_challenge_method": "S256",
    }
    assert _apply(pkce.exchange_options()) == {
        "code_verifier": pkce.verifier,
        "code_challenge_method": "S256",
    }


def test_fresh_verifiers_differ() -> None:
    assert PKCE.new().verifier != PKCE.new().verifier


@pytest.mark.parametrize("length", [43, 128])
def test_verifier_boundary_lengths(length: int) -> None:
    pkce = PKCE.new_with_method_verifier_length(PKCEMethod.S256, length)

    assert len(pkce.verifier) == length
    assert set(pkce.verifier) <= set(VERIFIER_ALPHABET)


def test_verifier_characters_are_uniform() -> None:
    """Every unreserved character is drawn about equally often."""
    verifiers = [PKCE.new_with_method_verifier_length(PKCEMethod.PLAIN, 128).verifier for _ in range(2000)]
    counts = Counter("".join(verifiers))

    assert set(counts) == set(VERIFIER_ALPHABET)
    assert max(counts.values()) / min(counts.values()) < 1.2


def test_random_source_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(_: str) -> str:
        raise OSError("no entropy")

    monkeypatch.setattr("tokenflow.pkce.secrets.choice", broken)

    with pytest.raises(InternalError, match="could not read random bytes"):
        PKCE.new()
