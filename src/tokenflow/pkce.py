"""Proof Key for Code Exchange (RFC 7636).

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from enum import Enum

from pydantic import BaseModel, ConfigDict

from ._options import AuthCodeOption, set_auth_url_param
from .exceptions import ConfigurationError, InternalError

# Unreserved characters, RFC 7636 section 4.1.
VERIFIER_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
)
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128
DEFAULT_VERIFIER_LENGTH = 64


class PKCEMethod(str, Enum):
    """Code challenge transformation."""

    PLAIN = "plain"
    S256 = "S256"
    S384 = "S384"
    S512 = "S512"


_HASHES = {
    PKCEMethod.S256: hashlib.sha256,
    PKCEMethod.S384: hashlib.sha384,
    PKCEMethod.S512: hashlib.sha512,
}


def _random_verifier(length: int) -> str:
    try:
        return "".join(secrets.choice(VERIFIER_ALPHABET) for _ in range(length))
    except OSError as e:
        raise InternalError("could not read random bytes") from e


def calculate_challenge(verifier: str, method: PKCEMethod | str) -> str:
    """Derive the code challenge for ``verifier``.

    Raises:
        ConfigurationError: If ``method`` is not a known challenge method.

    """
    try:
        method = PKCEMethod(method)
    except ValueError as e:
        raise ConfigurationError(f"invalid method {method}") from e
    if method is PKCEMethod.PLAIN:
        return verifier
    digest = _HASHES[method](verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class PKCE(BaseModel):
    """A verifier and the challenge derived from it.

    Produce one per authorization attempt: pass ``auth_code_url_options()``
    when building the authorization URL and ``exchange_options()`` when
    exchanging the returned code.
    """

    model_config = ConfigDict(frozen=True)

    method: PKCEMethod
    challenge: str
    verifier: str

    @classmethod
    def new(cls) -> PKCE:
        """Generate an S256 pair with a 64 character verifier."""
        return cls.new_with_method_verifier_length(PKCEMethod.S256, DEFAULT_VERIFIER_LENGTH)

    @classmethod
    def new_with_method_verifier_length(
        cls, method: PKCEMethod | str, verifier_length: int
    ) -> PKCE:
        """Generate a pair with a custom method and verifier length.

        Args:
            method: One of plain, S256, S384 or S512
            verifier_length: Between 43 and 128 characters

        Returns:
            The generated PKCE parameters.

        Raises:
            ConfigurationError: If the length is out of range or the method is unknown.

        """
        if not MIN_VERIFIER_LENGTH <= verifier_length <= MAX_VERIFIER_LENGTH:
            raise ConfigurationError("verifier has to be between 43 and 128 chars long")
        verifier = _random_verifier(verifier_length)
        challenge = calculate_challenge(verifier, method)
        return cls(method=PKCEMethod(method), challenge=challenge, verifier=verifier)

    def challenge_option(self) -> AuthCodeOption:
        return set_auth_url_param("code_challenge", self.challenge)

    def method_option(self) -> AuthCodeOption:
        return set_auth_url_param("code_challenge_method", self.method.value)

    def verifier_option(self) -> AuthCodeOption:
        return set_auth_url_param("code_verifier", self.verifier)

    def auth_code_url_options(self) -> list[AuthCodeOption]:
        """Options carrying ``code_challenge`` and ``code_challenge_method``."""
        return [self.challenge_option(), self.method_option()]

    def exchange_options(self) -> list[AuthCodeOption]:
        """Options carrying ``code_verifier`` and ``code_challenge_method``."""
        return [self.verifier_option(), self.method_option()]
