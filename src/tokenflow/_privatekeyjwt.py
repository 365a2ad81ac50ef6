"""RFC 7523 private-key JWT client assertions.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .exceptions import ConfigurationError, InternalError
from .models.oauth_models import PrivateKeyAuth
from .models.token_models import utcnow

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


def load_private_key(auth: PrivateKeyAuth) -> Any:
    """Parse the PEM key of ``auth`` for its algorithm family.

    Returns:
        An RSA key for RS* algorithms or an EC key for ES* algorithms.

    Raises:
        ConfigurationError: If the PEM cannot be parsed or holds the wrong key type.

    """
    algorithm = auth.algorithm.value
    try:
        key = serialization.load_pem_private_key(auth.key.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        msg = f"could not parse private key from PEM {algorithm}"
        raise ConfigurationError(msg) from e

    expected = rsa.RSAPrivateKey if algorithm.startswith("RS") else ec.EllipticCurvePrivateKey
    if not isinstance(key, expected):
        msg = f"could not parse private key from PEM {algorithm}"
        raise ConfigurationError(msg)
    return key


def default_audience(token_url: str) -> list[str]:
    """Audience used when none is configured: the token URL and its issuer."""
    return [token_url, token_url.removesuffix("/token")]


def assertion_values(
    client_id: str,
    token_url: str,
    auth: PrivateKeyAuth,
    now: datetime | None = None,
) -> dict[str, str]:
    """Build the ``client_assertion`` form values for a token request.

    Args:
        client_id: Used as both issuer and subject
        token_url: Token endpoint, the default audience
        auth: Key, algorithm, lifetime and audience settings
        now: Issue time, defaults to the current time

    Returns:
        The ``client_assertion`` and ``client_assertion_type`` form values.

    """
    key = load_private_key(auth)
    issued = now or utcnow()
    claims = {
        "iss": client_id,
        "sub": client_id,
        "aud": list(auth.audience) or default_audience(token_url),
        "jti": str(uuid.uuid4()),
        "iat": int(issued.timestamp()),
        "exp": int((issued + auth.lifetime).timestamp()),
    }
    try:
        assertion = jwt.encode(claims, key, algorithm=auth.algorithm.value)
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise InternalError("could not sign client assertion") from e

    return {
        "client_assertion": assertion,
        "client_assertion_type": CLIENT_ASSERTION_TYPE,
    }
