"""Client authentication for token endpoint requests.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import base64
from urllib.parse import quote_plus

from ._privatekeyjwt import assertion_values
from .exceptions import ConfigurationError
from .models.oauth_models import AuthStyle, PrivateKeyAuth


def basic_authorization(client_id: str, client_secret: str) -> str:
    """Return the ``Authorization`` header value for client_secret_basic.

    Both parts are form-escaped before encoding (RFC 6749 section 2.3.1).
    """
    raw = f"{quote_plus(client_id, safe='')}:{quote_plus(client_secret, safe='')}"
    return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


def apply_client_auth(
    style: AuthStyle,
    client_id: str,
    client_secret: str,
    params: dict[str, str | list[str]],
    headers: dict[str, str],
    *,
    token_url: str = "",
    private_key_auth: PrivateKeyAuth | None = None,
) -> None:
    """Add client credentials to ``params`` or ``headers`` in place.

    Args:
        style: Resolved auth style, never ``AuthStyle.AUTO``
        client_id: OAuth client identifier
        client_secret: Client secret, empty for public clients
        params: Form parameters of the token request
        headers: Headers of the token request
        token_url: Token endpoint, used as the default assertion audience
        private_key_auth: Key settings for ``AuthStyle.PRIVATE_KEY_JWT``

    Raises:
        ConfigurationError: If the style needs settings that are missing.

    """
    if style is AuthStyle.IN_HEADER:
        headers["Authorization"] = basic_authorization(client_id, client_secret)
    elif style is AuthStyle.IN_PARAMS:
        if client_id:
            params["client_id"] = client_id
        if client_secret:
            params["client_secret"] = client_secret
    elif style is AuthStyle.PRIVATE_KEY_JWT:
        if private_key_auth is None:
            raise ConfigurationError("private_key_auth is required for private_key_jwt")
        params.update(assertion_values(client_id, token_url, private_key_auth))
    elif style is AuthStyle.TLS:
        params["client_id"] = client_id
    else:
        msg = f"auth style {style.value} must be resolved before use"
        raise ConfigurationError(msg)
