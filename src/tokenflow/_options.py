"""Request parameter options for authorization URLs and token exchanges.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

from collections.abc import Callable

Params = dict[str, "str | list[str]"]
AuthCodeOption = Callable[[Params], None]


def set_auth_url_param(key: str, value: str) -> AuthCodeOption:
    """Return an option that sets ``key`` to ``value``, overriding built-ins."""

    def apply(params: Params) -> None:
        params[key] = value

    return apply


def apply_options(params: Params, options: tuple[AuthCodeOption, ...]) -> Params:
    """Run each option against ``params`` in order and return it."""
    for option in options:
        option(params)
    return params


# Request no refresh token (the server default).
ACCESS_TYPE_ONLINE = set_auth_url_param("access_type", "online")
# Request a refresh token along with the access token.
ACCESS_TYPE_OFFLINE = set_auth_url_param("access_type", "offline")
# Always show the consent screen.
APPROVAL_FORCE = set_auth_url_param("prompt", "consent")
