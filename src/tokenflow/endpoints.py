"""Endpoints of well-known OAuth 2.0 providers.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

from .models.oauth_models import AuthStyle, Endpoint

GOOGLE = Endpoint(
    auth_url="https://accounts.google.com/o/oauth2/auth",
    token_url="https://oauth2.googleapis.com/token",
    device_auth_url="https://oauth2.googleapis.com/device/code",
    auth_style=AuthStyle.IN_PARAMS,
)

GITHUB = Endpoint(
    auth_url="https://github.com/login/oauth/authorize",
    token_url="https://github.com/login/oauth/access_token",
    device_auth_url="https://github.com/login/device/code",
)

SLACK = Endpoint(
    auth_url="https://slack.com/oauth/authorize",
    token_url="https://slack.com/api/oauth.access",
)

DISCORD = Endpoint(
    auth_url="https://discord.com/oauth2/authorize",
    token_url="https://discord.com/api/oauth2/token",
)

APPLE = Endpoint(
    auth_url="https://appleid.apple.com/auth/authorize",
    token_url="https://appleid.apple.com/auth/token",
)


def azure_ad(tenant: str = "") -> Endpoint:
    """Microsoft identity platform v2 endpoint for ``tenant``.

    An empty tenant means "common", which accepts both work and personal
    Microsoft accounts.
    """
    tenant = tenant or "common"
    base = f"https://login.microsoftonline.com/{tenant}/oauth2/v2.0"
    return Endpoint(
        auth_url=f"{base}/authorize",
        token_url=f"{base}/token",
        device_auth_url=f"{base}/devicecode",
    )
