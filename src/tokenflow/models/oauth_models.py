"""OAuth endpoint and client-authentication models.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AuthStyle(str, Enum):
    """How client credentials are conveyed on a token request."""

    AUTO = "auto"
    IN_HEADER = "in_header"
    IN_PARAMS = "in_params"
    PRIVATE_KEY_JWT = "private_key_jwt"
    TLS = "tls"


class Algorithm(str, Enum):
    """Signing algorithms accepted for private-key JWT client assertions."""

    RS256 = "RS256"
    RS384 = "RS384"
    RS512 = "RS512"
    ES256 = "ES256"
    ES384 = "ES384"
    ES512 = "ES512"


class Endpoint(BaseModel):
    """Authorization server endpoint URLs."""

    model_config = ConfigDict(frozen=True)

    auth_url: str = ""
    token_url: str = ""
    device_auth_url: str = ""
    auth_style: AuthStyle = AuthStyle.AUTO


class PrivateKeyAuth(BaseModel):
    """Settings for RFC 7523 private-key JWT client authentication."""

    model_config = ConfigDict(frozen=True)

    key: str
    algorithm: Algorithm = Algorithm.RS256
    lifetime: timedelta = timedelta(seconds=30)
    audience: list[str] = Field(default_factory=list)


class TLSAuth(BaseModel):
    """Client certificate and key for RFC 8705 mutual-TLS client authentication."""

    model_config = ConfigDict(frozen=True)

    certificate: str
    key: str


class DeviceAuthResponse(BaseModel):
    """RFC 8628 device authorization response."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str = ""
    expiry: datetime | None = None
    interval: int = 0
