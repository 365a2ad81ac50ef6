"""Tokenflow models package.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from .oauth_models import (
    Algorithm,
    AuthStyle,
    DeviceAuthResponse,
    Endpoint,
    PrivateKeyAuth,
    TLSAuth,
)
from .token_models import EXPIRY_DELTA, Token

__all__ = [
    # OAuth models
    "Algorithm",
    "AuthStyle",
    "DeviceAuthResponse",
    "Endpoint",
    "PrivateKeyAuth",
    "TLSAuth",
    # Token models
    "EXPIRY_DELTA",
    "Token",
]
