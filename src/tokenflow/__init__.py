"""
Tokenflow

OAuth 2.0 client library for asyncio applications built on httpx.
Provides the authorization code (with PKCE), client credentials, password,
refresh, device and token exchange flows, token caching and refreshing, and
Google external account credentials.
"""

from ._oauth import Config, RefreshTokenSource
from ._options import (
    ACCESS_TYPE_OFFLINE,
    ACCESS_TYPE_ONLINE,
    APPROVAL_FORCE,
    AuthCodeOption,
    set_auth_url_param,
)
from ._reuse import ReuseTokenSource, StaticTokenSource, TokenAuth, TokenSource, reuse_token_source
from .exceptions import *
from .models import *
from .pkce import PKCE, PKCEMethod

__version__ = "1.0.0"
__author__ = "Tokenflow Team"

__all__ = [
    "Config",
    "RefreshTokenSource",
    # Token sources
    "ReuseTokenSource",
    "StaticTokenSource",
    "TokenAuth",
    "TokenSource",
    "reuse_token_source",
    # Auth code options
    "ACCESS_TYPE_OFFLINE",
    "ACCESS_TYPE_ONLINE",
    "APPROVAL_FORCE",
    "AuthCodeOption",
    "set_auth_url_param",
    "PKCE",
    "PKCEMethod",
    # Exceptions
    "TokenFlowError",
    "ConfigurationError",
    "RetrieveError",
    "InvalidResponseError",
    "TimeoutError",
    "NetworkError",
    "SourceError",
    "ExecutableExitCodeError",
    "UserDefinedError",
    "MalformedFailureError",
    "ExpiredTokenError",
    "InternalError",
    # Models
    "Algorithm",
    "AuthStyle",
    "DeviceAuthResponse",
    "Endpoint",
    "PrivateKeyAuth",
    "TLSAuth",
    "Token",
]
