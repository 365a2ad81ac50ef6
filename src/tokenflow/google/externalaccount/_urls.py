"""Trusted Google endpoint checks for external account credentials.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from ...exceptions import ConfigurationError


def _host_patterns(service: str) -> tuple[re.Pattern[str], ...]:
    label = r"[^\.\s\/\\]+"
    return tuple(
        re.compile(pattern)
        for pattern in (
            rf"^{label}\.{service}\.googleapis\.com$",
            rf"^{service}\.googleapis\.com$",
            rf"^{service}\.{label}\.googleapis\.com$",
            rf"^{label}-{service}\.googleapis\.com$",
            rf"^{service}-{label}\.p\.googleapis\.com$",
        )
    )


STS_HOST_PATTERNS = _host_patterns("sts")
IMPERSONATION_HOST_PATTERNS = _host_patterns("iamcredentials")

WORKFORCE_AUDIENCE_PATTERN = re.compile(
    r"^//iam\.googleapis\.com/locations/[^/]+/workforcePools/"
)
IMPERSONATED_EMAIL_PATTERN = re.compile(
    r"https://iamcredentials\.googleapis\.com/v1/projects/-/serviceAccounts/(.*@.*):generateAccessToken"
)


def is_valid_url(url: str, patterns: tuple[re.Pattern[str], ...]) -> bool:
    """Report whether ``url`` is https and its host fully matches one of ``patterns``."""
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError:
        return False
    if parts.scheme != "https" or not hostname:
        return False
    hostname = hostname.lower()
    return any(pattern.fullmatch(hostname) for pattern in patterns)


def validate_token_url(url: str) -> None:
    """Raise ConfigurationError unless ``url`` is a Google STS endpoint."""
    if not is_valid_url(url, STS_HOST_PATTERNS):
        raise ConfigurationError("oauth2/google: invalid TokenURL provided while constructing tokenSource")


def validate_impersonation_url(url: str) -> None:
    """Raise ConfigurationError unless ``url`` is a Google IAM credentials endpoint."""
    if not is_valid_url(url, IMPERSONATION_HOST_PATTERNS):
        raise ConfigurationError(
            "oauth2/google: invalid ServiceAccountImpersonationURL provided while constructing tokenSource"
        )


def is_workforce_audience(audience: str) -> bool:
    return WORKFORCE_AUDIENCE_PATTERN.match(audience) is not None


def impersonated_email(impersonation_url: str) -> str:
    """Extract the service account email from an impersonation URL, or ""."""
    match = IMPERSONATED_EMAIL_PATTERN.search(impersonation_url)
    return match.group(1) if match else ""
