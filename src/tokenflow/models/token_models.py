"""Token models for tokenflow.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Tokens are treated as expired this long before their on-wire expiry.
EXPIRY_DELTA = timedelta(seconds=10)

# Lifetimes beyond this are capped so expiry arithmetic stays in range.
MAX_EXPIRES_IN = 2**31 - 1


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Token(BaseModel):
    """OAuth 2.0 token.

    ``expiry`` of ``None`` means the token carries no expiry and never goes
    stale on its own. ``extra`` holds any response fields that are not part
    of the standard token response.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = ""
    refresh_token: str = ""
    expiry: datetime | None = None
    extra: dict[str, Any] = Field(default_factory=dict)
    expiry_delta: timedelta = Field(default=EXPIRY_DELTA, exclude=True)

    @field_validator("expiry")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def canonical_type(self) -> str:
        """Return the token type in its canonical capitalisation.

        Returns:
            "Bearer" when unset, otherwise the normalised scheme name.

        """
        lowered = self.token_type.lower()
        if lowered in ("", "bearer"):
            return "Bearer"
        if lowered == "mac":
            return "MAC"
        if lowered == "basic":
            return "Basic"
        return self.token_type

    def set_auth_header(self, request: httpx.Request) -> None:
        """Set the Authorization header of ``request`` to this token."""
        request.headers["Authorization"] = f"{self.canonical_type()} {self.access_token}"

    def extra_field(self, key: str) -> Any | None:
        """Return an extra response field, or None when absent."""
        return self.extra.get(key)

    def with_extra(self, extra: dict[str, Any]) -> Token:
        """Return a copy of the token carrying ``extra`` as its extra fields."""
        return self.model_copy(update={"extra": dict(extra)})

    def expired(self, now: datetime | None = None) -> bool:
        """Report whether the token is within ``expiry_delta`` of its expiry."""
        if self.expiry is None:
            return False
        current = now or utcnow()
        return self.expiry <= current + self.expiry_delta

    @property
    def valid(self) -> bool:
        """True when the token has an access token and is not expired."""
        return bool(self.access_token) and not self.expired()
