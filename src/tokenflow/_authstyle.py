"""Process-wide memo of the client-authentication style each token URL accepts.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import logging
import threading

from .models.oauth_models import AuthStyle

logger = logging.getLogger(__name__)


class AuthStyleCache:
    """Mapping of token URL to the auth style that last succeeded there."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._styles: dict[str, AuthStyle] = {}

    def lookup(self, token_url: str) -> AuthStyle | None:
        """Return the remembered style for ``token_url``, if any."""
        with self._lock:
            return self._styles.get(token_url)

    def remember(self, token_url: str, style: AuthStyle) -> None:
        """Record ``style`` as the working style for ``token_url``."""
        with self._lock:
            previous = self._styles.get(token_url)
            self._styles[token_url] = style
        if previous is not style:
            logger.debug("Auth style for %s resolved to %s", token_url, style.value)

    def clear(self) -> None:
        """Forget every remembered style."""
        with self._lock:
            self._styles.clear()


auth_style_cache = AuthStyleCache()
