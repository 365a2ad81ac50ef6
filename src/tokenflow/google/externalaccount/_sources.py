"""Subject token sources backed by a file, a URL or an application callback.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict

from ..._base import BaseClient, RequestConfig
from ...exceptions import ConfigurationError, SourceError

logger = logging.getLogger(__name__)

FORMAT_TEXT = "text"
FORMAT_JSON = "json"

SubjectTokenSupplier = Callable[[], "str | Awaitable[str]"]


class SubjectTokenSource(Protocol):
    """A variant of external credential that yields an STS subject token."""

    source_type: str

    async def subject_token(self) -> str: ...


class CredentialFormat(BaseModel):
    """How the subject token is laid out in a file or URL response."""

    model_config = ConfigDict(frozen=True)

    # "text" or "json"; empty means text.
    type: str = ""
    # Field holding the token when the type is json.
    subject_token_field_name: str = ""

    def validate_format(self) -> None:
        """Raise ConfigurationError for an unknown type or a json type without a field."""
        if self.type not in ("", FORMAT_TEXT, FORMAT_JSON):
            raise ConfigurationError("oauth2/google: invalid credential_source file format type")
        if self.type == FORMAT_JSON and not self.subject_token_field_name:
            raise ConfigurationError(
                "oauth2/google: subject_token_field_name is required for json format"
            )

    def extract(self, text: str, origin: str) -> str:
        """Pull the subject token out of ``text`` read from ``origin``.

        Raises:
            SourceError: If json content cannot be decoded or lacks the token field.

        """
        if self.type != FORMAT_JSON:
            return text
        try:
            data = json.loads(text)
        except ValueError as e:
            msg = f"oauth2/google: failed to unmarshal subject token {origin}: {e}"
            raise SourceError(msg) from e
        if not isinstance(data, dict) or self.subject_token_field_name not in data:
            raise SourceError(
                "oauth2/google: provided subject_token_field_name not found in credentials"
            )
        token = data[self.subject_token_field_name]
        if not isinstance(token, str):
            raise SourceError("oauth2/google: improperly formatted subject token")
        return token


class FileCredentialSource:
    """Reads the subject token from a local file."""

    source_type = "file"

    def __init__(self, path: str, credential_format: CredentialFormat) -> None:
        credential_format.validate_format()
        self.path = path
        self.format = credential_format

    async def subject_token(self) -> str:
        logger.debug("Reading subject token from %s", self.path)
        try:
            raw = await asyncio.to_thread(Path(self.path).read_bytes)
        except OSError as e:
            msg = f"oauth2/google: failed to open credential file {self.path!r}"
            raise SourceError(msg, {"path": self.path}) from e
        text = raw.decode("utf-8", errors="replace").strip()
        return self.format.extract(text, "file")


class URLCredentialSource:
    """Fetches the subject token with a GET request, such as from a metadata server."""

    source_type = "url"

    def __init__(
        self,
        url: str,
        headers: dict[str, str],
        credential_format: CredentialFormat,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        credential_format.validate_format()
        self.url = url
        self.headers = dict(headers)
        self.format = credential_format
        self._http_client = http_client

    async def subject_token(self) -> str:
        logger.debug("Fetching subject token from %s", self.url)
        async with BaseClient(self._http_client) as client:
            response = await client.request(
                "GET", self.url, config=RequestConfig(headers=self.headers)
            )
        if response.status_code != httpx.codes.OK:
            msg = f"oauth2/google: status code {response.status_code}: {response.text}"
            raise SourceError(msg, {"url": self.url, "status_code": response.status_code})
        return self.format.extract(response.text, "response")


class ProgrammaticCredentialSource:
    """Asks an application callback for the subject token.

    The callback may be a plain function or a coroutine function.
    """

    source_type = "programmatic"

    def __init__(self, supplier: SubjectTokenSupplier) -> None:
        self._supplier = supplier

    async def subject_token(self) -> str:
        result = self._supplier()
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, str):
            raise SourceError("oauth2/google: subject token supplier must return a string")
        return result
