"""External account configuration and its STS backed token source.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..._base import FORM_CONTENT_TYPE, resolve_http_client
from ..._reuse import ReuseTokenSource, TokenSource
from ...exceptions import ConfigurationError, InvalidResponseError
from ...models.oauth_models import AuthStyle
from ...models.token_models import MAX_EXPIRES_IN, Token, utcnow
from ...sts import ClientAuthentication, STSTokenExchangeRequest, exchange_token
from ._impersonate import DEFAULT_TOKEN_LIFETIME_SECONDS, ImpersonateTokenSource
from ._sources import (
    CredentialFormat,
    FileCredentialSource,
    ProgrammaticCredentialSource,
    SubjectTokenSource,
    URLCredentialSource,
)
from ._urls import is_workforce_audience, validate_impersonation_url, validate_token_url
from .aws import AwsCredentialSource
from .executable import CommandRunner, ExecutableCredentialSource

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class ExecutableConfig(BaseModel):
    """Command that prints a subject token."""

    model_config = ConfigDict(frozen=True)

    command: str = ""
    timeout_millis: int | None = None
    output_file: str = ""


class CredentialSource(BaseModel):
    """Where the subject token comes from.

    AWS is selected by ``environment_id``, in which case ``url`` is the
    metadata security credentials endpoint. Otherwise exactly one of
    ``executable``, ``file`` or ``url`` must be set.
    """

    model_config = ConfigDict(frozen=True)

    file: str = ""
    url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    environment_id: str = ""
    region_url: str = ""
    regional_cred_verification_url: str = ""
    cred_verification_url: str = ""
    imdsv2_session_token_url: str = ""
    format: CredentialFormat = Field(default_factory=CredentialFormat)
    executable: ExecutableConfig | None = None


class ServiceAccountImpersonation(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_lifetime_seconds: int = DEFAULT_TOKEN_LIFETIME_SECONDS


class ExternalAccountConfig(BaseModel):
    """An ``external_account`` credential file.

    ``subject_token_supplier`` is the programmatic alternative to
    ``credential_source`` and is never read from or written to JSON.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str = ""
    audience: str = ""
    subject_token_type: str = ""
    token_url: str = ""
    token_info_url: str = ""
    service_account_impersonation_url: str = ""
    service_account_impersonation: ServiceAccountImpersonation = Field(
        default_factory=ServiceAccountImpersonation
    )
    client_id: str = ""
    client_secret: str = ""
    credential_source: CredentialSource | None = None
    quota_project_id: str = ""
    workforce_pool_user_project: str = ""
    scopes: list[str] = Field(default_factory=list)
    subject_token_supplier: Callable[..., Any] | None = Field(default=None, exclude=True)

    @classmethod
    def from_info(cls, info: dict[str, Any]) -> ExternalAccountConfig:
        """Build a config from a parsed credential JSON document.

        Raises:
            ConfigurationError: If the document does not match the schema.

        """
        try:
            return cls.model_validate(info)
        except ValidationError as e:
            raise ConfigurationError(f"oauth2/google: invalid external account config: {e}") from e

    @classmethod
    def from_file(cls, path: str | Path) -> ExternalAccountConfig:
        """Load a config from a credential JSON file.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.

        """
        try:
            info = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"oauth2/google: unable to load credential file {path}: {e}") from e
        if not isinstance(info, dict):
            raise ConfigurationError("oauth2/google: credential file must contain a JSON object")
        return cls.from_info(info)

    def subject_token_source(
        self,
        http_client: httpx.AsyncClient | None = None,
        command_runner: CommandRunner | None = None,
    ) -> SubjectTokenSource:
        """Build the single configured subject token source.

        Raises:
            ConfigurationError: If no source or more than one is configured,
                or the chosen source is misconfigured.

        """
        cs = self.credential_source
        kinds: list[str] = []
        if self.subject_token_supplier is not None:
            kinds.append("programmatic")
        if cs is not None:
            if cs.environment_id:
                kinds.append("aws")
            else:
                kinds.extend(
                    kind
                    for kind, present in (
                        ("executable", cs.executable is not None),
                        ("file", bool(cs.file)),
                        ("url", bool(cs.url)),
                    )
                    if present
                )
        if len(kinds) != 1:
            raise ConfigurationError(
                "oauth2/google: exactly one credential source must be configured, "
                f"found {len(kinds)}",
                {"sources": kinds},
            )

        kind = kinds[0]
        if kind == "programmatic" or cs is None:
            return ProgrammaticCredentialSource(self.subject_token_supplier)
        if kind == "aws":
            return AwsCredentialSource(
                environment_id=cs.environment_id,
                regional_cred_verification_url=cs.regional_cred_verification_url,
                audience=self.audience,
                region_url=cs.region_url,
                cred_url=cs.url,
                imdsv2_session_token_url=cs.imdsv2_session_token_url,
                http_client=http_client,
            )
        if kind == "executable" and cs.executable is not None:
            return ExecutableCredentialSource(
                command=cs.executable.command,
                audience=self.audience,
                subject_token_type=self.subject_token_type,
                timeout_millis=cs.executable.timeout_millis,
                output_file=cs.executable.output_file,
                impersonation_url=self.service_account_impersonation_url,
                command_runner=command_runner,
            )
        if kind == "file":
            return FileCredentialSource(cs.file, cs.format)
        return URLCredentialSource(cs.url, cs.headers, cs.format, http_client)

    def token_source(
        self,
        http_client: httpx.AsyncClient | None = None,
        command_runner: CommandRunner | None = None,
    ) -> ReuseTokenSource:
        """Validate the config and return a caching token source.

        Tokens come from an STS exchange of the subject token, followed by
        service account impersonation when an impersonation URL is set.

        Args:
            http_client: Client used for STS, impersonation and source requests
            command_runner: Replaces subprocess spawning for executable sources

        Returns:
            A token source that reuses tokens until they expire.

        Raises:
            ConfigurationError: If an endpoint is not trusted or the config is
                otherwise invalid.

        """
        http_client = resolve_http_client(http_client)
        validate_token_url(self.token_url)
        if self.service_account_impersonation_url:
            validate_impersonation_url(self.service_account_impersonation_url)
        if self.workforce_pool_user_project and not is_workforce_audience(self.audience):
            raise ConfigurationError(
                "oauth2/google: workforce_pool_user_project should not be set "
                "for non-workforce pool credentials"
            )

        subject_source = self.subject_token_source(http_client, command_runner)
        if not self.service_account_impersonation_url:
            return ReuseTokenSource(
                None, STSTokenSource(self, subject_source, self.scopes, http_client)
            )

        sts = STSTokenSource(self, subject_source, [CLOUD_PLATFORM_SCOPE], http_client)
        impersonate = ImpersonateTokenSource(
            self.service_account_impersonation_url,
            self.scopes,
            ReuseTokenSource(None, sts),
            self.service_account_impersonation.token_lifetime_seconds,
            http_client,
        )
        return ReuseTokenSource(None, impersonate)


class STSTokenSource:
    """Exchanges a fresh subject token at Google STS on every call."""

    def __init__(
        self,
        config: ExternalAccountConfig,
        subject_source: SubjectTokenSource,
        scopes: list[str],
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._subject_source = subject_source
        self._scopes = list(scopes)
        self._http_client = http_client

    def _options(self) -> dict[str, Any] | None:
        conf = self._config
        # A user project is only billed when no client is authenticating.
        if conf.workforce_pool_user_project and not conf.client_id and is_workforce_audience(
            conf.audience
        ):
            return {"userProject": conf.workforce_pool_user_project}
        return None

    async def token(self) -> Token:
        conf = self._config
        subject_token = await self._subject_source.subject_token()
        logger.debug("Got subject token from %s source", self._subject_source.source_type)

        response = await exchange_token(
            conf.token_url,
            STSTokenExchangeRequest(
                audience=conf.audience,
                scope=self._scopes,
                subject_token=subject_token,
                subject_token_type=conf.subject_token_type,
            ),
            ClientAuthentication(
                auth_style=AuthStyle.IN_HEADER,
                client_id=conf.client_id,
                client_secret=conf.client_secret,
            ),
            headers={"Content-Type": FORM_CONTENT_TYPE},
            options=self._options(),
            http_client=self._http_client,
        )

        if response.expires_in < 0:
            raise InvalidResponseError("google/oauth2: got invalid expiry from security token service")
        lifetime = min(response.expires_in, MAX_EXPIRES_IN)
        expiry = utcnow() + timedelta(seconds=lifetime) if lifetime > 0 else None
        return Token(
            access_token=response.access_token,
            token_type=response.token_type,
            refresh_token=response.refresh_token,
            expiry=expiry,
        )


def token_source_from_info(
    info: dict[str, Any],
    http_client: httpx.AsyncClient | None = None,
    command_runner: CommandRunner | None = None,
) -> TokenSource:
    """Shorthand for ``ExternalAccountConfig.from_info(info).token_source(...)``."""
    return ExternalAccountConfig.from_info(info).token_source(http_client, command_runner)
