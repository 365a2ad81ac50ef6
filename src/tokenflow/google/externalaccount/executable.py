"""Subject tokens produced by running a local executable.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from ...exceptions import (
    ConfigurationError,
    ExecutableExitCodeError,
    ExpiredTokenError,
    InvalidResponseError,
    MalformedFailureError,
    SourceError,
    TimeoutError as TokenFlowTimeoutError,
    UserDefinedError,
    is_cacheable_error,
)
from ..._base import MAX_RESPONSE_BYTES
from ...sts import ID_TOKEN_TYPE, JWT_TOKEN_TYPE, SAML2_TOKEN_TYPE
from ._urls import impersonated_email

logger = logging.getLogger(__name__)

ALLOW_EXECUTABLES_ENV = "GOOGLE_EXTERNAL_ACCOUNT_ALLOW_EXECUTABLES"

DEFAULT_TIMEOUT_MILLIS = 30 * 1000
MIN_TIMEOUT_MILLIS = 5 * 1000
MAX_TIMEOUT_MILLIS = 120 * 1000

SUPPORTED_MAX_VERSION = 1

EXECUTABLE_SOURCE = "response"
OUTPUT_FILE_SOURCE = "output file"

# Runs argv with env and returns stdout, raising TimeoutError,
# ExecutableExitCodeError or SourceError.
CommandRunner = Callable[[Sequence[str], Mapping[str, str], float], Awaitable[bytes]]


class ExecutableResponse(BaseModel):
    """JSON document an executable prints, or leaves in its output file."""

    model_config = ConfigDict(strict=True)

    version: int = 0
    success: bool | None = None
    token_type: str = ""
    expiration_time: int = 0
    id_token: str = ""
    saml_response: str = ""
    code: str = ""
    message: str = ""


def _missing_field(source: str, field: str) -> InvalidResponseError:
    return InvalidResponseError(f"oauth2/google: {source} missing `{field}` field")


def parse_subject_token(data: bytes, source: str, now: float | None = None) -> str:
    """Validate an executable response and return the subject token it carries.

    Args:
        data: Raw JSON
        source: Where the data came from, used in error messages
        now: Current unix time, defaults to the system clock

    Returns:
        The id token or SAML response, depending on the token type.

    Raises:
        InvalidResponseError: If the response is malformed, unsupported or expired
        UserDefinedError: If the executable reported a failure

    """
    try:
        response = ExecutableResponse.model_validate_json(data)
    except ValidationError as e:
        text = data.decode("utf-8", errors="replace")
        msg = f"oauth2/google: unable to parse {source}\nResponse: {text}"
        raise InvalidResponseError(msg) from e

    if response.version == 0:
        raise _missing_field(source, "version")
    if response.success is None:
        raise _missing_field(source, "success")

    if not response.success:
        if not response.code or not response.message:
            raise MalformedFailureError()
        raise UserDefinedError(response.code, response.message)

    if response.version > SUPPORTED_MAX_VERSION or response.version < 0:
        msg = f"oauth2/google: {source} contains unsupported version: {response.version}"
        raise InvalidResponseError(msg, {"version": response.version})
    if response.expiration_time == 0:
        raise _missing_field(source, "expiration_time")
    if not response.token_type:
        raise _missing_field(source, "token_type")
    if response.expiration_time < int(time.time() if now is None else now):
        raise ExpiredTokenError()

    if response.token_type in (JWT_TOKEN_TYPE, ID_TOKEN_TYPE):
        if not response.id_token:
            raise _missing_field(source, "id_token")
        return response.id_token
    if response.token_type == SAML2_TOKEN_TYPE:
        if not response.saml_response:
            raise _missing_field(source, "saml_response")
        return response.saml_response

    raise InvalidResponseError(f"oauth2/google: {source} contains unsupported token type")


async def run_command(argv: Sequence[str], env: Mapping[str, str], timeout: float) -> bytes:
    """Run ``argv`` and return its stdout, killing it on timeout or cancellation."""
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env),
        )
    except OSError as e:
        raise SourceError(f"oauth2/google: executable command failed: {e}") from e

    try:
        async with asyncio.timeout(timeout):
            stdout, _ = await process.communicate()
    except TimeoutError as e:
        raise TokenFlowTimeoutError("oauth2/google: executable command timed out") from e
    finally:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    if process.returncode != 0:
        raise ExecutableExitCodeError(process.returncode)
    return stdout


def _read_output_file(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read(MAX_RESPONSE_BYTES)
    except OSError:
        return b""


class ExecutableCredentialSource:
    """Runs a configured command and reads the subject token from its stdout.

    When ``output_file`` is set, a still valid response left there by an
    earlier run is used instead of spawning the command again.
    """

    source_type = "executable"

    def __init__(
        self,
        command: str,
        audience: str,
        subject_token_type: str,
        timeout_millis: int | None = None,
        output_file: str = "",
        impersonation_url: str = "",
        command_runner: CommandRunner | None = None,
    ) -> None:
        """Initialize the executable source.

        Raises:
            ConfigurationError: If the command is missing or the timeout is
                outside 5 to 120 seconds.

        """
        if not command.strip():
            raise ConfigurationError(
                "oauth2/google: missing `command` field. Executable command must be provided"
            )
        if timeout_millis is None:
            timeout_millis = DEFAULT_TIMEOUT_MILLIS
        elif not MIN_TIMEOUT_MILLIS <= timeout_millis <= MAX_TIMEOUT_MILLIS:
            raise ConfigurationError(
                "oauth2/google: invalid `timeout_millis` field. "
                "Executable timeout must be between 5 and 120 seconds"
            )
        self.command = command
        self.audience = audience
        self.subject_token_type = subject_token_type
        self.timeout = timeout_millis / 1000
        self.output_file = output_file
        self.impersonation_url = impersonation_url
        self._run = command_runner or run_command

    def environment(self) -> dict[str, str]:
        """The process environment plus the variables passed to the executable."""
        env = dict(os.environ)
        env["GOOGLE_EXTERNAL_ACCOUNT_AUDIENCE"] = self.audience
        env["GOOGLE_EXTERNAL_ACCOUNT_TOKEN_TYPE"] = self.subject_token_type
        env["GOOGLE_EXTERNAL_ACCOUNT_INTERACTIVE"] = "0"
        email = impersonated_email(self.impersonation_url)
        if email:
            env["GOOGLE_EXTERNAL_ACCOUNT_IMPERSONATED_EMAIL"] = email
        if self.output_file:
            env["GOOGLE_EXTERNAL_ACCOUNT_OUTPUT_FILE"] = self.output_file
        return env

    async def subject_token(self) -> str:
        if os.environ.get(ALLOW_EXECUTABLES_ENV) != "1":
            raise ConfigurationError(
                "oauth2/google: executables need to be explicitly allowed "
                f"(set {ALLOW_EXECUTABLES_ENV} to '1') to run"
            )

        cached = await self._token_from_output_file()
        if cached is not None:
            return cached

        logger.debug("Running credential executable %s", self.command)
        output = await self._run(shlex.split(self.command), self.environment(), self.timeout)
        return parse_subject_token(output, EXECUTABLE_SOURCE)

    async def _token_from_output_file(self) -> str | None:
        if not self.output_file:
            return None
        data = await asyncio.to_thread(_read_output_file, self.output_file)
        if not data:
            return None
        try:
            token = parse_subject_token(data, OUTPUT_FILE_SOURCE)
        except (InvalidResponseError, SourceError) as e:
            if is_cacheable_error(e):
                raise
            logger.debug("Ignoring output file %s: %s", self.output_file, e.message)
            return None
        logger.debug("Using cached executable response from %s", self.output_file)
        return token
