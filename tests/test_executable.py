"""Tests for executable-sourced subject tokens.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import asyncio
import json
import os
import shlex
import sys
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from tokenflow.exceptions import (
    ConfigurationError,
    ExecutableExitCodeError,
    ExpiredTokenError,
    InvalidResponseError,
    MalformedFailureError,
    TimeoutError as TokenFlowTimeoutError,
    UserDefinedError,
)
from tokenflow.google.externalaccount.executable import (
    ALLOW_EXECUTABLES_ENV,
    EXECUTABLE_SOURCE,
    ExecutableCredentialSource,
    parse_subject_token,
    run_command,
)
from tokenflow.sts import ID_TOKEN_TYPE, JWT_TOKEN_TYPE, SAML2_TOKEN_TYPE

AUDIENCE = "//iam.googleapis.com/projects/123/locations/global/workloadIdentityPools/pool/providers/oidc"
IMPERSONATION_URL = (
    "https://iamcredentials.googleapis.com/v1/projects/-/serviceAccounts/"
    "sa@project.iam.gserviceaccount.com:generateAccessToken"
)


class FakeRunner:
    """Records invocations and returns a canned stdout."""

    def __init__(self, output: bytes = b"", error: Exception | None = None) -> None:
        self.output = output
        self.error = error
        self.calls: list[tuple[list[str], dict[str, str], float]] = []

    async def __call__(self, argv: Sequence[str], env: Mapping[str, str], timeout: float) -> bytes:
        self.calls.append((list(argv), dict(env), timeout))
        if self.error is not None:
            raise self.error
        return self.output


def response(**fields: Any) -> bytes:
    body = {
        "version": 1,
        "success": True,
        "token_type": JWT_TOKEN_TYPE,
        "id_token": "tokentokentoken",
        "expiration_time": int(time.time()) + 3600,
    }
    body.update(fields)
    return json.dumps({k: v for k, v in body.items() if v is not None}).encode()


@pytest.fixture
def allow_executables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ALLOW_EXECUTABLES_ENV, "1")


def make_source(runner: FakeRunner | None = None, **kwargs: Any) -> ExecutableCredentialSource:
    settings: dict[str, Any] = {
        "command": "/path/to/generator --flag 'quoted arg'",
        "audience": AUDIENCE,
        "subject_token_type": JWT_TOKEN_TYPE,
        "command_runner": runner,
    }
    settings.update(kwargs)
    return ExecutableCredentialSource(**settings)


async def test_runs_command(allow_executables: None) -> None:
    """The command is split like a shell would and run with the documented environment."""
    runner = FakeRunner(response())
    source = make_source(
        runner,
        timeout_millis=5000,
        output_file="/tmp/out.json",
        impersonation_url=IMPERSONATION_URL,
    )

    assert await source.subject_token() == "tokentokentoken"

    argv, env, timeout = runner.calls[0]
    assert argv == ["/path/to/generator", "--flag", "quoted arg"]
    assert timeout == 5
    assert env["GOOGLE_EXTERNAL_ACCOUNT_AUDIENCE"] == AUDIENCE
    assert env["GOOGLE_EXTERNAL_ACCOUNT_TOKEN_TYPE"] == JWT_TOKEN_TYPE
    assert env["GOOGLE_EXTERNAL_ACCOUNT_INTERACTIVE"] == "0"
    assert env["GOOGLE_EXTERNAL_ACCOUNT_IMPERSONATED_EMAIL"] == "sa@project.iam.gserviceaccount.com"
    assert env["GOOGLE_EXTERNAL_ACCOUNT_OUTPUT_FILE"] == "/tmp/out.json"
    assert env[ALLOW_EXECUTABLES_ENV] == "1"


def test_environment_omits_optional_variables() -> None:
    env = make_source().environment()
    assert "GOOGLE_EXTERNAL_ACCOUNT_IMPERSONATED_EMAIL" not in env
    assert "GOOGLE_EXTERNAL_ACCOUNT_OUTPUT_FILE" not in env


def test_default_timeout() -> None:
    assert make_source().timeout == 30


@pytest.mark.parametrize("value", ["", "0", "true"])
async def test_executables_must_be_allowed(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv(ALLOW_EXECUTABLES_ENV, value)
    runner = FakeRunner(response())

    with pytest.raises(ConfigurationError, match="explicitly allowed"):
        await make_source(runner).subject_token()

    assert not runner.calls


def test_missing_command() -> None:
    with pytest.raises(ConfigurationError, match="missing `command` field"):
        make_source(command="")


@pytest.mark.parametrize("timeout_millis", [4999, 120001])
def test_timeout_out_of_range(timeout_millis: int) -> None:
    with pytest.raises(ConfigurationError, match="between 5 and 120 seconds"):
        make_source(timeout_millis=timeout_millis)


async def test_saml_response(allow_executables: None) -> None:
    runner = FakeRunner(response(token_type=SAML2_TOKEN_TYPE, id_token=None, saml_response="samlresponse"))
    source = make_source(runner, subject_token_type=SAML2_TOKEN_TYPE)

    assert await source.subject_token() == "samlresponse"


async def test_id_token_type(allow_executables: None) -> None:
    runner = FakeRunner(response(token_type=ID_TOKEN_TYPE))
    assert await make_source(runner).subject_token() == "tokentokentoken"


async def test_user_defined_failure(allow_executables: None) -> None:
    runner = FakeRunner(response(success=False, code="404", message="Token is not found"))

    with pytest.raises(UserDefinedError) as excinfo:
        await make_source(runner).subject_token()

    assert excinfo.value.error_code == "404"
    assert str(excinfo.value.message).endswith("(404) Token is not found")


async def test_malformed_failure(allow_executables: None) -> None:
    runner = FakeRunner(response(success=False, message="no code"))

    with pytest.raises(MalformedFailureError):
        await make_source(runner).subject_token()


async def test_exit_code(allow_executables: None) -> None:
    runner = FakeRunner(error=ExecutableExitCodeError(1))

    with pytest.raises(ExecutableExitCodeError, match="exit code 1"):
        await make_source(runner).subject_token()


@pytest.mark.parametrize(
    ("fields", "message"),
    [
        ({"version": None}, "missing `version` field"),
        ({"success": None}, "missing `success` field"),
        ({"version": 2}, "contains unsupported version: 2"),
        ({"expiration_time": None}, "missing `expiration_time` field"),
        ({"token_type": None}, "missing `token_type` field"),
        ({"id_token": None}, "missing `id_token` field"),
        ({"token_type": SAML2_TOKEN_TYPE}, "missing `saml_response` field"),
        ({"token_type": "urn:ietf:params:oauth:token-type:access_token"}, "unsupported token type"),
    ],
)
def test_invalid_responses(fields: dict[str, Any], message: str) -> None:
    with pytest.raises(InvalidResponseError, match=message):
        parse_subject_token(response(**fields), EXECUTABLE_SOURCE)


def test_unparseable_response() -> None:
    with pytest.raises(InvalidResponseError, match="unable to parse response\nResponse: not json"):
        parse_subject_token(b"not json", EXECUTABLE_SOURCE)


def test_expired_response() -> None:
    with pytest.raises(ExpiredTokenError):
        parse_subject_token(response(expiration_time=1000), EXECUTABLE_SOURCE, now=2000)


async def test_valid_output_file_skips_command(allow_executables: None, tmp_path: Path) -> None:
    output_file = tmp_path / "output.json"
    output_file.write_bytes(response(id_token="cachedtoken"))
    runner = FakeRunner(response())

    token = await make_source(runner, output_file=str(output_file)).subject_token()

    assert token == "cachedtoken"
    assert not runner.calls


async def test_expired_output_file_runs_command(allow_executables: None, tmp_path: Path) -> None:
    output_file = tmp_path / "output.json"
    output_file.write_bytes(response(id_token="stale", expiration_time=int(time.time()) - 10))
    runner = FakeRunner(response())

    token = await make_source(runner, output_file=str(output_file)).subject_token()

    assert token == "tokentokentoken"
    assert len(runner.calls) == 1


async def test_failed_output_file_runs_command(allow_executables: None, tmp_path: Path) -> None:
    """A recorded user-defined failure is not reused."""
    output_file = tmp_path / "output.json"
    output_file.write_bytes(response(success=False, code="401", message="Caller not authorized"))
    runner = FakeRunner(response())

    assert await make_source(runner, output_file=str(output_file)).subject_token() == "tokentokentoken"


async def test_invalid_output_file_is_reported(allow_executables: None, tmp_path: Path) -> None:
    output_file = tmp_path / "output.json"
    output_file.write_bytes(response(version=None))
    runner = FakeRunner(response())

    with pytest.raises(InvalidResponseError, match="output file missing `version` field"):
        await make_source(runner, output_file=str(output_file)).subject_token()

    assert not runner.calls


async def test_missing_output_file_runs_command(allow_executables: None, tmp_path: Path) -> None:
    runner = FakeRunner(response())
    source = make_source(runner, output_file=str(tmp_path / "absent.json"))

    assert await source.subject_token() == "tokentokentoken"


@pytest.mark.subprocess
async def test_run_command_returns_stdout() -> None:
    script = "import os, sys; sys.stdout.write(os.environ['TOKENFLOW_TEST'])"

    output = await run_command([sys.executable, "-c", script], {"TOKENFLOW_TEST": "hello"}, 10)

    assert output == b"hello"


@pytest.mark.subprocess
async def test_run_command_exit_code() -> None:
    with pytest.raises(ExecutableExitCodeError) as excinfo:
        await run_command([sys.executable, "-c", "raise SystemExit(3)"], {}, 10)

    assert excinfo.value.exit_code == 3


@pytest.mark.subprocess
async def test_run_command_timeout() -> None:
    with pytest.raises(TokenFlowTimeoutError, match="timed out"):
        await run_command([sys.executable, "-c", "import time; time.sleep(30)"], {}, 0.5)


@pytest.mark.subprocess
async def test_end_to_end_with_real_executable(allow_executables: None, tmp_path: Path) -> None:
    script = tmp_path / "generator.py"
    script.write_text(f"import sys\nsys.stdout.write({response().decode()!r})\n")
    source = ExecutableCredentialSource(
        command=f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}",
        audience=AUDIENCE,
        subject_token_type=JWT_TOKEN_TYPE,
    )

    assert await source.subject_token() == "tokentokentoken"


@pytest.mark.subprocess
async def test_run_command_cancellation_kills_child(tmp_path: Path) -> None:
    pid_file = tmp_path / "child.pid"
    script = f"import os, time; open({str(pid_file)!r}, 'w').write(str(os.getpid())); time.sleep(30)"
    task = asyncio.create_task(run_command([sys.executable, "-c", script], {}, 60))
    for _ in range(200):
        if pid_file.exists() and pid_file.read_text():
            break
        await asyncio.sleep(0.05)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    with pytest.raises(ProcessLookupError):
        os.kill(int(pid_file.read_text()), 0)
