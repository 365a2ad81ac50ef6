"""AWS Signature Version 4 signing and the AWS subject token source.

The subject token handed to Google STS is a serialized, signed
``GetCallerIdentity`` request that STS replays against AWS.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import NamedTuple
from urllib.parse import parse_qs, quote, urlsplit

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ... import _urlvalues
from ..._base import BaseClient, RawResponse, RequestConfig
from ...exceptions import ConfigurationError, SourceError

logger = logging.getLogger(__name__)

# AWS Signature Version 4 signing algorithm identifier.
AWS_ALGORITHM = "AWS4-HMAC-SHA256"
# Termination string of the credential scope.
AWS_REQUEST_TYPE = "aws4_request"
AWS_SECURITY_TOKEN_HEADER = "x-amz-security-token"
AWS_DATE_HEADER = "x-amz-date"
AWS_IMDSV2_SESSION_TOKEN_HEADER = "x-aws-ec2-metadata-token"
AWS_IMDSV2_SESSION_TTL_HEADER = "x-aws-ec2-metadata-token-ttl-seconds"
AWS_IMDSV2_SESSION_TTL = "300"

AWS_TIME_FORMAT_LONG = "%Y%m%dT%H%M%SZ"
AWS_TIME_FORMAT_SHORT = "%Y%m%d"

SUPPORTED_ENVIRONMENT_VERSION = 1

_ENVIRONMENT_ID = re.compile(r"^aws(\d+)$")
_PATH_SAFE = "/%!$&'()*+,;=:@-._~"


class AwsSecurityCredentials(BaseModel):
    """AWS access key pair plus optional session token."""

    model_config = ConfigDict(frozen=True)

    access_key_id: str
    secret_access_key: str
    session_token: str = ""


class AwsRequest(NamedTuple):
    """An HTTP request to sign, independent of any HTTP client."""

    method: str
    url: str
    headers: list[tuple[str, str]] = []
    body: bytes = b""

    def header(self, name: str) -> str:
        """Return the first value of header ``name`` (case-insensitive), or ""."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return ""


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hmac_sha256(key: bytes, data: str) -> bytes:
    return hmac.new(key, data.encode("utf-8"), hashlib.sha256).digest()


def _request_host(url: str) -> str:
    return urlsplit(url).netloc.rpartition("@")[2]


def canonical_path(url: str) -> str:
    """Escaped URL path with ``.`` and ``..`` segments resolved; empty becomes ``/``."""
    path = quote(urlsplit(url).path, safe=_PATH_SAFE)
    segments: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return "/" + "/".join(segments)


def canonical_query(url: str) -> str:
    """Query string with keys sorted and values sorted within each key."""
    values = parse_qs(urlsplit(url).query, keep_blank_values=True)
    return _urlvalues.encode({key: sorted(items) for key, items in values.items()})


def canonical_headers(headers: list[tuple[str, str]]) -> tuple[str, str]:
    """Return the signed-headers list and the canonical header block.

    Keys are lowercased and sorted; repeated keys are joined with commas in
    the order they were given.
    """
    merged: dict[str, list[str]] = {}
    for key, value in headers:
        merged.setdefault(key.lower(), []).append(value)
    names = sorted(merged)
    block = "".join(f"{name}:{','.join(merged[name])}\n" for name in names)
    return ";".join(names), block


class AwsRequestSigner:
    """Signs requests with AWS Signature Version 4."""

    def __init__(self, region_name: str, credentials: AwsSecurityCredentials) -> None:
        self.region_name = region_name
        self.credentials = credentials

    def sign(self, request: AwsRequest, timestamp: datetime | None = None) -> AwsRequest:
        """Return a copy of ``request`` carrying the SigV4 ``Authorization`` header.

        ``host`` is always added, ``x-amz-security-token`` when the
        credentials carry a session token, and ``x-amz-date`` unless the
        request already has a ``date`` or ``x-amz-date`` header.

        Args:
            request: Request to sign
            timestamp: Signing time, defaults to now

        Returns:
            The signed request.

        """
        moment = (timestamp or datetime.now(timezone.utc)).astimezone(timezone.utc)
        headers = [*request.headers, ("host", _request_host(request.url))]
        if self.credentials.session_token:
            headers.append((AWS_SECURITY_TOKEN_HEADER, self.credentials.session_token))
        if not request.header("date") and not request.header(AWS_DATE_HEADER):
            headers.append((AWS_DATE_HEADER, moment.strftime(AWS_TIME_FORMAT_LONG)))

        unsigned = request._replace(headers=headers)
        authorization = self._authorization(unsigned, moment)
        return unsigned._replace(headers=[*headers, ("Authorization", authorization)])

    def _authorization(self, request: AwsRequest, moment: datetime) -> str:
        signed_headers, header_block = canonical_headers(request.headers)
        date_stamp = moment.strftime(AWS_TIME_FORMAT_SHORT)
        service_name = _request_host(request.url).split(".")[0]
        credential_scope = "/".join(
            (date_stamp, self.region_name, service_name, AWS_REQUEST_TYPE)
        )

        canonical_request = "\n".join(
            (
                request.method,
                canonical_path(request.url),
                canonical_query(request.url),
                header_block,
                signed_headers,
                _sha256_hex(request.body),
            )
        )
        string_to_sign = "\n".join(
            (
                AWS_ALGORITHM,
                moment.strftime(AWS_TIME_FORMAT_LONG),
                credential_scope,
                _sha256_hex(canonical_request.encode("utf-8")),
            )
        )

        key = ("AWS4" + self.credentials.secret_access_key).encode("utf-8")
        for part in (date_stamp, self.region_name, service_name, AWS_REQUEST_TYPE):
            key = _hmac_sha256(key, part)
        signature = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

        return (
            f"{AWS_ALGORITHM} Credential={self.credentials.access_key_id}/{credential_scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )


def _canonical_header_name(name: str) -> str:
    return "-".join(part.capitalize() for part in name.split("-"))


def serialize_signed_request(request: AwsRequest) -> str:
    """Encode a signed request as the JSON envelope Google STS expects.

    Headers are title-cased and sorted by name.
    """
    headers = sorted(
        (_canonical_header_name(key), value) for key, value in request.headers
    )
    envelope = {
        "url": request.url,
        "method": request.method,
        "headers": [{"key": key, "value": value} for key, value in headers],
    }
    return json.dumps(envelope, separators=(",", ":"))


class _MetadataCredentials(BaseModel):
    AccessKeyId: str = ""
    SecretAccessKey: str = ""
    Token: str = ""


def parse_environment_version(environment_id: str) -> int:
    """Return the version number of an ``awsN`` environment id.

    Raises:
        ConfigurationError: If the id is malformed or the version unsupported.

    """
    match = _ENVIRONMENT_ID.match(environment_id)
    if match is None:
        msg = f"oauth2/google: invalid environment id {environment_id!r}"
        raise ConfigurationError(msg)
    version = int(match.group(1))
    if version != SUPPORTED_ENVIRONMENT_VERSION:
        msg = f"oauth2/google: aws version '{version}' is not supported in the current build"
        raise ConfigurationError(msg)
    return version


class AwsCredentialSource:
    """Builds a signed ``GetCallerIdentity`` request as the subject token.

    Region and credentials come from the standard AWS environment variables
    when set, otherwise from the EC2 instance metadata service, using an
    IMDSv2 session token when ``imdsv2_session_token_url`` is configured.
    """

    source_type = "aws"

    def __init__(
        self,
        environment_id: str,
        regional_cred_verification_url: str,
        audience: str,
        region_url: str = "",
        cred_url: str = "",
        imdsv2_session_token_url: str = "",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the AWS source.

        Raises:
            ConfigurationError: If the environment id is unsupported or the
                verification URL is missing.

        """
        parse_environment_version(environment_id)
        if not regional_cred_verification_url:
            raise ConfigurationError("oauth2/google: regional_cred_verification_url is required")
        self.environment_id = environment_id
        self.regional_cred_verification_url = regional_cred_verification_url
        self.audience = audience
        self.region_url = region_url
        self.cred_url = cred_url
        self.imdsv2_session_token_url = imdsv2_session_token_url
        self._http_client = http_client

    @staticmethod
    def _env_region() -> str:
        return os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION", "")

    @staticmethod
    def _env_credentials() -> AwsSecurityCredentials | None:
        access_key_id = os.environ.get("AWS_ACCESS_KEY_ID", "")
        secret_access_key = os.environ.get("AWS_SECRET_ACCESS_KEY", "")
        if not access_key_id or not secret_access_key:
            return None
        return AwsSecurityCredentials(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=os.environ.get("AWS_SESSION_TOKEN", ""),
        )

    async def subject_token(self) -> str:
        region = self._env_region()
        credentials = self._env_credentials()

        async with BaseClient(self._http_client) as client:
            metadata_headers: dict[str, str] = {}
            if (not region or credentials is None) and self.imdsv2_session_token_url:
                metadata_headers[AWS_IMDSV2_SESSION_TOKEN_HEADER] = await self._session_token(client)
            if not region:
                region = await self._metadata_region(client, metadata_headers)
            if credentials is None:
                credentials = await self._metadata_credentials(client, metadata_headers)

        url = self.regional_cred_verification_url.replace("{region}", region)
        request = AwsRequest(
            "POST", url, [("x-goog-cloud-target-resource", self.audience)]
        )
        signed = AwsRequestSigner(region, credentials).sign(request)
        logger.debug("Signed AWS GetCallerIdentity request for region %s", region)
        return serialize_signed_request(signed)

    async def _get(
        self, client: BaseClient, url: str, headers: dict[str, str], what: str
    ) -> RawResponse:
        response = await client.request("GET", url, config=RequestConfig(headers=headers))
        if response.status_code != httpx.codes.OK:
            msg = f"oauth2/google: unable to retrieve {what} - {response.text}"
            raise SourceError(msg, {"url": url, "status_code": response.status_code})
        return response

    async def _session_token(self, client: BaseClient) -> str:
        response = await client.request(
            "PUT",
            self.imdsv2_session_token_url,
            config=RequestConfig(headers={AWS_IMDSV2_SESSION_TTL_HEADER: AWS_IMDSV2_SESSION_TTL}),
        )
        if response.status_code != httpx.codes.OK:
            msg = f"oauth2/google: unable to retrieve AWS session token - {response.text}"
            raise SourceError(msg, {"status_code": response.status_code})
        return response.text

    async def _metadata_region(self, client: BaseClient, headers: dict[str, str]) -> str:
        if not self.region_url:
            raise SourceError("oauth2/google: unable to determine AWS region")
        response = await self._get(client, self.region_url, headers, "AWS region")
        # The metadata server returns the availability zone, e.g. us-east-2b.
        zone = response.text
        return zone[:-1] if zone else zone

    async def _metadata_credentials(
        self, client: BaseClient, headers: dict[str, str]
    ) -> AwsSecurityCredentials:
        if not self.cred_url:
            raise SourceError(
                "oauth2/google: unable to determine the AWS metadata server security credentials endpoint"
            )
        role = (await self._get(client, self.cred_url, headers, "AWS role name")).text
        response = await self._get(
            client,
            f"{self.cred_url}/{role}",
            {**headers, "Content-Type": "application/json"},
            "AWS security credentials",
        )
        try:
            found = _MetadataCredentials.model_validate_json(response.body)
        except ValidationError as e:
            raise SourceError(f"oauth2/google: failed to unmarshal AWS credentials: {e}") from e
        if not found.AccessKeyId:
            raise SourceError("oauth2/google: missing AccessKeyId credential")
        if not found.SecretAccessKey:
            raise SourceError("oauth2/google: missing SecretAccessKey credential")
        return AwsSecurityCredentials(
            access_key_id=found.AccessKeyId,
            secret_access_key=found.SecretAccessKey,
            session_token=found.Token,
        )
