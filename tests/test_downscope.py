"""Tests for downscoped Google credentials.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

import httpx
import pytest
import respx

from tokenflow import StaticTokenSource
from tokenflow.exceptions import ConfigurationError, RetrieveError
from tokenflow.google.downscope import (
    DEFAULT_TOKEN_URL,
    AccessBoundaryRule,
    AvailabilityCondition,
    CredentialAccessBoundary,
    DownscopingTokenSource,
    new_token_source,
)
from tokenflow.models.token_models import Token, utcnow
from tokenflow.sts import ACCESS_TOKEN_TYPE, TOKEN_EXCHANGE_GRANT_TYPE

BUCKET = "//storage.googleapis.com/projects/_/buckets/foo"
RESPONSE_BODY = {
    "access_token": "Open Sesame",
    "expires_in": 432,
    "issued_token_type": ACCESS_TOKEN_TYPE,
    "token_type": "Bearer",
}


def boundary(*rules: AccessBoundaryRule) -> CredentialAccessBoundary:
    return CredentialAccessBoundary(
        access_boundary_rules=list(rules) or [
            AccessBoundaryRule(available_resource="test1", available_permissions=["Perm1", "Perm2"])
        ]
    )


def root_source(expiry: Any = None) -> StaticTokenSource:
    return StaticTokenSource(Token(access_token="Mellon", expiry=expiry))


async def test_downscoped_token(mock_responses: respx.MockRouter, form_of: Any) -> None:
    """The root token is exchanged with the access boundary as options."""
    route = mock_responses.post(DEFAULT_TOKEN_URL).mock(return_value=httpx.Response(200, json=RESPONSE_BODY))

    before = utcnow()
    token = await new_token_source(root_source(), boundary()).token()

    request = route.calls.last.request
    assert "Authorization" not in request.headers
    form = form_of(request)
    options = json.loads(form.pop("options"))
    assert form == {
        "grant_type": TOKEN_EXCHANGE_GRANT_TYPE,
        "requested_token_type": ACCESS_TOKEN_TYPE,
        "subject_token": "Mellon",
        "subject_token_type": ACCESS_TOKEN_TYPE,
    }
    assert options == {
        "accessBoundary": {
            "accessBoundaryRules": [
                {"availableResource": "test1", "availablePermissions": ["Perm1", "Perm2"]}
            ]
        }
    }
    assert token.access_token == "Open Sesame"
    assert token.token_type == "Bearer"
    assert token.expiry is not None
    assert before + timedelta(seconds=432) <= token.expiry <= utcnow() + timedelta(seconds=432)


async def test_availability_condition(mock_responses: respx.MockRouter, form_of: Any) -> None:
    route = mock_responses.post(DEFAULT_TOKEN_URL).mock(return_value=httpx.Response(200, json=RESPONSE_BODY))
    rule = AccessBoundaryRule(
        available_resource=BUCKET,
        available_permissions=["inRole:roles/storage.objectViewer"],
        availability_condition=AvailabilityCondition(
            expression="resource.name.startsWith('projects/_/buckets/foo/objects/customer-a')",
            title="customer-a",
        ),
    )

    await DownscopingTokenSource(root_source(), boundary(rule)).token()

    options = json.loads(form_of(route.calls.last.request)["options"])
    assert options["accessBoundary"]["accessBoundaryRules"][0]["availabilityCondition"] == {
        "expression": "resource.name.startsWith('projects/_/buckets/foo/objects/customer-a')",
        "title": "customer-a",
    }


def test_boundary_from_json_names() -> None:
    parsed = CredentialAccessBoundary.model_validate(
        {
            "accessBoundaryRules": [
                {
                    "availableResource": BUCKET,
                    "availablePermissions": ["inRole:roles/storage.objectViewer"],
                    "availabilityCondition": {"expression": "true"},
                }
            ]
        }
    )

    rule = parsed.access_boundary_rules[0]
    assert rule.available_resource == BUCKET
    assert rule.availability_condition is not None
    assert rule.availability_condition.expression == "true"


async def test_missing_lifetime_uses_root_expiry(mock_responses: respx.MockRouter) -> None:
    """Tokens derived from user credentials carry no expires_in."""
    body = {key: value for key, value in RESPONSE_BODY.items() if key != "expires_in"}
    mock_responses.post(DEFAULT_TOKEN_URL).mock(return_value=httpx.Response(200, json=body))
    root_expiry = utcnow() + timedelta(minutes=20)

    token = await DownscopingTokenSource(root_source(root_expiry), boundary()).token()

    assert token.expiry == root_expiry


async def test_stale_token_is_exchanged_again(mock_responses: respx.MockRouter) -> None:
    route = mock_responses.post(DEFAULT_TOKEN_URL).mock(
        return_value=httpx.Response(200, json={**RESPONSE_BODY, "expires_in": 5})
    )
    source = new_token_source(root_source(), boundary())

    await source.token()
    await source.token()

    assert route.call_count == 2


async def test_exchange_error(mock_responses: respx.MockRouter) -> None:
    mock_responses.post(DEFAULT_TOKEN_URL).mock(
        return_value=httpx.Response(400, json={"error": "invalid_request"})
    )

    with pytest.raises(RetrieveError) as excinfo:
        await DownscopingTokenSource(root_source(), boundary()).token()

    assert excinfo.value.status_code == 400


def test_root_source_required() -> None:
    with pytest.raises(ConfigurationError, match="rootSource cannot be nil"):
        new_token_source(None, boundary())


@pytest.mark.parametrize(
    ("rules", "message"),
    [
        ([], "must be at least 1"),
        (
            [AccessBoundaryRule(available_resource=BUCKET, available_permissions=["p"])] * 11,
            "may not be greater than 10",
        ),
        (
            [AccessBoundaryRule(available_resource="", available_permissions=["p"])],
            "nonempty AvailableResource",
        ),
        (
            [AccessBoundaryRule(available_resource=BUCKET, available_permissions=[])],
            "at least one permission",
        ),
    ],
)
def test_invalid_boundary(rules: list[AccessBoundaryRule], message: str) -> None:
    with pytest.raises(ConfigurationError, match=message):
        new_token_source(root_source(), CredentialAccessBoundary(access_boundary_rules=rules))


def test_untrusted_token_url() -> None:
    with pytest.raises(ConfigurationError, match="invalid TokenURL"):
        DownscopingTokenSource(root_source(), boundary(), token_url="https://sts.evil.com/v1/token")
