# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sso

import json

import pytest

from coreason_sso.claim_path import ClaimPathResolver, extract_roles, parse_claim_path
from coreason_sso.exceptions import MalformedClaimError
from coreason_sso.models import Claim
from coreason_sso.oidc_adapter import flatten_claims


@pytest.mark.parametrize(
    "spec, expected",
    [
        ("groups", ("groups",)),
        ("resource_access.media.roles", ("resource_access", "media", "roles")),
        ("attr.role\\.name.values", ("attr", "role.name", "values")),
        ("https://example\\.com/claims.roles", ("https://example.com/claims", "roles")),
        ("a\\.b\\.c", ("a.b.c",)),
    ],
)
def test_parse_claim_path(spec: str, expected: tuple[str, ...]) -> None:
    assert parse_claim_path(spec) == expected


def test_extract_not_applicable() -> None:
    assert extract_roles(("groups",), "email", "alice@example.com") is None


def test_extract_flat_claim_verbatim() -> None:
    # A flat claim value is never parsed, even if it looks like JSON
    assert extract_roles(("groups",), "groups", '["x"]') == ['["x"]']
    assert extract_roles(("groups",), "groups", "media-users") == ["media-users"]


def test_extract_nested_roles() -> None:
    claims = flatten_claims({"groups": {"app": ["admin", "viewer"]}})
    assert claims == (Claim(type="groups", value='{"app": ["admin", "viewer"]}'),)

    assert extract_roles(parse_claim_path("groups.app"), "groups", claims[0].value) == ["admin", "viewer"]


def test_extract_deeply_nested_roles() -> None:
    value = json.dumps({"media": {"prod": {"roles": ["a", "b"]}}})
    segments = parse_claim_path("resource_access.media.prod.roles")
    assert extract_roles(segments, "resource_access", value) == ["a", "b"]


def test_extract_escaped_key() -> None:
    value = json.dumps({"role.name": {"values": ["editor"]}})
    assert extract_roles(parse_claim_path("attr.role\\.name.values"), "attr", value) == ["editor"]


@pytest.mark.parametrize(
    "spec, value",
    [
        ("groups.missing", json.dumps({"app": ["admin"]})),
        ("groups.app.roles", json.dumps({"app": ["admin"]})),
        ("groups.app", json.dumps({"app": "admin"})),
        ("groups.app", json.dumps({"app": ["admin", 3]})),
        ("groups.app", json.dumps(["admin"])),
        ("groups.app", "not json at all"),
    ],
)
def test_extract_malformed(spec: str, value: str) -> None:
    with pytest.raises(MalformedClaimError):
        extract_roles(parse_claim_path(spec), "groups", value)


def test_resolver_accumulates_repeated_claims() -> None:
    claims = [
        Claim(type="sub", value="u-1"),
        Claim(type="groups", value="media-users"),
        Claim(type="email", value="alice@example.com"),
        Claim(type="groups", value="media-admins"),
    ]
    assert ClaimPathResolver("groups").roles_from(claims) == ["media-users", "media-admins"]


def test_resolver_malformed_claim_is_soft_failure() -> None:
    claims = [
        Claim(type="groups", value="{not json"),
        Claim(type="groups", value=json.dumps({"app": ["viewer"]})),
        Claim(type="groups", value=json.dumps({"other": ["ignored"]})),
    ]
    assert ClaimPathResolver("groups.app").roles_from(claims) == ["viewer"]


def test_resolver_missing_key_yields_no_roles() -> None:
    claims = flatten_claims({"groups": {"app": ["admin", "viewer"]}})
    assert ClaimPathResolver("groups.missing").roles_from(claims) == []
