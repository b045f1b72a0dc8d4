# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sso

import base64
import zlib
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import Mock

import httpx
import pytest
from lxml import etree
from signxml import InvalidSignature

from conftest import saml_response
from coreason_sso.config import SAMLProviderConfig
from coreason_sso.exceptions import ProtocolError, RoleMismatchError
from coreason_sso.saml_adapter import NS, SAMLAdapter, build_authn_request, redirect_url

ACS_URL = "https://media.example.com/sso/saml/p/adfs"


@pytest.fixture
def adapter() -> SAMLAdapter:
    return SAMLAdapter()


def test_build_authn_request() -> None:
    request = etree.fromstring(build_authn_request("https://media.example.com/sso", ACS_URL, request_id="_id1"))

    assert request.tag == "{urn:oasis:names:tc:SAML:2.0:protocol}AuthnRequest"
    assert request.get("ID") == "_id1"
    assert request.get("AssertionConsumerServiceURL") == ACS_URL
    assert request.find("saml:Issuer", NS).text == "https://media.example.com/sso"


@pytest.mark.asyncio
async def test_challenge_redirect(adapter: SAMLAdapter, saml_config: SAMLProviderConfig) -> None:
    url = await adapter.challenge("adfs", saml_config, ACS_URL)

    assert url.startswith(f"{saml_config.endpoint}?SAMLRequest=")
    encoded = httpx.URL(url).params["SAMLRequest"]
    request = etree.fromstring(zlib.decompress(base64.b64decode(encoded), -15))
    assert request.get("AssertionConsumerServiceURL") == ACS_URL
    assert request.find("saml:Issuer", NS).text == saml_config.client_id


def test_redirect_url_keeps_existing_query() -> None:
    url = redirect_url("https://idp.example.com/sso?tenant=media", b"<x/>")
    assert url.startswith("https://idp.example.com/sso?tenant=media&SAMLRequest=")


def test_certificate_is_wrapped_in_pem(saml_config: SAMLProviderConfig) -> None:
    assert saml_config.certificate.startswith("-----BEGIN CERTIFICATE-----\n")
    assert saml_config.certificate.rstrip().endswith("-----END CERTIFICATE-----")


@pytest.mark.asyncio
async def test_callback_valid(adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock) -> None:
    result = await adapter.callback("adfs", saml_config, saml_response())

    assert result.decision.valid is True
    assert result.decision.username == "alice"
    assert result.decision.is_admin is False
    assert result.decision.folders == ("movies",)
    assert result.decision.roles == ("viewer",)
    assert b"<saml:NameID>alice</saml:NameID>" in base64.b64decode(result.data)
    assert verifier.verify.call_args.kwargs["x509_cert"] == saml_config.certificate


@pytest.mark.asyncio
async def test_callback_admin(adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock) -> None:
    result = await adapter.callback("adfs", saml_config, saml_response(roles=("viewer", "admin")))
    assert result.decision.is_admin is True


@pytest.mark.asyncio
async def test_callback_role_mismatch(adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock) -> None:
    with pytest.raises(RoleMismatchError) as exc_info:
        await adapter.callback("adfs", saml_config, saml_response(name_id="bob", roles=("guest",)))

    assert exc_info.value.username == "bob"
    assert exc_info.value.observed == ["guest"]


@pytest.mark.asyncio
async def test_role_attribute_is_configurable(adapter: SAMLAdapter, verifier: Mock) -> None:
    config = SAMLProviderConfig(
        endpoint="https://idp.example.com/saml/sso",
        client_id="media",
        certificate="MIIB",
        roles=["viewer"],
        role_attribute="http://schemas.microsoft.com/ws/2008/06/identity/claims/role",
    )

    result = await adapter.callback(
        "adfs", config, saml_response(role_attribute="http://schemas.microsoft.com/ws/2008/06/identity/claims/role")
    )
    assert result.decision.valid is True

    with pytest.raises(RoleMismatchError):
        await adapter.callback("adfs", config, saml_response())


@pytest.mark.asyncio
async def test_no_role_gating(adapter: SAMLAdapter, verifier: Mock) -> None:
    config = SAMLProviderConfig(endpoint="https://idp.example.com/saml/sso", client_id="media", certificate="MIIB")
    result = await adapter.callback("adfs", config, saml_response(roles=()))
    assert result.decision.valid is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, message",
    [
        ("not base64 !!", "not valid base64"),
        (base64.b64encode(b"<unclosed").decode("ascii"), "not valid XML"),
    ],
)
async def test_callback_rejects_garbage(
    adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock, payload: str, message: str
) -> None:
    with pytest.raises(ProtocolError, match=message):
        await adapter.callback("adfs", saml_config, payload)


@pytest.mark.asyncio
async def test_callback_rejects_bad_signature(
    adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock
) -> None:
    verifier.verify.side_effect = InvalidSignature("Signature verification failed")

    with pytest.raises(ProtocolError, match="signature verification failed"):
        await adapter.callback("adfs", saml_config, saml_response())


@pytest.mark.asyncio
async def test_signed_assertion_inside_unsigned_response(
    adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock
) -> None:
    xml = base64.b64decode(saml_response()).replace(
        b"<saml:Subject>",
        b'<ds:Signature xmlns:ds="http://www.w3.org/2000/09/xmldsig#"/><saml:Subject>',
    )

    def verify(root: Any, x509_cert: str) -> Mock:
        if root.tag.endswith("Response"):
            raise InvalidSignature("Response is not signed")
        return Mock(signed_xml=root)

    verifier.verify.side_effect = verify

    result = await adapter.callback("adfs", saml_config, base64.b64encode(xml).decode("ascii"))

    assert result.decision.username == "alice"
    assert verifier.verify.call_count == 2


@pytest.mark.asyncio
async def test_callback_rejects_expired_assertion(
    adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock
) -> None:
    expired = datetime.now(timezone.utc) - timedelta(minutes=10)
    with pytest.raises(ProtocolError, match="expired"):
        await adapter.callback("adfs", saml_config, saml_response(not_on_or_after=expired))


@pytest.mark.asyncio
async def test_callback_rejects_assertion_without_expiry(
    adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock
) -> None:
    with pytest.raises(ProtocolError, match="no validity window"):
        await adapter.callback("adfs", saml_config, saml_response(conditions=False))
    with pytest.raises(ProtocolError, match="no validity window"):
        await adapter.complete("adfs", saml_config, saml_response(conditions=False))


@pytest.mark.asyncio
async def test_callback_requires_name_id(adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock) -> None:
    with pytest.raises(ProtocolError, match="NameID"):
        await adapter.callback("adfs", saml_config, saml_response(name_id=" "))


@pytest.mark.asyncio
async def test_complete_reverifies(adapter: SAMLAdapter, saml_config: SAMLProviderConfig, verifier: Mock) -> None:
    result = await adapter.callback("adfs", saml_config, saml_response())

    decision = await adapter.complete("adfs", saml_config, result.data)
    assert decision.valid is True
    assert decision.username == "alice"
    assert verifier.verify.call_count == 2

    with pytest.raises(RoleMismatchError):
        await adapter.complete("adfs", saml_config, saml_response(roles=("guest",)))
