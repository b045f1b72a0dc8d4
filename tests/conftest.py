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
import itertools
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import Mock

import pytest

from coreason_sso.bridge import AuthenticationRequest
from coreason_sso.config import FolderRoleMap, OIDCProviderConfig, SAMLProviderConfig
from coreason_sso.models import DeviceDescriptor

# Not a real certificate: signature verification is patched wherever it is used
TEST_CERTIFICATE = "MIIBszCCAVmgAwIBAgIUTESTCERTIFICATEBODY0000000000000"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUser:
    _ids = itertools.count(1)

    def __init__(self, username: str) -> None:
        self.id = next(self._ids)
        self.username = username
        self.authentication_provider_id: str | None = None
        self.is_admin = False
        self.all_folders = False
        self.folders: list[str] = []

    def set_administrator(self, enabled: bool) -> None:
        self.is_admin = enabled

    def set_all_folders(self, enabled: bool) -> None:
        self.all_folders = enabled

    def set_enabled_folders(self, folders: Sequence[str]) -> None:
        self.folders = list(folders)


class FakeUserManager:
    def __init__(self) -> None:
        self.users: dict[str, FakeUser] = {}
        self.created: list[str] = []
        self.updates: list[str] = []

    async def get_user_by_name(self, username: str) -> FakeUser | None:
        return self.users.get(username)

    async def create_user(self, username: str) -> FakeUser:
        user = FakeUser(username)
        self.users[username] = user
        self.created.append(username)
        return user

    async def update_user(self, user: FakeUser) -> None:
        self.updates.append(user.username)


class FakeSessionManager:
    def __init__(self) -> None:
        self.requests: list[AuthenticationRequest] = []

    async def authenticate_direct(self, request: AuthenticationRequest) -> dict[str, Any]:
        self.requests.append(request)
        return {
            "AccessToken": f"session-{request.username}",
            "User": {"Id": request.user_id, "Name": request.username},
        }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def users() -> FakeUserManager:
    return FakeUserManager()


@pytest.fixture
def sessions() -> FakeSessionManager:
    return FakeSessionManager()


@pytest.fixture
def device() -> DeviceDescriptor:
    return DeviceDescriptor(app_name="Web", app_version="10.9.0", device_id="dev-1", device_name="Firefox")


@pytest.fixture
def oidc_config() -> OIDCProviderConfig:
    return OIDCProviderConfig(
        endpoint="https://idp.example.com/realms/media",
        client_id="media-server",
        client_secret="s3cret",
        role_claim="groups",
        roles=["media-users", "media-admins"],
        admin_roles=["media-admins"],
        enable_folder_roles=True,
        folder_role_mapping=[
            FolderRoleMap(role="media-users", folders=["movies"]),
            FolderRoleMap(role="media-admins", folders=["movies", "archive"]),
        ],
    )


@pytest.fixture
def saml_config() -> SAMLProviderConfig:
    return SAMLProviderConfig(
        endpoint="https://idp.example.com/saml/sso",
        client_id="https://media.example.com/sso",
        certificate=TEST_CERTIFICATE,
        roles=["viewer", "admin"],
        admin_roles=["admin"],
        enabled_folders=["movies"],
    )


def saml_response(
    name_id: str = "alice",
    roles: tuple[str, ...] = ("viewer",),
    role_attribute: str = "Role",
    not_on_or_after: datetime | None = None,
    conditions: bool = True,
) -> str:
    """Base64 encoded, unsigned SAML response for ``name_id``."""
    expiry = (not_on_or_after or datetime.now(timezone.utc) + timedelta(minutes=5)).strftime("%Y-%m-%dT%H:%M:%SZ")
    window = f'<saml:Conditions NotOnOrAfter="{expiry}"/>' if conditions else ""
    values = "".join(f"<saml:AttributeValue>{role}</saml:AttributeValue>" for role in roles)
    xml = f"""<samlp:Response xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
        xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion" ID="_r1" Version="2.0">
      <saml:Assertion ID="_a1" Version="2.0">
        <saml:Subject><saml:NameID>{name_id}</saml:NameID></saml:Subject>
        {window}
        <saml:AttributeStatement>
          <saml:Attribute Name="{role_attribute}">{values}</saml:Attribute>
          <saml:Attribute Name="email"><saml:AttributeValue>{name_id}@example.com</saml:AttributeValue></saml:Attribute>
        </saml:AttributeStatement>
      </saml:Assertion>
    </samlp:Response>"""
    return base64.b64encode(xml.encode("utf-8")).decode("ascii")


@pytest.fixture
def verifier(monkeypatch: pytest.MonkeyPatch) -> Mock:
    """Accepts every document as signed in full."""
    instance = Mock()
    instance.verify.side_effect = lambda root, x509_cert: Mock(signed_xml=root)
    monkeypatch.setattr("coreason_sso.saml_adapter.XMLVerifier", Mock(return_value=instance))
    return instance
