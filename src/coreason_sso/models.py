# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sso

"""
Data models for the coreason-sso package.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from coreason_sso.exceptions import NoMatchingStateError


class Claim(BaseModel):
    """A single typed attribute asserted by the IdP. Claim sets are ordered tuples of these."""

    model_config = ConfigDict(frozen=True)

    type: str
    value: str


class LoginStatus(StrEnum):
    CHALLENGED = "challenged"
    DECIDED_VALID = "decided_valid"
    DECIDED_INVALID = "decided_invalid"
    CONSUMED = "consumed"


class OIDCProtocolState(BaseModel):
    """
    What the OpenID adapter needs to finish the code exchange it started.
    Opaque to everything but the adapter.
    """

    model_config = ConfigDict(frozen=True)

    state: str
    nonce: str
    redirect_uri: str
    code_verifier: SecretStr

    def __repr__(self) -> str:
        return f"OIDCProtocolState(state='<REDACTED>', redirect_uri={self.redirect_uri!r})"


class RoleGrant(BaseModel):
    """Result of evaluating one role list against a provider policy."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    is_admin: bool = False
    folders: tuple[str, ...] = ()


class IdentityDecision(BaseModel):
    """
    The final authorization decision for one login. Produced once per callback and
    consumed once by the AuthenticationBridge.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "valid": True,
                "username": "alice",
                "is_admin": False,
                "folders": ["movies", "music"],
            }
        },
    )

    valid: bool = False
    username: str | None = None
    is_admin: bool = False
    folders: tuple[str, ...] = ()
    roles: tuple[str, ...] = Field(default=(), description="The roles the decision was based on.")


class PendingLoginState(BaseModel):
    """
    An in-flight OpenID login, keyed by its state token in the StateStore.

    ``created_at`` is wall-clock time for display; ``created_mono`` is the
    monotonic timestamp used for expiry.
    """

    model_config = ConfigDict(validate_assignment=True)

    state_token: str
    protocol_state: OIDCProtocolState
    created_at: float
    created_mono: float
    status: LoginStatus = LoginStatus.CHALLENGED
    valid: bool = False
    username: str | None = None
    is_admin: bool = False
    folders: tuple[str, ...] = ()
    roles: tuple[str, ...] = ()
    failure_reason: str | None = None

    def apply_decision(self, decision: IdentityDecision) -> None:
        """
        Writes the decision into a challenged record.

        A record is decided once; later decisions are refused.

        Raises:
            NoMatchingStateError: If the record has already been decided.
        """
        if self.status is not LoginStatus.CHALLENGED:
            raise NoMatchingStateError("No matching login state found")
        self.valid = decision.valid
        self.username = decision.username
        self.is_admin = decision.is_admin
        self.folders = decision.folders
        self.roles = decision.roles
        self.status = LoginStatus.DECIDED_VALID if self.valid else LoginStatus.DECIDED_INVALID

    def to_decision(self) -> IdentityDecision:
        return IdentityDecision(
            valid=self.valid,
            username=self.username,
            is_admin=self.is_admin,
            folders=self.folders,
            roles=self.roles,
        )

    def public_view(self) -> dict[str, Any]:
        """Diagnostic view without protocol secrets."""
        return self.model_dump(exclude={"protocol_state", "created_mono"})


class DeviceDescriptor(BaseModel):
    """The client device a session is issued for."""

    model_config = ConfigDict(frozen=True)

    app_name: str
    app_version: str
    device_id: str
    device_name: str


class AuthRequest(BaseModel):
    """
    Body of the completion call made by the client after the hand-off page.

    Attributes:
        data (str): The state token (OpenID) or the encoded assertion (SAML).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    device_id: str = Field(..., alias="deviceId")
    device_name: str = Field(..., alias="deviceName")
    app_name: str = Field(..., alias="appName")
    app_version: str = Field(..., alias="appVersion")
    data: str

    @property
    def device(self) -> DeviceDescriptor:
        return DeviceDescriptor(
            app_name=self.app_name,
            app_version=self.app_version,
            device_id=self.device_id,
            device_name=self.device_name,
        )

    def __repr__(self) -> str:
        return f"AuthRequest(device_id={self.device_id!r}, app_name={self.app_name!r}, data='<REDACTED>')"


class SAMLIdentity(BaseModel):
    """Identity read from a signature-verified SAML response."""

    model_config = ConfigDict(frozen=True)

    name_id: str
    roles: tuple[str, ...] = ()
    xml: bytes


class HandoffPayload(BaseModel):
    """What the client completion page needs to finish the login."""

    model_config = ConfigDict(frozen=True)

    provider: str
    mode: str
    data: str
    base_url: str


class CallbackResult(BaseModel):
    """
    Outcome of a successful IdP callback.

    Attributes:
        data (str): What the client passes back on completion (state token or encoded assertion).
        decision (IdentityDecision): The authorization decision reached for the login.
    """

    model_config = ConfigDict(frozen=True)

    data: str
    decision: IdentityDecision
