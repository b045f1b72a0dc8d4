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
Configuration for the coreason-sso package.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreasonSSOConfig(BaseSettings):
    """
    Process-wide settings for coreason-sso.

    Attributes:
        state_ttl_seconds (float): Lifetime of an in-flight OpenID login before it may be swept.
        http_timeout (float): Timeout in seconds for all IdP network operations.
        discovery_cache_ttl (int): How long OpenID discovery documents and JWKS are cached.
        public_base_url (str | None): Overrides the request base URL when building redirect URIs.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_SSO_",
        case_sensitive=False,
    )

    state_ttl_seconds: float = Field(default=60.0, gt=0)
    http_timeout: float = Field(default=10.0, gt=0, description="Timeout in seconds for all IdP network operations.")
    discovery_cache_ttl: int = Field(default=3600, ge=0)
    public_base_url: str | None = None

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        return v.rstrip("/") if v else v


class FolderRoleMap(BaseModel):
    """Grants a set of library folders to everyone holding ``role``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    role: str = Field(..., alias="Role")
    folders: list[str] = Field(default_factory=list, alias="Folders")


def _dedupe(values: Any) -> Any:
    if isinstance(values, (list, tuple)):
        return list(dict.fromkeys(str(v) for v in values if v is not None))
    return values


class ProviderConfig(BaseModel):
    """
    Settings shared by both protocols. Read-only to the core; owned by the ProviderRegistry.

    Attributes:
        endpoint (str): The IdP authority (OpenID) or SSO redirect URL (SAML).
        client_id (str): The client id (OpenID) or SP entity id (SAML).
        enabled (bool): Disabled providers behave as if they were not configured.
        roles (list[str]): Roles allowed to log in. Empty disables role gating.
        admin_roles (list[str]): Roles granting administrator permission.
        enable_authorization (bool): Whether admin and folder grants are applied to the local user.
        enable_all_folders (bool): Grants every library folder, ignoring folder grants.
        enabled_folders (list[str]): Static folder grant used when folder roles are disabled.
        enable_folder_roles (bool): Derive folder grants from ``folder_role_mapping``.
        folder_role_mapping (list[FolderRoleMap]): Role to folders mapping.
        default_provider (str | None): Authentication provider id the user is rebound to after login.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    unsafe_local_dev: bool = False
    endpoint: str
    client_id: str
    enabled: bool = True
    roles: list[str] = Field(default_factory=list)
    admin_roles: list[str] = Field(default_factory=list)
    enable_authorization: bool = True
    enable_all_folders: bool = False
    enabled_folders: list[str] = Field(default_factory=list)
    enable_folder_roles: bool = False
    folder_role_mapping: list[FolderRoleMap] = Field(default_factory=list)
    default_provider: str | None = None

    @field_validator("roles", "admin_roles", "enabled_folders", mode="before")
    @classmethod
    def dedupe_lists(cls, v: Any) -> Any:
        """Drops duplicates and None entries while keeping the configured order."""
        return _dedupe(v)

    @field_validator("endpoint")
    @classmethod
    def validate_https(cls, v: str, info: ValidationInfo) -> str:
        """
        Ensures the IdP endpoint uses HTTPS, unless strictly opted out for local dev.
        """
        v = v.strip()
        if not v:
            raise ValueError("Provider endpoint must not be empty.")
        if v.startswith("http://") and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return v

    @field_validator("default_provider")
    @classmethod
    def empty_default_provider_is_none(cls, v: str | None) -> str | None:
        return v or None


class OIDCProviderConfig(ProviderConfig):
    """
    OpenID Connect provider.

    Attributes:
        client_secret (SecretStr): The OIDC client secret.
        scopes (list[str]): Extra scopes requested on top of ``openid profile``.
        role_claim (str): Dotted path to the role list, ``\\.`` escapes a literal dot.
    """

    client_secret: SecretStr = SecretStr("")
    scopes: list[str] = Field(default_factory=list)
    role_claim: str = "groups"

    @field_validator("scopes", mode="before")
    @classmethod
    def dedupe_scopes(cls, v: Any) -> Any:
        return _dedupe(v)

    @property
    def scope(self) -> str:
        """The space-delimited scope string sent to the IdP."""
        requested = ["openid", "profile"] + [s for s in self.scopes if s not in ("openid", "profile")]
        return " ".join(requested)


class SAMLProviderConfig(ProviderConfig):
    """
    SAML 2.0 provider.

    Attributes:
        certificate (str): PEM (or bare base64) signing certificate of the IdP.
        role_attribute (str): Name of the assertion attribute carrying roles.
    """

    certificate: str
    role_attribute: str = "Role"

    @field_validator("certificate")
    @classmethod
    def normalize_certificate(cls, v: str) -> str:
        """Wraps a bare base64 certificate body into PEM armor."""
        v = v.strip()
        if not v:
            raise ValueError("A signing certificate is required.")
        if "BEGIN CERTIFICATE" in v:
            return v
        body = "".join(v.split())
        lines = [body[i : i + 64] for i in range(0, len(body), 64)]
        return "-----BEGIN CERTIFICATE-----\n" + "\n".join(lines) + "\n-----END CERTIFICATE-----"
