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
AuthenticationBridge component handing a decided login to the local user/session authority.
"""

from collections.abc import Sequence
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict

from coreason_sso.config import ProviderConfig
from coreason_sso.exceptions import CoreasonSSOError, NoMatchingStateError, ProvisioningError, SessionIssuanceError
from coreason_sso.models import DeviceDescriptor, IdentityDecision
from coreason_sso.utils.logger import logger

SSO_AUTHENTICATION_PROVIDER_ID = "coreason_sso.bridge.AuthenticationBridge"


class LocalUser(Protocol):
    """A user record of the media server."""

    id: Any
    username: str
    authentication_provider_id: str | None

    def set_administrator(self, enabled: bool) -> None: ...

    def set_all_folders(self, enabled: bool) -> None: ...

    def set_enabled_folders(self, folders: Sequence[str]) -> None: ...


class UserManager(Protocol):
    """The media server's user store."""

    async def get_user_by_name(self, username: str) -> LocalUser | None: ...

    async def create_user(self, username: str) -> LocalUser: ...

    async def update_user(self, user: LocalUser) -> None: ...


class AuthenticationRequest(BaseModel):
    """What the session authority needs to open a session for a device."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    user_id: Any
    username: str
    app: str
    app_version: str
    device_id: str
    device_name: str


class SessionManager(Protocol):
    """The media server's session authority."""

    async def authenticate_direct(self, request: AuthenticationRequest) -> Any: ...


class AuthenticationBridge:
    """
    Provisions or updates the local user for a decision and requests a session.

    Neither external call is retried; failures are wrapped once and surfaced.
    """

    def __init__(
        self,
        users: UserManager,
        sessions: SessionManager,
        provider_id: str = SSO_AUTHENTICATION_PROVIDER_ID,
    ) -> None:
        """
        Initialize the AuthenticationBridge.

        Args:
            users: The user store.
            sessions: The session authority.
            provider_id: Authentication provider id bound to users created here.
        """
        self.users = users
        self.sessions = sessions
        self.provider_id = provider_id

    async def _provision(self, decision: IdentityDecision, policy: ProviderConfig) -> LocalUser:
        username = decision.username
        if not username:
            raise NoMatchingStateError("Decision carries no username")

        user = await self.users.get_user_by_name(username)
        if user is None:
            logger.info(f"SSO user {username} doesn't exist, creating...")
            user = await self.users.create_user(username)
            user.authentication_provider_id = self.provider_id

        if policy.enable_authorization:
            user.set_administrator(decision.is_admin)
            user.set_all_folders(policy.enable_all_folders)
            if not policy.enable_all_folders:
                user.set_enabled_folders(list(decision.folders))

        await self.users.update_user(user)

        if policy.default_provider:
            user.authentication_provider_id = policy.default_provider
            await self.users.update_user(user)
            logger.info(f"Set default login provider of {username} to {policy.default_provider}")

        return user

    async def authenticate(
        self, decision: IdentityDecision, device: DeviceDescriptor, policy: ProviderConfig
    ) -> Any:
        """
        Completes a login for a valid decision.

        Args:
            decision: The valid decision reached during the callback.
            device: The client device requesting the session.
            policy: The provider configuration (authorization flags, default provider).

        Returns:
            Any: The session authority's result, returned as is.

        Raises:
            NoMatchingStateError: If the decision is not valid or has no username.
            ProvisioningError: If the user could not be looked up, created or updated.
            SessionIssuanceError: If the session authority failed.
        """
        if not decision.valid:
            raise NoMatchingStateError("Decision is not valid")

        try:
            user = await self._provision(decision, policy)
        except CoreasonSSOError:
            raise
        except Exception as e:
            logger.exception(f"Provisioning failed for SSO user {decision.username}")
            raise ProvisioningError(f"Provisioning failed: {e}") from e

        request = AuthenticationRequest(
            user_id=user.id,
            username=user.username,
            app=device.app_name,
            app_version=device.app_version,
            device_id=device.device_id,
            device_name=device.device_name,
        )
        logger.info(f"Auth request created for {user.username} on device {device.device_name}")

        try:
            return await self.sessions.authenticate_direct(request)
        except Exception as e:
            logger.exception(f"Session issuance failed for SSO user {user.username}")
            raise SessionIssuanceError(f"Session issuance failed: {e}") from e

    async def unregister(self, username: str, provider_id: str) -> None:
        """
        Switches an existing user back to another authentication provider.

        Raises:
            ProvisioningError: If the user does not exist or cannot be updated.
        """
        try:
            user = await self.users.get_user_by_name(username)
        except Exception as e:
            raise ProvisioningError(f"User lookup failed: {e}") from e
        if user is None:
            raise ProvisioningError(f"No user named {username!r}")

        user.authentication_provider_id = provider_id
        try:
            await self.users.update_user(user)
        except Exception as e:
            raise ProvisioningError(f"Updating {username!r} failed: {e}") from e
        logger.info(f"Moved user {username} to authentication provider {provider_id}")
