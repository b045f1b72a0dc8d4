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
SSOManager component orchestrating both login protocols (The Core).
"""

from collections.abc import Callable, Mapping
from typing import Any, TypeVar

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_sso.adapter import ProtocolAdapter
from coreason_sso.bridge import AuthenticationBridge, SessionManager, UserManager
from coreason_sso.config import CoreasonSSOConfig, OIDCProviderConfig, ProviderConfig, SAMLProviderConfig
from coreason_sso.discovery import OIDCDiscovery
from coreason_sso.handoff import HandoffRenderer, render_handoff_page
from coreason_sso.models import AuthRequest, HandoffPayload
from coreason_sso.oidc_adapter import OIDCAdapter
from coreason_sso.policy import RolePolicyEngine
from coreason_sso.registry import ProviderRegistry
from coreason_sso.saml_adapter import SAMLAdapter
from coreason_sso.state_store import StateStore
from coreason_sso.utils.logger import logger

ConfigT = TypeVar("ConfigT", bound=ProviderConfig)


class SSOManager:
    """
    Owns the process-wide login state and wires adapters, policy and bridge together.
    Handles resources via async context manager: leaving it drops in-flight logins and
    closes the internally created HTTP client.
    """

    def __init__(
        self,
        config: CoreasonSSOConfig,
        users: UserManager,
        sessions: SessionManager,
        oidc_providers: Mapping[str, OIDCProviderConfig] | None = None,
        saml_providers: Mapping[str, SAMLProviderConfig] | None = None,
        on_oidc_change: Callable[[dict[str, OIDCProviderConfig]], None] | None = None,
        on_saml_change: Callable[[dict[str, SAMLProviderConfig]], None] | None = None,
        client: httpx.AsyncClient | None = None,
        renderer: HandoffRenderer = render_handoff_page,
        route_prefix: str = "/sso",
    ) -> None:
        """
        Initialize the SSOManager.

        Args:
            config: Process-wide settings.
            users: The media server's user store.
            sessions: The media server's session authority.
            oidc_providers: Initially configured OpenID providers.
            saml_providers: Initially configured SAML providers.
            on_oidc_change: Called with all OpenID providers after each add or remove, for persistence.
            on_saml_change: Called with all SAML providers after each add or remove, for persistence.
            client: External async client (optional). If not provided, one is created and owned here.
            renderer: Renders the client hand-off page.
            route_prefix: Path under which the SSO routes are mounted, used for redirect URIs.
        """
        self.config = config
        self._internal_client = client is None
        if client:
            self._client = client
        else:
            self._client = httpx.AsyncClient(timeout=config.http_timeout)
            # Instrument the owned client for distributed tracing
            HTTPXClientInstrumentor().instrument_client(self._client)
        self.route_prefix = route_prefix.rstrip("/")
        self.renderer = renderer

        self.store = StateStore(ttl=config.state_ttl_seconds)
        self.discovery = OIDCDiscovery(self._client, cache_ttl=config.discovery_cache_ttl)
        self.policy = RolePolicyEngine()
        self.oidc = OIDCAdapter(self.store, self.discovery, self.policy, http_timeout=config.http_timeout)
        self.saml = SAMLAdapter(self.policy)
        self.bridge = AuthenticationBridge(users, sessions)
        self.oidc_providers: ProviderRegistry[OIDCProviderConfig] = ProviderRegistry(
            oidc_providers, on_change=on_oidc_change
        )
        self.saml_providers: ProviderRegistry[SAMLProviderConfig] = ProviderRegistry(
            saml_providers, on_change=on_saml_change
        )
        logger.info("SSO manager initialized")

    async def __aenter__(self) -> "SSOManager":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.store.close()
        if self._internal_client:
            await self._client.aclose()

    def base_url(self, request_base: str) -> str:
        """The externally visible base URL: the configured override, else the request's."""
        return self.config.public_base_url or request_base.rstrip("/")

    def oidc_redirect_uri(self, provider: str, request_base: str) -> str:
        return f"{self.base_url(request_base)}{self.route_prefix}/oid/r/{provider}"

    def saml_acs_url(self, provider: str, request_base: str) -> str:
        return f"{self.base_url(request_base)}{self.route_prefix}/saml/p/{provider}"

    # Shared pipeline

    async def _callback(
        self,
        adapter: ProtocolAdapter[ConfigT],
        registry: ProviderRegistry[ConfigT],
        provider: str,
        payload: str,
        request_base: str,
    ) -> str:
        config = registry.get(provider)
        result = await adapter.callback(provider, config, payload)
        return self.renderer(
            HandoffPayload(provider=provider, mode=adapter.mode, data=result.data, base_url=self.base_url(request_base))
        )

    async def _authenticate(
        self,
        adapter: ProtocolAdapter[ConfigT],
        registry: ProviderRegistry[ConfigT],
        provider: str,
        request: AuthRequest,
    ) -> Any:
        config = registry.get(provider)
        decision = await adapter.complete(provider, config, request.data)
        return await self.bridge.authenticate(decision, request.device, config)

    # OpenID Connect

    async def oidc_challenge(self, provider: str, request_base: str) -> str:
        """
        Starts an OpenID login.

        Returns:
            str: The IdP authorization URL.

        Raises:
            UnknownProviderError: If the provider is unknown or disabled.
            ProtocolError: If the provider metadata cannot be fetched.
        """
        config = self.oidc_providers.get(provider)
        return await self.oidc.challenge(provider, config, self.oidc_redirect_uri(provider, request_base))

    async def oidc_callback(self, provider: str, callback_url: str, request_base: str) -> str:
        """
        Handles the IdP redirect back and returns the hand-off page.

        Raises:
            UnknownProviderError, NoMatchingStateError, ProtocolError, RoleMismatchError
        """
        return await self._callback(self.oidc, self.oidc_providers, provider, callback_url, request_base)

    async def oidc_authenticate(self, provider: str, request: AuthRequest) -> Any:
        """
        Completes an OpenID login for the state token in ``request.data``.

        Raises:
            UnknownProviderError, NoMatchingStateError, ProvisioningError, SessionIssuanceError
        """
        return await self._authenticate(self.oidc, self.oidc_providers, provider, request)

    def oidc_states(self) -> list[dict[str, Any]]:
        """Diagnostic listing of in-flight OpenID logins."""
        return [record.public_view() for record in self.store.snapshot()]

    def add_oidc_provider(self, provider: str, config: OIDCProviderConfig) -> None:
        """
        Saves an OpenID provider. An empty client secret keeps the one already stored,
        since provider listings never return it.
        """
        if not config.client_secret.get_secret_value():
            existing = self.oidc_providers.all().get(provider)
            if existing is not None:
                config = config.model_copy(update={"client_secret": existing.client_secret})
        self.discovery.invalidate(config.endpoint)
        self.oidc_providers.add(provider, config)
        logger.info(f"OpenID provider {provider} saved")

    def remove_oidc_provider(self, provider: str) -> bool:
        removed = self.oidc_providers.remove(provider)
        if removed:
            logger.info(f"OpenID provider {provider} removed")
        return removed

    # SAML

    async def saml_challenge(self, provider: str, request_base: str) -> str:
        """
        Starts a SAML login.

        Raises:
            UnknownProviderError: If the provider is unknown or disabled.
        """
        config = self.saml_providers.get(provider)
        return await self.saml.challenge(provider, config, self.saml_acs_url(provider, request_base))

    async def saml_callback(self, provider: str, saml_response: str, request_base: str) -> str:
        """
        Handles the IdP's SAMLResponse post and returns the hand-off page.

        Raises:
            UnknownProviderError, ProtocolError, RoleMismatchError
        """
        return await self._callback(self.saml, self.saml_providers, provider, saml_response, request_base)

    async def saml_authenticate(self, provider: str, request: AuthRequest) -> Any:
        """
        Completes a SAML login for the encoded response in ``request.data``.

        Raises:
            UnknownProviderError, ProtocolError, RoleMismatchError, ProvisioningError, SessionIssuanceError
        """
        return await self._authenticate(self.saml, self.saml_providers, provider, request)

    def add_saml_provider(self, provider: str, config: SAMLProviderConfig) -> None:
        self.saml_providers.add(provider, config)
        logger.info(f"SAML provider {provider} saved")

    def remove_saml_provider(self, provider: str) -> bool:
        removed = self.saml_providers.remove(provider)
        if removed:
            logger.info(f"SAML provider {provider} removed")
        return removed

    async def unregister(self, username: str, provider_id: str) -> None:
        """Moves a user off SSO to another authentication provider."""
        await self.bridge.unregister(username, provider_id)
