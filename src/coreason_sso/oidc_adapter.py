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
OIDCAdapter component driving the OpenID Connect authorization-code flow.

Login lifecycle (per state token):
    Init --challenge--> Challenged --callback--> Returned --decide--> Decided(valid | invalid)
    Decided(valid) --complete--> Consumed
Decided states accept no further callback.
Any state may instead end as Expired when the StateStore sweeps it.
"""

import json
from collections.abc import Callable, Mapping
from typing import Any, cast

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.common.security import generate_token
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.jose import JsonWebToken
from authlib.jose.errors import BadSignatureError
from authlib.oidc.core import CodeIDToken
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_sso.config import OIDCProviderConfig
from coreason_sso.discovery import OIDCDiscovery, OIDCMetadata
from coreason_sso.exceptions import NoMatchingStateError, ProtocolError, RoleMismatchError
from coreason_sso.models import (
    CallbackResult,
    Claim,
    IdentityDecision,
    LoginStatus,
    OIDCProtocolState,
    PendingLoginState,
)
from coreason_sso.policy import RolePolicyEngine
from coreason_sso.state_store import StateStore
from coreason_sso.utils.logger import logger

tracer = trace.get_tracer(__name__)

ID_TOKEN_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384", "ES512", "PS256", "PS384", "PS512"]


def flatten_claims(payload: Mapping[str, Any]) -> tuple[Claim, ...]:
    """
    Turns a claims dictionary into an ordered claim set.

    Arrays become one claim per element with the same type. Strings are kept verbatim;
    objects and other scalars are JSON-encoded so nested role paths can descend into them.
    """
    claims: list[Claim] = []
    for claim_type, value in payload.items():
        items = value if isinstance(value, list) else [value]
        for item in items:
            if item is None:
                continue
            text = item if isinstance(item, str) else json.dumps(item)
            claims.append(Claim(type=claim_type, value=text))
    return tuple(claims)


def _mark_failed(reason: str) -> Callable[[PendingLoginState], None]:
    def mutation(record: PendingLoginState) -> None:
        if record.status is LoginStatus.CHALLENGED:
            record.failure_reason = reason
            record.status = LoginStatus.DECIDED_INVALID

    return mutation


class OIDCAdapter:
    """
    OpenID Connect adapter.

    Attributes:
        store (StateStore): In-flight logins.
        discovery (OIDCDiscovery): Provider metadata and JWKS cache.
        policy (RolePolicyEngine): Shared role policy.
    """

    mode = "OID"

    def __init__(
        self,
        store: StateStore,
        discovery: OIDCDiscovery,
        policy: RolePolicyEngine | None = None,
        http_timeout: float = 10.0,
        leeway: int = 60,
    ) -> None:
        """
        Initialize the OIDCAdapter.

        Args:
            store: The StateStore shared by all OpenID providers.
            discovery: The discovery cache.
            policy: Role policy engine. Defaults to a new RolePolicyEngine.
            http_timeout: Timeout for the token and userinfo requests.
            leeway: Acceptable clock skew in seconds when validating the ID token.
        """
        self.store = store
        self.discovery = discovery
        self.policy = policy or RolePolicyEngine()
        self.http_timeout = http_timeout
        self.leeway = leeway

    def _oauth_client(self, config: OIDCProviderConfig, redirect_uri: str) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=config.client_id,
            client_secret=config.client_secret.get_secret_value() or None,
            scope=config.scope,
            redirect_uri=redirect_uri,
            code_challenge_method="S256",
            timeout=self.http_timeout,
        )

    async def challenge(self, provider: str, config: OIDCProviderConfig, return_url: str) -> str:
        """
        Starts a login: builds the authorization URL and registers its state.

        Args:
            provider: Provider name, used for logging.
            config: The provider configuration.
            return_url: The redirect URI the IdP calls back.

        Returns:
            str: The authorization URL to redirect the browser to.

        Raises:
            ProtocolError: If the provider metadata cannot be fetched.
        """
        self.store.sweep()

        metadata = await self.discovery.get_metadata(config.endpoint)
        nonce = generate_token(32)
        code_verifier = generate_token(48)

        async with self._oauth_client(config, return_url) as client:
            url, state = client.create_authorization_url(
                metadata.authorization_endpoint,
                nonce=nonce,
                code_verifier=code_verifier,
            )

        self.store.create(
            state,
            OIDCProtocolState(state=state, nonce=nonce, redirect_uri=return_url, code_verifier=code_verifier),
        )
        logger.info(f"OpenID login challenged for provider {provider}")
        return cast(str, url)

    async def callback(self, provider: str, config: OIDCProviderConfig, payload: str) -> CallbackResult:
        """
        Finishes the code exchange and decides the login.

        Args:
            provider: Provider name.
            config: The provider configuration.
            payload: The full callback URL, including its query string.

        Returns:
            CallbackResult: The state token to hand to the client and the decision.

        Raises:
            NoMatchingStateError: If the state is unknown, expired or was already called back.
            ProtocolError: If the IdP returned an error or the exchange or ID token validation failed.
            RoleMismatchError: If the user holds none of the allowed roles.
        """
        params = httpx.URL(payload).params
        state_token = params.get("state")
        if not state_token:
            raise NoMatchingStateError("No matching login state found")

        record = self.store.get(state_token)
        if record.status is not LoginStatus.CHALLENGED:
            # A state token is redeemed by exactly one callback
            raise NoMatchingStateError("No matching login state found")

        with tracer.start_as_current_span("oidc_callback") as span:
            span.set_attribute("sso.provider", provider)
            try:
                payload_claims = await self._exchange(config, record.protocol_state, payload)
            except ProtocolError as e:
                logger.warning(f"OpenID callback for provider {provider} failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                self.store.update(state_token, _mark_failed(str(e)))
                raise

            claims = flatten_claims(payload_claims)
            decision = self.policy.decide(claims, config, config.role_claim)
            self.store.update(state_token, lambda r: r.apply_decision(decision))

            if not decision.valid:
                logger.warning(
                    f"OpenID user {decision.username} has one or more incorrect role claims: "
                    f"{list(decision.roles)}. Expected any one of: {config.roles}"
                )
                span.set_status(Status(StatusCode.ERROR, "role mismatch"))
                raise RoleMismatchError(decision.username, decision.roles, config.roles)

            logger.info(f"OpenID user {decision.username} authorized by provider {provider}")
            span.set_status(Status(StatusCode.OK))
            return CallbackResult(data=state_token, decision=decision)

    async def complete(self, provider: str, config: OIDCProviderConfig, data: str) -> IdentityDecision:
        """
        Consumes the decided login referenced by the state token in ``data``.

        Raises:
            NoMatchingStateError: If the token is unknown, expired, undecided, invalid or already used.
        """
        return self.store.consume(data).to_decision()

    async def _exchange(
        self, config: OIDCProviderConfig, protocol_state: OIDCProtocolState, authorization_response: str
    ) -> dict[str, Any]:
        """
        Exchanges the authorization code and returns the merged ID token and userinfo claims.

        Raises:
            ProtocolError: For any IdP or library level failure.
        """
        params = httpx.URL(authorization_response).params
        if "error" in params:
            description = params.get("error_description") or params["error"]
            raise ProtocolError(f"{description} Try logging in again.")
        if "code" not in params:
            raise ProtocolError("Missing authorization code. Try logging in again.")

        metadata = await self.discovery.get_metadata(config.endpoint)

        try:
            async with self._oauth_client(config, protocol_state.redirect_uri) as client:
                token = await client.fetch_token(
                    metadata.token_endpoint,
                    authorization_response=authorization_response,
                    state=protocol_state.state,
                    code_verifier=protocol_state.code_verifier.get_secret_value(),
                )
                id_token = token.get("id_token")
                if not id_token:
                    raise ProtocolError("The token response did not include an ID token.")

                claims = await self._validate_id_token(
                    config, metadata, id_token, protocol_state.nonce, token.get("access_token")
                )

                if metadata.userinfo_endpoint:
                    response = await client.get(metadata.userinfo_endpoint)
                    response.raise_for_status()
                    userinfo = response.json()
                    if not isinstance(userinfo, dict) or userinfo.get("sub") != claims.get("sub"):
                        raise ProtocolError("Userinfo subject does not match the ID token.")
                    for key, value in userinfo.items():
                        claims.setdefault(key, value)

                return claims
        except ProtocolError:
            raise
        except AuthlibBaseError as e:
            raise ProtocolError(f"{e} Try logging in again.") from e
        except httpx.HTTPError as e:
            raise ProtocolError(f"Request to the identity provider failed: {e}") from e
        except ValueError as e:
            raise ProtocolError(f"Unexpected response from the identity provider: {e}") from e

    async def _validate_id_token(
        self,
        config: OIDCProviderConfig,
        metadata: OIDCMetadata,
        id_token: str,
        nonce: str,
        access_token: str | None,
    ) -> dict[str, Any]:
        jwt = JsonWebToken(ID_TOKEN_ALGORITHMS)
        claims_options = {"iss": {"essential": True, "value": metadata.issuer}}
        claims_params = {"nonce": nonce, "client_id": config.client_id, "access_token": access_token}

        def _decode(jwks: dict[str, Any]) -> dict[str, Any]:
            claims = cast(Any, jwt).decode(
                id_token,
                jwks,
                claims_cls=CodeIDToken,
                claims_options=claims_options,
                claims_params=claims_params,
            )
            claims.validate(leeway=self.leeway)
            return dict(claims)

        jwks = await self.discovery.get_jwks(config.endpoint)
        try:
            return _decode(jwks)
        except (ValueError, BadSignatureError):
            # Possible key rotation: refresh once and retry
            logger.info("ID token validation failed with cached keys, refreshing JWKS and retrying...")
            jwks = await self.discovery.get_jwks(config.endpoint, force_refresh=True)
            return _decode(jwks)
