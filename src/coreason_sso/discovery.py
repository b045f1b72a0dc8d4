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
OIDCDiscovery component for fetching and caching provider metadata and JWKS.
"""

import time
from typing import Any

import anyio
import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from coreason_sso.exceptions import ProtocolError
from coreason_sso.utils.logger import logger


class OIDCMetadata(BaseModel):
    """
    The subset of .well-known/openid-configuration used by the login flow.
    Endpoints are not required to share the issuer's host (Google and others do not).
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = Field(..., description="The OIDC issuer URL.")
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    userinfo_endpoint: str | None = None


class _CacheEntry:
    def __init__(self, metadata: OIDCMetadata, jwks: dict[str, Any], fetched_at: float) -> None:
        self.metadata = metadata
        self.jwks = jwks
        self.fetched_at = fetched_at


def discovery_url(authority: str) -> str:
    """Builds the discovery URL for an authority, tolerating a trailing slash or a full URL."""
    authority = authority.rstrip("/")
    if authority.endswith("/.well-known/openid-configuration"):
        return authority
    return f"{authority}/.well-known/openid-configuration"


class OIDCDiscovery:
    """
    Fetches and caches discovery documents and JWKS, one entry per authority.

    Attributes:
        cache_ttl (int): The cache time-to-live in seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache_ttl: int = 3600,
        attempts: int = 3,
        refresh_cooldown: float = 30.0,
    ) -> None:
        """
        Initialize the OIDCDiscovery.

        Args:
            client: The async HTTP client to use for requests.
            cache_ttl: Time-to-live for cached metadata and keys in seconds. Defaults to 3600.
            attempts: Fetch attempts before giving up. Defaults to 3.
            refresh_cooldown: Minimum time in seconds between forced refreshes. Defaults to 30.0.
        """
        self.client = client
        self.cache_ttl = cache_ttl
        self.attempts = attempts
        self.refresh_cooldown = refresh_cooldown
        self._cache: dict[str, _CacheEntry] = {}
        self._lock: anyio.Lock | None = None

    async def _fetch_json(self, url: str) -> dict[str, Any]:
        """
        GETs a JSON object.

        Retries on `httpx.HTTPError` with exponential backoff (initial=0.1s, max=1.0s).

        Raises:
            ProtocolError: If the request keeps failing or the body is not a JSON object.
        """
        wait_initial = 0.1
        wait_max = 1.0

        for attempt in range(self.attempts):
            try:
                response = await self.client.get(url)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                if attempt == self.attempts - 1:
                    raise ProtocolError(f"Failed to fetch {url}: {e}") from e
                await anyio.sleep(min(wait_initial * (2**attempt), wait_max))
                continue
            except ValueError as e:
                raise ProtocolError(f"Invalid JSON from {url}: {e}") from e

            if not isinstance(data, dict):
                raise ProtocolError(f"Expected a JSON object from {url}")
            return data

        raise ProtocolError(f"Failed to fetch {url}")  # pragma: no cover

    async def _refresh(self, authority: str) -> _CacheEntry:
        url = discovery_url(authority)
        try:
            metadata = OIDCMetadata(**await self._fetch_json(url))
        except ValidationError as e:
            raise ProtocolError(f"Invalid OIDC configuration from {url}: {e}") from e

        jwks = await self._fetch_json(metadata.jwks_uri)
        entry = _CacheEntry(metadata, jwks, time.time())
        self._cache[authority] = entry
        logger.debug(f"Refreshed OIDC discovery for {authority}")
        return entry

    def _fresh(self, authority: str) -> _CacheEntry | None:
        entry = self._cache.get(authority)
        if entry is not None and (time.time() - entry.fetched_at) < self.cache_ttl:
            return entry
        return None

    async def _get(self, authority: str, force_refresh: bool = False) -> _CacheEntry:
        if self._lock is None:
            self._lock = anyio.Lock()

        # Double-checked locking (check 1: no lock)
        if not force_refresh and (entry := self._fresh(authority)) is not None:
            return entry

        async with self._lock:
            entry = self._cache.get(authority)
            if entry is not None:
                age = time.time() - entry.fetched_at
                if not force_refresh and age < self.cache_ttl:
                    return entry
                # DoS protection: a forced refresh inside the cooldown keeps the cached keys
                if force_refresh and age < self.refresh_cooldown:
                    logger.warning("JWKS refresh cooldown active. Returning cached keys despite force_refresh request.")
                    return entry
            return await self._refresh(authority)

    async def get_metadata(self, authority: str) -> OIDCMetadata:
        """
        Returns the provider metadata, using the cache if valid.

        Raises:
            ProtocolError: If fetching or validation fails.
        """
        return (await self._get(authority)).metadata

    async def get_jwks(self, authority: str, force_refresh: bool = False) -> dict[str, Any]:
        """
        Returns the provider's JWKS, using the cache if valid.

        Args:
            authority: The provider endpoint.
            force_refresh: Bypass the cache, e.g. after a signature failure caused by key rotation.
        """
        return (await self._get(authority, force_refresh)).jwks

    def invalidate(self, authority: str) -> None:
        """Forgets a provider, e.g. after its configuration was replaced."""
        self._cache.pop(authority, None)
