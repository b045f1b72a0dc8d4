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
FastAPI routes exposing the SSO flows and their administration.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import APIRouter, Body, Depends, Form, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from coreason_sso.config import OIDCProviderConfig, SAMLProviderConfig
from coreason_sso.exceptions import (
    NoMatchingStateError,
    ProtocolError,
    ProvisioningError,
    RoleMismatchError,
    SessionIssuanceError,
    UnknownProviderError,
)
from coreason_sso.manager import SSOManager
from coreason_sso.models import AuthRequest


@contextmanager
def _sso_errors(no_state_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> Iterator[None]:
    """Maps the SSO error taxonomy onto HTTP responses."""
    try:
        yield
    except UnknownProviderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No matching provider found") from e
    except ProtocolError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except RoleMismatchError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Error. Check permissions.") from e
    except NoMatchingStateError as e:
        raise HTTPException(status_code=no_state_status, detail="Something went wrong") from e
    except (ProvisioningError, SessionIssuanceError) as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Something went wrong") from e


def _request_base(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def create_sso_router(manager: SSOManager, require_elevation: Callable[..., Any]) -> APIRouter:
    """
    Builds the SSO router.

    Args:
        manager: The process-wide SSOManager.
        require_elevation: Dependency raising unless the caller is an administrator.

    Returns:
        APIRouter: Routes mounted under ``manager.route_prefix``.
    """
    router = APIRouter(prefix=manager.route_prefix, tags=["sso"])
    admin = [Depends(require_elevation)]

    # OpenID Connect

    @router.get("/oid/p/{provider}")
    async def oid_challenge(provider: str, request: Request) -> RedirectResponse:
        with _sso_errors():
            url = await manager.oidc_challenge(provider, _request_base(request))
        return RedirectResponse(url, status_code=status.HTTP_302_FOUND)

    # A GET despite the name: the IdP redirects the browser here with code and state
    @router.get("/oid/r/{provider}", response_class=HTMLResponse)
    async def oid_callback(provider: str, request: Request) -> HTMLResponse:
        with _sso_errors(no_state_status=status.HTTP_400_BAD_REQUEST):
            page = await manager.oidc_callback(provider, str(request.url), _request_base(request))
        return HTMLResponse(page)

    @router.post("/oid/auth/{provider}")
    async def oid_auth(provider: str, body: AuthRequest) -> JSONResponse:
        with _sso_errors():
            result = await manager.oidc_authenticate(provider, body)
        return JSONResponse(jsonable_encoder(result))

    @router.post("/oid/add/{provider}", dependencies=admin)
    async def oid_add(provider: str, config: OIDCProviderConfig) -> None:
        manager.add_oidc_provider(provider, config)

    @router.get("/oid/del/{provider}", dependencies=admin)
    async def oid_del(provider: str) -> None:
        manager.remove_oidc_provider(provider)

    @router.get("/oid/get", dependencies=admin)
    async def oid_providers() -> dict[str, dict[str, Any]]:
        # Client secrets never leave the server
        return {
            name: config.model_dump(mode="json", by_alias=True, exclude={"client_secret"})
            for name, config in manager.oidc_providers.all().items()
        }

    @router.get("/oid/states", dependencies=admin)
    async def oid_states() -> list[dict[str, Any]]:
        return manager.oidc_states()

    # SAML

    @router.get("/saml/p/{provider}")
    async def saml_challenge(provider: str, request: Request) -> RedirectResponse:
        with _sso_errors():
            url = await manager.saml_challenge(provider, _request_base(request))
        return RedirectResponse(url, status_code=status.HTTP_302_FOUND)

    @router.post("/saml/p/{provider}", response_class=HTMLResponse)
    async def saml_callback(
        provider: str, request: Request, saml_response: str = Form(..., alias="SAMLResponse")
    ) -> HTMLResponse:
        with _sso_errors(no_state_status=status.HTTP_400_BAD_REQUEST):
            page = await manager.saml_callback(provider, saml_response, _request_base(request))
        return HTMLResponse(page)

    @router.post("/saml/auth/{provider}")
    async def saml_auth(provider: str, body: AuthRequest) -> JSONResponse:
        with _sso_errors():
            result = await manager.saml_authenticate(provider, body)
        return JSONResponse(jsonable_encoder(result))

    @router.post("/saml/add/{provider}", dependencies=admin)
    async def saml_add(provider: str, config: SAMLProviderConfig) -> None:
        manager.add_saml_provider(provider, config)

    @router.get("/saml/del/{provider}", dependencies=admin)
    async def saml_del(provider: str) -> None:
        manager.remove_saml_provider(provider)

    @router.get("/saml/get", dependencies=admin)
    async def saml_providers() -> dict[str, SAMLProviderConfig]:
        return manager.saml_providers.all()

    @router.post("/unregister/{username}", dependencies=admin)
    async def unregister(username: str, provider: str = Body(...)) -> None:
        with _sso_errors():
            await manager.unregister(username, provider)

    return router
