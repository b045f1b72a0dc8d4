import os
import sys
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

# Add src to path for running directly
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from fastapi import FastAPI, Header, HTTPException

from coreason_sso.api import create_sso_router
from coreason_sso.bridge import AuthenticationRequest
from coreason_sso.config import CoreasonSSOConfig, FolderRoleMap, OIDCProviderConfig
from coreason_sso.manager import SSOManager


class InMemoryUser:
    def __init__(self, user_id: int, username: str) -> None:
        self.id = user_id
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


class InMemoryUsers:
    def __init__(self) -> None:
        self.users: dict[str, InMemoryUser] = {}

    async def get_user_by_name(self, username: str) -> InMemoryUser | None:
        return self.users.get(username)

    async def create_user(self, username: str) -> InMemoryUser:
        user = InMemoryUser(len(self.users) + 1, username)
        self.users[username] = user
        return user

    async def update_user(self, user: InMemoryUser) -> None:
        self.users[user.username] = user


class InMemorySessions:
    async def authenticate_direct(self, request: AuthenticationRequest) -> dict[str, Any]:
        return {"AccessToken": f"demo-{request.user_id}-{request.device_id}", "User": {"Name": request.username}}


def require_elevation(x_admin_token: str | None = Header(default=None)) -> None:
    if x_admin_token != os.getenv("DEMO_ADMIN_TOKEN", "change-me"):
        raise HTTPException(status_code=403, detail="Administrator access required")


manager = SSOManager(
    CoreasonSSOConfig(),
    InMemoryUsers(),
    InMemorySessions(),
    oidc_providers={
        "keycloak": OIDCProviderConfig(
            endpoint="http://localhost:8080/realms/media",
            client_id="media-server",
            client_secret="demo-secret",
            unsafe_local_dev=True,  # Enabled for the example to allow a local Keycloak over http
            role_claim="realm_access.roles",
            roles=["media-users", "media-admins"],
            admin_roles=["media-admins"],
            enable_folder_roles=True,
            folder_role_mapping=[FolderRoleMap(role="media-users", folders=["movies"])],
        )
    },
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    async with manager:
        yield


app = FastAPI(lifespan=lifespan)
app.include_router(create_sso_router(manager, require_elevation))

# Run with: uvicorn examples.fastapi_app:app --reload
# Then open http://localhost:8000/sso/oid/p/keycloak
