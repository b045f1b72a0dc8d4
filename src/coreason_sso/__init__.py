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
Single sign-on bridge for a media server: OpenID Connect and SAML logins turned into
local users, permissions, library folder grants and sessions.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .bridge import AuthenticationBridge
from .claim_path import ClaimPathResolver, parse_claim_path
from .config import CoreasonSSOConfig, FolderRoleMap, OIDCProviderConfig, SAMLProviderConfig
from .exceptions import CoreasonSSOError
from .manager import SSOManager
from .models import AuthRequest, IdentityDecision
from .oidc_adapter import OIDCAdapter
from .policy import RolePolicyEngine
from .saml_adapter import SAMLAdapter
from .state_store import StateStore

__all__ = [
    "AuthRequest",
    "AuthenticationBridge",
    "ClaimPathResolver",
    "CoreasonSSOConfig",
    "CoreasonSSOError",
    "FolderRoleMap",
    "IdentityDecision",
    "OIDCAdapter",
    "OIDCProviderConfig",
    "RolePolicyEngine",
    "SAMLAdapter",
    "SAMLProviderConfig",
    "SSOManager",
    "StateStore",
    "parse_claim_path",
]
