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
The contract both protocol adapters implement.
"""

from typing import Protocol, TypeVar

from coreason_sso.config import ProviderConfig
from coreason_sso.models import CallbackResult, IdentityDecision

ConfigT = TypeVar("ConfigT", bound=ProviderConfig, contravariant=True)


class ProtocolAdapter(Protocol[ConfigT]):
    """
    Normalizes one federated login protocol into the shared decision pipeline.

    Attributes:
        mode (str): Protocol tag handed to the client completion page ("OID" or "SAML").
    """

    mode: str

    async def challenge(self, provider: str, config: ConfigT, return_url: str) -> str:
        """Returns the URL the browser is redirected to at the IdP."""
        ...

    async def callback(self, provider: str, config: ConfigT, payload: str) -> CallbackResult:
        """
        Processes what the IdP sent back and reaches a decision.

        Raises:
            ProtocolError: If the protocol exchange failed.
            RoleMismatchError: If the user holds none of the allowed roles.
            NoMatchingStateError: If the login cannot be correlated with a challenge.
        """
        ...

    async def complete(self, provider: str, config: ConfigT, data: str) -> IdentityDecision:
        """
        Turns the client's completion data back into the valid decision it refers to.

        Raises:
            NoMatchingStateError: If no valid decision matches ``data``.
        """
        ...
