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
Custom exceptions for the coreason-sso package.
"""

from collections.abc import Sequence


class CoreasonSSOError(Exception):
    """Base exception for all coreason-sso errors."""


class UnknownProviderError(CoreasonSSOError):
    """Raised when no enabled provider is configured under the requested name."""


class ProtocolError(CoreasonSSOError):
    """
    Raised when the federated protocol exchange fails (bad code, bad signature, IdP error, etc.).
    The message carries the reason and is safe to show to the end user.
    """


class RoleMismatchError(CoreasonSSOError):
    """Raised when none of the presented roles is allowed to log in."""

    def __init__(self, username: str | None, observed: Sequence[str], expected: Sequence[str]) -> None:
        self.username = username
        self.observed = list(observed)
        self.expected = list(expected)
        super().__init__(f"User {username!r} has none of the expected roles {self.expected}")


class NoMatchingStateError(CoreasonSSOError):
    """
    Raised when a state token is unknown, expired, not yet decided or already consumed.
    These cases are deliberately indistinguishable.
    """


class DuplicateTokenError(CoreasonSSOError):
    """Raised when a state token is registered twice."""


class MalformedClaimError(CoreasonSSOError):
    """Raised when a claim value does not have the shape described by the role claim path."""


class ProvisioningError(CoreasonSSOError):
    """Raised when the local user could not be looked up, created or updated."""


class SessionIssuanceError(CoreasonSSOError):
    """Raised when the session authority refused or failed to issue a session."""
