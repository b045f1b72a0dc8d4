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
RolePolicyEngine component mapping IdP roles to login, admin and folder grants.
"""

from collections.abc import Iterable, Sequence

from coreason_sso.claim_path import ClaimPathResolver
from coreason_sso.config import ProviderConfig
from coreason_sso.models import Claim, IdentityDecision, RoleGrant

USERNAME_CLAIM = "preferred_username"
SUBJECT_CLAIM = "sub"


class RolePolicyEngine:
    """
    Evaluates roles against a provider's policy. Shared by both protocol adapters.
    """

    def evaluate(self, roles: Iterable[str], policy: ProviderConfig) -> RoleGrant:
        """
        Maps a role list to a grant.

        The result depends only on the set of roles: order and duplicates are irrelevant.
        Folders follow the order of ``folder_role_mapping``.

        Args:
            roles: Roles extracted from the IdP response.
            policy: The provider configuration.

        Returns:
            RoleGrant: validity, admin flag and folder grants.
        """
        role_set = set(roles)

        valid = not policy.roles or not role_set.isdisjoint(policy.roles)
        is_admin = not role_set.isdisjoint(policy.admin_roles)

        folders: tuple[str, ...]
        if policy.enable_all_folders:
            folders = ()
        elif not policy.enable_folder_roles:
            folders = tuple(dict.fromkeys(policy.enabled_folders))
        else:
            granted: dict[str, None] = {}
            for mapping in policy.folder_role_mapping:
                if mapping.role in role_set:
                    granted.update(dict.fromkeys(mapping.folders))
            folders = tuple(granted)

        return RoleGrant(valid=valid, is_admin=is_admin, folders=folders)

    def decide(
        self,
        claims: Sequence[Claim],
        policy: ProviderConfig,
        role_claim: str,
        username_claim: str = USERNAME_CLAIM,
        subject_claim: str = SUBJECT_CLAIM,
    ) -> IdentityDecision:
        """
        Folds an OpenID claim set into one IdentityDecision.

        The username comes from ``username_claim``. When that does not produce a valid
        login, the subject claim becomes the username and validity is re-checked against
        the role gate alone; admin and folder grants are not re-evaluated.
        A decision without a username is never valid.

        Args:
            claims: The claim set, in the order the IdP returned it.
            policy: The provider configuration.
            role_claim: The role claim path.
            username_claim: Claim type carrying the preferred username.
            subject_claim: Claim type carrying the subject identifier.

        Returns:
            IdentityDecision: The decision to store for the login.
        """
        roles = ClaimPathResolver(role_claim).roles_from(claims)
        grant = self.evaluate(roles, policy)

        username = _last_value(claims, username_claim)
        valid = username is not None and grant.valid

        if not valid:
            subject = _last_value(claims, subject_claim)
            if subject is not None:
                username = subject
                # Same gate as the SAML adapter: no gating, or a role already matched.
                valid = grant.valid

        return IdentityDecision(
            valid=valid and bool(username),
            username=username,
            is_admin=grant.is_admin,
            folders=grant.folders,
            roles=tuple(dict.fromkeys(roles)),
        )


def _last_value(claims: Iterable[Claim], claim_type: str) -> str | None:
    value: str | None = None
    for claim in claims:
        if claim.type == claim_type:
            value = claim.value
    return value
