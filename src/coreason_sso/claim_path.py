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
Role claim path parsing and role extraction from flat or nested JSON claim values.

A role claim path is a dotted string. The first segment names the claim type; any further
segments descend into the claim value, which is then parsed as JSON. ``\\.`` escapes a
literal dot, so ``attr.role\\.name.values`` means claim ``attr``, key ``role.name``, key
``values``.
"""

import json
import re
from collections.abc import Iterable
from functools import lru_cache

from pydantic import JsonValue

from coreason_sso.exceptions import MalformedClaimError
from coreason_sso.models import Claim
from coreason_sso.utils.logger import logger

ClaimPathSpec = tuple[str, ...]

_UNESCAPED_DOT = re.compile(r"(?<!\\)\.")


@lru_cache(maxsize=256)
def parse_claim_path(spec: str) -> ClaimPathSpec:
    """
    Splits a role claim path on unescaped dots and un-escapes ``\\.``.

    Args:
        spec: The configured path, e.g. ``resource_access.app.roles``.

    Returns:
        The ordered path segments.
    """
    return tuple(segment.replace("\\.", ".") for segment in _UNESCAPED_DOT.split(spec))


def _descend(value: JsonValue, key: str) -> JsonValue:
    if not isinstance(value, dict):
        raise MalformedClaimError(f"Expected a JSON object before '{key}', got {type(value).__name__}")
    if key not in value:
        raise MalformedClaimError(f"Key '{key}' not found in claim value")
    return value[key]


def extract_roles(segments: ClaimPathSpec, claim_type: str, claim_value: str) -> list[str] | None:
    """
    Extracts the role list a single claim contributes.

    Args:
        segments: Parsed role claim path.
        claim_type: The claim's type.
        claim_value: The claim's raw string value.

    Returns:
        None if the claim is not the role claim, else the role list.

    Raises:
        MalformedClaimError: If the value is not JSON, a step is not an object holding the key,
            or the final value is not an array of strings.
    """
    if not segments or claim_type != segments[0]:
        return None
    if len(segments) == 1:
        return [claim_value]

    try:
        current: JsonValue = json.loads(claim_value)
    except (TypeError, ValueError) as e:
        raise MalformedClaimError(f"Claim '{claim_type}' is not valid JSON: {e}") from e

    for key in segments[1:]:
        current = _descend(current, key)

    if not isinstance(current, list) or not all(isinstance(role, str) for role in current):
        raise MalformedClaimError(f"Claim path '{'.'.join(segments)}' does not end in an array of strings")
    return list(current)


class ClaimPathResolver:
    """
    Folds a claim set into the roles found under one role claim path.

    Attributes:
        segments (ClaimPathSpec): The parsed role claim path.
    """

    def __init__(self, spec: str) -> None:
        self.spec = spec
        self.segments = parse_claim_path(spec)

    def roles_from(self, claims: Iterable[Claim]) -> list[str]:
        """
        Collects roles from every matching claim, in claim order.

        A malformed matching claim contributes no roles; the rest of the claim set is still used.
        """
        roles: list[str] = []
        for claim in claims:
            try:
                extracted = extract_roles(self.segments, claim.type, claim.value)
            except MalformedClaimError as e:
                logger.warning(f"Ignoring malformed role claim '{claim.type}': {e}")
                continue
            if extracted:
                roles.extend(extracted)
        return roles
