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
Client hand-off page shown after a successful IdP callback.

Hosts normally supply their own renderer; the default page only exposes the payload
for the client script that calls the completion endpoint.
"""

import json
from typing import Protocol

from coreason_sso.models import HandoffPayload


class HandoffRenderer(Protocol):
    def __call__(self, payload: HandoffPayload) -> str: ...


def render_handoff_page(payload: HandoffPayload) -> str:
    """Minimal HTML page embedding the hand-off payload as JSON."""
    # Script content is raw text: neutralise "<" so the payload cannot close the tag
    data = json.dumps(payload.model_dump()).replace("<", "\\u003c")
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>Logging in...</title></head>"
        f"<body><script id=\"sso-handoff\" type=\"application/json\">{data}</script></body></html>"
    )
