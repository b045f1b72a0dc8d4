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
SAMLAdapter component for the SAML 2.0 HTTP-Redirect / HTTP-POST flow.

No server-side state is kept: the IdP posts back a complete signed response, which the
client later returns verbatim on completion and which is verified again at that point.
"""

import base64
import binascii
import uuid
import zlib
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import anyio.to_thread
from lxml import etree
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from signxml import InvalidSignature, XMLVerifier

from coreason_sso.config import SAMLProviderConfig
from coreason_sso.exceptions import ProtocolError, RoleMismatchError
from coreason_sso.models import CallbackResult, IdentityDecision, SAMLIdentity
from coreason_sso.policy import RolePolicyEngine
from coreason_sso.utils.logger import logger

tracer = trace.get_tracer(__name__)

SAMLP_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
SAML_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
NS = {"samlp": SAMLP_NS, "saml": SAML_NS}

CLOCK_SKEW = timedelta(seconds=120)

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


def build_authn_request(client_id: str, acs_url: str, request_id: str | None = None) -> bytes:
    """Serializes an AuthnRequest asking for an HTTP-POST response to ``acs_url``."""
    request = etree.Element(
        f"{{{SAMLP_NS}}}AuthnRequest",
        nsmap={"samlp": SAMLP_NS, "saml": SAML_NS},
        ID=request_id or f"_{uuid.uuid4().hex}",
        Version="2.0",
        IssueInstant=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        ProtocolBinding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST",
        AssertionConsumerServiceURL=acs_url,
    )
    issuer = etree.SubElement(request, f"{{{SAML_NS}}}Issuer")
    issuer.text = client_id
    etree.SubElement(
        request,
        f"{{{SAMLP_NS}}}NameIDPolicy",
        Format="urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified",
        AllowCreate="true",
    )
    return bytes(etree.tostring(request))


def redirect_url(endpoint: str, authn_request: bytes) -> str:
    """HTTP-Redirect binding: raw DEFLATE, base64, then a ``SAMLRequest`` query parameter."""
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
    deflated = compressor.compress(authn_request) + compressor.flush()
    query = urlencode({"SAMLRequest": base64.b64encode(deflated).decode("ascii")})
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{query}"


def _parse_instant(value: str | None) -> datetime | None:
    if not value or not value.strip():
        return None
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _enforce_conditions(signed: etree._Element) -> None:
    conditions = signed.find(".//saml:Conditions", NS)
    # Assertions must carry an expiry
    not_on_or_after = _parse_instant(conditions.get("NotOnOrAfter")) if conditions is not None else None
    if conditions is None or not_on_or_after is None:
        raise ProtocolError("The SAML assertion has no validity window.")
    now = datetime.now(timezone.utc)
    not_before = _parse_instant(conditions.get("NotBefore"))
    if not_before and now + CLOCK_SKEW < not_before:
        raise ProtocolError("The SAML assertion is not yet valid.")
    if now - CLOCK_SKEW >= not_on_or_after:
        raise ProtocolError("The SAML assertion has expired.")


def _verify_signature(root: etree._Element, certificate: str) -> etree._Element:
    """Returns the signed element. Only content inside it may be trusted."""
    verifier = XMLVerifier()
    try:
        return verifier.verify(root, x509_cert=certificate).signed_xml
    except (InvalidSignature, ValueError) as exc:
        # The response itself may be unsigned while the assertion carries the signature
        assertion = root.find(f".//{{{SAML_NS}}}Assertion")
        if assertion is not None and assertion.find(f".//{{{DSIG_NS}}}Signature") is not None:
            try:
                return verifier.verify(assertion, x509_cert=certificate).signed_xml
            except (InvalidSignature, ValueError) as inner_exc:
                exc = inner_exc
        raise ProtocolError(f"SAML signature verification failed: {exc}") from exc


class SAMLAdapter:
    """
    SAML 2.0 adapter.

    Attributes:
        policy (RolePolicyEngine): Shared role policy.
    """

    mode = "SAML"

    def __init__(self, policy: RolePolicyEngine | None = None) -> None:
        self.policy = policy or RolePolicyEngine()

    async def challenge(self, provider: str, config: SAMLProviderConfig, return_url: str) -> str:
        """
        Builds the redirect to the IdP's SSO endpoint.

        Args:
            provider: Provider name, used for logging.
            config: The provider configuration.
            return_url: The assertion consumer service URL.
        """
        url = redirect_url(config.endpoint, build_authn_request(config.client_id, return_url))
        logger.info(f"SAML login challenged for provider {provider}")
        return url

    def _verify_sync(self, config: SAMLProviderConfig, encoded_response: str) -> SAMLIdentity:
        try:
            xml = base64.b64decode("".join(encoded_response.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProtocolError("The SAML response is not valid base64.") from e

        try:
            root = etree.fromstring(xml, parser=_PARSER)
        except etree.XMLSyntaxError as e:
            raise ProtocolError("The SAML response is not valid XML.") from e

        signed = _verify_signature(root, config.certificate)
        _enforce_conditions(signed)

        name_id = signed.find(".//saml:Subject/saml:NameID", NS)
        if name_id is None or not (name_id.text or "").strip():
            raise ProtocolError("The SAML assertion has no subject NameID.")

        roles: list[str] = []
        for attribute in signed.iterfind(".//saml:AttributeStatement/saml:Attribute", NS):
            if attribute.get("Name") != config.role_attribute:
                continue
            for value in attribute.iterfind("saml:AttributeValue", NS):
                if value.text and value.text.strip():
                    roles.append(value.text.strip())

        return SAMLIdentity(name_id=name_id.text.strip(), roles=tuple(roles), xml=xml)

    async def verify(self, config: SAMLProviderConfig, encoded_response: str) -> SAMLIdentity:
        """
        Decodes and signature-checks a base64 SAML response.

        Signature checking is CPU bound and runs in a worker thread.

        Raises:
            ProtocolError: If decoding, parsing, signature or validity window checks fail.
        """
        return await anyio.to_thread.run_sync(self._verify_sync, config, encoded_response)

    def _decide(self, config: SAMLProviderConfig, identity: SAMLIdentity) -> IdentityDecision:
        grant = self.policy.evaluate(identity.roles, config)
        return IdentityDecision(
            valid=grant.valid,
            username=identity.name_id,
            is_admin=grant.is_admin,
            folders=grant.folders,
            roles=tuple(dict.fromkeys(identity.roles)),
        )

    async def callback(self, provider: str, config: SAMLProviderConfig, payload: str) -> CallbackResult:
        """
        Verifies the posted ``SAMLResponse`` and gates the login on roles.

        Returns:
            CallbackResult: The re-encoded verified response for the client, and the decision.

        Raises:
            ProtocolError: If the response cannot be verified.
            RoleMismatchError: If role gating is configured and no role matches.
        """
        with tracer.start_as_current_span("saml_callback") as span:
            span.set_attribute("sso.provider", provider)
            try:
                identity = await self.verify(config, payload)
            except ProtocolError as e:
                logger.warning(f"SAML callback for provider {provider} failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            decision = self._decide(config, identity)
            if not decision.valid:
                logger.warning(
                    f"SAML user: {identity.name_id} has insufficient roles: {list(identity.roles)}. "
                    f"Expected any one of: {config.roles}"
                )
                span.set_status(Status(StatusCode.ERROR, "role mismatch"))
                raise RoleMismatchError(identity.name_id, identity.roles, config.roles)

            span.set_status(Status(StatusCode.OK))
            return CallbackResult(data=base64.b64encode(identity.xml).decode("ascii"), decision=decision)

    async def complete(self, provider: str, config: SAMLProviderConfig, data: str) -> IdentityDecision:
        """
        Re-verifies the response the client returned and decides again.

        Raises:
            ProtocolError: If the response cannot be verified.
            RoleMismatchError: If role gating is configured and no role matches.
        """
        identity = await self.verify(config, data)
        decision = self._decide(config, identity)
        if not decision.valid:
            logger.warning(f"SAML user: {identity.name_id} attempted completion without an allowed role")
            raise RoleMismatchError(identity.name_id, identity.roles, config.roles)
        return decision
