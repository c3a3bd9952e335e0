"""OAuth protected-resource and authorization-server metadata documents."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import SplitResult, urlsplit, urlunsplit

import httpx

PROTECTED_RESOURCE_PREFIX = "/.well-known/oauth-protected-resource"
AUTH_SERVER_METADATA_PATH = "/.well-known/oauth-authorization-server"
_AUTHORIZATION_DETAILS_TYPE = "urn:ietf:params:oauth:authorization-details"


@dataclass
class ManualOIDC:
    """Authorization server details supplied without discovery."""

    issuer: str
    jwks_uri: str
    scopes_supported: list[str] = field(default_factory=list)
    token_endpoint_auth_methods_supported: list[str] = field(default_factory=list)
    token_endpoint_auth_signing_alg_values_supported: list[str] = field(default_factory=list)
    service_documentation: str = ""
    op_policy_uri: str = ""
    op_tos_uri: str = ""


def _compact(document: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in document.items() if v is not None and v != "" and v != []}


def parse_endpoint(endpoint: str) -> SplitResult:
    """Parse the public endpoint URL, requiring an http or https scheme."""
    try:
        parts = urlsplit(endpoint)
    except ValueError as exc:
        raise ValueError(f"invalid server URL {endpoint!r}: {exc}") from exc
    if parts.scheme not in ("http", "https"):
        raise ValueError(f"server URL must use HTTP or HTTPS scheme, got {parts.scheme!r}")
    return parts


def manual_auth_server_metadata(manual: ManualOIDC) -> dict[str, Any]:
    """Synthesize minimal authorization server metadata from manual settings."""
    if not manual.issuer:
        raise ValueError("issuer is required for manual OIDC")
    if not manual.jwks_uri:
        raise ValueError("JwksURI is required for manual OIDC")
    return _compact(
        {
            "issuer": manual.issuer,
            "response_types_supported": ["code"],
            "jwks_uri": manual.jwks_uri,
            "scopes_supported": list(manual.scopes_supported),
            "token_endpoint_auth_methods_supported": list(manual.token_endpoint_auth_methods_supported),
            "token_endpoint_auth_signing_alg_values_supported": list(
                manual.token_endpoint_auth_signing_alg_values_supported
            ),
            "service_documentation": manual.service_documentation,
            "op_policy_uri": manual.op_policy_uri,
            "op_tos_uri": manual.op_tos_uri,
        }
    )


def protected_resource_metadata(
    resource: str, auth_server_metadata: dict[str, Any], server_name: str = ""
) -> dict[str, Any]:
    """Build the protected resource metadata document for the endpoint."""
    jwks_uri = auth_server_metadata.get("jwks_uri")
    if not jwks_uri:
        raise ValueError(
            "the supplied authorization server does not declare support for a JWKS URI in its metadata"
        )
    document = _compact(
        {
            "resource": resource,
            "authorization_servers": [auth_server_metadata.get("issuer", "")],
            "jwks_uri": jwks_uri,
            "scopes_supported": list(auth_server_metadata.get("scopes_supported") or []),
            "bearer_methods_supported": ["authorization_header"],
            "resource_name": server_name,
            "resource_documentation": auth_server_metadata.get("service_documentation"),
            "resource_policy_uri": auth_server_metadata.get("op_policy_uri"),
            "resource_tos_uri": auth_server_metadata.get("op_tos_uri"),
            "authorization_details_types_supported": [_AUTHORIZATION_DETAILS_TYPE],
        }
    )
    document["tls_client_certificate_bound_access_tokens"] = False
    return document


def protected_resource_metadata_url(endpoint: str) -> str:
    """Return the well-known URL of the protected resource metadata."""
    parts = parse_endpoint(endpoint)
    return urlunsplit((parts.scheme, parts.netloc, PROTECTED_RESOURCE_PREFIX + parts.path, "", ""))


def auth_server_metadata_url(endpoint: str) -> str:
    """Return the well-known URL of the mirrored authorization server metadata."""
    parts = parse_endpoint(endpoint)
    return urlunsplit((parts.scheme, parts.netloc, AUTH_SERVER_METADATA_PATH, "", ""))


async def discover_auth_server_metadata(
    url: str, client: httpx.AsyncClient | None = None
) -> dict[str, Any]:
    """Fetch and validate the discovery document of an authorization server."""
    well_known = url.rstrip("/") + "/.well-known/openid-configuration"
    owns_client = client is None
    http = client if client is not None else httpx.AsyncClient()
    try:
        response = await http.get(well_known)
    except httpx.HTTPError as exc:
        raise ValueError(f"failed to create OIDC provider: {exc}") from exc
    finally:
        if owns_client:
            await http.aclose()
    if response.status_code != 200:
        raise ValueError(f"failed to create OIDC provider: status {response.status_code}")
    try:
        document = json.loads(response.content)
    except ValueError as exc:
        raise ValueError(f"unexpected or invalid authorization server metadata: {exc}") from exc
    if not isinstance(document, dict):
        raise ValueError("unexpected or invalid authorization server metadata: not an object")
    if document.get("issuer") != url:
        raise ValueError(
            f"failed to create OIDC provider: issuer did not match, expected {url!r} got {document.get('issuer')!r}"
        )
    return document