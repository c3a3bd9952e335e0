import httpx
import pytest

from mcpstream.metadata import (
    ManualOIDC,
    auth_server_metadata_url,
    discover_auth_server_metadata,
    manual_auth_server_metadata,
    parse_endpoint,
    protected_resource_metadata,
    protected_resource_metadata_url,
)

ISSUER = "http://127.0.0.1:0"
JWKS = "http://127.0.0.1/.well-known/jwks.json"


def test_parse_endpoint_accepts_https():
    parts = parse_endpoint("https://example.com/mcp")
    assert parts.scheme == "https"
    assert parts.path == "/mcp"


def test_parse_endpoint_rejects_other_scheme():
    with pytest.raises(ValueError, match="HTTP or HTTPS"):
        parse_endpoint("ftp://example.com/mcp")


def test_manual_metadata_fields():
    meta = manual_auth_server_metadata(ManualOIDC(issuer=ISSUER, jwks_uri=JWKS))
    assert meta["issuer"] == ISSUER
    assert meta["jwks_uri"] == JWKS
    assert meta["response_types_supported"] == ["code"]
    assert "scopes_supported" not in meta


def test_manual_metadata_keeps_optional_fields():
    meta = manual_auth_server_metadata(
        ManualOIDC(issuer=ISSUER, jwks_uri=JWKS, scopes_supported=["read"], op_tos_uri="https://example.com/tos")
    )
    assert meta["scopes_supported"] == ["read"]
    assert meta["op_tos_uri"] == "https://example.com/tos"


@pytest.mark.parametrize("issuer,jwks", [("", JWKS), (ISSUER, "")])
def test_manual_metadata_requires_issuer_and_jwks(issuer, jwks):
    with pytest.raises(ValueError):
        manual_auth_server_metadata(ManualOIDC(issuer=issuer, jwks_uri=jwks))


def test_protected_resource_metadata():
    asm = manual_auth_server_metadata(ManualOIDC(issuer=ISSUER, jwks_uri=JWKS, service_documentation="https://example.com/docs"))
    prm = protected_resource_metadata("http://127.0.0.1:8080/mcp", asm, "test-server")
    assert prm["resource"] == "http://127.0.0.1:8080/mcp"
    assert prm["authorization_servers"] == [ISSUER]
    assert prm["jwks_uri"] == JWKS
    assert prm["bearer_methods_supported"] == ["authorization_header"]
    assert prm["resource_name"] == "test-server"
    assert prm["resource_documentation"] == "https://example.com/docs"
    assert prm["authorization_details_types_supported"] == ["urn:ietf:params:oauth:authorization-details"]
    assert prm["tls_client_certificate_bound_access_tokens"] is False


def test_protected_resource_metadata_requires_jwks():
    with pytest.raises(ValueError, match="JWKS"):
        protected_resource_metadata("http://127.0.0.1/", {"issuer": ISSUER}, "")


def test_well_known_urls():
    assert protected_resource_metadata_url("http://127.0.0.1:8080/mcp") == (
        "http://127.0.0.1:8080/.well-known/oauth-protected-resource/mcp"
    )
    assert protected_resource_metadata_url("http://127.0.0.1:8080") == (
        "http://127.0.0.1:8080/.well-known/oauth-protected-resource"
    )
    assert auth_server_metadata_url("http://127.0.0.1:8080/mcp") == (
        "http://127.0.0.1:8080/.well-known/oauth-authorization-server"
    )


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_discovery_returns_document():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200, json={"issuer": "https://auth.example.com", "jwks_uri": JWKS})

    async with _client(handler) as client:
        doc = await discover_auth_server_metadata("https://auth.example.com", client)
    assert seen == ["/.well-known/openid-configuration"]
    assert doc["jwks_uri"] == JWKS


@pytest.mark.asyncio
async def test_discovery_rejects_issuer_mismatch():
    def handler(request):
        return httpx.Response(200, json={"issuer": "https://other.example.com", "jwks_uri": JWKS})

    async with _client(handler) as client:
        with pytest.raises(ValueError, match="issuer"):
            await discover_auth_server_metadata("https://auth.example.com", client)


@pytest.mark.asyncio
async def test_discovery_rejects_bad_status():
    async with _client(lambda request: httpx.Response(404)) as client:
        with pytest.raises(ValueError):
            await discover_auth_server_metadata("https://auth.example.com", client)


@pytest.mark.asyncio
async def test_discovery_rejects_non_json():
    async with _client(lambda request: httpx.Response(200, content=b"nope")) as client:
        with pytest.raises(ValueError, match="invalid authorization server metadata"):
            await discover_auth_server_metadata("https://auth.example.com", client)