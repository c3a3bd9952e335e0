# mcpstream

`mcpstream` serves a Model Context Protocol (MCP) server over the streamable
HTTP transport. The handler is an ASGI application, so any ASGI server can
run it. It answers `lifespan` events as well as HTTP requests.

## What the handler serves

`mcpstream.handler.StreamingHTTPHandler` answers these requests on the MCP
endpoint:

- **POST**
  - Without an `Mcp-Session-Id` header, the body must be an `initialize`
    request. The handler creates a session and answers with a JSON body. The
    response carries the new `Mcp-Session-Id` header. It also carries
    `Mcp-Protocol-Version` when a version was negotiated.
  - With a session, a JSON-RPC request gets a `text/event-stream` response.
    The response to the request arrives as an event on that stream. So do any
    messages the capabilities write to the session while the request runs,
    such as progress notifications.
  - A notification is published on the session host's event bus and gets
    `202 Accepted`. A `notifications/cancelled` that names an in-flight
    request cancels that request.
  - A client's response to a server request is published on the topic
    `rv:<id>` and gets `202 Accepted`.
- **GET** opens a long-lived event stream for a session. These arrive on it:
  - the messages queued for the session, starting after `Last-Event-ID` if
    that header is given;
  - `notifications/resources/list_changed`;
  - `notifications/tools/list_changed`;
  - `notifications/prompts/list_changed`;
  - `notifications/resources/updated`.

  Once its subscriptions are in place, the handler publishes an internal
  `streaminghttp/ready` event. It does not forward that event to the client.
- **DELETE** deletes the session through the session manager. It also cancels
  the resource-subscription forwarders that belong to the session. It answers
  `204 No Content`.

It also serves two OAuth discovery documents. Both allow CORS, and both answer
`OPTIONS` preflight requests.

- `/.well-known/oauth-protected-resource<path>` is the Protected Resource
  Metadata document (RFC 9728).
- `/.well-known/oauth-authorization-server` is a mirror of the Authorization
  Server Metadata (RFC 8414).

Every MCP request must carry `Authorization: Bearer <token>`.

| Problem with the request | Response |
| --- | --- |
| Missing header | `401` with a `WWW-Authenticate` challenge |
| Malformed header | `400` with a `WWW-Authenticate` challenge |
| Authenticator raises `mcpstream.auth.UnauthorizedError` | `401` |
| Authenticator raises `mcpstream.auth.InsufficientScopeError` | `403` |
| Unknown session, or a session owned by another user | `404` |
| `Mcp-Protocol-Version` differs from the session's version | `412` |

## Installation

```
pip install mcpstream
```

## Usage

```python
from mcpstream.handler import StreamingHTTPHandler
from mcpstream.metadata import ManualOIDC

app = await StreamingHTTPHandler.create(
    "https://mcp.example.com/mcp",
    host,             # per-session publish/subscribe of events
    server,           # your MCP server capabilities
    authenticator,    # async check_authentication(token) -> object with user_id
    session_manager,  # creates, loads and deletes sessions
    server_name="example",
    manual_oidc=ManualOIDC(
        issuer="https://auth.example.com",
        jwks_uri="https://auth.example.com/.well-known/jwks.json",
    ),
)
```

You must give exactly one of `manual_oidc` and `discovery_url`; otherwise
`create` raises `ValueError`.

- `manual_oidc` builds the metadata from the values you supply.
- `discovery_url` fetches `<url>/.well-known/openid-configuration` at
  startup. The document's `issuer` must equal the URL. You can pass an
  `httpx.AsyncClient` as `client` for this fetch.

### The objects you supply

The module docstrings of `mcpstream.handler` and `mcpstream.dispatch` list
the methods each collaborator must offer.

- **host** offers `subscribe_events` and `publish_event`.
- **session_manager** offers `create_session`, `load_session` and
  `delete_session`.
- **server** offers an async `get_<kind>_capability(session)` method for each
  capability it has. The kinds are `tools`, `resources`, `prompts`, `logging`
  and `completions`. Such a method returns `None` when the capability is
  absent. The server may also offer `get_server_info`, `get_instructions` and
  `get_preferred_protocol_version`.

While a request runs, a capability can report progress through
`mcpstream.handler.PROGRESS_REPORTER.get()`. That call returns a
`mcpstream.sse.ProgressReporter`.

### Building blocks

The handler is built from these modules. Each of them can also be used on
its own.

- `mcpstream.jsonrpc` is the message model (`Message`, `parse_message`,
  `result_response`, `error_response`, `notification`, `ErrorCode`).
- `mcpstream.sse` holds SSE framing and writers (`format_sse_event`,
  `SSEWriter`, `SessionWithWriter`).
- `mcpstream.dispatch.RequestDispatcher` routes requests to capabilities.
- `mcpstream.initialization` builds the `initialize` result.
- `mcpstream.notifications` handles client notifications and responses.
- `mcpstream.registry.SessionRegistry` keeps per-session bookkeeping.
- `mcpstream.metadata` builds the OAuth documents.
- `mcpstream.auth.authenticate` checks bearer tokens.

## What it does not do

- It ships no session host or session manager. Storage and delivery of
  session messages are up to the objects you pass in.
- It ships no framework for writing MCP servers.
- It does not verify tokens itself; your authenticator decides.
- It does not send requests of its own to the client and wait for the
  answers. It only publishes client responses on their `rv:<id>` topic for
  whoever is listening.
- It has no command-line program. Run `app` with an ASGI server.

## Development

```
pip install -e ".[test]"
pytest
```