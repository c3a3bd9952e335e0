"""ASGI application serving the streamable HTTP transport of the Model Context Protocol.

Collaborators are duck-typed:

* ``host`` offers ``async subscribe_events(session_id, topic, handler)``
  returning a callable that unsubscribes (``handler`` is
  ``async handler(payload)``), and ``async publish_event(session_id, topic,
  payload)``.
* ``session_manager`` offers ``async create_session(user_id, *,
  protocol_version, sampling, roots, roots_list_changed, elicitation)``,
  ``async load_session(session_id, user_id)`` (raising when the session is
  unknown or owned by someone else) and ``async delete_session(session_id)``.
  Session handles expose ``session_id``, ``session`` (with ``session_id``,
  ``user_id`` and ``protocol_version``), ``async write_message(payload)`` and
  ``async consume_messages(last_event_id, callback)`` where ``callback`` is
  ``async callback(message_id, payload)``.
* ``authenticator`` offers ``async check_authentication(token)`` returning
  an object with a ``user_id`` attribute.
"""

from __future__ import annotations

import asyncio
import contextvars
import json
import logging
from collections.abc import Awaitable, Callable
from http import HTTPStatus
from typing import Any
from urllib.parse import urlunsplit

import httpx

from .auth import AuthChallenge, authenticate
from .dispatch import RESOURCES_UPDATED_METHOD, RequestDispatcher
from .initialization import (
    InitializationError,
    build_initialize_result,
    client_capability_flags,
    negotiate_protocol_version,
)
from .jsonrpc import ErrorCode, Message, error_response, notification, parse_message, result_response
from .metadata import (
    AUTH_SERVER_METADATA_PATH,
    PROTECTED_RESOURCE_PREFIX,
    ManualOIDC,
    discover_auth_server_metadata,
    manual_auth_server_metadata,
    parse_endpoint,
    protected_resource_metadata,
)
from .notifications import (
    PROMPTS_LIST_CHANGED_METHOD,
    READY_TOPIC,
    RESOURCES_LIST_CHANGED_METHOD,
    TOOLS_LIST_CHANGED_METHOD,
    handle_notification,
    handle_response,
)
from .registry import SessionRegistry
from .sse import ProgressReporter, SessionWithWriter, SSEWriter

SESSION_HEADER = "mcp-session-id"
PROTOCOL_VERSION_HEADER = "mcp-protocol-version"
LAST_EVENT_ID_HEADER = "last-event-id"

PROGRESS_REPORTER: contextvars.ContextVar[ProgressReporter | None] = contextvars.ContextVar(
    "mcpstream_progress_reporter", default=None
)

_CORS_PREFLIGHT = [
    ("access-control-allow-origin", "*"),
    ("access-control-allow-methods", "GET, OPTIONS"),
    ("access-control-allow-headers", "Content-Type, Accept, Authorization"),
    ("access-control-max-age", "600"),
]

Handler = Callable[["_Request"], Awaitable[None]]


def _media_type(value: str) -> str:
    return value.split(";", 1)[0].strip().lower()


def _accepts_event_stream(accept: str | None) -> bool:
    if accept is None or not accept.strip():
        return True
    for item in accept.split(","):
        pieces = [p.strip() for p in item.split(";")]
        media = pieces[0].lower()
        quality = 1.0
        for param in pieces[1:]:
            name, _, val = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(val)
                except ValueError:
                    quality = 0.0
        if quality > 0 and media in ("text/event-stream", "text/*", "*/*"):
            return True
    return False


class _Request:
    """One HTTP exchange on the ASGI interface."""

    def __init__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        self.method: str = scope["method"].upper()
        self.path: str = scope.get("path") or "/"
        self.headers: dict[str, str] = {}
        for key, value in scope.get("headers", []):
            self.headers.setdefault(key.decode("latin-1").lower(), value.decode("latin-1"))
        self._receive = receive
        self._send = send
        self.body = b""
        self.disconnected = asyncio.Event()
        self.started = False
        self.finished = False
        self._watcher: asyncio.Task[None] | None = None

    async def read_body(self) -> bool:
        chunks = []
        while True:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                self.disconnected.set()
                return False
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        self.body = b"".join(chunks)
        self._watcher = asyncio.create_task(self._watch())
        return True

    async def _watch(self) -> None:
        while True:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                self.disconnected.set()
                return

    def stop_watching(self) -> None:
        if self._watcher is not None:
            self._watcher.cancel()

    def header(self, name: str) -> str:
        return self.headers.get(name, "")

    async def start(self, status: int, headers: list[tuple[str, str]]) -> None:
        self.started = True
        await self._send(
            {
                "type": "http.response.start",
                "status": int(status),
                "headers": [(k.encode("latin-1"), v.encode("latin-1")) for k, v in headers],
            }
        )

    async def chunk(self, data: bytes) -> None:
        await self._send({"type": "http.response.body", "body": data, "more_body": True})

    async def finish(self, data: bytes = b"") -> None:
        if self.finished:
            return
        self.finished = True
        try:
            await self._send({"type": "http.response.body", "body": data, "more_body": False})
        except Exception:
            pass

    async def respond(self, status: int, headers: list[tuple[str, str]] | None = None, body: bytes = b"") -> None:
        await self.start(status, headers or [])
        await self.finish(body)


class StreamingHTTPHandler:
    """Serves the MCP endpoint plus the well-known OAuth metadata documents."""

    def __init__(
        self,
        *,
        server_url: str,
        host: Any,
        server: Any,
        authenticator: Any,
        session_manager: Any,
        prm_document: dict[str, Any],
        auth_server_metadata: dict[str, Any],
        mcp_path: str,
        logger: logging.Logger,
    ) -> None:
        self._server_url = server_url
        self._host = host
        self._server = server
        self._auth = authenticator
        self._sessions = session_manager
        self._prm_document = prm_document
        self._auth_server_metadata = auth_server_metadata
        self._log = logger
        self._registry = SessionRegistry()
        self._dispatcher = RequestDispatcher(server, host, self._registry)
        self._routes: dict[str, dict[str, Handler]] = {}
        self._route(mcp_path, POST=self._post_mcp, GET=self._get_mcp, DELETE=self._delete_mcp)
        prm_path = PROTECTED_RESOURCE_PREFIX + (mcp_path if mcp_path != "/" else "")
        for path, getter in (
            (prm_path, self._get_prm),
            (AUTH_SERVER_METADATA_PATH, self._get_as_metadata),
        ):
            self._route(path, GET=getter, OPTIONS=self._options_metadata)
            if not path.endswith("/"):
                self._route(path + "/", GET=getter, OPTIONS=self._options_metadata)

    @classmethod
    async def create(
        cls,
        public_endpoint: str,
        host: Any,
        server: Any,
        authenticator: Any,
        session_manager: Any,
        *,
        server_name: str = "",
        logger: logging.Logger | None = None,
        discovery_url: str | None = None,
        manual_oidc: ManualOIDC | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> StreamingHTTPHandler:
        """Build a handler; exactly one of ``discovery_url`` and ``manual_oidc`` is required."""
        if authenticator is None:
            raise ValueError("authenticator is required")
        if server is None:
            raise ValueError("server is required")
        if host is None:
            raise ValueError("SessionHost is required")
        if session_manager is None:
            raise ValueError("session manager is required")
        parts = parse_endpoint(public_endpoint)
        if bool(discovery_url) == (manual_oidc is not None):
            raise ValueError(
                "exactly one of WithAuthorizationServerDiscovery or WithManualOIDC must be provided"
            )
        if manual_oidc is not None:
            as_metadata = manual_auth_server_metadata(manual_oidc)
        else:
            as_metadata = await discover_auth_server_metadata(discovery_url, client)
        server_url = urlunsplit(parts)
        prm = protected_resource_metadata(server_url, as_metadata, server_name)
        return cls(
            server_url=server_url,
            host=host,
            server=server,
            authenticator=authenticator,
            session_manager=session_manager,
            prm_document=prm,
            auth_server_metadata=as_metadata,
            mcp_path=parts.path or "/",
            logger=logger or logging.getLogger(__name__),
        )

    def _route(self, path: str, **methods: Handler) -> None:
        self._routes.setdefault(path, {}).update(methods)

    def _match(self, path: str) -> dict[str, Handler] | None:
        if path in self._routes:
            return self._routes[path]
        best = None
        for pattern in self._routes:
            if pattern.endswith("/") and path.startswith(pattern):
                if best is None or len(pattern) > len(best):
                    best = pattern
        return self._routes[best] if best is not None else None

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        """ASGI entry point."""
        if scope["type"] == "lifespan":
            while True:
                message = await receive()
                if message["type"] == "lifespan.startup":
                    await send({"type": "lifespan.startup.complete"})
                elif message["type"] == "lifespan.shutdown":
                    await send({"type": "lifespan.shutdown.complete"})
                    return
        if scope["type"] != "http":
            return
        request = _Request(scope, receive, send)
        if not await request.read_body():
            return
        try:
            methods = self._match(request.path)
            if methods is None:
                await request.respond(HTTPStatus.NOT_FOUND, [("content-type", "text/plain; charset=utf-8")], b"404 page not found\n")
                return
            handler = methods.get(request.method)
            if handler is None:
                allow = ", ".join(sorted(methods))
                await request.respond(
                    HTTPStatus.METHOD_NOT_ALLOWED,
                    [("allow", allow), ("content-type", "text/plain; charset=utf-8")],
                    b"Method Not Allowed\n",
                )
                return
            await handler(request)
            await request.finish()
        finally:
            request.stop_watching()

    async def _check_auth(self, request: _Request) -> Any:
        try:
            return await authenticate(request.headers.get("authorization"), self._auth, self._server_url)
        except AuthChallenge as challenge:
            headers = []
            if challenge.www_authenticate:
                headers.append(("www-authenticate", challenge.www_authenticate))
            await request.respond(challenge.status, headers)
            return None

    async def _load(self, request: _Request, session_id: str, user_id: str) -> Any:
        try:
            return await self._sessions.load_session(session_id, user_id)
        except Exception:
            self._teardown(session_id)
            await request.respond(HTTPStatus.NOT_FOUND)
            return None

    @staticmethod
    def _version_mismatch(request: _Request, handle: Any) -> bool:
        given = request.header(PROTOCOL_VERSION_HEADER)
        bound = handle.session.protocol_version
        return bool(given and bound and given != bound)

    @staticmethod
    def _version_headers(handle: Any) -> list[tuple[str, str]]:
        version = handle.session.protocol_version
        return [(PROTOCOL_VERSION_HEADER, version)] if version else []

    def _teardown(self, session_id: str) -> None:
        self._registry.teardown(session_id)

    async def _delete_mcp(self, request: _Request) -> None:
        user = await self._check_auth(request)
        if user is None:
            return
        session_id = request.header(SESSION_HEADER)
        if not session_id:
            await request.respond(HTTPStatus.BAD_REQUEST)
            return
        handle = await self._load(request, session_id, user.user_id)
        if handle is None:
            return
        if self._version_mismatch(request, handle):
            await request.respond(HTTPStatus.PRECONDITION_FAILED)
            return
        try:
            await self._sessions.delete_session(session_id)
        except Exception:
            self._teardown(session_id)
            await request.respond(HTTPStatus.INTERNAL_SERVER_ERROR)
            return
        self._teardown(session_id)
        await request.respond(HTTPStatus.NO_CONTENT, self._version_headers(handle))

    async def _post_mcp(self, request: _Request) -> None:
        if not _accepts_event_stream(request.headers.get("accept")):
            await request.respond(HTTPStatus.UNSUPPORTED_MEDIA_TYPE)
            return
        if _media_type(request.header("content-type")) != "application/json":
            await request.respond(HTTPStatus.UNSUPPORTED_MEDIA_TYPE)
            return
        user = await self._check_auth(request)
        if user is None:
            return
        try:
            message = parse_message(request.body)
        except ValueError:
            await request.respond(HTTPStatus.BAD_REQUEST)
            return
        session_id = request.header(SESSION_HEADER)
        if not session_id:
            await self._initialize(request, user, message)
            return
        handle = await self._load(request, session_id, user.user_id)
        if handle is None:
            return
        if self._version_mismatch(request, handle):
            await request.respond(HTTPStatus.PRECONDITION_FAILED)
            return
        if message.is_notification():
            try:
                await handle_notification(self._host, self._registry, handle.session, message)
            except Exception:
                self._log.exception("notification handling failed")
                await request.respond(HTTPStatus.INTERNAL_SERVER_ERROR)
                return
            await request.respond(HTTPStatus.ACCEPTED, self._version_headers(handle))
            return
        if message.is_request():
            await self._stream_request(request, handle, message)
            return
        try:
            await handle_response(self._host, handle.session, message)
        except Exception:
            await request.respond(HTTPStatus.INTERNAL_SERVER_ERROR)
            return
        await request.respond(HTTPStatus.ACCEPTED, self._version_headers(handle))

    async def _run_request(self, session: Any, message: Message) -> Message:
        PROGRESS_REPORTER.set(ProgressReporter(session, message.id))
        return await self._dispatcher.handle(session, message)

    async def _stream_request(self, request: _Request, handle: Any, message: Message) -> None:
        headers = self._version_headers(handle) + [("content-type", "text/event-stream")]
        await request.start(HTTPStatus.OK, headers)
        writer = SSEWriter(request.chunk)
        session = SessionWithWriter(handle.session, writer, handle.write_message)
        session_id = handle.session_id
        task = asyncio.create_task(self._run_request(session, message))
        self._registry.begin_request(session_id, message.id, task.cancel)
        watch = asyncio.create_task(request.disconnected.wait())
        try:
            done, _ = await asyncio.wait({task, watch}, return_when=asyncio.FIRST_COMPLETED)
            if task not in done:
                writer.close()
                task.cancel()
            try:
                response = await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
                response = self._internal_error(message)
            except Exception:
                self._log.exception("request handling failed")
                response = self._internal_error(message)
        finally:
            watch.cancel()
            self._registry.finish_request(session_id, message.id)
        if writer.closed:
            return
        try:
            await writer.write_event(json.dumps(response.to_dict()).encode())
        except Exception:
            return

    @staticmethod
    def _internal_error(message: Message) -> Message:
        return error_response(message.id, ErrorCode.INTERNAL_ERROR, "internal server error")

    async def _initialize(self, request: _Request, user: Any, message: Message) -> None:
        if message.method is None:
            await request.respond(HTTPStatus.BAD_REQUEST)
            return
        if message.method != "initialize":
            await request.respond(HTTPStatus.NOT_FOUND)
            return
        params = message.params
        try:
            if not isinstance(params, dict):
                raise ValueError("initialize params must be an object")
            requested = params.get("protocolVersion", "")
            if not isinstance(requested, str):
                raise ValueError("protocolVersion must be a string")
            flags = client_capability_flags(params.get("capabilities"))
        except ValueError:
            await request.respond(HTTPStatus.BAD_REQUEST)
            return
        try:
            version = await negotiate_protocol_version(self._server, user.user_id, requested)
            try:
                handle = await self._sessions.create_session(
                    user.user_id,
                    protocol_version=version,
                    sampling=flags["sampling"],
                    roots=flags["roots"],
                    roots_list_changed=flags["roots_list_changed"],
                    elicitation=flags["elicitation"],
                )
            except Exception as exc:
                raise InitializationError(f"failed to create session: {exc}") from exc
            result = await build_initialize_result(self._server, handle.session, version)
        except InitializationError as exc:
            self._log.warning("session initialization failed: %s", exc)
            await request.respond(exc.status)
            return
        body = json.dumps(result_response(message.id, result).to_dict()).encode() + b"\n"
        headers = [(SESSION_HEADER, handle.session_id)]
        if version:
            headers.append((PROTOCOL_VERSION_HEADER, version))
        headers.append(("content-type", "application/json"))
        await request.respond(HTTPStatus.OK, headers, body)

    async def _get_mcp(self, request: _Request) -> None:
        if not _accepts_event_stream(request.headers.get("accept")):
            await request.respond(HTTPStatus.UNSUPPORTED_MEDIA_TYPE)
            return
        user = await self._check_auth(request)
        if user is None:
            return
        session_id = request.header(SESSION_HEADER)
        if not session_id:
            await request.respond(HTTPStatus.BAD_REQUEST)
            return
        handle = await self._load(request, session_id, user.user_id)
        if handle is None:
            return
        if self._version_mismatch(request, handle):
            await request.respond(HTTPStatus.PRECONDITION_FAILED)
            return

        cleanups: list[Callable[[], Any]] = []
        try:
            for topic in (
                RESOURCES_LIST_CHANGED_METHOD,
                RESOURCES_UPDATED_METHOD,
                TOOLS_LIST_CHANGED_METHOD,
                PROMPTS_LIST_CHANGED_METHOD,
            ):
                try:
                    unsub = await self._host.subscribe_events(
                        handle.session_id, topic, self._forwarder(handle, topic)
                    )
                except Exception:
                    await request.respond(HTTPStatus.INTERNAL_SERVER_ERROR)
                    return
                cleanups.append(unsub)
            try:
                await self._host.publish_event(handle.session_id, READY_TOPIC, None)
            except Exception:
                pass
            cleanups.extend(await self._register_list_changed(handle))

            headers = self._version_headers(handle) + [
                ("content-type", "text/event-stream"),
                ("cache-control", "no-cache"),
            ]
            await request.start(HTTPStatus.OK, headers)
            writer = SSEWriter(request.chunk)

            async def deliver(message_id: str, payload: bytes) -> None:
                await writer.write_event(payload, message_id)

            consumer = asyncio.create_task(
                handle.consume_messages(request.header(LAST_EVENT_ID_HEADER), deliver)
            )
            watch = asyncio.create_task(request.disconnected.wait())
            try:
                await asyncio.wait({consumer, watch}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (consumer, watch):
                    task.cancel()
                await asyncio.gather(consumer, watch, return_exceptions=True)
            if request.disconnected.is_set():
                writer.close()
        finally:
            for cleanup in reversed(cleanups):
                try:
                    outcome = cleanup()
                    if asyncio.iscoroutine(outcome):
                        await outcome
                except Exception:
                    pass

    def _forwarder(self, handle: Any, topic: str) -> Callable[[bytes | None], Awaitable[None]]:
        async def forward(payload: bytes | None) -> None:
            params = None
            if topic == RESOURCES_UPDATED_METHOD and payload:
                params = json.loads(payload)
            message = notification(topic, params)
            await handle.write_message(json.dumps(message.to_dict()).encode())

        return forward

    async def _register_list_changed(self, handle: Any) -> list[Callable[[], Any]]:
        registrations: list[Callable[[], Any]] = []
        session = handle.session
        for kind, topic in (
            ("resources", RESOURCES_LIST_CHANGED_METHOD),
            ("tools", TOOLS_LIST_CHANGED_METHOD),
            ("prompts", PROMPTS_LIST_CHANGED_METHOD),
        ):
            try:
                getter = getattr(self._server, f"get_{kind}_capability", None)
                capability = await getter(session) if getter is not None else None
                lc_getter = getattr(capability, "get_list_changed_capability", None)
                list_changed = await lc_getter(session) if lc_getter is not None else None
                if list_changed is None:
                    continue

                async def publish(*_args: Any, _topic: str = topic) -> None:
                    try:
                        await self._host.publish_event(handle.session_id, _topic, None)
                    except Exception:
                        pass

                outcome = await list_changed.register(session, publish)
                if callable(outcome):
                    registrations.append(outcome)
            except Exception:
                continue
        return registrations

    async def _get_prm(self, request: _Request) -> None:
        await self._serve_json(request, self._prm_document)

    async def _get_as_metadata(self, request: _Request) -> None:
        await self._serve_json(request, self._auth_server_metadata)

    @staticmethod
    async def _serve_json(request: _Request, document: dict[str, Any]) -> None:
        headers = [
            ("access-control-allow-origin", "*"),
            ("vary", "Origin"),
            ("content-type", "application/json"),
        ]
        await request.respond(HTTPStatus.OK, headers, json.dumps(document).encode() + b"\n")

    @staticmethod
    async def _options_metadata(request: _Request) -> None:
        await request.respond(HTTPStatus.NO_CONTENT, list(_CORS_PREFLIGHT))