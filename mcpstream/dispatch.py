"""Routing of JSON-RPC requests to the capabilities of an MCP server.

The server object is duck-typed. For each capability it may offer an async
``get_<kind>_capability(session)`` method returning the capability object, or
``None`` when the capability is not available. The kinds are ``tools``,
``resources``, ``prompts``, ``logging`` and ``completions``.

Paged listings return an object with ``items`` and ``next_cursor`` attributes.
Results may be plain JSON values, dataclasses or objects with ``to_dict()``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from collections.abc import AsyncIterable, Awaitable, Callable
from typing import Any

from .jsonrpc import ErrorCode, Message, error_response, result_response
from .registry import SessionRegistry

RESOURCES_UPDATED_METHOD = "notifications/resources/updated"
PING_METHOD = "ping"

LOGGING_LEVELS = frozenset(
    {"debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"}
)


class _RpcError(Exception):
    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def _invalid_params(message: str = "invalid parameters") -> _RpcError:
    return _RpcError(ErrorCode.INVALID_PARAMS, message)


def _internal() -> _RpcError:
    return _RpcError(ErrorCode.INTERNAL_ERROR, "internal error")


def _to_json(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_json(item) for key, item in value.items()}
    return value


def _object(params: Any) -> dict[str, Any]:
    if not isinstance(params, dict):
        raise _invalid_params()
    return params


def _string_field(params: dict[str, Any], name: str) -> str:
    value = params.get(name, "")
    if not isinstance(value, str):
        raise _invalid_params()
    return value


def cursor_from_params(params: Any) -> str | None:
    """Return the pagination cursor of list params, or None when absent or empty.

    Raises ValueError when the params are not an object or the cursor is not a string.
    """
    if not isinstance(params, dict):
        raise ValueError("params must be an object")
    cursor = params.get("cursor")
    if cursor is None or cursor == "":
        return None
    if not isinstance(cursor, str):
        raise ValueError("cursor must be a string")
    return cursor


def _cursor(params: Any) -> str | None:
    try:
        return cursor_from_params(params)
    except ValueError as exc:
        raise _invalid_params() from exc


def _page_result(key: str, page: Any) -> dict[str, Any]:
    result: dict[str, Any] = {key: _to_json(list(page.items))}
    if page.next_cursor:
        result["nextCursor"] = page.next_cursor
    return result


async def _invoke(call: Awaitable[Any]) -> Any:
    try:
        return await call
    except _RpcError:
        raise
    except Exception as exc:
        raise _internal() from exc


class RequestDispatcher:
    """Answers JSON-RPC requests of a session using the server's capabilities.

    ``host`` must provide ``async publish_event(session_id, topic, payload)``;
    it receives resource update events from subscription forwarders.
    """

    def __init__(self, server: Any, host: Any, registry: SessionRegistry | None = None) -> None:
        self._server = server
        self._host = host
        self._registry = registry if registry is not None else SessionRegistry()
        self._routes: dict[str, Callable[[Any, Any], Awaitable[Any]]] = {
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            "resources/list": self._resources_list,
            "resources/read": self._resources_read,
            "resources/templates/list": self._resources_templates_list,
            "resources/subscribe": self._resources_subscribe,
            "resources/unsubscribe": self._resources_unsubscribe,
            "prompts/list": self._prompts_list,
            "prompts/get": self._prompts_get,
            "logging/setLevel": self._logging_set_level,
            "completion/complete": self._completion_complete,
        }

    @property
    def registry(self) -> SessionRegistry:
        """The registry holding this dispatcher's subscription forwarders."""
        return self._registry

    async def handle(self, session: Any, request: Message) -> Message:
        """Return the response to ``request``; failures become JSON-RPC errors."""
        method = request.method or ""
        if method == PING_METHOD:
            return result_response(request.id, {})
        route = self._routes.get(method)
        if route is None:
            return error_response(
                request.id,
                ErrorCode.METHOD_NOT_FOUND,
                "method not found",
                {"method": request.method},
            )
        try:
            result = await route(session, request.params)
        except _RpcError as exc:
            return error_response(request.id, exc.code, exc.message, exc.data)
        return result_response(request.id, _to_json(result))

    async def _capability(self, kind: str, session: Any, label: str | None = None) -> Any:
        getter = getattr(self._server, f"get_{kind}_capability", None)
        if getter is None:
            capability = None
        else:
            try:
                capability = await getter(session)
            except Exception as exc:
                raise _internal() from exc
        if capability is None:
            raise _RpcError(
                ErrorCode.METHOD_NOT_FOUND, f"{label or kind} capability not supported"
            )
        return capability

    async def _tools_list(self, session: Any, params: Any) -> Any:
        tools = await self._capability("tools", session)
        cursor = _cursor(params)
        page = await _invoke(tools.list_tools(session, cursor))
        return _page_result("tools", page)

    async def _tools_call(self, session: Any, params: Any) -> Any:
        tools = await self._capability("tools", session)
        body = _object(params)
        _string_field(body, "name")
        return await _invoke(tools.call_tool(session, body))

    async def _resources_list(self, session: Any, params: Any) -> Any:
        resources = await self._capability("resources", session)
        cursor = _cursor(params)
        page = await _invoke(resources.list_resources(session, cursor))
        return _page_result("resources", page)

    async def _resources_read(self, session: Any, params: Any) -> Any:
        resources = await self._capability("resources", session)
        uri = _string_field(_object(params), "uri")
        contents = await _invoke(resources.read_resource(session, uri))
        return {"contents": _to_json(list(contents))}

    async def _resources_templates_list(self, session: Any, params: Any) -> Any:
        resources = await self._capability("resources", session)
        cursor = _cursor(params)
        page = await _invoke(resources.list_resource_templates(session, cursor))
        return _page_result("resourceTemplates", page)

    async def _subscription(self, session: Any, params: Any) -> tuple[Any, Any, str]:
        resources = await self._capability("resources", session)
        uri = _string_field(_object(params), "uri")
        getter = getattr(resources, "get_subscription_capability", None)
        if getter is None:
            subscription = None
        else:
            try:
                subscription = await getter(session)
            except Exception as exc:
                raise _internal() from exc
        if subscription is None:
            raise _RpcError(
                ErrorCode.METHOD_NOT_FOUND, "resources subscription capability not supported"
            )
        return resources, subscription, uri

    async def _resources_subscribe(self, session: Any, params: Any) -> Any:
        resources, subscription, uri = await self._subscription(session, params)
        await _invoke(subscription.subscribe(session, uri))
        subscriber_for_uri = getattr(resources, "subscriber_for_uri", None)
        if subscriber_for_uri is not None:
            source = subscriber_for_uri(uri)
            if source is not None:
                session_id = session.session_id
                self._registry.add_forwarder(
                    session_id,
                    uri,
                    lambda: asyncio.create_task(self._forward(session_id, uri, source)),
                )
        return {}

    async def _forward(self, session_id: str, uri: str, source: AsyncIterable[Any]) -> None:
        payload = json.dumps({"uri": uri}).encode()
        async for _tick in source:
            try:
                await self._host.publish_event(session_id, RESOURCES_UPDATED_METHOD, payload)
            except Exception:
                pass

    async def _resources_unsubscribe(self, session: Any, params: Any) -> Any:
        _resources, subscription, uri = await self._subscription(session, params)
        await _invoke(subscription.unsubscribe(session, uri))
        self._registry.remove_forwarder(session.session_id, uri)
        return {}

    async def _prompts_list(self, session: Any, params: Any) -> Any:
        prompts = await self._capability("prompts", session)
        cursor = _cursor(params)
        page = await _invoke(prompts.list_prompts(session, cursor))
        return _page_result("prompts", page)

    async def _prompts_get(self, session: Any, params: Any) -> Any:
        prompts = await self._capability("prompts", session)
        body = _object(params)
        _string_field(body, "name")
        return await _invoke(prompts.get_prompt(session, body))

    async def _logging_set_level(self, session: Any, params: Any) -> Any:
        logging_cap = await self._capability("logging", session)
        level = _string_field(_object(params), "level")
        if level not in LOGGING_LEVELS:
            raise _invalid_params("invalid logging level")
        try:
            await logging_cap.set_level(session, level)
        except ValueError as exc:
            raise _invalid_params("invalid logging level") from exc
        except Exception as exc:
            raise _internal() from exc
        return {}

    async def _completion_complete(self, session: Any, params: Any) -> Any:
        completions = await self._capability("completions", session)
        body = _object(params)
        return await _invoke(completions.complete(session, body))