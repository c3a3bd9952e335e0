"""Handling of client notifications and responses through the session host's event bus."""

from __future__ import annotations

import json
from typing import Any

from .dispatch import RESOURCES_UPDATED_METHOD
from .jsonrpc import Message, request_id_key
from .registry import SessionRegistry

CANCELLED_METHOD = "notifications/cancelled"
RESOURCES_LIST_CHANGED_METHOD = "notifications/resources/list_changed"
TOOLS_LIST_CHANGED_METHOD = "notifications/tools/list_changed"
PROMPTS_LIST_CHANGED_METHOD = "notifications/prompts/list_changed"
READY_TOPIC = "streaminghttp/ready"
RESPONSE_TOPIC_PREFIX = "rv:"

__all__ = [
    "CANCELLED_METHOD",
    "PROMPTS_LIST_CHANGED_METHOD",
    "READY_TOPIC",
    "RESOURCES_LIST_CHANGED_METHOD",
    "RESOURCES_UPDATED_METHOD",
    "RESPONSE_TOPIC_PREFIX",
    "TOOLS_LIST_CHANGED_METHOD",
    "handle_notification",
    "handle_response",
    "list_changed_topics",
]


def _encode(value: Any) -> bytes | None:
    return None if value is None else json.dumps(value).encode()


def list_changed_topics() -> tuple[str, ...]:
    """The list_changed notification methods that are forwarded to open streams."""
    return (
        RESOURCES_LIST_CHANGED_METHOD,
        TOOLS_LIST_CHANGED_METHOD,
        PROMPTS_LIST_CHANGED_METHOD,
    )


async def handle_notification(
    host: Any, registry: SessionRegistry, session: Any, request: Message
) -> None:
    """Act on a client notification and publish it as an internal event.

    A notifications/cancelled naming an in-flight request of the session
    cancels that request. The event topic is the method; the payload is the
    JSON-encoded params. Raises RuntimeError when publishing fails.
    """
    session_id = session.session_id
    params = request.params
    if request.method == CANCELLED_METHOD and isinstance(params, dict):
        request_id = params.get("requestId")
        if isinstance(request_id, str) and request_id:
            registry.cancel_request(session_id, request_id)
    try:
        await host.publish_event(session_id, request.method, _encode(params))
    except Exception as exc:
        raise RuntimeError(f"publish internal event: {exc}") from exc


async def handle_response(host: Any, session: Any, response: Message | None) -> str:
    """Publish a client's response on its rendezvous topic and return that topic.

    Raises ValueError when the response has no id and RuntimeError when
    publishing fails.
    """
    if response is None or response.id is None:
        raise ValueError("response missing id")
    payload = json.dumps(response.to_dict()).encode()
    topic = RESPONSE_TOPIC_PREFIX + request_id_key(response.id)
    try:
        await host.publish_event(session.session_id, topic, payload)
    except Exception as exc:
        raise RuntimeError(f"publish rendezvous event: {exc}") from exc
    return topic