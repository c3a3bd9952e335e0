import json
from types import SimpleNamespace

import pytest

from mcpstream.jsonrpc import Message, error_response, notification, result_response
from mcpstream.notifications import (
    CANCELLED_METHOD,
    PROMPTS_LIST_CHANGED_METHOD,
    RESOURCES_LIST_CHANGED_METHOD,
    RESPONSE_TOPIC_PREFIX,
    TOOLS_LIST_CHANGED_METHOD,
    handle_notification,
    handle_response,
    list_changed_topics,
)
from mcpstream.registry import SessionRegistry


class FakeHost:
    def __init__(self) -> None:
        self.events = []

    async def publish_event(self, session_id, topic, payload):
        self.events.append((session_id, topic, payload))


class FailingHost:
    async def publish_event(self, session_id, topic, payload):
        raise ConnectionError("bus down")


SESSION = SimpleNamespace(session_id="s1")


@pytest.mark.asyncio
async def test_cancelled_notification_cancels_inflight_request():
    host = FakeHost()
    registry = SessionRegistry()
    cancelled = []
    registry.begin_request("s1", "42", lambda: cancelled.append("42"))
    params = {"requestId": "42"}
    await handle_notification(host, registry, SESSION, notification(CANCELLED_METHOD, params))
    assert cancelled == ["42"]
    assert registry.cancel_request("s1", "42") is False
    assert len(host.events) == 1
    session_id, topic, payload = host.events[0]
    assert (session_id, topic) == ("s1", CANCELLED_METHOD)
    assert json.loads(payload) == params


@pytest.mark.asyncio
async def test_cancelled_with_non_string_id_is_ignored():
    host = FakeHost()
    registry = SessionRegistry()
    cancelled = []
    registry.begin_request("s1", 42, lambda: cancelled.append(42))
    await handle_notification(
        host, registry, SESSION, notification(CANCELLED_METHOD, {"requestId": 42})
    )
    assert cancelled == []
    assert registry.cancel_request("s1", 42) is True
    assert host.events[0][1] == CANCELLED_METHOD


@pytest.mark.asyncio
async def test_notification_without_params_publishes_none():
    host = FakeHost()
    await handle_notification(
        host, SessionRegistry(), SESSION, notification(TOOLS_LIST_CHANGED_METHOD)
    )
    assert host.events == [("s1", TOOLS_LIST_CHANGED_METHOD, None)]


@pytest.mark.asyncio
async def test_notification_publish_failure_raises():
    with pytest.raises(RuntimeError):
        await handle_notification(
            FailingHost(), SessionRegistry(), SESSION, notification(CANCELLED_METHOD)
        )


@pytest.mark.asyncio
async def test_response_published_on_rendezvous_topic():
    host = FakeHost()
    response = result_response(7, {"ok": True})
    topic = await handle_response(host, SESSION, response)
    assert topic == "rv:7"
    assert host.events[0][:2] == ("s1", "rv:7")
    assert json.loads(host.events[0][2]) == response.to_dict()


@pytest.mark.asyncio
async def test_error_response_round_trips_through_payload():
    host = FakeHost()
    response = error_response("abc", -32603, "internal error")
    topic = await handle_response(host, SESSION, response)
    assert topic == RESPONSE_TOPIC_PREFIX + "abc"
    restored = Message.from_dict(json.loads(host.events[0][2]))
    assert restored == response


@pytest.mark.asyncio
async def test_response_without_id_is_rejected():
    host = FakeHost()
    with pytest.raises(ValueError):
        await handle_response(host, SESSION, Message(result={}))
    with pytest.raises(ValueError):
        await handle_response(host, SESSION, None)
    assert host.events == []


@pytest.mark.asyncio
async def test_response_publish_failure_raises():
    with pytest.raises(RuntimeError):
        await handle_response(FailingHost(), SESSION, result_response(1, {}))


def test_list_changed_topics():
    topics = list_changed_topics()
    assert set(topics) == {
        RESOURCES_LIST_CHANGED_METHOD,
        TOOLS_LIST_CHANGED_METHOD,
        PROMPTS_LIST_CHANGED_METHOD,
    }
    assert len(topics) == len(set(topics))
    assert all(topic.endswith("list_changed") for topic in topics)