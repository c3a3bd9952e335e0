import json

import pytest

from mcpstream.jsonrpc import (
    ErrorCode,
    Message,
    error_response,
    notification,
    parse_message,
    request_id_key,
    result_response,
)


def test_parse_request():
    msg = parse_message(b'{"jsonrpc":"2.0","id":"1","method":"initialize","params":{}}')
    assert msg.is_request()
    assert not msg.is_notification()
    assert not msg.is_response()
    assert msg.method == "initialize"
    assert msg.id == "1"
    assert msg.params == {}


def test_parse_notification():
    msg = parse_message('{"jsonrpc":"2.0","method":"notifications/cancelled","params":{"requestId":"3"}}')
    assert msg.is_notification()
    assert not msg.is_request()
    assert msg.params == {"requestId": "3"}


def test_parse_response_with_result():
    msg = parse_message('{"jsonrpc":"2.0","id":5,"result":{"ok":true}}')
    assert msg.is_response()
    assert msg.result == {"ok": True}
    assert msg.id == 5


def test_parse_response_with_error():
    msg = parse_message('{"jsonrpc":"2.0","id":"a","error":{"code":-1,"message":"boom"}}')
    assert msg.is_response()
    assert msg.error == {"code": -1, "message": "boom"}


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"jsonrpc":"2.0"}', '{"method": 3}', '{"id": true, "method": "x"}'])
def test_parse_invalid(raw):
    with pytest.raises(ValueError):
        parse_message(raw)


def test_round_trip_request():
    original = {"jsonrpc": "2.0", "id": 7, "method": "tools/list", "params": {"cursor": "c"}}
    assert Message.from_dict(original).to_dict() == original


def test_round_trip_response():
    original = {"jsonrpc": "2.0", "id": "x", "result": {"tools": []}}
    assert Message.from_dict(original).to_dict() == original


def test_request_id_key_normalises():
    assert request_id_key(1) == request_id_key("1") == "1"


@pytest.mark.parametrize("bad", [True, None, 1.5])
def test_request_id_key_rejects(bad):
    with pytest.raises(TypeError):
        request_id_key(bad)


def test_result_response_wire_form():
    assert result_response("7", {}).to_dict() == {"jsonrpc": "2.0", "id": "7", "result": {}}


def test_error_response_with_data():
    msg = error_response(2, ErrorCode.METHOD_NOT_FOUND, "method not found", {"method": "nope"})
    body = msg.to_dict()
    assert msg.is_response()
    assert body["error"]["code"] == ErrorCode.METHOD_NOT_FOUND
    assert body["error"]["message"] == "method not found"
    assert body["error"]["data"] == {"method": "nope"}
    assert "result" not in body


def test_error_response_without_data():
    body = error_response(2, ErrorCode.INTERNAL_ERROR, "internal error").to_dict()
    assert "data" not in body["error"]
    assert body["id"] == 2


def test_notification_has_no_id():
    msg = notification("notifications/tools/list_changed")
    body = msg.to_dict()
    assert msg.is_notification()
    assert "id" not in body
    assert "params" not in body
    assert json.loads(json.dumps(body))["method"] == "notifications/tools/list_changed"