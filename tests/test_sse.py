import asyncio
import json

import pytest

from mcpstream.sse import (
    ProgressReporter,
    SessionWithWriter,
    SSEWriter,
    StreamClosed,
    format_sse_event,
    progress_notification,
)


class _Sink:
    def __init__(self, fail=False):
        self.chunks = []
        self.fail = fail

    async def __call__(self, data):
        if self.fail:
            raise OSError("broken pipe")
        await asyncio.sleep(0)
        self.chunks.append(data)


class _Session:
    session_id = "sess-1"


def _data_of(frame):
    text = frame.decode()
    line = next(part for part in text.split("\n") if part.startswith("data: "))
    return json.loads(line[len("data: "):])


def test_format_without_id():
    assert format_sse_event(b'{"a":1}') == b'data: {"a":1}\n\n'


def test_format_with_id():
    assert format_sse_event(b"{}", "7") == b"id: 7\ndata: {}\n\n"


@pytest.mark.asyncio
async def test_writer_writes_frames_in_order():
    sink = _Sink()
    writer = SSEWriter(sink)
    await writer.write_event(b"one", "1")
    await writer.write_event(b"two")
    assert sink.chunks == [format_sse_event(b"one", "1"), format_sse_event(b"two")]


@pytest.mark.asyncio
async def test_concurrent_writes_are_whole_frames():
    sink = _Sink()
    writer = SSEWriter(sink)
    payloads = [json.dumps({"n": n}).encode() for n in range(10)]
    await asyncio.gather(*(writer.write_event(p) for p in payloads))
    assert sorted(sink.chunks) == sorted(format_sse_event(p) for p in payloads)


@pytest.mark.asyncio
async def test_write_after_close_raises():
    sink = _Sink()
    writer = SSEWriter(sink)
    writer.close()
    assert writer.closed
    with pytest.raises(StreamClosed):
        await writer.write_event(b"x")
    assert sink.chunks == []


@pytest.mark.asyncio
async def test_failed_send_closes_writer():
    writer = SSEWriter(_Sink(fail=True))
    with pytest.raises(StreamClosed):
        await writer.write_event(b"x")
    assert writer.closed


@pytest.mark.asyncio
async def test_session_writes_to_stream_when_open():
    sink = _Sink()
    fallback = _Sink()
    sess = SessionWithWriter(_Session(), SSEWriter(sink), fallback)
    await sess.write_message(b'{"k":1}')
    assert sink.chunks == [format_sse_event(b'{"k":1}')]
    assert fallback.chunks == []


@pytest.mark.asyncio
async def test_session_falls_back_when_closed():
    sink = _Sink()
    fallback = _Sink()
    writer = SSEWriter(sink)
    writer.close()
    sess = SessionWithWriter(_Session(), writer, fallback)
    await sess.write_message(b"msg")
    assert fallback.chunks == [b"msg"]
    assert sink.chunks == []


@pytest.mark.asyncio
async def test_session_falls_back_when_write_fails():
    fallback = _Sink()
    sess = SessionWithWriter(_Session(), SSEWriter(_Sink(fail=True)), fallback)
    await sess.write_message(b"msg")
    assert fallback.chunks == [b"msg"]


@pytest.mark.asyncio
async def test_session_without_fallback_raises():
    writer = SSEWriter(_Sink())
    writer.close()
    sess = SessionWithWriter(_Session(), writer)
    with pytest.raises(StreamClosed):
        await sess.write_message(b"msg")


def test_session_delegates_attributes():
    sess = SessionWithWriter(_Session(), SSEWriter(_Sink()))
    assert sess.session_id == "sess-1"


def test_progress_notification_omits_zero_total():
    msg = progress_notification("r1", 0.5)
    assert msg.method == "notifications/progress"
    assert msg.params == {"progressToken": "r1", "progress": 0.5}
    assert msg.is_notification()


def test_progress_notification_includes_positive_total():
    msg = progress_notification("r1", 2, 10)
    assert msg.params["total"] == 10


@pytest.mark.asyncio
async def test_progress_reporter_writes_notification():
    sink = _Sink()
    sess = SessionWithWriter(_Session(), SSEWriter(sink))
    await ProgressReporter(sess, "req-9").report(3, 4)
    body = _data_of(sink.chunks[0])
    assert body["method"] == "notifications/progress"
    assert body["params"] == {"progressToken": "req-9", "progress": 3, "total": 4}
    assert "id" not in body