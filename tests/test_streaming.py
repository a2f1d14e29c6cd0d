"""Streaming decoder: framing, accumulation, terminal callbacks."""

from __future__ import annotations

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from nutriplanner.errors import BlockedError, MalformedStructuredResponseError, TransportError
from nutriplanner.result import Empty, FunctionCallRequested, PlainText, StructuredData
from nutriplanner.streaming import IterableByteSource, JsonObjectFramer, StreamDecoder
from tests.helpers import StreamRecorder, reply_call, reply_text, stream_body

pytestmark = pytest.mark.unit


def _split(data: bytes, cuts: list[int]) -> list[bytes]:
    points = sorted({c for c in cuts if 0 < c < len(data)})
    chunks, start = [], 0
    for p in points:
        chunks.append(data[start:p])
        start = p
    chunks.append(data[start:])
    return chunks


async def _decode(chunks, *, expects_json: bool = False) -> tuple[StreamRecorder, object]:
    recorder = StreamRecorder()
    decoder = StreamDecoder(recorder.callbacks(), expects_json=expects_json)
    outcome = await decoder.run(IterableByteSource(chunks))
    return recorder, outcome


# =============================================================================
# Framer
# =============================================================================


def test_framer_ignores_braces_inside_strings() -> None:
    framer = JsonObjectFramer()
    text = '[{"text":"a } b { \\" c"},\r\n{"n":{"m":1}}]'

    frames = framer.feed(text[:7]) + framer.feed(text[7:])

    assert frames == ['{"text":"a } b { \\" c"}', '{"n":{"m":1}}']
    assert framer.pending is False


def test_framer_reports_partial_object() -> None:
    framer = JsonObjectFramer()
    assert framer.feed('[{"text":"unfinished') == []
    assert framer.pending is True


# =============================================================================
# Decoder
# =============================================================================


@pytest.mark.asyncio
async def test_text_parts_accumulate_and_complete_once() -> None:
    body = stream_body(reply_text("Soft "), reply_text("scrambled "), reply_text("eggs"))

    recorder, outcome = await _decode([body])

    assert recorder.chunks == ["Soft ", "scrambled ", "eggs"]
    assert recorder.terminal == [("complete", PlainText("Soft scrambled eggs"))]
    assert outcome == PlainText("Soft scrambled eggs")


_WORDS = ["Omelette ", "crêpe ", "añejo ", "🍳 ", "{brace} ", '"quoted" ', "line\n"]


@settings(max_examples=60, deadline=None)
@given(
    words=st.lists(st.sampled_from(_WORDS), min_size=1, max_size=8),
    cuts=st.lists(st.integers(min_value=0, max_value=2000), max_size=30),
)
def test_any_chunking_yields_the_same_text(words: list[str], cuts: list[int]) -> None:
    """Arbitrary byte splits, even inside multi-byte characters, give identical text."""
    body = stream_body(*(reply_text(w) for w in words))
    expected = PlainText("".join(words))

    recorder, outcome = asyncio.run(_decode(_split(body, cuts)))

    assert outcome == expected
    assert recorder.terminal == [("complete", expected)]


@pytest.mark.asyncio
async def test_function_call_stops_stream_and_is_terminal() -> None:
    call = FunctionCallRequested("findStoresWithIngredient", {"ingredient": "basil"})
    body = stream_body(
        reply_text("Let me check. "),
        reply_call("findStoresWithIngredient", {"ingredient": "basil"}),
        reply_text("never delivered"),
    )
    source = IterableByteSource([body])

    recorder = StreamRecorder()
    outcome = await StreamDecoder(recorder.callbacks()).run(source)

    assert recorder.chunks == ["Let me check. ", call]
    assert recorder.terminal == [("complete", call)]
    assert outcome == call
    assert source.closed is True


@pytest.mark.asyncio
async def test_block_reason_fragment_terminates_with_error() -> None:
    blocked = {"promptFeedback": {"blockReason": "SAFETY", "safetyRatings": []}}
    body = stream_body(reply_text("partial "), blocked, reply_text("more"))

    recorder, outcome = await _decode([body])

    assert outcome is None
    assert recorder.chunks == ["partial "]
    [(kind, err)] = recorder.terminal
    assert kind == "error"
    assert isinstance(err, BlockedError)
    assert err.reason == "SAFETY"


@pytest.mark.asyncio
async def test_error_object_mid_stream_is_reported_not_truncated() -> None:
    failure = {"error": {"code": 503, "status": "UNAVAILABLE", "message": "The model is overloaded."}}
    body = stream_body(reply_text("Hello "), failure, reply_text("never seen"))

    recorder, outcome = await _decode([body])

    assert outcome is None
    assert recorder.chunks == ["Hello "]
    [(kind, err)] = recorder.terminal
    assert kind == "error"
    assert isinstance(err, TransportError)
    assert err.status_code == 503
    assert err.phase == "stream"
    assert "The model is overloaded." in str(err)


@pytest.mark.asyncio
async def test_unparsable_fragment_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    body = b'[{"candidates":[{"content":{"parts":[{"text":"a"}]}}]},{not json},' + stream_body(
        reply_text("b")
    )[1:]

    with caplog.at_level("WARNING", logger="nutriplanner.streaming"):
        recorder, outcome = await _decode([body])

    assert outcome == PlainText("ab")
    assert any("unparsable" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_json_stream_parses_at_completion() -> None:
    body = stream_body(reply_text('{"recipe":'), reply_text('"Omelette"}'))

    recorder, outcome = await _decode([body], expects_json=True)

    assert outcome == StructuredData({"recipe": "Omelette"})
    assert recorder.chunks == ['{"recipe":', '"Omelette"}']


@pytest.mark.asyncio
async def test_malformed_json_stream_reports_error() -> None:
    recorder, outcome = await _decode([stream_body(reply_text("not json"))], expects_json=True)

    assert outcome is None
    [(kind, err)] = recorder.terminal
    assert kind == "error"
    assert isinstance(err, MalformedStructuredResponseError)


@pytest.mark.asyncio
async def test_empty_stream_completes_with_empty() -> None:
    recorder, outcome = await _decode([b"[]"])
    assert outcome == Empty()
    assert recorder.terminal == [("complete", Empty())]


@pytest.mark.asyncio
async def test_source_failure_is_reported_once_and_source_closed() -> None:
    class FailingSource(IterableByteSource):
        async def next_chunk(self) -> bytes | None:
            chunk = await super().next_chunk()
            if chunk is None:
                raise TransportError("connection reset", retryable=True)
            return chunk

    source = FailingSource([stream_body(reply_text("half"))[:-1]])
    recorder = StreamRecorder()

    outcome = await StreamDecoder(recorder.callbacks()).run(source)

    assert outcome is None
    assert recorder.chunks == ["half"]
    [(kind, err)] = recorder.terminal
    assert kind == "error"
    assert isinstance(err, TransportError)
    assert source.closed is True


@pytest.mark.asyncio
async def test_cancellation_fires_no_callback() -> None:
    gate = asyncio.Event()

    async def slow_chunks():
        yield stream_body(reply_text("first"))[:-1]
        await gate.wait()
        yield b"]"

    source = IterableByteSource(slow_chunks())
    recorder = StreamRecorder()
    task = asyncio.create_task(StreamDecoder(recorder.callbacks()).run(source))
    while not recorder.chunks:
        await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert recorder.terminal == []
    assert source.closed is True


@pytest.mark.asyncio
async def test_settle_is_idempotent() -> None:
    recorder = StreamRecorder()
    decoder = StreamDecoder(recorder.callbacks())
    await decoder.run(IterableByteSource([stream_body(reply_text("x"))]))

    decoder.settle()

    assert recorder.terminal == [("complete", PlainText("x"))]
