"""ConversationClient end to end over a scripted backend and a mock transport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from nutriplanner.client import ConversationClient, default_probe
from nutriplanner.config import Config
from nutriplanner.connectivity import ConnectivityMonitor, StaticConnectivity
from nutriplanner.errors import (
    MalformedStructuredResponseError,
    NoConnectivityError,
    TransportError,
)
from nutriplanner.options import GenerateOptions, GenerationParameters
from nutriplanner.providers import GeminiBackend
from nutriplanner.result import Blocked, Empty, PlainText, StructuredData
from nutriplanner.retry import RetryPolicy
from nutriplanner.turns import NewTurn, Turn
from tests.helpers import (
    FakeSleep,
    ScriptedBackend,
    StreamRecorder,
    reply_text,
    stream_body,
)

pytestmark = pytest.mark.integration

_JSON = GenerateOptions(generation=GenerationParameters(response_mime_type="application/json"))


# =============================================================================
# generate()
# =============================================================================


@pytest.mark.asyncio
async def test_quick_dinner_json_scenario(config) -> None:
    backend = ScriptedBackend(
        script=[{"candidates": [{"content": {"parts": [{"text": '{"recipe":"Omelette"}'}]}}]}]
    )
    client = ConversationClient(config, backend=backend)

    outcome = await client.generate([], NewTurn(text="suggest a quick dinner"), _JSON)

    assert outcome == StructuredData({"recipe": "Omelette"})
    sent = backend.envelopes[0].to_payload()
    assert sent["generationConfig"]["responseMimeType"] == "application/json"
    assert sent["contents"] == [{"role": "user", "parts": [{"text": "suggest a quick dinner"}]}]


@pytest.mark.asyncio
async def test_blocked_is_returned_not_raised(config) -> None:
    backend = ScriptedBackend(
        script=[
            {
                "promptFeedback": {
                    "blockReason": "SAFETY",
                    "safetyRatings": [{"category": "HATE", "probability": "HIGH"}],
                }
            }
        ]
    )
    sleep = FakeSleep()
    client = ConversationClient(config, backend=backend, sleep=sleep)

    outcome = await client.generate([Turn.user("hi")], NewTurn(text="..."))

    assert outcome == Blocked("SAFETY", "HATE: HIGH")
    assert backend.generate_calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_transport_failures_retry_up_to_cap_then_raise(config) -> None:
    errors = [TransportError(f"503 #{i}", retryable=True, status_code=503) for i in range(3)]
    backend = ScriptedBackend(script=list(errors))
    sleep = FakeSleep()
    client = ConversationClient(config, backend=backend, sleep=sleep)

    with pytest.raises(TransportError) as exc:
        await client.generate([], NewTurn(text="hi"))

    assert backend.generate_calls == config.retry.max_attempts
    assert exc.value is errors[-1]
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retries_resend_the_identical_envelope(config) -> None:
    backend = ScriptedBackend(script=[TransportError("502"), reply_text("ok")])
    client = ConversationClient(config, backend=backend, sleep=FakeSleep())

    await client.generate([Turn.user("a")], NewTurn(text="b"))

    first, second = backend.envelopes
    assert first.to_json() == second.to_json()


@pytest.mark.asyncio
async def test_malformed_json_is_not_retried(config) -> None:
    backend = ScriptedBackend(script=[reply_text("Omelette, obviously")])
    client = ConversationClient(config, backend=backend, sleep=FakeSleep())

    with pytest.raises(MalformedStructuredResponseError):
        await client.generate([], NewTurn(text="x"), _JSON)

    assert backend.generate_calls == 1


@pytest.mark.asyncio
async def test_offline_probe_fails_without_reaching_backend(config) -> None:
    backend = ScriptedBackend()
    sleep = FakeSleep()
    client = ConversationClient(
        config, backend=backend, probe=StaticConnectivity(False), sleep=sleep
    )

    with pytest.raises(NoConnectivityError):
        await client.generate([], NewTurn(text="hi"))

    assert backend.generate_calls == 0
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_empty_new_turn_is_empty_without_a_request(config) -> None:
    backend = ScriptedBackend()
    sleep = FakeSleep()
    client = ConversationClient(config, backend=backend, sleep=sleep)

    outcome = await client.generate([Turn.user("hi")], NewTurn())

    assert outcome == Empty()
    assert backend.envelopes == []
    assert sleep.delays == []


# =============================================================================
# stream()
# =============================================================================


@pytest.mark.asyncio
async def test_stream_delivers_chunks_then_completes(config) -> None:
    backend = ScriptedBackend(streams=[[stream_body(reply_text("Hel"), reply_text("lo"))]])
    recorder = StreamRecorder()
    client = ConversationClient(config, backend=backend)

    result = await client.stream([], NewTurn(text="hi"), recorder.callbacks())

    assert result is None
    assert recorder.chunks == ["Hel", "lo"]
    assert recorder.terminal == [("complete", PlainText("Hello"))]


@pytest.mark.asyncio
async def test_stream_of_empty_new_turn_completes_with_empty(config) -> None:
    backend = ScriptedBackend()
    recorder = StreamRecorder()
    client = ConversationClient(config, backend=backend)

    await client.stream([], NewTurn(text=""), recorder.callbacks())

    assert recorder.terminal == [("complete", Empty())]
    assert backend.envelopes == []


@pytest.mark.asyncio
async def test_stream_open_is_retried(config) -> None:
    backend = ScriptedBackend(
        streams=[TransportError("503"), [stream_body(reply_text("late but fine"))]]
    )
    recorder = StreamRecorder()
    sleep = FakeSleep()
    client = ConversationClient(config, backend=backend, sleep=sleep)

    await client.stream([], NewTurn(text="hi"), recorder.callbacks())

    assert len(backend.envelopes) == 2
    assert sleep.delays == [1.0]
    assert recorder.terminal == [("complete", PlainText("late but fine"))]


@pytest.mark.asyncio
async def test_stream_open_failure_goes_to_on_error(config) -> None:
    errors = [TransportError("down") for _ in range(3)]
    backend = ScriptedBackend(streams=list(errors))
    recorder = StreamRecorder()
    client = ConversationClient(config, backend=backend, sleep=FakeSleep())

    await client.stream([], NewTurn(text="hi"), recorder.callbacks())

    assert recorder.chunks == []
    assert recorder.terminal == [("error", errors[-1])]


@pytest.mark.asyncio
async def test_stream_cancellation_propagates_without_callbacks(config) -> None:
    gate = asyncio.Event()

    class HangingBackend(ScriptedBackend):
        async def open_stream(self, envelope):
            await gate.wait()
            return await super().open_stream(envelope)

    recorder = StreamRecorder()
    client = ConversationClient(config, backend=HangingBackend())
    task = asyncio.create_task(client.stream([], NewTurn(text="hi"), recorder.callbacks()))
    await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert recorder.events == []


# =============================================================================
# Wiring
# =============================================================================


def test_default_probe_follows_config(config) -> None:
    assert isinstance(default_probe(config), StaticConnectivity)
    checked = Config(api_key="k")
    assert isinstance(default_probe(checked), ConnectivityMonitor)


@pytest.mark.asyncio
async def test_owned_backend_is_closed_injected_is_not(config) -> None:
    injected = ScriptedBackend()
    async with ConversationClient(config, backend=injected):
        pass
    assert injected.closed is False


@pytest.mark.asyncio
async def test_full_stack_over_mock_transport() -> None:
    """Config -> client -> GeminiBackend -> httpx, with a 429 then success."""
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429, headers={"Retry-After": "3"}, json={"error": {"message": "quota"}})
        return httpx.Response(200, json=reply_text("Try a frittata."))

    cfg = Config(
        api_key="k",
        base_url="https://backend.test/v1beta",
        retry=RetryPolicy(max_attempts=2, base_delay_s=1.0),
        check_connectivity=False,
    )
    sleep = FakeSleep()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = ConversationClient(cfg, backend=GeminiBackend(cfg, client=http), sleep=sleep)
        outcome = await client.generate([], NewTurn(text="leftover eggs?"))

    assert outcome == PlainText("Try a frittata.")
    assert sleep.delays == [3.0]
    assert json.loads(calls[0].content) == json.loads(calls[1].content)
