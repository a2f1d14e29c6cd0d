"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off backend subclasses as coverage expands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any

from nutriplanner.request import RequestEnvelope
from nutriplanner.streaming import IterableByteSource, StreamCallbacks


def reply_text(text: str) -> dict[str, Any]:
    """Whole-response body carrying one text part."""
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def reply_call(name: str, args: dict[str, Any]) -> dict[str, Any]:
    """Whole-response body carrying one function call."""
    return {
        "candidates": [
            {"content": {"role": "model", "parts": [{"functionCall": {"name": name, "args": args}}]}}
        ]
    }


def stream_body(*objects: dict[str, Any]) -> bytes:
    """Encode response objects the way the backend frames a stream."""
    return ("[" + ",\r\n".join(json.dumps(o, ensure_ascii=False) for o in objects) + "]").encode("utf-8")


@dataclass
class ScriptedBackend:
    """Backend that returns a scripted sequence of results/exceptions.

    ``script`` feeds ``generate_content``; ``streams`` feeds ``open_stream``
    (each item is a list of byte chunks or an exception).
    """

    script: list[dict[str, Any] | BaseException] = field(default_factory=list)
    streams: list[list[bytes] | BaseException] = field(default_factory=list)
    envelopes: list[RequestEnvelope] = field(default_factory=list)
    sources: list[IterableByteSource] = field(default_factory=list)
    closed: bool = False

    @property
    def generate_calls(self) -> int:
        return len(self.envelopes)

    async def generate_content(self, envelope: RequestEnvelope) -> dict[str, Any]:
        self.envelopes.append(envelope)
        if not self.script:
            return reply_text("ok")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def open_stream(self, envelope: RequestEnvelope) -> IterableByteSource:
        self.envelopes.append(envelope)
        item = self.streams.pop(0) if self.streams else [stream_body(reply_text("ok"))]
        if isinstance(item, BaseException):
            raise item
        source = IterableByteSource(item)
        self.sources.append(source)
        return source

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class FakeSleep:
    """Records requested delays instead of sleeping."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@dataclass
class StreamRecorder:
    """Collects streaming callbacks in arrival order."""

    events: list[tuple[str, Any]] = field(default_factory=list)

    def on_chunk(self, chunk: Any) -> None:
        self.events.append(("chunk", chunk))

    def on_complete(self, outcome: Any) -> None:
        self.events.append(("complete", outcome))

    def on_error(self, error: BaseException) -> None:
        self.events.append(("error", error))

    @property
    def chunks(self) -> list[Any]:
        return [payload for kind, payload in self.events if kind == "chunk"]

    @property
    def terminal(self) -> list[tuple[str, Any]]:
        return [e for e in self.events if e[0] in {"complete", "error"}]

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(self.on_chunk, self.on_complete, self.on_error)
