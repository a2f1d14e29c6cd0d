"""Incremental decoding of streamed replies.

The backend frames a streamed reply as a JSON array of whole response
objects (``[{...},\\r\\n{...}]``). Bytes arrive in arbitrary slices, so the
decoder reassembles UTF-8 text incrementally and cuts out each top-level
object before parsing it. A fragment that fails to parse is logged and
skipped; the stream keeps going. An ``{"error": ...}`` object ends it.
"""

from __future__ import annotations

import asyncio
import codecs
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from nutriplanner.errors import BlockedError, NutriPlannerError
from nutriplanner.providers._errors import error_from_body
from nutriplanner.result import (
    Empty,
    FunctionCallRequested,
    Outcome,
    PlainText,
    block_signal,
    function_call_of,
    parse_structured,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, Callable, Iterable

logger = logging.getLogger(__name__)


@runtime_checkable
class AsyncByteSource(Protocol):
    """Next-chunk-or-done capability over a byte stream."""

    async def next_chunk(self) -> bytes | None:
        """Return the next chunk, or *None* once the stream is exhausted."""
        ...

    async def aclose(self) -> None:
        """Release the underlying stream. Safe to call more than once."""
        ...


class IterableByteSource:
    """Byte source over an in-memory or async iterable of chunks."""

    def __init__(self, chunks: Iterable[bytes] | AsyncIterable[bytes]) -> None:
        if hasattr(chunks, "__aiter__"):
            self._aiter = chunks.__aiter__()  # type: ignore[union-attr]
            self._iter = None
        else:
            self._aiter = None
            self._iter = iter(chunks)  # type: ignore[arg-type]
        self.closed = False

    async def next_chunk(self) -> bytes | None:
        if self.closed:
            return None
        if self._iter is not None:
            return next(self._iter, None)
        try:
            return await self._aiter.__anext__()  # type: ignore[union-attr]
        except StopAsyncIteration:
            return None

    async def aclose(self) -> None:
        self.closed = True


class JsonObjectFramer:
    """Cut complete top-level JSON objects out of a character stream.

    Characters between objects (array brackets, commas, whitespace) are
    dropped. String literals and escapes are tracked so braces inside
    strings do not affect nesting.
    """

    def __init__(self) -> None:
        self._buf: list[str] = []
        self._depth = 0
        self._in_string = False
        self._escaped = False

    @property
    def pending(self) -> bool:
        """Whether an object is partially buffered."""
        return self._depth > 0

    def feed(self, text: str) -> list[str]:
        complete: list[str] = []
        for ch in text:
            if self._depth == 0:
                if ch == "{":
                    self._depth = 1
                    self._buf = [ch]
                continue

            self._buf.append(ch)
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch == "{":
                self._depth += 1
            elif ch == "}":
                self._depth -= 1
                if self._depth == 0:
                    complete.append("".join(self._buf))
                    self._buf = []
        return complete


@dataclass(frozen=True)
class StreamCallbacks:
    """Receivers for one stream.

    ``on_chunk`` gets each text delta (or the function-call outcome once).
    Exactly one of ``on_complete`` / ``on_error`` fires, at most once.
    """

    on_chunk: Callable[[str | FunctionCallRequested], None]
    on_complete: Callable[[Outcome], None]
    on_error: Callable[[BaseException], None]


class StreamDecoder:
    """Decode one streamed reply and drive its callbacks."""

    def __init__(
        self,
        callbacks: StreamCallbacks,
        *,
        expects_json: bool = False,
        logger: logging.Logger = logger,
    ) -> None:
        self._callbacks = callbacks
        self._expects_json = expects_json
        self._logger = logger
        self._text: list[str] = []
        self._terminal: Outcome | None = None
        self._error: BaseException | None = None
        self._stopped = False
        self._settled = False

    @property
    def text(self) -> str:
        """Text accumulated so far."""
        return "".join(self._text)

    async def run(self, source: AsyncByteSource) -> Outcome | None:
        """Consume *source* to the end or to a terminal fragment.

        Returns the final outcome, or *None* when the stream ended in error.
        Cancellation propagates without firing any callback.
        """
        utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        framer = JsonObjectFramer()
        fragment_count = 0
        try:
            while not self._stopped:
                chunk = await source.next_chunk()
                final = chunk is None
                for fragment in framer.feed(utf8.decode(chunk or b"", final=final)):
                    fragment_count += 1
                    self._handle(fragment, fragment_count)
                    if self._stopped:
                        break
                if final:
                    if framer.pending:
                        self._logger.warning(
                            "Stream ended inside an unterminated fragment; dropping it"
                        )
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error = exc
        finally:
            await source.aclose()

        return self.settle()

    def settle(self) -> Outcome | None:
        """Fire exactly one of ``on_complete`` / ``on_error``; later calls are no-ops."""
        if self._settled:
            return self._terminal
        self._settled = True

        if self._error is None and self._terminal is None:
            self._terminal = self._reduce_text()
        if self._error is not None:
            self._terminal = None
            self._callbacks.on_error(self._error)
            return None
        assert self._terminal is not None
        self._callbacks.on_complete(self._terminal)
        return self._terminal

    def _handle(self, fragment: str, index: int) -> None:
        try:
            raw = json.loads(fragment)
        except json.JSONDecodeError as e:
            self._logger.warning(
                "Skipping unparsable stream fragment #%d: %s", index, e.msg
            )
            return
        if not isinstance(raw, dict):
            self._logger.warning("Skipping non-object stream fragment #%d", index)
            return

        if isinstance(raw.get("error"), dict):
            self._error = error_from_body(raw, phase="stream")
            self._stopped = True
            return

        blocked = block_signal(raw)
        if blocked is not None:
            self._error = BlockedError(blocked.reason, blocked.detail)
            self._stopped = True
            return

        candidates = raw.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            return

        for part in parts:
            if not isinstance(part, dict):
                continue
            text = part.get("text")
            if isinstance(text, str):
                if text:
                    self._text.append(text)
                    self._callbacks.on_chunk(text)
                continue
            call = function_call_of(part)
            if call is not None:
                self._callbacks.on_chunk(call)
                self._terminal = call
                self._stopped = True
                return

    def _reduce_text(self) -> Outcome | None:
        text = self.text
        if not text:
            return Empty()
        if not self._expects_json:
            return PlainText(text)
        try:
            return parse_structured(text)
        except NutriPlannerError as exc:
            self._error = exc
            return None
