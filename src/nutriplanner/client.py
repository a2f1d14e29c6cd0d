"""Public conversation client: compose, send with retry, interpret."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING, Any

from nutriplanner.connectivity import (
    ConnectivityMonitor,
    ConnectivityProbe,
    StaticConnectivity,
    http_reachability_check,
)
from nutriplanner.providers.gemini import GeminiBackend
from nutriplanner.request import compose
from nutriplanner.result import Empty, interpret
from nutriplanner.retry import retry_async
from nutriplanner.streaming import StreamDecoder
from nutriplanner.tools import run_with_tools

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from types import TracebackType

    from nutriplanner.config import Config
    from nutriplanner.content import ContentBlock
    from nutriplanner.options import GenerateOptions
    from nutriplanner.providers.base import GenerativeBackend
    from nutriplanner.result import Outcome
    from nutriplanner.streaming import StreamCallbacks
    from nutriplanner.tools import ToolExecutor
    from nutriplanner.turns import NewTurn, Turn

logger = logging.getLogger(__name__)


def default_probe(config: Config, *, logger: logging.Logger = logger) -> ConnectivityProbe:
    """Build the connectivity probe *config* asks for."""
    if not config.check_connectivity:
        return StaticConnectivity(True, logger=logger)
    check = functools.partial(http_reachability_check, config.connectivity_urls)
    return ConnectivityMonitor(check, logger=logger)


class ConversationClient:
    """Send conversation turns to the generative backend.

    Every call is single-shot and self-contained: the envelope, retry
    counters and streaming buffers live only for that call, so concurrent
    calls on one client are safe.

    Example:
        async with ConversationClient(Config()) as client:
            outcome = await client.generate([], NewTurn(text="suggest a quick dinner"))
    """

    def __init__(
        self,
        config: Config,
        *,
        backend: GenerativeBackend | None = None,
        probe: ConnectivityProbe | None = None,
        logger: logging.Logger = logger,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._owns_backend = backend is None
        self._backend: GenerativeBackend = backend or GeminiBackend(config)
        self.probe = probe if probe is not None else default_probe(config, logger=logger)
        self._logger = logger
        self._sleep = sleep

    async def generate(
        self,
        history: Sequence[Turn],
        new_turn: NewTurn | None,
        options: GenerateOptions | None = None,
        *,
        tool_exchange: Sequence[ContentBlock] = (),
    ) -> Outcome:
        """Send one whole-response request and interpret the reply.

        An empty *new_turn* gives ``Empty`` without contacting the backend.
        ``Blocked`` comes back as an outcome; ``MalformedStructuredResponseError``
        and exhausted transport failures are raised.
        """
        if new_turn is not None and new_turn.is_empty and not tool_exchange:
            self._logger.debug("generate: empty new turn, nothing sent")
            return Empty()
        envelope = compose(history, new_turn, options, tool_exchange=tool_exchange)
        self._logger.debug(
            "generate: %d history turns, json=%s", len(history), envelope.expects_json
        )
        raw = await retry_async(
            lambda: self._backend.generate_content(envelope),
            policy=self.config.retry,
            probe=self.probe,
            sleep=self._sleep,
            logger=self._logger,
            phase="generate",
        )
        outcome = interpret(raw, expects_json=envelope.expects_json)
        self._logger.debug("generate -> %s", type(outcome).__name__)
        return outcome

    async def stream(
        self,
        history: Sequence[Turn],
        new_turn: NewTurn | None,
        callbacks: StreamCallbacks,
        options: GenerateOptions | None = None,
    ) -> None:
        """Stream one reply into *callbacks*.

        Only opening the stream is retried. Failures are reported through
        ``callbacks.on_error``; cancellation propagates with no further
        callback.
        """
        if new_turn is not None and new_turn.is_empty:
            self._logger.debug("stream: empty new turn, nothing sent")
            callbacks.on_complete(Empty())
            return
        envelope = compose(history, new_turn, options)
        try:
            source = await retry_async(
                lambda: self._backend.open_stream(envelope),
                policy=self.config.retry,
                probe=self.probe,
                sleep=self._sleep,
                logger=self._logger,
                phase="stream",
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.debug("stream could not be opened: %s", exc)
            callbacks.on_error(exc)
            return

        decoder = StreamDecoder(
            callbacks, expects_json=envelope.expects_json, logger=self._logger
        )
        outcome = await decoder.run(source)
        self._logger.debug(
            "stream -> %s", type(outcome).__name__ if outcome is not None else "error"
        )

    async def run_with_tools(
        self,
        history: Sequence[Turn],
        new_turn: NewTurn | None,
        executors: ToolExecutor,
        options: GenerateOptions,
    ) -> Outcome:
        """Generate with at most one tool round trip (see ``tools.run_with_tools``)."""
        return await run_with_tools(
            self.generate, history, new_turn, executors, options, logger=self._logger
        )

    async def aclose(self) -> None:
        if self._owns_backend:
            await self._backend.aclose()

    async def __aenter__(self) -> ConversationClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
