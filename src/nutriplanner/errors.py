"""Exception hierarchy for NutriPlanner."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class NutriPlannerError(Exception):
    """Base exception for all NutriPlanner errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(NutriPlannerError):
    """Configuration validation or resolution failed."""


class APIError(NutriPlannerError):
    """An outbound call to the backend failed.

    Carries retry metadata so the retry executor can decide without
    brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.phase = phase


class NoConnectivityError(APIError):
    """The pre-flight connectivity check reported the device offline."""

    def __init__(
        self,
        message: str = "No network connectivity",
        *,
        phase: str | None = None,
    ) -> None:
        super().__init__(
            message,
            hint="Check the network connection and try again.",
            retryable=True,
            phase=phase,
        )


class TransportError(APIError):
    """Non-2xx HTTP status or a transport-level exception."""


class RateLimitError(TransportError):
    """Rate limit exceeded (HTTP 429)."""


class ResponseError(NutriPlannerError):
    """A reply arrived but could not be turned into a usable result."""


class MalformedStructuredResponseError(ResponseError):
    """JSON output was requested but the reply text is not valid JSON.

    Never retried: resending the same envelope is not expected to help.
    """

    def __init__(self, message: str, *, raw_text: str, hint: str | None = None) -> None:
        super().__init__(message, hint=hint)
        self.raw_text = raw_text


class BlockedError(ResponseError):
    """The backend's safety filter blocked the prompt or the reply."""

    def __init__(self, reason: str, detail: str = "") -> None:
        message = f"Blocked by safety filter: {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(
            message,
            hint="Rephrase the request; safety blocks are never retried.",
        )
        self.reason = reason
        self.detail = detail


class ToolError(NutriPlannerError):
    """A tool round trip violated one of its invariants."""


class UnknownToolError(ToolError):
    """The model asked for a tool no executor was registered for."""

    def __init__(self, name: str, *, known: tuple[str, ...] = ()) -> None:
        hint = f"Registered tools: {', '.join(known)}" if known else None
        super().__init__(f"No executor registered for tool {name!r}", hint=hint)
        self.name = name


class ToolLoopDetectedError(ToolError):
    """The model requested a second tool call after a tool response."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Model requested tool {name!r} again after a tool response",
            hint="Only one tool round trip is allowed per call.",
        )
        self.name = name


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
