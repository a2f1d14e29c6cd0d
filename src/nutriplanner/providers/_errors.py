"""Map HTTP failures onto APIError subclasses with stable retry metadata."""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from nutriplanner.config import API_KEY_ENV_VAR
from nutriplanner.errors import (
    APIError,
    RateLimitError,
    TransportError,
    _walk_exception_chain,
)

_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _retry_info_seconds(body: Any) -> float | None:
    """Extract the delay from a Google API-style ``RetryInfo`` error detail.

    Error bodies look like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}

    ``retryDelay`` is a protobuf Duration string (``"8s"``, ``"8.35s"``).
    """
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if not isinstance(error, dict):
        return None
    details = error.get("details")
    if not isinstance(details, list):
        return None
    for entry in details:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def _retry_after_header(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if not raw or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(body: Any) -> str:
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message")
        if isinstance(message, str) and message:
            return message
    return ""


def _auth_hint(status_code: int | None, cause_message: str) -> str | None:
    """Hint for auth failures; the backend answers 400 for a bad key."""
    cause_lower = cause_message.lower()
    if status_code in {401, 403} or (
        status_code == 400 and ("api key" in cause_lower or "api_key" in cause_lower)
    ):
        return f"Check credentials/permissions (try setting {API_KEY_ENV_VAR} or Config.api_key)."
    return None


def error_from_response(response: httpx.Response, *, phase: str) -> TransportError:
    """Build a TransportError for a non-2xx response.

    The body must already be read (``await response.aread()`` for streams).
    """
    return error_from_body(
        _error_body(response),
        phase=phase,
        status_code=response.status_code,
        retry_after_s=_retry_after_header(response),
        reason=response.reason_phrase or "",
    )


def error_from_body(
    body: Any,
    *,
    phase: str,
    status_code: int | None = None,
    retry_after_s: float | None = None,
    reason: str = "",
) -> TransportError:
    """Build a TransportError from a ``{"error": {...}}`` body.

    Also used for error objects that arrive inside a stream after the
    response status was already 200; there ``error.code`` supplies the status.
    """
    status = status_code
    if status is None and isinstance(body, dict) and isinstance(body.get("error"), dict):
        code = body["error"].get("code")
        if isinstance(code, int) and not isinstance(code, bool):
            status = code
    cause = _error_message(body) or reason
    if retry_after_s is None:
        retry_after_s = _retry_info_seconds(body)

    err_cls: type[TransportError] = RateLimitError if status == 429 else TransportError
    message = f"Gemini {phase} failed (status={status})"
    return err_cls(
        f"{message}: {cause}" if cause else message,
        hint=_auth_hint(status, cause),
        retryable=True,
        status_code=status,
        retry_after_s=retry_after_s,
        phase=phase,
    )


def wrap_transport_error(exc: BaseException, *, phase: str) -> APIError:
    """Map an httpx (or other) exception into an APIError.

    Already-wrapped errors only get missing context filled in.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        if exc.phase is None:
            exc.phase = phase
        return exc

    for e in _walk_exception_chain(exc):
        if isinstance(e, httpx.HTTPStatusError):
            return error_from_response(e.response, phase=phase)

    retryable = any(
        isinstance(e, (httpx.TransportError, TimeoutError))
        for e in _walk_exception_chain(exc)
    )
    cause = str(exc) or type(exc).__name__
    return TransportError(
        f"Gemini {phase} failed: {cause}",
        retryable=retryable,
        phase=phase,
    )
