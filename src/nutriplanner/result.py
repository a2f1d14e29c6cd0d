"""Interpretation of backend replies into a single normalized outcome."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any

from nutriplanner.errors import BlockedError, MalformedStructuredResponseError


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class StructuredData:
    data: Any


@dataclass(frozen=True)
class FunctionCallRequested:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Blocked:
    reason: str
    detail: str = ""


@dataclass(frozen=True)
class Empty:
    pass


Outcome = PlainText | StructuredData | FunctionCallRequested | Blocked | Empty


def format_safety_ratings(ratings: Any) -> str:
    """Join ``[{"category": C, "probability": P}, ...]`` as ``"C: P, ..."``."""
    if not isinstance(ratings, list):
        return ""
    joined = []
    for rating in ratings:
        if isinstance(rating, dict) and "category" in rating:
            joined.append(f"{rating['category']}: {rating.get('probability', '')}")
    return ", ".join(joined)


def block_signal(raw: dict[str, Any]) -> Blocked | None:
    """Return the prompt-level safety block carried by *raw*, if any."""
    feedback = raw.get("promptFeedback")
    if not isinstance(feedback, dict):
        return None
    reason = feedback.get("blockReason")
    if not reason:
        return None
    return Blocked(str(reason), format_safety_ratings(feedback.get("safetyRatings")))


def first_part(raw: dict[str, Any]) -> dict[str, Any] | None:
    """Return the first part of the first candidate, if present."""
    candidates = raw.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    candidate = candidates[0]
    if not isinstance(candidate, dict):
        return None
    content = candidate.get("content")
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return None
    return parts[0]


def function_call_of(part: dict[str, Any]) -> FunctionCallRequested | None:
    call = part.get("functionCall")
    if not isinstance(call, dict) or not isinstance(call.get("name"), str):
        return None
    args = call.get("args")
    return FunctionCallRequested(call["name"], dict(args) if isinstance(args, dict) else {})


def parse_structured(text: str) -> StructuredData:
    """Parse JSON reply text; failure is a hard error, never a fallback to text."""
    try:
        return StructuredData(json.loads(text))
    except json.JSONDecodeError as e:
        raise MalformedStructuredResponseError(
            f"Expected JSON reply but could not parse it: {e.msg}",
            raw_text=text,
            hint="The reply was requested as application/json; it is surfaced as-is.",
        ) from e


def interpret(raw: dict[str, Any], *, expects_json: bool = False) -> Outcome:
    """Reduce one whole JSON reply to an outcome.

    Decision order:
    1. ``promptFeedback.blockReason`` present -> ``Blocked``, even with candidates.
    2. No candidates -> ``Empty``.
    3. First part has text and JSON was requested -> ``StructuredData``
       (``MalformedStructuredResponseError`` when unparsable).
    4. First part has text -> ``PlainText``.
    5. First part has a function call -> ``FunctionCallRequested``.
    6. Otherwise -> ``Empty``.
    """
    blocked = block_signal(raw)
    if blocked is not None:
        return blocked

    part = first_part(raw)
    if part is None:
        return Empty()

    text = part.get("text")
    if isinstance(text, str):
        if expects_json:
            return parse_structured(text)
        return PlainText(text)

    call = function_call_of(part)
    if call is not None:
        return call
    return Empty()


def raise_for_blocked(outcome: Outcome) -> Outcome:
    """Raise ``BlockedError`` for a ``Blocked`` outcome; pass others through."""
    if isinstance(outcome, Blocked):
        raise BlockedError(outcome.reason, outcome.detail)
    return outcome
