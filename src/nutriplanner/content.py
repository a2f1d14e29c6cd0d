"""Translate stored turns into the role-tagged content blocks the backend expects."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
from typing import TYPE_CHECKING, Any

from nutriplanner.turns import (
    FunctionCallPayload,
    FunctionResponsePayload,
    ImagePayload,
    TextPayload,
    payload_to_dict,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from nutriplanner.turns import NewTurn, Payload, Turn


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    FUNCTION = "function"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class TextPart:
    text: str

    def to_wire(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass(frozen=True, slots=True)
class InlineDataPart:
    mime_type: str
    data: str  # base64

    def to_wire(self) -> dict[str, Any]:
        return {"inlineData": {"mimeType": self.mime_type, "data": self.data}}


@dataclass(frozen=True, slots=True)
class FunctionCallPart:
    name: str
    args: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        return {"functionCall": {"name": self.name, "args": self.args}}


@dataclass(frozen=True, slots=True)
class FunctionResponsePart:
    name: str
    response: Any

    def to_wire(self) -> dict[str, Any]:
        return {"functionResponse": {"name": self.name, "response": self.response}}


Part = TextPart | InlineDataPart | FunctionCallPart | FunctionResponsePart


@dataclass(frozen=True, slots=True)
class ContentBlock:
    """Transport-level unit: a role and its ordered parts.

    Blocks derived from turns always hold exactly one part. The only block
    allowed to be empty is a new user turn built with neither text nor data.
    """

    role: Role
    parts: tuple[Part, ...]

    def to_wire(self) -> dict[str, Any]:
        return {"role": self.role.value, "parts": [p.to_wire() for p in self.parts]}


def payload_to_part(payload: Payload) -> Part:
    """Translate one payload into its single part.

    Precedence: inline binary, function call, function response, plain text,
    then the payload serialized as JSON text.
    """
    if isinstance(payload, ImagePayload) and payload.data:
        return InlineDataPart(mime_type=payload.mime_type, data=payload.data)
    if isinstance(payload, FunctionCallPayload):
        return FunctionCallPart(name=payload.name, args=dict(payload.args))
    if isinstance(payload, FunctionResponsePayload):
        return FunctionResponsePart(name=payload.name, response=payload.response)
    if isinstance(payload, TextPayload):
        return TextPart(payload.text)
    return TextPart(json.dumps(payload_to_dict(payload), ensure_ascii=False))


def role_for(turn: Turn) -> Role:
    """``user`` when the turn came from the user, ``model`` otherwise."""
    return Role.USER if turn.is_user else Role.MODEL


def to_content_blocks(turns: Iterable[Turn]) -> list[ContentBlock]:
    """Map each turn to exactly one block, preserving order."""
    return [ContentBlock(role=role_for(t), parts=(payload_to_part(t.content),)) for t in turns]


def new_turn_block(new_turn: NewTurn) -> ContentBlock:
    parts: list[Part] = []
    if new_turn.text:
        parts.append(TextPart(new_turn.text))
    if new_turn.inline_data is not None:
        parts.append(
            InlineDataPart(
                mime_type=new_turn.inline_data.mime_type,
                data=new_turn.inline_data.data,
            )
        )
    return ContentBlock(role=Role.USER, parts=tuple(parts))


def append_new_user_turn(
    blocks: Sequence[ContentBlock], new_turn: NewTurn
) -> list[ContentBlock]:
    """Return *blocks* followed by one ``user`` block built from *new_turn*.

    Text and inline data may both be present. An empty new turn yields a
    block with no parts; the backend then replies with nothing usable.
    """
    return [*blocks, new_turn_block(new_turn)]
