"""Conversation turns and their closed set of payload types.

Persisted records are narrowed into one of the payload dataclasses exactly
once, in ``payload_from_record``. Code downstream dispatches on the payload
class and never inspects raw dictionaries again.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
import json
from typing import TYPE_CHECKING, Any, Literal
import uuid

if TYPE_CHECKING:
    from collections.abc import Mapping


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class TextPayload:
    text: str
    kind: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True, slots=True)
class JsonPayload:
    data: Any
    kind: Literal["json"] = field(default="json", init=False)


@dataclass(frozen=True, slots=True)
class ImagePayload:
    """An image reference, optionally carrying base64 data inline."""

    uri: str
    mime_type: str
    data: str | None = None
    description: str | None = None
    kind: Literal["image"] = field(default="image", init=False)


@dataclass(frozen=True, slots=True)
class FunctionCallPayload:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    kind: Literal["function_call"] = field(default="function_call", init=False)


@dataclass(frozen=True, slots=True)
class FunctionResponsePayload:
    name: str
    response: Any = None
    kind: Literal["function_response"] = field(default="function_response", init=False)


@dataclass(frozen=True, slots=True)
class MenuSuggestionPayload:
    menu: dict[str, Any]
    description: str = ""
    recipes: tuple[dict[str, Any], ...] = ()
    kind: Literal["menu_suggestion"] = field(default="menu_suggestion", init=False)


@dataclass(frozen=True, slots=True)
class RecipePayload:
    recipe: dict[str, Any]
    kind: Literal["recipe"] = field(default="recipe", init=False)


@dataclass(frozen=True, slots=True)
class ShoppingListPayload:
    items: tuple[dict[str, Any], ...] = ()
    list_id: str | None = None
    kind: Literal["shopping_list"] = field(default="shopping_list", init=False)


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    message: str
    kind: Literal["error"] = field(default="error", init=False)


Payload = (
    TextPayload
    | JsonPayload
    | ImagePayload
    | FunctionCallPayload
    | FunctionResponsePayload
    | MenuSuggestionPayload
    | RecipePayload
    | ShoppingListPayload
    | ErrorPayload
)


def payload_to_dict(payload: Payload) -> dict[str, Any]:
    """Serialize a payload to plain JSON-compatible data, tagged by ``kind``."""
    if isinstance(payload, TextPayload):
        return {"kind": payload.kind, "text": payload.text}
    if isinstance(payload, JsonPayload):
        return {"kind": payload.kind, "data": payload.data}
    if isinstance(payload, ImagePayload):
        out: dict[str, Any] = {
            "kind": payload.kind,
            "uri": payload.uri,
            "mime_type": payload.mime_type,
        }
        if payload.description is not None:
            out["description"] = payload.description
        return out
    if isinstance(payload, FunctionCallPayload):
        return {"kind": payload.kind, "name": payload.name, "args": payload.args}
    if isinstance(payload, FunctionResponsePayload):
        return {"kind": payload.kind, "name": payload.name, "response": payload.response}
    if isinstance(payload, MenuSuggestionPayload):
        return {
            "kind": payload.kind,
            "menu": payload.menu,
            "description": payload.description,
            "recipes": list(payload.recipes),
        }
    if isinstance(payload, RecipePayload):
        return {"kind": payload.kind, "recipe": payload.recipe}
    if isinstance(payload, ShoppingListPayload):
        return {"kind": payload.kind, "list_id": payload.list_id, "items": list(payload.items)}
    return {"kind": payload.kind, "message": payload.message}


# Persisted type tags (and their historical aliases) mapped to payload kinds.
_RECORD_KIND_ALIASES: dict[str, str] = {
    "text": "text",
    "json": "json",
    "image": "image",
    "function_call": "function_call",
    "tool_use": "function_call",
    "function_response": "function_response",
    "tool_response": "function_response",
    "menu_suggestion": "menu_suggestion",
    "recipe": "recipe",
    "recipe_suggestion": "recipe",
    "shopping_list": "shopping_list",
    "shopping_list_suggestion": "shopping_list",
    "error": "error",
}


def payload_from_record(content: Any, type_tag: str | None = None) -> Payload:
    """Narrow a persisted ``content`` value into a payload.

    ``content`` may be a bare string (plain text), or a mapping optionally
    carrying its own ``type``. Unknown tags keep the data as ``JsonPayload``.
    """
    if isinstance(content, str) and type_tag in (None, "text"):
        return TextPayload(content)

    tag = type_tag
    if isinstance(content, dict) and isinstance(content.get("type"), str):
        tag = content["type"]
    kind = _RECORD_KIND_ALIASES.get(tag or "", "json")

    if not isinstance(content, dict):
        if kind == "error":
            return ErrorPayload(str(content))
        if kind == "text":
            return TextPayload(str(content))
        return JsonPayload(content)

    if kind == "text":
        return TextPayload(str(content.get("message", content.get("text", ""))))
    if kind == "image" and isinstance(content.get("uri"), str):
        return ImagePayload(
            uri=content["uri"],
            mime_type=str(content.get("mimeType") or content.get("mime_type") or ""),
            data=content.get("data"),
            description=content.get("description"),
        )
    if kind == "function_call":
        call = content.get("value", content)
        if isinstance(call, dict) and isinstance(call.get("name"), str):
            return FunctionCallPayload(call["name"], dict(call.get("args") or {}))
    if kind == "function_response":
        resp = content.get("functionResponse", content)
        if isinstance(resp, dict) and isinstance(resp.get("name"), str):
            return FunctionResponsePayload(resp["name"], resp.get("response"))
    if kind == "menu_suggestion" and isinstance(content.get("menu"), dict):
        return MenuSuggestionPayload(
            menu=content["menu"],
            description=str(content.get("description", "")),
            recipes=tuple(content.get("recipes") or ()),
        )
    if kind == "recipe":
        return RecipePayload(content.get("recipe", content))
    if kind == "shopping_list":
        return ShoppingListPayload(
            items=tuple(content.get("items") or ()),
            list_id=content.get("listId", content.get("list_id")),
        )
    if kind == "error":
        return ErrorPayload(str(content.get("message", json.dumps(content))))
    return JsonPayload(content.get("data", content) if kind == "json" else content)


@dataclass(frozen=True, slots=True)
class Turn:
    """One stored exchange unit in a conversation.

    ``content`` is fixed at creation; only timestamps may change afterwards.
    """

    is_user: bool
    content: Payload
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    conversation_id: str | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime | None = None

    @classmethod
    def user(cls, text: str, **kwargs: Any) -> Turn:
        return cls(is_user=True, content=TextPayload(text), **kwargs)

    @classmethod
    def model(cls, text: str, **kwargs: Any) -> Turn:
        return cls(is_user=False, content=TextPayload(text), **kwargs)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Turn:
        """Build a Turn from a persisted interaction record."""
        kwargs: dict[str, Any] = {}
        if isinstance(record.get("id"), str):
            kwargs["id"] = record["id"]
        conversation_id = record.get("conversationId", record.get("conversation_id"))
        if isinstance(conversation_id, str):
            kwargs["conversation_id"] = conversation_id
        created = record.get("dateCreation", record.get("timestamp"))
        if isinstance(created, str):
            kwargs["created_at"] = datetime.fromisoformat(created)
        updated = record.get("dateMiseAJour", record.get("updated_at"))
        if isinstance(updated, str):
            kwargs["updated_at"] = datetime.fromisoformat(updated)
        return cls(
            is_user=bool(record.get("isUser", record.get("is_user", False))),
            content=payload_from_record(record.get("content"), record.get("type")),
            **kwargs,
        )

    def touched(self, at: datetime | None = None) -> Turn:
        """Return a copy with ``updated_at`` refreshed; content is untouched."""
        return replace(self, updated_at=at or _now())


@dataclass(frozen=True, slots=True)
class InlineData:
    """Binary attachment sent inline as base64."""

    mime_type: str
    data: str


@dataclass(frozen=True, slots=True)
class NewTurn:
    """The user's new input: text, an inline attachment, or both."""

    text: str | None = None
    inline_data: InlineData | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text and self.inline_data is None

