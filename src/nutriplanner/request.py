"""Request composition: history plus a new turn into one outbound envelope."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import TYPE_CHECKING, Any

from nutriplanner.content import (
    ContentBlock,
    Role,
    TextPart,
    append_new_user_turn,
    to_content_blocks,
)
from nutriplanner.options import (
    DEFAULT_GENERATION,
    DEFAULT_SAFETY,
    GenerateOptions,
    GenerationParameters,
    SafetySetting,
    ToolDeclaration,
    ToolMode,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from nutriplanner.turns import NewTurn, Turn


@dataclass(frozen=True)
class RequestEnvelope:
    """Everything sent in one backend call.

    Immutable and deterministic for identical inputs, so the same envelope
    is safe to resend verbatim on retry.
    """

    contents: tuple[ContentBlock, ...]
    generation: GenerationParameters
    safety_settings: tuple[SafetySetting, ...]
    system_instruction: ContentBlock | None = None
    tools: tuple[ToolDeclaration, ...] | None = None
    tool_mode: ToolMode | None = None
    allowed_tool_names: tuple[str, ...] | None = None

    @property
    def expects_json(self) -> bool:
        return self.generation.expects_json

    def to_payload(self) -> dict[str, Any]:
        """Return the REST request body."""
        body: dict[str, Any] = {
            "contents": [block.to_wire() for block in self.contents],
            "generationConfig": self.generation.to_wire(),
            "safetySettings": [s.to_wire() for s in self.safety_settings],
        }
        if self.system_instruction is not None:
            body["systemInstruction"] = self.system_instruction.to_wire()
        if self.tools:
            body["tools"] = [
                {"functionDeclarations": [tool.to_wire() for tool in self.tools]}
            ]
        if self.tool_mode is not None:
            calling: dict[str, Any] = {"mode": self.tool_mode.value}
            if self.tool_mode is ToolMode.FORCED and self.allowed_tool_names:
                calling["allowedFunctionNames"] = list(self.allowed_tool_names)
            body["toolConfig"] = {"functionCallingConfig": calling}
        return body

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False, separators=(",", ":"))


def compose(
    history: Sequence[Turn],
    new_turn: NewTurn | None,
    options: GenerateOptions | None = None,
    *,
    tool_exchange: Sequence[ContentBlock] = (),
) -> RequestEnvelope:
    """Build the envelope for one call.

    Args:
        history: Prior turns, oldest first. Never mutated.
        new_turn: The user's new input, or *None* to send history only.
        options: Per-call overrides.
        tool_exchange: Blocks placed after the new user turn as given; used
            to carry a function call and its result back to the model.

    Returns:
        A ready-to-send ``RequestEnvelope``.
    """
    options = options or GenerateOptions()

    blocks = to_content_blocks(history)
    if new_turn is not None:
        blocks = append_new_user_turn(blocks, new_turn)
    blocks.extend(tool_exchange)

    generation = (
        options.generation.merged_over(DEFAULT_GENERATION)
        if options.generation is not None
        else DEFAULT_GENERATION
    )
    safety = (
        options.safety_settings if options.safety_settings is not None else DEFAULT_SAFETY
    )

    system_block = None
    if options.system_instruction is not None:
        system_block = ContentBlock(
            role=Role.SYSTEM, parts=(TextPart(options.system_instruction),)
        )

    return RequestEnvelope(
        contents=tuple(blocks),
        generation=generation,
        safety_settings=tuple(safety),
        system_instruction=system_block,
        tools=options.tools,
        tool_mode=options.tool_mode,
        allowed_tool_names=options.allowed_tool_names,
    )
