"""Tool-call round trip: model asks, caller executes, model answers.

At most one round trip happens per orchestrated call. The resend disables
tool use, and a second function call on it is a hard error.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from enum import Enum
import logging
from typing import Any, Protocol

from pydantic import BaseModel

from nutriplanner.content import ContentBlock, FunctionCallPart, FunctionResponsePart, Role
from nutriplanner.errors import ConfigurationError, ToolLoopDetectedError, UnknownToolError
from nutriplanner.options import GenerateOptions, ToolDeclaration, ToolMode
from nutriplanner.result import FunctionCallRequested, Outcome
from nutriplanner.turns import NewTurn, Turn

logger = logging.getLogger(__name__)

ToolFunction = Callable[[dict[str, Any]], Awaitable[Any]]
ToolExecutor = Mapping[str, ToolFunction]


class GenerateFn(Protocol):
    """Whole-response generation, as exposed by ``ConversationClient.generate``."""

    def __call__(
        self,
        history: Sequence[Turn],
        new_turn: NewTurn | None,
        options: GenerateOptions | None = None,
        *,
        tool_exchange: Sequence[ContentBlock] = (),
    ) -> Awaitable[Outcome]: ...


def _jsonable(value: Any) -> Any:
    """Dump pydantic results so the function response serializes as JSON."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class ToolPhase(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL_REPLY = "awaiting_model_reply"
    EXECUTING = "executing"
    DONE = "done"


async def run_with_tools(
    generate: GenerateFn,
    history: Sequence[Turn],
    new_turn: NewTurn | None,
    executors: ToolExecutor,
    options: GenerateOptions,
    *,
    logger: logging.Logger = logger,
) -> Outcome:
    """Generate, running at most one requested tool before the final answer.

    Args:
        generate: Whole-response call, usually ``ConversationClient.generate``.
        history: Prior turns; never mutated.
        new_turn: The user's new input.
        executors: Tool name to async callable taking the call's args dict.
        options: Must declare the tools the model may call.

    Returns:
        The first reply when it is not a function call, otherwise the reply
        to the resend carrying the tool result.

    Raises:
        ConfigurationError: *options* declares no tools.
        UnknownToolError: The model asked for a name with no executor.
        ToolLoopDetectedError: The resend asked for another function call.
    """

    def enter(phase: ToolPhase, detail: str = "") -> None:
        logger.debug("tool round trip -> %s%s", phase.value, f" ({detail})" if detail else "")

    if not options.tools:
        raise ConfigurationError(
            "run_with_tools needs at least one declared tool",
            hint="Pass GenerateOptions(tools=(ToolDeclaration(...),)).",
        )

    enter(ToolPhase.IDLE)
    enter(ToolPhase.AWAITING_MODEL_REPLY)
    first = await generate(history, new_turn, options)
    if not isinstance(first, FunctionCallRequested):
        enter(ToolPhase.DONE, "no tool requested")
        return first

    executor = executors.get(first.name)
    if executor is None:
        raise UnknownToolError(first.name, known=tuple(executors))

    enter(ToolPhase.EXECUTING, first.name)
    result = _jsonable(await executor(dict(first.args)))

    call_block = ContentBlock(
        role=Role.MODEL, parts=(FunctionCallPart(name=first.name, args=dict(first.args)),)
    )
    response_block = ContentBlock(
        role=Role.FUNCTION,
        parts=(
            FunctionResponsePart(
                name=first.name, response={"name": first.name, "content": result}
            ),
        ),
    )

    enter(ToolPhase.AWAITING_MODEL_REPLY, "resend with tools disabled")
    final = await generate(
        history,
        new_turn,
        options.with_tool_mode(ToolMode.DISABLED),
        tool_exchange=(call_block, response_block),
    )
    if isinstance(final, FunctionCallRequested):
        raise ToolLoopDetectedError(final.name)
    enter(ToolPhase.DONE)
    return final


# -- store lookup -----------------------------------------------------------

FIND_STORES_WITH_INGREDIENT = "findStoresWithIngredient"


class StoreLookupArgs(BaseModel):
    """Arguments of the store-lookup tool."""

    ingredient: str
    latitude: float
    longitude: float


FIND_STORES_TOOL = ToolDeclaration(
    name=FIND_STORES_WITH_INGREDIENT,
    description="Find nearby stores that stock the given ingredient.",
    parameters={
        "type": "object",
        "properties": {
            "ingredient": {"type": "string", "description": "Ingredient name."},
            "latitude": {"type": "number"},
            "longitude": {"type": "number"},
        },
        "required": ["ingredient", "latitude", "longitude"],
    },
)


class StoreLocator(Protocol):
    """Location collaborator answering ingredient availability lookups."""

    async def find_stores(
        self, ingredient: str, latitude: float, longitude: float
    ) -> Any: ...


def store_lookup_executor(locator: StoreLocator) -> ToolExecutor:
    """Expose *locator* as the executor mapping for the store-lookup tool."""

    async def find_stores_with_ingredient(args: dict[str, Any]) -> Any:
        parsed = StoreLookupArgs.model_validate(args)
        return await locator.find_stores(
            parsed.ingredient, parsed.latitude, parsed.longitude
        )

    return {FIND_STORES_WITH_INGREDIENT: find_stores_with_ingredient}
