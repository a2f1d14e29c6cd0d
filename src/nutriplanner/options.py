"""Per-call options: generation parameters, safety, and tool declarations."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any

from pydantic import BaseModel

from nutriplanner.errors import ConfigurationError

JSON_MIME_TYPE = "application/json"

ResponseSchemaInput = type[BaseModel] | dict[str, Any]

# Wire names for GenerationParameters fields (REST uses camelCase).
_WIRE_NAMES: dict[str, str] = {
    "temperature": "temperature",
    "top_p": "topP",
    "top_k": "topK",
    "candidate_count": "candidateCount",
    "max_output_tokens": "maxOutputTokens",
    "stop_sequences": "stopSequences",
    "response_mime_type": "responseMimeType",
    "response_schema": "responseSchema",
}


def _schema_json(schema: ResponseSchemaInput) -> dict[str, Any]:
    if isinstance(schema, dict):
        return schema
    return schema.model_json_schema()


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling and limit configuration.

    ``None`` means "not set"; merging keeps the other side's value.
    """

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    candidate_count: int | None = None
    max_output_tokens: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    response_mime_type: str | None = None
    #: Pydantic ``BaseModel`` subclass or JSON Schema dict; implies JSON output.
    response_schema: ResponseSchemaInput | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if self.max_output_tokens is not None and (
            not isinstance(self.max_output_tokens, int) or self.max_output_tokens <= 0
        ):
            raise ConfigurationError(
                "max_output_tokens must be a positive integer",
                hint="Pass max_output_tokens=1000 or similar.",
            )
        if self.candidate_count is not None and self.candidate_count < 1:
            raise ConfigurationError("candidate_count must be >= 1")
        if self.response_schema is not None and not (
            isinstance(self.response_schema, dict)
            or (
                isinstance(self.response_schema, type)
                and issubclass(self.response_schema, BaseModel)
            )
        ):
            raise ConfigurationError(
                "response_schema must be a Pydantic model class or JSON schema dict",
                hint="Pass a BaseModel subclass or a dict following JSON Schema.",
            )
        if isinstance(self.stop_sequences, list):
            object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))

    def merged_over(self, defaults: GenerationParameters) -> GenerationParameters:
        """Return *defaults* with every field set here overriding it."""
        overrides = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }
        return replace(defaults, **overrides)

    @property
    def expects_json(self) -> bool:
        return self.response_mime_type == JSON_MIME_TYPE or self.response_schema is not None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name == "stop_sequences":
                value = list(value)
            elif f.name == "response_schema":
                value = _schema_json(value)
            out[_WIRE_NAMES[f.name]] = value
        if self.response_schema is not None and "responseMimeType" not in out:
            out["responseMimeType"] = JSON_MIME_TYPE
        return out


DEFAULT_GENERATION = GenerationParameters(temperature=0.7, max_output_tokens=1000)


class HarmCategory(str, Enum):
    HARASSMENT = "HARM_CATEGORY_HARASSMENT"
    HATE_SPEECH = "HARM_CATEGORY_HATE_SPEECH"
    SEXUALLY_EXPLICIT = "HARM_CATEGORY_SEXUALLY_EXPLICIT"
    DANGEROUS_CONTENT = "HARM_CATEGORY_DANGEROUS_CONTENT"


class HarmBlockThreshold(str, Enum):
    BLOCK_NONE = "BLOCK_NONE"
    BLOCK_ONLY_HIGH = "BLOCK_ONLY_HIGH"
    BLOCK_MEDIUM_AND_ABOVE = "BLOCK_MEDIUM_AND_ABOVE"
    BLOCK_LOW_AND_ABOVE = "BLOCK_LOW_AND_ABOVE"


@dataclass(frozen=True)
class SafetySetting:
    category: HarmCategory | str
    threshold: HarmBlockThreshold | str

    def to_wire(self) -> dict[str, str]:
        category = self.category.value if isinstance(self.category, Enum) else self.category
        threshold = (
            self.threshold.value if isinstance(self.threshold, Enum) else self.threshold
        )
        return {"category": category, "threshold": threshold}


DEFAULT_SAFETY: tuple[SafetySetting, ...] = (
    SafetySetting(HarmCategory.HATE_SPEECH, HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE),
    SafetySetting(HarmCategory.DANGEROUS_CONTENT, HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE),
)


@dataclass(frozen=True)
class ToolDeclaration:
    """A function the model may ask the caller to run."""

    name: str
    description: str
    #: JSON Schema dict or Pydantic model describing the arguments.
    parameters: ResponseSchemaInput | None = None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "description": self.description}
        if self.parameters is not None:
            out["parameters"] = _schema_json(self.parameters)
        return out


class ToolMode(str, Enum):
    """How the backend may use declared tools."""

    DISABLED = "NONE"
    AUTOMATIC = "AUTO"
    #: Restricted to ``GenerateOptions.allowed_tool_names``.
    FORCED = "ANY"


@dataclass(frozen=True)
class GenerateOptions:
    """Optional features for ``generate()``, ``stream()`` and ``run_with_tools()``."""

    #: Merged field-by-field over the defaults (temperature 0.7, 1000 tokens).
    generation: GenerationParameters | None = None
    #: Replaces the defaults entirely when given; never merged.
    safety_settings: tuple[SafetySetting, ...] | None = None
    system_instruction: str | None = None
    tools: tuple[ToolDeclaration, ...] | None = None
    tool_mode: ToolMode | None = None
    allowed_tool_names: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if self.system_instruction is not None and not isinstance(
            self.system_instruction, str
        ):
            raise ConfigurationError(
                "system_instruction must be a string",
                hint="Pass system_instruction='You are a concise assistant.'",
            )
        for name in ("safety_settings", "tools", "allowed_tool_names"):
            value = getattr(self, name)
            if isinstance(value, list):
                object.__setattr__(self, name, tuple(value))
        if self.allowed_tool_names and self.tool_mode is not ToolMode.FORCED:
            raise ConfigurationError(
                "allowed_tool_names requires tool_mode=ToolMode.FORCED",
                hint="Use ToolMode.FORCED to restrict the model to named tools.",
            )
        if self.tool_mode is not None and not self.tools:
            raise ConfigurationError(
                "tool_mode was set but no tools were declared",
                hint="Pass tools=(ToolDeclaration(...),) alongside tool_mode.",
            )

    def with_tool_mode(self, mode: ToolMode) -> GenerateOptions:
        return replace(self, tool_mode=mode, allowed_tool_names=None)
