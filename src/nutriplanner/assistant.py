"""Meal-planning operations built on the conversation client.

Structured operations ask for ``application/json`` and validate the reply
with pydantic. A safety block raises ``BlockedError``; a reply of the wrong
shape raises ``ResponseError``.
"""

from __future__ import annotations

from collections.abc import Sequence
import json
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from nutriplanner.errors import ConfigurationError, ResponseError
from nutriplanner.options import (
    JSON_MIME_TYPE,
    GenerateOptions,
    GenerationParameters,
    ToolMode,
)
from nutriplanner.result import PlainText, StructuredData, raise_for_blocked
from nutriplanner.tools import FIND_STORES_TOOL, StoreLocator, store_lookup_executor
from nutriplanner.turns import NewTurn

if TYPE_CHECKING:
    from nutriplanner.client import ConversationClient
    from nutriplanner.result import Outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Shape(BaseModel):
    """Wire shapes use camelCase keys; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Ingredient(_Shape):
    name: str
    quantity: float | None = None
    unit: str | None = None


class FamilyMember(_Shape):
    name: str
    age: int | None = None
    dietary_preferences: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)


class Recipe(_Shape):
    name: str
    ingredients: list[Ingredient] = Field(default_factory=list)
    instructions: list[str] = Field(default_factory=list)
    servings: int | None = None
    prep_time_minutes: int | None = None


class Menu(_Shape):
    date: str | None = None
    meal_type: str | None = None
    description: str = ""
    recipes: list[Recipe] = Field(default_factory=list)


class ShoppingItem(_Shape):
    name: str
    quantity: float | None = None
    unit: str | None = None


class RecipeAnalysis(_Shape):
    calories: float
    spices: list[str] = Field(default_factory=list)
    salt_level: str = ""


class Nutrient(_Shape):
    name: str
    value: float
    unit: str = ""


class NutritionalInfo(_Shape):
    food: str
    calories: float
    nutrients: list[Nutrient] = Field(default_factory=list)


class Location(_Shape):
    latitude: float
    longitude: float


class StoreAvailability(_Shape):
    name: str
    distance: str | None = None
    in_stock: bool = False
    price: float | None = None
    address: str | None = None


class AvailabilityReport(_Shape):
    message: str
    stores: list[StoreAvailability] = Field(default_factory=list)


def _dump(value: BaseModel | Sequence[BaseModel]) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True, exclude_none=True)
    return json.dumps(
        [v.model_dump(mode="json", by_alias=True, exclude_none=True) for v in value],
        ensure_ascii=False,
    )


def _unwrap_list(data: Any) -> Any:
    """Accept ``{"menus": [...]}`` where a bare list was asked for."""
    if isinstance(data, dict) and len(data) == 1:
        (only,) = data.values()
        if isinstance(only, list):
            return only
    return data


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```") and stripped.endswith("```"):
        stripped = stripped[3:-3]
        if stripped.startswith("json"):
            stripped = stripped[4:]
    return stripped.strip()


_JSON_REPLY = GenerationParameters(response_mime_type=JSON_MIME_TYPE)

_CHEF = "You are a helpful household cooking assistant. Be concise and practical."
_NUTRITIONIST = "You are a nutrition expert. Use standard nutritional reference values."


class MealPlanningAssistant:
    """High-level meal-planning requests against a ``ConversationClient``."""

    def __init__(
        self,
        client: ConversationClient,
        *,
        locator: StoreLocator | None = None,
        logger: logging.Logger = logger,
    ) -> None:
        self._client = client
        self._locator = locator
        self._logger = logger

    # -- plumbing -----------------------------------------------------------

    async def _structured(
        self, prompt: str, adapter: TypeAdapter[T], *, system: str, as_list: bool = False
    ) -> T:
        outcome = raise_for_blocked(
            await self._client.generate(
                (),
                NewTurn(text=prompt),
                GenerateOptions(generation=_JSON_REPLY, system_instruction=system),
            )
        )
        if not isinstance(outcome, StructuredData):
            raise ResponseError(
                f"Expected a JSON reply, got {type(outcome).__name__}",
                hint="The model returned no usable content; try rephrasing the request.",
            )
        data = _unwrap_list(outcome.data) if as_list else outcome.data
        try:
            return adapter.validate_python(data)
        except ValidationError as e:
            raise ResponseError(
                f"Reply did not match the expected shape: {e.error_count()} error(s)",
                hint="The model ignored the requested JSON layout.",
            ) from e

    async def _text(self, prompt: str, *, system: str) -> str:
        outcome = raise_for_blocked(
            await self._client.generate(
                (), NewTurn(text=prompt), GenerateOptions(system_instruction=system)
            )
        )
        return _text_of(outcome)

    # -- operations ---------------------------------------------------------

    async def suggest_menus(
        self, ingredients: Sequence[Ingredient], family: Sequence[FamilyMember]
    ) -> list[Menu]:
        """Suggest menus using what is on hand and respecting every member's needs."""
        prompt = (
            "Suggest up to 3 menus for this family using the available ingredients. "
            "Respect every allergy and dietary preference.\n"
            f"Ingredients: {_dump(ingredients)}\n"
            f"Family: {_dump(family)}\n"
            "Reply with a JSON array of objects with keys "
            "date, mealType, description, recipes (name, ingredients, instructions, servings)."
        )
        menus = await self._structured(
            prompt, TypeAdapter(list[Menu]), system=_CHEF, as_list=True
        )
        self._logger.info("Suggested %d menus", len(menus))
        return menus

    async def generate_shopping_list(self, menu: Menu) -> list[ShoppingItem]:
        prompt = (
            "Build a consolidated shopping list for this menu, merging duplicate "
            f"ingredients.\nMenu: {_dump(menu)}\n"
            "Reply with a JSON array of objects with keys name, quantity, unit."
        )
        return await self._structured(
            prompt, TypeAdapter(list[ShoppingItem]), system=_CHEF, as_list=True
        )

    async def analyze_recipe(self, recipe: Recipe) -> RecipeAnalysis:
        prompt = (
            f"Analyze this recipe per serving.\nRecipe: {_dump(recipe)}\n"
            "Reply with a JSON object with keys calories (number), spices "
            "(array of strings) and saltLevel (low, medium or high)."
        )
        return await self._structured(
            prompt, TypeAdapter(RecipeAnalysis), system=_NUTRITIONIST
        )

    async def suggest_recipes(
        self, ingredients: Sequence[Ingredient], preferences: str | None = None
    ) -> list[Recipe]:
        prompt = (
            "Suggest 3 recipes based on these ingredients.\n"
            f"Ingredients: {_dump(ingredients)}\n"
            + (f"Preferences: {preferences}\n" if preferences else "")
            + "Reply with a JSON array of objects with keys name, ingredients "
            "(name, quantity, unit), instructions, servings, prepTimeMinutes."
        )
        return await self._structured(
            prompt, TypeAdapter(list[Recipe]), system=_CHEF, as_list=True
        )

    async def check_ingredient_availability(
        self, ingredient: str, location: Location
    ) -> AvailabilityReport:
        """Ask which nearby stores stock *ingredient*, via the store-lookup tool.

        The model is expected to call the tool once; the locator answers and
        the model summarizes. Function calling does not combine with a JSON
        reply type, so the summary is parsed leniently from text.
        """
        if self._locator is None:
            raise ConfigurationError(
                "check_ingredient_availability needs a store locator",
                hint="Pass MealPlanningAssistant(client, locator=...).",
            )
        prompt = (
            f'Check the availability of "{ingredient}" near latitude '
            f"{location.latitude}, longitude {location.longitude}. "
            "Use the findStoresWithIngredient tool. Reply with a JSON object with "
            "keys message and stores (name, distance, inStock, price, address), "
            "sorted by distance and availability."
        )
        options = GenerateOptions(
            system_instruction=_CHEF,
            tools=(FIND_STORES_TOOL,),
            tool_mode=ToolMode.AUTOMATIC,
        )
        outcome = raise_for_blocked(
            await self._client.run_with_tools(
                (), NewTurn(text=prompt), store_lookup_executor(self._locator), options
            )
        )
        if isinstance(outcome, StructuredData):
            data: Any = outcome.data
        else:
            text = _text_of(outcome)
            try:
                data = json.loads(_strip_fences(text))
            except json.JSONDecodeError:
                data = {"message": text}
        try:
            report = AvailabilityReport.model_validate(data)
        except ValidationError as e:
            raise ResponseError(
                "Availability reply did not match the expected shape",
                hint="The model ignored the requested JSON layout.",
            ) from e
        self._logger.info(
            "Availability of %r checked: %d stores", ingredient, len(report.stores)
        )
        return report

    async def get_nutritional_info(self, query: str) -> NutritionalInfo:
        prompt = (
            f'Give nutritional information for "{query}" (calories, protein, '
            "carbohydrates, fat, fiber). Reply with a JSON object with keys food, "
            "calories and nutrients (array of name, value, unit)."
        )
        return await self._structured(
            prompt, TypeAdapter(NutritionalInfo), system=_NUTRITIONIST
        )

    async def troubleshoot_problem(self, problem: str) -> str:
        prompt = (
            "A home cook has this kitchen problem. Explain the likely cause and "
            f"how to fix it in a few short steps.\nProblem: {problem}"
        )
        return await self._text(prompt, system=_CHEF)

    async def get_creative_ideas(self, context: str) -> list[str]:
        prompt = (
            f"Give 5 short creative cooking ideas for this context: {context}\n"
            "Reply with a JSON array of strings."
        )
        return await self._structured(
            prompt, TypeAdapter(list[str]), system=_CHEF, as_list=True
        )


def _text_of(outcome: Outcome) -> str:
    if isinstance(outcome, PlainText):
        return outcome.text
    raise ResponseError(
        f"Expected a text reply, got {type(outcome).__name__}",
        hint="The model returned no usable content; try rephrasing the request.",
    )
