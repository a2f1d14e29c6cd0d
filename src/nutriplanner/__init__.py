"""NutriPlanner: generative conversation client for household meal planning.

Public API:
    - ConversationClient: generate(), stream(), run_with_tools()
    - MealPlanningAssistant: menu, recipe, shopping and nutrition requests
    - Config: Configuration dataclass
    - Turn / NewTurn: conversation history and new user input
"""

from __future__ import annotations

import logging

from nutriplanner.assistant import (
    AvailabilityReport,
    FamilyMember,
    Ingredient,
    Location,
    MealPlanningAssistant,
    Menu,
    NutritionalInfo,
    Recipe,
    RecipeAnalysis,
    ShoppingItem,
)
from nutriplanner.client import ConversationClient
from nutriplanner.config import Config
from nutriplanner.connectivity import ConnectivityMonitor, StaticConnectivity
from nutriplanner.errors import (
    APIError,
    BlockedError,
    ConfigurationError,
    MalformedStructuredResponseError,
    NoConnectivityError,
    NutriPlannerError,
    RateLimitError,
    ResponseError,
    ToolError,
    ToolLoopDetectedError,
    TransportError,
    UnknownToolError,
)
from nutriplanner.options import (
    GenerateOptions,
    GenerationParameters,
    HarmBlockThreshold,
    HarmCategory,
    SafetySetting,
    ToolDeclaration,
    ToolMode,
)
from nutriplanner.result import (
    Blocked,
    Empty,
    FunctionCallRequested,
    Outcome,
    PlainText,
    StructuredData,
)
from nutriplanner.retry import RetryPolicy
from nutriplanner.streaming import StreamCallbacks
from nutriplanner.tools import FIND_STORES_WITH_INGREDIENT, StoreLocator
from nutriplanner.turns import InlineData, NewTurn, Turn

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("nutriplanner-ai")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("nutriplanner").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AvailabilityReport",
    "Blocked",
    "BlockedError",
    "Config",
    "ConfigurationError",
    "ConnectivityMonitor",
    "ConversationClient",
    "Empty",
    "FIND_STORES_WITH_INGREDIENT",
    "FamilyMember",
    "FunctionCallRequested",
    "GenerateOptions",
    "GenerationParameters",
    "HarmBlockThreshold",
    "HarmCategory",
    "Ingredient",
    "InlineData",
    "Location",
    "MalformedStructuredResponseError",
    "MealPlanningAssistant",
    "Menu",
    "NewTurn",
    "NoConnectivityError",
    "NutriPlannerError",
    "NutritionalInfo",
    "Outcome",
    "PlainText",
    "RateLimitError",
    "Recipe",
    "RecipeAnalysis",
    "ResponseError",
    "RetryPolicy",
    "SafetySetting",
    "ShoppingItem",
    "StaticConnectivity",
    "StoreLocator",
    "StreamCallbacks",
    "StructuredData",
    "ToolDeclaration",
    "ToolError",
    "ToolLoopDetectedError",
    "ToolMode",
    "TransportError",
    "Turn",
    "UnknownToolError",
]
