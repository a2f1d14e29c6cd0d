"""Backend implementations."""

from .base import GenerativeBackend
from .gemini import GeminiBackend, HttpxByteSource

__all__ = [
    "GeminiBackend",
    "GenerativeBackend",
    "HttpxByteSource",
]
