"""Configuration: frozen Config with an explicit API key requirement."""

from __future__ import annotations

from dataclasses import dataclass, field
import os

from dotenv import load_dotenv

from nutriplanner.connectivity import DEFAULT_PROBE_URLS
from nutriplanner.errors import ConfigurationError
from nutriplanner.retry import RetryPolicy

API_KEY_ENV_VAR = "GEMINI_API_KEY"
BASE_URL_ENV_VAR = "GEMINI_API_URL"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-1.5-flash"


@dataclass(frozen=True)
class Config:
    """Immutable configuration for the conversation client.

    The API key is auto-resolved from ``GEMINI_API_KEY`` and the base URL
    from ``GEMINI_API_URL``. A missing key fails at construction time.

    Example:
        config = Config(model="gemini-2.0-flash")
        # API key is automatically resolved from GEMINI_API_KEY
    """

    #: Auto-resolved from ``GEMINI_API_KEY`` when *None*.
    api_key: str | None = None
    #: Auto-resolved from ``GEMINI_API_URL``, else the public v1beta endpoint.
    base_url: str | None = None
    model: str = DEFAULT_MODEL
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    #: Per-request transport timeout; the only bound on a hung request.
    timeout_s: float = 30.0
    #: Disable to skip the pre-flight reachability probe.
    check_connectivity: bool = True
    connectivity_urls: tuple[str, ...] = DEFAULT_PROBE_URLS

    def __post_init__(self) -> None:
        """Auto-resolve key and base URL, then validate."""
        load_dotenv()
        if self.api_key is None:
            object.__setattr__(self, "api_key", os.environ.get(API_KEY_ENV_VAR))
        if not self.api_key:
            raise ConfigurationError(
                "API key required for the Gemini backend",
                hint=f"Set {API_KEY_ENV_VAR} environment variable or pass api_key=...",
            )

        base_url = self.base_url or os.environ.get(BASE_URL_ENV_VAR) or DEFAULT_BASE_URL
        object.__setattr__(self, "base_url", base_url.rstrip("/"))

        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                "model must be a non-empty string",
                hint="Pass model='gemini-1.5-flash' or another Gemini model id.",
            )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This bounds each HTTP request made to the backend.",
            )
        if self.check_connectivity and not self.connectivity_urls:
            raise ConfigurationError(
                "connectivity_urls must not be empty when check_connectivity is on",
                hint="Pass check_connectivity=False to skip the reachability probe.",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(model={self.model!r}, base_url={self.base_url!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None})"
        )

    __repr__ = __str__
