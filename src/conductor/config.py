"""Environment-driven settings, backend selection and logging setup."""

import logging
import os
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from . import llm
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONDUCTOR_"

AVAILABLE_PROVIDERS = ["openai", "openrouter", "anthropic", "gemini", "ollama", "echo"]

_PROVIDERS = {
    "openai": llm.OpenAI,
    "openrouter": llm.OpenRouter,
    "anthropic": llm.Anthropic,
    "gemini": llm.Gemini,
    "ollama": llm.Ollama,
    "echo": llm.Echo,
}

_FIELDS = (
    "provider",
    "model",
    "base_url",
    "max_iterations",
    "history_limit",
    "dj_window",
    "dj_personas",
    "lyrics",
    "log_level",
)


def _split(value: Any, separators: str) -> Any:
    if not isinstance(value, str):
        return value
    for sep in separators:
        if sep in value:
            return tuple(part.strip() for part in value.split(sep))
    return (value.strip(),)


class Settings(BaseModel):
    """Session configuration. API keys stay in the SDKs' own variables."""

    provider: str = "openai"
    model: Optional[str] = None
    base_url: Optional[str] = None
    max_iterations: int = Field(default=4, ge=1)
    history_limit: int = Field(default=20, ge=2)
    dj_window: Tuple[int, int] = (4, 5)
    dj_personas: Tuple[str, str] = ("Midnight FM", "Morning Drive")
    lyrics: str = "lrclib"
    log_level: str = "INFO"

    @field_validator("provider", "lyrics", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("dj_window", mode="before")
    @classmethod
    def _parse_window(cls, value: Any) -> Any:
        return _split(value, "-,")

    @field_validator("dj_window")
    @classmethod
    def _check_window(cls, value: Tuple[int, int]) -> Tuple[int, int]:
        low, high = value
        if low < 1 or high < low:
            raise ValueError(f"DJ window must satisfy 1 <= low <= high, got {low}-{high}")
        return value

    @field_validator("dj_personas", mode="before")
    @classmethod
    def _parse_personas(cls, value: Any) -> Any:
        return _split(value, ",")

    @classmethod
    def from_env(
        cls, env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
    ) -> "Settings":
        """Read `CONDUCTOR_*` variables, loading a `.env` file first unless `environ` is given."""
        if environ is None:
            load_dotenv(env_file)
            environ = os.environ
        values: Dict[str, Any] = {}
        for name in _FIELDS:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw.strip():
                values[name] = raw
        return cls(**values)


def create_llm(settings: Settings) -> llm.LLM:
    """Create the backend named by `settings.provider`.

    Raises
    ------
    ConfigurationError
        If the provider is unknown.
    """
    provider = settings.provider
    backend = _PROVIDERS.get(provider)
    if backend is None:
        available = ", ".join(AVAILABLE_PROVIDERS)
        raise ConfigurationError(f"Unknown LLM provider: {provider}. Available options: {available}")

    kwargs: Dict[str, Any] = {}
    if settings.model:
        kwargs["default_model"] = settings.model
    if settings.base_url:
        if provider == "ollama":
            kwargs["host"] = settings.base_url
        elif provider == "openai":
            kwargs["base_url"] = settings.base_url
        else:
            logger.warning("CONDUCTOR_BASE_URL is ignored for provider %s", provider)
    logger.info("Creating LLM provider: %s", provider)
    return backend(**kwargs)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
