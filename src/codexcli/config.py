"""Configuration loading for codexcli."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from codexcli.constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_OLLAMA_HOST,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OPENROUTER_MODEL,
    DEFAULT_OUTPUT_CAP,
    DEFAULT_PROVIDER,
    DEFAULT_SERVER_GRACE_S,
    DEFAULT_TIMEOUT_S,
)

PROVIDERS = ("ollama", "openrouter")


@dataclass
class Config:
    """Application configuration loaded from environment."""

    provider: str = DEFAULT_PROVIDER
    model: str = DEFAULT_OLLAMA_MODEL
    openrouter_api_key: Optional[str] = None
    ollama_host: str = DEFAULT_OLLAMA_HOST
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    timeout: float = DEFAULT_TIMEOUT_S
    output_cap: int = DEFAULT_OUTPUT_CAP
    server_grace: float = DEFAULT_SERVER_GRACE_S
    debug: bool = False
    trace: bool = False


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


def _number(name: str, default, cast, minimum):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def load_config(require_credentials: bool = True) -> Config:
    """
    Load configuration from environment variables (and a .env file).

    Args:
        require_credentials: If True, raises ConfigError when the selected
                             provider needs an API key that is not set.

    Returns:
        Config object

    Raises:
        ConfigError: On invalid values, or missing credentials when required.
    """
    load_dotenv()

    provider = os.environ.get("CODEXCLI_PROVIDER", DEFAULT_PROVIDER).strip().lower()
    if provider not in PROVIDERS:
        raise ConfigError(
            f"CODEXCLI_PROVIDER must be one of {', '.join(PROVIDERS)}, got {provider!r}"
        )

    default_model = DEFAULT_OPENROUTER_MODEL if provider == "openrouter" else DEFAULT_OLLAMA_MODEL
    api_key = os.environ.get("OPENROUTER_API_KEY")

    if provider == "openrouter" and not api_key and require_credentials:
        raise ConfigError(
            "Missing required environment variable: OPENROUTER_API_KEY\n"
            "Please set it in your environment or create a .env file,\n"
            "or use CODEXCLI_PROVIDER=ollama with a local Ollama server."
        )

    return Config(
        provider=provider,
        model=os.environ.get("CODEXCLI_MODEL") or default_model,
        openrouter_api_key=api_key,
        ollama_host=os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST,
        max_attempts=_number("CODEXCLI_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS, int, 1),
        timeout=_number("CODEXCLI_TIMEOUT_S", DEFAULT_TIMEOUT_S, float, 0.1),
        output_cap=_number("CODEXCLI_OUTPUT_CAP", DEFAULT_OUTPUT_CAP, int, 1),
        server_grace=_number("CODEXCLI_SERVER_GRACE_S", DEFAULT_SERVER_GRACE_S, float, 0.0),
        debug=_flag("CODEXCLI_DEBUG"),
        trace=_flag("LANGSMITH_TRACING"),
    )


def configure_logging(debug: bool = False) -> None:
    """Route library logging to stderr; WARNING by default, DEBUG when asked."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
