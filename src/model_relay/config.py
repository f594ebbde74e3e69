"""
Configuration module with frozen dataclasses and hard minimums.

Immutable config grouped by concern, with environment variable overrides
that cannot push timeouts or retry budgets below safe floors.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


def _env_str(name: str, default: str) -> str:
    """Load string from environment variable."""
    return os.getenv(name, default)


def _env_int(name: str, default: int, min_val: int | None = None) -> int:
    """
    Load int from env with optional hard minimum.

    The min_val parameter enforces a floor that cannot be bypassed via
    environment variables.
    """
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default

    if min_val is not None:
        return max(value, min_val)
    return value


def _env_float(
    name: str,
    default: float,
    min_val: float | None = None,
    max_val: float | None = None,
) -> float:
    """Load float from env with optional hard minimum and maximum."""
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        value = default

    if min_val is not None:
        value = max(value, min_val)
    if max_val is not None:
        value = min(value, max_val)
    return value


@dataclass(frozen=True)
class VendorCredentials:
    """API keys for each upstream vendor. Empty string means not configured."""

    GEMINI_API_KEY: str = _env_str("GEMINI_API_KEY", "")
    STABILITY_API_KEY: str = _env_str("STABILITY_API_KEY", "")
    HUGGINGFACE_API_KEY: str = _env_str("HUGGINGFACE_API_KEY", "")
    ANTHROPIC_API_KEY: str = _env_str("ANTHROPIC_API_KEY", "")
    # MailChannels accepts unauthenticated sends from allow-listed origins
    MAILCHANNELS_API_KEY: str = _env_str("MAILCHANNELS_API_KEY", "")


@dataclass(frozen=True)
class VendorEndpoints:
    """Base URLs for vendor APIs."""

    GEMINI_URL: str = _env_str(
        "GEMINI_URL", "https://generativelanguage.googleapis.com/v1beta"
    )
    STABILITY_URL: str = _env_str("STABILITY_URL", "https://api.stability.ai")
    HUGGINGFACE_URL: str = _env_str(
        "HUGGINGFACE_URL", "https://api-inference.huggingface.co"
    )
    ANTHROPIC_URL: str = _env_str("ANTHROPIC_URL", "https://api.anthropic.com")
    MAILCHANNELS_URL: str = _env_str("MAILCHANNELS_URL", "https://api.mailchannels.net")


@dataclass(frozen=True)
class ModelConfig:
    """Upstream model names."""

    GEMINI_FLASH_MODEL: str = _env_str("GEMINI_FLASH_MODEL", "gemini-1.5-flash")
    GEMINI_PRO_MODEL: str = _env_str("GEMINI_PRO_MODEL", "gemini-1.5-pro")

    # Model used for remote task classification
    CLASSIFIER_MODEL: str = _env_str(
        "CLASSIFIER_MODEL", _env_str("GEMINI_FLASH_MODEL", "gemini-1.5-flash")
    )

    CLAUDE_MODEL: str = _env_str("CLAUDE_MODEL", "claude-3-5-sonnet-20241022")
    ANTHROPIC_VERSION: str = _env_str("ANTHROPIC_VERSION", "2023-06-01")
    CLAUDE_MAX_TOKENS: int = _env_int("CLAUDE_MAX_TOKENS", 1024, min_val=16)

    STABILITY_ENGINE: str = _env_str(
        "STABILITY_ENGINE", "stable-diffusion-xl-1024-v1-0"
    )


@dataclass(frozen=True)
class DispatchConfig:
    """Retry budget, timeouts and batch pacing for vendor calls."""

    MAX_ATTEMPTS: int = _env_int("DISPATCH_MAX_ATTEMPTS", 3, min_val=1)

    # Timeouts per call site (seconds)
    CLASSIFIER_TIMEOUT: float = _env_float("CLASSIFIER_TIMEOUT", 30.0, min_val=5.0)
    INFERENCE_TIMEOUT: float = _env_float("INFERENCE_TIMEOUT", 60.0, min_val=10.0)
    GENERATION_TIMEOUT: float = _env_float("GENERATION_TIMEOUT", 60.0, min_val=10.0)
    IMAGE_TIMEOUT: float = _env_float("IMAGE_TIMEOUT", 120.0, min_val=30.0)
    EMAIL_TIMEOUT: float = _env_float("EMAIL_TIMEOUT", 30.0, min_val=5.0)

    # Pause between sequential batches of concurrent calls
    BATCH_PAUSE_SECONDS: float = _env_float(
        "BATCH_PAUSE_SECONDS", 2.5, min_val=2.0, max_val=3.0
    )


@dataclass(frozen=True)
class SessionLimits:
    """Session context management limits."""

    TTL_SECONDS: int = _env_int("SESSION_TTL_SECONDS", 1800, min_val=60)  # 30 minutes
    # Default number of recent tool calls returned by history views
    DEFAULT_LOOKBACK: int = _env_int("SESSION_DEFAULT_LOOKBACK", 10, min_val=1)


@dataclass(frozen=True)
class ServerConfig:
    """Server configuration."""

    HOST: str = _env_str("HOST", "127.0.0.1")
    PORT: int = _env_int("PORT", 3000)
    LOG_LEVEL: str = _env_str("LOG_LEVEL", "INFO")
    DEBUG: bool = _env_str("DEBUG", "false").lower() == "true"
    JSON_LOGS: bool = _env_str("JSON_LOGS", "true").lower() == "true"


# Module-level singletons (immutable)
CREDENTIALS = VendorCredentials()
ENDPOINTS = VendorEndpoints()
MODELS = ModelConfig()
DISPATCH = DispatchConfig()
SESSIONS = SessionLimits()
SERVER = ServerConfig()


def _redacted(credentials: VendorCredentials) -> dict[str, str]:
    """Replace secret values with a configured/missing marker."""
    return {
        f.name: "***" if getattr(credentials, f.name) else ""
        for f in fields(credentials)
    }


@lru_cache(maxsize=1)
def get_all_config() -> dict[str, object]:
    """Return all configuration as a dictionary for debugging."""
    return {
        "credentials": _redacted(CREDENTIALS),
        "endpoints": ENDPOINTS,
        "models": MODELS,
        "dispatch": DISPATCH,
        "sessions": SESSIONS,
        "server": SERVER,
    }
