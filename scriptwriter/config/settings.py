"""
Scriptwriter Configuration - BYOK (Bring Your Own Key) Support
Model provider keys, retry policy and generation settings.
"""

import os
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr


class LLMProvider(str, Enum):
    """Supported JSON-generation providers."""
    GEMINI = "gemini"
    OPENAI = "openai"


# ============================================================================
# Model Definitions by Provider
# ============================================================================

GEMINI_MODELS: Dict[str, Dict[str, Any]] = {
    "gemini-2.5-pro": {
        "name": "Gemini 2.5 Pro",
        "description": "Default scriptwriter model with long context for deep story paths",
        "context_window": 1000000,
        "max_output": 65536,
    },
    "gemini-2.5-flash": {
        "name": "Gemini 2.5 Flash",
        "description": "Faster, cheaper variant for drafts and fixtures",
        "context_window": 1000000,
        "max_output": 65536,
    },
}

OPENAI_MODELS: Dict[str, Dict[str, Any]] = {
    "gpt-4o": {
        "name": "GPT-4o",
        "description": "JSON mode capable general model",
        "context_window": 128000,
        "max_output": 16384,
    },
    "gpt-4o-mini": {
        "name": "GPT-4o Mini",
        "description": "Smaller, faster, cheaper GPT-4o variant",
        "context_window": 128000,
        "max_output": 16384,
    },
}


# ============================================================================
# Provider Configuration Models
# ============================================================================

class ProviderConfig(BaseModel):
    """Base configuration for a model provider."""
    provider: LLMProvider
    api_key: SecretStr
    base_url: Optional[str] = None
    default_model: str
    enabled: bool = True


class GeminiConfig(ProviderConfig):
    """Google Gemini-specific configuration."""
    provider: LLMProvider = LLMProvider.GEMINI
    default_model: str = "gemini-2.5-pro"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return GEMINI_MODELS


class OpenAIConfig(ProviderConfig):
    """OpenAI-specific configuration."""
    provider: LLMProvider = LLMProvider.OPENAI
    base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-4o"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return OPENAI_MODELS


# ============================================================================
# Retry and Generation Settings
# ============================================================================

class RetryPolicy(BaseModel):
    """Exponential backoff policy for model calls."""
    max_attempts: int = Field(default=5, ge=1)
    initial_delay_ms: int = Field(default=2000, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_ms: int = Field(default=30000, ge=0)

    @classmethod
    def disabled(cls) -> "RetryPolicy":
        """Single attempt, no retries."""
        return cls(max_attempts=1)


class GenerationSettings(BaseModel):
    """Tuning knobs for a story tree generation run."""
    timeout_ms: Optional[int] = Field(default=240000, gt=0)
    # Advisory only: rendered into the prompt, never enforced.
    target_scenelets_per_path: Optional[int] = Field(default=None, ge=1)
    # Hard cap on path length; None disables it.
    max_path_length: Optional[int] = Field(default=60, ge=1)
    max_concurrency: int = Field(default=1, ge=1, le=32)
    stop_on_error: bool = False


# ============================================================================
# Master Configuration
# ============================================================================

class ScriptwriterConfiguration(BaseModel):
    """Master configuration for the scriptwriter service."""

    gemini: Optional[GeminiConfig] = None
    openai: Optional[OpenAIConfig] = None
    provider: LLMProvider = LLMProvider.GEMINI
    model: Optional[str] = None

    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    system_prompt_path: Optional[str] = None

    supabase_url: Optional[str] = None
    supabase_key: Optional[SecretStr] = None
    redis_url: str = "redis://localhost:6379"

    def get_provider_config(self, provider: LLMProvider) -> Optional[ProviderConfig]:
        """Get configuration for a specific provider."""
        provider_map = {
            LLMProvider.GEMINI: self.gemini,
            LLMProvider.OPENAI: self.openai,
        }
        return provider_map.get(provider)

    def resolve_model(self) -> str:
        """Model to use for the active provider."""
        if self.model:
            return self.model
        provider_config = self.get_provider_config(self.provider)
        if provider_config is None:
            raise ValueError(f"Provider {self.provider.value} is not configured")
        return provider_config.default_model

    def validate_settings(self) -> List[str]:
        """Return a list of configuration errors (empty when usable)."""
        errors = []
        provider_config = self.get_provider_config(self.provider)
        if not provider_config:
            errors.append(f"Provider {self.provider.value} is not configured")
        elif not provider_config.enabled:
            errors.append(f"Provider {self.provider.value} is disabled")
        elif self.model and self.model not in provider_config.available_models:
            errors.append(f"Model {self.model} not available for {self.provider.value}")

        if self.system_prompt_path and not os.path.isfile(self.system_prompt_path):
            errors.append(f"System prompt file not found: {self.system_prompt_path}")

        return errors


# ============================================================================
# Helper Functions
# ============================================================================

def _int_env(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}") from None


def create_default_config_from_env() -> ScriptwriterConfiguration:
    """Create configuration from environment variables."""
    config = ScriptwriterConfiguration()

    # Gemini
    if os.getenv("GEMINI_API_KEY"):
        config.gemini = GeminiConfig(
            api_key=SecretStr(os.getenv("GEMINI_API_KEY")),
            default_model=os.getenv("GEMINI_MODEL", "").strip() or "gemini-2.5-pro",
        )

    # OpenAI
    if os.getenv("OPENAI_API_KEY"):
        config.openai = OpenAIConfig(
            api_key=SecretStr(os.getenv("OPENAI_API_KEY")),
            base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        )

    if os.getenv("SCRIPTWRITER_PROVIDER"):
        config.provider = LLMProvider(os.getenv("SCRIPTWRITER_PROVIDER").strip().lower())
    config.model = os.getenv("SCRIPTWRITER_MODEL") or None

    generation: Dict[str, Any] = {}
    timeout_ms = _int_env("GEMINI_TIMEOUT_MS")
    if timeout_ms is not None and timeout_ms > 0:
        generation["timeout_ms"] = timeout_ms

    target = _int_env("SCRIPTWRITER_TARGET_SCENELETS_PER_PATH")
    if target is not None:
        generation["target_scenelets_per_path"] = target if target > 0 else None

    max_path_length = _int_env("SCRIPTWRITER_MAX_PATH_LENGTH")
    if max_path_length is not None:
        generation["max_path_length"] = max_path_length if max_path_length > 0 else None

    concurrency = _int_env("SCRIPTWRITER_MAX_CONCURRENCY")
    if concurrency is not None:
        generation["max_concurrency"] = concurrency

    # Built through the constructor so field bounds are enforced.
    config.generation = GenerationSettings(**generation)

    config.system_prompt_path = os.getenv("SCRIPTWRITER_SYSTEM_PROMPT_PATH") or None

    # Persistence and queue
    config.supabase_url = os.getenv("SUPABASE_URL") or None
    if os.getenv("SUPABASE_SERVICE_KEY"):
        config.supabase_key = SecretStr(os.getenv("SUPABASE_SERVICE_KEY"))
    config.redis_url = os.getenv("REDIS_URL", "redis://localhost:6379")

    return config
