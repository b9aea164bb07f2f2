"""
Scriptwriter Configuration Module
Provider keys, retry policy and generation settings.
"""

from .settings import (
    # Model Definitions
    GEMINI_MODELS,
    OPENAI_MODELS,
    GeminiConfig,
    GenerationSettings,
    # Enums
    LLMProvider,
    OpenAIConfig,
    # Configuration Models
    ProviderConfig,
    RetryPolicy,
    ScriptwriterConfiguration,
    # Helper Functions
    create_default_config_from_env,
)

__all__ = [
    "LLMProvider",
    "GEMINI_MODELS",
    "OPENAI_MODELS",
    "ProviderConfig",
    "GeminiConfig",
    "OpenAIConfig",
    "RetryPolicy",
    "GenerationSettings",
    "ScriptwriterConfiguration",
    "create_default_config_from_env",
]
