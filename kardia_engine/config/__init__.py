"""Configuration loading and validation."""

from .models import (
    SystemConfig,
    GeminiConfig,
    CacheConfig,
    ContextConfig,
    PromptConfig,
)
from .loader import ConfigLoader, ConfigLoadError, ConfigValidationError

__all__ = [
    "SystemConfig",
    "GeminiConfig",
    "CacheConfig",
    "ContextConfig",
    "PromptConfig",
    "ConfigLoader",
    "ConfigLoadError",
    "ConfigValidationError",
]
