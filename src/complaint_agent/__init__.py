"""Completion orchestration engine for the railway complaint assistant."""

from .config import EmergencyConfig, FallbackConfig, GenerationConfig, ProviderSettings, TierConfig
from .errors import AllProvidersExhaustedError, ProviderError, SessionStateError

__all__ = [
    "AllProvidersExhaustedError",
    "EmergencyConfig",
    "FallbackConfig",
    "GenerationConfig",
    "ProviderError",
    "ProviderSettings",
    "SessionStateError",
    "TierConfig",
]
