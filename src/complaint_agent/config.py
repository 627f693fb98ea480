"""Configuration models for the completion orchestration engine."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, field_validator

from complaint_agent.types import ProviderId

DEFAULT_PREPARATION_MARKERS: tuple[str, ...] = (
    "railway protection force (rpf)",
    "serious security issue",
    "serious medical issue",
    "serious fire issue",
    "serious accident issue",
    "serious harassment issue",
    "being attacked",
    "life threatening",
    "immediate danger",
    "emergency complaint",
)

DEFAULT_CONFIRMATION_TOKENS: tuple[str, ...] = ("confirm", "yes", "y", "ok", "proceed", "submit")

# A reply after an emergency summary that contains one of these leaves emergency mode.
DEFAULT_DISMISSAL_PHRASES: tuple[str, ...] = (
    "no",
    "cancel",
    "false alarm",
    "never mind",
    "nevermind",
    "not an emergency",
    "by mistake",
    "ignore",
    "report",
    "complaint",
    "complain",
    "another",
    "different",
    "nahi",
    "galti",
)


class TierConfig(BaseModel):
    """One row of the provider tier table."""

    tier: int = Field(ge=0)
    provider_id: ProviderId
    model_id: str = Field(min_length=1)
    max_output_tokens: int = Field(ge=1)


class GenerationConfig(BaseModel):
    """Sampling parameters shared by every chat session."""

    temperature: float = Field(default=1.0, ge=0.0, le=2.0)
    top_p: float = Field(default=0.95, gt=0.0, le=1.0)
    json_mode: bool = False


class FallbackConfig(BaseModel):
    """Retry budget and backoff for the tiered fallback controller."""

    max_attempts: int = Field(default=3, ge=1)
    escalation_backoff_seconds: float = Field(default=2.0, ge=0.0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0)


class EmergencyConfig(BaseModel):
    """Phrase sets driving the emergency confirmation state machine."""

    preparation_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_PREPARATION_MARKERS))
    confirmation_tokens: list[str] = Field(default_factory=lambda: list(DEFAULT_CONFIRMATION_TOKENS))
    dismissal_phrases: list[str] = Field(default_factory=lambda: list(DEFAULT_DISMISSAL_PHRASES))

    @field_validator("preparation_markers", "confirmation_tokens", "dismissal_phrases")
    @classmethod
    def _lowercase(cls, values: list[str]) -> list[str]:
        cleaned = [value.strip().lower() for value in values if value.strip()]
        if not cleaned:
            raise ValueError("phrase set must not be empty")
        return cleaned


class ProviderSettings(BaseModel):
    """Credentials and model choices for the tier table."""

    gemini_api_key: str | None = None
    openrouter_api_key: str | None = None
    gemini_primary_model: str = "gemini-3-flash-preview"
    openrouter_primary_model: str = "google/gemini-3-flash-preview"
    openrouter_fallback_model: str = "google/gemini-2.0-flash-exp:free"
    gemini_max_tokens: int = Field(default=65536, ge=1)
    openrouter_max_tokens: int = Field(default=8192, ge=1)
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    request_timeout_seconds: float = Field(default=60.0, gt=0.0)
    app_referer: str = "https://railmadad.app"
    app_title: str = "RailMadad"

    @classmethod
    def from_env(cls) -> "ProviderSettings":
        values: dict[str, object] = {
            "gemini_api_key": os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            "openrouter_api_key": os.getenv("OPENROUTER_API_KEY"),
        }
        overrides = {
            "gemini_primary_model": "GEMINI_PRIMARY_MODEL",
            "openrouter_primary_model": "OPENROUTER_PRIMARY_MODEL",
            "openrouter_fallback_model": "OPENROUTER_FALLBACK_MODEL",
            "gemini_max_tokens": "GEMINI_MAX_TOKENS",
            "openrouter_max_tokens": "OPENROUTER_MAX_TOKENS",
            "openrouter_base_url": "OPENROUTER_BASE_URL",
        }
        for field_name, env_name in overrides.items():
            raw = os.getenv(env_name)
            if raw and raw.strip():
                values[field_name] = raw.strip()
        return cls.model_validate(values)

    def api_key_for(self, provider_id: ProviderId) -> str | None:
        if provider_id is ProviderId.GEMINI:
            return self.gemini_api_key
        return self.openrouter_api_key

    def configured_providers(self) -> list[ProviderId]:
        return [provider for provider in ProviderId if self.api_key_for(provider)]

    def tier_table(self) -> list[TierConfig]:
        """Tier 0: native Gemini; tier 1: OpenRouter primary; tier 2: OpenRouter free."""
        return [
            TierConfig(
                tier=0,
                provider_id=ProviderId.GEMINI,
                model_id=self.gemini_primary_model,
                max_output_tokens=self.gemini_max_tokens,
            ),
            TierConfig(
                tier=1,
                provider_id=ProviderId.OPENROUTER,
                model_id=self.openrouter_primary_model,
                max_output_tokens=self.openrouter_max_tokens,
            ),
            TierConfig(
                tier=2,
                provider_id=ProviderId.OPENROUTER,
                model_id=self.openrouter_fallback_model,
                max_output_tokens=self.openrouter_max_tokens,
            ),
        ]


def validate_tier_table(tiers: list[TierConfig]) -> list[TierConfig]:
    """Return tiers sorted by ordinal, rejecting gaps and duplicates."""
    ordered = sorted(tiers, key=lambda item: item.tier)
    if not ordered:
        raise ValueError("Tier table must not be empty")
    for expected, config in enumerate(ordered):
        if config.tier != expected:
            raise ValueError(f"Tier table must be contiguous from 0; found tier {config.tier} at {expected}")
    return ordered
