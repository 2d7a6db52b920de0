"""Settings with documented defaults.

Values come either from a host key/value mapping (``Settings.from_mapping``)
or from ``ZEN_*`` environment variables, after ``.env`` in the working
directory has been loaded (``Settings.from_env``).
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError
from .models import (
    ZEN_BASE_URL,
    AnthropicCacheTtl,
    CacheConfig,
    CacheKeyScope,
    CacheUnsafeModel,
    RetentionPolicy,
    _default_unsafe_models,
)

logger = logging.getLogger(__name__)

MODELS_DEV_URL = "https://models.dev/api.json"
PROVIDER_ID = "opencode"

# Host mapping key -> Settings field
_MAPPING_KEYS: Dict[str, str] = {
    "modelCacheTtlMinutes": "model_cache_ttl_minutes",
    "promptCaching.enabled": "prompt_caching_enabled",
    "promptCaching.retention": "prompt_cache_retention",
    "promptCaching.cacheKeyScope": "prompt_cache_key_scope",
    "promptCaching.anthropicTtl": "anthropic_cache_ttl",
    "promptCaching.unsafeModels": "cache_unsafe_models",
    "baseUrl": "base_url",
    "metadataUrl": "metadata_url",
    "includeUsage": "include_usage",
}

_TTL_OVERRIDE_KEY = "modelCacheTtlMinutes.override"

# Environment variable -> Settings field
_ENV_VARS: Dict[str, str] = {
    "ZEN_MODEL_CACHE_TTL_MINUTES": "model_cache_ttl_minutes",
    "ZEN_PROMPT_CACHING_ENABLED": "prompt_caching_enabled",
    "ZEN_PROMPT_CACHE_RETENTION": "prompt_cache_retention",
    "ZEN_PROMPT_CACHE_KEY_SCOPE": "prompt_cache_key_scope",
    "ZEN_ANTHROPIC_CACHE_TTL": "anthropic_cache_ttl",
    "ZEN_BASE_URL": "base_url",
    "ZEN_METADATA_URL": "metadata_url",
    "ZEN_INCLUDE_USAGE": "include_usage",
}


class Settings(BaseModel):
    """Adapter configuration.

    Attributes:
        model_cache_ttl_minutes: How long a fetched model list is reused.
            ``0`` disables caching; negative values are clamped to ``0``.
        prompt_caching_enabled: Master switch for cache annotation.
        prompt_cache_retention: Request-level retention hint for
            OpenAI-style dialects; ``"default"`` sends nothing.
        prompt_cache_key_scope: Where the generated prompt-cache key is
            persisted (``"workspace"``, ``"global"``) or ``"none"``.
        anthropic_cache_ttl: TTL tier for Anthropic ephemeral markers;
            ``None`` leaves the backend default.
        cache_unsafe_models: Models whose backend rejects cache hints.
    """

    model_config = ConfigDict(frozen=True)

    model_cache_ttl_minutes: float = 15
    prompt_caching_enabled: bool = True
    prompt_cache_retention: RetentionPolicy = "default"
    prompt_cache_key_scope: CacheKeyScope = "workspace"
    anthropic_cache_ttl: Optional[AnthropicCacheTtl] = None
    cache_unsafe_models: List[CacheUnsafeModel] = Field(
        default_factory=_default_unsafe_models
    )
    base_url: str = ZEN_BASE_URL
    metadata_url: str = MODELS_DEV_URL
    provider_id: str = PROVIDER_ID
    include_usage: bool = False

    @field_validator("model_cache_ttl_minutes")
    @classmethod
    def _clamp_ttl(cls, value: float) -> float:
        return max(0.0, value)

    @field_validator("anthropic_cache_ttl", mode="before")
    @classmethod
    def _none_ttl(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in ("", "none"):
            return None
        return value

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "Settings":
        """Build settings from host configuration keys (see ``_MAPPING_KEYS``)."""
        values: Dict[str, Any] = {}
        for key, field_name in _MAPPING_KEYS.items():
            if key in mapping and mapping[key] is not None:
                values[field_name] = mapping[key]
        if mapping.get(_TTL_OVERRIDE_KEY) is not None:
            values["model_cache_ttl_minutes"] = mapping[_TTL_OVERRIDE_KEY]
        return cls._build(values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``ZEN_*`` environment variables."""
        if environ is None:
            try:
                load_dotenv(dotenv_path=os.path.join(os.getcwd(), ".env"))
            except Exception as e:
                logger.warning("Could not load .env file: %s", e)
            environ = os.environ
        values = {
            field_name: environ[var]
            for var, field_name in _ENV_VARS.items()
            if environ.get(var, "").strip()
        }
        return cls._build(values)

    @classmethod
    def _build(cls, values: Dict[str, Any]) -> "Settings":
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid adapter settings: {e}") from e

    # ------------------------------------------------------------------
    # Derived snapshots
    # ------------------------------------------------------------------

    def cache_config(self) -> CacheConfig:
        """Return the per-request prompt-cache snapshot."""
        return CacheConfig(
            enabled=self.prompt_caching_enabled,
            retention_policy=self.prompt_cache_retention,
            cache_key_scope=self.prompt_cache_key_scope,
            dialect_specific_ttl=self.anthropic_cache_ttl,
            unsafe_models=list(self.cache_unsafe_models),
        )
