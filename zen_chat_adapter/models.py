"""Model metadata, backend bindings and prompt-cache configuration.

Usage::

    from zen_chat_adapter.models import DialectKind, ModelDescriptor

    kind = DialectKind.from_npm("@ai-sdk/anthropic")
    assert kind is DialectKind.ANTHROPIC
"""

from __future__ import annotations

import enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Dialects
# ---------------------------------------------------------------------------

#: Base URL used when the metadata feed does not provide one.
ZEN_BASE_URL = "https://opencode.ai/zen/v1"


class DialectKind(str, enum.Enum):
    """Wire protocol variant a model is served through."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENAI_COMPATIBLE = "openai-compatible"

    @classmethod
    def from_npm(cls, npm: Optional[str]) -> "DialectKind":
        """Map the metadata feed's SDK package name to a dialect.

        Unknown or missing packages fall back to the OpenAI-compatible
        dialect.
        """
        return _NPM_DIALECTS.get((npm or "").strip(), cls.OPENAI_COMPATIBLE)

    @property
    def endpoint_path(self) -> str:
        return _ENDPOINT_PATHS[self]

    @property
    def requires_strict_tool_names(self) -> bool:
        return self in (DialectKind.ANTHROPIC, DialectKind.OPENAI)


_NPM_DIALECTS: Dict[str, DialectKind] = {
    "@ai-sdk/anthropic": DialectKind.ANTHROPIC,
    "@ai-sdk/openai": DialectKind.OPENAI,
    "@ai-sdk/openai-compatible": DialectKind.OPENAI_COMPATIBLE,
}

_ENDPOINT_PATHS: Dict[DialectKind, str] = {
    DialectKind.ANTHROPIC: "/messages",
    DialectKind.OPENAI: "/responses",
    DialectKind.OPENAI_COMPATIBLE: "/chat/completions",
}


# ---------------------------------------------------------------------------
# Host-facing model descriptors
# ---------------------------------------------------------------------------


class ModelCapabilities(BaseModel):
    tool_calling: bool = False
    image_input: bool = False


class ModelDescriptor(BaseModel):
    """Metadata the host needs to list and pick a model.

    Attributes:
        id: Model identifier sent on the wire.
        name: Human-friendly label; the list is sorted by it.
        version: ``last_updated`` or ``release_date`` from the feed.
        tooltip: Provider name and capability/cost summary.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    family: str = ""
    version: str = "unknown"
    tooltip: str = ""
    max_input_tokens: int = 32_768
    max_output_tokens: int = 8_192
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)


class BackendBinding(BaseModel):
    """Resolved dialect and endpoint for one model id."""

    model_config = ConfigDict(frozen=True)

    dialect: DialectKind = DialectKind.OPENAI_COMPATIBLE
    base_endpoint: str = ZEN_BASE_URL
    per_model_headers: Optional[Dict[str, str]] = None
    per_model_options: Optional[Dict[str, Any]] = None

    @property
    def endpoint_url(self) -> str:
        return f"{self.base_endpoint.rstrip('/')}{self.dialect.endpoint_path}"


# ---------------------------------------------------------------------------
# Prompt caching
# ---------------------------------------------------------------------------

CacheKeyScope = Literal["workspace", "global", "none"]
RetentionPolicy = Literal["default", "in_memory", "24h"]
AnthropicCacheTtl = Literal["5m", "1h"]


class CacheUnsafeModel(BaseModel):
    """A model whose backend rejects cache hints under the listed dialects."""

    model_config = ConfigDict(frozen=True)

    model: str
    dialects: List[DialectKind] = Field(
        default_factory=lambda: [DialectKind.OPENAI_COMPATIBLE]
    )

    def matches(self, model_id: str, dialect: DialectKind) -> bool:
        if dialect not in self.dialects:
            return False
        wanted = self.model.lower()
        candidate = model_id.lower()
        return candidate == wanted or candidate.endswith("/" + wanted)


def _default_unsafe_models() -> List[CacheUnsafeModel]:
    return [CacheUnsafeModel(model="glm-4.7")]


class CacheConfig(BaseModel):
    """Snapshot of prompt-caching settings for a single request."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    retention_policy: RetentionPolicy = "default"
    cache_key_scope: CacheKeyScope = "workspace"
    dialect_specific_ttl: Optional[AnthropicCacheTtl] = None
    unsafe_models: List[CacheUnsafeModel] = Field(default_factory=_default_unsafe_models)

    def is_unsafe(self, model_id: str, dialect: DialectKind) -> bool:
        return any(entry.matches(model_id, dialect) for entry in self.unsafe_models)


# ---------------------------------------------------------------------------
# Metadata feed schema (models.dev api.json)
# ---------------------------------------------------------------------------


class FeedModelProvider(BaseModel):
    model_config = ConfigDict(extra="ignore")

    npm: Optional[str] = None
    api: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    options: Optional[Dict[str, Any]] = None


class FeedCost(BaseModel):
    model_config = ConfigDict(extra="ignore")

    input: Optional[float] = None
    output: Optional[float] = None
    cache_read: Optional[float] = None


class FeedLimit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    context: Optional[int] = None
    output: Optional[int] = None


class FeedModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    family: str = ""
    attachment: bool = False
    reasoning: bool = False
    tool_call: bool = False
    temperature: bool = False
    provider: Optional[FeedModelProvider] = None
    release_date: Optional[str] = None
    last_updated: Optional[str] = None
    cost: Optional[FeedCost] = None
    limit: Optional[FeedLimit] = None
    status: Optional[str] = None

    @property
    def is_free(self) -> bool:
        return self.cost is not None and self.cost.input == 0


class FeedProvider(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str = ""
    npm: Optional[str] = None
    api: Optional[str] = None
    models: Dict[str, FeedModel] = Field(default_factory=dict)
