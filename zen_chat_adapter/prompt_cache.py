"""Prompt-cache hints for provider requests.

Two mechanisms exist and exactly one applies per request, chosen by dialect:

* Anthropic: an ephemeral ``cacheControl`` marker on up to the first two
  system messages and the last two non-system messages.
* OpenAI-style: a request-level ``prompt_cache_key`` (generated once and
  persisted per scope) plus an optional non-default retention.

Models listed as cache-unsafe for the active dialect have any hints stripped.
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import BackendBinding, CacheConfig, DialectKind
from .storage import ScopedStores
from .translator import ProviderMessage

logger = logging.getLogger(__name__)

CACHE_KEY_STORAGE_KEY = "zenChat.promptCacheKey"
ANTHROPIC_OPTIONS_KEY = "anthropic"
CACHE_CONTROL_KEY = "cacheControl"
PROMPT_CACHE_KEY = "prompt_cache_key"
PROMPT_CACHE_RETENTION = "prompt_cache_retention"

_MAX_SYSTEM_MARKERS = 2
_MAX_TAIL_MARKERS = 2


@dataclass(frozen=True)
class AnnotatedRequest:
    messages: List[ProviderMessage]
    provider_options: Dict[str, Any] = field(default_factory=dict)


def _new_cache_key() -> str:
    return f"zen-{uuid.uuid4()}"


def has_cache_marker(message: ProviderMessage) -> bool:
    options = message.provider_options or {}
    return (options.get(ANTHROPIC_OPTIONS_KEY) or {}).get(CACHE_CONTROL_KEY) is not None


def select_cache_candidates(messages: List[ProviderMessage]) -> List[int]:
    """Indexes of the first two system and the last two non-system messages."""
    system = [i for i, m in enumerate(messages) if m.role == "system"]
    other = [i for i, m in enumerate(messages) if m.role != "system"]
    return sorted(set(system[:_MAX_SYSTEM_MARKERS] + other[-_MAX_TAIL_MARKERS:]))


class PromptCacheAnnotator:
    """Adds cache hints to a translated request.

    Args:
        stores: Workspace- and global-scoped storage for the generated key.
        key_factory: Produces a fresh opaque key on first use.
    """

    def __init__(
        self,
        stores: Optional[ScopedStores] = None,
        key_factory: Callable[[], str] = _new_cache_key,
    ) -> None:
        self.stores = stores or ScopedStores()
        self._key_factory = key_factory

    async def annotate(
        self,
        messages: Iterable[ProviderMessage],
        binding: Optional[BackendBinding],
        config: CacheConfig,
        *,
        model_id: str,
        provider_options: Optional[Dict[str, Any]] = None,
    ) -> AnnotatedRequest:
        """Return messages and request options with cache hints applied.

        Inputs are not mutated. Applying the result a second time yields the
        same request.
        """
        message_list = list(messages)
        options = copy.deepcopy(provider_options) if provider_options else {}
        dialect = binding.dialect if binding else DialectKind.OPENAI_COMPATIBLE

        if config.is_unsafe(model_id, dialect):
            logger.debug("Stripping prompt-cache hints for %s (%s)", model_id, dialect.value)
            return self._strip(message_list, options)

        if not config.enabled:
            return AnnotatedRequest(message_list, options)

        if dialect is DialectKind.ANTHROPIC:
            return AnnotatedRequest(self._mark_messages(message_list, config), options)

        await self._apply_request_level(options, config)
        return AnnotatedRequest(message_list, options)

    # ------------------------------------------------------------------
    # Anthropic: per-message markers
    # ------------------------------------------------------------------

    @staticmethod
    def _marker(config: CacheConfig) -> Dict[str, Any]:
        marker: Dict[str, Any] = {"type": "ephemeral"}
        if config.dialect_specific_ttl:
            marker["ttl"] = config.dialect_specific_ttl
        return marker

    def _mark_messages(
        self, messages: List[ProviderMessage], config: CacheConfig
    ) -> List[ProviderMessage]:
        out = list(messages)
        for index in select_cache_candidates(messages):
            message = messages[index]
            if has_cache_marker(message):
                continue
            options = copy.deepcopy(message.provider_options) if message.provider_options else {}
            anthropic = dict(options.get(ANTHROPIC_OPTIONS_KEY) or {})
            anthropic[CACHE_CONTROL_KEY] = self._marker(config)
            options[ANTHROPIC_OPTIONS_KEY] = anthropic
            out[index] = message.model_copy(update={"provider_options": options})
        return out

    # ------------------------------------------------------------------
    # OpenAI-style: request-level key + retention
    # ------------------------------------------------------------------

    async def _apply_request_level(self, options: Dict[str, Any], config: CacheConfig) -> None:
        if PROMPT_CACHE_KEY not in options:
            key = await self._cache_key(config.cache_key_scope)
            if key:
                options[PROMPT_CACHE_KEY] = key
        if config.retention_policy != "default":
            options.setdefault(PROMPT_CACHE_RETENTION, config.retention_policy)

    async def _cache_key(self, scope: str) -> Optional[str]:
        store = self.stores.for_scope(scope)
        if store is None:
            return None
        try:
            existing = await store.get(CACHE_KEY_STORAGE_KEY)
            if isinstance(existing, str) and existing:
                return existing
            key = self._key_factory()
            await store.set(CACHE_KEY_STORAGE_KEY, key)
            logger.info("Generated %s-scoped prompt cache key", scope)
            return key
        except Exception as e:
            logger.warning("Prompt cache key unavailable (%s scope): %s", scope, e)
            return None

    # ------------------------------------------------------------------
    # Stripping
    # ------------------------------------------------------------------

    @staticmethod
    def _strip(messages: List[ProviderMessage], options: Dict[str, Any]) -> AnnotatedRequest:
        options.pop(PROMPT_CACHE_KEY, None)
        options.pop(PROMPT_CACHE_RETENTION, None)
        stripped: List[ProviderMessage] = []
        for message in messages:
            if not has_cache_marker(message):
                stripped.append(message)
                continue
            msg_options = copy.deepcopy(message.provider_options or {})
            anthropic = dict(msg_options.get(ANTHROPIC_OPTIONS_KEY) or {})
            anthropic.pop(CACHE_CONTROL_KEY, None)
            if anthropic:
                msg_options[ANTHROPIC_OPTIONS_KEY] = anthropic
            else:
                msg_options.pop(ANTHROPIC_OPTIONS_KEY, None)
            stripped.append(
                message.model_copy(update={"provider_options": msg_options or None})
            )
        return AnnotatedRequest(stripped, options)
