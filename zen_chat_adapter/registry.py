"""Model capability registry backed by the models.dev metadata feed.

The registry keeps one process-wide snapshot of the provider's models and
their backend bindings. Clock and fetch function are injectable so TTL
behaviour can be tested without timers or network access.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Union

import httpx
from pydantic import ValidationError

from .config import MODELS_DEV_URL, PROVIDER_ID
from .exceptions import FetchError
from .models import (
    ZEN_BASE_URL,
    BackendBinding,
    DialectKind,
    FeedModel,
    FeedProvider,
    ModelCapabilities,
    ModelDescriptor,
)

logger = logging.getLogger(__name__)

FetchMetadata = Callable[[], Awaitable[Mapping[str, Any]]]


async def fetch_metadata_document(
    url: str = MODELS_DEV_URL,
    timeout: float = 30.0,
    client: Optional[httpx.AsyncClient] = None,
) -> Mapping[str, Any]:
    """GET the metadata document; any transport or decoding failure is a :class:`FetchError`."""
    try:
        if client is not None:
            response = await client.get(url, headers={"accept": "application/json"})
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                response = await owned.get(url, headers={"accept": "application/json"})
    except httpx.HTTPError as e:
        raise FetchError(f"Failed to fetch models from {url}: {e}") from e

    if not response.is_success:
        raise FetchError(
            f"Failed to fetch models from {url}: {response.status_code} {response.reason_phrase}"
        )
    try:
        document = response.json()
    except ValueError as e:
        raise FetchError(f"Malformed model metadata from {url}: {e}") from e
    if not isinstance(document, dict):
        raise FetchError(f"Malformed model metadata from {url}: expected an object")
    return document


def _format_cost(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def model_descriptor(provider: FeedProvider, model: FeedModel) -> ModelDescriptor:
    """Build the host-facing descriptor for one feed entry."""
    limit = model.limit
    cost = model.cost
    tooltip_bits = [
        provider.name,
        "Reasoning" if model.reasoning else None,
        "Tool calling" if model.tool_call else None,
    ]
    if cost is not None and cost.input is not None and cost.output is not None:
        tooltip_bits.append(
            f"Cost (per 1M tokens): in ${_format_cost(cost.input)}, out ${_format_cost(cost.output)}"
        )

    return ModelDescriptor(
        id=model.id,
        name=model.name,
        family=model.family,
        version=model.last_updated or model.release_date or "unknown",
        tooltip=" • ".join(bit for bit in tooltip_bits if bit),
        max_input_tokens=(limit.context if limit and limit.context is not None else 32_768),
        max_output_tokens=(limit.output if limit and limit.output is not None else 8_192),
        capabilities=ModelCapabilities(
            tool_calling=model.tool_call,
            # The feed only has a generic attachment flag.
            image_input=model.attachment,
        ),
    )


class ModelRegistry:
    """Fetches, caches and filters model descriptors.

    Args:
        fetch_metadata: Coroutine function returning the raw feed document.
            Defaults to an HTTP GET of *metadata_url*.
        ttl_minutes: Cache lifetime, or a callable returning it (read on each
            ``list`` call so live configuration changes apply). ``0`` means
            always refetch.
        clock: Monotonic seconds.
        provider_id: Key of the provider entry inside the feed.
        default_base_url: Endpoint used when the feed names none.
    """

    def __init__(
        self,
        fetch_metadata: Optional[FetchMetadata] = None,
        *,
        ttl_minutes: Union[float, Callable[[], float]] = 15,
        clock: Callable[[], float] = time.monotonic,
        metadata_url: str = MODELS_DEV_URL,
        provider_id: str = PROVIDER_ID,
        default_base_url: str = ZEN_BASE_URL,
    ) -> None:
        self._fetch = fetch_metadata or (lambda: fetch_metadata_document(metadata_url))
        self._ttl_minutes = ttl_minutes
        self._clock = clock
        self.provider_id = provider_id
        self.default_base_url = default_base_url

        self._cached_at: Optional[float] = None
        self._models: Optional[List[FeedModel]] = None
        self._descriptors: Optional[List[ModelDescriptor]] = None
        self._provider: Optional[FeedProvider] = None
        self._listeners: List[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def on_did_change(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Subscribe to refresh/invalidate notifications; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _fire(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Model change listener failed")

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @property
    def ttl_seconds(self) -> float:
        ttl = self._ttl_minutes() if callable(self._ttl_minutes) else self._ttl_minutes
        return max(0.0, float(ttl)) * 60.0

    def _is_fresh(self) -> bool:
        if self._descriptors is None or self._cached_at is None:
            return False
        ttl = self.ttl_seconds
        return ttl > 0 and self._clock() - self._cached_at < ttl

    def invalidate(self) -> None:
        """Drop all cached state and notify listeners."""
        self._cached_at = None
        self._models = None
        self._descriptors = None
        self._provider = None
        self._fire()

    async def _refresh(self) -> None:
        document = await self._fetch()
        raw_provider = document.get(self.provider_id) if isinstance(document, Mapping) else None
        if not raw_provider:
            raise FetchError(f"Provider '{self.provider_id}' not found in model metadata")
        try:
            provider = FeedProvider.model_validate(raw_provider)
        except ValidationError as e:
            raise FetchError(f"Malformed entry for provider '{self.provider_id}': {e}") from e

        models = [m for m in provider.models.values() if m.status != "deprecated"]
        models.sort(key=lambda m: (m.name.casefold(), m.name))

        self._provider = provider
        self._models = models
        self._descriptors = [model_descriptor(provider, m) for m in models]
        self._cached_at = self._clock()
        logger.info("Loaded %d models for provider '%s'", len(models), self.provider_id)
        self._fire()

    async def list(self, *, force: bool = False, has_key: bool = True) -> List[ModelDescriptor]:
        """Return descriptors, refetching when forced or stale.

        Without an API key only zero-input-cost models are listed.
        """
        if force or not self._is_fresh():
            await self._refresh()

        descriptors = list(self._descriptors or [])
        if has_key:
            return descriptors
        free_ids = {m.id for m in self._models or [] if m.is_free}
        return [d for d in descriptors if d.id in free_ids]

    # ------------------------------------------------------------------
    # Backend resolution
    # ------------------------------------------------------------------

    async def resolve_backend(self, model_id: str) -> Optional[BackendBinding]:
        """Binding for *model_id*, or ``None`` when metadata is unavailable."""
        if self._provider is None:
            try:
                await self.list()
            except FetchError as e:
                logger.warning("Could not resolve backend for %s: %s", model_id, e)
                return None
        provider = self._provider
        if provider is None:
            return None

        model = provider.models.get(model_id)
        if model is None:
            model = next((m for m in provider.models.values() if m.id == model_id), None)
        override = model.provider if model is not None else None

        npm = (override.npm if override and override.npm else None) or provider.npm
        base = (override.api if override and override.api else None) or provider.api
        return BackendBinding(
            dialect=DialectKind.from_npm(npm),
            base_endpoint=base or self.default_base_url,
            per_model_headers=dict(override.headers) if override and override.headers else None,
            per_model_options=dict(override.options) if override and override.options else None,
        )

