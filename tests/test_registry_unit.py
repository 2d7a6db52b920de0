"""Unit tests for the model capability registry (no network access)."""

from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from zen_chat_adapter.exceptions import FetchError
from zen_chat_adapter.models import DialectKind
from zen_chat_adapter.registry import ModelRegistry, fetch_metadata_document


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _Feed:
    """Counts fetches and can be switched into a failing mode."""

    def __init__(self, document: Dict[str, Any]) -> None:
        self.document = document
        self.calls = 0
        self.fail = False

    async def __call__(self) -> Dict[str, Any]:
        self.calls += 1
        if self.fail:
            raise FetchError("Failed to fetch models: 503 Service Unavailable")
        return self.document


def _registry(feed: _Feed, clock: _Clock, **kwargs: Any) -> ModelRegistry:
    return ModelRegistry(feed, clock=clock, **kwargs)


@pytest.mark.asyncio
class TestList:
    async def test_sorted_and_deprecated_filtered(self, feed_document: Dict[str, Any]) -> None:
        models = await _registry(_Feed(feed_document), _Clock()).list()
        assert [m.name for m in models] == [
            "big pickle",
            "Claude Sonnet 4.5",
            "GLM 4.7",
            "GPT-5 Nano",
            "Mystery",
        ]

    async def test_descriptor_fields(self, feed_document: Dict[str, Any]) -> None:
        models = await _registry(_Feed(feed_document), _Clock()).list()
        by_id = {m.id: m for m in models}

        claude = by_id["claude-sonnet-4-5"]
        assert claude.family == "claude-sonnet"
        assert claude.version == "2025-09-29"
        assert claude.max_input_tokens == 200000
        assert claude.max_output_tokens == 64000
        assert claude.capabilities.tool_calling is True
        assert claude.capabilities.image_input is True
        assert claude.tooltip == (
            "OpenCode Zen • Reasoning • Tool calling • "
            "Cost (per 1M tokens): in $3, out $15"
        )

        glm = by_id["glm-4.7"]
        assert glm.version == "unknown"
        assert glm.max_input_tokens == 32768
        assert glm.max_output_tokens == 8192
        assert glm.tooltip.endswith("in $0.6, out $2.2")

        nano = by_id["gpt-5-nano"]
        assert nano.version == "2025-08-07"
        assert nano.capabilities.image_input is False

        assert by_id["mystery"].tooltip == "OpenCode Zen"

    async def test_without_key_only_free_models(self, feed_document: Dict[str, Any]) -> None:
        registry = _registry(_Feed(feed_document), _Clock())
        models = await registry.list(has_key=False)
        assert sorted(m.id for m in models) == ["big-pickle", "gpt-5-nano"]

    async def test_missing_provider_is_fetch_error(self) -> None:
        registry = _registry(_Feed({"other": {"models": {}}}), _Clock())
        with pytest.raises(FetchError, match="opencode"):
            await registry.list()

    async def test_fetch_failure_propagates(self, feed_document: Dict[str, Any]) -> None:
        feed = _Feed(feed_document)
        feed.fail = True
        with pytest.raises(FetchError):
            await _registry(feed, _Clock()).list()

    async def test_custom_provider_id(self, feed_document: Dict[str, Any]) -> None:
        feed_document["zen-staging"] = feed_document.pop("opencode")
        registry = _registry(_Feed(feed_document), _Clock(), provider_id="zen-staging")
        assert len(await registry.list()) == 5


@pytest.mark.asyncio
class TestCaching:
    async def test_reused_within_ttl(self, feed_document: Dict[str, Any]) -> None:
        feed, clock = _Feed(feed_document), _Clock()
        registry = _registry(feed, clock, ttl_minutes=15)

        await registry.list()
        clock.now += 14 * 60
        await registry.list()
        assert feed.calls == 1

        clock.now += 2 * 60
        await registry.list()
        assert feed.calls == 2

    async def test_force_refetches(self, feed_document: Dict[str, Any]) -> None:
        feed = _Feed(feed_document)
        registry = _registry(feed, _Clock())
        await registry.list()
        await registry.list(force=True)
        assert feed.calls == 2

    async def test_zero_ttl_always_refetches(self, feed_document: Dict[str, Any]) -> None:
        feed = _Feed(feed_document)
        registry = _registry(feed, _Clock(), ttl_minutes=0)
        await registry.list()
        await registry.list()
        assert feed.calls == 2

    async def test_ttl_callable_is_read_each_time(self, feed_document: Dict[str, Any]) -> None:
        feed, clock = _Feed(feed_document), _Clock()
        ttl = {"minutes": 15.0}
        registry = _registry(feed, clock, ttl_minutes=lambda: ttl["minutes"])

        await registry.list()
        clock.now += 60
        ttl["minutes"] = 0.5
        await registry.list()
        assert feed.calls == 2

    async def test_negative_ttl_behaves_like_zero(self, feed_document: Dict[str, Any]) -> None:
        registry = _registry(_Feed(feed_document), _Clock(), ttl_minutes=-5)
        assert registry.ttl_seconds == 0

    async def test_listeners_fire_on_refresh_and_invalidate(
        self, feed_document: Dict[str, Any]
    ) -> None:
        registry = _registry(_Feed(feed_document), _Clock())
        events: List[str] = []
        unsubscribe = registry.on_did_change(lambda: events.append("changed"))

        await registry.list()
        registry.invalidate()
        assert events == ["changed", "changed"]

        unsubscribe()
        await registry.list()
        assert events == ["changed", "changed"]

    async def test_invalidate_forces_refetch(self, feed_document: Dict[str, Any]) -> None:
        feed = _Feed(feed_document)
        registry = _registry(feed, _Clock())
        await registry.list()
        registry.invalidate()
        await registry.list()
        assert feed.calls == 2

    async def test_failing_listener_does_not_break_refresh(
        self, feed_document: Dict[str, Any]
    ) -> None:
        registry = _registry(_Feed(feed_document), _Clock())

        def boom() -> None:
            raise RuntimeError("listener bug")

        registry.on_did_change(boom)
        assert len(await registry.list()) == 5


@pytest.mark.asyncio
class TestResolveBackend:
    async def test_per_model_override(self, feed_document: Dict[str, Any]) -> None:
        registry = _registry(_Feed(feed_document), _Clock())

        claude = await registry.resolve_backend("claude-sonnet-4-5")
        assert claude.dialect is DialectKind.ANTHROPIC
        assert claude.base_endpoint == "https://opencode.ai/zen/v1"
        assert claude.endpoint_url == "https://opencode.ai/zen/v1/messages"

        nano = await registry.resolve_backend("gpt-5-nano")
        assert nano.dialect is DialectKind.OPENAI
        assert nano.per_model_headers == {"x-zen-route": "responses"}
        assert nano.per_model_options == {"reasoning_effort": "low"}

    async def test_provider_default(self, feed_document: Dict[str, Any]) -> None:
        registry = _registry(_Feed(feed_document), _Clock())
        binding = await registry.resolve_backend("glm-4.7")
        assert binding.dialect is DialectKind.OPENAI_COMPATIBLE
        assert binding.endpoint_url == "https://opencode.ai/zen/v1/chat/completions"
        assert binding.per_model_headers is None

    async def test_unknown_model_uses_provider_default(
        self, feed_document: Dict[str, Any]
    ) -> None:
        registry = _registry(_Feed(feed_document), _Clock())
        binding = await registry.resolve_backend("not-in-feed")
        assert binding.dialect is DialectKind.OPENAI_COMPATIBLE

    async def test_missing_api_uses_default_base_url(
        self, feed_document: Dict[str, Any]
    ) -> None:
        del feed_document["opencode"]["api"]
        registry = _registry(
            _Feed(feed_document), _Clock(), default_base_url="https://fallback.test/v1"
        )
        binding = await registry.resolve_backend("glm-4.7")
        assert binding.base_endpoint == "https://fallback.test/v1"

    async def test_fetch_failure_gives_none(self, feed_document: Dict[str, Any]) -> None:
        feed = _Feed(feed_document)
        feed.fail = True
        assert await _registry(feed, _Clock()).resolve_backend("glm-4.7") is None

    async def test_uses_loaded_metadata(self, feed_document: Dict[str, Any]) -> None:
        feed = _Feed(feed_document)
        registry = _registry(feed, _Clock())
        await registry.list()
        await registry.resolve_backend("glm-4.7")
        assert feed.calls == 1


@pytest.mark.asyncio
class TestFetchMetadataDocument:
    async def test_success(self, feed_document: Dict[str, Any]) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["accept"] == "application/json"
            return httpx.Response(200, json=feed_document)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            document = await fetch_metadata_document("https://models.test/api.json", client=client)
        assert "opencode" in document

    async def test_http_error_status(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(FetchError, match="503"):
                await fetch_metadata_document("https://models.test/api.json", client=client)

    async def test_malformed_json(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>"))
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(FetchError, match="Malformed"):
                await fetch_metadata_document("https://models.test/api.json", client=client)

    async def test_non_object_document(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, content=json.dumps([1, 2]).encode())
        )
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(FetchError, match="expected an object"):
                await fetch_metadata_document("https://models.test/api.json", client=client)

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route to host", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(FetchError, match="no route to host"):
                await fetch_metadata_document("https://models.test/api.json", client=client)
