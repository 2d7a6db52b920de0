"""ZenChatProvider: one host chat request end to end.

Resolve the backend binding, build the tool-name map, translate and annotate
the conversation, then stream the response back through the host's
``report`` callback.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .cancellation import NONE_TOKEN, AbortController, CancellationToken
from .config import Settings
from .content import ContentPart, Text, ToolCall, ToolDefinition, Turn, turn_to_dict
from .credentials import CredentialStore
from .diagnostics import DiagnosticSink, LoggingDiagnosticSink, safe_json, serialize_error
from .dialects import BaseDialect, ChatRequest, ToolMode, create_dialect
from .exceptions import MissingCredentialsError
from .models import BackendBinding, ModelDescriptor
from .prompt_cache import PromptCacheAnnotator
from .registry import ModelRegistry
from .storage import ScopedStores
from .streaming import StreamCallbacks, StreamingResponseAdapter
from .tool_names import build_name_map
from .translator import translate, translate_tools

logger = logging.getLogger(__name__)

#: Model option that turns on diagnostic logging for one request.
DEBUG_OPTION_KEY = "__zenDebugSelfTest"
MISSING_KEY_MESSAGE = "OpenCode Zen API key not set. Run 'OpenCode Zen: Set API Key'."

DialectFactory = Callable[..., BaseDialect]
Report = Callable[[ContentPart], None]


@dataclass
class ChatOptions:
    """Per-request options from the host."""

    tools: Optional[List[ToolDefinition]] = None
    tool_mode: ToolMode = "auto"
    model_options: Optional[Dict[str, Any]] = None
    max_output_tokens: Optional[int] = None


def split_debug_options(
    model_options: Optional[Dict[str, Any]],
) -> Tuple[bool, Optional[Dict[str, Any]]]:
    """Pop the debug flag; an emptied option dict becomes ``None``."""
    if not isinstance(model_options, dict):
        return False, model_options
    remaining = dict(model_options)
    debug = bool(remaining.pop(DEBUG_OPTION_KEY, False))
    return debug, remaining or None


class ZenChatProvider:
    """Chat provider for OpenCode Zen models.

    Args:
        credentials: Where the API key lives.
        settings: Adapter configuration; defaults to ``Settings.from_env()``.
        registry: Model registry; built from *settings* when omitted.
        stores: Workspace/global stores for the prompt-cache key.
        sink: Diagnostic sink used by debug requests.
        dialect_factory: Builds the wire dialect for a binding.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        settings: Optional[Settings] = None,
        registry: Optional[ModelRegistry] = None,
        stores: Optional[ScopedStores] = None,
        sink: Optional[DiagnosticSink] = None,
        dialect_factory: DialectFactory = create_dialect,
    ) -> None:
        self.credentials = credentials
        self.settings = settings or Settings.from_env()
        self.registry = registry or ModelRegistry(
            ttl_minutes=lambda: self.settings.model_cache_ttl_minutes,
            metadata_url=self.settings.metadata_url,
            provider_id=self.settings.provider_id,
            default_base_url=self.settings.base_url,
        )
        self.annotator = PromptCacheAnnotator(stores)
        self.sink = sink or LoggingDiagnosticSink()
        self.dialect_factory = dialect_factory
        self._listeners: List[Callable[[], None]] = []
        self.registry.on_did_change(self._fire)

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def on_did_change(self, listener: Callable[[], None]) -> Callable[[], None]:
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
                logger.exception("Provider change listener failed")

    # ------------------------------------------------------------------
    # Models and credentials
    # ------------------------------------------------------------------

    async def _api_key(self) -> Optional[str]:
        key = await self.credentials.get()
        return key.strip() if key and key.strip() else None

    async def list_models(self) -> List[ModelDescriptor]:
        """Available models; metadata failures yield an empty list."""
        try:
            return await self.registry.list(has_key=await self._api_key() is not None)
        except Exception as e:
            logger.error("Failed to load model metadata: %s", e)
            return []

    async def refresh_models(self, force: bool = False) -> None:
        """Forced: drop the cache. Otherwise a best-effort refetch."""
        if force:
            self.registry.invalidate()
            return
        try:
            await self.registry.list(force=True)
        except Exception as e:
            logger.warning("Model refresh failed: %s", e)

    async def set_api_key(self, secret: str) -> None:
        if not secret or not secret.strip():
            raise MissingCredentialsError(MISSING_KEY_MESSAGE)
        await self.credentials.set(secret.strip())
        logger.info("API key saved")
        await self.refresh_models()

    async def clear_api_key(self) -> None:
        await self.credentials.clear()
        logger.info("API key cleared")
        await self.refresh_models()

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def provide_chat_response(
        self,
        model: Union[ModelDescriptor, str],
        turns: Sequence[Turn],
        options: Optional[ChatOptions],
        report: Report,
        token: CancellationToken = NONE_TOKEN,
    ) -> None:
        """Stream one response into *report* as ``Text``/``ToolCall`` parts.

        Raises:
            MissingCredentialsError: Before any network activity when no key
                is stored.
            ChatError: For every request-time failure.
        """
        api_key = await self._api_key()
        if api_key is None:
            raise MissingCredentialsError(MISSING_KEY_MESSAGE)

        options = options or ChatOptions()
        model_id = model.id if isinstance(model, ModelDescriptor) else str(model)
        model_name = model.name if isinstance(model, ModelDescriptor) else model_id

        binding = await self.registry.resolve_backend(model_id) or BackendBinding(
            base_endpoint=self.settings.base_url
        )

        name_map = build_name_map(options.tools, binding.dialect)
        messages = translate(turns, name_map)
        tools = translate_tools(options.tools, name_map)
        debug, model_options = split_debug_options(options.model_options)

        annotated = await self.annotator.annotate(
            messages, binding, self.settings.cache_config(), model_id=model_id
        )
        extra = {**(binding.per_model_options or {}), **(model_options or {})}
        controller = AbortController.linked_to(token)
        request = ChatRequest(
            model_id=model_id,
            messages=annotated.messages,
            tools=tools,
            tool_mode=options.tool_mode,
            name_map=name_map,
            provider_options=annotated.provider_options,
            extra_options=extra or None,
            max_output_tokens=options.max_output_tokens,
            signal=controller.signal,
        )

        def on_text_delta(delta: str) -> None:
            if delta:
                report(Text(delta))

        def on_tool_call(call_id: str, name: str, tool_input: Dict[str, Any]) -> None:
            report(ToolCall(call_id, name, tool_input))

        dialect: Optional[BaseDialect] = None
        try:
            if debug:
                self._log_debug(
                    "Debug: provider request payload", model_id, model_name, request, binding, options
                )
            dialect = self.dialect_factory(
                binding.dialect,
                api_key=api_key,
                binding=binding,
                debug=debug,
                sink=self.sink,
                include_usage=self.settings.include_usage,
            )
            await StreamingResponseAdapter(dialect).run(
                request, StreamCallbacks(on_text_delta, on_tool_call)
            )
        except Exception as e:
            if debug:
                self._log_debug(
                    "Debug: provider error", model_id, model_name, request, binding, options, e
                )
            raise
        finally:
            controller.dispose()
            if dialect is not None:
                await self._close_dialect(dialect)

    async def send_request(
        self,
        model: Union[ModelDescriptor, str],
        turns: Sequence[Turn],
        options: Optional[ChatOptions] = None,
        token: CancellationToken = NONE_TOKEN,
    ) -> AsyncIterator[ContentPart]:
        """Same as :meth:`provide_chat_response`, as an async iterator of parts.

        A failure is raised after the parts reported before it.
        """
        queue: "asyncio.Queue[Any]" = asyncio.Queue()
        done = object()

        async def _run() -> None:
            try:
                await self.provide_chat_response(model, turns, options, queue.put_nowait, token)
            finally:
                queue.put_nowait(done)

        task = asyncio.ensure_future(_run())
        try:
            while True:
                part = await queue.get()
                if part is done:
                    break
                yield part
            await task
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    @staticmethod
    def provide_token_count(value: Union[str, Turn]) -> int:
        """Rough estimate: a quarter of the serialised length, at least 1."""
        if isinstance(value, str):
            serialized = value
        else:
            serialized = json.dumps(turn_to_dict(value)["content"])
        return max(1, math.ceil(len(serialized) / 4))

    @staticmethod
    async def _close_dialect(dialect: BaseDialect) -> None:
        try:
            await dialect.aclose()
        except Exception as e:
            logger.warning("Failed to close %s client: %s", dialect.kind.value, e)

    # ------------------------------------------------------------------
    # Debug logging
    # ------------------------------------------------------------------

    def _log_debug(
        self,
        title: str,
        model_id: str,
        model_name: str,
        request: ChatRequest,
        binding: BackendBinding,
        options: ChatOptions,
        error: Optional[BaseException] = None,
    ) -> None:
        if error is None:
            self.sink.info(title)
        else:
            self.sink.error(title)
        self.sink.info(f"Model: {model_name} ({model_id})")
        self.sink.info(f"Tool mode: {request.tool_mode}")
        if error is None:
            self.sink.info(f"Tools enabled: {len(request.tools)}")
        summary: Dict[str, Any] = {
            "modelId": model_id,
            "messages": [m.model_dump(mode="json", exclude_none=True) for m in request.messages],
            "tools": [t.model_dump(mode="json") for t in request.tools],
            "toolMode": request.tool_mode,
            "modelOptions": options.model_options,
            "providerOptions": request.provider_options or None,
            "provider": binding.model_dump(mode="json", exclude_none=True),
        }
        if error is not None:
            summary["error"] = serialize_error(error)
        self.sink.append("\n" + safe_json(summary) + "\n")
