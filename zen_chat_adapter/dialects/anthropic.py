"""Anthropic Messages API dialect."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from ..content import ErrorEvent, ReasoningDelta, StreamEvent, TextDelta, ToolCallEvent
from ..exceptions import ConfigurationError
from ..models import DialectKind
from ..prompt_cache import ANTHROPIC_OPTIONS_KEY, CACHE_CONTROL_KEY
from ..translator import (
    CustomPart,
    FileDataPart,
    FileItem,
    ImageDataPart,
    ImageItem,
    ProviderMessage,
    ProviderTool,
    TextItem,
    TextOutput,
    ToolCallItem,
    ToolResultItem,
)
from ._base import BaseDialect, ChatRequest, EventAccumulator, as_plain, b64

logger = logging.getLogger(__name__)

# Default max_tokens for Anthropic (required parameter)
_DEFAULT_MAX_TOKENS = 4096


def _parse_arguments(raw: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed tool input: %s", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class AnthropicAccumulator(EventAccumulator):
    """Maps raw ``messages.stream`` events.

    Tool calls are assembled from ``input_json_delta`` fragments and emitted
    when their content block stops. The SDK's derived helper events
    (``text``, ``input_json``, ...) are ignored so nothing is delivered twice.
    """

    def __init__(self) -> None:
        super().__init__()
        self._tools: Dict[int, Tuple[str, str, str]] = {}

    def feed(self, raw: Any) -> List[StreamEvent]:
        event_type = getattr(raw, "type", "")

        if event_type == "message_start":
            message = getattr(raw, "message", None)
            self.usage = as_plain(getattr(message, "usage", None))

        elif event_type == "content_block_start":
            block = getattr(raw, "content_block", None)
            if getattr(block, "type", "") == "tool_use":
                index = getattr(raw, "index", 0)
                self._tools[index] = (
                    getattr(block, "id", "") or "",
                    getattr(block, "name", "") or "",
                    "",
                )

        elif event_type == "content_block_delta":
            delta = getattr(raw, "delta", None)
            delta_type = getattr(delta, "type", "")
            if delta_type == "text_delta":
                return [TextDelta(getattr(delta, "text", "") or "")]
            if delta_type == "thinking_delta":
                return [ReasoningDelta(getattr(delta, "thinking", "") or "")]
            if delta_type == "input_json_delta":
                index = getattr(raw, "index", 0)
                if index in self._tools:
                    call_id, name, args = self._tools[index]
                    partial = getattr(delta, "partial_json", "") or ""
                    self._tools[index] = (call_id, name, args + partial)

        elif event_type == "content_block_stop":
            index = getattr(raw, "index", 0)
            if index in self._tools:
                call_id, name, args = self._tools.pop(index)
                return [ToolCallEvent(call_id, name, _parse_arguments(args))]

        elif event_type == "message_delta":
            usage = as_plain(getattr(raw, "usage", None))
            if isinstance(usage, dict):
                merged = dict(self.usage or {})
                merged.update({k: v for k, v in usage.items() if v is not None})
                self.usage = merged

        elif event_type == "error":
            return [ErrorEvent(getattr(raw, "error", None) or raw)]

        return self.other(raw)


class AnthropicDialect(BaseDialect):
    """Dialect for models served through the Anthropic Messages API."""

    kind = DialectKind.ANTHROPIC

    def __init__(self, *, max_tokens: int = _DEFAULT_MAX_TOKENS, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._default_max_tokens = max_tokens

    def _get_client(self) -> Any:
        """Lazily import and create an ``AsyncAnthropic`` client."""
        if self._async_client is not None:
            return self._async_client

        try:
            import anthropic
        except ImportError:
            raise ConfigurationError(
                "Anthropic models require the 'anthropic' package. "
                "Install it with: pip install anthropic"
            )

        # The SDK appends /v1/messages itself.
        base_url = self.binding.base_endpoint.rstrip("/")
        if base_url.endswith("/v1"):
            base_url = base_url[: -len("/v1")]

        self._async_client = anthropic.AsyncAnthropic(**self._client_kwargs(base_url))
        return self._async_client

    # ------------------------------------------------------------------
    # Message conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_control(message: ProviderMessage) -> Optional[Dict[str, Any]]:
        options = (message.provider_options or {}).get(ANTHROPIC_OPTIONS_KEY) or {}
        marker = options.get(CACHE_CONTROL_KEY)
        return dict(marker) if marker else None

    @staticmethod
    def _result_content(item: ToolResultItem) -> Any:
        if isinstance(item.output, TextOutput):
            return item.output.value
        blocks: List[Dict[str, Any]] = []
        for part in item.output.value:
            if isinstance(part, TextItem):
                blocks.append({"type": "text", "text": part.text})
            elif isinstance(part, ImageDataPart):
                blocks.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": part.media_type,
                            "data": part.data,
                        },
                    }
                )
            elif isinstance(part, FileDataPart):
                blocks.append(
                    {
                        "type": "document",
                        "source": {
                            "type": "base64",
                            "media_type": part.media_type,
                            "data": part.data,
                        },
                    }
                )
            elif isinstance(part, CustomPart):
                blocks.append({"type": "text", "text": json.dumps(part.value, default=str)})
        return blocks

    @classmethod
    def _blocks(cls, message: ProviderMessage) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        for item in message.items:
            if isinstance(item, TextItem):
                if item.text:
                    blocks.append({"type": "text", "text": item.text})
            elif isinstance(item, ImageItem):
                blocks.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": item.media_type,
                            "data": b64(item.data),
                        },
                    }
                )
            elif isinstance(item, FileItem):
                blocks.append(
                    {
                        "type": "document",
                        "source": {
                            "type": "base64",
                            "media_type": item.media_type,
                            "data": b64(item.data),
                        },
                    }
                )
            elif isinstance(item, ToolCallItem):
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": item.tool_call_id,
                        "name": item.tool_name,
                        "input": item.input if isinstance(item.input, dict) else {},
                    }
                )
            elif isinstance(item, ToolResultItem):
                blocks.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": item.tool_call_id,
                        "content": cls._result_content(item),
                    }
                )
        return blocks

    @classmethod
    def _convert_messages(
        cls, messages: List[ProviderMessage]
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Split out system blocks and convert the rest to Messages API turns.

        A cache marker lands on the last block of its message.
        """
        system: List[Dict[str, Any]] = []
        converted: List[Dict[str, Any]] = []
        for message in messages:
            blocks = cls._blocks(message)
            if not blocks:
                continue
            marker = cls._cache_control(message)
            if marker:
                blocks[-1]["cache_control"] = marker
            if message.role == "system":
                system.extend(b for b in blocks if b["type"] == "text")
                continue
            role = "assistant" if message.role == "assistant" else "user"
            converted.append({"role": role, "content": blocks})
        return system, cls._merge_consecutive(converted)

    @staticmethod
    def _merge_consecutive(
        messages: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """Merge consecutive messages with the same role.

        Anthropic requires alternating user/assistant messages, and
        ``tool_result`` blocks must lead the user message they are in.
        """
        if not messages:
            return messages

        merged: List[Dict[str, Any]] = [messages[0]]
        for msg in messages[1:]:
            if msg["role"] == merged[-1]["role"]:
                content = merged[-1]["content"] + msg["content"]
                if msg["role"] == "user":
                    content = [b for b in content if b.get("type") == "tool_result"] + [
                        b for b in content if b.get("type") != "tool_result"
                    ]
                merged[-1] = {"role": msg["role"], "content": content}
            else:
                merged.append(msg)
        return merged

    @staticmethod
    def _build_tool_definitions(tools: List[ProviderTool]) -> List[Dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in tools
        ]

    # ------------------------------------------------------------------
    # Payload + stream
    # ------------------------------------------------------------------

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        system, messages = self._convert_messages(request.messages)
        payload: Dict[str, Any] = {
            "model": request.model_id,
            "messages": messages,
            "max_tokens": request.max_output_tokens or self._default_max_tokens,
        }
        if system:
            payload["system"] = system
        if request.tools:
            payload["tools"] = self._build_tool_definitions(request.tools)
            payload["tool_choice"] = {
                "type": "any" if request.tool_mode == "required" else "auto"
            }
        if request.extra_options:
            payload["extra_body"] = dict(request.extra_options)
        return payload

    async def _open(self, payload: Dict[str, Any]) -> AsyncIterator[Any]:
        client = self._get_client()
        async with client.messages.stream(**payload) as stream:
            async for event in stream:
                yield event

    def _accumulator(self) -> EventAccumulator:
        return AnthropicAccumulator()
