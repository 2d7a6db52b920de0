"""OpenAI-compatible Chat Completions dialect (the Zen default)."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from ..content import ErrorEvent, ReasoningDelta, StreamEvent, TextDelta, ToolCallEvent
from ..exceptions import ConfigurationError
from ..models import DialectKind
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
from ._base import BaseDialect, ChatRequest, EventAccumulator, as_plain, data_url
from .openai import parse_arguments, request_level_cache_options

logger = logging.getLogger(__name__)


class ChatCompletionsAccumulator(EventAccumulator):
    """Maps ``chat.completions.create(stream=True)`` chunks.

    Tool-call fragments are accumulated per index and emitted, in index
    order, once the stream ends.
    """

    def __init__(self) -> None:
        super().__init__()
        self._calls: Dict[int, Dict[str, str]] = {}

    def feed(self, raw: Any) -> List[StreamEvent]:
        error = getattr(raw, "error", None)
        if error is None and isinstance(raw, dict):
            error = raw.get("error")
        if error:
            return [ErrorEvent(as_plain(error))]

        usage = getattr(raw, "usage", None)
        if usage is not None:
            self.usage = as_plain(usage)

        events: List[StreamEvent] = []
        for choice in getattr(raw, "choices", None) or []:
            delta = getattr(choice, "delta", None)
            if delta is None:
                continue
            reasoning = getattr(delta, "reasoning_content", None) or getattr(
                delta, "reasoning", None
            )
            if isinstance(reasoning, str):
                events.append(ReasoningDelta(reasoning))
            content = getattr(delta, "content", None)
            if isinstance(content, str):
                events.append(TextDelta(content))
            for fragment in getattr(delta, "tool_calls", None) or []:
                self._accumulate(fragment)

        return events or self.other(raw)

    def _accumulate(self, fragment: Any) -> None:
        index = getattr(fragment, "index", None)
        if index is None:
            index = len(self._calls)
        call = self._calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if getattr(fragment, "id", None):
            call["id"] = fragment.id
        function = getattr(fragment, "function", None)
        if function is not None:
            if getattr(function, "name", None):
                call["name"] = function.name
            if getattr(function, "arguments", None):
                call["arguments"] += function.arguments

    def finish(self) -> List[StreamEvent]:
        calls, self._calls = self._calls, {}
        return [
            ToolCallEvent(call["id"], call["name"], parse_arguments(call["arguments"]))
            for _, call in sorted(calls.items())
            if call["name"]
        ]


class OpenAICompatibleDialect(BaseDialect):
    """Dialect for models behind an OpenAI-compatible ``/chat/completions``."""

    kind = DialectKind.OPENAI_COMPATIBLE

    def _get_client(self) -> Any:
        """Lazily import and create an ``AsyncOpenAI`` client."""
        if self._async_client is not None:
            return self._async_client

        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ConfigurationError(
                "OpenAI-compatible models require the 'openai' package. "
                "Install it with: pip install openai"
            )

        self._async_client = AsyncOpenAI(**self._client_kwargs())
        return self._async_client

    # ------------------------------------------------------------------
    # Message conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _user_content(message: ProviderMessage) -> Any:
        if isinstance(message.content, str):
            return message.content
        parts: List[Dict[str, Any]] = []
        for item in message.items:
            if isinstance(item, TextItem):
                parts.append({"type": "text", "text": item.text})
            elif isinstance(item, ImageItem):
                parts.append(
                    {
                        "type": "image_url",
                        "image_url": {"url": data_url(item.media_type, item.data)},
                    }
                )
            elif isinstance(item, FileItem):
                parts.append(
                    {
                        "type": "file",
                        "file": {
                            "filename": "attachment",
                            "file_data": data_url(item.media_type, item.data),
                        },
                    }
                )
        return parts

    @staticmethod
    def _result_text(item: ToolResultItem) -> str:
        if isinstance(item.output, TextOutput):
            return item.output.value
        rendered: List[Dict[str, Any]] = []
        for part in item.output.value:
            if isinstance(part, TextItem):
                rendered.append({"type": "text", "text": part.text})
            elif isinstance(part, (ImageDataPart, FileDataPart)):
                rendered.append(
                    {"type": part.type, "mediaType": part.media_type, "data": part.data}
                )
            elif isinstance(part, CustomPart):
                rendered.append({"type": "custom", "value": part.value})
        return json.dumps(rendered, default=str)

    @classmethod
    def _convert_messages(cls, messages: List[ProviderMessage]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                text = "".join(i.text for i in message.items if isinstance(i, TextItem))
                converted.append({"role": "system", "content": text})
            elif message.role == "user":
                converted.append({"role": "user", "content": cls._user_content(message)})
            elif message.role == "assistant":
                text = "".join(i.text for i in message.items if isinstance(i, TextItem))
                tool_calls = [
                    {
                        "id": item.tool_call_id,
                        "type": "function",
                        "function": {
                            "name": item.tool_name,
                            "arguments": json.dumps(item.input or {}),
                        },
                    }
                    for item in message.items
                    if isinstance(item, ToolCallItem)
                ]
                msg: Dict[str, Any] = {"role": "assistant", "content": text or None}
                if tool_calls:
                    msg["tool_calls"] = tool_calls
                converted.append(msg)
            else:
                for item in message.items:
                    if isinstance(item, ToolResultItem):
                        converted.append(
                            {
                                "role": "tool",
                                "tool_call_id": item.tool_call_id,
                                "content": cls._result_text(item),
                            }
                        )
        return converted

    @staticmethod
    def _build_tool_definitions(tools: List[ProviderTool]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in tools
        ]

    # ------------------------------------------------------------------
    # Payload + stream
    # ------------------------------------------------------------------

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model_id,
            "messages": self._convert_messages(request.messages),
            "stream": True,
        }
        if request.tools:
            payload["tools"] = self._build_tool_definitions(request.tools)
            payload["tool_choice"] = request.tool_mode
        if request.max_output_tokens is not None:
            payload["max_tokens"] = request.max_output_tokens
        if self.include_usage:
            payload["stream_options"] = {"include_usage": True}
        extra: Optional[Dict[str, Any]] = request_level_cache_options(request)
        if extra:
            payload["extra_body"] = extra
        return payload

    async def _open(self, payload: Dict[str, Any]) -> AsyncIterator[Any]:
        client = self._get_client()
        stream = await client.chat.completions.create(**payload)
        try:
            async for chunk in stream:
                yield chunk
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()

    def _accumulator(self) -> EventAccumulator:
        return ChatCompletionsAccumulator()
