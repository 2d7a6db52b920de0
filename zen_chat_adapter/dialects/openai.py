"""OpenAI Responses API dialect."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List

from ..content import ErrorEvent, ReasoningDelta, StreamEvent, TextDelta, ToolCallEvent
from ..exceptions import ConfigurationError
from ..models import DialectKind
from ..prompt_cache import PROMPT_CACHE_KEY, PROMPT_CACHE_RETENTION
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

logger = logging.getLogger(__name__)

_REASONING_DELTAS = frozenset(
    {"response.reasoning_text.delta", "response.reasoning_summary_text.delta"}
)


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Decode a JSON arguments string; anything unusable becomes ``{}``."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Discarding malformed tool arguments: %s", str(raw)[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def request_level_cache_options(request: ChatRequest) -> Dict[str, Any]:
    """Extra body fields: per-model options plus request-level cache hints."""
    extra: Dict[str, Any] = dict(request.extra_options or {})
    for key in (PROMPT_CACHE_KEY, PROMPT_CACHE_RETENTION):
        value = request.provider_options.get(key)
        if value:
            extra[key] = value
    return extra


class ResponsesAccumulator(EventAccumulator):
    """Maps ``responses.create(stream=True)`` events.

    Function calls are emitted from ``response.output_item.done`` once their
    arguments are complete.
    """

    def feed(self, raw: Any) -> List[StreamEvent]:
        event_type = getattr(raw, "type", "")

        if event_type == "response.output_text.delta":
            return [TextDelta(getattr(raw, "delta", "") or "")]

        if event_type in _REASONING_DELTAS:
            return [ReasoningDelta(getattr(raw, "delta", "") or "")]

        if event_type == "response.output_item.done":
            item = getattr(raw, "item", None)
            if getattr(item, "type", None) == "function_call":
                return [
                    ToolCallEvent(
                        call_id=getattr(item, "call_id", None) or getattr(item, "id", None) or "",
                        name=getattr(item, "name", None) or "",
                        input=parse_arguments(getattr(item, "arguments", None)),
                    )
                ]

        elif event_type == "response.completed":
            response = getattr(raw, "response", None)
            self.usage = as_plain(getattr(response, "usage", None))

        elif event_type == "response.failed":
            response = getattr(raw, "response", None)
            error = getattr(response, "error", None)
            return [ErrorEvent(as_plain(error) if error is not None else as_plain(raw))]

        elif event_type == "error":
            return [ErrorEvent(as_plain(raw))]

        return self.other(raw)


class OpenAIDialect(BaseDialect):
    """Dialect for models served through the OpenAI Responses API."""

    kind = DialectKind.OPENAI

    def _get_client(self) -> Any:
        """Lazily import and create an ``AsyncOpenAI`` client."""
        if self._async_client is not None:
            return self._async_client

        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ConfigurationError(
                "OpenAI models require the 'openai' package. "
                "Install it with: pip install openai"
            )

        self._async_client = AsyncOpenAI(**self._client_kwargs())
        return self._async_client

    # ------------------------------------------------------------------
    # Message conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _user_parts(message: ProviderMessage) -> Any:
        if isinstance(message.content, str):
            return message.content
        parts: List[Dict[str, Any]] = []
        for item in message.items:
            if isinstance(item, TextItem):
                parts.append({"type": "input_text", "text": item.text})
            elif isinstance(item, ImageItem):
                parts.append(
                    {"type": "input_image", "image_url": data_url(item.media_type, item.data)}
                )
            elif isinstance(item, FileItem):
                parts.append(
                    {
                        "type": "input_file",
                        "filename": "attachment",
                        "file_data": data_url(item.media_type, item.data),
                    }
                )
        return parts

    @staticmethod
    def _result_output(item: ToolResultItem) -> Any:
        if isinstance(item.output, TextOutput):
            return item.output.value
        parts: List[Dict[str, Any]] = []
        for part in item.output.value:
            if isinstance(part, TextItem):
                parts.append({"type": "input_text", "text": part.text})
            elif isinstance(part, ImageDataPart):
                parts.append(
                    {
                        "type": "input_image",
                        "image_url": f"data:{part.media_type};base64,{part.data}",
                    }
                )
            elif isinstance(part, FileDataPart):
                parts.append(
                    {
                        "type": "input_file",
                        "filename": "attachment",
                        "file_data": f"data:{part.media_type};base64,{part.data}",
                    }
                )
            elif isinstance(part, CustomPart):
                parts.append({"type": "input_text", "text": json.dumps(part.value, default=str)})
        return parts

    @classmethod
    def _convert_to_responses_api(cls, messages: List[ProviderMessage]) -> List[Dict[str, Any]]:
        """Convert provider messages to Responses API input items."""
        converted: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                text = "".join(i.text for i in message.items if isinstance(i, TextItem))
                converted.append({"role": "system", "content": text})
            elif message.role == "user":
                converted.append({"role": "user", "content": cls._user_parts(message)})
            elif message.role == "assistant":
                text = "".join(i.text for i in message.items if isinstance(i, TextItem))
                if text:
                    converted.append({"role": "assistant", "content": text})
                for item in message.items:
                    if isinstance(item, ToolCallItem):
                        converted.append(
                            {
                                "type": "function_call",
                                "call_id": item.tool_call_id,
                                "name": item.tool_name,
                                "arguments": json.dumps(item.input or {}),
                            }
                        )
            else:
                for item in message.items:
                    if isinstance(item, ToolResultItem):
                        converted.append(
                            {
                                "type": "function_call_output",
                                "call_id": item.tool_call_id,
                                "output": cls._result_output(item),
                            }
                        )
        return converted

    @staticmethod
    def _build_tool_definitions(tools: List[ProviderTool]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
                "strict": False,
            }
            for tool in tools
        ]

    # ------------------------------------------------------------------
    # Payload + stream
    # ------------------------------------------------------------------

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """Build the request payload for ``client.responses.create``."""
        payload: Dict[str, Any] = {
            "model": request.model_id,
            "input": self._convert_to_responses_api(request.messages),
            "stream": True,
        }
        if request.tools:
            payload["tools"] = self._build_tool_definitions(request.tools)
            payload["tool_choice"] = request.tool_mode
        if request.max_output_tokens is not None:
            payload["max_output_tokens"] = request.max_output_tokens
        extra = request_level_cache_options(request)
        if extra:
            payload["extra_body"] = extra
        return payload

    async def _open(self, payload: Dict[str, Any]) -> AsyncIterator[Any]:
        client = self._get_client()
        stream = await client.responses.create(**payload)
        try:
            async for event in stream:
                yield event
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()

    def _accumulator(self) -> EventAccumulator:
        return ResponsesAccumulator()
