"""BaseDialect ABC: client lifecycle, debug HTTP logging and the event loop
shared by every wire dialect."""

from __future__ import annotations

import abc
import base64
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Literal, Mapping, Optional

import httpx

from ..cancellation import AbortSignal
from ..content import OtherEvent, StreamEvent
from ..diagnostics import DiagnosticSink, LoggingDiagnosticSink, redact_headers, safe_json
from ..exceptions import MissingCredentialsError
from ..models import BackendBinding, DialectKind
from ..tool_names import NameMap
from ..translator import ProviderMessage, ProviderTool

logger = logging.getLogger(__name__)

ToolMode = Literal["auto", "required"]

EMPTY_KEY_MESSAGE = (
    'OpenCode Zen API key is empty. Run "OpenCode Zen: Set API Key" to configure it.'
)


# ---------------------------------------------------------------------------
# Request shape handed to a dialect
# ---------------------------------------------------------------------------


@dataclass
class ChatRequest:
    """Everything one streaming call needs, already translated and annotated.

    ``extra_options`` are merged into the request body as-is (per-model
    options from the metadata feed plus caller model options).
    """

    model_id: str
    messages: List[ProviderMessage]
    tools: List[ProviderTool] = field(default_factory=list)
    tool_mode: ToolMode = "auto"
    name_map: NameMap = field(default_factory=NameMap)
    provider_options: Dict[str, Any] = field(default_factory=dict)
    extra_options: Optional[Dict[str, Any]] = None
    max_output_tokens: Optional[int] = None
    signal: Optional[AbortSignal] = None


# ---------------------------------------------------------------------------
# Helpers shared by the wire mappers
# ---------------------------------------------------------------------------


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def data_url(media_type: str, data: bytes) -> str:
    return f"data:{media_type};base64,{b64(data)}"


def as_plain(value: Any) -> Any:
    """SDK objects -> plain dicts; dicts and scalars are returned unchanged."""
    if value is None or isinstance(value, (dict, list, str, int, float, bool)):
        return value
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if hasattr(value, "__dict__"):
        return {k: as_plain(v) for k, v in vars(value).items() if not k.startswith("_")}
    return value


def extract_cached_tokens(usage: Any) -> Optional[Dict[str, Optional[int]]]:
    """Collect prompt-cache counters from any dialect's usage payload.

    Returns ``None`` when the backend reported none of them.
    """
    usage = as_plain(usage)
    if not isinstance(usage, Mapping):
        return None

    def first(*values: Any) -> Optional[int]:
        for value in values:
            if value is not None:
                return value
        return None

    prompt_details = usage.get("prompt_tokens_details") or {}
    input_details = usage.get("input_tokens_details") or {}
    cached = first(
        prompt_details.get("cached_tokens") if isinstance(prompt_details, Mapping) else None,
        input_details.get("cached_tokens") if isinstance(input_details, Mapping) else None,
        usage.get("cached_tokens"),
    )
    read = first(usage.get("cache_read_input_tokens"), usage.get("cache_read_tokens"))
    write = first(usage.get("cache_creation_input_tokens"), usage.get("cache_write_tokens"))
    if cached is None and read is None and write is None:
        return None
    return {"cached": cached, "read": read, "write": write}


class EventAccumulator(abc.ABC):
    """Turns raw SDK stream events into :data:`StreamEvent` values.

    ``feed`` returns at least one event per raw event so the caller can tell
    an empty stream from one with nothing useful in it.
    """

    def __init__(self) -> None:
        self.usage: Any = None

    @abc.abstractmethod
    def feed(self, raw: Any) -> List[StreamEvent]: ...

    def finish(self) -> List[StreamEvent]:
        return []

    @staticmethod
    def other(raw: Any) -> List[StreamEvent]:
        return [OtherEvent(kind=str(getattr(raw, "type", "") or ""))]


# ---------------------------------------------------------------------------
# BaseDialect ABC
# ---------------------------------------------------------------------------


class BaseDialect(abc.ABC):
    """Abstract base for the wire dialects.

    Subclasses build the SDK payload from a :class:`ChatRequest`, open the
    SDK stream and supply an :class:`EventAccumulator`; this class owns the
    client, debug logging of raw HTTP traffic and cache-usage reporting.
    """

    kind: DialectKind = DialectKind.OPENAI_COMPATIBLE

    def __init__(
        self,
        *,
        api_key: Optional[str],
        binding: Optional[BackendBinding] = None,
        timeout: float = 180.0,
        debug: bool = False,
        sink: Optional[DiagnosticSink] = None,
        include_usage: bool = False,
        **kwargs: Any,
    ) -> None:
        if not api_key or not api_key.strip():
            raise MissingCredentialsError(EMPTY_KEY_MESSAGE)
        self.api_key = api_key
        self.binding = binding or BackendBinding(dialect=self.kind)
        self.timeout = timeout
        self.debug = debug
        self.sink = sink or LoggingDiagnosticSink()
        self.include_usage = include_usage
        self._async_client: Any = None  # Lazy-created

    @property
    def endpoint_url(self) -> str:
        return f"{self.binding.base_endpoint.rstrip('/')}{self.kind.endpoint_path}"

    async def aclose(self) -> None:
        """Close the SDK client, and with it any debug ``httpx`` client."""
        client, self._async_client = self._async_client, None
        if client is not None:
            await client.close()

    # ------------------------------------------------------------------
    # Abstract methods
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _get_client(self) -> Any:
        """Lazily create the SDK client."""
        ...

    @abc.abstractmethod
    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """Map a request onto the SDK's streaming call arguments."""
        ...

    @abc.abstractmethod
    def _open(self, payload: Dict[str, Any]) -> AsyncIterator[Any]:
        """Yield raw SDK events for *payload*."""
        ...

    @abc.abstractmethod
    def _accumulator(self) -> EventAccumulator: ...

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(self, payload: Dict[str, Any]) -> AsyncIterator[StreamEvent]:
        """Stream normalised events for an already-built payload."""
        accumulator = self._accumulator()
        async with aclosing(self._open(payload)) as raw_events:
            async for raw in raw_events:
                for event in accumulator.feed(raw):
                    yield event
        for event in accumulator.finish():
            yield event
        if self.include_usage:
            self._log_cache_usage(accumulator.usage)

    def _log_cache_usage(self, usage: Any) -> None:
        cached = extract_cached_tokens(usage)
        if cached is None:
            return
        logger.info(
            "Prompt cache: read=%s, write=%s, cached=%s",
            cached["read"] or 0,
            cached["write"] or 0,
            cached["cached"] or 0,
        )

    # ------------------------------------------------------------------
    # Client construction
    # ------------------------------------------------------------------

    def _client_kwargs(self, base_url: Optional[str] = None) -> Dict[str, Any]:
        client_kwargs: Dict[str, Any] = {
            "api_key": self.api_key,
            "timeout": self.timeout,
            "base_url": base_url or self.binding.base_endpoint,
        }
        if self.binding.per_model_headers:
            client_kwargs["default_headers"] = dict(self.binding.per_model_headers)
        http_client = self._http_client()
        if http_client is not None:
            client_kwargs["http_client"] = http_client
        return client_kwargs

    def _http_client(self) -> Optional[httpx.AsyncClient]:
        """An ``httpx`` client that logs traffic, only in debug mode."""
        if not self.debug:
            return None
        return httpx.AsyncClient(
            timeout=self.timeout,
            event_hooks={
                "request": [self._log_request],
                "response": [self._log_response],
            },
        )

    async def _log_request(self, request: httpx.Request) -> None:
        try:
            body = request.content.decode("utf-8", errors="replace") or None
        except httpx.RequestNotRead:
            body = None
        self.sink.info("Debug: HTTP request")
        self.sink.append(
            "\n"
            + safe_json(
                {
                    "method": request.method,
                    "url": str(request.url),
                    "headers": redact_headers(request.headers.items()),
                    "body": body,
                }
            )
            + "\n"
        )

    async def _log_response(self, response: httpx.Response) -> None:
        info: Dict[str, Any] = {
            "status": response.status_code,
            "statusText": response.reason_phrase,
            "url": str(response.url),
            "headers": redact_headers(response.headers.items()),
        }
        # Success bodies are event streams; reading them here would consume them.
        if response.is_success:
            self.sink.info("Debug: HTTP response")
        else:
            await response.aread()
            info["body"] = response.text or None
            self.sink.error("Debug: HTTP response (non-OK)")
        self.sink.append("\n" + safe_json(info) + "\n")
