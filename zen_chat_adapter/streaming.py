"""Drives one provider stream and reports it through host callbacks.

Every failure leaving :meth:`StreamingResponseAdapter.run` is a
:class:`~zen_chat_adapter.exceptions.ChatError` carrying whatever diagnostic
context could be recovered (status, URL, request id, bodies).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

from .cancellation import abortable
from .content import ErrorEvent, ReasoningDelta, TextDelta, ToolCallEvent
from .diagnostics import extract_error_details
from .dialects._base import BaseDialect, ChatRequest
from .exceptions import ChatError, GenericChatError, ModelNotFoundError, UnauthorizedError

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "No response returned by model."
UNAUTHORIZED_MESSAGE = (
    'Unauthorized: Please check your OpenCode API key. '
    'Run "OpenCode Zen: Set API Key" to update it.'
)
MODEL_NOT_FOUND_MESSAGE = "Model not found. The requested model may not be available."


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def _base_message(err: Any) -> str:
    if isinstance(err, BaseException):
        return str(err)
    message = err.get("message") if isinstance(err, dict) else getattr(err, "message", None)
    return message if isinstance(message, str) else str(err)


def classify_message(message: str) -> Type[ChatError]:
    """Pick the error class from the failure's message text."""
    if "Unauthorized" in message or "401" in message:
        return UnauthorizedError
    if "404" in message or "Not Found" in message:
        return ModelNotFoundError
    return GenericChatError


def wrap_api_error(
    err: Any,
    *,
    request_body: Any = None,
    url: Optional[str] = None,
) -> ChatError:
    """Classify *err* and attach diagnostic context.

    *request_body* and *url* describe the attempted request and take
    precedence over anything scraped from the error itself.
    """
    details = extract_error_details(err)
    if request_body is not None:
        details.request_body = request_body
    if url:
        details.url = url

    base_message = _base_message(err)
    error_cls = classify_message(base_message)
    if error_cls is UnauthorizedError:
        message = UNAUTHORIZED_MESSAGE
    elif error_cls is ModelNotFoundError:
        message = MODEL_NOT_FOUND_MESSAGE
    else:
        message = base_message

    return error_cls(
        message,
        status_code=details.status_code,
        status_text=details.status_text,
        url=details.url,
        request_body=details.request_body,
        response_body=details.response_body,
        request_id=details.request_id,
        original_message=details.original_message,
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


@dataclass
class StreamCallbacks:
    """Host sinks, called synchronously in stream order.

    ``on_tool_call`` receives ``(call_id, host_tool_name, input)``.
    """

    on_text_delta: Callable[[str], None]
    on_tool_call: Callable[[str, str, Dict[str, Any]], None]


class StreamingResponseAdapter:
    """Runs a :class:`ChatRequest` through a dialect's event stream.

    Single attempt, no retries. The host never observes a silent turn: if
    neither text nor a tool call came through, a fallback text is emitted.
    """

    def __init__(self, dialect: BaseDialect) -> None:
        self.dialect = dialect

    async def run(self, request: ChatRequest, callbacks: StreamCallbacks) -> None:
        payload = self.dialect.build_payload(request)
        url = self.dialect.endpoint_url
        emitted = False
        saw_any_event = False

        try:
            async for event in abortable(self.dialect.stream(payload), request.signal):
                saw_any_event = True

                if isinstance(event, TextDelta):
                    emitted = emitted or bool(event.text)
                    callbacks.on_text_delta(event.text)

                elif isinstance(event, ReasoningDelta):
                    # No separate reasoning channel on the host side.
                    if event.text:
                        emitted = True
                        callbacks.on_text_delta(event.text)

                elif isinstance(event, ToolCallEvent):
                    emitted = True
                    callbacks.on_tool_call(
                        event.call_id,
                        request.name_map.host_name(event.name),
                        event.input or {},
                    )

                elif isinstance(event, ErrorEvent):
                    cause = event.cause if isinstance(event.cause, BaseException) else None
                    raise wrap_api_error(event.cause, request_body=payload, url=url) from cause

        except ChatError:
            raise
        except Exception as e:
            logger.debug("Stream for %s failed: %s", request.model_id, e)
            raise wrap_api_error(e, request_body=payload, url=url) from e

        if not emitted:
            callbacks.on_text_delta("\n" if saw_any_event else NO_RESPONSE_TEXT)
