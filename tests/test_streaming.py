"""Unit tests for the streaming response adapter and error classification.

A scripted dialect stands in for the SDKs so no network calls are made.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import openai
import pytest

from zen_chat_adapter.cancellation import AbortController, RequestAbortedError
from zen_chat_adapter.content import (
    ErrorEvent,
    OtherEvent,
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    ToolCallEvent,
)
from zen_chat_adapter.dialects import BaseDialect, ChatRequest, EventAccumulator
from zen_chat_adapter.exceptions import (
    GenericChatError,
    ModelNotFoundError,
    UnauthorizedError,
)
from zen_chat_adapter.models import BackendBinding, DialectKind
from zen_chat_adapter.streaming import (
    MODEL_NOT_FOUND_MESSAGE,
    NO_RESPONSE_TEXT,
    UNAUTHORIZED_MESSAGE,
    StreamCallbacks,
    StreamingResponseAdapter,
    classify_message,
    wrap_api_error,
)
from zen_chat_adapter.tool_names import NameMap
from zen_chat_adapter.translator import ProviderMessage


class _PassThrough(EventAccumulator):
    def feed(self, raw: Any) -> List[StreamEvent]:
        return [raw]


class _ScriptedDialect(BaseDialect):
    """Replays *events*, optionally raising *error* or hanging afterwards."""

    kind = DialectKind.OPENAI_COMPATIBLE

    def __init__(
        self,
        events: List[Any],
        *,
        error: Optional[BaseException] = None,
        hang: bool = False,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("binding", BackendBinding(base_endpoint="https://zen.test/v1"))
        super().__init__(api_key="test-key", **kwargs)
        self._events = events
        self._error = error
        self._hang = hang
        self.closed = False

    def _get_client(self) -> Any:
        return None

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        return {"model": request.model_id, "messages": len(request.messages)}

    async def _open(self, payload: Dict[str, Any]) -> AsyncIterator[Any]:
        try:
            for event in self._events:
                yield event
            if self._error is not None:
                raise self._error
            if self._hang:
                await asyncio.sleep(30)
        finally:
            self.closed = True

    def _accumulator(self) -> EventAccumulator:
        return _PassThrough()


class _Recorder:
    def __init__(self) -> None:
        self.texts: List[str] = []
        self.calls: List[tuple] = []

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_text_delta=self.texts.append,
            on_tool_call=lambda call_id, name, tool_input: self.calls.append(
                (call_id, name, tool_input)
            ),
        )


def _request(**kwargs: Any) -> ChatRequest:
    kwargs.setdefault("model_id", "big-pickle")
    kwargs.setdefault("messages", [ProviderMessage(role="user", content="hi")])
    return ChatRequest(**kwargs)


async def _run(dialect: BaseDialect, request: Optional[ChatRequest] = None) -> _Recorder:
    recorder = _Recorder()
    await StreamingResponseAdapter(dialect).run(request or _request(), recorder.callbacks())
    return recorder


@pytest.mark.asyncio
class TestRun:
    async def test_text_deltas_forwarded_verbatim(self) -> None:
        recorder = await _run(_ScriptedDialect([TextDelta("Hel"), TextDelta("lo "), TextDelta("!")]))
        assert recorder.texts == ["Hel", "lo ", "!"]
        assert recorder.calls == []

    async def test_reasoning_is_forwarded_as_text(self) -> None:
        recorder = await _run(
            _ScriptedDialect([ReasoningDelta("thinking"), ReasoningDelta(""), TextDelta("done")])
        )
        assert recorder.texts == ["thinking", "done"]

    async def test_tool_call_name_is_mapped_back(self) -> None:
        request = _request(name_map=NameMap({"Get.Time": "Get_Time"}, {"Get_Time": "Get.Time"}))
        recorder = await _run(
            _ScriptedDialect(
                [
                    ToolCallEvent("c1", "Get_Time", {"tz": "UTC"}),
                    ToolCallEvent("c2", "other_tool", None),
                ]
            ),
            request,
        )
        assert recorder.calls == [
            ("c1", "Get.Time", {"tz": "UTC"}),
            ("c2", "other_tool", {}),
        ]
        assert recorder.texts == []

    async def test_empty_stream_gets_no_response_text(self) -> None:
        recorder = await _run(_ScriptedDialect([]))
        assert recorder.texts == [NO_RESPONSE_TEXT]

    async def test_uninformative_stream_gets_newline(self) -> None:
        recorder = await _run(_ScriptedDialect([OtherEvent("finish"), OtherEvent("usage")]))
        assert recorder.texts == ["\n"]

    async def test_empty_text_counts_as_uninformative(self) -> None:
        recorder = await _run(_ScriptedDialect([TextDelta("")]))
        assert recorder.texts == ["", "\n"]

    async def test_error_event_is_classified(self) -> None:
        dialect = _ScriptedDialect(
            [TextDelta("partial"), ErrorEvent({"message": "401 Unauthorized", "status": 401})]
        )
        recorder = _Recorder()
        with pytest.raises(UnauthorizedError) as exc_info:
            await StreamingResponseAdapter(dialect).run(_request(), recorder.callbacks())

        err = exc_info.value
        assert recorder.texts == ["partial"]
        assert str(err) == UNAUTHORIZED_MESSAGE
        assert err.status_code == 401
        assert err.url == "https://zen.test/v1/chat/completions"
        assert err.request_body == {"model": "big-pickle", "messages": 1}
        assert err.original_message == "401 Unauthorized"

    async def test_transport_exception_is_wrapped(self) -> None:
        cause = RuntimeError("connection reset by peer")
        with pytest.raises(GenericChatError) as exc_info:
            await _run(_ScriptedDialect([TextDelta("a")], error=cause))
        assert str(exc_info.value) == "connection reset by peer"
        assert exc_info.value.__cause__ is cause

    async def test_sdk_not_found_error(self) -> None:
        request = httpx.Request("POST", "https://zen.test/v1/chat/completions")
        response = httpx.Response(
            404, request=request, headers={"x-request-id": "req_404"}, content=b"{}"
        )
        cause = openai.NotFoundError(
            "Error code: 404 - model not found",
            response=response,
            body={"error": {"message": "model not found"}},
        )
        with pytest.raises(ModelNotFoundError) as exc_info:
            await _run(_ScriptedDialect([], error=cause))

        err = exc_info.value
        assert str(err) == MODEL_NOT_FOUND_MESSAGE
        assert err.status_code == 404
        assert err.status_text == "Not Found"
        assert err.request_id == "req_404"
        assert '"model not found"' in err.response_body
        assert err.__cause__ is cause

    async def test_chat_error_passes_through(self) -> None:
        original = GenericChatError("already classified", status_code=500)
        with pytest.raises(GenericChatError) as exc_info:
            await _run(_ScriptedDialect([], error=original))
        assert exc_info.value is original

    async def test_abort_stops_delivery(self) -> None:
        controller = AbortController()
        dialect = _ScriptedDialect([TextDelta("first"), TextDelta("second")], hang=True)
        delivered: List[str] = []

        def on_text(delta: str) -> None:
            delivered.append(delta)
            controller.abort()

        with pytest.raises(GenericChatError) as exc_info:
            await StreamingResponseAdapter(dialect).run(
                _request(signal=controller.signal),
                StreamCallbacks(on_text, lambda *args: None),
            )

        assert delivered == ["first"]
        assert isinstance(exc_info.value.__cause__, RequestAbortedError)
        assert dialect.closed

    async def test_abort_while_waiting(self) -> None:
        controller = AbortController()
        dialect = _ScriptedDialect([TextDelta("first")], hang=True)
        recorder = _Recorder()

        async def abort_soon() -> None:
            await asyncio.sleep(0.01)
            controller.abort()

        task = asyncio.ensure_future(abort_soon())
        with pytest.raises(GenericChatError):
            await StreamingResponseAdapter(dialect).run(
                _request(signal=controller.signal), recorder.callbacks()
            )
        await task
        assert recorder.texts == ["first"]


class TestClassification:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("401 Unauthorized", UnauthorizedError),
            ("Error code: 401", UnauthorizedError),
            ("Unauthorized access", UnauthorizedError),
            ("404 page", ModelNotFoundError),
            ("Not Found", ModelNotFoundError),
            ("Error code: 500 - upstream failed", GenericChatError),
            ("", GenericChatError),
        ],
    )
    def test_classify_message(self, message: str, expected: type) -> None:
        assert classify_message(message) is expected

    def test_unauthorized_wins_over_not_found(self) -> None:
        assert classify_message("401 Not Found") is UnauthorizedError

    def test_generic_keeps_original_message(self) -> None:
        err = wrap_api_error(ValueError("rate limited"))
        assert isinstance(err, GenericChatError)
        assert str(err) == "rate limited"
        assert err.original_message == "rate limited"

    def test_overrides_win_over_extracted_details(self) -> None:
        cause = {
            "message": "boom",
            "url": "https://elsewhere/x",
            "request_body": {"stale": True},
        }
        err = wrap_api_error(cause, request_body={"fresh": True}, url="https://zen.test/v1/x")
        assert err.url == "https://zen.test/v1/x"
        assert err.request_body == {"fresh": True}

    def test_sdk_status_error_details(self) -> None:
        request = httpx.Request("POST", "https://zen.test/v1/responses")
        response = httpx.Response(
            401, request=request, headers={"x-request-id": "req_1"}, content=b"{}"
        )
        cause = openai.AuthenticationError(
            "Error code: 401 - invalid key",
            response=response,
            body={"error": {"message": "invalid key"}},
        )
        err = wrap_api_error(cause)
        assert isinstance(err, UnauthorizedError)
        assert err.status_code == 401
        assert err.status_text == "Unauthorized"
        assert err.url == "https://zen.test/v1/responses"
        assert err.request_id == "req_1"
        assert err.original_message == "Error code: 401 - invalid key"

    def test_nested_cause_mapping(self) -> None:
        err = wrap_api_error({"message": "stream failed", "cause": {"status": 502}})
        assert isinstance(err, GenericChatError)
        assert err.status_code == 502
