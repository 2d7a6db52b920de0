"""Diagnostic sink plus helpers for logging requests and errors safely."""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
_SECRET_HEADERS = frozenset({"authorization", "x-api-key"})


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------


class DiagnosticSink(abc.ABC):
    """Append-only log used for debug requests and self-test reports."""

    @abc.abstractmethod
    def info(self, message: str) -> None: ...

    @abc.abstractmethod
    def error(self, message: str) -> None: ...

    @abc.abstractmethod
    def append(self, text: str) -> None:
        """Append raw text (payload dumps, streamed output)."""


class LoggingDiagnosticSink(DiagnosticSink):
    """Forwards everything to a standard library logger."""

    def __init__(self, target: Optional[logging.Logger] = None) -> None:
        self._logger = target or logger

    def info(self, message: str) -> None:
        self._logger.info(message)

    def error(self, message: str) -> None:
        self._logger.error(message)

    def append(self, text: str) -> None:
        self._logger.info("%s", text)


class MemoryDiagnosticSink(DiagnosticSink):
    """Keeps ``(level, text)`` records in memory."""

    def __init__(self) -> None:
        self.records: List[Tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.records.append(("info", message))

    def error(self, message: str) -> None:
        self.records.append(("error", message))

    def append(self, text: str) -> None:
        self.records.append(("append", text))

    @property
    def text(self) -> str:
        return "\n".join(message for _, message in self.records)


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def redact_headers(headers: Iterable[Tuple[str, str]] | Mapping[str, str]) -> Dict[str, str]:
    """Copy *headers*, replacing credential-bearing values with ``[REDACTED]``."""
    items = headers.items() if isinstance(headers, Mapping) else headers
    out: Dict[str, str] = {}
    for key, value in items:
        out[key] = REDACTED if key.lower() in _SECRET_HEADERS else value
    return out


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", exclude_none=True)
    return str(value)


def safe_json(value: Any) -> str:
    """Pretty-print *value* as JSON, falling back to ``str``."""
    try:
        return json.dumps(value, indent=2, default=_json_default, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def normalize_to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return safe_json(value)


def serialize_error(err: Any, depth: int = 4) -> Any:
    """Turn an exception (and its cause chain) into plain JSON-able data."""
    seen: set[int] = set()

    def to_plain(value: Any, remaining: int) -> Any:
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).decode("utf-8", errors="replace")
        if id(value) in seen:
            return "[Circular]"
        seen.add(id(value))
        if remaining <= 0:
            return "[MaxDepth]"
        if isinstance(value, Mapping):
            return {str(k): to_plain(v, remaining - 1) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [to_plain(v, remaining - 1) for v in value]
        if isinstance(value, BaseException):
            out: Dict[str, Any] = {
                "name": type(value).__name__,
                "message": str(value),
            }
            for key, attr in vars(value).items():
                if not key.startswith("_"):
                    out[key] = to_plain(attr, remaining - 1)
            cause = value.__cause__ or value.__context__
            if cause is not None:
                out["cause"] = to_plain(cause, remaining - 1)
            return out
        if hasattr(value, "__dict__"):
            return {
                k: to_plain(v, remaining - 1)
                for k, v in vars(value).items()
                if not k.startswith("_")
            }
        return str(value)

    return to_plain(err, depth)


# ---------------------------------------------------------------------------
# Error detail extraction
# ---------------------------------------------------------------------------


@dataclass
class ErrorDetails:
    status_code: Optional[int] = None
    status_text: Optional[str] = None
    url: Optional[str] = None
    request_id: Optional[str] = None
    response_body: Optional[str] = None
    request_body: Any = None
    original_message: Optional[str] = None


def walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: List[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur
        # Push context first so the explicit cause is visited before it.
        if isinstance(cur.__context__, BaseException):
            stack.append(cur.__context__)
        if isinstance(cur.__cause__, BaseException):
            stack.append(cur.__cause__)


def _candidates(err: Any) -> List[Any]:
    if isinstance(err, BaseException):
        return list(walk_exception_chain(err))
    if err is None:
        return []
    candidates = [err]
    cause = err.get("cause") if isinstance(err, Mapping) else getattr(err, "cause", None)
    if cause is not None:
        candidates.append(cause)
    return candidates


def _field(candidate: Any, name: str) -> Any:
    if isinstance(candidate, Mapping):
        return candidate.get(name)
    return getattr(candidate, name, None)


def _request_of(candidate: Any, response: Any) -> Any:
    # httpx raises RuntimeError when a response has no request attached.
    for owner in (candidate, response):
        if owner is None or isinstance(owner, Mapping):
            continue
        try:
            request = getattr(owner, "request", None)
        except RuntimeError:
            request = None
        if request is not None:
            return request
    return None


def extract_error_details(err: Any) -> ErrorDetails:
    """Scrape status, URL, request id and bodies from *err* and its causes.

    Understands the attribute shapes of the ``openai``/``anthropic`` SDK
    errors (``status_code``, ``response``, ``request_id``, ``body``) as well
    as plain mappings carried by stream error events. The first value found
    along the chain wins.
    """
    details = ErrorDetails()
    for candidate in _candidates(err):
        response = _field(candidate, "response")

        if details.status_code is None:
            for value in (
                _field(candidate, "status_code"),
                _field(candidate, "status"),
                getattr(response, "status_code", None),
            ):
                if isinstance(value, int) and not isinstance(value, bool):
                    details.status_code = value
                    break

        if details.status_text is None:
            value = _field(candidate, "status_text") or getattr(
                response, "reason_phrase", None
            )
            if isinstance(value, str) and value:
                details.status_text = value

        if details.url is None:
            value = _field(candidate, "url")
            if value is None:
                request = _request_of(candidate, response)
                value = getattr(request, "url", None) if request is not None else None
            if value is not None:
                details.url = str(value)

        if details.request_id is None:
            value = _field(candidate, "request_id")
            if not isinstance(value, str):
                headers = getattr(response, "headers", None)
                if headers is not None:
                    value = headers.get("x-request-id") or headers.get("request-id")
            if isinstance(value, str) and value:
                details.request_id = value

        if details.response_body is None:
            value = _field(candidate, "response_body")
            if value is None:
                value = _field(candidate, "body")
            if value is not None:
                details.response_body = normalize_to_string(value)

        if details.request_body is None:
            value = _field(candidate, "request_body")
            if value is not None:
                details.request_body = value

        if details.original_message is None:
            value = _field(candidate, "original_message") or _field(candidate, "message")
            if isinstance(candidate, BaseException) and not isinstance(value, str):
                value = str(candidate)
            if isinstance(value, str) and value:
                details.original_message = value

    return details
