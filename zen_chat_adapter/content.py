"""Host-side conversation types and normalised stream events.

``ContentPart`` and ``StreamEvent`` are closed unions of frozen dataclasses so
translation code can match every variant explicitly.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

#: Mime type the host uses for internal prompt-cache metadata parts.
CACHE_CONTROL_MIME_TYPE = "cache_control"


class Role(str, enum.Enum):
    """Author of a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"


# ---------------------------------------------------------------------------
# Content parts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Text:
    """Plain text authored by either side."""

    value: str


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation authored by the assistant."""

    call_id: str
    name: str
    input: Any = None


@dataclass(frozen=True)
class Data:
    """Binary content tagged with a mime type (images, files, metadata)."""

    mime_type: str
    data: bytes


@dataclass(frozen=True)
class ToolResult:
    """A tool result authored by the user, paired to a prior call by ``call_id``."""

    call_id: str
    content: Tuple[Any, ...] = ()


ContentPart = Union[Text, ToolCall, ToolResult, Data]


@dataclass(frozen=True)
class Turn:
    """One role-tagged unit of conversation content."""

    role: Role
    content: Tuple[ContentPart, ...] = ()

    @classmethod
    def user(cls, *content: Union[ContentPart, str]) -> "Turn":
        return cls(Role.USER, tuple(_coerce(p) for p in content))

    @classmethod
    def assistant(cls, *content: Union[ContentPart, str]) -> "Turn":
        return cls(Role.ASSISTANT, tuple(_coerce(p) for p in content))


def _coerce(part: Union[ContentPart, str]) -> ContentPart:
    return Text(part) if isinstance(part, str) else part


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the host exposes for one request."""

    name: str
    description: str = ""
    input_schema: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class ToolCallEvent:
    call_id: str
    name: str
    input: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ErrorEvent:
    cause: Any


@dataclass(frozen=True)
class OtherEvent:
    """Any provider event the adapter does not act on (finish, metadata, ...)."""

    kind: str = ""
    usage: Optional[Dict[str, Any]] = field(default=None, compare=False)


StreamEvent = Union[TextDelta, ReasoningDelta, ToolCallEvent, ErrorEvent, OtherEvent]


def turn_to_dict(turn: Turn) -> Dict[str, Any]:
    """Render a turn as a JSON-friendly dict (used for token estimates and logs)."""
    return {"role": turn.role.value, "content": [_part_to_dict(p) for p in turn.content]}


def _part_to_dict(part: Any) -> Any:
    if isinstance(part, Text):
        return {"type": "text", "value": part.value}
    if isinstance(part, ToolCall):
        return {
            "type": "tool-call",
            "callId": part.call_id,
            "name": part.name,
            "input": part.input,
        }
    if isinstance(part, ToolResult):
        return {
            "type": "tool-result",
            "callId": part.call_id,
            "content": [_part_to_dict(p) for p in part.content],
        }
    if isinstance(part, Data):
        return {"type": "data", "mimeType": part.mime_type, "size": len(part.data)}
    return repr(part)


__all__: List[str] = [
    "CACHE_CONTROL_MIME_TYPE",
    "Role",
    "Text",
    "ToolCall",
    "ToolResult",
    "Data",
    "ContentPart",
    "Turn",
    "ToolDefinition",
    "TextDelta",
    "ReasoningDelta",
    "ToolCallEvent",
    "ErrorEvent",
    "OtherEvent",
    "StreamEvent",
    "turn_to_dict",
]
