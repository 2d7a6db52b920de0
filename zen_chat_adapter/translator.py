"""Host conversation -> provider message translation.

The provider-message schema here is dialect neutral. Each dialect module maps
it onto its own wire format.
"""

from __future__ import annotations

import base64
import logging
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from .content import (
    CACHE_CONTROL_MIME_TYPE,
    Data,
    Role,
    Text,
    ToolCall,
    ToolDefinition,
    ToolResult,
    Turn,
)
from .tool_names import UNKNOWN_TOOL_NAME, NameMap

logger = logging.getLogger(__name__)

_DEFAULT_INPUT_SCHEMA: Dict[str, Any] = {"type": "object", "additionalProperties": True}


class _Item(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")


# ---------------------------------------------------------------------------
# Message content items
# ---------------------------------------------------------------------------


class TextItem(_Item):
    type: Literal["text"] = "text"
    text: str


class ImageItem(_Item):
    type: Literal["image"] = "image"
    data: bytes
    media_type: str


class FileItem(_Item):
    type: Literal["file"] = "file"
    data: bytes
    media_type: str


class ToolCallItem(_Item):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: Any = None


# ---------------------------------------------------------------------------
# Tool result outputs
# ---------------------------------------------------------------------------


class ImageDataPart(_Item):
    type: Literal["image-data"] = "image-data"
    data: str  # base64
    media_type: str


class FileDataPart(_Item):
    type: Literal["file-data"] = "file-data"
    data: str  # base64
    media_type: str


class CustomPart(_Item):
    type: Literal["custom"] = "custom"
    value: Any = None


OutputPart = Annotated[
    Union[TextItem, ImageDataPart, FileDataPart, CustomPart],
    Field(discriminator="type"),
]


class TextOutput(_Item):
    type: Literal["text"] = "text"
    value: str


class ContentOutput(_Item):
    type: Literal["content"] = "content"
    value: List[OutputPart]


ToolOutput = Annotated[Union[TextOutput, ContentOutput], Field(discriminator="type")]


class ToolResultItem(_Item):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    output: ToolOutput


ContentItem = Annotated[
    Union[TextItem, ImageItem, FileItem, ToolCallItem, ToolResultItem],
    Field(discriminator="type"),
]


class ProviderMessage(_Item):
    """One wire-level message before dialect-specific mapping.

    ``content`` is a plain string when every item would have been text.
    ``provider_options`` carries per-message hints such as cache markers.
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: Union[str, List[ContentItem]]
    provider_options: Optional[Dict[str, Any]] = None

    @property
    def items(self) -> List[Any]:
        """Content as a list of items regardless of the simplified form."""
        if isinstance(self.content, str):
            return [TextItem(text=self.content)] if self.content else []
        return list(self.content)


class ProviderTool(_Item):
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=lambda: dict(_DEFAULT_INPUT_SCHEMA))


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def simplify_text_only_content(items: Sequence[Any]) -> Union[str, List[Any]]:
    """Collapse an all-text item list into one string."""
    if not items:
        return ""
    if all(isinstance(item, TextItem) for item in items):
        return "".join(item.text for item in items)
    return list(items)


def data_part_to_item(part: Data) -> Optional[Union[TextItem, ImageItem, FileItem]]:
    """Convert a data part; the host's cache metadata parts are dropped."""
    if part.mime_type == CACHE_CONTROL_MIME_TYPE:
        return None
    if part.mime_type.startswith("text/"):
        return TextItem(text=part.data.decode("utf-8", errors="replace"))
    if part.mime_type.startswith("image/"):
        return ImageItem(data=part.data, media_type=part.mime_type)
    return FileItem(data=part.data, media_type=part.mime_type)


def tool_result_output(content: Iterable[Any]) -> Union[TextOutput, ContentOutput]:
    """Reduce a tool result's nested parts.

    All-text results become a single string; anything else keeps every part
    as a structured item.
    """
    parts: List[Any] = []
    for part in content:
        if isinstance(part, Text):
            parts.append(TextItem(text=part.value))
        elif isinstance(part, Data):
            if part.mime_type == CACHE_CONTROL_MIME_TYPE:
                continue
            if part.mime_type.startswith("text/"):
                parts.append(TextItem(text=part.data.decode("utf-8", errors="replace")))
                continue
            encoded = base64.b64encode(part.data).decode("ascii")
            if part.mime_type.startswith("image/"):
                parts.append(ImageDataPart(data=encoded, media_type=part.mime_type))
            else:
                parts.append(FileDataPart(data=encoded, media_type=part.mime_type))
        elif part is not None:
            parts.append(CustomPart(value=part))

    if not parts:
        return TextOutput(value="")
    if all(isinstance(p, TextItem) for p in parts):
        return TextOutput(value="".join(p.text for p in parts))
    return ContentOutput(value=parts)


def _translate_turn(
    turn: Turn,
    name_map: NameMap,
    tool_name_by_call_id: Dict[str, str],
) -> List[ProviderMessage]:
    is_user = turn.role is Role.USER
    user_items: List[Any] = []
    tool_results: List[ToolResultItem] = []
    assistant_items: List[Any] = []

    for part in turn.content:
        if isinstance(part, Text):
            (user_items if is_user else assistant_items).append(TextItem(text=part.value))

        elif isinstance(part, ToolCall):
            provider_name = name_map.provider_name(part.name)
            tool_name_by_call_id[part.call_id] = provider_name
            if is_user:
                logger.debug("Dropping tool call %s found in a user turn", part.call_id)
                continue
            assistant_items.append(
                ToolCallItem(
                    tool_call_id=part.call_id,
                    tool_name=provider_name,
                    input=part.input,
                )
            )

        elif isinstance(part, ToolResult):
            if not is_user:
                logger.debug("Dropping tool result %s found in an assistant turn", part.call_id)
                continue
            tool_name = tool_name_by_call_id.get(part.call_id) or name_map.provider_name(
                UNKNOWN_TOOL_NAME
            )
            tool_results.append(
                ToolResultItem(
                    tool_call_id=part.call_id,
                    tool_name=tool_name,
                    output=tool_result_output(part.content),
                )
            )

        elif isinstance(part, Data):
            converted = data_part_to_item(part)
            if converted is not None:
                (user_items if is_user else assistant_items).append(converted)

        else:
            logger.debug("Dropping unsupported content part %r", type(part).__name__)

    out: List[ProviderMessage] = []
    if is_user:
        if user_items:
            out.append(
                ProviderMessage(role="user", content=simplify_text_only_content(user_items))
            )
        if tool_results:
            out.append(ProviderMessage(role="tool", content=list(tool_results)))
    elif assistant_items:
        out.append(
            ProviderMessage(
                role="assistant", content=simplify_text_only_content(assistant_items)
            )
        )
    return out


def translate(conversation: Iterable[Turn], name_map: NameMap) -> List[ProviderMessage]:
    """Translate host turns into provider messages, preserving order.

    A tool result is named after the most recent earlier tool call with the
    same call id; unmatched results fall back to the mapped ``"unknown"``.
    """
    tool_name_by_call_id: Dict[str, str] = {}
    messages: List[ProviderMessage] = []
    for turn in conversation:
        messages.extend(_translate_turn(turn, name_map, tool_name_by_call_id))
    return messages


def translate_tools(
    tools: Optional[Iterable[ToolDefinition]], name_map: NameMap
) -> List[ProviderTool]:
    """Tool definitions under their provider-side names."""
    return [
        ProviderTool(
            name=name_map.provider_name(tool.name),
            description=tool.description or "",
            input_schema=dict(tool.input_schema or _DEFAULT_INPUT_SCHEMA),
        )
        for tool in tools or []
    ]
