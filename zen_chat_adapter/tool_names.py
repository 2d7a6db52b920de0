"""Per-request mapping between host tool names and provider-safe names."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from .content import ToolDefinition
from .models import DialectKind

logger = logging.getLogger(__name__)

MAX_TOOL_NAME_LENGTH = 128
FALLBACK_TOOL_NAME = "tool"
UNKNOWN_TOOL_NAME = "unknown"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_tool_name(name: str) -> str:
    """Replace characters outside ``[A-Za-z0-9_-]`` and cap the length.

    Idempotent: a sanitized name comes back unchanged.
    """
    cleaned = _UNSAFE_CHARS.sub("_", name)
    return cleaned[:MAX_TOOL_NAME_LENGTH] if cleaned else FALLBACK_TOOL_NAME


@dataclass
class NameMap:
    """Bidirectional host <-> provider tool-name mapping for one request.

    Names not present in either direction pass through unchanged.
    """

    to_provider: Dict[str, str] = field(default_factory=dict)
    to_host: Dict[str, str] = field(default_factory=dict)

    def provider_name(self, host_name: str) -> str:
        return self.to_provider.get(host_name, host_name)

    def host_name(self, provider_name: str) -> str:
        return self.to_host.get(provider_name, provider_name)

    def __len__(self) -> int:
        return len(self.to_provider)


def build_name_map(
    tools: Optional[Iterable[ToolDefinition]],
    dialect: Optional[DialectKind],
) -> NameMap:
    """Assign every tool a unique provider-side name.

    Dialects with strict identifier rules get sanitized names. Collisions,
    including ones introduced by sanitizing, are resolved by appending
    ``_1``, ``_2``, ... to the base name.
    """
    name_map = NameMap()
    if not tools:
        return name_map

    needs_sanitize = dialect is not None and dialect.requires_strict_tool_names
    used: set[str] = set()

    for tool in tools:
        base = sanitize_tool_name(tool.name) if needs_sanitize else tool.name
        candidate = base
        suffix = 1
        while candidate in used:
            # Trim the base, not the suffix, so a 128-char name still terminates.
            tail = f"_{suffix}"
            candidate = base[: MAX_TOOL_NAME_LENGTH - len(tail)] + tail
            suffix += 1
        used.add(candidate)
        name_map.to_provider[tool.name] = candidate
        name_map.to_host[candidate] = tool.name
        if candidate != tool.name:
            logger.debug("Tool name '%s' sent as '%s'", tool.name, candidate)

    return name_map
