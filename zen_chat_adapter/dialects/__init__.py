"""Wire dialects and the factory that picks one per backend binding."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from ..exceptions import ConfigurationError
from ..models import DialectKind
from ._base import BaseDialect, ChatRequest, EventAccumulator, ToolMode, extract_cached_tokens

if TYPE_CHECKING:
    from ..diagnostics import DiagnosticSink
    from ..models import BackendBinding

logger = logging.getLogger(__name__)


def create_dialect(
    kind: DialectKind,
    *,
    api_key: Optional[str],
    binding: Optional["BackendBinding"] = None,
    timeout: float = 180.0,
    debug: bool = False,
    sink: Optional["DiagnosticSink"] = None,
    include_usage: bool = False,
    **kwargs: Any,
) -> BaseDialect:
    """Lazily import and instantiate the dialect for *kind*."""
    common = dict(
        api_key=api_key,
        binding=binding,
        timeout=timeout,
        debug=debug,
        sink=sink,
        include_usage=include_usage,
        **kwargs,
    )
    if kind is DialectKind.ANTHROPIC:
        from .anthropic import AnthropicDialect

        return AnthropicDialect(**common)
    elif kind is DialectKind.OPENAI:
        from .openai import OpenAIDialect

        return OpenAIDialect(**common)
    elif kind is DialectKind.OPENAI_COMPATIBLE:
        from .openai_compatible import OpenAICompatibleDialect

        return OpenAICompatibleDialect(**common)
    else:
        raise ConfigurationError(f"Unknown dialect: '{kind}'")


__all__ = [
    "BaseDialect",
    "ChatRequest",
    "EventAccumulator",
    "ToolMode",
    "create_dialect",
    "extract_cached_tokens",
]
