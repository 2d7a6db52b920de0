"""Shared fixtures for live OpenCode Zen tests."""

from __future__ import annotations

import os

import pytest

from zen_chat_adapter import MemoryCredentialStore, Settings, ZenChatProvider
from zen_chat_adapter.diagnostics import MemoryDiagnosticSink


@pytest.fixture()
def sink() -> MemoryDiagnosticSink:
    return MemoryDiagnosticSink()


@pytest.fixture()
def provider(sink: MemoryDiagnosticSink) -> ZenChatProvider:
    """Provider keyed from the environment, with usage logging on."""
    return ZenChatProvider(
        MemoryCredentialStore(os.environ.get("OPENCODE_API_KEY")),
        settings=Settings(include_usage=True),
        sink=sink,
    )
