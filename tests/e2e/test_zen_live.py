"""E2E tests against the live OpenCode Zen API."""

from __future__ import annotations

import os

import pytest

from zen_chat_adapter import (
    ChatOptions,
    Text,
    ToolCall,
    ToolDefinition,
    ToolResult,
    Turn,
    ZenChatProvider,
)
from zen_chat_adapter.diagnostics import MemoryDiagnosticSink
from zen_chat_adapter.self_test import run_self_test

pytestmark = [
    pytest.mark.asyncio,
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.environ.get("OPENCODE_API_KEY"), reason="OPENCODE_API_KEY not set"
    ),
]

SECRET = "alpha-bravo-charlie-42"

SECRET_TOOL = ToolDefinition(
    name="vault.getSecretCode",
    description="Retrieve a secret code from a vault by its ID.",
    input_schema={
        "type": "object",
        "properties": {
            "vault_id": {"type": "string", "description": "The vault identifier."},
        },
        "required": ["vault_id"],
    },
)


async def _collect(provider: ZenChatProvider, model: str, turns, options=None):
    return [part async for part in provider.send_request(model, turns, options)]


async def test_list_models(provider: ZenChatProvider, zen_test_model: str) -> None:
    models = await provider.list_models()
    assert models
    assert zen_test_model in {m.id for m in models}


async def test_simple_generation(provider: ZenChatProvider, zen_test_model: str) -> None:
    parts = await _collect(
        provider,
        zen_test_model,
        [Turn.user("What is 2+2? Reply with just the number.")],
    )
    text = "".join(p.value for p in parts if isinstance(p, Text))
    assert "4" in text


async def test_tool_round_trip(provider: ZenChatProvider, zen_test_model: str) -> None:
    options = ChatOptions(tools=[SECRET_TOOL], tool_mode="required")
    turns = [Turn.user("Get the secret code from vault 'main-vault'.")]

    parts = await _collect(provider, zen_test_model, turns, options)
    calls = [p for p in parts if isinstance(p, ToolCall)]
    assert calls
    assert calls[0].name == SECRET_TOOL.name

    turns += [
        Turn.assistant(*parts),
        Turn.user(ToolResult(calls[0].call_id, (Text(f'{{"code": "{SECRET}"}}'),))),
    ]
    parts = await _collect(provider, zen_test_model, turns, ChatOptions(tools=[SECRET_TOOL]))
    text = "".join(p.value for p in parts if isinstance(p, Text))
    assert SECRET in text.lower()


async def test_self_test(
    provider: ZenChatProvider, sink: MemoryDiagnosticSink, zen_test_model: str
) -> None:
    models = {m.id: m for m in await provider.list_models()}
    assert await run_self_test(provider, models[zen_test_model]) is True
    assert "Self-test completed." in sink.text
