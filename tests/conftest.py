"""Pytest configuration for zen_chat_adapter tests."""

from __future__ import annotations

import os
from typing import Any, Dict

import pytest
from dotenv import load_dotenv

# Ensure pytest-asyncio is always available so async tests execute without
# requiring plugins to be explicitly enabled via command line options.
pytest_plugins = ("pytest_asyncio",)

load_dotenv()

_DEFAULT_ZEN_MODEL = "big-pickle"


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register custom command line options for pytest."""
    parser.addoption(
        "--zen-test-model",
        action="store",
        default=os.environ.get("ZEN_TEST_MODEL", _DEFAULT_ZEN_MODEL),
        dest="zen_test_model",
        help=(
            "Model identifier to use for OpenCode Zen integration tests. "
            "Can also be provided through the ZEN_TEST_MODEL environment variable."
        ),
    )


@pytest.fixture(scope="session")
def zen_test_model(pytestconfig: pytest.Config) -> str:
    """Return the model identifier used for live integration tests."""
    return pytestconfig.getoption("zen_test_model")


def make_feed_document() -> Dict[str, Any]:
    """A small models.dev-shaped document covering every binding variant."""
    return {
        "opencode": {
            "id": "opencode",
            "name": "OpenCode Zen",
            "npm": "@ai-sdk/openai-compatible",
            "api": "https://opencode.ai/zen/v1",
            "models": {
                "claude-sonnet-4-5": {
                    "id": "claude-sonnet-4-5",
                    "name": "Claude Sonnet 4.5",
                    "family": "claude-sonnet",
                    "attachment": True,
                    "reasoning": True,
                    "tool_call": True,
                    "release_date": "2025-09-29",
                    "last_updated": "2025-09-29",
                    "cost": {"input": 3, "output": 15, "cache_read": 0.3},
                    "limit": {"context": 200000, "output": 64000},
                    "provider": {"npm": "@ai-sdk/anthropic"},
                },
                "gpt-5-nano": {
                    "id": "gpt-5-nano",
                    "name": "GPT-5 Nano",
                    "family": "gpt-nano",
                    "tool_call": True,
                    "release_date": "2025-08-07",
                    "cost": {"input": 0, "output": 0},
                    "limit": {"context": 400000, "output": 128000},
                    "provider": {
                        "npm": "@ai-sdk/openai",
                        "headers": {"x-zen-route": "responses"},
                        "options": {"reasoning_effort": "low"},
                    },
                },
                "glm-4.7": {
                    "id": "glm-4.7",
                    "name": "GLM 4.7",
                    "family": "glm",
                    "tool_call": True,
                    "cost": {"input": 0.6, "output": 2.2},
                },
                "big-pickle": {
                    "id": "big-pickle",
                    "name": "big pickle",
                    "tool_call": True,
                    "cost": {"input": 0, "output": 0},
                    "limit": {"context": 128000, "output": 16000},
                },
                "old-model": {
                    "id": "old-model",
                    "name": "Old Model",
                    "status": "deprecated",
                    "cost": {"input": 0, "output": 0},
                },
                "mystery": {
                    "id": "mystery",
                    "name": "Mystery",
                },
            },
        },
        "someone-else": {"id": "someone-else", "models": {}},
    }


@pytest.fixture
def feed_document() -> Dict[str, Any]:
    """Fresh copy of the sample metadata document."""
    return make_feed_document()
