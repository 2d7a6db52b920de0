#!/usr/bin/env python3
"""
Script to list the OpenCode Zen models visible with the current API key.
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to Python path so we can import zen_chat_adapter
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables from .env file
from dotenv import load_dotenv

load_dotenv(project_root / ".env")

from zen_chat_adapter import MemoryCredentialStore, ZenChatProvider


async def main():
    """List available OpenCode Zen models."""
    try:
        # Key comes from OPENCODE_API_KEY; without one only free models are listed
        provider = ZenChatProvider(MemoryCredentialStore(from_env=True))

        print("Fetching available OpenCode Zen models...")
        models = await provider.list_models()

        if models:
            print(f"\nFound {len(models)} models:")
            for model in models:
                print(f"  - {model.id}: {model.name} [{model.tooltip}]")
        else:
            print("No models found.")

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
