# zen_chat_adapter/__init__.py
import logging
import os
from dotenv import load_dotenv

# Configure basic logging for the library
# Users can customize this further in their application
logging.getLogger(__name__).addHandler(logging.NullHandler())

# Load .env from the working directory so OPENCODE_API_KEY and ZEN_* are visible
try:
    dotenv_path = os.path.join(os.getcwd(), ".env")
    if os.path.exists(dotenv_path):
        load_dotenv(dotenv_path=dotenv_path)
except Exception as e:
    logging.getLogger(__name__).warning(f"Could not load .env file: {e}")


# Expose key components for easy import
from .config import Settings  # noqa: E402
from .content import (  # noqa: E402
    Data,
    Role,
    Text,
    ToolCall,
    ToolDefinition,
    ToolResult,
    Turn,
)
from .credentials import FileCredentialStore, MemoryCredentialStore  # noqa: E402
from .exceptions import (  # noqa: E402
    ChatError,
    ConfigurationError,
    FetchError,
    GenericChatError,
    IterationLimitError,
    MissingCredentialsError,
    ModelNotFoundError,
    SelfTestError,
    ToolMismatchError,
    UnauthorizedError,
    ZenAdapterError,
)
from .models import BackendBinding, CacheConfig, DialectKind, ModelDescriptor  # noqa: E402
from .prompt_cache import PromptCacheAnnotator  # noqa: E402
from .provider import ChatOptions, ZenChatProvider  # noqa: E402
from .registry import ModelRegistry  # noqa: E402
from .self_test import ToolRoundTripDriver, run_self_test  # noqa: E402
from .streaming import StreamCallbacks, StreamingResponseAdapter  # noqa: E402
from .tool_names import NameMap, build_name_map, sanitize_tool_name  # noqa: E402
from .translator import translate, translate_tools  # noqa: E402

__all__ = [
    "Settings",
    "Data",
    "Role",
    "Text",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "Turn",
    "FileCredentialStore",
    "MemoryCredentialStore",
    "ZenAdapterError",
    "ConfigurationError",
    "MissingCredentialsError",
    "FetchError",
    "ChatError",
    "UnauthorizedError",
    "ModelNotFoundError",
    "GenericChatError",
    "SelfTestError",
    "ToolMismatchError",
    "IterationLimitError",
    "BackendBinding",
    "CacheConfig",
    "DialectKind",
    "ModelDescriptor",
    "PromptCacheAnnotator",
    "ChatOptions",
    "ZenChatProvider",
    "ModelRegistry",
    "ToolRoundTripDriver",
    "run_self_test",
    "StreamCallbacks",
    "StreamingResponseAdapter",
    "NameMap",
    "build_name_map",
    "sanitize_tool_name",
    "translate",
    "translate_tools",
]

try:
    from importlib.metadata import version

    __version__ = version("zen-chat-adapter")
except Exception:
    __version__ = "0.0.0-unknown"
