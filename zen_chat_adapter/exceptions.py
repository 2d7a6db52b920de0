# zen_chat_adapter/exceptions.py
from __future__ import annotations

from typing import Any, Optional


class ZenAdapterError(Exception):
    """Base exception class for the zen_chat_adapter library."""

    pass


class ConfigurationError(ZenAdapterError):
    """Exception raised for configuration errors (e.g., invalid setting values)."""

    pass


class MissingCredentialsError(ConfigurationError):
    """Exception raised when no API key is available for a request."""

    pass


class FetchError(ZenAdapterError):
    """Exception raised when the model metadata feed cannot be retrieved."""

    pass


class ChatError(ZenAdapterError):
    """A classified request failure with best-effort diagnostic context.

    Attributes mirror what could be scraped from the underlying SDK error and
    its cause chain; any of them may be ``None``.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        status_text: Optional[str] = None,
        url: Optional[str] = None,
        request_body: Any = None,
        response_body: Optional[str] = None,
        request_id: Optional[str] = None,
        original_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.status_text = status_text
        self.url = url
        self.request_body = request_body
        self.response_body = response_body
        self.request_id = request_id
        self.original_message = original_message


class UnauthorizedError(ChatError):
    """The backend rejected the configured credential."""

    pass


class ModelNotFoundError(ChatError):
    """The backend does not know the requested model."""

    pass


class GenericChatError(ChatError):
    """Any other request failure; the original message is preserved."""

    pass


class SelfTestError(ZenAdapterError):
    """Exception raised when the tool round-trip self-test fails."""

    pass


class ToolMismatchError(SelfTestError):
    """The model called a tool other than the diagnostic tool."""

    pass


class IterationLimitError(SelfTestError):
    """The round-trip loop did not finish within its iteration budget."""

    pass
