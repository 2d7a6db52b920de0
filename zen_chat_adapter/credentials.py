"""API key storage."""

from __future__ import annotations

import abc
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

API_ENV_VAR = "OPENCODE_API_KEY"


class CredentialStore(abc.ABC):
    """Where the user's API key lives between requests."""

    @abc.abstractmethod
    async def get(self) -> Optional[str]: ...

    @abc.abstractmethod
    async def set(self, secret: str) -> None: ...

    @abc.abstractmethod
    async def clear(self) -> None: ...


class MemoryCredentialStore(CredentialStore):
    """Process-local store, optionally seeded from ``OPENCODE_API_KEY``."""

    def __init__(self, secret: Optional[str] = None, *, from_env: bool = False) -> None:
        if secret is None and from_env:
            secret = os.environ.get(API_ENV_VAR) or None
        self._secret = secret

    async def get(self) -> Optional[str]:
        return self._secret

    async def set(self, secret: str) -> None:
        self._secret = secret

    async def clear(self) -> None:
        self._secret = None


class FileCredentialStore(CredentialStore):
    """Stores the key in a single file readable only by the current user."""

    def __init__(self, path: str) -> None:
        self.path = path

    async def get(self) -> Optional[str]:
        try:
            with open(self.path, "r") as f:
                key = f.read().strip()
        except FileNotFoundError:
            return None
        return key or None

    async def set(self, secret: str) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(secret.strip())
        logger.info("API key saved to %s", self.path)

    async def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
