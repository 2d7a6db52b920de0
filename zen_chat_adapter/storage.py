"""Small key/value stores for state persisted per workspace or globally."""

from __future__ import annotations

import abc
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(abc.ABC):
    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Any]: ...

    @abc.abstractmethod
    async def set(self, key: str, value: Any) -> None: ...


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileKeyValueStore(KeyValueStore):
    """A JSON object on disk, re-read on every access.

    Concurrent writers are not coordinated; the last write wins.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    async def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    async def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)


@dataclass
class ScopedStores:
    """The two persistence scopes a host offers."""

    workspace: KeyValueStore = field(default_factory=MemoryKeyValueStore)
    global_: KeyValueStore = field(default_factory=MemoryKeyValueStore)

    def for_scope(self, scope: str) -> Optional[KeyValueStore]:
        if scope == "workspace":
            return self.workspace
        if scope == "global":
            return self.global_
        return None
