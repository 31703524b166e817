# registry.py
"""Script registry adapters: an in-process dict, a directory and a redis hash."""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, Iterable, Optional

import redis

from .errors import RegistryLookupFailure
from .model import ScriptEntry

DEFAULT_SCRIPTS_KEY = "defaultci:scripts"


def _readers_key(scripts_key: str) -> str:
    return f"{scripts_key}:readers"


class InMemoryScriptRegistry:
    """Thread-safe dict-backed registry. Good for tests and single-process use."""

    def __init__(self, scripts: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._entries: Dict[str, ScriptEntry] = {}
        for script_id, content in (scripts or {}).items():
            self.put(script_id, content)

    def put(self, script_id: str, content: str, readers: Optional[Iterable[str]] = None) -> ScriptEntry:
        entry = ScriptEntry(
            script_id=script_id,
            content=content,
            readers=frozenset(readers) if readers is not None else None,
        )
        with self._lock:
            self._entries[script_id] = entry
        return entry

    def remove(self, script_id: str) -> None:
        with self._lock:
            self._entries.pop(script_id, None)

    def lookup(self, script_id: str) -> ScriptEntry:
        with self._lock:
            entry = self._entries.get(script_id)
        if entry is None:
            raise RegistryLookupFailure(script_id)
        return entry

    def __contains__(self, script_id: str) -> bool:
        with self._lock:
            return script_id in self._entries

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)


class DirectoryScriptRegistry:
    """Registry over a directory: the script id is the path relative to it."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def lookup(self, script_id: str) -> ScriptEntry:
        base = self.root.resolve()
        path = (base / script_id).resolve()
        if base not in path.parents:
            raise RegistryLookupFailure(script_id, reason="is outside the script directory")
        if not path.is_file():
            raise RegistryLookupFailure(script_id)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise RegistryLookupFailure(script_id, reason=f"unreadable ({e})") from e
        return ScriptEntry(script_id=script_id, content=content)


class RedisScriptRegistry:
    """
    Registry backed by a redis hash: field = script id, value = script text.

    Readers are kept in a sibling hash as comma-separated caller names; a
    missing field there means the script is readable by everybody.
    """

    def __init__(self, client: "redis.Redis", scripts_key: str = DEFAULT_SCRIPTS_KEY):
        self.client = client
        self.scripts_key = scripts_key

    @classmethod
    def from_url(cls, url: str, scripts_key: str = DEFAULT_SCRIPTS_KEY) -> RedisScriptRegistry:
        return cls(redis.Redis.from_url(url, decode_responses=True), scripts_key)

    def put(self, script_id: str, content: str, readers: Optional[Iterable[str]] = None) -> None:
        pipe = self.client.pipeline()
        pipe.hset(self.scripts_key, script_id, content)
        if readers is None:
            pipe.hdel(_readers_key(self.scripts_key), script_id)
        else:
            pipe.hset(_readers_key(self.scripts_key), script_id, ",".join(sorted(readers)))
        pipe.execute()

    def lookup(self, script_id: str) -> ScriptEntry:
        try:
            content = self.client.hget(self.scripts_key, script_id)
            raw_readers = self.client.hget(_readers_key(self.scripts_key), script_id)
        except redis.RedisError as e:
            raise RegistryLookupFailure(script_id, reason=f"unreadable ({e})") from e

        if content is None:
            raise RegistryLookupFailure(script_id)

        readers = None
        if raw_readers is not None:
            readers = frozenset(r for r in raw_readers.split(",") if r)
        return ScriptEntry(script_id=script_id, content=content, readers=readers)
