"""Key-value backing stores for the track cache.

Async get/set/delete by key, multi-get, multi-delete and prefix listing.
Single-key operations are atomic; there are no transactions. Failures are
raised as CacheError so the cache layer can absorb them in one place.
"""
import json
from pathlib import Path
from typing import Iterable, Optional

from .errors import CacheError


class KeyValueStore:
    """Interface. Values are strings (the cache stores JSON text)."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str):
        raise NotImplementedError

    async def delete(self, key: str):
        raise NotImplementedError

    async def keys(self, prefix: str = "") -> list[str]:
        raise NotImplementedError

    async def multi_get(self, keys: Iterable[str]) -> list[tuple[str, Optional[str]]]:
        return [(k, await self.get(k)) for k in keys]

    async def multi_delete(self, keys: Iterable[str]):
        for k in keys:
            await self.delete(k)


class MemoryStore(KeyValueStore):
    def __init__(self, data: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(data or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str):
        self.data[key] = value

    async def delete(self, key: str):
        self.data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self.data if k.startswith(prefix)]


class JsonFileStore(KeyValueStore):
    """All keys in one JSON document. Every write is tmp-then-replace."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            raise CacheError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise CacheError(f"{self.path} is not a JSON object")
        return data

    def _save(self, data: dict):
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2))
            tmp.replace(self.path)
        except OSError as e:
            raise CacheError(f"Failed to write {self.path}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str):
        data = self._load()
        data[key] = value
        self._save(data)

    async def delete(self, key: str):
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._load() if k.startswith(prefix)]

    async def multi_get(self, keys: Iterable[str]) -> list[tuple[str, Optional[str]]]:
        data = self._load()
        return [(k, data[k] if isinstance(data.get(k), str) else None) for k in keys]

    async def multi_delete(self, keys: Iterable[str]):
        data = self._load()
        removed = [k for k in keys if data.pop(k, None) is not None]
        if removed:
            self._save(data)
