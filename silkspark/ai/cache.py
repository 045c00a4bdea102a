"""Response cache for the interpretation gateway.

Entries are JSON-serialized AIResponse objects keyed by content-addressed
keys. TTL and the size bound are enforced lazily: expired entries are dropped
when read or on the next write, and the oldest entry is evicted when a write
would exceed the bound.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from datetime import date
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Tuple

from pydantic import BaseModel, ValidationError

from silkspark.ai.constants import CACHE_MAX_SIZE, CACHE_TTL_SECONDS, REPORT_PREFIX
from silkspark.ai.models import AIResponse

log = logging.getLogger("silkspark.ai.cache")


class CacheEntry(BaseModel):
    key: str
    value: AIResponse
    stored_at: float


class CacheStore(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, entry: Dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...

    def write(self, key: str, entry: Dict[str, Any], evict: Iterable[str] = ()) -> None: ...

    def items(self) -> Iterable[Tuple[str, Dict[str, Any]]]: ...

    def clear(self) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._data.get(key)

    def set(self, key: str, entry: Dict[str, Any]) -> None:
        self._data[key] = entry

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def write(self, key: str, entry: Dict[str, Any], evict: Iterable[str] = ()) -> None:
        for k in evict:
            self._data.pop(k, None)
        self._data[key] = entry

    def items(self) -> Iterable[Tuple[str, Dict[str, Any]]]:
        return list(self._data.items())

    def clear(self) -> None:
        self._data.clear()


class JsonFileStore:
    """All entries in one JSON file, rewritten on every mutation."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._data: Dict[str, Dict[str, Any]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("discarding unreadable cache file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, ensure_ascii=False)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._data.get(key)

    def set(self, key: str, entry: Dict[str, Any]) -> None:
        self._data[key] = entry
        self._save()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._save()

    def write(self, key: str, entry: Dict[str, Any], evict: Iterable[str] = ()) -> None:
        """Drop the evicted keys and store the entry with a single rewrite."""
        for k in evict:
            self._data.pop(k, None)
        self._data[key] = entry
        self._save()

    def items(self) -> Iterable[Tuple[str, Dict[str, Any]]]:
        return list(self._data.items())

    def clear(self) -> None:
        self._data = {}
        self._save()


class ResponseCache:
    def __init__(
        self,
        store: Optional[CacheStore] = None,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_size: int = CACHE_MAX_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store if store is not None else MemoryStore()
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at > self.ttl_seconds

    def _read(self, key: str, raw: Dict[str, Any]) -> Optional[CacheEntry]:
        try:
            return CacheEntry.model_validate(raw)
        except ValidationError:
            log.warning("dropping malformed cache entry %s", key)
            self.store.delete(key)
            return None

    def get(self, key: str) -> Optional[AIResponse]:
        with self._lock:
            raw = self.store.get(key)
            if raw is None:
                return None
            entry = self._read(key, raw)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                self.store.delete(key)
                return None
            return entry.value

    def set(self, key: str, value: AIResponse) -> None:
        with self._lock:
            now = self._clock()
            live = []
            evict = []
            for k, raw in self.store.items():
                try:
                    entry = CacheEntry.model_validate(raw)
                except ValidationError:
                    log.warning("dropping malformed cache entry %s", k)
                    evict.append(k)
                    continue
                if self._expired(entry, now):
                    evict.append(k)
                elif k != key:
                    live.append((entry.stored_at, k))
            live.sort()
            while live and len(live) >= self.max_size:
                _, oldest = live.pop(0)
                evict.append(oldest)
                log.debug("evicted cache entry %s", oldest)
            entry = CacheEntry(key=key, value=value, stored_at=now)
            self.store.write(key, entry.model_dump(mode="json"), evict=evict)

    def clear(self) -> None:
        with self._lock:
            self.store.clear()

    def __len__(self) -> int:
        return len(list(self.store.items()))


class ReportCache(ResponseCache):
    """Full birth-chart reports, one per user per calendar day."""

    def __init__(self, store: Optional[CacheStore] = None, prefix: str = REPORT_PREFIX, **kwargs: Any) -> None:
        super().__init__(store, **kwargs)
        self.prefix = prefix

    def report_key(self, user_id: str, on: date) -> str:
        return f"{self.prefix}_{user_id}_{on.isoformat()}"

    def get_report(self, user_id: str, on: date) -> Optional[AIResponse]:
        return self.get(self.report_key(user_id, on))

    def set_report(self, user_id: str, on: date, value: AIResponse) -> None:
        self.set(self.report_key(user_id, on), value)
