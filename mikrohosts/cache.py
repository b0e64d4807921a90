"""Byte caches with a time-to-live: in memory and in redis."""

from __future__ import annotations

import hashlib
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class CacheError(Exception):
    """Base class for cache errors."""


class EmptyKeyError(CacheError, ValueError):
    """An empty key was used."""

    def __init__(self, message: str = "empty key") -> None:
        super().__init__(message)


class EmptyDataError(CacheError, ValueError):
    """No data was provided."""

    def __init__(self, message: str = "empty data") -> None:
        super().__init__(message)


class CacheClosedError(CacheError):
    """The cache was closed."""

    def __init__(self, message: str = "cache closed") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class CacheHit:
    """A found cache value and the seconds it has left to live."""

    data: bytes
    ttl: float


class Cacher(ABC):
    """A byte cache whose values expire after a time-to-live."""

    @property
    @abstractmethod
    def ttl(self) -> float:
        """Time-to-live of stored values, in seconds."""

    @abstractmethod
    def get(self, key: str) -> CacheHit | None:
        """Return the value stored under ``key``, or None when there is none."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the value under ``key``; tell whether there was one."""


@dataclass
class _Item:
    data: bytes
    expires_at: float


class InMemoryCache(Cacher):
    """In-memory cache; a background thread drops expired values."""

    def __init__(self, ttl: float, cleanup_interval: float = 1.0) -> None:
        self._ttl = ttl
        self._interval = cleanup_interval
        self._lock = threading.Lock()
        self._storage: dict[str, _Item] = {}
        self._closed = threading.Event()
        self._cleaner = threading.Thread(
            target=self._cleanup, name="inmemory-cache-cleanup", daemon=True
        )
        self._cleaner.start()

    def _cleanup(self) -> None:
        while not self._closed.wait(self._interval):
            now = time.monotonic()
            with self._lock:
                expired = [key for key, item in self._storage.items() if now > item.expires_at]
                for key in expired:
                    del self._storage[key]
        with self._lock:
            self._storage.clear()

    def _ensure_open(self) -> None:
        if self._closed.is_set():
            raise CacheClosedError()

    @property
    def ttl(self) -> float:
        return self._ttl

    def close(self) -> None:
        """Close the cache and drop all of its values."""
        with self._lock:
            if self._closed.is_set():
                raise CacheClosedError()
            self._closed.set()
        if threading.current_thread() is not self._cleaner:
            self._cleaner.join()

    def get(self, key: str) -> CacheHit | None:
        self._ensure_open()
        if not key:
            raise EmptyKeyError()
        with self._lock:
            item = self._storage.get(key)
            if item is None:
                return None
            now = time.monotonic()
            if now > item.expires_at:
                del self._storage[key]
                return None
        return CacheHit(data=item.data, ttl=item.expires_at - now)

    def put(self, key: str, data: bytes) -> None:
        self._ensure_open()
        if not key:
            raise EmptyKeyError()
        if not data:
            raise EmptyDataError()
        item = _Item(data=bytes(data), expires_at=time.monotonic() + self._ttl)
        with self._lock:
            self._storage[key] = item

    def delete(self, key: str) -> bool:
        self._ensure_open()
        if not key:
            raise EmptyKeyError()
        with self._lock:
            return self._storage.pop(key, None) is not None

    def __enter__(self) -> InMemoryCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self._closed.is_set():
            self.close()


class RedisCache(Cacher):
    """Cache stored in redis; keys are hashed into ``cache:<md5>``."""

    def __init__(self, client: Any, ttl: float) -> None:
        self._client = client
        self._ttl = ttl

    @staticmethod
    def _key(key: str) -> str:
        return "cache:" + hashlib.md5(key.encode("utf-8")).hexdigest()  # noqa: S324

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> CacheHit | None:
        if not key:
            raise EmptyKeyError()
        name = self._key(key)
        data = self._client.get(name)
        if data is None:
            return None
        remaining_ms = self._client.pttl(name)
        ttl = remaining_ms / 1000 if remaining_ms and remaining_ms > 0 else 0.0
        return CacheHit(data=bytes(data), ttl=ttl)

    def put(self, key: str, data: bytes) -> None:
        if not key:
            raise EmptyKeyError()
        if not data:
            raise EmptyDataError()
        expire_ms = int(self._ttl * 1000)
        self._client.set(self._key(key), bytes(data), px=expire_ms if expire_ms > 0 else None)

    def delete(self, key: str) -> bool:
        if not key:
            raise EmptyKeyError()
        return self._client.delete(self._key(key)) > 0