from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from flask import Flask, current_app

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Entry:
    value: Any
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)


class TagCache:
    """
    Process-local memo for read queries.

    Each entry carries a TTL and a set of tags; invalidating a tag drops every
    entry that carries it. Values must be plain snapshots (dataclasses, lists),
    never ORM instances bound to a session.
    """

    def __init__(self, default_ttl: int = 60, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}
        self._by_tag: dict[str, set[Hashable]] = {}
        # Invalidation counts per tag, only kept while some loader is running.
        self._tag_versions: dict[str, int] = {}
        self._loading = 0
        self._next_sweep = clock() + default_ttl

    def get_or_set(
        self,
        key: Hashable,
        loader: Callable[[], T],
        *,
        tags: Iterable[str] = (),
        ttl: int | None = None,
    ) -> T:
        tag_set = frozenset(tags)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at > self._clock():
                return entry.value
            seen = {tag: self._tag_versions.get(tag, 0) for tag in tag_set}
            self._loading += 1

        # Load outside the lock; two concurrent misses both hit the database.
        try:
            value = loader()
        except BaseException:
            with self._lock:
                self._finish_load()
            raise

        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            stale = any(self._tag_versions.get(tag, 0) != v for tag, v in seen.items())
            self._finish_load()
            if stale:
                # A write revalidated one of our tags mid-load; the value may predate it.
                logger.debug("Not caching %r: invalidated while loading", key)
                return value
            if lifetime <= 0:
                return value
            now = self._clock()
            self._drop(key)
            self._entries[key] = _Entry(value=value, expires_at=now + lifetime, tags=tag_set)
            for tag in tag_set:
                self._by_tag.setdefault(tag, set()).add(key)
            if now >= self._next_sweep:
                self._sweep(now)
        return value

    def invalidate(self, tag: str) -> int:
        with self._lock:
            if self._loading:
                self._tag_versions[tag] = self._tag_versions.get(tag, 0) + 1
            keys = self._by_tag.pop(tag, set())
            for key in keys:
                self._drop(key)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._by_tag.clear()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.expires_at > self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _finish_load(self) -> None:
        self._loading -= 1
        if not self._loading:
            self._tag_versions.clear()

    def _sweep(self, now: float) -> None:
        for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
            self._drop(key)
        self._next_sweep = now + max(self.default_ttl, 1)

    def _drop(self, key: Hashable) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._by_tag.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._by_tag[tag]


def init_cache(app: Flask) -> None:
    app.extensions["tag_cache"] = TagCache(default_ttl=int(app.config.get("CACHE_TTL_SECONDS", 60)))


def tag_cache(app: Flask | None = None) -> TagCache:
    app = app or current_app
    return app.extensions["tag_cache"]


def cached(key: Hashable, loader: Callable[[], T], *, tags: Iterable[str], ttl: int | None = None) -> T:
    return tag_cache().get_or_set(key, loader, tags=tags, ttl=ttl)


def revalidate_tag(tag: str) -> None:
    dropped = tag_cache().invalidate(tag)
    logger.debug("revalidate_tag %s (dropped=%d)", tag, dropped)
