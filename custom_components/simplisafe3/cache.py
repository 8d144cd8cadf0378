"""Short-lived response cache that collapses concurrent callers per key."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from functools import partial
import logging
from typing import Any

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
    """A single in-flight or settled request plus its scheduled eviction."""

    task: asyncio.Task[Any]
    ttl: float
    evict_handle: asyncio.TimerHandle | None = None


class RequestCache:
    """Memoise request outcomes per key for ``ttl`` seconds after completion.

    Every caller asking for a key while an entry is live awaits the same task,
    so the upstream sees at most one request per key at a time. Errors are
    cached exactly like successes and expire on the same schedule.
    A non-positive ``ttl`` only shares in-flight requests; the entry is
    dropped as soon as the request settles.
    """

    def __init__(
        self,
        *,
        ttl: float,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialise an empty cache bound to ``loop``."""

        self._ttl = ttl
        self._loop = loop or asyncio.get_running_loop()
        self._entries: dict[Hashable, CacheEntry] = {}

    def __contains__(self, key: Hashable) -> bool:
        """Return True when ``key`` has a live entry."""

        return key in self._entries

    def __len__(self) -> int:
        """Return the number of live entries."""

        return len(self._entries)

    async def async_get(
        self,
        key: Hashable,
        factory: Callable[[], Awaitable[Any]],
        *,
        force_refresh: bool = False,
        ttl: float | None = None,
    ) -> Any:
        """Return the cached outcome for ``key``, issuing ``factory`` if needed."""

        entry = self._entries.get(key)
        if entry is None or force_refresh:
            entry = self._start(key, factory, self._ttl if ttl is None else ttl)
        else:
            _LOGGER.debug("Cache hit for %s", key)
        return await asyncio.shield(entry.task)

    def invalidate(self, key: Hashable) -> None:
        """Drop ``key`` so the next caller issues a fresh request."""

        entry = self._entries.pop(key, None)
        if entry is not None and entry.evict_handle is not None:
            entry.evict_handle.cancel()

    def clear(self) -> None:
        """Cancel pending evictions and in-flight requests."""

        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            if entry.evict_handle is not None:
                entry.evict_handle.cancel()
            if not entry.task.done():
                entry.task.cancel()

    def _start(
        self,
        key: Hashable,
        factory: Callable[[], Awaitable[Any]],
        ttl: float,
    ) -> CacheEntry:
        """Create the shared task for ``key`` and register it immediately."""

        previous = self._entries.get(key)
        if previous is not None and previous.evict_handle is not None:
            previous.evict_handle.cancel()

        async def _run() -> Any:
            return await factory()

        task = self._loop.create_task(_run())
        entry = CacheEntry(task=task, ttl=ttl)
        self._entries[key] = entry
        task.add_done_callback(partial(self._on_done, key, entry))
        return entry

    def _on_done(self, key: Hashable, entry: CacheEntry, task: asyncio.Task[Any]) -> None:
        """Schedule eviction once the request has settled."""

        if task.cancelled() or entry.ttl <= 0:
            self._evict(key, entry)
            return
        if task.exception() is not None:
            _LOGGER.debug("Cached request for %s failed; expiring in %.1fs", key, entry.ttl)
        if self._entries.get(key) is not entry:
            return
        entry.evict_handle = self._loop.call_later(
            entry.ttl, partial(self._evict, key, entry)
        )

    def _evict(self, key: Hashable, entry: CacheEntry) -> None:
        """Remove ``entry`` unless a newer request replaced it."""

        if self._entries.get(key) is entry:
            del self._entries[key]


__all__ = ["CacheEntry", "RequestCache"]
