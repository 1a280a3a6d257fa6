"""Per-project single-writer locks.

Every check-then-act sequence against a project's ledger runs while holding
that project's lock, so two mutations on the same project never interleave
inside one process. Cross-process safety comes from ``SELECT ... FOR UPDATE``
on the project row and the compare-and-swap updates in the services.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Hashable


class KeyedLockRegistry:
    """Hands out one ``asyncio.Lock`` per key, dropping it once nobody holds or awaits it."""

    def __init__(self) -> None:
        # key -> [lock, holders plus waiters]
        self._entries: dict[Hashable, list] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def _acquire_entry(self, key: Hashable) -> list:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            # Locks bind to the loop they first block on
            self._entries = {}
            self._loop = loop
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        return entry

    def _release_entry(self, key: Hashable, entry: list) -> None:
        entry[1] -= 1
        if entry[1] == 0 and self._entries.get(key) is entry:
            del self._entries[key]

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._acquire_entry(key)
        try:
            async with entry[0]:
                yield
        finally:
            self._release_entry(key, entry)

    def locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry[0].locked()


project_locks = KeyedLockRegistry()

# Keyed by principal; the "first caller becomes admin" check uses a shared key
access_locks = KeyedLockRegistry()
