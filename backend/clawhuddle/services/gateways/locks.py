"""Keyed mutual exclusion for gateway lifecycle operations and shared workspace caches."""

from __future__ import annotations

import asyncio
from collections.abc import Hashable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Generic, TypeVar
from uuid import UUID

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_K = TypeVar("_K", bound=Hashable)


class KeyedLockRegistry(Generic[_K]):
    """``asyncio.Lock`` registry, one lock per key.

    Entries are dropped once no task holds or waits on them, so the registry does not grow with
    the number of keys ever touched. Exclusion is per event loop: separate processes do not see
    each other's locks.
    """

    def __init__(self) -> None:
        self._locks: dict[_K, asyncio.Lock] = {}
        self._users: dict[_K, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: _K) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: _K) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]


class MemberLockRegistry(KeyedLockRegistry[UUID]):
    """One lock per member id, held for every lifecycle and pairing operation."""
