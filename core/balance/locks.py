"""
Per (user, currency) locks

One registry per process, shared by every BalanceEngine instance.
"""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator

from core.types import Currency


class KeyedLockRegistry:
    """asyncio.Lock per (user, currency)

    Multi-key acquisition is always in sorted order so two transfers in
    opposite directions cannot deadlock. A lock lives only while someone
    holds or waits for it; the last one out drops it from the registry.

    Usage:
    ```python
    locks = KeyedLockRegistry()
    async with locks.acquire("user-1", Currency.USD, Currency.CNY):
        ...
    ```
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        # holders + waiters per key
        self._users: dict[tuple[str, str], int] = {}

    def is_locked(self, user_id: str, currency: Currency) -> bool:
        lock = self._locks.get((user_id, currency.value))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def _hold(self, key: tuple[str, str]) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @asynccontextmanager
    async def acquire(self, user_id: str, *currencies: Currency) -> AsyncIterator[None]:
        """Hold the locks of every given currency"""
        ordered = sorted(set(currencies), key=lambda c: c.value)
        async with AsyncExitStack() as stack:
            for currency in ordered:
                await stack.enter_async_context(self._hold((user_id, currency.value)))
            yield

    def __len__(self) -> int:
        return len(self._locks)
