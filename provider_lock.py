"""
Per-provider mutual exclusion.

A provider's automated browser session stands in for one human shopper.
Two operations driving it at once would corrupt in-page state (a search
navigating away mid-checkout) and look nothing like a person, so every
operation for a provider runs under that provider's lock.  Different
providers do not block each other.

``asyncio.Lock`` wakes waiters in FIFO order, which gives callers a fair
queue.  The lock is in-process only; the orchestrator owns the browser for
the whole operation inside one process, so nothing wider is needed.

``ProviderLock`` is an injectable object rather than module state so tests
(and a second provider integration) can use their own instance.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderLock:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def is_locked(self, provider: str) -> bool:
        lock = self._locks.get(provider)
        return bool(lock and lock.locked())

    def waiting(self, provider: str) -> int:
        """Holders plus waiters currently queued on *provider*."""
        return self._users.get(provider, 0)

    async def acquire(self, provider: str) -> None:
        lock = self._locks.setdefault(provider, asyncio.Lock())
        self._users[provider] = self._users.get(provider, 0) + 1
        if lock.locked():
            logger.info("[%s] Waiting for provider lock (%d queued)",
                        provider, self._users[provider] - 1)
        try:
            await lock.acquire()
        except BaseException:
            self._forget(provider)
            raise
        logger.debug("[%s] Provider lock acquired", provider)

    def release(self, provider: str) -> None:
        lock = self._locks[provider]
        lock.release()
        self._forget(provider)
        logger.debug("[%s] Provider lock released", provider)

    def _forget(self, provider: str) -> None:
        remaining = self._users.get(provider, 1) - 1
        if remaining <= 0:
            self._users.pop(provider, None)
            self._locks.pop(provider, None)
        else:
            self._users[provider] = remaining

    @asynccontextmanager
    async def hold(self, provider: str) -> AsyncIterator[None]:
        await self.acquire(provider)
        try:
            yield
        finally:
            self.release(provider)

    async def run(self, provider: str, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        async with self.hold(provider):
            return await fn(*args, **kwargs)


# Process-wide default used by the CLI and by stores built without an
# explicit lock.
DEFAULT_PROVIDER_LOCK = ProviderLock()


async def with_provider_lock(
    provider: str,
    fn: Callable[[], Awaitable[T]],
    *,
    lock: ProviderLock | None = None,
) -> T:
    """Run ``await fn()`` while holding *provider*'s lock.

    A second concurrent call for the same provider does not start until the
    first has finished, whether it returned or raised.
    """
    return await (lock or DEFAULT_PROVIDER_LOCK).run(provider, fn)
