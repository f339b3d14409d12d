# orchestrator/orchestrator_manager.py
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

from cachetools import LRUCache, TTLCache

from room_doc_chat.graph.orchestrator import SessionChain
from room_doc_chat.logger import GLOBAL_LOGGER as log

ChainFactory = Callable[[str], Awaitable[SessionChain]]


class _BuildSlot:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class _Checkout:
    __slots__ = ("chain", "turns")

    def __init__(self, chain: SessionChain):
        self.chain = chain
        self.turns = 0


class SessionChainCache:
    """
    Keeps at most one SessionChain per session key (room:<id> or file:<name>).

    - chains are built lazily by `factory` on first use
    - concurrent first requests for the same key share a single construction
    - bounded LRU, optionally with a TTL, so idle sessions are released
    - a chain checked out by a turn stays reachable even if the LRU/TTL
      drops it, so queued turns keep serializing on the same turn_lock
    """

    def __init__(
        self,
        factory: ChainFactory,
        maxsize: int = 500,
        ttl: Optional[float] = 3600,
    ):
        self.factory = factory
        if ttl:
            self.cache = TTLCache(maxsize=maxsize, ttl=ttl)
        else:
            self.cache = LRUCache(maxsize=maxsize)

        # construction slot per key that is currently being built
        self._building: Dict[str, _BuildSlot] = {}
        # chains with turns running or queued on them
        self._checked_out: Dict[str, _Checkout] = {}

    def _lookup(self, key: str) -> Optional[SessionChain]:
        chain = self.cache.get(key)
        if chain is not None:
            return chain

        entry = self._checked_out.get(key)
        if entry is None:
            return None

        log.info("Restoring busy session chain dropped by the cache | key=%s", key)
        self.cache[key] = entry.chain
        return entry.chain

    def get(self, key: str) -> Optional[SessionChain]:
        return self._lookup(key)

    async def get_or_create(self, key: str) -> SessionChain:
        """
        Get or lazily create the chain for a session key.
        """
        chain = self._lookup(key)
        if chain is not None:
            log.debug("Reusing cached session chain | key=%s", key)
            return chain

        slot = self._building.setdefault(key, _BuildSlot())
        slot.users += 1
        try:
            async with slot.lock:
                # another caller may have finished building while we waited
                chain = self._lookup(key)
                if chain is None:
                    log.info("Creating new session chain | key=%s", key)
                    chain = await self.factory(key)
                    self.cache[key] = chain
                return chain
        finally:
            slot.users -= 1
            if slot.users == 0:
                self._building.pop(key, None)

    @asynccontextmanager
    async def checkout(self, key: str) -> AsyncIterator[SessionChain]:
        """Hold the chain for one turn; it cannot be lost to eviction meanwhile."""
        chain = await self.get_or_create(key)
        entry = self._checked_out.get(key)
        if entry is None or entry.chain is not chain:
            entry = self._checked_out[key] = _Checkout(chain)
        entry.turns += 1
        try:
            yield chain
        finally:
            entry.turns -= 1
            if entry.turns == 0 and self._checked_out.get(key) is entry:
                del self._checked_out[key]

    def evict(self, key: str) -> bool:
        """Drop an idle chain. A checked-out chain stays until its turns finish."""
        removed = self.cache.pop(key, None) is not None
        if removed:
            log.info("Session chain evicted | key=%s", key)
        return removed

    def __contains__(self, key: str) -> bool:
        return key in self.cache or key in self._checked_out

    def __len__(self) -> int:
        return len(self.cache)
