"""
Nonce management for EOAs and multisig wallets.

Features:
- Per-(chain, address) asyncio locks
- Reservation on top of the on-chain nonce so concurrent or sequential
  builds never hand out the same nonce twice
- Release for error recovery (failed submission, abandoned build)

The same bookkeeping serves both kinds of nonce: an EOA's transaction
count and a Safe's ``nonce()``. Callers pass a coroutine that reads the
on-chain value.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

OnChainNonce = Callable[[], Awaitable[int]]


class NonceManager:
    """
    Hands out nonces per (chain, address).

    SECURITY: Proper nonce management prevents:
    - Two transactions claiming the same slot (one silently replaced)
    - Signatures collected against a nonce another proposal already owns
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._reserved: Dict[str, Set[int]] = {}
        self._last_onchain: Dict[str, int] = {}

    @staticmethod
    def _key(chain_id: str, address: str) -> str:
        return f"{chain_id}:{address.lower()}"

    def lock(self, chain_id: str, address: str) -> asyncio.Lock:
        """Get or create the lock for an address on a chain.

        Single-threaded asyncio: the check-then-insert cannot interleave.
        """
        key = self._key(chain_id, address)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def reserve_nonce_locked(
        self,
        chain_id: str,
        address: str,
        onchain_nonce: OnChainNonce,
    ) -> int:
        """
        Reserve the next nonce. Caller MUST already hold ``lock(chain_id, address)``.

        Returns:
            The lowest unreserved nonce at or above the on-chain nonce.
        """
        key = self._key(chain_id, address)
        current = await onchain_nonce()
        self._last_onchain[key] = current

        reserved = self._reserved.setdefault(key, set())
        # Reservations below the on-chain nonce have been consumed.
        reserved.difference_update({n for n in reserved if n < current})

        nonce = current
        while nonce in reserved:
            nonce += 1
        reserved.add(nonce)
        logger.debug(f"Reserved nonce {nonce} for {address} on {chain_id} (on-chain {current})")
        return nonce

    async def reserve_nonce(
        self,
        chain_id: str,
        address: str,
        onchain_nonce: OnChainNonce,
    ) -> int:
        """Reserve the next nonce, taking the per-address lock."""
        async with self.lock(chain_id, address):
            return await self.reserve_nonce_locked(chain_id, address, onchain_nonce)

    def mark_reserved(self, chain_id: str, address: str, nonce: int) -> None:
        """Record an explicitly chosen nonce so automatic reservation skips it."""
        self._reserved.setdefault(self._key(chain_id, address), set()).add(nonce)

    def release_nonce(self, chain_id: str, address: str, nonce: int) -> None:
        """Release a reserved nonce (for error recovery)."""
        reserved = self._reserved.get(self._key(chain_id, address))
        if reserved is not None:
            reserved.discard(nonce)
        logger.info(f"Released nonce {nonce} for {address} on {chain_id}")

    def reserved_nonces(self, chain_id: str, address: str) -> Set[int]:
        return set(self._reserved.get(self._key(chain_id, address), set()))

    def last_onchain_nonce(self, chain_id: str, address: str) -> Optional[int]:
        return self._last_onchain.get(self._key(chain_id, address))

    def clear(self, chain_id: Optional[str] = None) -> None:
        """Drop reservations for one chain or everything."""
        if chain_id is None:
            self._reserved.clear()
            self._last_onchain.clear()
            return
        prefix = f"{chain_id}:"
        for store in (self._reserved, self._last_onchain):
            for key in [k for k in store if k.startswith(prefix)]:
                del store[key]
