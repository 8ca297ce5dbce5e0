"""Admission state stores.

The admission controller never touches a dict directly; it talks to an
``AdmissionStore``. Concurrency safety lives inside the store: every
read-modify-write for one identifier goes through ``transact``, which runs
under that identifier's lock, so two simultaneous requests from the same
client can never both see the last free slot.

Usage:
    from insights.admission.store import InMemoryAdmissionStore

    store = InMemoryAdmissionStore()
    result = await store.transact("203.0.113.7", mutate)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol, TypeVar

from insights.common.logging import get_logger
from insights.common.schemas import RateLimitState

logger = get_logger("ADMISSION")

T = TypeVar("T")

# mutate(current_state) -> (state_to_store or None to delete, result for caller)
Mutator = Callable[[RateLimitState | None], tuple[RateLimitState | None, T]]


class AdmissionStore(Protocol):
    """Storage contract for per-identifier rate limit state."""

    async def get(self, identifier: str) -> RateLimitState | None: ...

    async def set(self, identifier: str, state: RateLimitState) -> None: ...

    async def delete(self, identifier: str) -> None: ...

    async def transact(self, identifier: str, mutate: Mutator[T]) -> T: ...

    async def sweep(self, now: float) -> int: ...


class InMemoryAdmissionStore:
    """Process-local admission store with one asyncio.Lock per identifier."""

    def __init__(self) -> None:
        self._states: dict[str, RateLimitState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, identifier: str) -> asyncio.Lock:
        lock = self._locks.get(identifier)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[identifier] = lock
        return lock

    async def get(self, identifier: str) -> RateLimitState | None:
        return self._states.get(identifier)

    async def set(self, identifier: str, state: RateLimitState) -> None:
        async with self._lock_for(identifier):
            self._states[identifier] = state

    async def delete(self, identifier: str) -> None:
        async with self._lock_for(identifier):
            self._states.pop(identifier, None)

    async def transact(self, identifier: str, mutate: Mutator[T]) -> T:
        """Apply ``mutate`` to the identifier's state atomically."""
        async with self._lock_for(identifier):
            new_state, result = mutate(self._states.get(identifier))
            if new_state is None:
                self._states.pop(identifier, None)
            else:
                self._states[identifier] = new_state
            return result

    async def sweep(self, now: float) -> int:
        """Drop identifiers whose burst window and daily window have both expired.

        Reads lazily self-expire, so this only bounds memory.
        """
        expired = [
            identifier
            for identifier, state in self._states.items()
            if now >= state.window_reset_at and now >= state.daily_reset_at
        ]
        removed = 0
        for identifier in expired:
            lock = self._locks.get(identifier)
            if lock is not None and lock.locked():
                continue
            self._states.pop(identifier, None)
            self._locks.pop(identifier, None)
            removed += 1

        if removed:
            logger.debug(
                "Swept expired admission entries",
                extra={"data": {"removed": removed, "remaining": len(self._states)}},
            )
        return removed

    def __len__(self) -> int:
        return len(self._states)
