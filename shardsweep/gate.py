"""
TransferGate: the one piece of mutable state shared between the consistency
checker and the transfer coordinator.

The coordinator only passes through the gate before starting a transfer
(acquire, then release straight away). The checker holds it from its first
failed check until its retry loop ends, which stops new transfers from
starting while it waits for the cluster to settle. In-flight transfers are
not affected.
"""

import asyncio
from typing import Optional


class TransferGate:
    """Mutual exclusion between starting transfers and investigating inconsistencies."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @property
    def held(self) -> bool:
        return self._lock.locked()

    async def acquire(self) -> None:
        await self._lock.acquire()

    def release(self) -> None:
        self._lock.release()

    async def pass_through(self) -> None:
        """Wait until the gate is free, without keeping it."""
        async with self._lock:
            pass

    async def __aenter__(self) -> "TransferGate":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def deferred_hold(self) -> "GateHold":
        """A hold that only takes the gate once ``engage`` is called."""
        return GateHold(self)


class GateHold:
    """
    Loop-scoped hold on a ``TransferGate``.

    Entering the context does nothing; ``engage`` acquires the gate at most
    once; leaving the context releases it only if it was engaged. A loop that
    never calls ``engage`` never touches the gate.
    """

    def __init__(self, gate: TransferGate):
        self._gate = gate
        self._engaged = False

    @property
    def engaged(self) -> bool:
        return self._engaged

    async def engage(self) -> None:
        if not self._engaged:
            await self._gate.acquire()
            self._engaged = True

    def release(self) -> None:
        if self._engaged:
            self._engaged = False
            self._gate.release()

    async def __aenter__(self) -> "GateHold":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> Optional[bool]:
        self.release()
        return None
