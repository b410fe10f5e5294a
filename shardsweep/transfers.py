"""
Fault injection: background shard transfers and optimizer restarts.

The transfer coordinator keeps moving a shard between random node pairs for
as long as the run lasts. Each iteration moves through
``IDLE -> STARTING -> IN_FLIGHT -> IDLE``:
- STARTING: pick source, destination and method, resolve peer IDs, pass
  the TransferGate, request the transfer
- IN_FLIGHT: poll the source until it reports one transfer, then none

A rejected transfer request is an expected race (the shard may already be
moving); the coordinator waits for the source to go quiet and starts over.
A poll that exceeds its wall-clock bound means the cluster is stuck and is
fatal.
"""

import asyncio
import random
from enum import Enum
from typing import Optional, Sequence

from shardsweep.config import HarnessConfig
from shardsweep.errors import RemoteError
from shardsweep.gate import TransferGate
from shardsweep.logging import get_logger
from shardsweep.nodes import Node, choose_node, choose_pair
from shardsweep.retry import retry_call, wait_for_transfer_count

logger = get_logger(__name__)


class TransferState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    IN_FLIGHT = "in_flight"


class TransferCoordinator:
    """Background loop that keeps replicating one shard between random nodes."""

    def __init__(self, nodes: Sequence[Node], gate: TransferGate, config: HarnessConfig,
                 rng: Optional[random.Random] = None):
        self.nodes = list(nodes)
        self.gate = gate
        self.config = config
        self.rng = rng or random.Random(config.seed)
        self.state = TransferState.IDLE
        self.completed = 0
        self.rejected = 0

    async def _peer_id(self, node: Node) -> int:
        return await retry_call(
            lambda: node.resolve_peer_id(self.config.collection),
            attempts=self.config.update_retries,
            delay=self.config.update_retry_interval,
            description="get collection cluster info",
            node=node.name,
        )

    async def _wait_for_transfer_count(self, node: Node, count: int) -> None:
        await wait_for_transfer_count(
            node,
            self.config.collection,
            count,
            timeout=self.config.poll_max,
            interval=self.config.poll_interval,
            attempts=self.config.update_retries,
            retry_interval=self.config.update_retry_interval,
        )

    async def step(self) -> bool:
        """
        Run one transfer iteration.

        Returns:
            True if a transfer was started and observed to complete, False if
            the request was rejected

        Raises:
            PollTimeoutError: the transfer did not start or finish in time
            RetryExhaustedError: topology queries kept failing
        """
        self.state = TransferState.STARTING
        shard_id = self.config.shard_id
        source, destination = choose_pair(self.nodes, self.rng)
        method = self.rng.choice(self.config.transfer_methods)

        from_peer = await self._peer_id(source)
        to_peer = await self._peer_id(destination)

        # Don't start new transfers while the checker is waiting on an inconsistency
        await self.gate.pass_through()

        logger.info(f"Transfer {from_peer}:{shard_id} -> {to_peer}:{shard_id} ({method.value})")

        try:
            await source.handle.request_shard_transfer(
                self.config.collection, shard_id, from_peer, to_peer, method
            )
        except RemoteError as e:
            logger.info(f"Failed to start shard transfer: {e}")
            self.rejected += 1
            await self._wait_for_transfer_count(source, 0)
            self.state = TransferState.IDLE
            return False

        self.state = TransferState.IN_FLIGHT
        await self._wait_for_transfer_count(source, 1)
        await self._wait_for_transfer_count(source, 0)

        logger.info(f"Transfer {from_peer}:{shard_id} -> {to_peer}:{shard_id} finished")
        self.completed += 1
        self.state = TransferState.IDLE
        return True

    async def run(self, start_after: Optional[asyncio.Event] = None,
                  iterations: Optional[int] = None) -> None:
        """
        Loop forever (or ``iterations`` times) injecting transfers.

        Args:
            start_after: Wait for this event, then ``transfer_startup_delay``, before the first transfer
            iterations: Stop after this many iterations; tests only
        """
        if len(self.nodes) < 2:
            logger.info("Less than two nodes, not running shard transfers")
            return

        if start_after is not None:
            await start_after.wait()
        await asyncio.sleep(self.config.transfer_startup_delay)

        done = 0
        while iterations is None or done < iterations:
            await self.step()
            done += 1


class OptimizerCanceller:
    """
    Background loop that periodically sends an empty collection update to a
    random node, which cancels and restarts running optimizations.
    """

    def __init__(self, nodes: Sequence[Node], config: HarnessConfig,
                 rng: Optional[random.Random] = None):
        self.nodes = list(nodes)
        self.config = config
        self.rng = rng or random.Random(config.seed)
        self.cancelled = 0

    async def cancel_once(self) -> Node:
        _, node = choose_node(self.nodes, self.rng)
        logger.info(f"Cancel optimizers on {node.name}")
        await retry_call(
            lambda: node.handle.update_collection(self.config.collection, {}),
            attempts=self.config.update_retries,
            delay=self.config.update_retry_interval,
            description="cancel optimizers",
            node=node.name,
        )
        self.cancelled += 1
        return node

    async def run(self, iterations: Optional[int] = None) -> None:
        done = 0
        while iterations is None or done < iterations:
            await asyncio.sleep(self.config.optimizer_cancel_interval)
            await self.cancel_once()
            done += 1
