"""
Workload driver: batched mutations against randomly chosen nodes.

Two workloads are supported:
- Sweep: delete the previous round's window, then upsert the current one
- Counter: read each point's counter from one node, write ``counter + 1``
  through another

Every batch goes to a node picked uniformly at random so writes spread over
all replicas. Each remote mutation is retried up to the configured budget;
running out of attempts is fatal for the whole run.
"""

import random
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence

from shardsweep.config import HarnessConfig
from shardsweep.errors import MissingPointError
from shardsweep.logging import get_logger
from shardsweep.models import Point
from shardsweep.nodes import Node, choose_node
from shardsweep.ranges import format_range
from shardsweep.retry import retry_call

logger = get_logger(__name__)

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class Mutation(str, Enum):
    DELETE = "delete"
    UPSERT = "upsert"


def batches(ids: Sequence[int], size: int) -> Iterator[List[int]]:
    """Split ``ids`` into consecutive batches of at most ``size`` IDs."""
    for offset in range(0, len(ids), size):
        yield list(ids[offset:offset + size])


def sweep_ranges(sweep_start: int, window: int):
    """Return the (delete, upsert) ID ranges for a sweep starting at ``sweep_start``."""
    delete_range = range(max(sweep_start - window, 0), sweep_start)
    upsert_range = range(sweep_start, sweep_start + window)
    return delete_range, upsert_range


def counter_value(point: Point, key: str) -> int:
    value = point.payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MissingPointError(f"point {point.id} has no integer {key!r} payload: {value!r}")
    return value


class WorkloadDriver:
    """Generates and applies mutation batches for one harness run."""

    def __init__(self, nodes: Sequence[Node], config: HarnessConfig,
                 rng: Optional[random.Random] = None):
        if not nodes:
            raise ValueError("the workload needs at least one node")
        self.nodes = list(nodes)
        self.config = config
        self.rng = rng or random.Random(config.seed)

    def random_vector(self) -> List[float]:
        return [self.rng.random() for _ in range(self.config.dim)]

    def build_points(self, ids: Sequence[int],
                     payloads: Optional[Dict[int, dict]] = None) -> List[Point]:
        points = []
        for point_id in ids:
            if payloads is not None:
                payload = dict(payloads[point_id])
            else:
                payload = {self.config.payload_key: self.rng.randint(INT64_MIN, INT64_MAX)}
            points.append(Point(id=point_id, vector=self.random_vector(), payload=payload))
        return points

    async def apply(self, batch: Sequence[int], mutation: Mutation,
                    payloads: Optional[Dict[int, dict]] = None) -> Node:
        """
        Apply one mutation batch through a randomly chosen node.

        Args:
            batch: Point IDs to mutate
            mutation: Delete or upsert
            payloads: Upsert payload per ID; random ``payload_key`` values if omitted

        Returns:
            The node the batch was sent to

        Raises:
            RetryExhaustedError: if the node kept failing for the whole budget
        """
        index, node = choose_node(self.nodes, self.rng)
        collection = self.config.collection

        if mutation is Mutation.DELETE:
            ids = list(batch)

            async def operation():
                await node.handle.delete(collection, ids, wait=self.config.wait)
        else:
            points = self.build_points(batch, payloads)

            async def operation():
                await node.handle.upsert(collection, points, wait=self.config.wait)

        await retry_call(
            operation,
            attempts=self.config.update_retries,
            delay=self.config.update_retry_interval,
            description=f"{mutation.value} points",
            node=f"{index} ({node.name})",
        )
        return node

    async def sweep(self, sweep_start: int) -> None:
        """Delete the previous window and upsert the window starting at ``sweep_start``."""
        window = self.config.point_count
        delete_range, upsert_range = sweep_ranges(sweep_start, window)

        logger.info(
            f"Sweep points: delete {format_range(delete_range.start, delete_range.stop)}, "
            f"upsert {format_range(upsert_range.start, upsert_range.stop)}"
        )

        delete_ids = list(delete_range)
        upsert_ids = list(upsert_range)
        if self.config.shuffle_points:
            self.rng.shuffle(delete_ids)
            self.rng.shuffle(upsert_ids)

        # Deletes first, so a healthy node ends the round holding exactly the upsert window
        for batch in batches(delete_ids, self.config.batch_size):
            await self.apply(batch, Mutation.DELETE)

        for batch in batches(upsert_ids, self.config.batch_size):
            await self.apply(batch, Mutation.UPSERT)

    async def read_counters(self, node: Node, batch: Sequence[int]) -> Dict[int, int]:
        """Read the counter of every ID in ``batch`` from ``node``."""
        collection = self.config.collection

        if self.config.scroll_reads:
            first, limit = batch[0], len(batch)

            async def read():
                return await node.handle.scroll(collection, offset=first, limit=limit,
                                                with_vectors=False, with_payload=True)
        else:
            ids = list(batch)

            async def read():
                return await node.handle.get(collection, ids, with_vectors=False,
                                             with_payload=True)

        points = await retry_call(
            read,
            attempts=self.config.update_retries,
            delay=self.config.update_retry_interval,
            description="get existing points",
            node=node.name,
        )
        values = {point.id: counter_value(point, self.config.counter_key) for point in points}

        missing = [point_id for point_id in batch if point_id not in values]
        if missing:
            raise MissingPointError(
                f"node {node.name} did not return points {missing} while reading counters"
            )
        return values

    async def touch(self, ids: Sequence[int]) -> None:
        """Increment the counter of every ID by one, batch by batch."""
        ids = list(ids)
        if self.config.shuffle_points:
            self.rng.shuffle(ids)

        key = self.config.counter_key
        for batch in batches(ids, self.config.batch_size):
            # Reading a stale value here is fine; the increment lands on whatever was visible
            _, reader = choose_node(self.nodes, self.rng)
            current = await self.read_counters(reader, batch)
            payloads = {point_id: {key: current[point_id] + 1} for point_id in batch}
            await self.apply(batch, Mutation.UPSERT, payloads)

    async def seed_counters(self, ids: Sequence[int]) -> None:
        """Upsert every ID with a zero counter through the first node."""
        node = self.nodes[0]
        key = self.config.counter_key

        for batch in batches(list(ids), self.config.batch_size):
            points = self.build_points(batch, {point_id: {key: 0} for point_id in batch})

            async def operation(points=points):
                await node.handle.upsert(self.config.collection, points, wait=self.config.wait)

            await retry_call(
                operation,
                attempts=self.config.update_retries,
                delay=self.config.update_retry_interval,
                description="seed points",
                node=node.name,
            )
