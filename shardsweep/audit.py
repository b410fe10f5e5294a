"""
One-shot audit tools for a cluster that is already suspected to be broken.

This module provides:
- ``check_consistency``: one cross-node equality pass over an ID range
- ``list_missing_points``: IDs of a range a node does not return
- ``wait_payload_consistency``: windowed payload comparison across all nodes
  that re-queues mismatches until they settle or time out
- ``list_absent_payload_key``: IDs of points lacking a payload key

None of these mutate the collection.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from shardsweep.checker import ConsistencyChecker
from shardsweep.config import HarnessConfig
from shardsweep.errors import PollTimeoutError
from shardsweep.gate import TransferGate
from shardsweep.logging import get_logger
from shardsweep.models import CrossNodeExpectation, InconsistencyReport, Point
from shardsweep.nodes import Node
from shardsweep.ranges import format_ranges
from shardsweep.retry import retry_call
from shardsweep.workload import batches

logger = get_logger(__name__)

# Sentinel for "point not returned" so a missing point never equals a null payload
ABSENT = object()


async def check_consistency(nodes: Sequence[Node], config: HarnessConfig,
                            start: int = 0, count: Optional[int] = None,
                            with_vectors: bool = True) -> List[InconsistencyReport]:
    """Compare adjacent nodes once over ``[start, start + count)``; returns the pair reports."""
    count = config.point_count if count is None else count
    checker = ConsistencyChecker(nodes, TransferGate(), config)
    expected = CrossNodeExpectation(start=start, count=count, with_vectors=with_vectors)

    logger.info(f"Checking {len(nodes)} nodes: {expected.describe()}")
    reports = await checker.check_cycle([expected])
    if not reports:
        logger.info("All nodes consistent")
    return reports


@dataclass
class MissingPoints:
    """Result of a missing point scan on one node."""

    node: str
    missing: List[int] = field(default_factory=list)
    persistent: List[int] = field(default_factory=list)

    def describe(self) -> str:
        if not self.missing:
            return f"{self.node}: no missing points"
        return (f"{self.node}: missing {len(self.missing)} points: {format_ranges(self.missing)}"
                f" (still missing after re-check: {format_ranges(self.persistent) or 'none'})")


async def list_missing_points(node: Node, config: HarnessConfig,
                              start: int = 0, count: Optional[int] = None,
                              recheck_attempts: int = 3) -> MissingPoints:
    """
    Scroll ``[start, start + count)`` on ``node`` and list IDs it does not return.

    Every missing ID is re-fetched by ID up to ``recheck_attempts`` times, since
    a scroll racing a replication may miss points a direct get already sees.
    """
    count = config.point_count if count is None else count
    result = MissingPoints(node=node.name)

    async def remote(operation, description):
        return await retry_call(operation, attempts=config.update_retries,
                                delay=config.update_retry_interval,
                                description=description, node=node.name)

    for batch in batches(list(range(start, start + count)), config.batch_size):
        page = await remote(
            lambda batch=batch: node.handle.scroll(config.collection, offset=batch[0],
                                                   limit=len(batch), with_payload=False),
            "scroll points",
        )
        seen = {point.id for point in page}
        batch_missing = [point_id for point_id in batch if point_id not in seen]
        if not batch_missing:
            continue

        logger.info(f"{node.name}: missing {format_ranges(batch_missing)}")
        result.missing.extend(batch_missing)

        pending = batch_missing
        for _ in range(recheck_attempts):
            if not pending:
                break
            found = await remote(
                lambda pending=pending: node.handle.get(config.collection, pending,
                                                        with_payload=False),
                "get points",
            )
            found_ids = {point.id for point in found}
            pending = [point_id for point_id in pending if point_id not in found_ids]
            logger.debug(f"{node.name}: re-check, {len(pending)} still missing")

        result.persistent.extend(pending)

    return result


async def _fetch_payload_values(node: Node, config: HarnessConfig, ids: List[int],
                                key: str) -> Dict[int, Any]:
    values: Dict[int, Any] = {}
    for batch in batches(ids, config.batch_size):
        points: List[Point] = await retry_call(
            lambda batch=batch: node.handle.get(config.collection, batch,
                                                with_vectors=False, with_payload=True),
            attempts=config.update_retries,
            delay=config.update_retry_interval,
            description="get points",
            node=node.name,
        )
        values.update((point.id, point.payload.get(key)) for point in points)
    return values


async def wait_payload_consistency(nodes: Sequence[Node], config: HarnessConfig,
                                   key: Optional[str] = None, start: int = 0,
                                   count: Optional[int] = None,
                                   window: Optional[int] = None,
                                   timeout: Optional[float] = None) -> int:
    """
    Compare ``key`` across all nodes, window by window, until every ID agrees.

    Mismatching IDs are re-queued into the next window together with fresh
    IDs. Returns the number of windows that needed a retry.

    Raises:
        PollTimeoutError: IDs still disagree after ``timeout`` seconds
    """
    key = key or config.payload_key
    count = config.point_count if count is None else count
    window = window or config.batch_size
    timeout = config.poll_max if timeout is None else timeout

    remaining = list(range(start, start + count))
    ids = remaining[-window:]
    del remaining[-window:]

    started = time.monotonic()
    retries = 0

    while remaining or ids:
        if time.monotonic() - started > timeout:
            raise PollTimeoutError(
                f"Got {len(ids)} inconsistent payloads after {timeout}s: {format_ranges(sorted(ids))}"
            )

        left = len(remaining) + len(ids)
        suffix = f" (retry {retries})" if retries else ""
        logger.info(f"Checking {len(ids)}/{left} payloads{suffix}")

        payloads = await asyncio.gather(
            *(_fetch_payload_values(node, config, ids, key) for node in nodes)
        )

        mismatching = []
        for point_id in ids:
            values = [payload.get(point_id, ABSENT) for payload in payloads]
            if any(a is ABSENT or a != b for a, b in zip(values, values[1:])):
                logger.info(f"- mismatch: {point_id}")
                mismatching.append(point_id)

        if mismatching:
            retries += 1
            await asyncio.sleep(config.check_retry_delay)

        ids = mismatching
        refill = max(window - len(ids), 0)
        if refill:
            ids.extend(remaining[-refill:])
            del remaining[-refill:]

    logger.info(f"All consistent after {retries} retries")
    return retries


async def list_absent_payload_key(node: Node, config: HarnessConfig,
                                  key: Optional[str] = None) -> List[int]:
    """List the IDs of every point on ``node`` whose payload lacks ``key``."""
    key = key or config.payload_key
    query = {"must": [{"is_empty": {"key": key}}]}
    absent: List[int] = []
    offset: Optional[int] = None

    while True:
        page = await retry_call(
            lambda offset=offset: node.handle.scroll(config.collection, offset=offset,
                                                     limit=config.batch_size, filter=query,
                                                     with_payload=False),
            attempts=config.update_retries,
            delay=config.update_retry_interval,
            description="scroll points",
            node=node.name,
        )
        absent.extend(point.id for point in page)
        if len(page) < config.batch_size:
            break
        offset = page[-1].id + 1

    logger.info(f"{node.name}: {len(absent)} points without {key!r}")
    return absent
