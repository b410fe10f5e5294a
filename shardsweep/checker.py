"""
Consistency checker: observe every node, compare, retry, report.

One check cycle fetches state from all nodes in parallel and compares it
against the expected invariants:
- Existence: a node holds exactly the expected ID window
- Scalar: every point's counter equals the expected value
- Cross-node: adjacent nodes hold equal payloads and vectors

A failed cycle is retried with a fixed delay, since early mismatches are
usually replication lag. On the first failure the checker takes the
TransferGate and keeps it until it stops retrying, so no new transfers
start while it waits. If the nodes still disagree after the last attempt,
the reports become an ``InconsistencyError``.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Union

from shardsweep.config import HarnessConfig
from shardsweep.errors import InconsistencyError, StructuralMismatchError
from shardsweep.gate import TransferGate
from shardsweep.logging import get_logger
from shardsweep.models import (
    CrossNodeExpectation,
    ExistenceExpectation,
    InconsistencyReport,
    Point,
    ScalarExpectation,
)
from shardsweep.nodes import Node
from shardsweep.ranges import format_ranges
from shardsweep.retry import retry_call, wait_for_green
from shardsweep.workload import batches

logger = get_logger(__name__)

# Large enough to return a whole sweep window in one scroll page
FULL_SCROLL_LIMIT = 2 ** 32 - 2

Expectation = Union[ExistenceExpectation, ScalarExpectation, CrossNodeExpectation]


# Comparisons


def existence_violation(ids: Sequence[int], expected: ExistenceExpectation) -> Optional[str]:
    """
    Compare the IDs observed on one node against the expected window.

    Returns a description of the deviation, or ``None`` if the node holds
    exactly ``[start, start + count)`` with no duplicates.
    """
    ids = sorted(ids)

    if not ids:
        return f"{expected.describe()}, got zero points (len: 0 vs {expected.count})"

    duplicates = sorted({ids[i] for i in range(1, len(ids)) if ids[i] == ids[i - 1]})
    wrong_lowest = ids[0] != expected.start
    wrong_highest = ids[-1] != expected.end - 1
    wrong_count = len(ids) != expected.count

    if not (duplicates or wrong_lowest or wrong_highest or wrong_count):
        return None

    observed = set(ids)
    missing = [point_id for point_id in range(expected.start, expected.end)
               if point_id not in observed]
    extra = sorted(point_id for point_id in observed
                   if point_id < expected.start or point_id >= expected.end)

    description = (
        f"{expected.describe()}, got {format_ranges(ids)} "
        f"(len: {len(ids)} vs {expected.count})"
    )
    if missing:
        description += f"; missing {format_ranges(missing)}"
    if extra:
        description += f"; extra {format_ranges(extra)}"
    if duplicates:
        description += f"; duplicate {format_ranges(duplicates)}"
    return description


def scalar_violation(points: Sequence[Point], expected: ScalarExpectation) -> Optional[str]:
    """Check every expected ID carries ``expected.key == expected.value``."""
    by_id = {point.id: point for point in points}
    mismatching = []
    first_mismatch = None

    for point_id in expected.ids:
        point = by_id.get(point_id)
        if point is None:
            continue
        value = point.payload.get(expected.key)
        if value != expected.value or isinstance(value, bool):
            mismatching.append(point_id)
            if first_mismatch is None:
                first_mismatch = (point_id, value)

    missing = [point_id for point_id in expected.ids if point_id not in by_id]

    if not mismatching and not missing:
        return None

    parts = []
    if first_mismatch is not None:
        point_id, value = first_mismatch
        parts.append(
            f"PAYLOAD COUNTER MISMATCH: {value!r} != {expected.value} (point {point_id}); "
            f"{len(mismatching)} mismatching points: {format_ranges(mismatching)}"
        )
    if missing:
        parts.append(f"missing points: {format_ranges(missing)}")
    return "; ".join(parts)


@dataclass
class PairComparison:
    """Per adjacent node pair tally of inconsistent points."""

    left: str
    right: str
    compared: int = 0
    vector_mismatches: List[int] = field(default_factory=list)
    payload_mismatches: List[int] = field(default_factory=list)
    left_count: int = 0
    right_count: int = 0

    @property
    def name(self) -> str:
        return f"{self.left} vs {self.right}"

    @property
    def consistent(self) -> bool:
        return (not self.vector_mismatches and not self.payload_mismatches
                and self.left_count == self.right_count)

    def describe(self, total: int) -> str:
        parts = [
            f"inconsistent vectors: {len(self.vector_mismatches)} / {total}",
            f"inconsistent payloads: {len(self.payload_mismatches)} / {total}",
        ]
        if self.vector_mismatches:
            parts.append(f"vector points {format_ranges(self.vector_mismatches)}")
        if self.payload_mismatches:
            parts.append(f"payload points {format_ranges(self.payload_mismatches)}")
        if self.left_count != self.right_count:
            parts.append(f"point count {self.left_count} vs {self.right_count}")
        return ", ".join(parts)


def compare_adjacent(left: str, left_points: Sequence[Point],
                     right: str, right_points: Sequence[Point],
                     with_vectors: bool = True) -> PairComparison:
    """
    Compare two nodes' sorted points position by position.

    Raises:
        StructuralMismatchError: if the nodes return different IDs at the same position
    """
    comparison = PairComparison(left=left, right=right,
                                left_count=len(left_points), right_count=len(right_points))

    for a, b in zip(left_points, right_points):
        if a.id != b.id:
            raise StructuralMismatchError(a.id, b.id, comparison.name)

        comparison.compared += 1
        if with_vectors and a.vector != b.vector:
            comparison.vector_mismatches.append(a.id)
        if a.payload != b.payload:
            comparison.payload_mismatches.append(a.id)
            logger.debug(f"{comparison.name} - point {a.id} payload {a.payload!r} vs {b.payload!r}")

    return comparison


# Checker


class ConsistencyChecker:
    """Verifies observable node state against expected invariants."""

    def __init__(self, nodes: Sequence[Node], gate: TransferGate, config: HarnessConfig):
        self.nodes = list(nodes)
        self.gate = gate
        self.config = config

    async def _remote(self, node: Node, operation, description: str):
        return await retry_call(
            operation,
            attempts=self.config.update_retries,
            delay=self.config.update_retry_interval,
            description=description,
            node=node.name,
        )

    # Fetching

    async def fetch_ids(self, node: Node) -> List[int]:
        points = await self._remote(
            node,
            lambda: node.handle.scroll(self.config.collection, limit=FULL_SCROLL_LIMIT,
                                       with_vectors=False, with_payload=True),
            "scroll points",
        )
        return [point.id for point in points]

    async def fetch_counters(self, node: Node, expected: ScalarExpectation) -> List[Point]:
        if self.config.wait_green:
            await wait_for_green(node, self.config.collection,
                                 timeout=self.config.poll_max,
                                 interval=self.config.poll_interval,
                                 attempts=self.config.update_retries,
                                 retry_interval=self.config.update_retry_interval)

        points: List[Point] = []
        for batch in batches(list(expected.ids), self.config.batch_size):
            points.extend(await self._remote(
                node,
                lambda batch=batch: node.handle.get(self.config.collection, batch,
                                                    with_vectors=False, with_payload=True),
                "get points",
            ))
        return points

    async def fetch_points(self, node: Node, expected: CrossNodeExpectation) -> List[Point]:
        """Scroll every existing point of the expected range, in ID order."""
        end = expected.start + expected.count
        cursor = expected.start
        points: List[Point] = []

        while cursor < end:
            limit = min(self.config.batch_size, end - cursor)
            page = await self._remote(
                node,
                lambda cursor=cursor, limit=limit: node.handle.scroll(
                    self.config.collection, offset=cursor, limit=limit,
                    with_vectors=expected.with_vectors, with_payload=True),
                "scroll points",
            )
            page = sorted((point for point in page if cursor <= point.id < end),
                          key=lambda point: point.id)
            if not page:
                break
            points.extend(page)
            cursor = page[-1].id + 1

        return points

    # One cycle

    async def _check_existence(self, node: Node,
                               expected: ExistenceExpectation) -> Optional[InconsistencyReport]:
        logger.debug(f"Check points {node.name}: {expected.describe()}")
        started = datetime.now(timezone.utc)
        violation = existence_violation(await self.fetch_ids(node), expected)
        if violation is None:
            return None
        return InconsistencyReport(node.name, started, violation)

    async def _check_scalar(self, node: Node,
                            expected: ScalarExpectation) -> Optional[InconsistencyReport]:
        logger.debug(f"Check points {node.name}: {expected.describe()}")
        started = datetime.now(timezone.utc)
        violation = scalar_violation(await self.fetch_counters(node, expected), expected)
        if violation is None:
            return None
        return InconsistencyReport(node.name, started, violation)

    async def _check_cross_node(self, expected: CrossNodeExpectation) -> List[InconsistencyReport]:
        started = datetime.now(timezone.utc)
        node_points = await asyncio.gather(
            *(self.fetch_points(node, expected) for node in self.nodes)
        )

        reports = []
        for i in range(len(self.nodes) - 1):
            comparison = compare_adjacent(
                self.nodes[i].name, node_points[i],
                self.nodes[i + 1].name, node_points[i + 1],
                with_vectors=expected.with_vectors,
            )
            if not comparison.consistent:
                reports.append(InconsistencyReport(
                    comparison.name, started, comparison.describe(expected.count)
                ))
        return reports

    async def check_cycle(self, expectations: Sequence[Expectation]) -> List[InconsistencyReport]:
        """Run one fan-out/fan-in check of every expectation; returns all reports."""
        reports: List[InconsistencyReport] = []

        for expected in expectations:
            if isinstance(expected, ExistenceExpectation):
                results = await asyncio.gather(
                    *(self._check_existence(node, expected) for node in self.nodes)
                )
                reports.extend(report for report in results if report is not None)
            elif isinstance(expected, ScalarExpectation):
                results = await asyncio.gather(
                    *(self._check_scalar(node, expected) for node in self.nodes)
                )
                reports.extend(report for report in results if report is not None)
            elif isinstance(expected, CrossNodeExpectation):
                reports.extend(await self._check_cross_node(expected))
            else:
                raise TypeError(f"unknown expectation: {expected!r}")

        return reports

    # Retry loop

    async def verify(self, expected: Union[Expectation, Sequence[Expectation]],
                     max_attempts: Optional[int] = None) -> int:
        """
        Check until consistent or out of attempts.

        Returns:
            The number of attempts it took to observe a consistent cluster

        Raises:
            InconsistencyError: nodes still disagree after ``max_attempts`` cycles
            StructuralMismatchError: nodes disagree on scan order (never retried)
        """
        if isinstance(expected, (ExistenceExpectation, ScalarExpectation, CrossNodeExpectation)):
            expectations: Sequence[Expectation] = [expected]
        else:
            expectations = list(expected)
        if max_attempts is None:
            max_attempts = self.config.check_retries
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        reports: List[InconsistencyReport] = []

        async with self.gate.deferred_hold() as hold:
            for attempt in range(1, max_attempts + 1):
                reports = await self.check_cycle(expectations)

                if not reports:
                    if attempt > 1:
                        logger.info(f"Consistent after {attempt} attempts")
                    return attempt

                lines = "\n".join(report.format() for report in reports)
                logger.warning(f"Got inconsistencies (attempt {attempt}/{max_attempts}):\n{lines}")

                # Block new transfers until consistent
                if not hold.engaged:
                    logger.info("Blocking shard transfers until consistent")
                    await hold.engage()

                if attempt < max_attempts:
                    await asyncio.sleep(self.config.check_retry_delay)

        raise InconsistencyError(reports, max_attempts)
