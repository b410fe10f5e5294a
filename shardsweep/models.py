"""
Data model shared by the workload driver, transfer coordinator and checker.

This module provides:
- Point and cluster topology records as returned by node handles
- Transfer methods understood by the store
- Expected-state invariants enforced by the consistency checker
- Inconsistency reports produced on mismatch
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from shardsweep.errors import UnsupportedPointIdError

DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


class TransferMethod(str, Enum):
    """Shard transfer methods accepted by the store."""

    STREAM_RECORDS = "stream_records"
    SNAPSHOT = "snapshot"
    WAL_DELTA = "wal_delta"


@dataclass
class Point:
    """A single stored point: numeric ID, optional vector and JSON payload."""

    id: int
    vector: Optional[List[float]] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "payload": dict(self.payload)}
        if self.vector is not None:
            data["vector"] = list(self.vector)
        return data


@dataclass
class ClusterInfo:
    """Topology as seen by one node for one collection."""

    peer_id: int
    shard_transfers: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def transfer_count(self) -> int:
        return len(self.shard_transfers)


def point_num(raw_id: Any) -> int:
    """
    Convert a wire point ID into the numeric ID the harness works with.

    UUID (string) IDs are valid on the wire but never produced by the
    harness; seeing one means the collection holds foreign data.
    """
    if isinstance(raw_id, bool):
        raise UnsupportedPointIdError(f"unsupported point id: {raw_id!r}")
    if isinstance(raw_id, int):
        if raw_id < 0:
            raise UnsupportedPointIdError(f"negative point id: {raw_id}")
        return raw_id
    if isinstance(raw_id, str) and raw_id.isdigit():
        return int(raw_id)
    raise UnsupportedPointIdError(f"unsupported point id: {raw_id!r}")


# Expected-state invariants


@dataclass(frozen=True)
class ExistenceExpectation:
    """Every node holds exactly the IDs ``[start, start + count)``."""

    start: int
    count: int

    @property
    def end(self) -> int:
        return self.start + self.count

    def describe(self) -> str:
        return f"expect {self.start}..{self.end}"


@dataclass(frozen=True)
class ScalarExpectation:
    """Every ID in ``[start, start + count)`` carries ``key == value``."""

    key: str
    value: int
    start: int
    count: int

    @property
    def ids(self) -> range:
        return range(self.start, self.start + self.count)

    def describe(self) -> str:
        return f"expect {self.key} == {self.value}"


@dataclass(frozen=True)
class CrossNodeExpectation:
    """Adjacent nodes hold equal payloads and vectors for ``[start, start + count)``."""

    start: int
    count: int
    with_vectors: bool = True

    @property
    def ids(self) -> range:
        return range(self.start, self.start + self.count)

    def describe(self) -> str:
        return f"expect equal points {self.start}..{self.start + self.count}"


@dataclass(frozen=True)
class InconsistencyReport:
    """One node's (or one node pair's) observed deviation from the expected state."""

    node: str
    timestamp: datetime
    description: str

    def format(self) -> str:
        return f"- {self.timestamp.strftime(DATETIME_FORMAT)} {self.node}: {self.description}"
