"""
Pytest configuration and fixtures for shardsweep tests.

This module provides:
- An in-memory replicated cluster implementing ``NodeHandle``
- Fault hooks: dropped upserts, replication lag, unavailable nodes,
  rejected and stuck shard transfers
- A harness config with delays small enough for unit tests
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from shardsweep.config import HarnessConfig
from shardsweep.errors import RemoteError
from shardsweep.models import ClusterInfo, Point, TransferMethod
from shardsweep.nodes import Node, NodeHandle


COLLECTION = "benchmark"
NODE_NAMES = ["node-0", "node-1", "node-2"]
PEER_ID_BASE = 1000


def make_config(**overrides: Any) -> HarnessConfig:
    """Harness config tuned for the simulated cluster: tiny delays, no transfers."""
    values: Dict[str, Any] = dict(
        hosts=[f"sim://{name}" for name in NODE_NAMES],
        collection=COLLECTION,
        dim=4,
        batch_size=25,
        point_count=200,
        update_retries=3,
        update_retry_interval=0.001,
        check_retries=3,
        check_retry_delay=0.001,
        poll_interval=0.001,
        poll_max=1.0,
        transfers=False,
        transfer_startup_delay=0.0,
        optimizer_cancel_interval=0.001,
        seed=1234,
    )
    values.update(overrides)
    return HarnessConfig(**values)


def make_points(ids: Sequence[int], payload: Optional[Dict[str, Any]] = None) -> List[Point]:
    return [Point(id=point_id, vector=[0.1, 0.2, 0.3, 0.4],
                  payload=dict(payload) if payload is not None else {"key": point_id})
            for point_id in ids]


def _copy(point: Point) -> Point:
    vector = list(point.vector) if point.vector is not None else None
    return Point(id=point.id, vector=vector, payload=dict(point.payload))


def _matches(point: Point, query: Optional[Dict[str, Any]]) -> bool:
    if not query:
        return True
    for condition in query.get("must", []):
        key = condition["is_empty"]["key"]
        if point.payload.get(key) not in (None, [], {}):
            return False
    return True


class SimulatedCluster:
    """
    In-memory cluster where a write to any node replicates to every node.

    Faults are injected by setting attributes:
    - ``drop_upserts[name]``: IDs whose upserts never land on that node
    - ``lag[name]``: replicated writes become visible after that many reads
    - ``failing``: node names whose every call raises ``RemoteError``
    - ``reject_transfers``: number of upcoming transfer requests to reject
    - ``stuck_transfers``: accepted transfers never finish
    """

    def __init__(self, names: Sequence[str] = NODE_NAMES, transfer_polls: int = 2):
        self.names = list(names)
        self.stores: Dict[str, Dict[int, Point]] = {name: {} for name in self.names}
        self.peer_ids = {name: PEER_ID_BASE + i for i, name in enumerate(self.names)}

        self.drop_upserts: Dict[str, Set[int]] = {}
        self.lag: Dict[str, int] = {}
        self.failing: Set[str] = set()
        self.reject_transfers = 0
        self.stuck_transfers = False
        self.transfer_polls = transfer_polls
        self.read_hook: Optional[Callable[[str], None]] = None

        self.calls: Dict[str, List[float]] = {name: [] for name in self.names}
        self.ops: List[Tuple[str, str, List[int]]] = []
        self.transfer_requests: List[Dict[str, Any]] = []
        self.active_transfer: Optional[Dict[str, Any]] = None
        self.collections: Dict[str, Dict[str, Any]] = {}
        self.optimizer_updates = 0
        self._pending: Dict[str, List[List[Any]]] = {name: [] for name in self.names}

        self.nodes = [Node(name, SimulatedNodeHandle(self, name)) for name in self.names]

    # Direct store access, bypassing replication

    def put(self, name: str, points: Sequence[Point]) -> None:
        for point in points:
            self.stores[name][point.id] = _copy(point)

    def put_all(self, points: Sequence[Point]) -> None:
        for name in self.names:
            self.put(name, points)

    def remove(self, name: str, ids: Sequence[int]) -> None:
        for point_id in ids:
            self.stores[name].pop(point_id, None)

    def point_ids(self, name: str) -> List[int]:
        return sorted(self.stores[name])

    def payload(self, name: str, point_id: int) -> Dict[str, Any]:
        return self.stores[name][point_id].payload

    # Simulation internals

    async def call(self, name: str) -> None:
        self.calls[name].append(time.monotonic())
        await asyncio.sleep(0)
        if name in self.failing:
            raise RemoteError(f"{name} is unavailable", status_code=503)

    def _apply_upsert(self, name: str, points: Sequence[Point]) -> None:
        dropped = self.drop_upserts.get(name, set())
        self.put(name, [point for point in points if point.id not in dropped])

    def replicate(self, origin: str, op: str, ids: List[int], apply: Callable[[str], None]) -> None:
        self.ops.append((origin, op, ids))
        for name in self.names:
            lag = self.lag.get(name, 0)
            if name != origin and lag > 0:
                self._pending[name].append([lag, apply])
            else:
                apply(name)

    def upsert(self, origin: str, points: Sequence[Point]) -> None:
        points = [_copy(point) for point in points]
        self.replicate(origin, "upsert", [point.id for point in points],
                       lambda name: self._apply_upsert(name, points))

    def delete(self, origin: str, ids: Sequence[int]) -> None:
        ids = list(ids)
        self.replicate(origin, "delete", ids, lambda name: self.remove(name, ids))

    def after_read(self, name: str) -> None:
        if self.read_hook is not None:
            self.read_hook(name)
        remaining = []
        for entry in self._pending[name]:
            entry[0] -= 1
            if entry[0] <= 0:
                entry[1](name)
            else:
                remaining.append(entry)
        self._pending[name] = remaining

    def cluster_info(self, name: str) -> ClusterInfo:
        transfers = []
        if self.active_transfer is not None:
            transfers.append(dict(self.active_transfer))
            if not self.stuck_transfers:
                self.active_transfer["polls_left"] -= 1
                if self.active_transfer["polls_left"] <= 0:
                    self.active_transfer = None
        return ClusterInfo(peer_id=self.peer_ids[name], shard_transfers=transfers)

    def request_transfer(self, shard_id: int, from_peer: int, to_peer: int,
                         method: TransferMethod) -> None:
        if self.reject_transfers > 0:
            self.reject_transfers -= 1
            raise RemoteError("shard is already involved in a transfer", status_code=400)
        if self.active_transfer is not None:
            raise RemoteError("shard is already involved in a transfer", status_code=400)

        request = {"shard_id": shard_id, "from": from_peer, "to": to_peer,
                   "method": TransferMethod(method).value}
        self.transfer_requests.append(request)
        self.active_transfer = dict(request, polls_left=self.transfer_polls)


class SimulatedNodeHandle(NodeHandle):
    """NodeHandle backed by one member of a ``SimulatedCluster``."""

    def __init__(self, cluster: SimulatedCluster, name: str):
        self.cluster = cluster
        self.name = name

    async def upsert(self, collection, points, wait=True):
        await self.cluster.call(self.name)
        self.cluster.upsert(self.name, points)

    async def delete(self, collection, ids, wait=True):
        await self.cluster.call(self.name)
        self.cluster.delete(self.name, ids)

    async def get(self, collection, ids, with_vectors=False, with_payload=True):
        await self.cluster.call(self.name)
        store = self.cluster.stores[self.name]
        points = [_copy(store[point_id]) for point_id in ids if point_id in store]
        self.cluster.after_read(self.name)
        return points

    async def scroll(self, collection, offset=None, limit=10, filter=None,
                     with_vectors=False, with_payload=True):
        await self.cluster.call(self.name)
        store = self.cluster.stores[self.name]
        start = offset or 0
        points = [_copy(store[point_id]) for point_id in sorted(store)
                  if point_id >= start and _matches(store[point_id], filter)][:limit]
        self.cluster.after_read(self.name)
        return points

    async def cluster_info(self, collection):
        await self.cluster.call(self.name)
        return self.cluster.cluster_info(self.name)

    async def request_shard_transfer(self, collection, shard_id, from_peer, to_peer, method):
        await self.cluster.call(self.name)
        self.cluster.request_transfer(shard_id, from_peer, to_peer, method)

    async def update_collection(self, collection, params):
        await self.cluster.call(self.name)
        self.cluster.optimizer_updates += 1

    async def create_collection(self, collection, params):
        await self.cluster.call(self.name)
        self.cluster.collections[collection] = dict(params)
        for name in self.cluster.names:
            self.cluster.stores[name].clear()

    async def delete_collection(self, collection):
        await self.cluster.call(self.name)
        if collection not in self.cluster.collections:
            raise RemoteError(f"collection {collection} not found", status_code=404)
        del self.cluster.collections[collection]

    async def collection_status(self, collection):
        await self.cluster.call(self.name)
        return "green"


@pytest.fixture
def cluster() -> SimulatedCluster:
    return SimulatedCluster()


@pytest.fixture
def nodes(cluster) -> List[Node]:
    return cluster.nodes


@pytest.fixture
def harness_config() -> HarnessConfig:
    return make_config()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: full harness runs against the simulated cluster"
    )
