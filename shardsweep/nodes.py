"""
Node handles: the remote-operation interface the harness drives.

A ``NodeHandle`` is the only thing the harness knows about the store. Every
method is a network call that may raise ``RemoteError`` on a transient
failure; callers decide whether to retry. ``Node`` pairs a handle with the
name used in logs and reports.
"""

import random
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shardsweep.models import ClusterInfo, Point, TransferMethod


class NodeHandle(ABC):
    """Remote operations against one store node."""

    @abstractmethod
    async def upsert(self, collection: str, points: List[Point], wait: bool = True) -> None:
        """Insert or overwrite points."""

    @abstractmethod
    async def delete(self, collection: str, ids: List[int], wait: bool = True) -> None:
        """Delete points by ID; unknown IDs are ignored."""

    @abstractmethod
    async def get(self, collection: str, ids: List[int],
                  with_vectors: bool = False, with_payload: bool = True) -> List[Point]:
        """Fetch points by ID; absent IDs are simply not returned."""

    @abstractmethod
    async def scroll(self, collection: str, offset: Optional[int] = None, limit: int = 10,
                     filter: Optional[Dict[str, Any]] = None,
                     with_vectors: bool = False, with_payload: bool = True) -> List[Point]:
        """Return up to ``limit`` points in ascending ID order starting at ``offset``."""

    @abstractmethod
    async def cluster_info(self, collection: str) -> ClusterInfo:
        """Return this node's peer ID and the shard transfers it knows about."""

    @abstractmethod
    async def request_shard_transfer(self, collection: str, shard_id: int, from_peer: int,
                                     to_peer: int, method: TransferMethod) -> None:
        """Ask the cluster to replicate ``shard_id`` from one peer to another."""

    @abstractmethod
    async def update_collection(self, collection: str, params: Dict[str, Any]) -> None:
        """Patch collection parameters. Empty params restart the optimizers."""

    # Collection lifecycle, used once during setup

    @abstractmethod
    async def create_collection(self, collection: str, params: Dict[str, Any]) -> None:
        """Create the collection with the given parameters."""

    @abstractmethod
    async def delete_collection(self, collection: str) -> None:
        """Drop the collection."""

    @abstractmethod
    async def collection_status(self, collection: str) -> str:
        """Return the collection status (``green``, ``yellow``, ``red``, ...)."""

    async def close(self) -> None:
        """Release any connection resources."""


class Node:
    """A node handle plus its identity in the cluster."""

    def __init__(self, name: str, handle: NodeHandle):
        self.name = name
        self.handle = handle
        self.peer_id: Optional[int] = None

    async def resolve_peer_id(self, collection: str) -> int:
        """
        Query the node for its cluster-assigned peer ID.

        Always asks the node again; peer IDs may change across restarts, the
        cached value is kept for logging only.
        """
        info = await self.handle.cluster_info(collection)
        self.peer_id = info.peer_id
        return info.peer_id

    def __repr__(self) -> str:
        return f"Node({self.name!r}, peer_id={self.peer_id})"


def choose_node(nodes: Sequence[Node], rng: random.Random) -> Tuple[int, Node]:
    """Pick one node uniformly at random; returns its index and the node."""
    if not nodes:
        raise ValueError("cannot choose from an empty node set")
    index = rng.randrange(len(nodes))
    return index, nodes[index]


def choose_pair(nodes: Sequence[Node], rng: random.Random) -> Tuple[Node, Node]:
    """Pick two distinct nodes uniformly at random as (source, destination)."""
    if len(nodes) < 2:
        raise ValueError("a transfer needs at least two nodes")
    source, destination = rng.sample(list(nodes), 2)
    return source, destination
