"""
REST node handle for a Qdrant-style cluster.

Talks to one node's HTTP API with ``httpx.AsyncClient``. Transport failures
and non-2xx responses become ``RemoteError`` so the harness' retry layers can
treat them uniformly.
"""

from typing import Any, Dict, List, Optional

import httpx

from shardsweep.config import HarnessConfig
from shardsweep.errors import RemoteError
from shardsweep.models import ClusterInfo, Point, TransferMethod, point_num
from shardsweep.nodes import Node, NodeHandle


def _bool_param(value: bool) -> str:
    return "true" if value else "false"


def _expect(value: Any, kind: type, what: str) -> Any:
    if not isinstance(value, kind):
        raise RemoteError(f"malformed {what}: expected {kind.__name__}, got {type(value).__name__}")
    return value


def _parse_point(record: Dict[str, Any]) -> Point:
    vector = record.get("vector")
    if isinstance(vector, dict):
        # Named vectors: the harness only writes the default unnamed one
        vector = vector.get("")
    return Point(
        id=point_num(record.get("id")),
        vector=vector,
        payload=record.get("payload") or {},
    )


class HttpNodeHandle(NodeHandle):
    """NodeHandle over the store's REST API."""

    def __init__(self, url: str, api_key: Optional[str] = None,
                 connect_timeout: float = 10.0, timeout: float = 20.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url.rstrip("/")
        headers = {"api-key": api_key} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self.url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
        )

    async def _request(self, method: str, path: str, *,
                       json: Optional[Dict[str, Any]] = None,
                       params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {path}: {type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            status = body.get("status") if isinstance(body, dict) else None
            detail = (status.get("error") if isinstance(status, dict) else None) or response.text
            raise RemoteError(f"{method} {path}: HTTP {response.status_code}: {detail}",
                              status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteError(f"{method} {path}: invalid JSON response") from e
        if not isinstance(body, dict):
            raise RemoteError(f"{method} {path}: expected a JSON object, got {type(body).__name__}")
        return body.get("result")

    # Points

    async def upsert(self, collection: str, points: List[Point], wait: bool = True) -> None:
        await self._request(
            "PUT", f"/collections/{collection}/points",
            params={"wait": _bool_param(wait)},
            json={"points": [point.to_json() for point in points]},
        )

    async def delete(self, collection: str, ids: List[int], wait: bool = True) -> None:
        await self._request(
            "POST", f"/collections/{collection}/points/delete",
            params={"wait": _bool_param(wait)},
            json={"points": list(ids)},
        )

    async def get(self, collection: str, ids: List[int],
                  with_vectors: bool = False, with_payload: bool = True) -> List[Point]:
        result = await self._request(
            "POST", f"/collections/{collection}/points",
            json={"ids": list(ids), "with_vector": with_vectors, "with_payload": with_payload},
        )
        return [_parse_point(record) for record in _expect(result, list, "points")]

    async def scroll(self, collection: str, offset: Optional[int] = None, limit: int = 10,
                     filter: Optional[Dict[str, Any]] = None,
                     with_vectors: bool = False, with_payload: bool = True) -> List[Point]:
        body: Dict[str, Any] = {
            "limit": limit,
            "with_vector": with_vectors,
            "with_payload": with_payload,
        }
        if offset is not None:
            body["offset"] = offset
        if filter is not None:
            body["filter"] = filter

        result = await self._request("POST", f"/collections/{collection}/points/scroll", json=body)
        page = _expect(result, dict, "scroll result")
        return [_parse_point(record) for record in _expect(page.get("points"), list, "points")]

    # Cluster

    async def cluster_info(self, collection: str) -> ClusterInfo:
        result = _expect(await self._request("GET", f"/collections/{collection}/cluster"),
                         dict, "cluster info")
        if "peer_id" not in result:
            raise RemoteError("cluster info without peer_id")
        return ClusterInfo(
            peer_id=result["peer_id"],
            shard_transfers=list(result.get("shard_transfers") or []),
        )

    async def request_shard_transfer(self, collection: str, shard_id: int, from_peer: int,
                                     to_peer: int, method: TransferMethod) -> None:
        await self._request(
            "POST", f"/collections/{collection}/cluster",
            json={
                "replicate_shard": {
                    "shard_id": shard_id,
                    "from_peer_id": from_peer,
                    "to_peer_id": to_peer,
                    "method": TransferMethod(method).value,
                }
            },
        )

    # Collection

    async def update_collection(self, collection: str, params: Dict[str, Any]) -> None:
        await self._request("PATCH", f"/collections/{collection}", json=dict(params))

    async def create_collection(self, collection: str, params: Dict[str, Any]) -> None:
        await self._request("PUT", f"/collections/{collection}", json=dict(params))

    async def delete_collection(self, collection: str) -> None:
        await self._request("DELETE", f"/collections/{collection}")

    async def collection_status(self, collection: str) -> str:
        result = _expect(await self._request("GET", f"/collections/{collection}"),
                         dict, "collection info")
        return str(result.get("status", "")).lower()

    async def close(self) -> None:
        await self._client.aclose()


def build_nodes(config: HarnessConfig) -> List[Node]:
    """One HTTP-backed node per configured host."""
    return [
        Node(host, HttpNodeHandle(host, api_key=config.api_key,
                                  connect_timeout=config.connect_timeout,
                                  timeout=config.request_timeout))
        for host in config.hosts
    ]
