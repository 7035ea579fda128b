"""Async HTTP client for the Linode Kubernetes Engine (LKE) API."""

from __future__ import annotations

import json
from typing import Any, Protocol

from loguru import logger

from lke_driver.config import DriverConfig
from lke_driver.errors import LinodeAPIError
from lke_driver.infra.http import BearerAuth, HttpClient, HttpError
from lke_driver.infra.retry import on_status_code, retry

from .types import (
    ClusterCreateParams,
    ClusterResponse,
    ClusterUpdateParams,
    ErrorDetail,
    KubeconfigResponse,
    NodePoolCreateParams,
    NodePoolResponse,
    NodePoolUpdateParams,
    Page,
    VersionResponse,
)

PAGE_SIZE = 100


class LKEApi(Protocol):
    """Operations the reconcilers need from the remote control plane."""

    async def create_cluster(self, params: ClusterCreateParams) -> ClusterResponse: ...
    async def get_cluster(self, cluster_id: int) -> ClusterResponse: ...
    async def update_cluster(self, cluster_id: int, params: ClusterUpdateParams) -> ClusterResponse: ...
    async def delete_cluster(self, cluster_id: int) -> None: ...
    async def list_node_pools(self, cluster_id: int) -> list[NodePoolResponse]: ...
    async def get_node_pool(self, cluster_id: int, pool_id: int) -> NodePoolResponse: ...
    async def create_node_pool(
        self, cluster_id: int, params: NodePoolCreateParams,
    ) -> NodePoolResponse: ...
    async def update_node_pool(
        self, cluster_id: int, pool_id: int, params: NodePoolUpdateParams,
    ) -> NodePoolResponse: ...
    async def delete_node_pool(self, cluster_id: int, pool_id: int) -> None: ...
    async def get_kubeconfig(self, cluster_id: int) -> str: ...
    async def close(self) -> None: ...


def _error_message(body: str) -> str:
    """Flatten Linode's ``{"errors": [{"reason": ..., "field": ...}]}`` body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body
    match data:
        case {"errors": [*errors]} if errors:
            details: list[ErrorDetail] = errors
            parts = []
            for err in details:
                reason = err.get("reason", "unknown error")
                field = err.get("field")
                parts.append(f"[{field}] {reason}" if field else reason)
            return "; ".join(parts)
        case _:
            return body


class LinodeClient:
    """Async HTTP client for the LKE endpoints of the Linode API v4.

    Returns TypedDicts directly from API responses.

    Example:
        async with LinodeClient(token="...") as client:
            pools = await client.list_node_pools(1234)
    """

    def __init__(self, token: str, config: DriverConfig | None = None) -> None:
        self._config = config or DriverConfig()
        self._http = HttpClient(
            self._config.api_url,
            BearerAuth(token),
            timeout=self._config.request_timeout,
            headers={"User-Agent": self._config.user_agent, "Content-Type": "application/json"},
        )
        self._log = logger.bind(provider="linode", component="client")

    async def __aenter__(self) -> LinodeClient:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.close()

    @retry(on=on_status_code(429, 503), max_attempts=5, base_delay=1.0)
    async def _do_request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self._http.request(method, path, json=json, params=params)

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        self._log.debug("{method} {path}", method=method, path=path)
        try:
            return await self._do_request(method, path, json, params)
        except HttpError as e:
            self._log.warning(
                "API error {method} {path}: {status}",
                method=method, path=path, status=e.status,
            )
            raise LinodeAPIError(e.status, _error_message(e.body)) from e

    async def _list_all[T](self, path: str) -> list[T]:
        items: list[T] = []
        page = 1
        while True:
            result: Page[T] = await self._request(
                "GET", path, params={"page": page, "page_size": PAGE_SIZE}
            )
            items.extend(result.get("data", []))
            if page >= result.get("pages", 1):
                return items
            page += 1

    # =========================================================================
    # Clusters
    # =========================================================================

    async def create_cluster(self, params: ClusterCreateParams) -> ClusterResponse:
        self._log.info(
            "Creating LKE cluster {label} in {region}",
            label=params["label"], region=params["region"],
        )
        result: ClusterResponse = await self._request("POST", "/lke/clusters", json=dict(params))
        return result

    async def get_cluster(self, cluster_id: int) -> ClusterResponse:
        result: ClusterResponse = await self._request("GET", f"/lke/clusters/{cluster_id}")
        return result

    async def update_cluster(
        self, cluster_id: int, params: ClusterUpdateParams,
    ) -> ClusterResponse:
        self._log.info(
            "Updating LKE cluster {cluster_id}: {fields}",
            cluster_id=cluster_id, fields=sorted(params),
        )
        result: ClusterResponse = await self._request(
            "PUT", f"/lke/clusters/{cluster_id}", json=dict(params)
        )
        return result

    async def delete_cluster(self, cluster_id: int) -> None:
        self._log.info("Deleting LKE cluster {cluster_id}", cluster_id=cluster_id)
        await self._request("DELETE", f"/lke/clusters/{cluster_id}")

    async def get_kubeconfig(self, cluster_id: int) -> str:
        """Return the cluster's base64-encoded kubeconfig."""
        result: KubeconfigResponse = await self._request(
            "GET", f"/lke/clusters/{cluster_id}/kubeconfig"
        )
        return result["kubeconfig"]

    async def list_versions(self) -> list[str]:
        versions: list[VersionResponse] = await self._list_all("/lke/versions")
        return [v["id"] for v in versions]

    # =========================================================================
    # Node Pools
    # =========================================================================

    async def list_node_pools(self, cluster_id: int) -> list[NodePoolResponse]:
        return await self._list_all(f"/lke/clusters/{cluster_id}/pools")

    async def get_node_pool(self, cluster_id: int, pool_id: int) -> NodePoolResponse:
        result: NodePoolResponse = await self._request(
            "GET", f"/lke/clusters/{cluster_id}/pools/{pool_id}"
        )
        return result

    async def create_node_pool(
        self, cluster_id: int, params: NodePoolCreateParams,
    ) -> NodePoolResponse:
        self._log.info(
            "Creating {type} pool ({count} nodes) on cluster {cluster_id}",
            type=params["type"], count=params["count"], cluster_id=cluster_id,
        )
        result: NodePoolResponse = await self._request(
            "POST", f"/lke/clusters/{cluster_id}/pools", json=dict(params)
        )
        return result

    async def update_node_pool(
        self, cluster_id: int, pool_id: int, params: NodePoolUpdateParams,
    ) -> NodePoolResponse:
        self._log.info(
            "Resizing pool {pool_id} on cluster {cluster_id} to {count}",
            pool_id=pool_id, cluster_id=cluster_id, count=params["count"],
        )
        result: NodePoolResponse = await self._request(
            "PUT", f"/lke/clusters/{cluster_id}/pools/{pool_id}", json=dict(params)
        )
        return result

    async def delete_node_pool(self, cluster_id: int, pool_id: int) -> None:
        self._log.info(
            "Deleting pool {pool_id} on cluster {cluster_id}",
            pool_id=pool_id, cluster_id=cluster_id,
        )
        await self._request("DELETE", f"/lke/clusters/{cluster_id}/pools/{pool_id}")
