from __future__ import annotations

import base64
import itertools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import pytest
import yaml
from kubernetes_asyncio.client.rest import ApiException

from lke_driver.config import DriverConfig
from lke_driver.driver import LKEDriver
from lke_driver.errors import LinodeAPIError
from lke_driver.options import DriverOptions
from lke_driver.spec import ClusterSpec
from lke_driver.state import PersistedState, store_state
from lke_driver.types import ClusterInfo

TOKEN = "linode-token"

MUTATIONS = frozenset({
    "create_cluster",
    "update_cluster",
    "delete_cluster",
    "create_node_pool",
    "update_node_pool",
    "delete_node_pool",
})


# =============================================================================
# Fake Linode control plane
# =============================================================================


class FakeLKEApi:
    """In-memory stand-in for LinodeClient that records every call."""

    def __init__(self) -> None:
        self.clusters: dict[int, dict[str, Any]] = {}
        self.pools: dict[int, list[dict[str, Any]]] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.kubeconfig = ""
        self.not_ready_polls = 0
        self.closed = 0
        self._failures: dict[str, list[Exception]] = {}
        self._ids = itertools.count(100)

    # ─── test helpers ───────────────────────────────────────────────

    def add_cluster(
        self,
        pools: dict[str, int],
        *,
        status: str = "ready",
        k8s_version: str = "1.29",
        label: str = "demo",
        tags: list[str] | None = None,
    ) -> int:
        cluster_id = next(self._ids)
        self.clusters[cluster_id] = {
            "id": cluster_id,
            "label": label,
            "region": "us-east",
            "k8s_version": k8s_version,
            "status": status,
            "tags": list(tags or []),
        }
        self.pools[cluster_id] = [
            {"id": next(self._ids), "type": t, "count": c} for t, c in pools.items()
        ]
        return cluster_id

    def fail(self, method: str, error: Exception, *, times: int = 1) -> None:
        self._failures.setdefault(method, []).extend([error] * times)

    @property
    def mutations(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] in MUTATIONS]

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        if pending := self._failures.get(method):
            raise pending.pop(0)

    def _cluster(self, cluster_id: int) -> dict[str, Any]:
        if cluster_id not in self.clusters:
            raise LinodeAPIError(404, "Not found")
        return self.clusters[cluster_id]

    def _pool(self, cluster_id: int, pool_id: int) -> dict[str, Any]:
        for pool in self.pools.get(cluster_id, []):
            if pool["id"] == pool_id:
                return pool
        raise LinodeAPIError(404, "Not found")

    def _render(self, pool: dict[str, Any]) -> dict[str, Any]:
        status = "not_ready" if self.not_ready_polls > 0 else "ready"
        nodes = [
            {"id": f"{pool['id']}-{i}", "instance_id": pool["id"] * 10 + i, "status": status}
            for i in range(pool["count"])
        ]
        return {**pool, "nodes": nodes}

    # ─── LKEApi ─────────────────────────────────────────────────────

    async def create_cluster(self, params: dict[str, Any]) -> dict[str, Any]:
        self._record("create_cluster", params)
        cluster_id = self.add_cluster(
            {p["type"]: p["count"] for p in params["node_pools"]},
            k8s_version=params["k8s_version"],
            label=params["label"],
            tags=params["tags"],
        )
        return dict(self.clusters[cluster_id])

    async def get_cluster(self, cluster_id: int) -> dict[str, Any]:
        self._record("get_cluster", cluster_id)
        return dict(self._cluster(cluster_id))

    async def update_cluster(self, cluster_id: int, params: dict[str, Any]) -> dict[str, Any]:
        self._record("update_cluster", cluster_id, params)
        cluster = self._cluster(cluster_id)
        cluster.update(params)
        return dict(cluster)

    async def delete_cluster(self, cluster_id: int) -> None:
        self._record("delete_cluster", cluster_id)
        self._cluster(cluster_id)
        del self.clusters[cluster_id]
        self.pools.pop(cluster_id, None)

    async def list_node_pools(self, cluster_id: int) -> list[dict[str, Any]]:
        self._record("list_node_pools", cluster_id)
        self._cluster(cluster_id)
        pools = [self._render(p) for p in self.pools[cluster_id]]
        self.not_ready_polls = max(0, self.not_ready_polls - 1)
        return pools

    async def get_node_pool(self, cluster_id: int, pool_id: int) -> dict[str, Any]:
        self._record("get_node_pool", cluster_id, pool_id)
        pool = self._render(self._pool(cluster_id, pool_id))
        self.not_ready_polls = max(0, self.not_ready_polls - 1)
        return pool

    async def create_node_pool(self, cluster_id: int, params: dict[str, Any]) -> dict[str, Any]:
        self._record("create_node_pool", cluster_id, params)
        pool = {"id": next(self._ids), "type": params["type"], "count": params["count"]}
        self.pools[cluster_id].append(pool)
        return self._render(pool)

    async def update_node_pool(
        self, cluster_id: int, pool_id: int, params: dict[str, Any],
    ) -> dict[str, Any]:
        self._record("update_node_pool", cluster_id, pool_id, params)
        pool = self._pool(cluster_id, pool_id)
        pool["count"] = params["count"]
        return self._render(pool)

    async def delete_node_pool(self, cluster_id: int, pool_id: int) -> None:
        self._record("delete_node_pool", cluster_id, pool_id)
        pool = self._pool(cluster_id, pool_id)
        self.pools[cluster_id].remove(pool)

    async def get_kubeconfig(self, cluster_id: int) -> str:
        self._record("get_kubeconfig", cluster_id)
        self._cluster(cluster_id)
        return self.kubeconfig

    async def close(self) -> None:
        self.closed += 1


# =============================================================================
# Fake Kubernetes admin
# =============================================================================


class FakeClusterAdmin:
    """In-memory ClusterAdmin; creates answer 409 for objects that exist."""

    def __init__(
        self,
        *,
        has_admin_role: bool = True,
        token: str = "sa-token",
        empty_secret_reads: int = 0,
    ) -> None:
        self.objects: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str]] = []
        self.has_admin_role = has_admin_role
        self.token = token
        self.empty_secret_reads = empty_secret_reads
        self.bound_role: str | None = None
        self._failures: dict[str, list[Exception]] = {}

    def fail(self, method: str, error: Exception, *, times: int = 1) -> None:
        self._failures.setdefault(method, []).extend([error] * times)

    def _record(self, method: str, name: str) -> None:
        self.calls.append((method, name))
        if pending := self._failures.get(method):
            raise pending.pop(0)

    def _create(self, kind: str, name: str) -> None:
        if (kind, name) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        self.objects.add((kind, name))

    async def create_namespace(self, name: str) -> None:
        self._record("create_namespace", name)
        self._create("namespace", name)

    async def create_service_account(self, namespace: str, name: str) -> None:
        self._record("create_service_account", name)
        self._create("serviceaccount", f"{namespace}/{name}")

    async def read_cluster_role(self, name: str) -> str:
        self._record("read_cluster_role", name)
        if self.has_admin_role or ("clusterrole", name) in self.objects:
            return name
        raise ApiException(status=404, reason="NotFound")

    async def create_cluster_role(self, name: str) -> str:
        self._record("create_cluster_role", name)
        self._create("clusterrole", name)
        return name

    async def create_cluster_role_binding(
        self, name: str, role: str, service_account: str, namespace: str,
    ) -> None:
        self._record("create_cluster_role_binding", name)
        self._create("clusterrolebinding", name)
        self.bound_role = role

    async def create_token_secret(self, namespace: str, name: str, service_account: str) -> None:
        self._record("create_token_secret", name)
        self._create("secret", f"{namespace}/{name}")

    async def read_secret_data(self, namespace: str, name: str) -> dict[str, str]:
        self._record("read_secret_data", name)
        if ("secret", f"{namespace}/{name}") not in self.objects:
            raise ApiException(status=404, reason="NotFound")
        if self.empty_secret_reads > 0:
            self.empty_secret_reads -= 1
            return {}
        return {"token": base64.b64encode(self.token.encode()).decode()}


def admin_factory_for(admin: FakeClusterAdmin):
    @asynccontextmanager
    async def factory(kubeconfig: str) -> AsyncIterator[FakeClusterAdmin]:
        yield admin

    return factory


# =============================================================================
# Builders
# =============================================================================


def b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


def make_kubeconfig(
    *,
    server: str = "https://1234.us-east-1.linodelke.net:443",
    token: str = "kube-token",
) -> str:
    doc = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": "lke1234",
            "cluster": {"server": server, "certificate-authority-data": b64("ca-cert")},
        }],
        "users": [{"name": "lke1234-admin", "user": {"token": token}}],
        "contexts": [{
            "name": "lke1234-ctx",
            "context": {"cluster": "lke1234", "user": "lke1234-admin", "namespace": "default"},
        }],
        "current-context": "lke1234-ctx",
    }
    return b64(yaml.safe_dump(doc))


def make_options(
    *,
    pools: list[str] | None = None,
    tags: list[str] | None = None,
    high_availability: bool | None = None,
    **strings: str,
) -> DriverOptions:
    string_options = {"access-token": TOKEN, **{k.replace("_", "-"): v for k, v in strings.items()}}
    slices: dict[str, list[str]] = {"node-pools": pools if pools is not None else ["g6-standard-2=3"]}
    if tags is not None:
        slices["tags"] = tags
    bools = {} if high_availability is None else {"high-availability": high_availability}
    return DriverOptions(
        string_options=string_options,
        bool_options=bools,
        string_slice_options=slices,
    )


def make_info(
    cluster_id: int | None,
    pools: dict[str, int],
    *,
    kubeconfig: str | None = None,
    **spec_fields: Any,
) -> ClusterInfo:
    spec = ClusterSpec(access_token=TOKEN, node_pools=pools, **spec_fields)
    return store_state(
        ClusterInfo(), PersistedState(spec=spec, cluster_id=cluster_id, kubeconfig=kubeconfig)
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fast_config() -> DriverConfig:
    return DriverConfig(
        retry_interval=0,
        cluster_ready_timeout=0.5,
        remove_timeout=0.5,
        service_account_timeout=0.5,
        secret_poll_interval=0,
        secret_timeout=0.2,
    )


@pytest.fixture
def api() -> FakeLKEApi:
    fake = FakeLKEApi()
    fake.kubeconfig = make_kubeconfig()
    return fake


@pytest.fixture
def admin() -> FakeClusterAdmin:
    return FakeClusterAdmin()


@pytest.fixture
def driver(api: FakeLKEApi, admin: FakeClusterAdmin, fast_config: DriverConfig) -> LKEDriver:
    return LKEDriver(
        fast_config,
        client_factory=lambda token: api,
        admin_factory=admin_factory_for(admin),
    )
