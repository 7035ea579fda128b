"""LKE cluster driver.

LKEDriver implements the lifecycle operations the orchestration host calls.
It holds no per-cluster state: everything it needs comes in through the
ClusterInfo/DriverOptions arguments and everything it learns goes back out
in the returned ClusterInfo, which the host persists verbatim.

Example:
    driver = LKEDriver()
    info = await driver.create(options)
    info = await driver.post_check(info)
    size = await driver.get_cluster_size(info)
    await driver.remove(info)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import replace

from loguru import logger

from lke_driver.bootstrap import ClusterAdminFactory, bootstrap_service_account_token, open_cluster_admin
from lke_driver.config import DriverConfig
from lke_driver.constants import ClusterStatus, MetadataKey, NodeStatus
from lke_driver.errors import (
    LKEDriverError,
    LinodeAPIError,
    NodePoolReconcileError,
    NotSupportedError,
    ValidationError,
)
from lke_driver.kubeconfig import parse_kubeconfig
from lke_driver.linode.client import LinodeClient, LKEApi
from lke_driver.linode.types import (
    ClusterCreateParams,
    ClusterResponse,
    ClusterUpdateParams,
    NodePoolResponse,
)
from lke_driver.options import DriverFlags, DriverOptions, create_flags, update_flags
from lke_driver.pools import apply_node_pools, wait_for_pool_ready, wait_for_pools_ready
from lke_driver.spec import ClusterSpec
from lke_driver.state import PersistedState, load_state, store_state
from lke_driver.types import (
    Capabilities,
    Capability,
    ClusterInfo,
    K8sCapabilities,
    KubernetesVersion,
    LoadBalancerCapabilities,
    NodeCount,
)
from lke_driver.wait import wait_for_ready

type ClientFactory = Callable[[str], LKEApi]

_GONE = "gone"


def cluster_has_ready_node(pools: list[NodePoolResponse]) -> bool:
    return any(
        node["status"] == NodeStatus.READY
        for pool in pools
        for node in pool.get("nodes", [])
    )


def build_create_params(spec: ClusterSpec, default_region: str) -> ClusterCreateParams:
    params: ClusterCreateParams = {
        "label": spec.label or spec.name or "",
        "region": spec.region or default_region,
        "k8s_version": spec.kubernetes_version or "",
        "tags": list(spec.tags or ()),
        "node_pools": [{"type": t, "count": c} for t, c in spec.node_pools.items()],
    }
    # HA is only sent when the caller expressed a preference.
    if spec.high_availability is not None:
        params["control_plane"] = {"high_availability": spec.high_availability}
    return params


def build_update_params(recorded: ClusterSpec, desired: ClusterSpec) -> ClusterUpdateParams:
    """Cluster-level fields that actually changed; empty when nothing did."""
    params: ClusterUpdateParams = {}
    if recorded.label_changed(desired):
        params["label"] = desired.label or ""
    if recorded.tags_changed(desired):
        params["tags"] = list(desired.tags or ())
    if recorded.high_availability_changed(desired):
        params["control_plane"] = {"high_availability": bool(desired.high_availability)}
    return params


class LKEDriver:
    """Lifecycle driver for Linode Kubernetes Engine clusters.

    Args:
        config: Driver settings (API url, poll intervals, timeouts).
        client_factory: Builds a control-plane client from an access token.
        admin_factory: Opens a Kubernetes admin session from a base64 kubeconfig.
    """

    def __init__(
        self,
        config: DriverConfig | None = None,
        *,
        client_factory: ClientFactory | None = None,
        admin_factory: ClusterAdminFactory = open_cluster_admin,
    ) -> None:
        self.config = config or DriverConfig()
        self._client_factory = client_factory or (lambda token: LinodeClient(token, self.config))
        self._admin_factory = admin_factory
        self._log = logger.bind(component="driver")

    @asynccontextmanager
    async def _client(self, token: str) -> AsyncIterator[LKEApi]:
        client = self._client_factory(token)
        try:
            yield client
        finally:
            await client.close()

    # =========================================================================
    # Option Declarations & Capabilities
    # =========================================================================

    async def get_driver_create_options(self) -> DriverFlags:
        return create_flags()

    async def get_driver_update_options(self) -> DriverFlags:
        return update_flags()

    async def get_capabilities(self) -> Capabilities:
        return Capabilities(frozenset({
            Capability.GET_VERSION,
            Capability.SET_VERSION,
            Capability.GET_CLUSTER_SIZE,
            Capability.SET_CLUSTER_SIZE,
        }))

    async def get_k8s_capabilities(self, options: DriverOptions | None = None) -> K8sCapabilities:
        return K8sCapabilities(
            l4_load_balancer=LoadBalancerCapabilities(
                enabled=True,
                provider="NodeBalancer",
                protocols_supported=("TCP", "UDP"),
                health_check_supported=True,
            )
        )

    # =========================================================================
    # Waits
    # =========================================================================

    async def _wait_for_ready_node(
        self, client: LKEApi, cluster_id: int, cancel: asyncio.Event | None,
    ) -> None:
        self._log.info("Waiting for a ready node in cluster {cluster_id}", cluster_id=cluster_id)
        await wait_for_ready(
            lambda: client.list_node_pools(cluster_id),
            cluster_has_ready_node,
            interval=self.config.retry_interval,
            timeout=self.config.cluster_ready_timeout,
            description=f"a ready node in LKE cluster {cluster_id}",
            cancel=cancel,
        )

    async def _wait_for_removal(
        self, client: LKEApi, cluster_id: int, cancel: asyncio.Event | None,
    ) -> None:
        async def _status() -> str:
            try:
                cluster = await client.get_cluster(cluster_id)
            except LinodeAPIError as e:
                if e.not_found:
                    return _GONE
                raise
            return cluster["status"]

        await wait_for_ready(
            _status,
            lambda status: status in (_GONE, ClusterStatus.NOT_READY),
            interval=self.config.retry_interval,
            timeout=self.config.remove_timeout,
            description=f"removal of LKE cluster {cluster_id}",
            cancel=cancel,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create(
        self,
        options: DriverOptions,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ClusterInfo:
        """Create the cluster and wait until it has a ready node."""
        spec = ClusterSpec.from_options(options)
        if spec.region is None:
            spec = replace(spec, region=self.config.default_region)

        self._log.debug(
            "Creating cluster {name} with pools {pools}", name=spec.name, pools=spec.node_pools
        )
        info = store_state(ClusterInfo(), PersistedState(spec=spec))

        async with self._client(spec.access_token) as client:
            try:
                cluster: ClusterResponse = await client.create_cluster(
                    build_create_params(spec, self.config.default_region)
                )
            except LinodeAPIError as e:
                raise e.with_context("failed to create LKE cluster") from e

            cluster_id = cluster["id"]
            info = store_state(info, PersistedState(spec=spec, cluster_id=cluster_id))
            self._log.info("Created LKE cluster {cluster_id}", cluster_id=cluster_id)

            try:
                await self._wait_for_ready_node(client, cluster_id, cancel)
            except LKEDriverError as e:
                e.info = info
                raise

        return info

    async def update(
        self,
        info: ClusterInfo,
        options: DriverOptions,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ClusterInfo:
        """Apply changed cluster fields and reconcile the node pools."""
        desired = ClusterSpec.from_options(options)
        state = load_state(info)
        cluster_id = state.require_cluster_id()
        recorded = state.spec

        self._log.debug("Updating cluster {name} ({cluster_id})", name=recorded.name, cluster_id=cluster_id)

        async with self._client(desired.access_token) as client:
            params = build_update_params(recorded, desired)
            if params:
                try:
                    await client.update_cluster(cluster_id, params)
                except LinodeAPIError as e:
                    raise e.with_context(f"failed to update cluster {cluster_id}") from e
            # Cluster-level fields are settled; pools keep their recorded value until applied.
            settled = recorded.merged(desired, recorded.node_pools)
            applied = recorded.node_pools

            try:
                applied = await apply_node_pools(client, cluster_id, desired.node_pools)
                await wait_for_pools_ready(
                    client, cluster_id, interval=self.config.retry_interval, cancel=cancel,
                )
            except LKEDriverError as e:
                if isinstance(e, NodePoolReconcileError):
                    applied = e.applied
                e.info = store_state(info, state.with_spec(settled.merged(desired, applied)))
                raise

        return store_state(info, state.with_spec(settled.merged(desired, applied)))

    async def post_check(
        self,
        info: ClusterInfo,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ClusterInfo:
        """Fill in how to reach the cluster and bootstrap the host's token."""
        state = load_state(info)
        kubeconfig = state.kubeconfig

        if not kubeconfig:
            cluster_id = state.require_cluster_id()
            async with self._client(state.spec.access_token) as client:
                await self._wait_for_ready_node(client, cluster_id, cancel)
                try:
                    kubeconfig = await client.get_kubeconfig(cluster_id)
                except LinodeAPIError as e:
                    raise e.with_context(
                        f"failed to get kubeconfig for LKE cluster {cluster_id}"
                    ) from e

        access = parse_kubeconfig(kubeconfig)

        checked = info.copy()
        checked.version = state.spec.kubernetes_version or ""
        checked.node_count = state.spec.node_count
        checked.endpoint = access.endpoint
        checked.username = access.username
        checked.password = access.password
        checked.root_ca_certificate = access.ca_data
        checked.client_certificate = access.cert_data
        checked.client_key = access.key_data
        checked.metadata[MetadataKey.KUBECONFIG] = kubeconfig

        if checked.service_account_token:
            self._log.debug("Service account token already cached, skipping bootstrap")
        else:
            checked.service_account_token = await bootstrap_service_account_token(
                kubeconfig,
                config=self.config,
                cancel=cancel,
                admin_factory=self._admin_factory,
            )
        return checked

    async def remove(
        self,
        info: ClusterInfo,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Delete the cluster and wait until the API stops reporting it ready."""
        state = load_state(info)
        cluster_id = state.require_cluster_id()
        self._log.info(
            "Removing cluster {name} ({cluster_id}) from region {region}",
            name=state.spec.name, cluster_id=cluster_id, region=state.spec.region,
        )

        async with self._client(state.spec.access_token) as client:
            try:
                await client.delete_cluster(cluster_id)
            except LinodeAPIError as e:
                if e.not_found:
                    self._log.info("Cluster {cluster_id} is already gone", cluster_id=cluster_id)
                    return
                raise e.with_context(f"failed to delete Linode LKE cluster {cluster_id}") from e
            await self._wait_for_removal(client, cluster_id, cancel)

    # =========================================================================
    # Size & Version
    # =========================================================================

    async def _list_pools(self, client: LKEApi, cluster_id: int) -> list[NodePoolResponse]:
        try:
            return await client.list_node_pools(cluster_id)
        except LinodeAPIError as e:
            raise e.with_context(f"failed to get pools for LKE cluster {cluster_id}") from e

    async def get_cluster_size(self, info: ClusterInfo) -> NodeCount:
        state = load_state(info)
        cluster_id = state.require_cluster_id()
        async with self._client(state.spec.access_token) as client:
            pools = await self._list_pools(client, cluster_id)
        return NodeCount(count=sum(pool["count"] for pool in pools))

    async def set_cluster_size(
        self,
        info: ClusterInfo,
        count: NodeCount,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Resize the first node pool; scale-ups wait for the new nodes."""
        if count.count < 1:
            raise ValidationError(f"Cluster size must be at least 1, got {count.count}")
        state = load_state(info)
        cluster_id = state.require_cluster_id()

        self._log.info("Updating cluster {cluster_id} size to {count}", cluster_id=cluster_id, count=count.count)
        async with self._client(state.spec.access_token) as client:
            pools = await self._list_pools(client, cluster_id)
            if not pools:
                raise ValidationError(f"LKE cluster {cluster_id} has no node pools to resize")
            pool_id, current = pools[0]["id"], pools[0]["count"]

            try:
                await client.update_node_pool(cluster_id, pool_id, {"count": count.count})
            except LinodeAPIError as e:
                raise e.with_context(
                    f"failed to update LKE cluster {cluster_id} node pool {pool_id}"
                ) from e

            if count.count > current:
                await wait_for_pool_ready(
                    client, cluster_id, pool_id,
                    interval=self.config.retry_interval, cancel=cancel,
                )
        self._log.info("Cluster {cluster_id} size updated", cluster_id=cluster_id)

    async def get_version(self, info: ClusterInfo) -> KubernetesVersion:
        state = load_state(info)
        cluster_id = state.require_cluster_id()
        async with self._client(state.spec.access_token) as client:
            try:
                cluster = await client.get_cluster(cluster_id)
            except LinodeAPIError as e:
                raise e.with_context(f"failed to get LKE cluster {cluster_id}") from e
        return KubernetesVersion(version=cluster["k8s_version"])

    async def set_version(self, info: ClusterInfo, version: KubernetesVersion) -> ClusterInfo:
        """Upgrade the cluster's Kubernetes version and record it."""
        if not version.version:
            raise ValidationError("A Kubernetes version is required")
        state = load_state(info)
        cluster_id = state.require_cluster_id()
        if state.spec.kubernetes_version == version.version:
            return info.copy()

        async with self._client(state.spec.access_token) as client:
            try:
                await client.update_cluster(cluster_id, {"k8s_version": version.version})
            except LinodeAPIError as e:
                raise e.with_context(f"failed to upgrade LKE cluster {cluster_id}") from e

        spec = replace(state.spec, kubernetes_version=version.version)
        return store_state(info, state.with_spec(spec))

    # =========================================================================
    # Unsupported / No-op
    # =========================================================================

    async def etcd_save(self, info: ClusterInfo, options: DriverOptions, snapshot_name: str) -> None:
        raise NotSupportedError("ETCD backup operations are not implemented")

    async def etcd_restore(
        self, info: ClusterInfo, options: DriverOptions, snapshot_name: str,
    ) -> ClusterInfo:
        raise NotSupportedError("ETCD backup operations are not implemented")

    async def etcd_remove_snapshot(
        self, info: ClusterInfo, options: DriverOptions, snapshot_name: str,
    ) -> None:
        raise NotSupportedError("ETCD backup operations are not implemented")

    async def remove_legacy_service_account(self, info: ClusterInfo) -> None:
        return None
