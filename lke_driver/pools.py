"""Node pool reconciliation.

Brings the remote pools of one cluster in line with a desired
pool-type -> count mapping:

1. diff the freshly listed remote pools against the desired mapping,
2. delete, create and resize pools one call at a time,
3. re-list the pools and wait until every node of every pool is ready.

There is no rollback. If a mutation fails, the ones already issued stay
applied and NodePoolReconcileError reports the mapping as last applied; a
retry re-lists and re-diffs against what the remote side actually has.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from loguru import logger

from lke_driver.constants import NodeStatus
from lke_driver.errors import LinodeAPIError, NodePoolReconcileError
from lke_driver.linode.client import LKEApi
from lke_driver.linode.types import NodePoolResponse
from lke_driver.wait import wait_for_ready

log = logger.bind(component="pools")


@dataclass(frozen=True, slots=True)
class PoolResize:
    pool: NodePoolResponse
    count: int


@dataclass(frozen=True, slots=True)
class PoolDiff:
    """Mutations needed to turn the remote pools into the desired ones.

    Every remote pool is in exactly one of ``unchanged``, ``to_delete`` or
    ``to_resize``; every desired type without a remote pool is in
    ``to_create``.
    """

    to_delete: tuple[NodePoolResponse, ...] = ()
    to_create: tuple[tuple[str, int], ...] = ()
    to_resize: tuple[PoolResize, ...] = ()
    unchanged: tuple[NodePoolResponse, ...] = ()

    @property
    def empty(self) -> bool:
        return not (self.to_delete or self.to_create or self.to_resize)


def diff_pools(remote: Sequence[NodePoolResponse], desired: Mapping[str, int]) -> PoolDiff:
    """Compute the pool mutations, keyed by pool type.

    When several remote pools share a type, the first one listed is the one
    reconciled; the others are left as they are.
    """
    to_delete: list[NodePoolResponse] = []
    to_resize: list[PoolResize] = []
    unchanged: list[NodePoolResponse] = []
    seen: set[str] = set()

    for pool in remote:
        pool_type = pool["type"]
        if pool_type not in desired:
            to_delete.append(pool)
        elif pool_type in seen or pool["count"] == desired[pool_type]:
            unchanged.append(pool)
        else:
            to_resize.append(PoolResize(pool=pool, count=desired[pool_type]))
        seen.add(pool_type)

    to_create = tuple((t, count) for t, count in desired.items() if t not in seen)

    return PoolDiff(
        to_delete=tuple(to_delete),
        to_create=to_create,
        to_resize=tuple(to_resize),
        unchanged=tuple(unchanged),
    )


def pool_counts(pools: Sequence[NodePoolResponse]) -> dict[str, int]:
    """Type -> count view of a pool listing (first pool per type wins)."""
    counts: dict[str, int] = {}
    for pool in pools:
        counts.setdefault(pool["type"], pool["count"])
    return counts


async def apply_pool_diff(
    client: LKEApi,
    cluster_id: int,
    diff: PoolDiff,
    current: Mapping[str, int],
) -> dict[str, int]:
    """Issue the diff's mutations sequentially: deletes, creates, resizes.

    Args:
        client: Remote control-plane client.
        cluster_id: LKE cluster id.
        diff: Output of diff_pools.
        current: Type -> count mapping the diff was computed from.

    Returns:
        The type -> count mapping after all mutations were applied.

    Raises:
        NodePoolReconcileError: A mutation failed; the remaining ones were not issued.
    """
    applied = dict(current)

    def _failed(e: LinodeAPIError, context: str) -> NodePoolReconcileError:
        return NodePoolReconcileError(e.status, e.message, context=context, applied=applied)

    for pool in diff.to_delete:
        try:
            await client.delete_node_pool(cluster_id, pool["id"])
        except LinodeAPIError as e:
            raise _failed(
                e, f"failed to delete node pool {pool['id']} ({pool['type']}) of cluster {cluster_id}"
            ) from e
        applied.pop(pool["type"], None)

    for pool_type, count in diff.to_create:
        try:
            await client.create_node_pool(cluster_id, {"type": pool_type, "count": count})
        except LinodeAPIError as e:
            raise _failed(
                e, f"failed to create {pool_type} node pool of cluster {cluster_id}"
            ) from e
        applied[pool_type] = count

    for resize in diff.to_resize:
        pool = resize.pool
        try:
            await client.update_node_pool(cluster_id, pool["id"], {"count": resize.count})
        except LinodeAPIError as e:
            raise _failed(
                e, f"failed to resize node pool {pool['id']} ({pool['type']}) of cluster {cluster_id}"
            ) from e
        applied[pool["type"]] = resize.count

    return applied


def pool_is_ready(pool: NodePoolResponse) -> bool:
    return all(node["status"] == NodeStatus.READY for node in pool.get("nodes", []))


async def wait_for_pool_ready(
    client: LKEApi,
    cluster_id: int,
    pool_id: int,
    *,
    interval: float,
    cancel: asyncio.Event | None = None,
) -> NodePoolResponse:
    """Block until every node of the pool reports ready. Unbounded."""
    return await wait_for_ready(
        lambda: client.get_node_pool(cluster_id, pool_id),
        pool_is_ready,
        interval=interval,
        description=f"node pool {pool_id} of cluster {cluster_id}",
        cancel=cancel,
    )


async def wait_for_pools_ready(
    client: LKEApi,
    cluster_id: int,
    *,
    interval: float,
    cancel: asyncio.Event | None = None,
) -> list[NodePoolResponse]:
    """Re-list the cluster's pools and wait for each of them in turn."""
    try:
        pools = await client.list_node_pools(cluster_id)
    except LinodeAPIError as e:
        raise e.with_context(f"failed to get pools for LKE cluster {cluster_id}") from e

    ready = []
    for pool in pools:
        log.debug("Waiting for node pool {pool_id} ({type})", pool_id=pool["id"], type=pool["type"])
        ready.append(
            await wait_for_pool_ready(
                client, cluster_id, pool["id"], interval=interval, cancel=cancel
            )
        )
    return ready


async def apply_node_pools(
    client: LKEApi,
    cluster_id: int,
    desired: Mapping[str, int],
) -> dict[str, int]:
    """List the remote pools, diff them against ``desired`` and apply the diff.

    Returns:
        The type -> count mapping now in effect. Nodes may not be ready yet.
    """
    try:
        remote = await client.list_node_pools(cluster_id)
    except LinodeAPIError as e:
        raise e.with_context(f"failed to get pools for LKE cluster {cluster_id}") from e

    diff = diff_pools(remote, desired)
    log.info(
        "Cluster {cluster_id}: {deletes} pool(s) to delete, {creates} to create, {resizes} to resize",
        cluster_id=cluster_id,
        deletes=len(diff.to_delete),
        creates=len(diff.to_create),
        resizes=len(diff.to_resize),
    )

    return await apply_pool_diff(client, cluster_id, diff, pool_counts(remote))


async def reconcile_node_pools(
    client: LKEApi,
    cluster_id: int,
    desired: Mapping[str, int],
    *,
    interval: float,
    cancel: asyncio.Event | None = None,
) -> dict[str, int]:
    """Apply the pool diff and wait for convergence."""
    applied = await apply_node_pools(client, cluster_id, desired)
    await wait_for_pools_ready(client, cluster_id, interval=interval, cancel=cancel)
    return applied
