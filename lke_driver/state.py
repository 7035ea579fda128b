"""Persisted-state codec.

The host stores an opaque string map for each cluster and hands it back on
every call. The driver keeps its own record under a few keys of that map:

    state       JSON-encoded ClusterSpec (including the access token)
    cluster-id  LKE cluster id as a decimal string
    region      Region, duplicated for the host's display
    KubeConfig  base64 kubeconfig, cached after the first post-check

The JSON field names match the blobs written by earlier releases of the
driver so existing clusters keep loading.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Any

from loguru import logger

from lke_driver.constants import MetadataKey
from lke_driver.errors import ValidationError
from lke_driver.spec import ClusterSpec
from lke_driver.types import ClusterInfo

log = logger.bind(component="state")


@dataclass(frozen=True, slots=True)
class PersistedState:
    spec: ClusterSpec
    cluster_id: int | None = None
    kubeconfig: str | None = None

    def require_cluster_id(self) -> int:
        if self.cluster_id is None:
            raise ValidationError("Cluster metadata has no cluster id; was the cluster created?")
        return self.cluster_id

    def with_spec(self, spec: ClusterSpec) -> PersistedState:
        return replace(self, spec=spec)


def _spec_to_json(spec: ClusterSpec) -> dict[str, Any]:
    return {
        "AccessToken": spec.access_token,
        "Name": spec.name,
        "Label": spec.label,
        "Description": spec.description,
        "Region": spec.region,
        "K8sVersion": spec.kubernetes_version,
        "Tags": list(spec.tags) if spec.tags is not None else None,
        "NodePools": dict(spec.node_pools),
        "HighAvailability": spec.high_availability,
    }


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    # Older blobs store unset strings as "".
    value = data.get(key)
    return value if value else None


def _spec_from_json(data: dict[str, Any]) -> ClusterSpec:
    tags = data.get("Tags")
    pools = data.get("NodePools") or {}
    ha = data.get("HighAvailability")
    if not isinstance(pools, dict) or not all(isinstance(c, int) for c in pools.values()):
        raise ValidationError("Persisted state has a malformed node pool mapping")
    if ha is not None and not isinstance(ha, bool):
        raise ValidationError("Persisted state has a malformed high availability flag")
    return ClusterSpec(
        access_token=data.get("AccessToken") or "",
        node_pools={str(k): v for k, v in pools.items()},
        name=_optional_str(data, "Name"),
        label=_optional_str(data, "Label"),
        description=_optional_str(data, "Description"),
        region=_optional_str(data, "Region"),
        kubernetes_version=_optional_str(data, "K8sVersion"),
        tags=tuple(tags) if tags is not None else None,
        high_availability=ha,
    )


def encode_state(state: PersistedState) -> dict[str, str]:
    """Project a PersistedState onto the driver's metadata keys."""
    metadata = {
        MetadataKey.STATE: json.dumps(_spec_to_json(state.spec), sort_keys=True),
        MetadataKey.REGION: state.spec.region or "",
    }
    if state.cluster_id is not None:
        metadata[MetadataKey.CLUSTER_ID] = str(state.cluster_id)
    if state.kubeconfig:
        metadata[MetadataKey.KUBECONFIG] = state.kubeconfig
    return {str(k): v for k, v in metadata.items()}


def decode_state(metadata: dict[str, str]) -> PersistedState:
    """Rebuild the PersistedState from the host's metadata map.

    Raises:
        ValidationError: Missing or corrupt ``state`` blob or cluster id.
    """
    raw = metadata.get(MetadataKey.STATE)
    if not raw:
        raise ValidationError("Cluster metadata has no recorded state")
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ValidationError(f"Failed to decode recorded state: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Recorded state is not a JSON object")

    cluster_id: int | None = None
    if raw_id := metadata.get(MetadataKey.CLUSTER_ID):
        try:
            cluster_id = int(raw_id)
        except ValueError:
            raise ValidationError(f"Failed to parse cluster id {raw_id!r}") from None

    return PersistedState(
        spec=_spec_from_json(data),
        cluster_id=cluster_id,
        kubeconfig=metadata.get(MetadataKey.KUBECONFIG) or None,
    )


def load_state(info: ClusterInfo) -> PersistedState:
    return decode_state(info.metadata)


def store_state(info: ClusterInfo, state: PersistedState) -> ClusterInfo:
    """Write ``state`` into a copy of ``info``; other metadata keys are kept."""
    updated = info.copy()
    updated.metadata.update(encode_state(state))
    log.debug(
        "Stored state for cluster {cluster_id} ({pools})",
        cluster_id=state.cluster_id, pools=state.spec.node_pools,
    )
    return updated
