"""Host-facing value types exchanged with the orchestration host."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum


@dataclass(slots=True)
class ClusterInfo:
    """Everything the host persists about one cluster between calls.

    ``metadata`` is an opaque string map the host stores verbatim; the driver
    owns the keys listed in lke_driver.constants.MetadataKey. The remaining
    fields are filled by post_check for the host to reach the cluster.
    """

    metadata: dict[str, str] = field(default_factory=dict)
    version: str = ""
    node_count: int = 0
    endpoint: str = ""
    username: str = ""
    password: str = ""
    root_ca_certificate: str = ""
    client_certificate: str = ""
    client_key: str = ""
    service_account_token: str = ""
    status: str = ""

    def copy(self) -> ClusterInfo:
        """Shallow copy with an independent metadata map."""
        return ClusterInfo(
            metadata=dict(self.metadata),
            version=self.version,
            node_count=self.node_count,
            endpoint=self.endpoint,
            username=self.username,
            password=self.password,
            root_ca_certificate=self.root_ca_certificate,
            client_certificate=self.client_certificate,
            client_key=self.client_key,
            service_account_token=self.service_account_token,
            status=self.status,
        )


@dataclass(frozen=True, slots=True)
class NodeCount:
    count: int


@dataclass(frozen=True, slots=True)
class KubernetesVersion:
    version: str


class Capability(IntEnum):
    """Optional driver operations advertised to the host."""

    GET_VERSION = 0
    SET_VERSION = 1
    GET_CLUSTER_SIZE = 2
    SET_CLUSTER_SIZE = 3


@dataclass(frozen=True, slots=True)
class Capabilities:
    capabilities: frozenset[Capability] = frozenset()

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True, slots=True)
class LoadBalancerCapabilities:
    enabled: bool
    provider: str
    protocols_supported: tuple[str, ...]
    health_check_supported: bool


@dataclass(frozen=True, slots=True)
class K8sCapabilities:
    l4_load_balancer: LoadBalancerCapabilities | None = None
