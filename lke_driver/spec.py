"""Desired-state descriptor for one LKE cluster.

ClusterSpec is both what the caller asks for (parsed from DriverOptions) and
what the driver recorded last time (decoded from the persisted state). Fields
left as None were not supplied; on update they keep their recorded value.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace

from lke_driver.errors import ValidationError
from lke_driver.options import DriverOptions


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(v for v in values if v))


def parse_node_pools(entries: Iterable[str]) -> dict[str, int]:
    """Parse ``"<type>=<count>"`` entries into a type -> count mapping.

    Raises:
        ValidationError: An entry is not ``type=count`` or count is not an integer.
    """
    pools: dict[str, int] = {}
    for entry in entries:
        pool_type, sep, raw_count = entry.partition("=")
        pool_type, raw_count = pool_type.strip(), raw_count.strip()
        if not sep or not pool_type or "=" in raw_count:
            raise ValidationError(f"Invalid node pool {entry!r}: expected <type>=<count>")
        try:
            pools[pool_type] = int(raw_count)
        except ValueError:
            raise ValidationError(
                f"Failed to parse node count {raw_count!r} for pool of node type {pool_type}"
            ) from None
    return pools


def validate_node_pools(pools: Mapping[str, int]) -> None:
    if not pools:
        raise ValidationError("At least one node pool is required")
    for pool_type, count in pools.items():
        if count <= 0:
            raise ValidationError(f"At least 1 node required for node pool {pool_type}")


@dataclass(frozen=True, slots=True)
class ClusterSpec:
    """Target (or recorded) state of one cluster.

    Args:
        access_token: Linode API token used for every remote call.
        node_pools: Pool type -> node count. Non-empty, every count >= 1.
        name: Internal name of the cluster in the host.
        label: Cluster label in Linode.
        description: Free-text description.
        region: Linode region id.
        kubernetes_version: LKE Kubernetes version, e.g. "1.29".
        tags: Cluster tags. Order is kept but compared as a set.
        high_availability: HA control plane preference; None means no preference.
    """

    access_token: str
    node_pools: dict[str, int] = field(default_factory=dict)
    name: str | None = None
    label: str | None = None
    description: str | None = None
    region: str | None = None
    kubernetes_version: str | None = None
    tags: tuple[str, ...] | None = None
    high_availability: bool | None = None

    def __post_init__(self) -> None:
        # "" and None both mean "not supplied".
        for name in ("name", "label", "description", "region", "kubernetes_version"):
            if getattr(self, name) == "":
                object.__setattr__(self, name, None)

    @classmethod
    def from_options(cls, options: DriverOptions) -> ClusterSpec:
        """Parse and validate the host's option bag.

        Raises:
            ValidationError: Missing token, malformed or empty node pools.
        """
        token = options.string("access-token", "accessToken")
        if not token:
            raise ValidationError("An access token is required")

        tags = options.string_slice("tags")
        pools = parse_node_pools(options.string_slice("node-pools", "nodePools") or [])

        spec = cls(
            access_token=token,
            node_pools=pools,
            name=options.string("name"),
            label=options.string("label"),
            description=options.string("description"),
            region=options.string("region"),
            kubernetes_version=options.string("kubernetes-version", "kubernetesVersion"),
            tags=_dedupe(tags) if tags is not None else None,
            high_availability=options.boolean("high-availability", "highAvailability"),
        )
        spec.validate()
        return spec

    def validate(self) -> None:
        validate_node_pools(self.node_pools)

    @property
    def node_count(self) -> int:
        return sum(self.node_pools.values())

    @property
    def tag_set(self) -> frozenset[str]:
        return frozenset(self.tags or ())

    def label_changed(self, desired: ClusterSpec) -> bool:
        return desired.label is not None and desired.label != self.label

    def tags_changed(self, desired: ClusterSpec) -> bool:
        return desired.tags is not None and desired.tag_set != self.tag_set

    def high_availability_changed(self, desired: ClusterSpec) -> bool:
        """HA is only ever changed by an explicit preference.

        An absent desired preference never counts as a change, so repeated
        updates that omit the flag cannot turn HA off.
        """
        return (
            desired.high_availability is not None
            and desired.high_availability != self.high_availability
        )

    def merged(self, desired: ClusterSpec, node_pools: Mapping[str, int]) -> ClusterSpec:
        """Recorded state after applying ``desired`` on top of this one."""
        return replace(
            self,
            access_token=desired.access_token,
            node_pools=dict(node_pools),
            name=desired.name if desired.name is not None else self.name,
            label=desired.label if desired.label is not None else self.label,
            description=(
                desired.description if desired.description is not None else self.description
            ),
            tags=desired.tags if desired.tags is not None else self.tags,
            high_availability=(
                desired.high_availability
                if desired.high_availability is not None
                else self.high_availability
            ),
        )
