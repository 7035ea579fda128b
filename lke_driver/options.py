"""Host option bags and the option flags the driver declares.

The host hands every lifecycle call a flat, loosely typed option set. This
module only knows how to look values up in it (accepting the camelCase
aliases the host may use); turning them into a validated ClusterSpec is
lke_driver.spec's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from lke_driver.constants import DEFAULT_REGION


@dataclass(frozen=True, slots=True)
class DriverOptions:
    """Raw option values keyed by flag name, one bag per value type."""

    string_options: dict[str, str] = field(default_factory=dict)
    bool_options: dict[str, bool] = field(default_factory=dict)
    string_slice_options: dict[str, list[str]] = field(default_factory=dict)

    def string(self, *keys: str) -> str | None:
        """First non-empty string under any of ``keys``."""
        for key in keys:
            if value := self.string_options.get(key):
                return value
        return None

    def boolean(self, *keys: str) -> bool | None:
        """Tri-state lookup: None when no key was supplied at all."""
        for key in keys:
            if key in self.bool_options:
                return self.bool_options[key]
        return None

    def string_slice(self, *keys: str) -> list[str] | None:
        for key in keys:
            if key in self.string_slice_options:
                return list(self.string_slice_options[key])
        return None


# =============================================================================
# Flag Declarations
# =============================================================================


class FlagType(StrEnum):
    STRING = "string"
    STRING_SLICE = "stringSlice"
    BOOL_POINTER = "boolPointer"


@dataclass(frozen=True, slots=True)
class Flag:
    type: FlagType
    usage: str
    default: str | list[str] | bool | None = None


@dataclass(frozen=True, slots=True)
class DriverFlags:
    options: dict[str, Flag]


_TAGS_USAGE = "The list of tags applied to the cluster"
_NODE_POOLS_USAGE = "The list of node pools created for the cluster, as <type>=<count>"
_HA_USAGE = "If enabled, this cluster will be a high availability cluster"


def create_flags() -> DriverFlags:
    return DriverFlags(options={
        "access-token": Flag(FlagType.STRING, "Linode API access token"),
        "name": Flag(FlagType.STRING, "The internal name of the cluster in the host"),
        "label": Flag(FlagType.STRING, "The label of the cluster in Linode"),
        "description": Flag(FlagType.STRING, "An optional description of this cluster"),
        "region": Flag(FlagType.STRING, "The region to launch the cluster", DEFAULT_REGION),
        "kubernetes-version": Flag(FlagType.STRING, "The Kubernetes version"),
        "tags": Flag(FlagType.STRING_SLICE, _TAGS_USAGE),
        "node-pools": Flag(FlagType.STRING_SLICE, _NODE_POOLS_USAGE),
        "high-availability": Flag(FlagType.BOOL_POINTER, _HA_USAGE),
    })


def update_flags() -> DriverFlags:
    return DriverFlags(options={
        "access-token": Flag(FlagType.STRING, "Linode API access token"),
        "label": Flag(FlagType.STRING, "The label of the cluster in Linode"),
        "tags": Flag(FlagType.STRING_SLICE, _TAGS_USAGE),
        "node-pools": Flag(FlagType.STRING_SLICE, _NODE_POOLS_USAGE),
        "high-availability": Flag(FlagType.BOOL_POINTER, _HA_USAGE),
    })
