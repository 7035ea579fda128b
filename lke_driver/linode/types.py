"""Linode LKE API request/response types.

TypedDicts for API payloads - no conversion needed.
"""

from __future__ import annotations

from typing import NotRequired, TypedDict


class ControlPlaneOptions(TypedDict):
    high_availability: bool


class NodePoolCreateParams(TypedDict):
    type: str
    count: int


class NodePoolUpdateParams(TypedDict):
    count: int


class ClusterCreateParams(TypedDict):
    label: str
    region: str
    k8s_version: str
    tags: list[str]
    node_pools: list[NodePoolCreateParams]
    control_plane: NotRequired[ControlPlaneOptions]


class ClusterUpdateParams(TypedDict, total=False):
    """Only the keys present are changed remotely."""

    label: str
    tags: list[str]
    k8s_version: str
    control_plane: ControlPlaneOptions


class ClusterResponse(TypedDict):
    id: int
    label: str
    region: str
    k8s_version: str
    status: str
    tags: list[str]
    created: NotRequired[str]
    updated: NotRequired[str]
    control_plane: NotRequired[ControlPlaneOptions]


class NodeResponse(TypedDict):
    """A single worker node ("linode") of a pool."""

    id: str
    instance_id: int | None
    status: str


class NodePoolResponse(TypedDict):
    id: int
    type: str
    count: int
    nodes: list[NodeResponse]
    tags: NotRequired[list[str]]


class KubeconfigResponse(TypedDict):
    kubeconfig: str  # base64-encoded YAML


class VersionResponse(TypedDict):
    id: str


class ErrorDetail(TypedDict):
    reason: str
    field: NotRequired[str]


class Page[T](TypedDict):
    data: list[T]
    page: int
    pages: int
    results: int
