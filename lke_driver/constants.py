"""Centralized constants and enums for the LKE driver.

All magic strings, metadata keys and timing defaults live here so the
reconcilers, the codec and the bootstrapper agree on them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Linode API
# =============================================================================

DEFAULT_LINODE_URL: Final = "https://api.linode.com/v4"
USER_AGENT: Final = "kontainer-engine-driver-lke"
DEFAULT_REGION: Final = "us-central"


class NodeStatus(StrEnum):
    """LKE node (linode) readiness states."""

    READY = "ready"
    NOT_READY = "not_ready"


class ClusterStatus(StrEnum):
    """LKE cluster status values."""

    READY = "ready"
    NOT_READY = "not_ready"


# =============================================================================
# Host Metadata Keys
# =============================================================================


class MetadataKey(StrEnum):
    """Keys of the host-persisted metadata map owned by the driver."""

    STATE = "state"
    CLUSTER_ID = "cluster-id"
    REGION = "region"
    KUBECONFIG = "KubeConfig"


# =============================================================================
# Polling (in seconds)
# =============================================================================

RETRY_INTERVAL: Final = 5.0
CLUSTER_READY_TIMEOUT: Final = 20 * 60
REMOVE_TIMEOUT: Final = 10 * 60
SERVICE_ACCOUNT_TIMEOUT: Final = 5 * 60
SECRET_POLL_INTERVAL: Final = 0.5
SECRET_TIMEOUT: Final = 15.0


# =============================================================================
# In-cluster Credential Objects
# =============================================================================

CATTLE_NAMESPACE: Final = "cattle-system"
CLUSTER_ADMIN_ROLE: Final = "cluster-admin"
SERVICE_ACCOUNT_NAME: Final = "kontainer-engine"
CLUSTER_ROLE_BINDING_NAME: Final = "system-netes-default-clusterRoleBinding"
SERVICE_ACCOUNT_SECRET_NAME: Final = "kontainer-engine-secret"
SERVICE_ACCOUNT_ANNOTATION: Final = "kubernetes.io/service-account.name"
SERVICE_ACCOUNT_TOKEN_TYPE: Final = "kubernetes.io/service-account-token"
