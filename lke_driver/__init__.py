"""LKE driver - Provision and manage Linode Kubernetes Engine clusters.

Example:

    from lke_driver import DriverOptions, LKEDriver

    driver = LKEDriver()
    options = DriverOptions(
        string_options={"access-token": token, "name": "demo", "region": "us-east"},
        string_slice_options={"node-pools": ["g6-standard-2=3"]},
    )
    info = await driver.create(options)
    info = await driver.post_check(info)
"""

# Driver
from lke_driver.driver import LKEDriver

# Configuration & logging
from lke_driver.config import DriverConfig, load_config
from lke_driver.logging import LogConfig, logging_enabled, setup_logging, teardown_logging

# Options & desired state
from lke_driver.options import DriverFlags, DriverOptions, Flag, FlagType
from lke_driver.spec import ClusterSpec

# Host value types
from lke_driver.types import (
    Capabilities,
    Capability,
    ClusterInfo,
    K8sCapabilities,
    KubernetesVersion,
    LoadBalancerCapabilities,
    NodeCount,
)

# Errors
from lke_driver.errors import (
    BootstrapError,
    ConvergenceTimeoutError,
    LKEDriverError,
    LinodeAPIError,
    NodePoolReconcileError,
    NotSupportedError,
    PollCancelledError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "LKEDriver",
    "DriverConfig",
    "load_config",
    "LogConfig",
    "logging_enabled",
    "setup_logging",
    "teardown_logging",
    "DriverFlags",
    "DriverOptions",
    "Flag",
    "FlagType",
    "ClusterSpec",
    "Capabilities",
    "Capability",
    "ClusterInfo",
    "K8sCapabilities",
    "KubernetesVersion",
    "LoadBalancerCapabilities",
    "NodeCount",
    "BootstrapError",
    "ConvergenceTimeoutError",
    "LKEDriverError",
    "LinodeAPIError",
    "NodePoolReconcileError",
    "NotSupportedError",
    "PollCancelledError",
    "ValidationError",
]
