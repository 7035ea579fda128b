"""In-cluster credential bootstrap.

Once a cluster is reachable the host needs a long-lived bearer token it can
use on its own. The driver creates (or reuses):

    namespace            cattle-system
    service account      cattle-system/kontainer-engine
    cluster role         cluster-admin (reused when the cluster ships one)
    cluster role binding system-netes-default-clusterRoleBinding
    token secret         cattle-system/kontainer-engine-secret

and then waits for the control plane to populate the secret's token. Every
step treats "already exists" as success, so the whole sequence is safe to
re-run until it succeeds.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol, cast

import aiohttp
from kubernetes_asyncio import client, config as kube_config
from kubernetes_asyncio.client.rest import ApiException
from loguru import logger

from lke_driver.config import DriverConfig
from lke_driver.constants import (
    CATTLE_NAMESPACE,
    CLUSTER_ADMIN_ROLE,
    CLUSTER_ROLE_BINDING_NAME,
    SERVICE_ACCOUNT_ANNOTATION,
    SERVICE_ACCOUNT_NAME,
    SERVICE_ACCOUNT_SECRET_NAME,
    SERVICE_ACCOUNT_TOKEN_TYPE,
)
from lke_driver.errors import BootstrapError, ConvergenceTimeoutError
from lke_driver.kubeconfig import decode_kubeconfig
from lke_driver.wait import wait_for_ready

log = logger.bind(component="bootstrap")

_RETRYABLE = (ApiException, BootstrapError, ConvergenceTimeoutError, aiohttp.ClientError, OSError)


# =============================================================================
# Cluster Admin API
# =============================================================================


class ClusterAdmin(Protocol):
    """The handful of Kubernetes admin calls the bootstrap needs.

    Create calls raise ApiException with status 409 when the object exists.
    """

    async def create_namespace(self, name: str) -> None: ...
    async def create_service_account(self, namespace: str, name: str) -> None: ...
    async def read_cluster_role(self, name: str) -> str: ...
    async def create_cluster_role(self, name: str) -> str: ...
    async def create_cluster_role_binding(
        self, name: str, role: str, service_account: str, namespace: str,
    ) -> None: ...
    async def create_token_secret(self, namespace: str, name: str, service_account: str) -> None: ...
    async def read_secret_data(self, namespace: str, name: str) -> dict[str, str]: ...


type ClusterAdminFactory = Callable[[str], AbstractAsyncContextManager[ClusterAdmin]]


class KubernetesClusterAdmin:
    """ClusterAdmin backed by kubernetes_asyncio."""

    def __init__(self, api: client.ApiClient) -> None:
        self._core = client.CoreV1Api(api)
        self._rbac = client.RbacAuthorizationV1Api(api)

    async def create_namespace(self, name: str) -> None:
        await self._core.create_namespace(
            body=client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
        )

    async def create_service_account(self, namespace: str, name: str) -> None:
        await self._core.create_namespaced_service_account(
            namespace=namespace,
            body=client.V1ServiceAccount(metadata=client.V1ObjectMeta(name=name)),
        )

    async def read_cluster_role(self, name: str) -> str:
        role = await self._rbac.read_cluster_role(name=name)
        return role.metadata.name

    async def create_cluster_role(self, name: str) -> str:
        role = await self._rbac.create_cluster_role(
            body=client.V1ClusterRole(
                metadata=client.V1ObjectMeta(name=name),
                rules=[
                    client.V1PolicyRule(api_groups=["*"], resources=["*"], verbs=["*"]),
                    client.V1PolicyRule(non_resource_ur_ls=["*"], verbs=["*"]),
                ],
            )
        )
        return role.metadata.name

    async def create_cluster_role_binding(
        self, name: str, role: str, service_account: str, namespace: str,
    ) -> None:
        await self._rbac.create_cluster_role_binding(
            body={
                "apiVersion": "rbac.authorization.k8s.io/v1",
                "kind": "ClusterRoleBinding",
                "metadata": {"name": name},
                "subjects": [{
                    "kind": "ServiceAccount",
                    "name": service_account,
                    "namespace": namespace,
                    "apiGroup": "",
                }],
                "roleRef": {
                    "kind": "ClusterRole",
                    "name": role,
                    "apiGroup": "rbac.authorization.k8s.io",
                },
            }
        )

    async def create_token_secret(self, namespace: str, name: str, service_account: str) -> None:
        await self._core.create_namespaced_secret(
            namespace=namespace,
            body=client.V1Secret(
                metadata=client.V1ObjectMeta(
                    name=name,
                    annotations={SERVICE_ACCOUNT_ANNOTATION: service_account},
                ),
                type=SERVICE_ACCOUNT_TOKEN_TYPE,
            ),
        )

    async def read_secret_data(self, namespace: str, name: str) -> dict[str, str]:
        secret = await self._core.read_namespaced_secret(name=name, namespace=namespace)
        return dict(secret.data or {})


@asynccontextmanager
async def open_cluster_admin(kubeconfig: str) -> AsyncIterator[ClusterAdmin]:
    """Connect to the cluster described by a base64 kubeconfig."""
    configuration = client.Configuration()
    await kube_config.load_kube_config_from_dict(
        decode_kubeconfig(kubeconfig), client_configuration=configuration
    )
    async with client.ApiClient(configuration) as api:
        yield KubernetesClusterAdmin(api)


# =============================================================================
# Bootstrap
# =============================================================================


async def _ensure(what: str, create: Callable[[], Awaitable[None]]) -> None:
    try:
        await create()
    except ApiException as e:
        if e.status != 409:
            raise BootstrapError(f"error creating {what}: {e.status} {e.reason}") from e
        log.debug("{what} already exists", what=what)


async def _ensure_admin_role(admin: ClusterAdmin) -> str:
    try:
        return await admin.read_cluster_role(CLUSTER_ADMIN_ROLE)
    except ApiException as e:
        if e.status != 404:
            raise BootstrapError(f"error reading admin role: {e.status} {e.reason}") from e
    log.info("Cluster has no {role} role, creating it", role=CLUSTER_ADMIN_ROLE)
    try:
        return await admin.create_cluster_role(CLUSTER_ADMIN_ROLE)
    except ApiException as e:
        raise BootstrapError(f"error creating admin role: {e.status} {e.reason}") from e


async def wait_for_secret_token(
    admin: ClusterAdmin,
    *,
    interval: float,
    timeout: float,
    cancel: asyncio.Event | None = None,
) -> str:
    """Wait for the control plane to populate the token secret."""
    data = await wait_for_ready(
        lambda: admin.read_secret_data(CATTLE_NAMESPACE, SERVICE_ACCOUNT_SECRET_NAME),
        lambda d: bool(d.get("token")),
        interval=interval,
        timeout=timeout,
        description=f"token of secret {CATTLE_NAMESPACE}/{SERVICE_ACCOUNT_SECRET_NAME}",
        cancel=cancel,
    )
    return base64.b64decode(data["token"]).decode()


async def generate_service_account_token(
    admin: ClusterAdmin,
    *,
    config: DriverConfig,
    cancel: asyncio.Event | None = None,
) -> str:
    """Create (or reuse) the RBAC objects and return the service account token."""
    await _ensure(
        f"namespace {CATTLE_NAMESPACE}",
        lambda: admin.create_namespace(CATTLE_NAMESPACE),
    )
    await _ensure(
        f"service account {SERVICE_ACCOUNT_NAME}",
        lambda: admin.create_service_account(CATTLE_NAMESPACE, SERVICE_ACCOUNT_NAME),
    )
    role = await _ensure_admin_role(admin)
    await _ensure(
        f"cluster role binding {CLUSTER_ROLE_BINDING_NAME}",
        lambda: admin.create_cluster_role_binding(
            CLUSTER_ROLE_BINDING_NAME, role, SERVICE_ACCOUNT_NAME, CATTLE_NAMESPACE
        ),
    )
    await _ensure(
        f"secret for service account {SERVICE_ACCOUNT_NAME}",
        lambda: admin.create_token_secret(
            CATTLE_NAMESPACE, SERVICE_ACCOUNT_SECRET_NAME, SERVICE_ACCOUNT_NAME
        ),
    )
    return await wait_for_secret_token(
        admin,
        interval=config.secret_poll_interval,
        timeout=config.secret_timeout,
        cancel=cancel,
    )


async def bootstrap_service_account_token(
    kubeconfig: str,
    *,
    config: DriverConfig,
    cancel: asyncio.Event | None = None,
    admin_factory: ClusterAdminFactory = open_cluster_admin,
) -> str:
    """Obtain the host's bearer token, retrying the whole sequence until it works.

    Raises:
        BootstrapError: No token within ``config.service_account_timeout``.
        PollCancelledError: ``cancel`` was set.
    """
    async with admin_factory(kubeconfig) as admin:

        async def _attempt() -> str | None:
            try:
                return await generate_service_account_token(admin, config=config, cancel=cancel)
            except _RETRYABLE as e:
                log.debug("Retrying on service account generation error: {error}", error=e)
                return None

        try:
            token = await wait_for_ready(
                _attempt,
                lambda t: t is not None,
                interval=config.retry_interval,
                timeout=config.service_account_timeout,
                description="service account token",
                cancel=cancel,
            )
        except ConvergenceTimeoutError as e:
            raise BootstrapError(
                f"Failed to generate a service account token within "
                f"{config.service_account_timeout:.0f}s"
            ) from e

    log.info("Service account {name} is ready", name=SERVICE_ACCOUNT_NAME)
    return cast(str, token)


__all__ = [
    "ClusterAdmin",
    "ClusterAdminFactory",
    "KubernetesClusterAdmin",
    "bootstrap_service_account_token",
    "generate_service_account_token",
    "open_cluster_admin",
    "wait_for_secret_token",
]
