"""Resource store backed by the Kubernetes API.

Clusters are ``LedgerCluster`` custom objects, managed pods are plain
pods, and the fleet record is a ConfigMap named after its cluster. Every
request is retried on throttling, server errors and connection failures
before the error is surfaced.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Literal

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import ApiClient, ApiException, CoreV1Api, CustomObjectsApi
from kubernetes_asyncio.config import ConfigException
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ledgerfleet.api.model import Cluster, ManagedDeployment, ManagedPod, Resource
from ledgerfleet.constants import API_GROUP, API_VERSION, CLUSTER_PLURAL
from ledgerfleet.core.exceptions import (
    AlreadyExistsError,
    CollaboratorUnavailableError,
    NotFoundError,
)
from ledgerfleet.kube.schema import (
    cluster_from_body,
    deployment_from_body,
    deployment_to_body,
    pod_from_body,
    pod_to_body,
    status_body,
)
from ledgerfleet.observability.logger import logger

log = logger.bind(component="kube")

type Op = Literal["get", "list", "create", "update", "delete", "update_status"]

MAX_ATTEMPTS = 5


def _is_transient(e: BaseException) -> bool:
    if isinstance(e, ApiException):
        # status 0: no response at all
        return e.status in (0, 429) or e.status >= 500
    return isinstance(e, (OSError, TimeoutError))


def _log_retry(state: Any) -> None:
    log.warning(
        "Kubernetes request failed (attempt {n}/{max}): {error}",
        n=state.attempt_number, max=MAX_ATTEMPTS, error=state.outcome.exception(),
    )


@retry(
    stop=stop_after_attempt(MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=0.5, max=8),
    retry=retry_if_exception(_is_transient),
    before_sleep=_log_retry,
    reraise=True,
)
async def _send[T](fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
    return await fn(*args, **kwargs)


def label_selector(labels: Mapping[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in labels.items())


async def connect() -> ApiClient:
    """API client from the in-cluster service account, else the local kubeconfig."""
    try:
        config.load_incluster_config()
    except ConfigException:
        await config.load_kube_config()
    return client.ApiClient()


class KubernetesStore:
    def __init__(self, api: ApiClient) -> None:
        self._api = api
        self._core = CoreV1Api(api)
        self._custom = CustomObjectsApi(api)

    async def _request[T](
        self,
        op: Op,
        kind: str,
        name: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        try:
            return await _send(fn, *args, **kwargs)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind, name) from e
            if e.status == 409 and op == "create":
                raise AlreadyExistsError(kind, name) from e
            raise CollaboratorUnavailableError(kind, name, f"{op}: {e.status} {e.reason}") from e
        except (OSError, TimeoutError) as e:
            raise CollaboratorUnavailableError(kind, name, f"{op}: {e}") from e

    def _plain(self, obj: Any) -> dict[str, Any]:
        return self._api.sanitize_for_serialization(obj)

    def _cluster_args(self, namespace: str) -> dict[str, str]:
        return {
            "group": API_GROUP,
            "version": API_VERSION,
            "namespace": namespace,
            "plural": CLUSTER_PLURAL,
        }

    # -------------------------------------------------------------------------
    # ResourceStore
    # -------------------------------------------------------------------------

    async def get[R: Resource](self, kind: type[R], namespace: str, name: str) -> R:
        if kind is Cluster:
            body = await self._request(
                "get", kind.kind, name,
                self._custom.get_namespaced_custom_object, name=name, **self._cluster_args(namespace),
            )
            return cluster_from_body(body)  # type: ignore[return-value]
        if kind is ManagedPod:
            pod = await self._request("get", kind.kind, name, self._core.read_namespaced_pod, name, namespace)
            return pod_from_body(self._plain(pod))  # type: ignore[return-value]
        cm = await self._request("get", kind.kind, name, self._core.read_namespaced_config_map, name, namespace)
        return deployment_from_body(self._plain(cm))  # type: ignore[return-value]

    async def list[R: Resource](
        self,
        kind: type[R],
        namespace: str,
        labels: Mapping[str, str],
    ) -> list[R]:
        selector = label_selector(labels)
        if kind is Cluster:
            body = await self._request(
                "list", kind.kind, namespace,
                self._custom.list_namespaced_custom_object,
                label_selector=selector, **self._cluster_args(namespace),
            )
            return [cluster_from_body(item) for item in body.get("items", [])]  # type: ignore[misc]
        if kind is ManagedPod:
            pods = await self._request(
                "list", kind.kind, namespace,
                self._core.list_namespaced_pod, namespace, label_selector=selector,
            )
            return [pod_from_body(self._plain(p)) for p in pods.items]  # type: ignore[misc]
        cms = await self._request(
            "list", kind.kind, namespace,
            self._core.list_namespaced_config_map, namespace, label_selector=selector,
        )
        return [deployment_from_body(self._plain(cm)) for cm in cms.items]  # type: ignore[misc]

    async def create[R: Resource](self, obj: R) -> R:
        ns, name = obj.meta.namespace, obj.meta.name
        match obj:
            case ManagedPod():
                created = await self._request(
                    "create", obj.kind, name, self._core.create_namespaced_pod, ns, pod_to_body(obj),
                )
                result: Resource = pod_from_body(self._plain(created))
            case ManagedDeployment():
                created = await self._request(
                    "create", obj.kind, name, self._core.create_namespaced_config_map, ns, deployment_to_body(obj),
                )
                result = deployment_from_body(self._plain(created))
            case Cluster():
                raise CollaboratorUnavailableError(obj.kind, name, "clusters are created by users, not the operator")
        log.debug("Created {kind} {ns}/{name}", kind=obj.kind, ns=ns, name=name)
        return result  # type: ignore[return-value]

    async def update[R: Resource](self, obj: R) -> R:
        ns, name = obj.meta.namespace, obj.meta.name
        match obj:
            case ManagedDeployment():
                patched = await self._request(
                    "update", obj.kind, name, self._core.patch_namespaced_config_map, name, ns, deployment_to_body(obj),
                )
                return deployment_from_body(self._plain(patched))  # type: ignore[return-value]
            case ManagedPod():
                patched = await self._request(
                    "update", obj.kind, name, self._core.patch_namespaced_pod,
                    name, ns, {"metadata": {"labels": dict(obj.meta.labels)}},
                )
                return pod_from_body(self._plain(patched))  # type: ignore[return-value]
            case Cluster():
                body = await self._request(
                    "update", obj.kind, name, self._custom.patch_namespaced_custom_object,
                    name=name, body={"metadata": {"labels": dict(obj.meta.labels)}}, **self._cluster_args(ns),
                )
                return cluster_from_body(body)  # type: ignore[return-value]
        raise TypeError(f"unsupported object {obj!r}")

    async def delete(self, obj: Resource) -> None:
        ns, name = obj.meta.namespace, obj.meta.name
        match obj:
            case ManagedPod():
                await self._request(
                    "delete", obj.kind, name, self._core.delete_namespaced_pod,
                    name, ns, grace_period_seconds=0,
                )
            case ManagedDeployment():
                await self._request(
                    "delete", obj.kind, name, self._core.delete_namespaced_config_map, name, ns,
                )
            case Cluster():
                await self._request(
                    "delete", obj.kind, name, self._custom.delete_namespaced_custom_object,
                    name=name, **self._cluster_args(ns),
                )
        log.debug("Deleted {kind} {ns}/{name}", kind=obj.kind, ns=ns, name=name)

    async def update_status(self, cluster: Cluster) -> Cluster:
        body = await self._request(
            "update_status", cluster.kind, cluster.name,
            self._custom.patch_namespaced_custom_object_status,
            name=cluster.name, body=status_body(cluster.state), **self._cluster_args(cluster.namespace),
        )
        return cluster_from_body(body)

    async def close(self) -> None:
        await self._api.close()
