"""Canonical live view of the pods a cluster owns."""

from __future__ import annotations

from ledgerfleet.api.model import Cluster, ManagedPod, Role
from ledgerfleet.constants import Label
from ledgerfleet.store.protocol import ResourceStore


def selector(cluster: Cluster, role: Role) -> dict[str, str]:
    """Label selector for ``role`` pods; bootstrap pods are listed as nodes."""
    label_role = Role.NODE if role is Role.BOOTSTRAP else role
    return {Label.APP: cluster.name, Label.ROLE: label_role}


async def list_live_nodes(store: ResourceStore, cluster: Cluster, role: Role) -> list[ManagedPod]:
    """Pods of ``role`` that are neither being deleted nor finished.

    Order is whatever the store returned; callers that need a stable order
    sort by ``index``.
    """
    pods = await store.list(ManagedPod, cluster.namespace, selector(cluster, role))
    return [pod for pod in pods if pod.is_live]


def node_names(pods: list[ManagedPod]) -> tuple[str, ...]:
    return tuple(pod.name for pod in sorted(pods, key=lambda p: p.index))
