from ledgerfleet.kube.schema import ClusterSpec, ClusterStatus
from ledgerfleet.kube.store import KubernetesStore, connect

__all__ = [
    "ClusterSpec",
    "ClusterStatus",
    "KubernetesStore",
    "connect",
]
