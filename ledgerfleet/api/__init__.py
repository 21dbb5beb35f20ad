"""Resource model: the cluster resource and the workload it owns."""

from .model import LIVE_PHASES as LIVE_PHASES
from .model import Cluster as Cluster
from .model import ClusterIntent as ClusterIntent
from .model import ClusterState as ClusterState
from .model import ManagedDeployment as ManagedDeployment
from .model import ManagedPod as ManagedPod
from .model import ObjectMeta as ObjectMeta
from .model import OwnerRef as OwnerRef
from .model import PodPhase as PodPhase
from .model import PodTemplate as PodTemplate
from .model import Resource as Resource
from .model import Role as Role
from .model import Stage as Stage

__all__ = [
    "LIVE_PHASES",
    "Cluster",
    "ClusterIntent",
    "ClusterState",
    "ManagedDeployment",
    "ManagedPod",
    "ObjectMeta",
    "OwnerRef",
    "PodPhase",
    "PodTemplate",
    "Resource",
    "Role",
    "Stage",
]
