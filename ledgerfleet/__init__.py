"""ledgerfleet - Kubernetes operator for ledger node clusters.

Each ``LedgerCluster`` resource is driven through Genesis → Bootstrap →
Ready: rich wallets and a genesis ledger are generated, a bootstrap node
is started, and an index-ordered fleet of worker nodes is scaled to the
requested size.

Example:

    from ledgerfleet import InMemoryStore, OperatorConfig, OperatorModule, Reconciler
    from injector import Injector

    store = InMemoryStore()
    reconciler = Injector([OperatorModule(OperatorConfig(), store)]).get(Reconciler)
    await reconciler.reconcile("default", "testnet")
"""

# Domain model
from ledgerfleet.api.model import (
    Cluster,
    ClusterIntent,
    ClusterState,
    ManagedDeployment,
    ManagedPod,
    ObjectMeta,
    PodPhase,
    Role,
    Stage,
)

# Configuration
from ledgerfleet.config import OperatorConfig, load_config, resolve_config

# Errors
from ledgerfleet.core.exceptions import (
    AlreadyExistsError,
    CollaboratorUnavailableError,
    ConfigurationError,
    CryptoFailureError,
    GenesisError,
    LedgerFleetError,
    MalformedPodError,
    NotFoundError,
    PermissionDeniedError,
    StorageFailureError,
    StorageUnavailableError,
)

# Core components
from ledgerfleet.genesis import GenesisGenerator
from ledgerfleet.inspector import list_live_nodes
from ledgerfleet.module import OperatorModule
from ledgerfleet.planner import NoOp, ScaleDown, ScaleUp, plan
from ledgerfleet.reconciler import ReconcileResult, Reconciler
from ledgerfleet.stages import StageMachine, StageOutcome

# Stores
from ledgerfleet.store import InMemoryStore, ResourceStore

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Domain model
    "Cluster",
    "ClusterIntent",
    "ClusterState",
    "ManagedDeployment",
    "ManagedPod",
    "ObjectMeta",
    "PodPhase",
    "Role",
    "Stage",
    # Configuration
    "OperatorConfig",
    "load_config",
    "resolve_config",
    # Errors
    "AlreadyExistsError",
    "CollaboratorUnavailableError",
    "ConfigurationError",
    "CryptoFailureError",
    "GenesisError",
    "LedgerFleetError",
    "MalformedPodError",
    "NotFoundError",
    "PermissionDeniedError",
    "StorageFailureError",
    "StorageUnavailableError",
    # Core components
    "GenesisGenerator",
    "list_live_nodes",
    "OperatorModule",
    "NoOp",
    "ScaleDown",
    "ScaleUp",
    "plan",
    "ReconcileResult",
    "Reconciler",
    "StageMachine",
    "StageOutcome",
    # Stores
    "InMemoryStore",
    "ResourceStore",
]
