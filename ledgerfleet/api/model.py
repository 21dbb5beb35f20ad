from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import ClassVar

from ledgerfleet.core.exceptions import ConfigurationError


class Stage(StrEnum):
    """Lifecycle stage stored in the cluster status.

    UNINITIALIZED is the wire value of a freshly created resource; the
    reconciler replaces it with GENESIS on first sight.
    """

    UNINITIALIZED = ""
    GENESIS = "Genesis"
    BOOTSTRAP = "Bootstrap"
    READY = "Ready"


class Role(StrEnum):
    BOOTSTRAP = "bootstrap"
    NODE = "node"
    BENCHMARK = "benchmark"


class PodPhase(StrEnum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


LIVE_PHASES: frozenset[PodPhase] = frozenset({PodPhase.PENDING, PodPhase.RUNNING})


@dataclass(frozen=True, slots=True)
class OwnerRef:
    """Parent whose deletion cascades to the owning object."""

    kind: str
    name: str
    uid: str


@dataclass(frozen=True, slots=True)
class ObjectMeta:
    """Identity and bookkeeping shared by every stored object."""

    name: str
    namespace: str = "default"
    labels: Mapping[str, str] = field(default_factory=dict)
    uid: str = ""
    owner: OwnerRef | None = None
    deletion_requested: bool = False

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


# =============================================================================
# Cluster Resource
# =============================================================================


@dataclass(frozen=True, slots=True)
class ClusterIntent:
    """Desired cluster shape, read-only for the reconciler."""

    size: int
    rich_wallets: int = 0
    benchmark_pods: int = 0

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ConfigurationError(f"size must be >= 0, got {self.size}")
        if self.rich_wallets < 0:
            raise ConfigurationError(f"rich_wallets must be >= 0, got {self.rich_wallets}")
        if self.benchmark_pods < 0:
            raise ConfigurationError(f"benchmark_pods must be >= 0, got {self.benchmark_pods}")

    @property
    def fleet_replicas(self) -> int:
        """Worker pods beyond the bootstrap node."""
        return max(self.size - 1, 0)


@dataclass(frozen=True, slots=True)
class ClusterState:
    stage: Stage = Stage.UNINITIALIZED
    nodes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Cluster:
    kind: ClassVar[str] = "LedgerCluster"

    meta: ObjectMeta
    intent: ClusterIntent
    state: ClusterState = ClusterState()

    @property
    def name(self) -> str:
        return self.meta.name

    @property
    def namespace(self) -> str:
        return self.meta.namespace


# =============================================================================
# Managed Workload
# =============================================================================


@dataclass(frozen=True, slots=True)
class PodTemplate:
    """Container configuration for a managed pod.

    ``host_env`` names the variable the platform fills with the pod address.
    """

    image: str
    command: tuple[str, ...]
    env: tuple[tuple[str, str], ...] = ()
    ports: tuple[tuple[str, int], ...] = ()
    host_env: str | None = None
    pull_secret: str | None = None
    stdin: bool = True

    def get_env(self, name: str) -> str | None:
        return next((v for k, v in self.env if k == name), None)


@dataclass(frozen=True, slots=True)
class ManagedPod:
    kind: ClassVar[str] = "Pod"

    meta: ObjectMeta
    role: Role
    index: int
    template: PodTemplate
    ip: str = ""
    phase: PodPhase = PodPhase.PENDING

    @property
    def name(self) -> str:
        return self.meta.name

    @property
    def is_live(self) -> bool:
        return not self.meta.deletion_requested and self.phase in LIVE_PHASES

    @property
    def is_bootstrap(self) -> bool:
        return self.role is Role.BOOTSTRAP


@dataclass(frozen=True, slots=True)
class ManagedDeployment:
    """The worker fleet as one scalable unit.

    Carries the bootstrap address and genesis document every fleet pod is
    started with, so pods created on later passes match earlier ones.
    """

    kind: ClassVar[str] = "Deployment"

    meta: ObjectMeta
    replicas: int
    bootstrap_address: str
    genesis: str

    @property
    def name(self) -> str:
        return self.meta.name


type Resource = Cluster | ManagedPod | ManagedDeployment
