"""Messages of the per-cluster work queue.

``ClusterChanged`` is the only public message: the watch layer sends one
whenever a cluster, or anything it owns, changes. Underscored messages are
internal to the controller and its workers.
"""

from __future__ import annotations

from dataclasses import dataclass

type ClusterKey = tuple[str, str]


@dataclass(frozen=True, slots=True)
class ClusterChanged:
    namespace: str
    name: str

    @property
    def key(self) -> ClusterKey:
        return self.namespace, self.name


# =============================================================================
# Worker internals
# =============================================================================


@dataclass(frozen=True, slots=True)
class _RunPass:
    """Timer-driven pass: requeue or backoff retry."""


@dataclass(frozen=True, slots=True)
class _PassDone:
    requeue_after: float | None
    found: bool


@dataclass(frozen=True, slots=True)
class _PassFailed:
    error: BaseException


@dataclass(frozen=True, slots=True)
class _Stop:
    pass


# =============================================================================
# Controller internals
# =============================================================================


@dataclass(frozen=True, slots=True)
class _WorkerRetired:
    """The worker's cluster is gone; it accepts no more passes."""

    key: ClusterKey


type WorkerMsg = ClusterChanged | _RunPass | _PassDone | _PassFailed | _Stop
type ControllerMsg = ClusterChanged | _WorkerRetired
