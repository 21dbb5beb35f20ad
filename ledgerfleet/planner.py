"""Scaling decisions for index-ordered pods.

``plan`` is pure: the same desired count and live pods always yield the
same action, which is what makes a reconcile pass safe to repeat after a
partial failure.

Scale-down removes the highest indices first so lower identities, which
benchmark pods and observers address by position, stay put. Scale-up
hands out the lowest free indices, which is ``current .. desired - 1``
whenever the live indices are gap-free.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass

from ledgerfleet.api.model import ManagedPod
from ledgerfleet.core.exceptions import ConfigurationError, MalformedPodError


@dataclass(frozen=True, slots=True)
class NoOp:
    pass


@dataclass(frozen=True, slots=True)
class ScaleUp:
    """Pods to create, by index, in creation order."""

    indices: tuple[int, ...]

    @property
    def from_index(self) -> int:
        return self.indices[0]

    @property
    def to_index(self) -> int:
        """Exclusive upper bound, like ``range``."""
        return self.indices[-1] + 1


@dataclass(frozen=True, slots=True)
class ScaleDown:
    """Pods to delete, highest index first."""

    targets: tuple[ManagedPod, ...]


type ScalingAction = NoOp | ScaleUp | ScaleDown


def _ordering_key(pod: ManagedPod) -> tuple[int, str]:
    return pod.index, pod.name


def plan(desired: int, live: Sequence[ManagedPod], reserved: Collection[int] = ()) -> ScalingAction:
    """``reserved`` indices are never handed out by a scale-up."""
    if desired < 0:
        raise ConfigurationError(f"desired count must be >= 0, got {desired}")
    for pod in live:
        if pod.index < 0:
            raise MalformedPodError(pod.name)

    current = len(live)

    if current > desired:
        ordered = sorted(live, key=_ordering_key, reverse=True)
        return ScaleDown(targets=tuple(ordered[: current - desired]))

    if current < desired:
        taken = {pod.index for pod in live} | set(reserved)
        free = (i for i in range(desired + len(taken)) if i not in taken)
        return ScaleUp(indices=tuple(next(free) for _ in range(desired - current)))

    return NoOp()
