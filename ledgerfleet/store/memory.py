"""In-memory resource store.

Behaves like the orchestration platform as far as the reconciler can
observe it: objects get a uid on creation, pods start ``Pending`` without
an address, deleting a cluster cascades to everything it owns, and every
mutation is recorded in ``actions`` so tests can assert on exactly what a
pass did.

The ``schedule``/``remove``/``fail_next`` helpers play the part of the
platform and of out-of-band actors; they are never recorded as actions.
"""

from __future__ import annotations

import itertools
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Literal

from ledgerfleet.api.model import Cluster, ManagedPod, PodPhase, Resource
from ledgerfleet.core.exceptions import (
    AlreadyExistsError,
    CollaboratorUnavailableError,
    NotFoundError,
)

type Operation = Literal["get", "list", "create", "update", "delete", "update_status"]

type _Key = tuple[str, str, str]


@dataclass(frozen=True, slots=True)
class Action:
    op: Operation
    kind: str
    name: str


def _key(kind: str, namespace: str, name: str) -> _Key:
    return kind, namespace, name


class InMemoryStore:
    def __init__(self) -> None:
        self._objects: dict[_Key, Resource] = {}
        self._failures: dict[Operation, Exception] = {}
        self._ips = itertools.count(2)
        self.actions: list[Action] = []

    # -------------------------------------------------------------------------
    # ResourceStore
    # -------------------------------------------------------------------------

    async def get[R: Resource](self, kind: type[R], namespace: str, name: str) -> R:
        self._maybe_fail("get", kind.kind, name)
        obj = self._objects.get(_key(kind.kind, namespace, name))
        if obj is None:
            raise NotFoundError(kind.kind, name)
        return obj  # type: ignore[return-value]

    async def list[R: Resource](
        self,
        kind: type[R],
        namespace: str,
        labels: Mapping[str, str],
    ) -> list[R]:
        self._maybe_fail("list", kind.kind, namespace)
        return [
            obj for (k, ns, _), obj in self._objects.items()  # type: ignore[misc]
            if k == kind.kind
            and ns == namespace
            and all(obj.meta.labels.get(lk) == lv for lk, lv in labels.items())
        ]

    async def create[R: Resource](self, obj: R) -> R:
        self._maybe_fail("create", obj.kind, obj.meta.name)
        key = _key(obj.kind, obj.meta.namespace, obj.meta.name)
        if key in self._objects:
            raise AlreadyExistsError(obj.kind, obj.meta.name)
        stored = replace(obj, meta=replace(obj.meta, uid=obj.meta.uid or uuid.uuid4().hex))
        self._objects[key] = stored
        self.actions.append(Action("create", obj.kind, obj.meta.name))
        return stored  # type: ignore[return-value]

    async def update[R: Resource](self, obj: R) -> R:
        self._maybe_fail("update", obj.kind, obj.meta.name)
        key = _key(obj.kind, obj.meta.namespace, obj.meta.name)
        current = self._objects.get(key)
        if current is None:
            raise NotFoundError(obj.kind, obj.meta.name)
        stored = replace(obj, meta=replace(obj.meta, uid=current.meta.uid))
        if isinstance(stored, Cluster) and isinstance(current, Cluster):
            stored = replace(stored, state=current.state)
        self._objects[key] = stored
        self.actions.append(Action("update", obj.kind, obj.meta.name))
        return stored  # type: ignore[return-value]

    async def delete(self, obj: Resource) -> None:
        self._maybe_fail("delete", obj.kind, obj.meta.name)
        key = _key(obj.kind, obj.meta.namespace, obj.meta.name)
        if key not in self._objects:
            raise NotFoundError(obj.kind, obj.meta.name)
        self.actions.append(Action("delete", obj.kind, obj.meta.name))
        self._drop(key)

    async def update_status(self, cluster: Cluster) -> Cluster:
        self._maybe_fail("update_status", cluster.kind, cluster.name)
        key = _key(cluster.kind, cluster.namespace, cluster.name)
        current = self._objects.get(key)
        if not isinstance(current, Cluster):
            raise NotFoundError(cluster.kind, cluster.name)
        stored = replace(current, state=cluster.state)
        self._objects[key] = stored
        self.actions.append(Action("update_status", cluster.kind, cluster.name))
        return stored

    # -------------------------------------------------------------------------
    # Platform side
    # -------------------------------------------------------------------------

    def put(self, obj: Resource) -> Resource:
        """Insert or overwrite without recording an action."""
        stored = replace(obj, meta=replace(obj.meta, uid=obj.meta.uid or uuid.uuid4().hex))
        self._objects[_key(obj.kind, obj.meta.namespace, obj.meta.name)] = stored
        return stored

    def peek[R: Resource](self, kind: type[R], namespace: str, name: str) -> R | None:
        return self._objects.get(_key(kind.kind, namespace, name))  # type: ignore[return-value]

    def objects[R: Resource](self, kind: type[R]) -> list[R]:
        return [obj for (k, _, _), obj in self._objects.items() if k == kind.kind]  # type: ignore[misc]

    def schedule(
        self,
        namespace: str,
        name: str,
        *,
        ip: str | None = None,
        phase: PodPhase = PodPhase.RUNNING,
    ) -> ManagedPod:
        """Assign an address and phase to a pod, as the platform would."""
        key = _key(ManagedPod.kind, namespace, name)
        pod = self._objects.get(key)
        if not isinstance(pod, ManagedPod):
            raise NotFoundError(ManagedPod.kind, name)
        scheduled = replace(pod, ip=ip or pod.ip or f"10.0.0.{next(self._ips)}", phase=phase)
        self._objects[key] = scheduled
        return scheduled

    def schedule_all(self) -> list[ManagedPod]:
        """Schedule every pod that has no address yet."""
        return [
            self.schedule(pod.meta.namespace, pod.name)
            for pod in self.objects(ManagedPod)
            if not pod.ip
        ]

    def mark_deleting(self, namespace: str, name: str) -> None:
        key = _key(ManagedPod.kind, namespace, name)
        pod = self._objects[key]
        self._objects[key] = replace(pod, meta=replace(pod.meta, deletion_requested=True))

    def remove(self, kind: type[Resource], namespace: str, name: str) -> None:
        """Out-of-band deletion, e.g. an operator running ``kubectl delete``."""
        self._drop(_key(kind.kind, namespace, name))

    def fail_next(self, op: Operation, error: Exception) -> None:
        self._failures[op] = error

    def clear_actions(self) -> None:
        self.actions.clear()

    def _drop(self, key: _Key) -> None:
        obj = self._objects.pop(key, None)
        if obj is None:
            return
        uid = obj.meta.uid
        orphans = [
            k for k, child in self._objects.items()
            if child.meta.owner is not None and child.meta.owner.uid == uid
        ]
        for k in orphans:
            self._drop(k)

    def _maybe_fail(self, op: Operation, kind: str, name: str) -> None:
        if (error := self._failures.pop(op, None)) is not None:
            if isinstance(error, CollaboratorUnavailableError):
                raise error
            raise CollaboratorUnavailableError(kind, name, str(error)) from error
