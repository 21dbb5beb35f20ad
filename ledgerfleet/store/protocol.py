"""Resource store protocol.

The reconciler reads and mutates cluster state only through this
interface. Implementations are the in-memory store (tests, dry runs) and
the Kubernetes adapter.

Every method is a single round trip. Failures are reported as:

- ``NotFoundError`` from ``get``, ``update``, ``update_status`` and ``delete``
- ``AlreadyExistsError`` from ``create``
- ``CollaboratorUnavailableError`` for anything else
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Protocol, runtime_checkable

from ledgerfleet.api.model import Cluster, OwnerRef, Resource


@runtime_checkable
class ResourceStore(Protocol):
    async def get[R: Resource](self, kind: type[R], namespace: str, name: str) -> R:
        """Fetch one object by identity."""
        ...

    async def list[R: Resource](
        self,
        kind: type[R],
        namespace: str,
        labels: Mapping[str, str],
    ) -> list[R]:
        """All objects of ``kind`` whose labels include every pair in ``labels``."""
        ...

    async def create[R: Resource](self, obj: R) -> R:
        ...

    async def update[R: Resource](self, obj: R) -> R:
        ...

    async def delete(self, obj: Resource) -> None:
        """Delete immediately (no grace period)."""
        ...

    async def update_status(self, cluster: Cluster) -> Cluster:
        """Persist ``cluster.state`` only."""
        ...


def owned_by[R: Resource](obj: R, owner: Cluster) -> R:
    """Attach ``owner`` so deleting the cluster cascades to ``obj``."""
    ref = OwnerRef(kind=owner.kind, name=owner.name, uid=owner.meta.uid)
    return replace(obj, meta=replace(obj.meta, owner=ref))  # type: ignore[return-value]
