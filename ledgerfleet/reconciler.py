"""Reconciliation control loop.

One call to ``Reconciler.reconcile`` is one pass for one cluster:

1. load the cluster; gone means nothing to do
2. on first sight, record ``Genesis`` and stop (the status write triggers
   the next pass)
3. run the stage handler for the recorded stage
4. re-derive the live node list and write status only if it changed

The reconciler holds no state between passes. The caller guarantees that
passes for the same cluster never overlap.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from ledgerfleet.api.model import Cluster, ClusterState, Role, Stage
from ledgerfleet.core.exceptions import NotFoundError
from ledgerfleet.inspector import list_live_nodes, node_names
from ledgerfleet.observability.logger import logger
from ledgerfleet.stages import StageMachine
from ledgerfleet.store.protocol import ResourceStore


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """``requeue_after`` is a delay in seconds, or None to wait for the next change."""

    requeue_after: float | None = None
    found: bool = True


class Reconciler:
    def __init__(self, store: ResourceStore, machine: StageMachine) -> None:
        self._store = store
        self._machine = machine

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        log = logger.bind(component="reconciler", cluster=f"{namespace}/{name}")

        try:
            cluster = await self._store.get(Cluster, namespace, name)
        except NotFoundError:
            log.debug("Cluster no longer exists")
            return ReconcileResult(found=False)

        if cluster.state.stage is Stage.UNINITIALIZED:
            log.info("New cluster, entering {stage}", stage=Stage.GENESIS)
            await self._store.update_status(replace(cluster, state=ClusterState(stage=Stage.GENESIS)))
            return ReconcileResult()

        outcome = await self._machine.run(cluster)

        nodes = node_names(await list_live_nodes(self._store, cluster, Role.NODE))
        state = ClusterState(stage=outcome.stage, nodes=nodes)

        if state != cluster.state:
            if state.stage != cluster.state.stage:
                log.info(
                    "Stage {old} → {new}",
                    old=cluster.state.stage, new=state.stage,
                )
            await self._store.update_status(replace(cluster, state=state))

        return ReconcileResult(requeue_after=outcome.requeue_after)
