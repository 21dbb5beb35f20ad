"""Stage state machine: Genesis → Bootstrap → Ready.

Each handler re-reads the store instead of trusting the stage it was
dispatched on, so manual deletions between passes are noticed and the
machine steps back:

==========  ==============================  ======================================
stage       advances when                   falls back when
==========  ==============================  ======================================
Genesis     bootstrap pod has an address    (size 0: tear everything down, stay)
Bootstrap   fleet deployment exists         bootstrap gone or finished → Genesis
Ready       (steady state)                  bootstrap gone or finished → Genesis,
                                            deployment gone or stale → Bootstrap
==========  ==============================  ======================================

A size of 0 tears down every managed resource from any stage and leaves
the cluster in Genesis.

A bootstrap pod that has finished (Failed or Succeeded, e.g. evicted) counts
as gone: it is deleted and Genesis recreates it. Finished fleet and
benchmark pods are deleted before planning so their index is reused.
Index 0 belongs to the bootstrap pod and is never handed to a fleet pod.

Handlers never block on the platform. Waiting for an address yields a
short requeue delay; waiting for a creation to become visible yields no
delay, since the watch on owned resources triggers the next pass.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace

from ledgerfleet.api.model import (
    Cluster,
    ManagedDeployment,
    ManagedPod,
    Resource,
    Role,
    Stage,
)
from ledgerfleet.config import OperatorConfig
from ledgerfleet.constants import BOOTSTRAP_INDEX
from ledgerfleet.core.exceptions import AlreadyExistsError, NotFoundError
from ledgerfleet.genesis import GenesisGenerator
from ledgerfleet.inspector import selector
from ledgerfleet.observability.logger import BoundLogger, logger
from ledgerfleet.planner import NoOp, ScaleDown, ScaleUp, plan
from ledgerfleet.store.protocol import ResourceStore
from ledgerfleet.workload import WorkloadBuilder


@dataclass(frozen=True, slots=True)
class StageOutcome:
    stage: Stage
    requeue_after: float | None = None


class StageMachine:
    def __init__(
        self,
        store: ResourceStore,
        genesis: GenesisGenerator,
        workload: WorkloadBuilder,
        config: OperatorConfig,
    ) -> None:
        self._store = store
        self._genesis = genesis
        self._workload = workload
        self._requeue_delay = config.requeue_delay

    async def run(self, cluster: Cluster) -> StageOutcome:
        log = logger.bind(component="stages", cluster=cluster.meta.key, stage=cluster.state.stage or "-")
        match cluster.state.stage:
            case Stage.UNINITIALIZED | Stage.GENESIS:
                return await self._on_genesis(cluster, log)
            case Stage.BOOTSTRAP:
                return await self._on_bootstrap(cluster, log)
            case Stage.READY:
                return await self._on_ready(cluster, log)

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _on_genesis(self, cluster: Cluster, log: BoundLogger) -> StageOutcome:
        if cluster.intent.size == 0:
            await self._teardown(cluster, log)
            return StageOutcome(Stage.GENESIS)

        genesis = await self._generate(cluster)

        bootstrap = await self._find(ManagedPod, cluster, cluster.name)
        if bootstrap is not None and not bootstrap.is_live:
            await self._drop_finished_bootstrap(bootstrap, log)
            return StageOutcome(Stage.GENESIS)

        if bootstrap is None:
            log.info("Creating bootstrap node")
            await self._create(self._workload.bootstrap_pod(cluster, genesis), log)
            return StageOutcome(Stage.GENESIS)

        if not bootstrap.ip:
            log.debug("Waiting for bootstrap node {name} to get an address", name=bootstrap.name)
            return StageOutcome(Stage.GENESIS, requeue_after=self._requeue_delay)

        log.info(
            "Bootstrap node {name} is up at {ip}",
            name=bootstrap.name, ip=bootstrap.ip,
        )
        return StageOutcome(Stage.BOOTSTRAP)

    async def _on_bootstrap(self, cluster: Cluster, log: BoundLogger) -> StageOutcome:
        if cluster.intent.size == 0:
            await self._teardown(cluster, log)
            return StageOutcome(Stage.GENESIS)

        bootstrap = await self._find(ManagedPod, cluster, cluster.name)
        if bootstrap is None:
            log.warning("Bootstrap node disappeared; returning to genesis")
            return StageOutcome(Stage.GENESIS)
        if not bootstrap.is_live:
            await self._drop_finished_bootstrap(bootstrap, log)
            return StageOutcome(Stage.GENESIS)

        if not bootstrap.ip:
            log.debug("Waiting for bootstrap node {name} to get an address", name=bootstrap.name)
            return StageOutcome(Stage.BOOTSTRAP, requeue_after=self._requeue_delay)

        deployment = await self._find(ManagedDeployment, cluster, cluster.name)
        address = self._workload.bootstrap_address(bootstrap)

        if deployment is not None and deployment.bootstrap_address != address:
            log.warning(
                "Fleet points at {old}, bootstrap node is at {new}; replacing fleet",
                old=deployment.bootstrap_address, new=address,
            )
            await self._teardown_fleet(cluster, log)
            return StageOutcome(Stage.BOOTSTRAP)

        if deployment is None:
            genesis = await self._generate(cluster)
            log.info(
                "Creating fleet of {n} nodes bootstrapping from {address}",
                n=cluster.intent.fleet_replicas, address=address,
            )
            await self._create(self._workload.deployment(cluster, bootstrap, genesis), log)
            return StageOutcome(Stage.BOOTSTRAP)

        log.info("Fleet deployment {name} is in place", name=deployment.name)
        return StageOutcome(Stage.READY)

    async def _on_ready(self, cluster: Cluster, log: BoundLogger) -> StageOutcome:
        if cluster.intent.size == 0:
            await self._teardown(cluster, log)
            return StageOutcome(Stage.GENESIS)

        bootstrap = await self._find(ManagedPod, cluster, cluster.name)
        if bootstrap is None:
            log.warning("Bootstrap node disappeared; returning to genesis")
            return StageOutcome(Stage.GENESIS)
        if not bootstrap.is_live:
            await self._drop_finished_bootstrap(bootstrap, log)
            return StageOutcome(Stage.GENESIS)

        deployment = await self._find(ManagedDeployment, cluster, cluster.name)
        if deployment is None:
            log.warning("Fleet deployment disappeared; returning to bootstrap")
            return StageOutcome(Stage.BOOTSTRAP)

        if not bootstrap.ip or deployment.bootstrap_address != self._workload.bootstrap_address(bootstrap):
            log.warning("Bootstrap node was replaced; returning to bootstrap")
            return StageOutcome(Stage.BOOTSTRAP)

        desired_replicas = cluster.intent.fleet_replicas
        if deployment.replicas != desired_replicas:
            log.info(
                "Resizing fleet {old} → {new}",
                old=deployment.replicas, new=desired_replicas,
            )
            deployment = await self._update(replace(deployment, replicas=desired_replicas), log)

        nodes = await self._live_pods(cluster, Role.NODE, log)
        match plan(cluster.intent.size, nodes, reserved=(BOOTSTRAP_INDEX,)):
            case ScaleDown(targets=targets):
                for pod in targets:
                    log.info("Removing node {pod} (index {index})", pod=pod.name, index=pod.index)
                    await self._delete(pod, log)
                return StageOutcome(Stage.READY)

            case ScaleUp(indices=indices):
                for index in indices:
                    pod = self._workload.fleet_pod(cluster, deployment, index)
                    log.info("Adding node {pod} (index {index})", pod=pod.name, index=index)
                    await self._create(pod, log)
                return StageOutcome(Stage.READY)

            case NoOp():
                return await self._reconcile_benchmarks(cluster, nodes, log)

        return StageOutcome(Stage.READY)

    async def _reconcile_benchmarks(
        self,
        cluster: Cluster,
        nodes: list[ManagedPod],
        log: BoundLogger,
    ) -> StageOutcome:
        """Benchmark pod ``i`` drives node ``i``; only touched once the fleet has converged."""
        wanted = cluster.intent.benchmark_pods
        if wanted > len(nodes):
            log.warning(
                "{wanted} benchmark pods requested for {n} nodes; running {n}",
                wanted=wanted, n=len(nodes),
            )
            wanted = len(nodes)

        benchmarks = await self._live_pods(cluster, Role.BENCHMARK, log)
        match plan(wanted, benchmarks):
            case ScaleDown(targets=targets):
                for pod in targets:
                    log.info("Removing benchmark pod {pod}", pod=pod.name)
                    await self._delete(pod, log)

            case ScaleUp(indices=indices):
                by_index = {node.index: node for node in nodes}
                targets = [by_index[i] for i in indices if i in by_index]
                if waiting := [node.name for node in targets if not node.ip]:
                    log.debug("Waiting for nodes {names} before adding benchmark pods", names=waiting)
                    return StageOutcome(Stage.READY, requeue_after=self._requeue_delay)
                for node in targets:
                    pod = self._workload.benchmark_pod(cluster, node)
                    log.info("Adding benchmark pod {pod} against {node}", pod=pod.name, node=node.name)
                    await self._create(pod, log)

            case NoOp():
                pass

        return StageOutcome(Stage.READY)

    # =========================================================================
    # Teardown
    # =========================================================================

    async def _teardown_fleet(self, cluster: Cluster, log: BoundLogger) -> None:
        """Delete benchmark pods, the fleet deployment and every non-bootstrap node."""
        for pod in await self._owned_pods(cluster, Role.BENCHMARK):
            await self._delete(pod, log)

        deployment = await self._find(ManagedDeployment, cluster, cluster.name)
        if deployment is not None:
            log.info("Deleting fleet deployment {name}", name=deployment.name)
            await self._delete(deployment, log)

        for pod in await self._owned_pods(cluster, Role.NODE):
            if not pod.is_bootstrap:
                await self._delete(pod, log)

    async def _teardown(self, cluster: Cluster, log: BoundLogger) -> None:
        await self._teardown_fleet(cluster, log)
        bootstrap = await self._find(ManagedPod, cluster, cluster.name)
        if bootstrap is not None:
            log.info("Deleting bootstrap node {name}", name=bootstrap.name)
            await self._delete(bootstrap, log)

    async def _drop_finished_bootstrap(self, bootstrap: ManagedPod, log: BoundLogger) -> None:
        log.warning(
            "Bootstrap node {name} finished with phase {phase}; returning to genesis",
            name=bootstrap.name, phase=bootstrap.phase,
        )
        await self._delete(bootstrap, log)

    async def _live_pods(self, cluster: Cluster, role: Role, log: BoundLogger) -> list[ManagedPod]:
        """Live pods of ``role``. Finished ones are deleted so their index can be reused."""
        pods = await self._owned_pods(cluster, role)
        for pod in pods:
            if not pod.is_live and not pod.is_bootstrap:
                log.warning(
                    "Pod {pod} finished with phase {phase}; removing",
                    pod=pod.name, phase=pod.phase,
                )
                await self._delete(pod, log)
        return [pod for pod in pods if pod.is_live]

    async def _owned_pods(self, cluster: Cluster, role: Role) -> list[ManagedPod]:
        pods = await self._store.list(ManagedPod, cluster.namespace, selector(cluster, role))
        return [pod for pod in pods if not pod.meta.deletion_requested]

    # =========================================================================
    # Store helpers
    # =========================================================================

    async def _generate(self, cluster: Cluster) -> str:
        return await asyncio.to_thread(self._genesis.generate, cluster.intent.rich_wallets)

    async def _find[R: Resource](self, kind: type[R], cluster: Cluster, name: str) -> R | None:
        """The object, or None when it is absent or already being deleted."""
        try:
            obj = await self._store.get(kind, cluster.namespace, name)
        except NotFoundError:
            return None
        if obj.meta.deletion_requested:
            return None
        return obj

    async def _create(self, obj: Resource, log: BoundLogger) -> None:
        try:
            await self._store.create(obj)
        except AlreadyExistsError:
            log.debug("{kind} {name} already exists", kind=obj.kind, name=obj.meta.name)
        except Exception:
            log.error("Failed to create {kind} {name}", kind=obj.kind, name=obj.meta.name)
            raise

    async def _update[R: Resource](self, obj: R, log: BoundLogger) -> R:
        try:
            return await self._store.update(obj)
        except Exception:
            log.error("Failed to update {kind} {name}", kind=obj.kind, name=obj.meta.name)
            raise

    async def _delete(self, obj: Resource, log: BoundLogger) -> None:
        try:
            await self._store.delete(obj)
        except NotFoundError:
            log.debug("{kind} {name} already gone", kind=obj.kind, name=obj.meta.name)
        except Exception:
            log.error("Failed to delete {kind} {name}", kind=obj.kind, name=obj.meta.name)
            raise
