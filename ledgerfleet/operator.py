"""kopf entry point.

Every watch event on a cluster, or on a pod/ConfigMap a cluster owns,
becomes a ``ClusterChanged`` notification for the controller actor.
The reconcile itself never runs inside a kopf handler; kopf only feeds the
work queue.

Run with:

    ledgerfleet                # uses ./ledgerfleet.toml + ~/.ledgerfleet/defaults.toml
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import kopf
from casty import ActorSystem
from injector import Injector

from ledgerfleet.actors import ClusterChanged, controller_actor
from ledgerfleet.config import OperatorConfig, resolve_config
from ledgerfleet.constants import API_GROUP, API_VERSION, CLUSTER_PLURAL, Label
from ledgerfleet.kube.schema import owning_cluster
from ledgerfleet.kube.store import KubernetesStore, connect
from ledgerfleet.module import OperatorModule
from ledgerfleet.observability.logger import logger
from ledgerfleet.observability.logging import setup_logging, teardown_logging
from ledgerfleet.reconciler import Reconciler

log = logger.bind(component="operator")


@kopf.on.startup()
async def start(memo: kopf.Memo, **_: Any) -> None:
    config: OperatorConfig = memo.config
    store = KubernetesStore(await connect())
    injector = Injector([OperatorModule(config, store)])

    system = ActorSystem("ledgerfleet")
    await system.__aenter__()

    memo.store = store
    memo.system = system
    memo.controller = system.spawn(controller_actor(injector.get(Reconciler)), "controller")
    log.info("Operator started in namespace {ns}", ns=config.namespace)


@kopf.on.cleanup()
async def stop(memo: kopf.Memo, **_: Any) -> None:
    log.info("Operator shutting down")
    await memo.system.shutdown()
    await memo.store.close()


# =============================================================================
# Watches
# =============================================================================


@kopf.on.event(API_GROUP, API_VERSION, CLUSTER_PLURAL)
async def cluster_event(name: str, namespace: str, memo: kopf.Memo, **_: Any) -> None:
    memo.controller.tell(ClusterChanged(namespace, name))


def is_managed(meta: kopf.Meta, **_: Any) -> bool:
    return owning_cluster(meta) is not None


_MANAGED = {Label.APP.value: kopf.PRESENT, Label.ROLE.value: kopf.PRESENT}


@kopf.on.event("pods", labels=_MANAGED, when=is_managed)
async def pod_event(meta: kopf.Meta, namespace: str, memo: kopf.Memo, **_: Any) -> None:
    if (cluster := owning_cluster(meta)) is not None:
        memo.controller.tell(ClusterChanged(namespace, cluster))


@kopf.on.event("configmaps", labels={Label.APP.value: kopf.PRESENT}, when=is_managed)
async def fleet_event(meta: kopf.Meta, namespace: str, memo: kopf.Memo, **_: Any) -> None:
    if (cluster := owning_cluster(meta)) is not None:
        memo.controller.tell(ClusterChanged(namespace, cluster))


def main() -> None:
    config, log_config = resolve_config(project_dir=Path.cwd())
    handler_ids = setup_logging(log_config)
    try:
        kopf.run(
            standalone=True,
            namespaces=[config.namespace],
            memo=kopf.Memo(config=config),
        )
    finally:
        teardown_logging(handler_ids)


if __name__ == "__main__":
    main()
