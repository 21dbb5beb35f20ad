from __future__ import annotations

import itertools
from collections.abc import Mapping

from casty import ActorContext, ActorRef, Behavior, Behaviors

from ledgerfleet.actors.messages import (
    ClusterChanged,
    ClusterKey,
    ControllerMsg,
    WorkerMsg,
    _Stop,
    _WorkerRetired,
)
from ledgerfleet.actors.worker import cluster_worker
from ledgerfleet.observability.logger import logger
from ledgerfleet.reconciler import Reconciler

log = logger.bind(actor="controller")


def controller_actor(reconciler: Reconciler) -> Behavior[ControllerMsg]:
    """Routes change notifications to one worker per cluster.

    Workers are spawned on first notification and retired once their
    cluster is gone. Passes for different clusters run in parallel.
    """

    seq = itertools.count()

    def routing(workers: Mapping[ClusterKey, ActorRef[WorkerMsg]]) -> Behavior[ControllerMsg]:
        async def receive(ctx: ActorContext[ControllerMsg], msg: ControllerMsg) -> Behavior[ControllerMsg]:
            match msg:
                case ClusterChanged(namespace=namespace, name=name):
                    if (ref := workers.get(msg.key)) is not None:
                        ref.tell(msg)
                        return Behaviors.same()

                    log.debug("Spawning worker for {ns}/{name}", ns=namespace, name=name)
                    ref = ctx.spawn(
                        cluster_worker(msg.key, reconciler, ctx.self),
                        f"worker-{namespace}-{name}-{next(seq)}",
                    )
                    ref.tell(msg)
                    return routing({**workers, msg.key: ref})

                case _WorkerRetired(key=key):
                    if (ref := workers.get(key)) is None:
                        return Behaviors.same()
                    ref.tell(_Stop())
                    return routing({k: v for k, v in workers.items() if k != key})

            return Behaviors.same()
        return Behaviors.receive(receive)

    return routing({})
