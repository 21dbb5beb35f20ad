from __future__ import annotations

import asyncio
import random

from casty import ActorContext, ActorRef, Behavior, Behaviors

from ledgerfleet.actors.messages import (
    ClusterChanged,
    ClusterKey,
    ControllerMsg,
    WorkerMsg,
    _PassDone,
    _PassFailed,
    _RunPass,
    _Stop,
    _WorkerRetired,
)
from ledgerfleet.observability.logger import logger
from ledgerfleet.reconciler import Reconciler

BACKOFF_BASE = 1.0
BACKOFF_FACTOR = 2.0
BACKOFF_MAX = 60.0


def backoff_delay(
    attempt: int,
    base: float = BACKOFF_BASE,
    factor: float = BACKOFF_FACTOR,
    max_delay: float = BACKOFF_MAX,
    jitter: bool = True,
) -> float:
    """Delay before retry number ``attempt`` (0-based), capped, plus up to 10% jitter."""
    delay = min(base * (factor ** attempt), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.1)
    return delay


def cluster_worker(
    key: ClusterKey,
    reconciler: Reconciler,
    parent: ActorRef[ControllerMsg],
) -> Behavior[WorkerMsg]:
    """idle ⇄ running → retiring → stopped.

    Runs at most one pass at a time. Changes arriving during a pass are
    folded into a single follow-up pass.
    """

    namespace, name = key
    log = logger.bind(actor="cluster-worker", cluster=f"{namespace}/{name}")

    def _start_pass(ctx: ActorContext[WorkerMsg]) -> None:
        async def _pass() -> _PassDone:
            result = await reconciler.reconcile(namespace, name)
            return _PassDone(requeue_after=result.requeue_after, found=result.found)

        ctx.pipe_to_self(
            _pass(),
            mapper=lambda r: r,
            on_failure=lambda e: _PassFailed(error=e),
        )

    def _schedule(ctx: ActorContext[WorkerMsg], delay: float) -> None:
        async def _wait() -> _RunPass:
            await asyncio.sleep(delay)
            return _RunPass()

        ctx.pipe_to_self(
            _wait(),
            mapper=lambda r: r,
            on_failure=lambda _: _RunPass(),
        )

    def idle(attempt: int) -> Behavior[WorkerMsg]:
        async def receive(ctx: ActorContext[WorkerMsg], msg: WorkerMsg) -> Behavior[WorkerMsg]:
            match msg:
                case ClusterChanged() | _RunPass():
                    _start_pass(ctx)
                    return running(attempt, dirty=False)
                case _Stop():
                    return Behaviors.stopped()
            return Behaviors.same()
        return Behaviors.receive(receive)

    def running(attempt: int, dirty: bool) -> Behavior[WorkerMsg]:
        async def receive(ctx: ActorContext[WorkerMsg], msg: WorkerMsg) -> Behavior[WorkerMsg]:
            match msg:
                case ClusterChanged() | _RunPass():
                    if dirty:
                        return Behaviors.same()
                    return running(attempt, dirty=True)

                case _PassDone(found=False):
                    log.info("Cluster deleted, retiring worker")
                    parent.tell(_WorkerRetired(key=key))
                    if dirty:
                        parent.tell(ClusterChanged(namespace, name))
                    return retiring()

                case _PassDone(requeue_after=delay):
                    if dirty:
                        _start_pass(ctx)
                        return running(0, dirty=False)
                    if delay is not None:
                        log.debug("Requeue in {delay}s", delay=delay)
                        _schedule(ctx, delay)
                    return idle(0)

                case _PassFailed(error=error):
                    delay = backoff_delay(attempt)
                    log.error(
                        "Reconcile failed (attempt {n}), retrying in {delay:.1f}s: {error}",
                        n=attempt + 1, delay=delay, error=error,
                    )
                    _schedule(ctx, delay)
                    return idle(attempt + 1)

                case _Stop():
                    return Behaviors.stopped()
            return Behaviors.same()
        return Behaviors.receive(receive)

    def retiring() -> Behavior[WorkerMsg]:
        async def receive(ctx: ActorContext[WorkerMsg], msg: WorkerMsg) -> Behavior[WorkerMsg]:
            match msg:
                case ClusterChanged():
                    parent.tell(msg)
                case _Stop():
                    return Behaviors.stopped()
            return Behaviors.same()
        return Behaviors.receive(receive)

    return idle(0)
