from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import replace
from pathlib import Path

import pytest
from injector import Injector

from ledgerfleet.api.model import Cluster, ClusterIntent, ObjectMeta
from ledgerfleet.config import OperatorConfig
from ledgerfleet.module import OperatorModule
from ledgerfleet.reconciler import Reconciler
from ledgerfleet.store.memory import InMemoryStore

NAMESPACE = "default"
CLUSTER = "testnet"


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def config(tmp_path: Path) -> OperatorConfig:
    return OperatorConfig(wallet_dir=str(tmp_path / "wallets"), requeue_delay=0.5)


@pytest.fixture
def reconciler(store: InMemoryStore, config: OperatorConfig) -> Reconciler:
    return Injector([OperatorModule(config, store)]).get(Reconciler)


@pytest.fixture
def add_cluster(store: InMemoryStore) -> Callable[..., Cluster]:
    def _add(size: int = 3, rich_wallets: int = 0, benchmark_pods: int = 0, name: str = CLUSTER) -> Cluster:
        cluster = Cluster(
            meta=ObjectMeta(name=name, namespace=NAMESPACE),
            intent=ClusterIntent(size=size, rich_wallets=rich_wallets, benchmark_pods=benchmark_pods),
        )
        return store.put(cluster)  # type: ignore[return-value]
    return _add


@pytest.fixture
def resize(store: InMemoryStore) -> Callable[..., Cluster]:
    """Change the intent of a stored cluster, keeping its status."""
    def _resize(name: str = CLUSTER, **intent: int) -> Cluster:
        current = store.peek(Cluster, NAMESPACE, name)
        assert current is not None
        return store.put(replace(current, intent=replace(current.intent, **intent)))  # type: ignore[return-value]
    return _resize


@pytest.fixture
def converge(store: InMemoryStore, reconciler: Reconciler) -> Callable[..., Awaitable[int]]:
    """Run passes, letting the platform schedule pods in between, until one pass changes nothing.

    Returns the number of passes that made changes.
    """
    async def _converge(name: str = CLUSTER, max_passes: int = 30) -> int:
        for n in range(max_passes):
            store.clear_actions()
            await reconciler.reconcile(NAMESPACE, name)
            store.schedule_all()
            if not store.actions:
                return n
        raise AssertionError(f"no convergence after {max_passes} passes")
    return _converge
