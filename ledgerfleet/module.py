"""Central DI module for the operator.

Binds the configuration and resource store supplied at startup and
provides everything the reconcile path is built from:

- GenesisGenerator (wallet directory from config)
- WorkloadBuilder
- StageMachine, Reconciler (singletons)
"""

from __future__ import annotations

from injector import Binder, Module, provider, singleton

from .config import OperatorConfig
from .genesis import GenesisGenerator
from .reconciler import Reconciler
from .stages import StageMachine
from .store.protocol import ResourceStore
from .workload import WorkloadBuilder


class OperatorModule(Module):
    """Usage:
        injector = Injector([OperatorModule(config, store)])
        reconciler = injector.get(Reconciler)
    """

    def __init__(self, config: OperatorConfig, store: ResourceStore) -> None:
        self._config = config
        self._store = store

    def configure(self, binder: Binder) -> None:
        binder.bind(OperatorConfig, to=self._config)
        binder.bind(ResourceStore, to=self._store)  # type: ignore[type-abstract]

    @singleton
    @provider
    def provide_genesis(self, config: OperatorConfig) -> GenesisGenerator:
        return GenesisGenerator(config.wallet_dir)

    @singleton
    @provider
    def provide_workload(self, config: OperatorConfig, genesis: GenesisGenerator) -> WorkloadBuilder:
        return WorkloadBuilder(config=config, wallets=genesis)

    @singleton
    @provider
    def provide_machine(
        self,
        store: ResourceStore,
        genesis: GenesisGenerator,
        workload: WorkloadBuilder,
        config: OperatorConfig,
    ) -> StageMachine:
        return StageMachine(store, genesis, workload, config)

    @singleton
    @provider
    def provide_reconciler(self, store: ResourceStore, machine: StageMachine) -> Reconciler:
        return Reconciler(store, machine)


__all__ = [
    "OperatorModule",
]
