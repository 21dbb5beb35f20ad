from __future__ import annotations

import json
from pathlib import Path

import pytest
from injector import Injector

from ledgerfleet.api.model import Cluster, ManagedDeployment, ManagedPod, PodPhase, Role, Stage
from ledgerfleet.config import OperatorConfig
from ledgerfleet.core.exceptions import CollaboratorUnavailableError, StorageUnavailableError
from ledgerfleet.module import OperatorModule
from ledgerfleet.reconciler import Reconciler
from ledgerfleet.store.memory import Action, InMemoryStore
from ledgerfleet.workload import NodeEnv
from tests.conftest import CLUSTER, NAMESPACE


def _cluster(store: InMemoryStore) -> Cluster:
    cluster = store.peek(Cluster, NAMESPACE, CLUSTER)
    assert cluster is not None
    return cluster


def _pods(store: InMemoryStore, role: Role | None = None) -> list[ManagedPod]:
    pods = sorted(store.objects(ManagedPod), key=lambda p: (p.role, p.index))
    return [p for p in pods if role is None or p.role is role]


class TestFirstPasses:
    @pytest.mark.asyncio
    async def test_missing_cluster_is_a_noop(self, reconciler, store):
        result = await reconciler.reconcile(NAMESPACE, "ghost")

        assert result.found is False
        assert result.requeue_after is None
        assert store.actions == []

    @pytest.mark.asyncio
    async def test_first_sight_only_records_genesis(self, reconciler, store, add_cluster):
        add_cluster(size=3)

        result = await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert result.requeue_after is None
        assert store.actions == [Action("update_status", "LedgerCluster", CLUSTER)]
        assert _cluster(store).state.stage is Stage.GENESIS
        assert store.objects(ManagedPod) == []

    @pytest.mark.asyncio
    async def test_genesis_creates_bootstrap_pod_without_requeue(self, reconciler, store, add_cluster):
        add_cluster(size=3)
        await reconciler.reconcile(NAMESPACE, CLUSTER)
        store.clear_actions()

        result = await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert result.requeue_after is None
        assert Action("create", "Pod", CLUSTER) in store.actions
        bootstrap = store.peek(ManagedPod, NAMESPACE, CLUSTER)
        assert bootstrap is not None
        assert bootstrap.role is Role.BOOTSTRAP
        assert bootstrap.index == 0
        assert bootstrap.meta.owner is not None
        assert bootstrap.meta.owner.name == CLUSTER
        assert _cluster(store).state.stage is Stage.GENESIS

    @pytest.mark.asyncio
    async def test_waiting_for_bootstrap_address_requeues(self, reconciler, store, add_cluster, config):
        add_cluster(size=3)
        await reconciler.reconcile(NAMESPACE, CLUSTER)
        await reconciler.reconcile(NAMESPACE, CLUSTER)
        store.clear_actions()

        result = await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert result.requeue_after == config.requeue_delay
        assert store.actions == []
        assert _cluster(store).state.stage is Stage.GENESIS

    @pytest.mark.asyncio
    async def test_bootstrap_being_deleted_is_treated_as_absent(self, reconciler, store, add_cluster):
        add_cluster(size=3)
        await reconciler.reconcile(NAMESPACE, CLUSTER)
        await reconciler.reconcile(NAMESPACE, CLUSTER)
        store.schedule(NAMESPACE, CLUSTER)
        store.mark_deleting(NAMESPACE, CLUSTER)
        store.clear_actions()

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        # create hits AlreadyExists and is absorbed
        assert _cluster(store).state.stage is Stage.GENESIS
        assert _cluster(store).state.nodes == ()


class TestConvergence:
    @pytest.mark.asyncio
    async def test_reaches_ready_with_full_fleet(self, converge, store, add_cluster):
        add_cluster(size=3)

        await converge()

        cluster = _cluster(store)
        assert cluster.state.stage is Stage.READY
        assert cluster.state.nodes == (CLUSTER, f"{CLUSTER}-1", f"{CLUSTER}-2")

        deployment = store.peek(ManagedDeployment, NAMESPACE, CLUSTER)
        bootstrap = store.peek(ManagedPod, NAMESPACE, CLUSTER)
        assert deployment is not None and bootstrap is not None
        assert deployment.replicas == 2
        assert deployment.bootstrap_address == f"{bootstrap.ip}:3000"

        fleet = _pods(store, Role.NODE)
        assert [p.index for p in fleet] == [1, 2]
        for pod in fleet:
            assert pod.template.command[-1] == deployment.bootstrap_address

    @pytest.mark.asyncio
    async def test_converged_cluster_is_left_alone(self, converge, reconciler, store, add_cluster):
        add_cluster(size=4, rich_wallets=3, benchmark_pods=2)
        await converge()

        for _ in range(3):
            store.clear_actions()
            result = await reconciler.reconcile(NAMESPACE, CLUSTER)
            store.schedule_all()
            assert store.actions == []
            assert result.requeue_after is None

    @pytest.mark.asyncio
    async def test_size_one_has_only_bootstrap(self, converge, store, add_cluster):
        add_cluster(size=1)

        await converge()

        assert _cluster(store).state.stage is Stage.READY
        assert [p.name for p in _pods(store)] == [CLUSTER]
        deployment = store.peek(ManagedDeployment, NAMESPACE, CLUSTER)
        assert deployment is not None and deployment.replicas == 0

    @pytest.mark.asyncio
    async def test_rich_wallets_fund_fleet_pods(self, converge, store, add_cluster, config: OperatorConfig):
        add_cluster(size=3, rich_wallets=2)

        await converge()

        wallet = Path(config.wallet_dir, "wallet1.txt").read_text()
        pods = {p.index: p for p in _pods(store, Role.NODE)}
        assert pods[1].template.get_env(NodeEnv.WALLET) == wallet
        assert pods[2].template.get_env(NodeEnv.WALLET) == "random"

        genesis = json.loads(pods[1].template.get_env(NodeEnv.GENESIS) or "")
        assert list(genesis) == [wallet[64:]]

    @pytest.mark.asyncio
    async def test_bootstrap_uses_image_wallet(self, converge, store, add_cluster):
        add_cluster(size=2)

        await converge()

        bootstrap = store.peek(ManagedPod, NAMESPACE, CLUSTER)
        assert bootstrap is not None
        assert bootstrap.template.get_env(NodeEnv.WALLET) == "config/wallet.txt"
        assert bootstrap.template.command == ("./wavelet", "-api.port", "9000")


class TestScaling:
    @pytest.mark.asyncio
    async def test_scale_up_resizes_deployment_and_adds_pods(
        self, converge, reconciler, store, add_cluster, resize,
    ):
        add_cluster(size=3)
        await converge()
        resize(size=5)
        store.clear_actions()

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert store.actions[:3] == [
            Action("update", "Deployment", CLUSTER),
            Action("create", "Pod", f"{CLUSTER}-3"),
            Action("create", "Pod", f"{CLUSTER}-4"),
        ]
        deployment = store.peek(ManagedDeployment, NAMESPACE, CLUSTER)
        assert deployment is not None and deployment.replicas == 4

    @pytest.mark.asyncio
    async def test_scale_down_removes_highest_indices(
        self, converge, reconciler, store, add_cluster, resize,
    ):
        add_cluster(size=5)
        await converge()
        resize(size=2)
        store.clear_actions()

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        deletes = [a.name for a in store.actions if a.op == "delete"]
        assert deletes == [f"{CLUSTER}-4", f"{CLUSTER}-3", f"{CLUSTER}-2"]
        assert _cluster(store).state.nodes == (CLUSTER, f"{CLUSTER}-1")

    @pytest.mark.asyncio
    async def test_refills_gap_left_by_external_delete(
        self, converge, reconciler, store, add_cluster,
    ):
        add_cluster(size=4)
        await converge()
        store.remove(ManagedPod, NAMESPACE, f"{CLUSTER}-1")
        store.clear_actions()

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert Action("create", "Pod", f"{CLUSTER}-1") in store.actions
        assert len(_pods(store, Role.NODE)) == 3

    @pytest.mark.asyncio
    async def test_failed_pod_is_replaced(self, converge, reconciler, store, add_cluster):
        add_cluster(size=3)
        await converge()
        failed = store.schedule(NAMESPACE, f"{CLUSTER}-2", phase=PodPhase.FAILED)
        store.clear_actions()

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert store.actions[:2] == [
            Action("delete", "Pod", f"{CLUSTER}-2"),
            Action("create", "Pod", f"{CLUSTER}-2"),
        ]

        await converge()

        replacement = store.peek(ManagedPod, NAMESPACE, f"{CLUSTER}-2")
        assert replacement is not None
        assert replacement.meta.uid != failed.meta.uid
        assert replacement.is_live
        assert _cluster(store).state.nodes == (CLUSTER, f"{CLUSTER}-1", f"{CLUSTER}-2")

    @pytest.mark.asyncio
    async def test_failed_benchmark_pod_is_replaced(self, converge, store, add_cluster):
        add_cluster(size=2, benchmark_pods=2)
        await converge()
        store.schedule(NAMESPACE, f"{CLUSTER}-benchmark-1", phase=PodPhase.FAILED)

        await converge()

        benchmarks = _pods(store, Role.BENCHMARK)
        assert [p.name for p in benchmarks] == [f"{CLUSTER}-benchmark-0", f"{CLUSTER}-benchmark-1"]
        assert all(p.is_live for p in benchmarks)


class TestBenchmarkPods:
    @pytest.mark.asyncio
    async def test_one_benchmark_pod_per_node_index(self, converge, store, add_cluster):
        add_cluster(size=3, benchmark_pods=2)

        await converge()

        benchmarks = _pods(store, Role.BENCHMARK)
        nodes = {p.index: p for p in _pods(store, Role.NODE) + _pods(store, Role.BOOTSTRAP)}
        assert [p.name for p in benchmarks] == [f"{CLUSTER}-benchmark-0", f"{CLUSTER}-benchmark-1"]
        for bench in benchmarks:
            node = nodes[bench.index]
            assert bench.template.command == (
                "./benchmark", "remote",
                "-host", f"{node.ip}:9000",
                "-wallet", node.template.get_env(NodeEnv.WALLET),
            )

    @pytest.mark.asyncio
    async def test_benchmark_pods_are_not_listed_as_nodes(self, converge, store, add_cluster):
        add_cluster(size=2, benchmark_pods=2)

        await converge()

        assert _cluster(store).state.nodes == (CLUSTER, f"{CLUSTER}-1")

    @pytest.mark.asyncio
    async def test_benchmark_count_is_capped_by_nodes(self, converge, store, add_cluster):
        add_cluster(size=2, benchmark_pods=5)

        await converge()

        assert len(_pods(store, Role.BENCHMARK)) == 2

    @pytest.mark.asyncio
    async def test_fleet_converges_before_benchmarks(self, converge, reconciler, store, add_cluster, resize):
        add_cluster(size=2)
        await converge()
        resize(size=4, benchmark_pods=4)
        store.clear_actions()

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert all(not a.name.startswith(f"{CLUSTER}-benchmark") for a in store.actions)

    @pytest.mark.asyncio
    async def test_benchmarks_wait_for_node_addresses(self, converge, reconciler, store, add_cluster, resize, config):
        add_cluster(size=2)
        await converge()
        resize(size=3, benchmark_pods=3)
        await reconciler.reconcile(NAMESPACE, CLUSTER)
        store.clear_actions()

        result = await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert result.requeue_after == config.requeue_delay
        assert store.actions == []

    @pytest.mark.asyncio
    async def test_scale_down_drops_benchmarks_of_removed_nodes(
        self, converge, reconciler, store, add_cluster, resize,
    ):
        add_cluster(size=3, benchmark_pods=3)
        await converge()
        resize(size=2)

        await converge()

        assert [p.name for p in _pods(store, Role.BENCHMARK)] == [
            f"{CLUSTER}-benchmark-0", f"{CLUSTER}-benchmark-1",
        ]


class TestStageReversal:
    @pytest.mark.asyncio
    async def test_bootstrap_loss_in_ready_returns_to_genesis(self, converge, reconciler, store, add_cluster):
        add_cluster(size=3)
        await converge()
        store.remove(ManagedPod, NAMESPACE, CLUSTER)

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert _cluster(store).state.stage is Stage.GENESIS

    @pytest.mark.asyncio
    async def test_finished_bootstrap_in_ready_returns_to_genesis(self, converge, reconciler, store, add_cluster):
        add_cluster(size=3)
        await converge()
        store.schedule(NAMESPACE, CLUSTER, phase=PodPhase.FAILED)
        store.clear_actions()

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert _cluster(store).state.stage is Stage.GENESIS
        assert Action("delete", "Pod", CLUSTER) in store.actions
        assert all(a.op != "create" for a in store.actions)

    @pytest.mark.asyncio
    async def test_finished_bootstrap_is_recreated_never_replaced_by_fleet_pod(
        self, converge, store, add_cluster,
    ):
        add_cluster(size=3)
        await converge()
        old = store.schedule(NAMESPACE, CLUSTER, phase=PodPhase.SUCCEEDED)

        await converge()

        cluster = _cluster(store)
        bootstrap = store.peek(ManagedPod, NAMESPACE, CLUSTER)
        deployment = store.peek(ManagedDeployment, NAMESPACE, CLUSTER)
        assert cluster.state.stage is Stage.READY
        assert cluster.state.nodes == (CLUSTER, f"{CLUSTER}-1", f"{CLUSTER}-2")
        assert bootstrap is not None and deployment is not None
        assert bootstrap.meta.uid != old.meta.uid
        assert bootstrap.role is Role.BOOTSTRAP and bootstrap.is_live
        assert deployment.bootstrap_address == f"{bootstrap.ip}:3000"
        assert store.peek(ManagedPod, NAMESPACE, f"{CLUSTER}-0") is None
        assert [p.index for p in _pods(store, Role.NODE)] == [1, 2]

    @pytest.mark.asyncio
    async def test_finished_bootstrap_in_bootstrap_returns_to_genesis(self, reconciler, store, add_cluster):
        add_cluster(size=3)
        for _ in range(2):
            await reconciler.reconcile(NAMESPACE, CLUSTER)
        store.schedule_all()
        await reconciler.reconcile(NAMESPACE, CLUSTER)
        assert _cluster(store).state.stage is Stage.BOOTSTRAP
        store.schedule(NAMESPACE, CLUSTER, phase=PodPhase.FAILED)

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert _cluster(store).state.stage is Stage.GENESIS
        assert store.peek(ManagedPod, NAMESPACE, CLUSTER) is None

    @pytest.mark.asyncio
    async def test_fleet_is_rebuilt_against_new_bootstrap(self, converge, reconciler, store, add_cluster):
        add_cluster(size=3)
        await converge()
        old_fleet = {p.meta.uid for p in _pods(store, Role.NODE)}
        store.remove(ManagedPod, NAMESPACE, CLUSTER)

        await converge()

        cluster = _cluster(store)
        bootstrap = store.peek(ManagedPod, NAMESPACE, CLUSTER)
        deployment = store.peek(ManagedDeployment, NAMESPACE, CLUSTER)
        assert cluster.state.stage is Stage.READY
        assert bootstrap is not None and deployment is not None
        assert deployment.bootstrap_address == f"{bootstrap.ip}:3000"
        assert not old_fleet & {p.meta.uid for p in _pods(store, Role.NODE)}
        for pod in _pods(store, Role.NODE):
            assert pod.template.command[-1] == deployment.bootstrap_address

    @pytest.mark.asyncio
    async def test_deployment_loss_returns_to_bootstrap(self, converge, reconciler, store, add_cluster):
        add_cluster(size=3)
        await converge()
        store.remove(ManagedDeployment, NAMESPACE, CLUSTER)

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert _cluster(store).state.stage is Stage.BOOTSTRAP

        await converge()

        assert _cluster(store).state.stage is Stage.READY
        assert store.peek(ManagedDeployment, NAMESPACE, CLUSTER) is not None

    @pytest.mark.asyncio
    async def test_bootstrap_loss_in_bootstrap_returns_to_genesis(self, reconciler, store, add_cluster):
        add_cluster(size=3)
        for _ in range(2):
            await reconciler.reconcile(NAMESPACE, CLUSTER)
        store.schedule_all()
        await reconciler.reconcile(NAMESPACE, CLUSTER)
        assert _cluster(store).state.stage is Stage.BOOTSTRAP
        store.remove(ManagedPod, NAMESPACE, CLUSTER)

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert _cluster(store).state.stage is Stage.GENESIS


class TestTeardown:
    @pytest.mark.asyncio
    async def test_zero_size_deletes_everything(self, converge, reconciler, store, add_cluster, resize):
        add_cluster(size=3, benchmark_pods=2)
        await converge()
        resize(size=0)

        await reconciler.reconcile(NAMESPACE, CLUSTER)

        cluster = _cluster(store)
        assert cluster.state.stage is Stage.GENESIS
        assert cluster.state.nodes == ()
        assert store.objects(ManagedPod) == []
        assert store.objects(ManagedDeployment) == []

    @pytest.mark.asyncio
    async def test_zero_size_from_genesis_creates_nothing(self, converge, store, add_cluster):
        add_cluster(size=0)

        await converge()

        assert _cluster(store).state.stage is Stage.GENESIS
        assert store.objects(ManagedPod) == []

    @pytest.mark.asyncio
    async def test_teardown_resumes_after_failed_delete(self, converge, reconciler, store, add_cluster, resize):
        add_cluster(size=3)
        await converge()
        resize(size=0)
        store.fail_next("delete", CollaboratorUnavailableError("Pod", f"{CLUSTER}-1", "gone"))

        with pytest.raises(CollaboratorUnavailableError):
            await reconciler.reconcile(NAMESPACE, CLUSTER)
        await converge()

        assert _cluster(store).state.stage is Stage.GENESIS
        assert store.objects(ManagedPod) == []


class TestErrors:
    @pytest.mark.asyncio
    async def test_store_failure_propagates_without_advancing(self, reconciler, store, add_cluster):
        add_cluster(size=3)
        await reconciler.reconcile(NAMESPACE, CLUSTER)
        store.fail_next("create", ConnectionError("apiserver down"))

        with pytest.raises(CollaboratorUnavailableError):
            await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert _cluster(store).state.stage is Stage.GENESIS
        assert store.objects(ManagedPod) == []

    @pytest.mark.asyncio
    async def test_failed_pod_list_in_ready_leaves_status_alone(
        self, converge, reconciler, store, add_cluster, resize,
    ):
        add_cluster(size=3)
        await converge()
        resize(size=4)
        store.clear_actions()
        store.fail_next("list", ConnectionError("apiserver down"))

        with pytest.raises(CollaboratorUnavailableError):
            await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert all(a.op != "update_status" for a in store.actions)
        assert _cluster(store).state.stage is Stage.READY
        assert _cluster(store).state.nodes == (CLUSTER, f"{CLUSTER}-1", f"{CLUSTER}-2")

    @pytest.mark.asyncio
    async def test_status_write_failure_propagates(self, reconciler, store, add_cluster):
        add_cluster(size=3)
        store.fail_next("update_status", TimeoutError())

        with pytest.raises(CollaboratorUnavailableError):
            await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert _cluster(store).state.stage is Stage.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_unusable_wallet_dir_fails_the_pass(self, store, add_cluster, tmp_path: Path):
        blocker = tmp_path / "wallets"
        blocker.write_text("not a directory")
        reconciler = Injector([OperatorModule(OperatorConfig(wallet_dir=str(blocker)), store)]).get(Reconciler)
        add_cluster(size=3, rich_wallets=2)
        await reconciler.reconcile(NAMESPACE, CLUSTER)

        with pytest.raises(StorageUnavailableError):
            await reconciler.reconcile(NAMESPACE, CLUSTER)

        assert store.objects(ManagedPod) == []
