"""Pod and fleet templates for the managed ledger nodes.

Pure configuration data: names, labels, container command lines and
environment. No store access happens here.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass

from ledgerfleet.api.model import (
    Cluster,
    ManagedDeployment,
    ManagedPod,
    ObjectMeta,
    PodTemplate,
    Role,
)
from ledgerfleet.config import OperatorConfig
from ledgerfleet.constants import (
    BOOTSTRAP_CLASS,
    BOOTSTRAP_INDEX,
    BOOTSTRAP_WALLET,
    RANDOM_WALLET,
    Label,
    benchmark_pod_name,
    fleet_pod_name,
)
from ledgerfleet.genesis import GenesisGenerator
from ledgerfleet.store.protocol import owned_by


class NodeEnv:
    HOST = "WAVELET_NODE_HOST"
    SNOWBALL_K = "WAVELET_SNOWBALL_K"
    SNOWBALL_BETA = "WAVELET_SNOWBALL_BETA"
    GENESIS = "WAVELET_GENESIS"
    WALLET = "WAVELET_WALLET"
    DB_PATH = "WAVELET_DB_PATH"
    MEMORY_MAX = "WAVELET_MEMORY_MAX"


def join_host_port(host: str, port: int) -> str:
    try:
        if ipaddress.ip_address(host).version == 6:
            return f"[{host}]:{port}"
    except ValueError:
        pass
    return f"{host}:{port}"


def _labels(cluster: Cluster, role: Role, index: int) -> dict[str, str]:
    labels = {
        Label.APP.value: cluster.name,
        Label.ROLE.value: Role.BENCHMARK.value if role is Role.BENCHMARK else Role.NODE.value,
        Label.INDEX.value: str(index),
    }
    if role is Role.BOOTSTRAP:
        labels[Label.CLASS.value] = BOOTSTRAP_CLASS
    return labels


@dataclass(frozen=True, slots=True)
class WorkloadBuilder:
    config: OperatorConfig
    wallets: GenesisGenerator

    def _node_template(self, wallet: str, genesis: str, *bootstrap: str) -> PodTemplate:
        cfg = self.config
        return PodTemplate(
            image=cfg.image,
            command=("./wavelet", "-api.port", str(cfg.api_port), *bootstrap),
            env=(
                (NodeEnv.SNOWBALL_K, str(cfg.snowball_k)),
                (NodeEnv.SNOWBALL_BETA, str(cfg.snowball_beta)),
                (NodeEnv.GENESIS, genesis),
                (NodeEnv.WALLET, wallet),
                (NodeEnv.DB_PATH, cfg.db_path),
                (NodeEnv.MEMORY_MAX, str(cfg.memory_max)),
            ),
            ports=(("node", cfg.node_port), ("http", cfg.api_port)),
            host_env=NodeEnv.HOST,
            pull_secret=cfg.image_pull_secret or None,
        )

    def _pod(self, cluster: Cluster, name: str, role: Role, index: int, template: PodTemplate) -> ManagedPod:
        pod = ManagedPod(
            meta=ObjectMeta(
                name=name,
                namespace=cluster.namespace,
                labels=_labels(cluster, role, index),
            ),
            role=role,
            index=index,
            template=template,
        )
        return owned_by(pod, cluster)

    def bootstrap_pod(self, cluster: Cluster, genesis: str) -> ManagedPod:
        return self._pod(
            cluster, cluster.name, Role.BOOTSTRAP, BOOTSTRAP_INDEX,
            self._node_template(BOOTSTRAP_WALLET, genesis),
        )

    def bootstrap_address(self, bootstrap: ManagedPod) -> str:
        return join_host_port(bootstrap.ip, self.config.node_port)

    def deployment(self, cluster: Cluster, bootstrap: ManagedPod, genesis: str) -> ManagedDeployment:
        dep = ManagedDeployment(
            meta=ObjectMeta(
                name=cluster.name,
                namespace=cluster.namespace,
                labels={Label.APP.value: cluster.name},
            ),
            replicas=cluster.intent.fleet_replicas,
            bootstrap_address=self.bootstrap_address(bootstrap),
            genesis=genesis,
        )
        return owned_by(dep, cluster)

    def fleet_pod(self, cluster: Cluster, deployment: ManagedDeployment, index: int) -> ManagedPod:
        """Worker pod ``index``, funded with the persisted wallet of that index if any."""
        wallet = self.wallets.read_wallet(index) or RANDOM_WALLET
        return self._pod(
            cluster, fleet_pod_name(cluster.name, index), Role.NODE, index,
            self._node_template(wallet, deployment.genesis, deployment.bootstrap_address),
        )

    def benchmark_pod(self, cluster: Cluster, node: ManagedPod) -> ManagedPod:
        """Load generator bound to ``node``'s API and wallet."""
        wallet = node.template.get_env(NodeEnv.WALLET) or RANDOM_WALLET
        host = join_host_port(node.ip, self.config.api_port)
        template = PodTemplate(
            image=self.config.image,
            command=("./benchmark", "remote", "-host", host, "-wallet", wallet),
            pull_secret=self.config.image_pull_secret or None,
        )
        return self._pod(
            cluster, benchmark_pod_name(cluster.name, node.index), Role.BENCHMARK, node.index, template,
        )
