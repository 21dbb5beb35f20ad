"""Centralized constants and enums for ledgerfleet.

Label keys, naming rules, ports and ledger constants are defined here
so the reconciler, the workload builder and the Kubernetes adapter agree
on one vocabulary.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Final

# =============================================================================
# Resource Labels
# =============================================================================


class Label(StrEnum):
    """Label keys set on every resource the operator creates."""

    APP = "app"
    ROLE = "role"
    CLASS = "class"
    INDEX = "ledgerfleet.io/index"


BOOTSTRAP_CLASS: Final = "bootstrap"
BOOTSTRAP_INDEX: Final = 0


# =============================================================================
# Custom Resource
# =============================================================================

API_GROUP: Final = "ledgerfleet.io"
API_VERSION: Final = "v1alpha1"
CLUSTER_PLURAL: Final = "ledgerclusters"
CLUSTER_KIND: Final = "LedgerCluster"


# =============================================================================
# Workload Defaults
# =============================================================================

DEFAULT_IMAGE: Final = "repo.treescale.com/perlin/wavelet"
DEFAULT_PULL_SECRET: Final = "regcred"
NODE_PORT: Final = 3000
API_PORT: Final = 9000
BOOTSTRAP_WALLET: Final = "config/wallet.txt"
RANDOM_WALLET: Final = "random"
CONTAINER_NAME: Final = "wavelet"


# =============================================================================
# Genesis
# =============================================================================

DEFAULT_WALLET_DIR: Final = "config"
RICH_WALLET_BALANCE: Final = 10_000_000_000_000_000_000
PRIVATE_KEY_SIZE: Final = 64
PUBLIC_KEY_SIZE: Final = 32
WALLET_FILE_LENGTH: Final = PRIVATE_KEY_SIZE * 2


def wallet_filename(index: int) -> str:
    return f"wallet{index}.txt"


# =============================================================================
# Naming
# =============================================================================

_FLEET_SUFFIX = re.compile(r"-(\d+)")
_BENCHMARK_SUFFIX = re.compile(r"-benchmark-(\d+)")


def fleet_pod_name(cluster: str, index: int) -> str:
    return f"{cluster}-{index}"


def benchmark_pod_name(cluster: str, index: int) -> str:
    return f"{cluster}-benchmark-{index}"


def index_from_name(cluster: str, name: str, *, benchmark: bool = False) -> int | None:
    """Recover an index from a pod name, validating its full shape.

    Returns None when the name is not one the operator would have produced
    for the given cluster, instead of trusting whatever trails the prefix.
    """
    if not benchmark and name == cluster:
        return 0
    if not name.startswith(cluster):
        return None
    pattern = _BENCHMARK_SUFFIX if benchmark else _FLEET_SUFFIX
    match = pattern.fullmatch(name[len(cluster):])
    if match is None:
        return None
    return int(match.group(1))
