"""TOML-based operator configuration.

Loads ~/.ledgerfleet/defaults.toml (global) and ledgerfleet.toml (project),
merges them, and builds the ``OperatorConfig`` and ``LogConfig`` the
operator is wired with.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from ledgerfleet.constants import (
    API_PORT,
    DEFAULT_IMAGE,
    DEFAULT_PULL_SECRET,
    DEFAULT_WALLET_DIR,
    NODE_PORT,
)
from ledgerfleet.core.exceptions import ConfigurationError
from ledgerfleet.observability.logging import LogConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".ledgerfleet" / "defaults.toml"
PROJECT_CONFIG_NAME = "ledgerfleet.toml"


@dataclass(frozen=True, slots=True)
class OperatorConfig:
    """Everything the reconciler needs besides the cluster resource itself.

    Args:
        wallet_dir: Directory holding one wallet file per index.
        image: Container image of ledger nodes and benchmark pods.
        image_pull_secret: Pull secret name, empty for none.
        node_port: Peer port; the bootstrap address is ``<ip>:<node_port>``.
        api_port: HTTP API port of every node.
        snowball_k: Consensus sample size passed to nodes.
        snowball_beta: Consensus decision threshold passed to nodes.
        db_path: Database path inside the node container.
        memory_max: Node memory cap in MB.
        requeue_delay: Seconds to wait before re-checking an address.
        namespace: Namespace watched by the operator.
    """

    wallet_dir: str = DEFAULT_WALLET_DIR
    image: str = DEFAULT_IMAGE
    image_pull_secret: str = DEFAULT_PULL_SECRET
    node_port: int = NODE_PORT
    api_port: int = API_PORT
    snowball_k: int = 10
    snowball_beta: int = 20
    db_path: str = "db"
    memory_max: int = 4096
    requeue_delay: float = 1.0
    namespace: str = "default"

    def __post_init__(self) -> None:
        if self.requeue_delay <= 0:
            raise ConfigurationError(f"requeue_delay must be > 0, got {self.requeue_delay}")
        for port in (self.node_port, self.api_port):
            if not 0 < port < 65536:
                raise ConfigurationError(f"invalid port {port}")


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("operator", {})
    merged.setdefault("logging", {})
    return merged


def _build[T](cls: type[T], section: str, raw: RawConfig) -> T:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in [{section}]: {', '.join(sorted(unknown))}. "
            f"Valid: {', '.join(sorted(known))}"
        )
    return cls(**raw)


def resolve_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> tuple[OperatorConfig, LogConfig]:
    config = load_config(project_dir=project_dir, global_path=global_path)
    return (
        _build(OperatorConfig, "operator", config["operator"]),
        _build(LogConfig, "logging", config["logging"]),
    )
