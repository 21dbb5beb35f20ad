"""Wire format of the objects the operator reads and writes.

Custom resource spec/status are pydantic models. Pods and fleet records
are converted to and from the plain camelCase dicts the Kubernetes API
speaks (``ApiClient.sanitize_for_serialization`` output), so conversion
can be tested without a cluster.

The fleet record is persisted as a ConfigMap named after the cluster:

    data:
      replicas: "4"
      bootstrapAddress: "10.0.0.2:3000"
      genesis: '{"<pubkey>": {"balance": ...}}'
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ledgerfleet.api.model import (
    Cluster,
    ClusterIntent,
    ClusterState,
    ManagedDeployment,
    ManagedPod,
    ObjectMeta,
    OwnerRef,
    PodPhase,
    PodTemplate,
    Role,
    Stage,
)
from ledgerfleet.constants import (
    API_GROUP,
    API_VERSION,
    BOOTSTRAP_CLASS,
    CLUSTER_KIND,
    CONTAINER_NAME,
    Label,
    index_from_name,
)
from ledgerfleet.core.exceptions import ConfigurationError, MalformedPodError

type Body = dict[str, Any]


# =============================================================================
# Custom Resource
# =============================================================================


class ClusterSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    size: int = Field(ge=0, description="Total node count, bootstrap included")
    rich_wallets: int = Field(default=0, ge=0, alias="num_rich_wallets")
    benchmark_pods: int = Field(default=0, ge=0, alias="num_benchmark_pods")


class ClusterStatus(BaseModel):
    stage: Stage = Stage.UNINITIALIZED
    nodes: list[str] = Field(default_factory=list)


def _meta_from_body(meta: Mapping[str, Any], default_namespace: str = "default") -> ObjectMeta:
    owners = meta.get("ownerReferences") or []
    owner = None
    if owners:
        ref = owners[0]
        owner = OwnerRef(kind=ref["kind"], name=ref["name"], uid=ref["uid"])
    return ObjectMeta(
        name=meta["name"],
        namespace=meta.get("namespace") or default_namespace,
        labels=dict(meta.get("labels") or {}),
        uid=meta.get("uid", ""),
        owner=owner,
        deletion_requested=meta.get("deletionTimestamp") is not None,
    )


def _meta_to_body(meta: ObjectMeta) -> Body:
    body: Body = {
        "name": meta.name,
        "namespace": meta.namespace,
        "labels": dict(meta.labels),
    }
    if meta.owner is not None:
        body["ownerReferences"] = [{
            "apiVersion": f"{API_GROUP}/{API_VERSION}",
            "kind": meta.owner.kind,
            "name": meta.owner.name,
            "uid": meta.owner.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }]
    return body


def owning_cluster(meta: Mapping[str, Any]) -> str | None:
    """Name of the cluster resource that controls an object, from its raw metadata."""
    for ref in meta.get("ownerReferences") or []:
        if ref.get("kind") == CLUSTER_KIND and str(ref.get("apiVersion", "")).startswith(f"{API_GROUP}/"):
            return ref.get("name")
    return None


def cluster_from_body(body: Mapping[str, Any]) -> Cluster:
    """Raises ConfigurationError when the spec does not validate."""
    meta = _meta_from_body(body["metadata"])
    try:
        spec = ClusterSpec.model_validate(body.get("spec") or {})
    except ValueError as e:
        raise ConfigurationError(f"Invalid spec for {meta.key}: {e}") from e
    status = ClusterStatus.model_validate(body.get("status") or {})
    return Cluster(
        meta=meta,
        intent=ClusterIntent(
            size=spec.size,
            rich_wallets=spec.rich_wallets,
            benchmark_pods=spec.benchmark_pods,
        ),
        state=ClusterState(stage=status.stage, nodes=tuple(status.nodes)),
    )


def status_body(state: ClusterState) -> Body:
    status = ClusterStatus(stage=state.stage, nodes=list(state.nodes))
    return {"status": status.model_dump(mode="json")}


# =============================================================================
# Pods
# =============================================================================


def _role(labels: Mapping[str, str]) -> Role:
    if labels.get(Label.ROLE) == Role.BENCHMARK:
        return Role.BENCHMARK
    if labels.get(Label.CLASS) == BOOTSTRAP_CLASS:
        return Role.BOOTSTRAP
    return Role.NODE


def _index(meta: ObjectMeta, role: Role) -> int:
    raw = meta.labels.get(Label.INDEX)
    if raw is not None and raw.isdigit():
        return int(raw)
    cluster = meta.labels.get(Label.APP, "")
    index = index_from_name(cluster, meta.name, benchmark=role is Role.BENCHMARK) if cluster else None
    if index is None:
        raise MalformedPodError(meta.name)
    return index


def _template_from_body(spec: Mapping[str, Any]) -> PodTemplate:
    container = (spec.get("containers") or [{}])[0]
    env: list[tuple[str, str]] = []
    host_env = None
    for var in container.get("env") or []:
        if "valueFrom" in var:
            host_env = var["name"]
        else:
            env.append((var["name"], var.get("value", "")))
    secrets = spec.get("imagePullSecrets") or []
    return PodTemplate(
        image=container.get("image", ""),
        command=tuple(container.get("command") or ()),
        env=tuple(env),
        ports=tuple((p.get("name", ""), p["containerPort"]) for p in container.get("ports") or []),
        host_env=host_env,
        pull_secret=secrets[0]["name"] if secrets else None,
        stdin=bool(container.get("stdin", False)),
    )


def pod_from_body(body: Mapping[str, Any]) -> ManagedPod:
    """Raises MalformedPodError when no valid index can be recovered."""
    meta = _meta_from_body(body["metadata"])
    role = _role(meta.labels)
    status = body.get("status") or {}
    return ManagedPod(
        meta=meta,
        role=role,
        index=_index(meta, role),
        template=_template_from_body(body.get("spec") or {}),
        ip=status.get("podIP") or "",
        phase=PodPhase(status.get("phase") or PodPhase.PENDING),
    )


def pod_to_body(pod: ManagedPod) -> Body:
    t = pod.template
    env: list[Body] = [{"name": k, "value": v} for k, v in t.env]
    if t.host_env:
        env.insert(0, {
            "name": t.host_env,
            "valueFrom": {"fieldRef": {"fieldPath": "status.podIP"}},
        })
    container: Body = {
        "name": CONTAINER_NAME,
        "image": t.image,
        "command": list(t.command),
        "env": env,
        "ports": [{"name": name, "containerPort": port} for name, port in t.ports],
        "stdin": t.stdin,
    }
    spec: Body = {"containers": [container]}
    if t.pull_secret:
        spec["imagePullSecrets"] = [{"name": t.pull_secret}]
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": _meta_to_body(pod.meta),
        "spec": spec,
    }


# =============================================================================
# Fleet Record
# =============================================================================


def deployment_from_body(body: Mapping[str, Any]) -> ManagedDeployment:
    data = body.get("data") or {}
    return ManagedDeployment(
        meta=_meta_from_body(body["metadata"]),
        replicas=int(data.get("replicas", "0")),
        bootstrap_address=data.get("bootstrapAddress", ""),
        genesis=data.get("genesis", ""),
    )


def deployment_to_body(dep: ManagedDeployment) -> Body:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": _meta_to_body(dep.meta),
        "data": {
            "replicas": str(dep.replicas),
            "bootstrapAddress": dep.bootstrap_address,
            "genesis": dep.genesis,
        },
    }
