from ledgerfleet.actors.controller import controller_actor
from ledgerfleet.actors.messages import ClusterChanged, ClusterKey, ControllerMsg
from ledgerfleet.actors.worker import backoff_delay, cluster_worker

__all__ = [
    "ClusterChanged",
    "ClusterKey",
    "ControllerMsg",
    "backoff_delay",
    "cluster_worker",
    "controller_actor",
]
