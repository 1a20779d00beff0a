"""Controller services: cluster access, reconciliation, and dispatch."""

from training_operator.services.cluster import ClusterClient, get_cluster_client
from training_operator.services.controller import ControllerMetrics, JobController
from training_operator.services.dispatcher import SchemeDispatcher, resolve_schemes
from training_operator.services.events import EventRecorder
from training_operator.services.gang import GangScheduler, VolcanoGangScheduler
from training_operator.services.reconciler import JobReconciler, ReconcileResult
from training_operator.services.replicas import ReplicaObservation, ReplicaResourceManager
from training_operator.services.workqueue import WorkQueue

__all__ = [
    "ClusterClient",
    "ControllerMetrics",
    "EventRecorder",
    "GangScheduler",
    "JobController",
    "JobReconciler",
    "ReconcileResult",
    "ReplicaObservation",
    "ReplicaResourceManager",
    "SchemeDispatcher",
    "VolcanoGangScheduler",
    "WorkQueue",
    "get_cluster_client",
    "resolve_schemes",
]
