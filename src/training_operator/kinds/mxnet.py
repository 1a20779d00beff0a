"""MXJob adapter (MXNet parameter-server training and tuning)."""

from __future__ import annotations

from typing import Any

from training_operator.kinds.base import JobKindAdapter, replica_host, set_env
from training_operator.models.job import ReplicaSpec, TrainingJob


class MXJobAdapter(JobKindAdapter):
    """Adapter for ``MXJob`` resources.

    Pods find the scheduler through the ``DMLC_*`` environment.
    """

    kind = "MXJob"
    plural = "mxjobs"
    replica_specs_key = "mxReplicaSpecs"
    replica_types = ("Scheduler", "Server", "Worker", "TunerTracker", "TunerServer", "Tuner")

    default_container_name = "mxnet"
    default_port_name = "mxjob-port"
    default_port = 9091

    def completion_replica_types(self, specs: dict[str, ReplicaSpec]) -> list[str]:
        for rtype in ("Worker", "Tuner"):
            if rtype in specs:
                return [rtype]
        return list(specs)

    def set_cluster_spec(
        self, job: TrainingJob, pod: dict[str, Any], replica_type: str, index: int
    ) -> None:
        specs = self.extract_spec(job)
        env = {
            "DMLC_ROLE": replica_type.lower(),
            "DMLC_NUM_SERVER": str(specs["Server"].replicas if "Server" in specs else 0),
            "DMLC_NUM_WORKER": str(specs["Worker"].replicas if "Worker" in specs else 0),
            "DMLC_USE_KUBERNETES": "1",
        }
        if "Scheduler" in specs:
            env["DMLC_PS_ROOT_URI"] = replica_host(job, "Scheduler", 0)
            env["DMLC_PS_ROOT_PORT"] = str(self.port(job, "Scheduler"))
        set_env(pod, env)
