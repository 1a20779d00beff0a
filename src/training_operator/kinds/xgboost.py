"""XGBoostJob adapter (distributed boosted-tree training)."""

from __future__ import annotations

from typing import Any

from training_operator.kinds.base import JobKindAdapter, replica_host, set_env
from training_operator.models.job import ReplicaSpec, TrainingJob


class XGBoostJobAdapter(JobKindAdapter):
    """Adapter for ``XGBoostJob`` resources.

    The master runs the rabit tracker; workers connect to it.
    """

    kind = "XGBoostJob"
    plural = "xgboostjobs"
    replica_specs_key = "xgbReplicaSpecs"
    replica_types = ("Master", "Worker")

    default_container_name = "xgboost"
    default_port_name = "xgboostjob-port"
    default_port = 9999

    def completion_replica_types(self, specs: dict[str, ReplicaSpec]) -> list[str]:
        return ["Master"] if "Master" in specs else list(specs)

    def set_cluster_spec(
        self, job: TrainingJob, pod: dict[str, Any], replica_type: str, index: int
    ) -> None:
        specs = self.extract_spec(job)
        world_size = sum(spec.replicas or 0 for spec in specs.values())
        rank = index + 1 if replica_type == "Worker" and "Master" in specs else index
        worker_count = (specs["Worker"].replicas or 0) if "Worker" in specs else 0
        worker_addrs = [replica_host(job, "Worker", i) for i in range(worker_count)]

        set_env(
            pod,
            {
                "MASTER_ADDR": replica_host(job, "Master", 0),
                "MASTER_PORT": str(self.port(job, "Master")),
                "WORLD_SIZE": str(world_size),
                "RANK": str(rank),
                "WORKER_PORT": str(self.port(job, "Worker")),
                "WORKER_ADDRS": ",".join(worker_addrs),
                "PYTHONUNBUFFERED": "0",
            },
        )
