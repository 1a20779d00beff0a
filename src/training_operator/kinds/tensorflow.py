"""TFJob adapter (parameter-server style TensorFlow training)."""

from __future__ import annotations

import json
from typing import Any

from training_operator.kinds.base import JobKindAdapter, replica_host, set_env
from training_operator.models.common import CleanPodPolicy
from training_operator.models.job import ReplicaSpec, TrainingJob

# Replica types that never take part in the TF cluster spec
NON_CLUSTER_REPLICA_TYPES = {"Evaluator"}


class TFJobAdapter(JobKindAdapter):
    """Adapter for ``TFJob`` resources.

    Every pod gets a ``TF_CONFIG`` describing the cluster (all replica
    groups except the evaluator) and its own task.
    """

    kind = "TFJob"
    plural = "tfjobs"
    replica_specs_key = "tfReplicaSpecs"
    replica_types = ("Chief", "Master", "PS", "Worker", "Evaluator")

    default_container_name = "tensorflow"
    default_port_name = "tfjob-port"
    default_port = 2222
    default_clean_pod_policy = CleanPodPolicy.RUNNING

    def completion_replica_types(self, specs: dict[str, ReplicaSpec]) -> list[str]:
        for chief in ("Chief", "Master"):
            if chief in specs:
                return [chief]
        return ["Worker"] if "Worker" in specs else list(specs)

    def set_cluster_spec(
        self, job: TrainingJob, pod: dict[str, Any], replica_type: str, index: int
    ) -> None:
        cluster: dict[str, list[str]] = {}
        for rtype, spec in self.extract_spec(job).items():
            if rtype in NON_CLUSTER_REPLICA_TYPES:
                continue
            port = self.port(job, rtype)
            cluster[rtype.lower()] = [
                f"{replica_host(job, rtype, i)}:{port}" for i in range(spec.replicas or 0)
            ]

        tf_config = {
            "cluster": cluster,
            "task": {"type": replica_type.lower(), "index": index},
            "environment": "cloud",
        }
        set_env(pod, {"TF_CONFIG": json.dumps(tf_config, sort_keys=True)})
