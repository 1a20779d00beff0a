"""MPIJob adapter (message-passing training driven by a launcher)."""

from __future__ import annotations

from typing import Any

from training_operator.kinds.base import JobKindAdapter, set_env
from training_operator.models.job import ReplicaSpec, TrainingJob


class MPIJobAdapter(JobKindAdapter):
    """Adapter for ``MPIJob`` resources.

    The launcher runs ``mpirun`` against the workers; its success completes
    the job.
    """

    kind = "MPIJob"
    plural = "mpijobs"
    replica_specs_key = "mpiReplicaSpecs"
    replica_types = ("Launcher", "Worker")

    default_container_name = "mpi"
    default_port_name = "ssh"
    default_port = 22

    def completion_replica_types(self, specs: dict[str, ReplicaSpec]) -> list[str]:
        return ["Launcher"] if "Launcher" in specs else list(specs)

    def set_cluster_spec(
        self, job: TrainingJob, pod: dict[str, Any], replica_type: str, index: int
    ) -> None:
        set_env(
            pod,
            {
                "K_MPI_JOB_ROLE": replica_type.lower(),
                "OMPI_MCA_orte_keep_fqdn_hostnames": "true",
            },
        )
