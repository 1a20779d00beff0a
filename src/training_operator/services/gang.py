"""Gang scheduling through a scheduling-group resource."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from training_operator.models.job import ReplicaSpec, RunPolicy, TrainingJob

if TYPE_CHECKING:
    from training_operator.services.cluster import ClusterClient

logger = logging.getLogger(__name__)

# Volcano PodGroup coordinates
PODGROUP_GROUP = "scheduling.volcano.sh"
PODGROUP_VERSION = "v1beta1"
PODGROUP_PLURAL = "podgroups"
GROUP_NAME_ANNOTATION = "scheduling.k8s.io/group-name"


def min_member(
    replica_specs: dict[str, ReplicaSpec],
    gang_types: list[str],
    run_policy: RunPolicy | None = None,
) -> int:
    """Members that must be schedulable together before any of them starts.

    An explicit schedulingPolicy.minAvailable wins over the sum of replicas
    of the gang-eligible replica types.
    """
    scheduling = run_policy.scheduling_policy if run_policy else None
    if scheduling is not None and scheduling.min_available is not None:
        return scheduling.min_available
    return sum(replica_specs[rtype].replicas or 0 for rtype in gang_types if rtype in replica_specs)


class GangScheduler(ABC):
    """Adapter boundary to a gang-capable cluster scheduler.

    The controller only guarantees that the scheduling group exists before
    member pods are created; admitting the pods is the scheduler's job.
    """

    scheduler_name: str

    @abstractmethod
    def ensure(
        self,
        job: TrainingJob,
        replica_specs: dict[str, ReplicaSpec],
        gang_types: list[str],
        run_policy: RunPolicy,
    ) -> None:
        """Create the job's scheduling group, or update its minimum member count."""

    @abstractmethod
    def delete(self, job: TrainingJob) -> None:
        """Delete the job's scheduling group; a missing group is not an error."""

    def decorate_pod(self, job: TrainingJob, pod: dict[str, Any]) -> None:
        """Route a member pod to the gang scheduler and its group."""
        pod["spec"]["schedulerName"] = self.scheduler_name
        pod["metadata"].setdefault("annotations", {})[GROUP_NAME_ANNOTATION] = job.metadata.name


class VolcanoGangScheduler(GangScheduler):
    """Gang scheduling with a Volcano ``PodGroup`` per job.

    Example:
        ```python
        gang = VolcanoGangScheduler(cluster)
        gang.ensure(job, specs, ["Master", "Worker"], run_policy)
        ```
    """

    def __init__(self, cluster: ClusterClient, scheduler_name: str = "volcano") -> None:
        self.cluster = cluster
        self.scheduler_name = scheduler_name

    def build_pod_group(
        self, job: TrainingJob, members: int, run_policy: RunPolicy
    ) -> dict[str, Any]:
        spec: dict[str, Any] = {"minMember": members}
        scheduling = run_policy.scheduling_policy
        if scheduling is not None:
            if scheduling.queue:
                spec["queue"] = scheduling.queue
            if scheduling.priority_class:
                spec["priorityClassName"] = scheduling.priority_class
        return {
            "apiVersion": f"{PODGROUP_GROUP}/{PODGROUP_VERSION}",
            "kind": "PodGroup",
            "metadata": {
                "name": job.metadata.name,
                "namespace": job.metadata.namespace,
                "ownerReferences": [job.owner_reference()],
            },
            "spec": spec,
        }

    def ensure(
        self,
        job: TrainingJob,
        replica_specs: dict[str, ReplicaSpec],
        gang_types: list[str],
        run_policy: RunPolicy,
    ) -> None:
        namespace = job.metadata.namespace
        members = min_member(replica_specs, gang_types, run_policy)
        desired = self.build_pod_group(job, members, run_policy)

        existing = self.cluster.get_custom_object(
            PODGROUP_GROUP, PODGROUP_VERSION, PODGROUP_PLURAL, namespace, job.metadata.name
        )
        if existing is None:
            created = self.cluster.create_custom_object(
                PODGROUP_GROUP, PODGROUP_VERSION, PODGROUP_PLURAL, namespace, desired
            )
            if created is not None:
                logger.info(
                    "Created PodGroup %s with minMember %d",
                    job.key,
                    desired["spec"]["minMember"],
                )
                return
            # Lost a creation race; compare against the winner
            existing = self.cluster.get_custom_object(
                PODGROUP_GROUP, PODGROUP_VERSION, PODGROUP_PLURAL, namespace, job.metadata.name
            )
            if existing is None:
                return

        current = existing.get("spec") or {}
        if all(current.get(key) == value for key, value in desired["spec"].items()):
            return

        updated = dict(existing)
        updated["spec"] = {**current, **desired["spec"]}
        self.cluster.replace_custom_object(
            PODGROUP_GROUP, PODGROUP_VERSION, PODGROUP_PLURAL, namespace, updated
        )
        logger.info(
            "Updated PodGroup %s minMember %s -> %d",
            job.key,
            current.get("minMember"),
            desired["spec"]["minMember"],
        )

    def delete(self, job: TrainingJob) -> None:
        self.cluster.delete_custom_object(
            PODGROUP_GROUP, PODGROUP_VERSION, PODGROUP_PLURAL,
            job.metadata.namespace, job.metadata.name,
        )
