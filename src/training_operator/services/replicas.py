"""Pods and Services of one replica group of a training job."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from kubernetes.client import V1Pod

from training_operator.models.common import (
    LABEL_GROUP_NAME,
    LABEL_JOB_NAME,
    LABEL_OPERATOR_NAME,
    LABEL_REPLICA_INDEX,
    LABEL_REPLICA_TYPE,
    OPERATOR_NAME,
    RestartPolicy,
)
from training_operator.models.job import ReplicaSpec, ReplicaStatus, TrainingJob

if TYPE_CHECKING:
    from training_operator.kinds.base import JobKindAdapter
    from training_operator.services.cluster import ClusterClient
    from training_operator.services.events import EventRecorder
    from training_operator.services.gang import GangScheduler

logger = logging.getLogger(__name__)

# Pod phases
PHASE_PENDING = "Pending"
PHASE_RUNNING = "Running"
PHASE_SUCCEEDED = "Succeeded"
PHASE_FAILED = "Failed"


def replica_name(job_name: str, replica_type: str, index: int) -> str:
    """Deterministic name shared by the Pod and Service of one replica."""
    return f"{job_name}-{replica_type.lower()}-{index}"


def job_labels(job: TrainingJob) -> dict[str, str]:
    """Labels selecting every owned resource of a job."""
    return {
        LABEL_GROUP_NAME: job.api_version.split("/")[0],
        LABEL_OPERATOR_NAME: OPERATOR_NAME,
        LABEL_JOB_NAME: job.metadata.name,
    }


def replica_labels(job: TrainingJob, replica_type: str, index: int | None = None) -> dict[str, str]:
    labels = job_labels(job)
    labels[LABEL_REPLICA_TYPE] = replica_type.lower()
    if index is not None:
        labels[LABEL_REPLICA_INDEX] = str(index)
    return labels


def label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def pod_restart_policy(policy: RestartPolicy) -> str:
    """Kubelet restart policy for a replica policy.

    Only Always is left to the kubelet. OnFailure and ExitCode restarts are
    performed by the controller by recreating the pod, so that every restart
    is counted against the job's backoff limit.
    """
    return "Always" if policy == RestartPolicy.ALWAYS else "Never"


def replica_index(obj: Any) -> int | None:
    labels = (obj.metadata.labels or {}) if obj.metadata else {}
    try:
        return int(labels.get(LABEL_REPLICA_INDEX, ""))
    except ValueError:
        return None


def replica_type_label(obj: Any) -> str | None:
    labels = (obj.metadata.labels or {}) if obj.metadata else {}
    return labels.get(LABEL_REPLICA_TYPE)


def failed_exit_code(pod: V1Pod) -> int | None:
    """Exit code of the first container that terminated with a non-zero code."""
    statuses = (pod.status.container_statuses or []) if pod.status else []
    for container_status in statuses:
        terminated = container_status.state.terminated if container_status.state else None
        if terminated is not None and terminated.exit_code:
            return terminated.exit_code
    return None


def classify_pod(pod: V1Pod) -> str | None:
    """Bucket a pod into active, succeeded or failed.

    Pending pods are not counted. A running pod whose container already exited
    non-zero under restart policy Never will not recover and counts as failed.

    Returns:
        "active", "succeeded", "failed", or None for pods not yet running
    """
    phase = pod.status.phase if pod.status else None
    if phase == PHASE_SUCCEEDED:
        return "succeeded"
    if phase == PHASE_FAILED:
        return "failed"
    if phase == PHASE_RUNNING:
        restart_policy = pod.spec.restart_policy if pod.spec else None
        if restart_policy == "Never" and failed_exit_code(pod) is not None:
            return "failed"
        return "active"
    return None


@dataclass
class ReplicaObservation:
    """Result of reconciling one replica group.

    Attributes:
        status: Pod counts for the group
        failed_pods: Pods counted as failed, candidates for restart
        created: Number of pods created during this pass
        deleted: Number of pods deleted during this pass
    """

    status: ReplicaStatus = field(default_factory=ReplicaStatus)
    failed_pods: list[V1Pod] = field(default_factory=list)
    created: int = 0
    deleted: int = 0


class ReplicaResourceManager:
    """Creates, inspects and deletes the Pods and Services of replica groups.

    Every replica index in ``[0, replicas)`` owns one Pod and one headless
    Service with the same deterministic name, so existence is decided by
    listing with label selectors. The Service is created before the Pod.

    Example:
        ```python
        manager = ReplicaResourceManager(cluster, adapter, recorder)
        observation = manager.reconcile(job, "Worker", spec, job.owner_reference())
        print(observation.status.active)
        ```
    """

    def __init__(
        self,
        cluster: ClusterClient,
        adapter: JobKindAdapter,
        recorder: EventRecorder | None = None,
        gang_scheduler: GangScheduler | None = None,
    ) -> None:
        self.cluster = cluster
        self.adapter = adapter
        self.recorder = recorder
        self.gang_scheduler = gang_scheduler

    def reconcile(
        self,
        job: TrainingJob,
        replica_type: str,
        spec: ReplicaSpec,
        owner_ref: dict[str, Any],
    ) -> ReplicaObservation:
        """Drive one replica group toward its declared replica count.

        Args:
            job: The owning job (defaults applied)
            replica_type: Replica group name, e.g. "Worker"
            spec: Desired state of the group
            owner_ref: Owner reference put on created resources

        Returns:
            ReplicaObservation with counts and failed pods

        Raises:
            TransientError: On cluster errors; creation stops at the first one
        """
        namespace = job.metadata.namespace
        replicas = spec.replicas or 0
        selector = label_selector(replica_labels(job, replica_type))
        observation = ReplicaObservation()

        pods_by_index: dict[int, V1Pod] = {}
        for pod in self.cluster.list_pods(namespace, selector):
            index = replica_index(pod)
            if index is None:
                logger.warning("Pod %s has no valid replica index label", pod.metadata.name)
                continue
            if index >= replicas:
                self.cluster.delete_pod(namespace, pod.metadata.name)
                observation.deleted += 1
                continue
            pods_by_index[index] = pod

        service_names = set()
        for service in self.cluster.list_services(namespace, selector):
            index = replica_index(service)
            if index is not None and index >= replicas:
                self.cluster.delete_service(namespace, service.metadata.name)
                continue
            service_names.add(service.metadata.name)

        for index in range(replicas):
            name = replica_name(job.metadata.name, replica_type, index)
            if name not in service_names:
                self._create_service(job, replica_type, index, owner_ref)
            if index not in pods_by_index:
                self._create_pod(job, replica_type, index, spec, owner_ref)
                observation.created += 1

        for pod in pods_by_index.values():
            if pod.metadata.deletion_timestamp is not None:
                # Terminating (e.g. being restarted); holds its index until gone
                continue
            bucket = classify_pod(pod)
            if bucket == "active":
                observation.status.active += 1
            elif bucket == "succeeded":
                observation.status.succeeded += 1
            elif bucket == "failed":
                observation.status.failed += 1
                observation.failed_pods.append(pod)

        if observation.created or observation.deleted:
            logger.info(
                "Reconciled %s %s replica %s: created %d, deleted %d pods",
                self.adapter.kind,
                job.key,
                replica_type,
                observation.created,
                observation.deleted,
            )
        return observation

    def restart(self, job: TrainingJob, pods: list[V1Pod]) -> None:
        """Delete failed pods so that the next pass recreates them."""
        for pod in pods:
            self.cluster.delete_pod(job.metadata.namespace, pod.metadata.name)
            logger.info("Restarting failed pod %s of %s", pod.metadata.name, job.key)

    def delete_undeclared(self, job: TrainingJob, replica_types: Iterable[str]) -> int:
        """Delete pods and services of replica types removed from the job.

        Returns:
            Number of pods deleted
        """
        declared = {rtype.lower() for rtype in replica_types}
        namespace = job.metadata.namespace
        selector = label_selector(job_labels(job))
        deleted = 0
        for pod in self.cluster.list_pods(namespace, selector):
            rtype = replica_type_label(pod)
            if rtype is not None and rtype not in declared:
                if self.cluster.delete_pod(namespace, pod.metadata.name):
                    deleted += 1
        for service in self.cluster.list_services(namespace, selector):
            rtype = replica_type_label(service)
            if rtype is not None and rtype not in declared:
                self.cluster.delete_service(namespace, service.metadata.name)
        if deleted:
            logger.info("Deleted %d pods of undeclared replica types of %s", deleted, job.key)
        return deleted

    def delete_all(self, job: TrainingJob, running_only: bool = False) -> int:
        """Delete owned pods and services of a job.

        Args:
            job: The owning job
            running_only: Only delete pods that are still pending or running,
                together with their services

        Returns:
            Number of pods deleted
        """
        namespace = job.metadata.namespace
        selector = label_selector(job_labels(job))
        deleted = 0
        kept: set[str] = set()
        for pod in self.cluster.list_pods(namespace, selector):
            phase = pod.status.phase if pod.status else None
            if running_only and phase not in (None, PHASE_PENDING, PHASE_RUNNING):
                kept.add(pod.metadata.name)
                continue
            if self.cluster.delete_pod(namespace, pod.metadata.name):
                deleted += 1
        for service in self.cluster.list_services(namespace, selector):
            if service.metadata.name in kept:
                continue
            self.cluster.delete_service(namespace, service.metadata.name)
        return deleted

    def build_pod(
        self, job: TrainingJob, replica_type: str, index: int, spec: ReplicaSpec,
        owner_ref: dict[str, Any],
    ) -> dict[str, Any]:
        """Render the pod body for one replica from the group's template."""
        template = copy.deepcopy(spec.template)
        metadata = template.get("metadata") or {}
        pod_spec = template.get("spec") or {}

        labels = dict(metadata.get("labels") or {})
        labels.update(replica_labels(job, replica_type, index))
        name = replica_name(job.metadata.name, replica_type, index)
        pod = {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {
                "name": name,
                "namespace": job.metadata.namespace,
                "labels": labels,
                "annotations": dict(metadata.get("annotations") or {}),
                "ownerReferences": [owner_ref],
            },
            "spec": pod_spec,
        }
        pod_spec["restartPolicy"] = pod_restart_policy(spec.restart_policy or RestartPolicy.NEVER)

        self.adapter.set_cluster_spec(job, pod, replica_type, index)
        if self.gang_scheduler is not None:
            self.gang_scheduler.decorate_pod(job, pod)
        return pod

    def build_service(
        self, job: TrainingJob, replica_type: str, index: int, owner_ref: dict[str, Any]
    ) -> dict[str, Any]:
        """Render the headless service giving one replica a stable DNS name."""
        labels = replica_labels(job, replica_type, index)
        port = self.adapter.port(job, replica_type)
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {
                "name": replica_name(job.metadata.name, replica_type, index),
                "namespace": job.metadata.namespace,
                "labels": labels,
                "ownerReferences": [owner_ref],
            },
            "spec": {
                "clusterIP": "None",
                "selector": labels,
                "ports": [{"name": self.adapter.default_port_name, "port": port}],
            },
        }

    def _create_pod(
        self, job: TrainingJob, replica_type: str, index: int, spec: ReplicaSpec,
        owner_ref: dict[str, Any],
    ) -> None:
        body = self.build_pod(job, replica_type, index, spec, owner_ref)
        try:
            self.cluster.create_pod(job.metadata.namespace, body)
        except Exception as e:
            if self.recorder is not None:
                self.recorder.warning(job, "FailedCreatePod", f"Error creating pod: {e}")
            raise

    def _create_service(
        self, job: TrainingJob, replica_type: str, index: int, owner_ref: dict[str, Any]
    ) -> None:
        body = self.build_service(job, replica_type, index, owner_ref)
        try:
            self.cluster.create_service(job.metadata.namespace, body)
        except Exception as e:
            if self.recorder is not None:
                self.recorder.warning(job, "FailedCreateService", f"Error creating service: {e}")
            raise
