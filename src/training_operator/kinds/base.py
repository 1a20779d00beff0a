"""Per-framework adapter contract used by the generic reconciler."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import ValidationError

from training_operator.core.config import Settings, get_settings
from training_operator.core.errors import InvalidSpecError
from training_operator.models.common import API_GROUP, API_VERSION, CleanPodPolicy, RestartPolicy
from training_operator.models.job import JobStatus, ReplicaSpec, RunPolicy, TrainingJob

if TYPE_CHECKING:
    from training_operator.services.cluster import ClusterClient

logger = logging.getLogger(__name__)


def replica_host(job: TrainingJob, replica_type: str, index: int) -> str:
    """DNS name of one replica, resolved through its headless service."""
    return f"{job.metadata.name}-{replica_type.lower()}-{index}"


def set_env(pod: dict[str, Any], env: dict[str, str]) -> None:
    """Add environment variables to every container of a pod body.

    Variables already declared in the template win.
    """
    for container in pod.get("spec", {}).get("containers", []):
        existing = container.setdefault("env", [])
        declared = {item.get("name") for item in existing}
        for name, value in env.items():
            if name not in declared:
                existing.append({"name": name, "value": value})


class JobKindAdapter(ABC):
    """Spec and status accessors for one training framework.

    Subclasses declare the resource coordinates and the key holding the
    replica specs; everything framework specific the reconciler needs goes
    through this class. Adapters hold no mutable state, so one instance is
    shared by all reconciles of a kind.

    Example:
        ```python
        adapter = PyTorchJobAdapter(cluster)
        adapter.set_defaults(job)
        specs = adapter.extract_spec(job)
        adapter.update_status(job, new_status)
        ```
    """

    kind: ClassVar[str]
    plural: ClassVar[str]
    replica_specs_key: ClassVar[str]
    replica_types: ClassVar[tuple[str, ...]]
    group: ClassVar[str] = API_GROUP
    version: ClassVar[str] = API_VERSION

    default_container_name: ClassVar[str]
    default_port_name: ClassVar[str]
    default_port: ClassVar[int]
    default_restart_policy: ClassVar[RestartPolicy] = RestartPolicy.NEVER
    default_clean_pod_policy: ClassVar[CleanPodPolicy] = CleanPodPolicy.NONE

    def __init__(self, cluster: ClusterClient, settings: Settings | None = None) -> None:
        self.cluster = cluster
        self.settings = settings or get_settings()

    @property
    def scheme(self) -> str:
        """Lower-case scheme name used on the command line (e.g. ``tfjob``)."""
        return self.kind.lower()

    # Accessors

    def extract_spec(self, job: TrainingJob) -> dict[str, ReplicaSpec]:
        """Parse the replica specs of a job, keyed by replica type."""
        raw = job.spec.get(self.replica_specs_key) or {}
        if not isinstance(raw, dict):
            raise InvalidSpecError(f"{self.replica_specs_key} must be a mapping")
        try:
            return {rtype: ReplicaSpec.model_validate(spec or {}) for rtype, spec in raw.items()}
        except ValidationError as e:
            raise InvalidSpecError(f"Invalid {self.replica_specs_key}: {e}") from e

    def extract_run_policy(self, job: TrainingJob) -> RunPolicy:
        try:
            return RunPolicy.model_validate(job.spec.get("runPolicy") or {})
        except ValidationError as e:
            raise InvalidSpecError(f"Invalid runPolicy: {e}") from e

    def extract_status(self, job: TrainingJob) -> JobStatus:
        return job.status

    def update_status(self, job: TrainingJob, status: JobStatus) -> TrainingJob:
        """Write the status subresource.

        The job's resourceVersion makes the write conditional; a concurrent
        change raises ConflictError and the whole reconcile is retried.

        Returns:
            The job as stored after the write
        """
        body = {
            "apiVersion": job.api_version,
            "kind": job.kind,
            "metadata": {
                "name": job.metadata.name,
                "namespace": job.metadata.namespace,
                "resourceVersion": job.metadata.resource_version,
            },
            "status": status.to_api(),
        }
        stored = self.cluster.replace_custom_object_status(
            self.group, self.version, self.plural, job.metadata.namespace, body
        )
        logger.debug("Updated status of %s %s", self.kind, job.key)
        return TrainingJob.model_validate(stored)

    def set_defaults(self, job: TrainingJob) -> None:
        """Fill unset run policy and replica spec fields in place.

        Raises:
            InvalidSpecError: If the job declares no replica specs or a
                replica template has no containers
        """
        raw_specs = job.spec.get(self.replica_specs_key)
        if not raw_specs:
            raise InvalidSpecError(f"{self.kind} {job.key} has no {self.replica_specs_key}")

        run_policy = self.extract_run_policy(job)
        if run_policy.clean_pod_policy is None:
            run_policy.clean_pod_policy = self.default_clean_pod_policy
        job.spec["runPolicy"] = run_policy.model_dump(mode="json", by_alias=True, exclude_none=True)

        specs = self.extract_spec(job)
        normalized: dict[str, Any] = {}
        for rtype, spec in specs.items():
            if spec.replicas is None:
                spec.replicas = 1
            if spec.restart_policy is None:
                spec.restart_policy = run_policy.restart_policy or self.default_restart_policy
            containers = spec.template.get("spec", {}).get("containers") or []
            if not containers:
                raise InvalidSpecError(f"{self.kind} {job.key} replica {rtype} has no containers")
            self._set_default_port(containers)
            normalized[self.normalize_replica_type(rtype)] = spec.model_dump(
                mode="json", by_alias=True, exclude_none=True
            )
        job.spec[self.replica_specs_key] = normalized

    def _set_default_port(self, containers: list[dict[str, Any]]) -> None:
        for container in containers:
            if container.get("name") != self.default_container_name:
                continue
            ports = container.setdefault("ports", [])
            if not any(p.get("name") == self.default_port_name for p in ports):
                ports.append({"name": self.default_port_name, "containerPort": self.default_port})

    def normalize_replica_type(self, replica_type: str) -> str:
        """Canonical spelling of a replica type (e.g. ``ps`` -> ``PS``).

        Raises:
            InvalidSpecError: If the framework has no such replica type
        """
        for known in self.replica_types:
            if known.lower() == replica_type.lower():
                return known
        raise InvalidSpecError(
            f"{self.kind} does not support replica type '{replica_type}' "
            f"(supported: {', '.join(self.replica_types)})"
        )

    # Framework hooks

    def port(self, job: TrainingJob, replica_type: str) -> int:
        """Port the framework listens on for a replica type."""
        spec = self.extract_spec(job).get(replica_type)
        containers = spec.template.get("spec", {}).get("containers", []) if spec else []
        for container in containers:
            if container.get("name") != self.default_container_name:
                continue
            for port in container.get("ports", []):
                if port.get("name") == self.default_port_name:
                    return int(port["containerPort"])
        return self.default_port

    @abstractmethod
    def completion_replica_types(self, specs: dict[str, ReplicaSpec]) -> list[str]:
        """Replica types whose success completes the job."""

    def gang_replica_types(self, specs: dict[str, ReplicaSpec]) -> list[str]:
        """Replica types that must be co-scheduled; all of them by default."""
        return list(specs)

    def set_cluster_spec(
        self, job: TrainingJob, pod: dict[str, Any], replica_type: str, index: int
    ) -> None:
        """Inject framework rendezvous configuration into a pod body before creation."""
