"""Models for training job custom resources and their status."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from training_operator.models.common import (
    API_GROUP,
    API_VERSION,
    CleanPodPolicy,
    ConditionStatus,
    JobConditionType,
    RestartPolicy,
)


def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds, as stored on resources."""
    return datetime.now(UTC).replace(microsecond=0)


class SchedulingPolicy(BaseModel):
    """Gang scheduling parameters of a job."""

    model_config = ConfigDict(populate_by_name=True)

    min_available: int | None = Field(default=None, alias="minAvailable")
    queue: str | None = None
    priority_class: str | None = Field(default=None, alias="priorityClass")


class RunPolicy(BaseModel):
    """Job-wide restart, backoff and cleanup configuration.

    Attributes:
        restart_policy: Default restart policy for replica specs that omit one
        backoff_limit: Number of replica failures tolerated (None = unlimited)
        active_deadline_seconds: Maximum job run time from its start time
        clean_pod_policy: Which pods to delete once the job is terminal
        ttl_seconds_after_finished: Delete the job this long after it finished
        scheduling_policy: Gang scheduling parameters
    """

    model_config = ConfigDict(populate_by_name=True)

    restart_policy: RestartPolicy | None = Field(default=None, alias="restartPolicy")
    backoff_limit: int | None = Field(default=None, alias="backoffLimit", ge=0)
    active_deadline_seconds: int | None = Field(
        default=None, alias="activeDeadlineSeconds", ge=0
    )
    clean_pod_policy: CleanPodPolicy | None = Field(default=None, alias="cleanPodPolicy")
    ttl_seconds_after_finished: int | None = Field(
        default=None, alias="ttlSecondsAfterFinished", ge=0
    )
    scheduling_policy: SchedulingPolicy | None = Field(default=None, alias="schedulingPolicy")


class ReplicaSpec(BaseModel):
    """Desired state of one replica group."""

    model_config = ConfigDict(populate_by_name=True)

    replicas: int | None = Field(default=None, ge=0)
    template: dict[str, Any] = Field(default_factory=dict)
    restart_policy: RestartPolicy | None = Field(default=None, alias="restartPolicy")


class ReplicaStatus(BaseModel):
    """Observed pod counts of one replica group at the current reconcile."""

    model_config = ConfigDict(populate_by_name=True)

    active: int = 0
    succeeded: int = 0
    failed: int = 0


class JobCondition(BaseModel):
    """A typed, timestamped status fact attached to a job."""

    model_config = ConfigDict(populate_by_name=True)

    type: JobConditionType
    status: ConditionStatus = ConditionStatus.TRUE
    reason: str = ""
    message: str = ""
    last_update_time: datetime | None = Field(default=None, alias="lastUpdateTime")
    last_transition_time: datetime | None = Field(default=None, alias="lastTransitionTime")

    @property
    def is_true(self) -> bool:
        return self.status == ConditionStatus.TRUE


class JobStatus(BaseModel):
    """Aggregated status written to the job's status subresource.

    Attributes:
        conditions: Ordered condition log, updated in place by type
        replica_statuses: Pod counts per replica type
        start_time: When the controller first acted on the job
        completion_time: When the job reached Succeeded
        last_reconcile_time: Last time the status was written
        failure_count: Replica failures counted against the backoff limit
    """

    model_config = ConfigDict(populate_by_name=True)

    conditions: list[JobCondition] = Field(default_factory=list)
    replica_statuses: dict[str, ReplicaStatus] = Field(
        default_factory=dict, alias="replicaStatuses"
    )
    start_time: datetime | None = Field(default=None, alias="startTime")
    completion_time: datetime | None = Field(default=None, alias="completionTime")
    last_reconcile_time: datetime | None = Field(default=None, alias="lastReconcileTime")
    failure_count: int = Field(default=0, alias="failureCount")

    def to_api(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON form stored on the resource."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ObjectMeta(BaseModel):
    """The subset of Kubernetes object metadata the controller relies on."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = Field(default=None, alias="resourceVersion")
    generation: int | None = None
    deletion_timestamp: datetime | None = Field(default=None, alias="deletionTimestamp")
    finalizers: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class TrainingJob(BaseModel):
    """A training job custom resource of any supported kind.

    The spec is kept as the raw mapping from the resource; the kind adapter
    knows which key holds the replica specs and parses them on demand.

    Example:
        ```python
        job = TrainingJob.model_validate(
            custom_objects_api.get_namespaced_custom_object(
                "kubeflow.org", "v1", "default", "pytorchjobs", "mnist"
            )
        )
        ```
    """

    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(default=f"{API_GROUP}/{API_VERSION}", alias="apiVersion")
    kind: str
    metadata: ObjectMeta
    spec: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = Field(default_factory=JobStatus)

    @property
    def key(self) -> str:
        """Work queue key of the job."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def is_deleted(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def owner_reference(self) -> dict[str, Any]:
        """Owner reference that ties dependents to this job for garbage collection."""
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.metadata.name,
            "uid": self.metadata.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }
