"""Pydantic models for training job resources."""

from training_operator.models.common import (
    CleanPodPolicy,
    ConditionStatus,
    JobConditionType,
    RestartPolicy,
)
from training_operator.models.job import (
    JobCondition,
    JobStatus,
    ObjectMeta,
    ReplicaSpec,
    ReplicaStatus,
    RunPolicy,
    SchedulingPolicy,
    TrainingJob,
)

__all__ = [
    "CleanPodPolicy",
    "ConditionStatus",
    "JobCondition",
    "JobConditionType",
    "JobStatus",
    "ObjectMeta",
    "ReplicaSpec",
    "ReplicaStatus",
    "RestartPolicy",
    "RunPolicy",
    "SchedulingPolicy",
    "TrainingJob",
]
