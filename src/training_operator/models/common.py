"""Common enums and constants used across models."""

from enum import Enum

# API group and version served by every training job kind
API_GROUP = "kubeflow.org"
API_VERSION = "v1"

# Labels put on every owned Pod and Service
LABEL_GROUP_NAME = "group-name"
LABEL_OPERATOR_NAME = "training.kubeflow.org/operator-name"
LABEL_JOB_NAME = "training.kubeflow.org/job-name"
LABEL_REPLICA_TYPE = "training.kubeflow.org/replica-type"
LABEL_REPLICA_INDEX = "training.kubeflow.org/replica-index"
OPERATOR_NAME = "training-operator"

# Finalizer guarding owned-resource cleanup on job deletion
JOB_FINALIZER = "kubeflow.org/training-job-cleanup"


class RestartPolicy(str, Enum):
    """Restart policy of a replica group."""

    ALWAYS = "Always"
    ON_FAILURE = "OnFailure"
    NEVER = "Never"
    EXIT_CODE = "ExitCode"  # Restart only when the exit code is retryable


class CleanPodPolicy(str, Enum):
    """Which pods to delete once a job reaches a terminal state."""

    ALL = "All"
    RUNNING = "Running"
    NONE = "None"


class JobConditionType(str, Enum):
    """Job-level condition types.

    State machine transitions:
        CREATED -> RUNNING (some replica is running)
        RUNNING -> RESTARTING (a replica failed, restarts remain)
        RESTARTING -> RUNNING (replicas running again)
        RUNNING/RESTARTING -> SUCCEEDED (completion replicas all succeeded)
        CREATED/RUNNING/RESTARTING -> FAILED (restarts exhausted or deadline)

    SUCCEEDED and FAILED are terminal and mutually exclusive.
    """

    CREATED = "Created"
    RUNNING = "Running"
    RESTARTING = "Restarting"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class ConditionStatus(str, Enum):
    """Status value of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


TERMINAL_CONDITIONS = frozenset({JobConditionType.SUCCEEDED, JobConditionType.FAILED})
