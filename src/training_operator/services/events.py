"""Kubernetes events emitted for training jobs."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from training_operator.core.errors import OperatorError
from training_operator.models.common import OPERATOR_NAME, JobConditionType
from training_operator.models.job import JobCondition, TrainingJob, utcnow

if TYPE_CHECKING:
    from training_operator.services.cluster import ClusterClient

logger = logging.getLogger(__name__)

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"

# Condition types reported as warnings
WARNING_CONDITIONS = {JobConditionType.RESTARTING, JobConditionType.FAILED}


class EventRecorder:
    """Records events on training jobs so they show up in ``kubectl describe``.

    Event delivery is best effort: a failed event write is logged and never
    fails the reconcile that emitted it.
    """

    def __init__(self, cluster: ClusterClient, component: str = OPERATOR_NAME) -> None:
        self.cluster = cluster
        self.component = component

    def normal(self, job: TrainingJob, reason: str, message: str) -> None:
        self.record(job, EVENT_NORMAL, reason, message)

    def warning(self, job: TrainingJob, reason: str, message: str) -> None:
        self.record(job, EVENT_WARNING, reason, message)

    def condition(self, job: TrainingJob, condition: JobCondition) -> None:
        """Emit the event for a condition transition."""
        event_type = EVENT_WARNING if condition.type in WARNING_CONDITIONS else EVENT_NORMAL
        self.record(job, event_type, condition.reason, condition.message)

    def record(self, job: TrainingJob, event_type: str, reason: str, message: str) -> None:
        body = self.build_event(job, event_type, reason, message)
        try:
            self.cluster.create_event(job.metadata.namespace, body)
        except OperatorError as e:
            logger.warning("Failed to record event %s for %s: %s", reason, job.key, e)
            return
        logger.debug("Recorded %s event %s for %s: %s", event_type, reason, job.key, message)

    def build_event(
        self, job: TrainingJob, event_type: str, reason: str, message: str
    ) -> dict[str, Any]:
        now = utcnow().isoformat().replace("+00:00", "Z")
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {
                "name": f"{job.metadata.name}.{uuid.uuid4().hex[:16]}",
                "namespace": job.metadata.namespace,
            },
            "involvedObject": {
                "apiVersion": job.api_version,
                "kind": job.kind,
                "name": job.metadata.name,
                "namespace": job.metadata.namespace,
                "uid": job.metadata.uid,
                "resourceVersion": job.metadata.resource_version,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": self.component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
