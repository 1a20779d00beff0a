"""Generic reconciliation of training jobs of any kind."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from kubernetes.client import V1Pod

from training_operator.core.errors import InvalidSpecError
from training_operator.core.telemetry import get_tracer
from training_operator.models.common import (
    JOB_FINALIZER,
    CleanPodPolicy,
    ConditionStatus,
    JobConditionType,
)
from training_operator.models.job import (
    JobCondition,
    JobStatus,
    ReplicaSpec,
    RunPolicy,
    TrainingJob,
    utcnow,
)
from training_operator.services.replicas import (
    ReplicaObservation,
    ReplicaResourceManager,
    failed_exit_code,
)
from training_operator.services.restart import (
    consumes_backoff,
    past_active_deadline,
    should_restart,
)
from training_operator.services.status import (
    ReplicaOutcome,
    aggregate,
    get_condition,
    has_condition,
    is_terminal,
    set_condition,
)

if TYPE_CHECKING:
    from training_operator.kinds.base import JobKindAdapter
    from training_operator.services.cluster import ClusterClient
    from training_operator.services.events import EventRecorder
    from training_operator.services.gang import GangScheduler

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass.

    Attributes:
        requeue_after: Seconds after which the job should be reconciled again
            (active deadline or TTL expiry), or None
    """

    requeue_after: float | None = None


class JobReconciler:
    """Drives one job kind's resources toward the declared state.

    One instance serves every job of its kind. Reconciles of the same job
    must not run concurrently (the work queue guarantees it); reconciles of
    different jobs share no mutable state besides the cluster itself.

    Each pass: fetch the job, drain it if it is being deleted, apply
    defaults, ensure the finalizer, ensure the scheduling group, reconcile
    every replica group, decide restarts, aggregate the condition, and
    write the status once if anything changed.

    Example:
        ```python
        reconciler = JobReconciler(PyTorchJobAdapter(cluster), cluster, recorder)
        result = reconciler.reconcile("default", "mnist")
        ```
    """

    def __init__(
        self,
        adapter: JobKindAdapter,
        cluster: ClusterClient,
        recorder: EventRecorder | None = None,
        gang_scheduler: GangScheduler | None = None,
        replica_manager: ReplicaResourceManager | None = None,
    ) -> None:
        self.adapter = adapter
        self.cluster = cluster
        self.recorder = recorder
        self.gang_scheduler = gang_scheduler
        self.replica_manager = replica_manager or ReplicaResourceManager(
            cluster, adapter, recorder=recorder, gang_scheduler=gang_scheduler
        )

    @property
    def kind(self) -> str:
        return self.adapter.kind

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconcile pass for a job.

        Raises:
            TransientError: On retriable cluster errors (including conflicts)
            InvalidSpecError: If the job spec cannot be interpreted; the
                problem is recorded on the job first
        """
        with tracer.start_as_current_span(
            "reconcile", attributes={"job.kind": self.kind, "job.key": f"{namespace}/{name}"}
        ):
            raw = self.cluster.get_custom_object(
                self.adapter.group, self.adapter.version, self.adapter.plural, namespace, name
            )
            if raw is None:
                logger.debug("%s %s/%s not found, already deleted?", self.kind, namespace, name)
                return ReconcileResult()

            job = TrainingJob.model_validate(raw)
            if job.is_deleted:
                self.finalize(job)
                return ReconcileResult()

            try:
                self.adapter.set_defaults(job)
                specs = self.adapter.extract_spec(job)
                run_policy = self.adapter.extract_run_policy(job)
            except InvalidSpecError as e:
                self._report_invalid_spec(job, e)
                raise

            now = utcnow()
            if is_terminal(self.adapter.extract_status(job)):
                return self._handle_terminal(job, run_policy, now)

            job = self._ensure_finalizer(job)
            try:
                return self._sync(job, specs, run_policy, now)
            except InvalidSpecError as e:
                # job carries the resourceVersion written by the finalizer patch
                self._report_invalid_spec(job, e)
                raise

    def _sync(
        self,
        job: TrainingJob,
        specs: dict[str, ReplicaSpec],
        run_policy: RunPolicy,
        now: datetime,
    ) -> ReconcileResult:
        previous = self.adapter.extract_status(job)
        status = previous.model_copy(deep=True)

        if status.start_time is None:
            status.start_time = now
        if not has_condition(status, JobConditionType.CREATED):
            set_condition(
                status,
                JobCondition(
                    type=JobConditionType.CREATED,
                    reason=f"{self.kind}Created",
                    message=f"{self.kind} {job.metadata.name} is created",
                ),
                now,
            )

        if self.gang_scheduler is not None:
            self.gang_scheduler.ensure(
                job, specs, self.adapter.gang_replica_types(specs), run_policy
            )

        owner_ref = job.owner_reference()
        observations = {
            rtype: self.replica_manager.reconcile(job, rtype, spec, owner_ref)
            for rtype, spec in specs.items()
        }
        self.replica_manager.delete_undeclared(job, specs)

        outcomes, to_restart, failure_count = self._decide_restarts(
            run_policy, specs, observations, status.failure_count
        )
        condition, terminal = aggregate(
            run_policy, outcomes, self.adapter.completion_replica_types(specs), kind=self.kind
        )
        if not terminal and past_active_deadline(run_policy, status.start_time, now):
            condition = JobCondition(
                type=JobConditionType.FAILED,
                reason="DeadlineExceeded",
                message=(
                    f"{self.kind} {job.metadata.name} has run longer than "
                    f"activeDeadlineSeconds={run_policy.active_deadline_seconds}"
                ),
            )
            terminal = True

        # Only the first transition into Running resets the count
        currently_failed = sum(obs.status.failed for obs in observations.values())
        if (
            condition.type == JobConditionType.RUNNING
            and get_condition(previous, JobConditionType.RUNNING) is None
            and currently_failed == 0
        ):
            failure_count = 0

        status.failure_count = failure_count
        status.replica_statuses = {rtype: obs.status for rtype, obs in observations.items()}
        set_condition(status, condition, now)
        if terminal and status.completion_time is None:
            status.completion_time = now

        job = self._write_status(job, previous, status, now)

        # Failed pods go only after their failures are stored
        if to_restart and not terminal:
            self.replica_manager.restart(job, to_restart)

        if terminal:
            return self._handle_terminal(job, run_policy, now)
        return ReconcileResult(requeue_after=self._deadline_requeue(run_policy, status, now))

    def _decide_restarts(
        self,
        run_policy: RunPolicy,
        specs: dict[str, ReplicaSpec],
        observations: dict[str, ReplicaObservation],
        failure_count: int,
    ) -> tuple[dict[str, ReplicaOutcome], list[V1Pod], int]:
        """Apply the restart policy to every failed replica.

        Returns:
            Tuple of (outcome per replica type, pods to recreate, new failure count)
        """
        outcomes: dict[str, ReplicaOutcome] = {}
        to_restart: list[V1Pod] = []
        for rtype, observation in observations.items():
            spec = specs[rtype]
            policy = spec.restart_policy
            allowed = True
            for pod in observation.failed_pods:
                if consumes_backoff(policy):
                    failure_count += 1
                if not should_restart(run_policy, failure_count, policy, failed_exit_code(pod)):
                    allowed = False
            if allowed:
                to_restart.extend(observation.failed_pods)
            outcomes[rtype] = ReplicaOutcome(
                replicas=spec.replicas or 0,
                restart_policy=policy,
                status=observation.status,
                restart_allowed=allowed,
            )
        return outcomes, to_restart, failure_count

    def _write_status(
        self, job: TrainingJob, previous: JobStatus, status: JobStatus, now: datetime
    ) -> TrainingJob:
        """Persist the status if it changed and emit one event per transition."""
        exclude = {"last_reconcile_time"}
        if status.model_dump(exclude=exclude) == previous.model_dump(exclude=exclude):
            return job

        status.last_reconcile_time = now
        stored = self.adapter.update_status(job, status)

        if self.recorder is not None:
            for condition in status.conditions:
                before = get_condition(previous, condition.type)
                if condition.is_true and (before is None or not before.is_true):
                    self.recorder.condition(job, condition)
        return stored

    def _handle_terminal(
        self, job: TrainingJob, run_policy: RunPolicy, now: datetime
    ) -> ReconcileResult:
        """Clean up after a finished job and enforce its TTL."""
        policy = run_policy.clean_pod_policy or CleanPodPolicy.NONE
        if policy == CleanPodPolicy.ALL:
            self.replica_manager.delete_all(job)
        elif policy == CleanPodPolicy.RUNNING:
            self.replica_manager.delete_all(job, running_only=True)

        ttl = run_policy.ttl_seconds_after_finished
        finished = self.adapter.extract_status(job).completion_time
        if ttl is None or finished is None:
            return ReconcileResult()

        expires = finished + timedelta(seconds=ttl)
        if now < expires:
            return ReconcileResult(requeue_after=(expires - now).total_seconds())

        logger.info("%s %s finished more than %ds ago, deleting", self.kind, job.key, ttl)
        self.cluster.delete_custom_object(
            self.adapter.group, self.adapter.version, self.adapter.plural,
            job.metadata.namespace, job.metadata.name,
        )
        return ReconcileResult()

    def _deadline_requeue(
        self, run_policy: RunPolicy, status: JobStatus, now: datetime
    ) -> float | None:
        if run_policy.active_deadline_seconds is None or status.start_time is None:
            return None
        deadline = status.start_time + timedelta(seconds=run_policy.active_deadline_seconds)
        return max((deadline - now).total_seconds(), 0.0)

    def _ensure_finalizer(self, job: TrainingJob) -> TrainingJob:
        if JOB_FINALIZER in job.metadata.finalizers:
            return job
        patch = {
            "metadata": {
                "finalizers": [*job.metadata.finalizers, JOB_FINALIZER],
                "resourceVersion": job.metadata.resource_version,
            }
        }
        stored = self.cluster.patch_custom_object(
            self.adapter.group, self.adapter.version, self.adapter.plural,
            job.metadata.namespace, job.metadata.name, patch,
        )
        logger.debug("Added finalizer to %s %s", self.kind, job.key)
        updated = TrainingJob.model_validate(stored)
        # The stored spec carries no defaults; keep the defaulted one
        updated.spec = job.spec
        return updated

    def finalize(self, job: TrainingJob) -> None:
        """Drain a deleted job's owned resources, then release the finalizer."""
        if JOB_FINALIZER not in job.metadata.finalizers:
            return

        deleted = self.replica_manager.delete_all(job)
        if self.gang_scheduler is not None:
            self.gang_scheduler.delete(job)

        patch = {
            "metadata": {
                "finalizers": [f for f in job.metadata.finalizers if f != JOB_FINALIZER],
                "resourceVersion": job.metadata.resource_version,
            }
        }
        self.cluster.patch_custom_object(
            self.adapter.group, self.adapter.version, self.adapter.plural,
            job.metadata.namespace, job.metadata.name, patch,
        )
        logger.info("Finalized %s %s, deleted %d pods", self.kind, job.key, deleted)

    def _report_invalid_spec(self, job: TrainingJob, error: InvalidSpecError) -> None:
        logger.warning("%s %s has an invalid spec: %s", self.kind, job.key, error)
        status = self.adapter.extract_status(job).model_copy(deep=True)
        changed = set_condition(
            status,
            JobCondition(
                type=JobConditionType.CREATED,
                status=ConditionStatus.FALSE,
                reason="InvalidSpec",
                message=str(error),
            ),
        )
        if not changed:
            return
        self.adapter.update_status(job, status)
        if self.recorder is not None:
            self.recorder.warning(job, "InvalidSpec", str(error))
