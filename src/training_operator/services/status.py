"""Aggregation of per-replica observations into job-level conditions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from training_operator.models.common import (
    TERMINAL_CONDITIONS,
    ConditionStatus,
    JobConditionType,
    RestartPolicy,
)
from training_operator.models.job import JobCondition, JobStatus, ReplicaStatus, RunPolicy, utcnow

# Policies under which a failed replica can fail the whole job
FAILING_POLICIES = frozenset(
    {RestartPolicy.EXIT_CODE, RestartPolicy.NEVER, RestartPolicy.ON_FAILURE}
)

# Conditions that cannot both be true; setting one flips the other to False
EXCLUSIVE_CONDITIONS = {
    JobConditionType.RUNNING: {JobConditionType.RESTARTING},
    JobConditionType.RESTARTING: {JobConditionType.RUNNING},
    JobConditionType.SUCCEEDED: {JobConditionType.RUNNING, JobConditionType.RESTARTING},
    JobConditionType.FAILED: {JobConditionType.RUNNING, JobConditionType.RESTARTING},
}


@dataclass(frozen=True)
class ReplicaOutcome:
    """What one replica group looked like after the restart decision.

    Attributes:
        replicas: Desired replica count
        restart_policy: Effective restart policy of the group
        status: Observed pod counts
        restart_allowed: Whether the group's failed replicas get recreated
    """

    replicas: int
    restart_policy: RestartPolicy
    status: ReplicaStatus
    restart_allowed: bool = True


def aggregate(
    run_policy: RunPolicy,
    outcomes: dict[str, ReplicaOutcome],
    completion_types: list[str],
    kind: str = "Job",
) -> tuple[JobCondition, bool]:
    """Map replica outcomes to the job's condition.

    Rules, first match wins:
        1. a failed replica that may not restart -> Failed (terminal)
        2. every completion replica succeeded -> Succeeded (terminal)
        3. failed replicas with restarts left -> Restarting
        4. any active replica -> Running
        5. otherwise -> Created

    Args:
        run_policy: The job's run policy
        outcomes: Outcome per replica type
        completion_types: Replica types whose success completes the job
        kind: Job kind, used as the reason prefix

    Returns:
        Tuple of (condition, terminal)
    """
    for rtype, outcome in outcomes.items():
        if (
            outcome.restart_policy in FAILING_POLICIES
            and outcome.status.failed > 0
            and not outcome.restart_allowed
        ):
            message = f"{kind} has failed because {outcome.status.failed} {rtype} replica(s) failed"
            if (
                outcome.restart_policy != RestartPolicy.NEVER
                and run_policy.backoff_limit is not None
            ):
                message += f" (backoff limit {run_policy.backoff_limit})"
            return _condition(JobConditionType.FAILED, f"{kind}Failed", message), True

    completion = [outcomes[rtype] for rtype in completion_types if rtype in outcomes]
    if completion and all(o.status.succeeded == o.replicas for o in completion):
        message = f"{kind} successfully completed"
        return _condition(JobConditionType.SUCCEEDED, f"{kind}Succeeded", message), True

    restarting = [rtype for rtype, o in outcomes.items() if o.status.failed > 0]
    if restarting:
        message = f"{kind} is restarting {', '.join(sorted(restarting))} replica(s)"
        return _condition(JobConditionType.RESTARTING, f"{kind}Restarting", message), False

    if any(o.status.active > 0 for o in outcomes.values()):
        return _condition(JobConditionType.RUNNING, f"{kind}Running", f"{kind} is running"), False

    return _condition(JobConditionType.CREATED, f"{kind}Created", f"{kind} is created"), False


def _condition(ctype: JobConditionType, reason: str, message: str) -> JobCondition:
    return JobCondition(type=ctype, status=ConditionStatus.TRUE, reason=reason, message=message)


def get_condition(status: JobStatus, ctype: JobConditionType) -> JobCondition | None:
    for condition in status.conditions:
        if condition.type == ctype:
            return condition
    return None


def has_condition(status: JobStatus, ctype: JobConditionType) -> bool:
    condition = get_condition(status, ctype)
    return condition is not None and condition.is_true


def is_succeeded(status: JobStatus) -> bool:
    return has_condition(status, JobConditionType.SUCCEEDED)


def is_failed(status: JobStatus) -> bool:
    return has_condition(status, JobConditionType.FAILED)


def is_terminal(status: JobStatus) -> bool:
    return is_succeeded(status) or is_failed(status)


def set_condition(
    status: JobStatus, condition: JobCondition, now: datetime | None = None
) -> bool:
    """Record a condition on the status, updating in place by type.

    A condition whose status differs from the stored one replaces it with a
    new transition time; an unchanged status only refreshes reason and
    message. Once the job is terminal no other condition can be set to True,
    and the terminal condition itself is never reverted.

    Args:
        status: Job status to mutate
        condition: Condition to record
        now: Timestamp for the update (defaults to the current time)

    Returns:
        True if the status changed
    """
    now = now or utcnow()
    if is_terminal(status):
        terminal = get_condition(status, condition.type)
        if condition.type not in TERMINAL_CONDITIONS or terminal is None or not terminal.is_true:
            return False
        if not condition.is_true:
            return False

    existing = get_condition(status, condition.type)
    changed = False
    if existing is None:
        status.conditions.append(_stamp(condition, now))
        changed = True
    elif existing.status != condition.status:
        status.conditions[status.conditions.index(existing)] = _stamp(condition, now)
        changed = True
    elif existing.reason != condition.reason or existing.message != condition.message:
        existing.reason = condition.reason
        existing.message = condition.message
        existing.last_update_time = now
        changed = True

    if condition.is_true:
        for other in EXCLUSIVE_CONDITIONS.get(condition.type, ()):
            current = get_condition(status, other)
            if current is not None and current.is_true:
                status.conditions[status.conditions.index(current)] = _stamp(
                    JobCondition(
                        type=other,
                        status=ConditionStatus.FALSE,
                        reason=current.reason,
                        message=current.message,
                    ),
                    now,
                )
                changed = True
    return changed


def _stamp(condition: JobCondition, now: datetime) -> JobCondition:
    return condition.model_copy(update={"last_update_time": now, "last_transition_time": now})
