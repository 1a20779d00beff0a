"""Restart decisions for failed replicas."""

from __future__ import annotations

from datetime import datetime, timedelta

from training_operator.models.common import RestartPolicy
from training_operator.models.job import RunPolicy

# Exit codes at or above this value mean the process was killed by a signal
RETRYABLE_EXIT_CODE_MIN = 128


def is_retryable_exit_code(exit_code: int | None) -> bool:
    """Whether a container exit code points at an infrastructure failure.

    Codes below 128 are the program's own errors; restarting it would fail
    the same way. Codes from 128 up (SIGKILL=137, SIGTERM=143, ...) come from
    preemption, eviction or OOM kills.
    """
    return exit_code is not None and exit_code >= RETRYABLE_EXIT_CODE_MIN


def should_restart(
    run_policy: RunPolicy,
    failure_count: int,
    replica_policy: RestartPolicy | None = None,
    exit_code: int | None = None,
) -> bool:
    """Decide whether a failed replica is recreated.

    Args:
        run_policy: The job's run policy
        failure_count: Failures counted so far, including the current one
        replica_policy: Restart policy of the failed replica's group; falls
            back to the run policy's default
        exit_code: Exit code of the failed container, used by ExitCode

    Returns:
        False for Never, when the backoff limit is exceeded, or for ExitCode
        with a non-retryable exit code; True otherwise
    """
    policy = replica_policy or run_policy.restart_policy or RestartPolicy.NEVER
    if policy == RestartPolicy.NEVER:
        return False
    if policy == RestartPolicy.ALWAYS:
        return True
    if run_policy.backoff_limit is not None and failure_count > run_policy.backoff_limit:
        return False
    if policy == RestartPolicy.EXIT_CODE:
        return is_retryable_exit_code(exit_code)
    return True


def consumes_backoff(replica_policy: RestartPolicy | None) -> bool:
    """Whether restarting a replica of this policy counts against the backoff limit."""
    return replica_policy != RestartPolicy.ALWAYS


def past_active_deadline(
    run_policy: RunPolicy, start_time: datetime | None, now: datetime
) -> bool:
    """Whether the job ran longer than its activeDeadlineSeconds."""
    if run_policy.active_deadline_seconds is None or start_time is None:
        return False
    return now - start_time >= timedelta(seconds=run_policy.active_deadline_seconds)
