"""Tests for job condition aggregation and bookkeeping."""

from datetime import UTC, datetime

from training_operator.models.common import ConditionStatus, JobConditionType, RestartPolicy
from training_operator.models.job import JobCondition, JobStatus, ReplicaStatus, RunPolicy
from training_operator.services.status import (
    ReplicaOutcome,
    aggregate,
    get_condition,
    has_condition,
    is_terminal,
    set_condition,
)

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def outcome(
    replicas: int = 1,
    active: int = 0,
    succeeded: int = 0,
    failed: int = 0,
    policy: RestartPolicy = RestartPolicy.ON_FAILURE,
    restart_allowed: bool = True,
) -> ReplicaOutcome:
    return ReplicaOutcome(
        replicas=replicas,
        restart_policy=policy,
        status=ReplicaStatus(active=active, succeeded=succeeded, failed=failed),
        restart_allowed=restart_allowed,
    )


def condition(ctype: JobConditionType, status: ConditionStatus = ConditionStatus.TRUE):
    return JobCondition(type=ctype, status=status, reason=f"Job{ctype.value}")


class TestAggregate:
    """Tests for the first-match-wins aggregation rules."""

    def test_failed_replica_without_restart_fails_job(self):
        """Test that a failed replica that may not restart fails the job."""
        cond, terminal = aggregate(
            RunPolicy(backoffLimit=2),
            {
                "Master": outcome(active=1),
                "Worker": outcome(replicas=2, active=1, failed=1, restart_allowed=False),
            },
            ["Master"],
            kind="PyTorchJob",
        )
        assert cond.type == JobConditionType.FAILED
        assert cond.reason == "PyTorchJobFailed"
        assert "backoff limit 2" in cond.message
        assert terminal is True

    def test_never_policy_failure_is_terminal(self):
        """Test that a failure under Never fails the job without a backoff note."""
        cond, terminal = aggregate(
            RunPolicy(),
            {"Worker": outcome(failed=1, policy=RestartPolicy.NEVER, restart_allowed=False)},
            ["Worker"],
        )
        assert cond.type == JobConditionType.FAILED
        assert "backoff" not in cond.message
        assert terminal is True

    def test_always_policy_failure_never_fails_job(self):
        """Test that Always replicas only ever restart."""
        cond, terminal = aggregate(
            RunPolicy(),
            {"Worker": outcome(failed=1, policy=RestartPolicy.ALWAYS, restart_allowed=False)},
            ["Worker"],
        )
        assert cond.type == JobConditionType.RESTARTING
        assert terminal is False

    def test_completion_replicas_succeeded(self):
        """Test that the job succeeds once every completion replica succeeded."""
        cond, terminal = aggregate(
            RunPolicy(),
            {"Master": outcome(succeeded=1), "Worker": outcome(replicas=2, active=2)},
            ["Master"],
            kind="PyTorchJob",
        )
        assert cond.type == JobConditionType.SUCCEEDED
        assert cond.reason == "PyTorchJobSucceeded"
        assert terminal is True

    def test_partial_success_is_running(self):
        """Test that a job is not complete until all completion replicas succeeded."""
        cond, terminal = aggregate(
            RunPolicy(),
            {"Worker": outcome(replicas=3, active=1, succeeded=2)},
            ["Worker"],
        )
        assert cond.type == JobConditionType.RUNNING
        assert terminal is False

    def test_failure_wins_over_success(self):
        """Test that rule order puts a terminal failure ahead of completion."""
        cond, _ = aggregate(
            RunPolicy(),
            {
                "Master": outcome(succeeded=1),
                "Worker": outcome(failed=1, policy=RestartPolicy.NEVER, restart_allowed=False),
            },
            ["Master"],
        )
        assert cond.type == JobConditionType.FAILED

    def test_restartable_failure_is_restarting(self):
        """Test that failures with restarts left report Restarting."""
        cond, terminal = aggregate(
            RunPolicy(backoffLimit=3),
            {"Master": outcome(active=1), "Worker": outcome(replicas=2, active=1, failed=1)},
            ["Master"],
        )
        assert cond.type == JobConditionType.RESTARTING
        assert "Worker" in cond.message
        assert terminal is False

    def test_nothing_running_is_created(self):
        """Test that pending replicas leave the job in Created."""
        cond, terminal = aggregate(RunPolicy(), {"Worker": outcome(replicas=2)}, ["Worker"])
        assert cond.type == JobConditionType.CREATED
        assert terminal is False


class TestSetCondition:
    """Tests for in-place condition updates."""

    def test_appends_new_condition(self):
        """Test that a new condition type is appended with timestamps."""
        status = JobStatus()
        assert set_condition(status, condition(JobConditionType.CREATED), NOW) is True
        assert len(status.conditions) == 1
        assert status.conditions[0].last_transition_time == NOW

    def test_same_condition_is_not_a_change(self):
        """Test that re-setting an identical condition changes nothing."""
        status = JobStatus()
        set_condition(status, condition(JobConditionType.CREATED), NOW)
        assert set_condition(status, condition(JobConditionType.CREATED), NOW) is False
        assert len(status.conditions) == 1

    def test_updates_in_place_by_type(self):
        """Test that conditions are replaced by type instead of appended."""
        status = JobStatus()
        set_condition(status, condition(JobConditionType.RUNNING), NOW)
        set_condition(status, condition(JobConditionType.RESTARTING), NOW)
        set_condition(status, condition(JobConditionType.RUNNING), NOW)

        types = [c.type for c in status.conditions]
        assert types.count(JobConditionType.RUNNING) == 1
        assert types.count(JobConditionType.RESTARTING) == 1
        assert has_condition(status, JobConditionType.RUNNING)
        assert not has_condition(status, JobConditionType.RESTARTING)

    def test_reason_change_keeps_transition_time(self):
        """Test that a message update does not move the transition time."""
        status = JobStatus()
        set_condition(status, condition(JobConditionType.RUNNING), NOW)
        later = datetime(2026, 1, 2, tzinfo=UTC)
        updated = JobCondition(type=JobConditionType.RUNNING, reason="Other", message="again")

        assert set_condition(status, updated, later) is True
        stored = get_condition(status, JobConditionType.RUNNING)
        assert stored is not None
        assert stored.reason == "Other"
        assert stored.last_transition_time == NOW
        assert stored.last_update_time == later

    def test_terminal_flips_running_false(self):
        """Test that a terminal condition ends Running."""
        status = JobStatus()
        set_condition(status, condition(JobConditionType.RUNNING), NOW)
        set_condition(status, condition(JobConditionType.SUCCEEDED), NOW)

        assert is_terminal(status)
        assert not has_condition(status, JobConditionType.RUNNING)


class TestTerminalStickiness:
    """Tests that terminal conditions are never left."""

    def test_no_condition_can_be_set_after_success(self):
        """Test that Running cannot be set on a succeeded job."""
        status = JobStatus()
        set_condition(status, condition(JobConditionType.SUCCEEDED), NOW)

        assert set_condition(status, condition(JobConditionType.RUNNING), NOW) is False
        assert not has_condition(status, JobConditionType.RUNNING)

    def test_succeeded_and_failed_are_exclusive(self):
        """Test that Failed cannot be set once the job succeeded, and vice versa."""
        succeeded = JobStatus()
        set_condition(succeeded, condition(JobConditionType.SUCCEEDED), NOW)
        assert set_condition(succeeded, condition(JobConditionType.FAILED), NOW) is False
        assert not has_condition(succeeded, JobConditionType.FAILED)

        failed = JobStatus()
        set_condition(failed, condition(JobConditionType.FAILED), NOW)
        assert set_condition(failed, condition(JobConditionType.SUCCEEDED), NOW) is False
        assert has_condition(failed, JobConditionType.FAILED)
        assert not has_condition(failed, JobConditionType.SUCCEEDED)

    def test_terminal_condition_cannot_be_reverted(self):
        """Test that a terminal condition cannot be set to False."""
        status = JobStatus()
        set_condition(status, condition(JobConditionType.FAILED), NOW)
        reverted = condition(JobConditionType.FAILED, ConditionStatus.FALSE)

        assert set_condition(status, reverted, NOW) is False
        assert has_condition(status, JobConditionType.FAILED)

    def test_terminal_message_can_be_refreshed(self):
        """Test that the terminal condition itself may update its message."""
        status = JobStatus()
        set_condition(status, condition(JobConditionType.FAILED), NOW)
        refreshed = JobCondition(type=JobConditionType.FAILED, reason="JobFailed", message="x")

        assert set_condition(status, refreshed, NOW) is True
        assert get_condition(status, JobConditionType.FAILED).message == "x"
