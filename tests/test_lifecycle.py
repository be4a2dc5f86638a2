"""Tests for the job state machine and local status tracking."""

from workmesh_sdk import EscrowStatus, JobState, JobStatus
from workmesh_sdk.lifecycle import (
    JobTracker,
    is_settled,
    states_between,
)


def _status(state: str, escrow: str = "pending", **extra) -> JobStatus:
    return JobStatus(job_id="job-1", status=state, escrow_status=escrow, **extra)


class TestTransitions:
    def test_states_between(self):
        assert states_between(JobState.CLAIMED, JobState.PAID) == [
            JobState.SUBMITTED, JobState.COMPLETED, JobState.PAID,
        ]
        assert states_between(JobState.PAID, JobState.PAID) == []

    def test_is_settled(self):
        assert is_settled(_status("paid", "released"))
        assert is_settled(_status("claimed", "refunded"))
        assert not is_settled(_status("completed", "reserved"))


class TestJobTracker:
    def test_first_observation(self):
        tracker = JobTracker()

        entered = tracker.observe(_status("submitted", "reserved"))

        assert entered == [JobState.POSTED, JobState.CLAIMED, JobState.SUBMITTED]
        assert tracker.get("job-1").status is JobState.SUBMITTED

    def test_forward_observation_reports_new_states(self):
        tracker = JobTracker()
        tracker.observe(_status("claimed", "reserved"))

        entered = tracker.observe(_status("paid", "released", payment_tx_id="0x1"))

        assert entered == [JobState.SUBMITTED, JobState.COMPLETED, JobState.PAID]
        assert tracker.get("job-1").payment_tx_id == "0x1"

    def test_stale_observation_ignored(self):
        tracker = JobTracker()
        tracker.observe(_status("submitted", "reserved"))

        assert tracker.observe(_status("claimed", "reserved")) == []
        assert tracker.get("job-1").status is JobState.SUBMITTED

    def test_escrow_regression_ignored(self):
        tracker = JobTracker()
        tracker.observe(_status("completed", "released"))

        assert tracker.observe(_status("completed", "reserved")) == []
        assert tracker.get("job-1").escrow_status is EscrowStatus.RELEASED

    def test_same_state_refreshes_details(self):
        tracker = JobTracker()
        tracker.observe(_status("claimed", "pending"))

        assert tracker.observe(_status("claimed", "reserved", claimed_by="abc")) == []
        assert tracker.get("job-1").claimed_by == "abc"

    def test_mark_local_transitions(self):
        tracker = JobTracker()

        assert tracker.mark("job-1", JobState.CLAIMED, claimed_by="abc") == [
            JobState.POSTED, JobState.CLAIMED,
        ]
        assert tracker.mark("job-1", JobState.SUBMITTED) == [JobState.SUBMITTED]
        assert tracker.get("job-1").claimed_by == "abc"

    def test_jobs_are_independent(self):
        tracker = JobTracker()
        tracker.observe(JobStatus(job_id="a", status="paid"))
        tracker.observe(JobStatus(job_id="b", status="claimed"))

        assert tracker.observe(JobStatus(job_id="b", status="submitted")) == [JobState.SUBMITTED]
        assert tracker.get("a").status is JobState.PAID
        assert tracker.get("b").status is JobState.SUBMITTED
