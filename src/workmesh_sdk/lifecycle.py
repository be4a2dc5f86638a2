"""Job lifecycle state machine and the agent's local view of it.

The coordinator owns job state. The agent keeps snapshots, which can only
move forward: an observation older than the current snapshot is ignored.

    posted -> claimed -> submitted -> completed -> paid

Escrow evolves alongside:

    pending -> reserved -> released | refunded
"""

from .types import EscrowStatus, JobState, JobStatus

_ESCROW_RANK = {
    EscrowStatus.PENDING: 0,
    EscrowStatus.RESERVED: 1,
    EscrowStatus.RELEASED: 2,
    EscrowStatus.REFUNDED: 2,
}


def states_between(current: JobState, target: JobState) -> list[JobState]:
    """States entered when moving forward from ``current`` to ``target``.

    A snapshot can jump several steps (e.g. ``claimed`` straight to ``paid``
    after a long gap between polls); the skipped states are included.
    """
    order = list(JobState)
    return order[current.rank + 1 : target.rank + 1]


def is_settled(status: JobStatus) -> bool:
    """True once the job's reward has been paid out or refunded."""
    return (
        status.status == JobState.PAID
        or status.escrow_status in (EscrowStatus.RELEASED, EscrowStatus.REFUNDED)
    )


class JobTracker:
    """Per-job status snapshots for the jobs an agent follows.

    Jobs are independent; tracking one never touches another.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, JobStatus] = {}

    def get(self, job_id: str) -> JobStatus | None:
        return self._snapshots.get(job_id)

    def mark(self, job_id: str, state: JobState, claimed_by: str | None = None) -> list[JobState]:
        """Record a transition the agent itself just caused (claim or submit)."""
        current = self._snapshots.get(job_id)
        update: dict = {"status": state}
        if claimed_by is not None:
            update["claimed_by"] = claimed_by
        if current is None:
            return self.observe(JobStatus(job_id=job_id, **update))
        return self.observe(current.model_copy(update=update))

    def observe(self, status: JobStatus) -> list[JobState]:
        """Apply a status read from the coordinator.

        Returns:
            States newly entered, in lifecycle order. For a job seen for
            the first time this is every state up to the observed one.
            Empty if the observation is not newer than the snapshot.
        """
        current = self._snapshots.get(status.job_id)
        if current is None:
            self._snapshots[status.job_id] = status
            return list(JobState)[: status.status.rank + 1]

        if status.status.rank < current.status.rank:
            return []
        if (
            status.status == current.status
            and _ESCROW_RANK[status.escrow_status] < _ESCROW_RANK[current.escrow_status]
        ):
            return []

        self._snapshots[status.job_id] = status
        return states_between(current.status, status.status)
