from __future__ import annotations

from typing import Dict, FrozenSet

from loguru import logger

from ..errors import InvalidTransitionError
from ..models import Job, JobStatus

S = JobStatus

ACTIVE_STATES: FrozenSet[JobStatus] = frozenset(
    {
        S.PREPARING,
        S.ANALYZING_CHUNKS,
        S.GENERATING_FINAL_REPORT,
        S.PAUSED_AWAITING_RESUME,
        S.PAUSED_RATE_LIMITED,
    }
)

PAUSED_STATES: FrozenSet[JobStatus] = frozenset({S.PAUSED_AWAITING_RESUME, S.PAUSED_RATE_LIMITED})

TERMINAL_STATES: FrozenSet[JobStatus] = frozenset({S.COMPLETED, S.CANCELLED, S.ERROR})

# ERROR is reachable from every state and is added below.
TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    S.IDLE: frozenset({S.MODE_SELECTED}),
    S.MODE_SELECTED: frozenset({S.MODE_SELECTED, S.PREPARING, S.PAUSED_AWAITING_RESUME, S.IDLE}),
    S.PREPARING: frozenset({S.ANALYZING_CHUNKS, S.CANCELLED}),
    S.ANALYZING_CHUNKS: frozenset(
        {S.GENERATING_FINAL_REPORT, S.PAUSED_AWAITING_RESUME, S.PAUSED_RATE_LIMITED, S.CANCELLED}
    ),
    S.PAUSED_AWAITING_RESUME: frozenset({S.ANALYZING_CHUNKS, S.CANCELLED}),
    S.PAUSED_RATE_LIMITED: frozenset({S.ANALYZING_CHUNKS, S.PAUSED_AWAITING_RESUME, S.CANCELLED}),
    S.GENERATING_FINAL_REPORT: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset({S.IDLE, S.MODE_SELECTED}),
    S.CANCELLED: frozenset({S.IDLE, S.MODE_SELECTED}),
    S.ERROR: frozenset({S.IDLE, S.MODE_SELECTED}),
}
TRANSITIONS = {state: targets | {S.ERROR} for state, targets in TRANSITIONS.items()}


class JobStateMachine:
    """Authoritative job status transitions."""

    def __init__(self, transitions: Dict[JobStatus, FrozenSet[JobStatus]] = None):
        self._transitions = transitions or TRANSITIONS

    def can_transition(self, current: JobStatus, target: JobStatus) -> bool:
        return target in self._transitions.get(current, frozenset())

    def transition(self, job: Job, target: JobStatus) -> Job:
        current = job.status
        if not self.can_transition(current, target):
            raise InvalidTransitionError(current, target)
        job.status = target
        logger.info(f"[job] {job.job_id} status {current.value} -> {target.value}")
        return job

    @staticmethod
    def is_active(status: JobStatus) -> bool:
        return status in ACTIVE_STATES

    @staticmethod
    def is_paused(status: JobStatus) -> bool:
        return status in PAUSED_STATES

    @staticmethod
    def is_terminal(status: JobStatus) -> bool:
        return status in TERMINAL_STATES

    @staticmethod
    def may_finalize(job: Job, in_flight: int) -> bool:
        """Both conditions guard against a late completion racing finalization."""
        return (
            job.status is JobStatus.ANALYZING_CHUNKS
            and job.total_known
            and job.cursor >= job.total_chunks_to_process
            and in_flight == 0
        )


__all__ = [
    "JobStateMachine",
    "TRANSITIONS",
    "ACTIVE_STATES",
    "PAUSED_STATES",
    "TERMINAL_STATES",
]
