import pytest

from novel_analyzer.src.errors import InvalidTransitionError  # type: ignore
from novel_analyzer.src.models import AnalysisMode, Job, JobStatus  # type: ignore
from novel_analyzer.src.processing.state_machine import TRANSITIONS, JobStateMachine  # type: ignore

S = JobStatus


@pytest.fixture
def machine():
    return JobStateMachine()


def job_in(status: JobStatus, **kwargs) -> Job:
    return Job(job_id="j", mode=AnalysisMode.FULL, document_name="d", status=status, **kwargs)


def test_linear_path(machine):
    job = job_in(S.IDLE)
    for target in (S.MODE_SELECTED, S.PREPARING, S.ANALYZING_CHUNKS, S.GENERATING_FINAL_REPORT, S.COMPLETED):
        machine.transition(job, target)
    assert job.status is S.COMPLETED


def test_pause_branches(machine):
    job = job_in(S.ANALYZING_CHUNKS)
    machine.transition(job, S.PAUSED_RATE_LIMITED)
    machine.transition(job, S.ANALYZING_CHUNKS)
    machine.transition(job, S.PAUSED_AWAITING_RESUME)
    machine.transition(job, S.ANALYZING_CHUNKS)
    assert job.status is S.ANALYZING_CHUNKS


def test_error_reachable_from_every_state():
    assert all(S.ERROR in targets for targets in TRANSITIONS.values())


@pytest.mark.parametrize(
    "current,target",
    [
        (S.IDLE, S.ANALYZING_CHUNKS),
        (S.COMPLETED, S.ANALYZING_CHUNKS),
        (S.PREPARING, S.PAUSED_AWAITING_RESUME),
        (S.PAUSED_AWAITING_RESUME, S.GENERATING_FINAL_REPORT),
        (S.CANCELLED, S.PREPARING),
    ],
)
def test_illegal_transitions_raise(machine, current, target):
    job = job_in(current)
    with pytest.raises(InvalidTransitionError):
        machine.transition(job, target)
    assert job.status is current


def test_restore_enters_paused_from_mode_selected(machine):
    job = job_in(S.MODE_SELECTED)
    machine.transition(job, S.PAUSED_AWAITING_RESUME)
    assert machine.is_paused(job.status)
    assert machine.is_active(job.status)


def test_may_finalize(machine):
    def settled(status, cursor=3, **kwargs):
        kwargs.setdefault("chunking_progress", 100)
        return job_in(status, cursor=cursor, total_chunks_to_process=3, **kwargs)

    assert machine.may_finalize(settled(S.ANALYZING_CHUNKS), 0)
    assert not machine.may_finalize(settled(S.ANALYZING_CHUNKS), 1)
    assert not machine.may_finalize(settled(S.ANALYZING_CHUNKS, cursor=2), 0)
    assert not machine.may_finalize(settled(S.PAUSED_AWAITING_RESUME), 0)


def test_may_not_finalize_before_total_is_known(machine):
    job = job_in(S.ANALYZING_CHUNKS, cursor=1)
    assert not job.total_known
    assert not machine.may_finalize(job, 0)
    job.chunking_progress = 0
    job.total_chunks_to_process = 1
    assert machine.may_finalize(job, 0)
