# core/state_machine.py
from typing import Final, FrozenSet, Mapping
from model.job import JobStatus
from util.errors import InvalidTransition

S = JobStatus

TRANSITIONS: Final[Mapping[JobStatus, FrozenSet[JobStatus]]] = {
    S.pending: frozenset({S.uploading, S.paused, S.cancelled}),
    S.uploading: frozenset({S.completed, S.failed, S.pending, S.paused, S.cancelled}),
    S.paused: frozenset({S.pending, S.cancelled}),
    S.failed: frozenset({S.pending, S.cancelled}),
    S.completed: frozenset(),
    S.cancelled: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    # Re-applying the current status is an update, not a transition
    return current == target or target in TRANSITIONS[current]


def ensure_transition(job_id: str, current: JobStatus, target: JobStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(job_id, current.value, target.value)
