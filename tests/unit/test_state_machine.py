import pytest

from core.state_machine import TRANSITIONS, can_transition, ensure_transition
from model.job import JobStatus as S
from util.errors import InvalidTransition


class TestTransitions:
    """Allowed edges of the job lifecycle."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (S.pending, S.uploading),
            (S.uploading, S.completed),
            (S.uploading, S.failed),
            (S.uploading, S.pending),
            (S.uploading, S.cancelled),
            (S.paused, S.pending),
            (S.failed, S.pending),
            (S.failed, S.cancelled),
        ],
    )
    def test_allowed_edges(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (S.completed, S.pending),
            (S.completed, S.cancelled),
            (S.cancelled, S.pending),
            (S.pending, S.completed),
            (S.paused, S.uploading),
            (S.failed, S.uploading),
        ],
    )
    def test_rejected_edges(self, current, target):
        assert not can_transition(current, target)

    def test_same_status_is_always_allowed(self):
        for status in S:
            assert can_transition(status, status)

    def test_terminal_states_have_no_exits(self):
        assert TRANSITIONS[S.completed] == frozenset()
        assert TRANSITIONS[S.cancelled] == frozenset()

    def test_ensure_transition_raises_with_context(self):
        with pytest.raises(InvalidTransition) as exc:
            ensure_transition("job-1", S.completed, S.pending)

        assert exc.value.job_id == "job-1"
        assert exc.value.current == "completed"
        assert exc.value.target == "pending"
