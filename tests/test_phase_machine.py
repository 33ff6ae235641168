import pytest

from ideaforge.errors import PhaseViolationError, ValidationError
from ideaforge.models.schemas import SessionPhase, SessionStatus
from ideaforge.services.phase_machine import PhaseStateMachine, PipelineAction

from conftest import make_session


@pytest.fixture
def phases() -> PhaseStateMachine:
    return PhaseStateMachine()


class TestPhaseStateMachine:
    def test_swipes_only_allowed_in_spark(self, phases):
        assert phases.is_allowed(SessionPhase.SPARK, PipelineAction.RECORD_SWIPE)
        assert not phases.is_allowed(SessionPhase.MUTATION, PipelineAction.RECORD_SWIPE)

    def test_illegal_action_raises_phase_violation(self, phases):
        session = make_session(phase=SessionPhase.SPARK)

        with pytest.raises(PhaseViolationError) as exc_info:
            phases.ensure_allowed(session, PipelineAction.SUBMIT_SELECTION)

        assert exc_info.value.current_phase == "Spark"
        assert exc_info.value.required_phases == ["FeatureExpansion"]

    def test_completed_session_rejects_everything(self, phases):
        session = make_session(phase=SessionPhase.VISUAL)
        session.status = SessionStatus.COMPLETED

        with pytest.raises(PhaseViolationError):
            phases.ensure_allowed(session, PipelineAction.SELECT_VISUAL)

    def test_commit_moves_forward(self, phases):
        session = make_session(phase=SessionPhase.SPARK)

        changed = phases.commit_action(session, PipelineAction.GENERATE_MUTATIONS)

        assert changed is True
        assert session.current_phase == SessionPhase.MUTATION

    def test_commit_never_moves_backward(self, phases):
        session = make_session(phase=SessionPhase.FEATURE_EXPANSION)

        changed = phases.commit_action(session, PipelineAction.EXPAND_FEATURES)

        assert changed is False
        assert session.current_phase == SessionPhase.FEATURE_EXPANSION

    def test_explicit_backward_advance_is_rejected(self, phases):
        session = make_session(phase=SessionPhase.VISUAL)

        with pytest.raises(ValidationError):
            phases.advance(session, SessionPhase.SPARK)
