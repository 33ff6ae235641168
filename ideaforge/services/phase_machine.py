import logging
from enum import Enum

from ideaforge.errors import PhaseViolationError, ValidationError
from ideaforge.models.schemas import Session, SessionPhase, SessionStatus

logger = logging.getLogger(__name__)

PHASE_ORDER = [
    SessionPhase.SCOPE,
    SessionPhase.SPARK,
    SessionPhase.MUTATION,
    SessionPhase.FEATURE_EXPANSION,
    SessionPhase.PRODUCT_REFINEMENT,
    SessionPhase.TECHNICAL_REFINEMENT,
    SessionPhase.VISUAL,
    SessionPhase.COMPLETED,
]


class PipelineAction(str, Enum):
    GENERATE_IDEAS = "generate ideas"
    RECORD_SWIPE = "record swipes"
    GENERATE_MUTATIONS = "generate mutations"
    RATE_MUTATION = "rate mutations"
    EXPAND_FEATURES = "expand features"
    RATE_FEATURE_VARIATION = "rate feature variations"
    SUBMIT_SELECTION = "submit a synthesis selection"
    SUBMIT_REFINEMENT_ANSWER = "submit refinement answers"
    GENERATE_VISUALS = "generate visuals"
    SELECT_VISUAL = "select a visual"
    COMPLETE_SESSION = "complete the session"


LEGAL_PHASES: dict[PipelineAction, tuple[SessionPhase, ...]] = {
    PipelineAction.GENERATE_IDEAS: (SessionPhase.SCOPE, SessionPhase.SPARK),
    PipelineAction.RECORD_SWIPE: (SessionPhase.SPARK,),
    PipelineAction.GENERATE_MUTATIONS: (SessionPhase.SPARK, SessionPhase.MUTATION),
    PipelineAction.RATE_MUTATION: (SessionPhase.MUTATION, SessionPhase.FEATURE_EXPANSION),
    PipelineAction.EXPAND_FEATURES: (SessionPhase.MUTATION, SessionPhase.FEATURE_EXPANSION),
    PipelineAction.RATE_FEATURE_VARIATION: (SessionPhase.FEATURE_EXPANSION,),
    PipelineAction.SUBMIT_SELECTION: (SessionPhase.FEATURE_EXPANSION,),
    PipelineAction.SUBMIT_REFINEMENT_ANSWER: (
        SessionPhase.PRODUCT_REFINEMENT,
        SessionPhase.TECHNICAL_REFINEMENT,
    ),
    PipelineAction.GENERATE_VISUALS: (
        SessionPhase.PRODUCT_REFINEMENT,
        SessionPhase.TECHNICAL_REFINEMENT,
        SessionPhase.VISUAL,
    ),
    PipelineAction.SELECT_VISUAL: (SessionPhase.VISUAL,),
    PipelineAction.COMPLETE_SESSION: (SessionPhase.VISUAL,),
}

# Phase an action moves the session into once it succeeds
TARGET_PHASES: dict[PipelineAction, SessionPhase] = {
    PipelineAction.GENERATE_IDEAS: SessionPhase.SPARK,
    PipelineAction.GENERATE_MUTATIONS: SessionPhase.MUTATION,
    PipelineAction.EXPAND_FEATURES: SessionPhase.FEATURE_EXPANSION,
    PipelineAction.SUBMIT_SELECTION: SessionPhase.PRODUCT_REFINEMENT,
    PipelineAction.GENERATE_VISUALS: SessionPhase.VISUAL,
    PipelineAction.COMPLETE_SESSION: SessionPhase.COMPLETED,
}


def phase_index(phase: SessionPhase) -> int:
    return PHASE_ORDER.index(phase)


class PhaseStateMachine:
    """Decides which actions are legal in which phase and commits forward moves.

    Holds no state; everything it needs is on the Session passed in.
    """

    def is_allowed(self, phase: SessionPhase, action: PipelineAction) -> bool:
        return phase in LEGAL_PHASES[action]

    def ensure_allowed(self, session: Session, action: PipelineAction) -> None:
        if session.status == SessionStatus.COMPLETED:
            raise PhaseViolationError(
                action.value, SessionPhase.COMPLETED.value,
                [p.value for p in LEGAL_PHASES[action]],
            )
        if not self.is_allowed(session.current_phase, action):
            raise PhaseViolationError(
                action.value,
                session.current_phase.value,
                [p.value for p in LEGAL_PHASES[action]],
            )

    def target_phase(self, session: Session, action: PipelineAction) -> SessionPhase:
        """Phase after ``action`` succeeds; never earlier than the current one."""
        target = TARGET_PHASES.get(action)
        if target is None or phase_index(target) <= phase_index(session.current_phase):
            return session.current_phase
        return target

    def advance(self, session: Session, target: SessionPhase) -> bool:
        """Move ``session`` forward to ``target``.

        Returns True when the phase changed. Moving backward is rejected.
        """
        if target == session.current_phase:
            return False
        if phase_index(target) < phase_index(session.current_phase):
            raise ValidationError(
                f"Session phase cannot move backward from {session.current_phase.value} "
                f"to {target.value}",
                {"current_phase": session.current_phase.value, "target_phase": target.value},
            )
        logger.info(
            f"Session {session.id}: {session.current_phase.value} -> {target.value}"
        )
        session.current_phase = target
        return True

    def commit_action(self, session: Session, action: PipelineAction) -> bool:
        return self.advance(session, self.target_phase(session, action))
