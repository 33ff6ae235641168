from fastapi import APIRouter, Depends

from ideaforge.dependencies import get_owned_session, get_refinement_service
from ideaforge.models.schemas import (
    AnswersCreate,
    AnswersResponse,
    QuestionsResponse,
    RefinementAnswer,
    RefinementPhase,
    Session,
)
from ideaforge.services.refinement import RefinementService

router = APIRouter(prefix="/api/refinement", tags=["refinement"])


@router.get("/{session_id}/questions", response_model=QuestionsResponse)
async def get_questions(
    phase: RefinementPhase | None = None,
    session: Session = Depends(get_owned_session),
    refinement: RefinementService = Depends(get_refinement_service),
):
    """Questions for the given phase, or for the session's current refinement phase."""
    return await refinement.get_questions(session.id, phase)


@router.post("/{session_id}/answers", response_model=AnswersResponse)
async def submit_answers(
    data: AnswersCreate,
    session: Session = Depends(get_owned_session),
    refinement: RefinementService = Depends(get_refinement_service),
):
    return await refinement.submit_answers(session.id, data.answers)


@router.get("/{session_id}/answers", response_model=list[RefinementAnswer])
async def list_answers(
    phase: RefinementPhase | None = None,
    session: Session = Depends(get_owned_session),
    refinement: RefinementService = Depends(get_refinement_service),
):
    return await refinement.list_answers(session.id, phase)
