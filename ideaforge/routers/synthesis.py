from fastapi import APIRouter, Depends, Query

from ideaforge.dependencies import get_owned_session, get_synthesis_service
from ideaforge.models.schemas import (
    SelectableIdea,
    SelectionCreate,
    Session,
    Synthesis,
    SynthesisResponse,
)
from ideaforge.services.synthesis import SynthesisService

router = APIRouter(prefix="/api/synthesis", tags=["synthesis"])


@router.get("/{session_id}/selectable", response_model=list[SelectableIdea])
async def list_selectable(
    count: int = Query(default=10, ge=1, le=10),
    session: Session = Depends(get_owned_session),
    synthesis: SynthesisService = Depends(get_synthesis_service),
):
    """Best-rated feature variations, summarized for final selection."""
    return await synthesis.list_selectable(session.id, count)


@router.post("/{session_id}", response_model=SynthesisResponse)
async def submit_selection(
    data: SelectionCreate,
    session: Session = Depends(get_owned_session),
    synthesis: SynthesisService = Depends(get_synthesis_service),
):
    return await synthesis.submit_selection(session.id, data.idea_ids)


@router.get("/{session_id}", response_model=Synthesis)
async def get_synthesis(
    session: Session = Depends(get_owned_session),
    synthesis: SynthesisService = Depends(get_synthesis_service),
):
    return await synthesis.get_synthesis(session.id)
