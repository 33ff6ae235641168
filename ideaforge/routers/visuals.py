from fastapi import APIRouter, Depends

from ideaforge.dependencies import get_owned_session, get_visual_service
from ideaforge.models.schemas import (
    GenerationStatusResponse,
    ReplayResponse,
    Session,
    VisualAsset,
    VisualsCreate,
    VisualsResponse,
)
from ideaforge.services.visuals import VisualService

router = APIRouter(prefix="/api/visuals", tags=["visuals"])


@router.post("/{session_id}", response_model=VisualsResponse)
async def generate_visuals(
    data: VisualsCreate | None = None,
    session: Session = Depends(get_owned_session),
    visuals: VisualService = Depends(get_visual_service),
):
    """
    Render UI mockups for the session.

    Mockups the image provider refuses are queued and reported in
    ``queued_count``; replay them with ``POST /{session_id}/replay``.
    """
    data = data or VisualsCreate()
    return await visuals.generate_visuals(session.id, data.count, data.style_hint)


@router.get("/{session_id}", response_model=list[VisualAsset])
async def list_visuals(
    session: Session = Depends(get_owned_session),
    visuals: VisualService = Depends(get_visual_service),
):
    return await visuals.list_visuals(session.id)


@router.get("/{session_id}/status", response_model=GenerationStatusResponse)
async def generation_status(
    session: Session = Depends(get_owned_session),
    visuals: VisualService = Depends(get_visual_service),
):
    return await visuals.generation_status(session.id)


@router.post("/{session_id}/replay", response_model=ReplayResponse)
async def replay_queued(
    session: Session = Depends(get_owned_session),
    visuals: VisualService = Depends(get_visual_service),
):
    return await visuals.replay_queued(session.id)


@router.post("/{session_id}/{visual_id}/select", response_model=VisualAsset)
async def select_visual(
    visual_id: str,
    session: Session = Depends(get_owned_session),
    visuals: VisualService = Depends(get_visual_service),
):
    return await visuals.select_visual(session.id, visual_id)
