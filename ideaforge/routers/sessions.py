from fastapi import APIRouter, Depends

from ideaforge.dependencies import (
    get_gallery_service,
    get_owned_session,
    get_session_service,
    get_user_id,
)
from ideaforge.models.schemas import Artifact, ArtifactCreate, Session, SessionCreate
from ideaforge.services.gallery import GalleryService
from ideaforge.services.sessions import SessionService

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("/", response_model=list[Session])
async def list_sessions(
    user_id: str = Depends(get_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    """List the caller's sessions, newest first."""
    return await sessions.list_sessions(user_id)


@router.post("/", response_model=Session, status_code=201)
async def create_session(
    data: SessionCreate,
    user_id: str = Depends(get_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    """Start a new pipeline session in the Spark phase."""
    return await sessions.start_session(user_id, data.app_type, data.complexity_level)


@router.get("/{session_id}", response_model=Session)
async def get_session(session: Session = Depends(get_owned_session)):
    return session


@router.post("/{session_id}/complete", response_model=Session)
async def complete_session(
    session: Session = Depends(get_owned_session),
    sessions: SessionService = Depends(get_session_service),
):
    """Finish a session once a visual has been chosen."""
    return await sessions.complete_session(session.id)


@router.post("/{session_id}/artifacts", response_model=Artifact, status_code=201)
async def create_artifact(
    data: ArtifactCreate,
    session: Session = Depends(get_owned_session),
    gallery: GalleryService = Depends(get_gallery_service),
):
    """Attach a PRD, technical deep dive or visual pack to the session."""
    return await gallery.register_artifact(
        session.id, session.user_id, data.type, data.title, data.content
    )
