from fastapi import APIRouter, Depends

from ideaforge.dependencies import get_gallery_service, get_user_id
from ideaforge.errors import NotFoundError
from ideaforge.models.schemas import AppType, Artifact, GalleryPage, Session
from ideaforge.services.gallery import GalleryService

router = APIRouter(prefix="/api/gallery", tags=["gallery"])


@router.get("/", response_model=GalleryPage)
async def browse_gallery(
    q: str | None = None,
    app_type: AppType | None = None,
    cursor: str | None = None,
    limit: int = 20,
    gallery: GalleryService = Depends(get_gallery_service),
):
    """Page through published artifacts, newest first."""
    return await gallery.browse(q, app_type, cursor, limit)


@router.get("/{artifact_id}", response_model=Artifact)
async def get_artifact(
    artifact_id: str,
    user_id: str = Depends(get_user_id),
    gallery: GalleryService = Depends(get_gallery_service),
):
    artifact = await gallery.get_artifact(artifact_id)
    if not artifact.is_published and artifact.user_id != user_id:
        raise NotFoundError("Artifact", artifact_id)
    return artifact


@router.post("/{artifact_id}/publish", response_model=Artifact)
async def publish_artifact(
    artifact_id: str,
    user_id: str = Depends(get_user_id),
    gallery: GalleryService = Depends(get_gallery_service),
):
    return await gallery.publish(artifact_id, user_id)


@router.post("/{artifact_id}/unpublish", response_model=Artifact)
async def unpublish_artifact(
    artifact_id: str,
    user_id: str = Depends(get_user_id),
    gallery: GalleryService = Depends(get_gallery_service),
):
    return await gallery.unpublish(artifact_id, user_id)


@router.post("/{artifact_id}/import", response_model=Session, status_code=201)
async def import_artifact(
    artifact_id: str,
    user_id: str = Depends(get_user_id),
    gallery: GalleryService = Depends(get_gallery_service),
):
    """Start a new session of the same app type from a published artifact."""
    return await gallery.import_artifact(artifact_id, user_id)
