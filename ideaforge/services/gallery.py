import logging
import re

from ideaforge.clock import Clock, utc_now
from ideaforge.errors import NotFoundError, ValidationError
from ideaforge.models.schemas import (
    AppType,
    Artifact,
    ArtifactType,
    GalleryItem,
    GalleryPage,
    Session,
    SessionPhase,
)
from ideaforge.services.gallery_cache import GalleryBrowseCache
from ideaforge.services.sessions import SessionService
from ideaforge.services.store import DurableStore

logger = logging.getLogger(__name__)

EXCERPT_LINES = 3
EXCERPT_LENGTH = 200


def make_excerpt(content: str) -> str:
    lines = [
        line.strip()
        for line in content.splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]
    excerpt = " ".join(lines[:EXCERPT_LINES])
    if len(excerpt) > EXCERPT_LENGTH:
        excerpt = excerpt[: EXCERPT_LENGTH - 3].rstrip() + "..."
    return excerpt


def make_slug(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:80] or "artifact"


class GalleryService:
    """Published artifacts: browsing, publishing and importing into new sessions."""

    def __init__(
        self,
        store: DurableStore,
        cache: GalleryBrowseCache,
        sessions: SessionService,
        max_page_size: int = 100,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.cache = cache
        self.sessions = sessions
        self.max_page_size = max_page_size
        self.clock = clock

    async def register_artifact(
        self,
        session_id: str,
        user_id: str,
        artifact_type: ArtifactType,
        title: str,
        content: str,
    ) -> Artifact:
        session = await self.sessions.get_session(session_id)
        if session.user_id != user_id:
            raise NotFoundError("Session", session_id)

        artifact = Artifact(
            session_id=session_id,
            user_id=user_id,
            type=artifact_type,
            title=title,
            content=content,
            human_readable_slug=make_slug(title),
            created_at=self.clock(),
        )
        await self.store.save(artifact)
        return artifact

    async def get_artifact(self, artifact_id: str) -> Artifact:
        artifact = await self.store.get(Artifact, artifact_id)
        if artifact is None:
            raise NotFoundError("Artifact", artifact_id)
        return artifact

    @staticmethod
    def _parse_cursor(cursor: str | None) -> int:
        if not cursor:
            return 0
        if not (cursor.isascii() and cursor.isdigit()):
            raise ValidationError(f"Invalid gallery cursor: {cursor}")
        return int(cursor)

    async def browse(
        self,
        query: str | None = None,
        app_type: AppType | None = None,
        cursor: str | None = None,
        limit: int = 20,
    ) -> GalleryPage:
        if not 1 <= limit <= self.max_page_size:
            raise ValidationError(f"Page size must be between 1 and {self.max_page_size}, got {limit}")
        skip = self._parse_cursor(cursor)
        query = query.strip() if query else None

        async def load_page() -> GalleryPage:
            return await self._load_page(query, app_type, skip, limit)

        return await self.cache.get_or_load(query, app_type, skip, limit, load_page)

    async def _load_page(
        self, query: str | None, app_type: AppType | None, skip: int, limit: int
    ) -> GalleryPage:
        artifacts = await self.store.list_published_artifacts()
        app_types: dict[str, AppType] = {}
        for artifact in artifacts:
            if artifact.session_id not in app_types:
                session = await self.store.get(Session, artifact.session_id)
                if session is not None:
                    app_types[artifact.session_id] = session.app_type

        if app_type is not None:
            artifacts = [a for a in artifacts if app_types.get(a.session_id) == app_type]
        if query:
            needle = query.lower()
            artifacts = [
                a for a in artifacts
                if needle in a.title.lower() or needle in a.content.lower()
            ]

        window = artifacts[skip: skip + limit + 1]
        has_more = len(window) > limit
        items = [
            GalleryItem(
                artifact_id=a.id,
                session_id=a.session_id,
                title=a.title,
                excerpt=make_excerpt(a.content),
                app_type=app_types.get(a.session_id),
                artifact_type=a.type,
                published_at=a.published_at,
            )
            for a in window[:limit]
        ]
        return GalleryPage(
            items=items,
            next_cursor=str(skip + limit) if has_more else None,
            has_more=has_more,
        )

    async def publish(self, artifact_id: str, user_id: str) -> Artifact:
        artifact = await self.get_artifact(artifact_id)
        if artifact.user_id != user_id:
            raise NotFoundError("Artifact", artifact_id)
        if artifact.is_published:
            raise ValidationError(f"Artifact {artifact_id} is already published")

        artifact.is_published = True
        artifact.published_at = self.clock()
        await self.store.save(artifact)
        self.cache.invalidate_all()
        logger.info(f"Published artifact {artifact_id}")
        return artifact

    async def unpublish(self, artifact_id: str, user_id: str) -> Artifact:
        artifact = await self.get_artifact(artifact_id)
        if artifact.user_id != user_id:
            raise NotFoundError("Artifact", artifact_id)
        if not artifact.is_published:
            raise ValidationError(f"Artifact {artifact_id} is not published")

        artifact.is_published = False
        artifact.published_at = None
        await self.store.save(artifact)
        self.cache.invalidate_all()
        logger.info(f"Unpublished artifact {artifact_id}")
        return artifact

    async def import_artifact(self, artifact_id: str, user_id: str) -> Session:
        """Start a fresh session, at Scope, seeded from a published artifact's app type."""
        artifact = await self.get_artifact(artifact_id)
        if not artifact.is_published:
            raise NotFoundError("Artifact", artifact_id)

        source = await self.sessions.get_session(artifact.session_id)
        session = await self.sessions.start_session(
            user_id,
            source.app_type,
            source.complexity_level,
            phase=SessionPhase.SCOPE,
        )
        logger.info(f"User {user_id} imported artifact {artifact_id} into session {session.id}")
        return session
