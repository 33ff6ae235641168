import asyncio
import logging

from ideaforge.clock import Clock, utc_now
from ideaforge.errors import GenerationError, NotFoundError, PipelineError, RateLimitedError, ValidationError
from ideaforge.models.schemas import (
    GenerationStatus,
    GenerationStatusResponse,
    QueuedGenerationRequest,
    ReplayResponse,
    Session,
    StyleInfo,
    Synthesis,
    VisualAsset,
    VisualsResponse,
)
from ideaforge.services.generation_queue import OfflineGenerationQueue
from ideaforge.services.generator import CandidateGenerator
from ideaforge.services.phase_machine import PhaseStateMachine, PipelineAction
from ideaforge.services.session_locks import SessionLocks
from ideaforge.services.storage import BlobStore
from ideaforge.services.store import DurableStore
from ideaforge.websocket import ConnectionManager

logger = logging.getLogger(__name__)

# (layout, vibe, palette)
VISUAL_STYLES = [
    ("Dashboard", "Professional", ["#1E40AF", "#3B82F6", "#93C5FD", "#F8FAFC", "#1F2937"]),
    ("Card-based", "Modern", ["#7C3AED", "#A78BFA", "#EDE9FE", "#FFFFFF", "#4B5563"]),
    ("Minimal", "Clean", ["#059669", "#34D399", "#ECFDF5", "#F9FAFB", "#374151"]),
    ("Split-screen", "Bold", ["#DC2626", "#F87171", "#FEE2E2", "#FFFFFF", "#111827"]),
    ("Hero-focused", "Playful", ["#F59E0B", "#FBBF24", "#FEF3C7", "#FFFBEB", "#1F2937"]),
    ("List-based", "Functional", ["#0891B2", "#22D3EE", "#CFFAFE", "#F0FDFA", "#334155"]),
    ("Grid", "Dynamic", ["#DB2777", "#F472B6", "#FCE7F3", "#FDF2F8", "#1E293B"]),
    ("Tabbed", "Organized", ["#4F46E5", "#818CF8", "#E0E7FF", "#EEF2FF", "#111827"]),
    ("Wizard/Steps", "Guided", ["#059669", "#10B981", "#D1FAE5", "#ECFDF5", "#064E3B"]),
    ("Mobile-first", "Compact", ["#6366F1", "#A5B4FC", "#E0E7FF", "#FFFFFF", "#1E1B4B"]),
]


def style_info(style_index: int) -> StyleInfo:
    layout, vibe, palette = VISUAL_STYLES[style_index % len(VISUAL_STYLES)]
    return StyleInfo(color_palette=list(palette), layout_style=layout, vibe=vibe)


def build_visual_prompt(request: QueuedGenerationRequest) -> str:
    style = style_info(request.style_index)
    lines = [
        f'UI mockup for a {request.app_type.value.lower()} app called "{request.app_title}".',
        f"App description: {request.app_description}",
        f"Layout style: {style.layout_style}",
        f"Visual vibe: {style.vibe}",
        f"Color palette: {', '.join(style.color_palette[:3])}",
        "High fidelity, clean design, modern UI/UX, no text labels, app interface screenshot.",
    ]
    if request.style_hint:
        lines.append(f"User style preference: {request.style_hint}")
    return "\n".join(lines)


class VisualService:
    """Mockup generation with offline queueing for calls the provider refused."""

    def __init__(
        self,
        store: DurableStore,
        generator: CandidateGenerator,
        phases: PhaseStateMachine,
        locks: SessionLocks,
        queue: OfflineGenerationQueue,
        blobs: BlobStore,
        notifier: ConnectionManager | None = None,
        max_visuals: int = 4,
        default_count: int = 3,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.generator = generator
        self.phases = phases
        self.locks = locks
        self.queue = queue
        self.blobs = blobs
        self.notifier = notifier
        self.max_visuals = max_visuals
        self.default_count = default_count
        self.clock = clock

    async def _get_session(self, session_id: str) -> Session:
        session = await self.store.get(Session, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def _app_context(self, session: Session) -> tuple[str, str]:
        syntheses = await self.store.list_by_session(Synthesis, session.id)
        if syntheses:
            latest = syntheses[-1]
            return latest.merged_title, latest.merged_description
        return f"New {session.app_type.value} App", f"A {session.app_type.value.lower()} application."

    async def _render(self, request: QueuedGenerationRequest) -> VisualAsset:
        prompt = build_visual_prompt(request)
        image = await self.generator.generate_image(prompt)
        if not image:
            raise GenerationError("Image generator returned no data")

        visual = VisualAsset(
            session_id=request.session_id,
            blob_url="",
            thumbnail_url="",
            prompt=prompt,
            style_attributes=style_info(request.style_index),
            created_at=self.clock(),
        )
        url = await self.blobs.save_bytes(
            request.session_id, self.blobs.get_visual_filename(visual.id), image
        )
        visual.blob_url = url
        visual.thumbnail_url = url
        await self.store.save(visual)
        return visual

    async def generate_visuals(
        self,
        session_id: str,
        count: int | None = None,
        style_hint: str | None = None,
    ) -> VisualsResponse:
        """
        Render up to ``count`` mockups, never exceeding the per-session cap.

        A request the provider refuses is queued for replay instead of being
        dropped; once the provider rate-limits, the rest of the batch is
        queued without further calls.
        """
        count = count or self.default_count

        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.GENERATE_VISUALS)

            existing = await self.store.list_by_session(VisualAsset, session_id)
            pending = self.queue.pending_count(session_id)
            remaining = self.max_visuals - len(existing) - pending
            if remaining <= 0:
                raise ValidationError(
                    f"Session already has the maximum of {self.max_visuals} visuals",
                    {"visual_count": len(existing), "pending": pending},
                )

            title, description = await self._app_context(session)
            requests = [
                QueuedGenerationRequest(
                    session_id=session_id,
                    app_title=title,
                    app_description=description,
                    app_type=session.app_type,
                    style_index=len(existing) + pending + i,
                    style_hint=style_hint,
                    requested_at=self.clock(),
                )
                for i in range(min(count, remaining))
            ]

            visuals: list[VisualAsset] = []
            queued = 0
            provider_throttled = False
            for index, request in enumerate(requests):
                if provider_throttled:
                    self.queue.enqueue(request)
                    queued += 1
                    continue
                if self.notifier:
                    await self.notifier.broadcast_progress(
                        session_id, "visuals", int(index / len(requests) * 100),
                        f"Rendering mockup {index + 1} of {len(requests)}",
                    )
                try:
                    visuals.append(await self._render(request))
                except asyncio.CancelledError:
                    raise
                except PipelineError as e:
                    logger.warning(f"Session {session_id}: visual {index + 1} queued for replay: {e}")
                    self.queue.enqueue(request)
                    queued += 1
                    provider_throttled = isinstance(e, RateLimitedError)
                    if self.notifier:
                        await self.notifier.broadcast_error(session_id, e.kind.value, e.message)

            if self.phases.commit_action(session, PipelineAction.GENERATE_VISUALS):
                await self.store.save(session)

        if self.notifier:
            await self.notifier.broadcast_complete(
                session_id, {"step": "visuals", "generated": len(visuals), "queued": queued}
            )

        return VisualsResponse(
            session_id=session_id,
            visuals=visuals,
            queued_count=queued,
            status=GenerationStatus.QUEUED if queued else GenerationStatus.COMPLETED,
        )

    async def replay_queued(self, session_id: str) -> ReplayResponse:
        self.queue.purge_expired()
        async with self.locks.hold(session_id):
            await self._get_session(session_id)
            visuals = await self.queue.replay(session_id, self._render)
            remaining = self.queue.pending_count(session_id)

        logger.info(f"Session {session_id}: replayed {len(visuals)} visual(s), {remaining} still queued")
        return ReplayResponse(
            session_id=session_id,
            replayed=len(visuals),
            remaining=remaining,
            visuals=visuals,
        )

    async def select_visual(self, session_id: str, visual_id: str) -> VisualAsset:
        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.SELECT_VISUAL)

            visuals = await self.store.list_by_session(VisualAsset, session_id)
            selected = next((v for v in visuals if v.id == visual_id), None)
            if selected is None:
                raise NotFoundError("VisualAsset", visual_id)

            changed = []
            for visual in visuals:
                should_select = visual.id == visual_id
                if visual.is_selected != should_select:
                    visual.is_selected = should_select
                    changed.append(visual)
            await self.store.save_many(changed)

        selected.is_selected = True
        return selected

    async def list_visuals(self, session_id: str) -> list[VisualAsset]:
        await self._get_session(session_id)
        return await self.store.list_by_session(VisualAsset, session_id)

    async def generation_status(self, session_id: str) -> GenerationStatusResponse:
        visuals = await self.list_visuals(session_id)
        pending = self.queue.pending_count(session_id)
        if pending:
            status = GenerationStatus.QUEUED
        elif self.locks.is_locked(session_id):
            status = GenerationStatus.IN_PROGRESS
        else:
            status = GenerationStatus.COMPLETED
        return GenerationStatusResponse(
            session_id=session_id,
            status=status,
            pending_count=pending,
            visual_count=len(visuals),
        )