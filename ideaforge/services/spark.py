import logging

from ideaforge.clock import Clock, utc_now
from ideaforge.errors import GenerationError, NotFoundError, UnparsableResponseError, ValidationError
from ideaforge.models.schemas import (
    GeneratedIdea,
    Idea,
    IdeaBatchResponse,
    LearningContext,
    Session,
    SessionContext,
    Swipe,
    SwipeAnalysis,
    SwipeDirection,
    SwipeResponse,
    TopIdeasResponse,
)
from ideaforge.services import scoring
from ideaforge.services.generator import CandidateGenerator
from ideaforge.services.learning import LearningContextBuilder
from ideaforge.services.personality import PersonalityService
from ideaforge.services.phase_machine import PhaseStateMachine, PipelineAction
from ideaforge.services.session_locks import SessionLocks
from ideaforge.services.store import DurableStore
from ideaforge.websocket import ConnectionManager

logger = logging.getLogger(__name__)

RESTART_DISLIKE_THRESHOLD = 5
ALL_DISLIKED_MESSAGE = (
    "None of these ideas resonated with you. Would you like to restart with "
    "different parameters or try a different app type?"
)
ALL_LIKED_MESSAGE = (
    "You liked all the ideas! We'll use your swipe timing to help rank which ones excited you most."
)


def fallback_ideas(count: int) -> list[GeneratedIdea]:
    return [
        GeneratedIdea(
            title=f"Generated Idea {i + 1}",
            description="An innovative app concept.",
            dna_keywords=["innovative", "app"],
        )
        for i in range(count)
    ]


def analyze(swipes: list[Swipe]) -> SwipeAnalysis:
    likes = sum(1 for s in swipes if s.direction == SwipeDirection.RIGHT)
    super_likes = sum(1 for s in swipes if s.direction == SwipeDirection.UP)
    dislikes = sum(1 for s in swipes if s.direction == SwipeDirection.LEFT)
    total = len(swipes)

    all_liked = total > 0 and dislikes == 0
    all_disliked = total > 0 and likes + super_likes == 0
    should_offer_restart = all_disliked and dislikes >= RESTART_DISLIKE_THRESHOLD

    message = None
    if should_offer_restart:
        message = ALL_DISLIKED_MESSAGE
    elif all_liked:
        message = ALL_LIKED_MESSAGE

    return SwipeAnalysis(
        total_swipes=total,
        like_count=likes,
        dislike_count=dislikes,
        super_like_count=super_likes,
        all_liked=all_liked,
        all_disliked=all_disliked,
        should_offer_restart=should_offer_restart,
        suggested_message=message,
    )


def rank_liked_ideas(ideas: list[Idea], swipes: list[Swipe]) -> list[Idea]:
    """Ideas with at least one positive swipe, best first.

    When the session has no dislikes at all, raw scores are multiplied by the
    strongest swipe confidence for each idea so timing breaks the tie.
    """
    analysis = analyze(swipes)
    if analysis.all_disliked:
        return []

    confidence: dict[str, float] = {}
    for swipe in swipes:
        if scoring.is_positive(swipe.direction):
            multiplier = scoring.confidence_multiplier(swipe.direction, swipe.speed_category)
            confidence[swipe.idea_id] = max(confidence.get(swipe.idea_id, 0.0), multiplier)

    liked = [idea for idea in ideas if idea.id in confidence]
    if analysis.all_liked:
        return sorted(liked, key=lambda i: i.score * confidence[i.id], reverse=True)
    return sorted(liked, key=lambda i: i.score, reverse=True)


class SparkService:
    """Idea batches, swipes and top-idea selection for the Spark phase."""

    def __init__(
        self,
        store: DurableStore,
        generator: CandidateGenerator,
        phases: PhaseStateMachine,
        locks: SessionLocks,
        personality: PersonalityService,
        learning: LearningContextBuilder | None = None,
        notifier: ConnectionManager | None = None,
        ideas_per_batch: int = 5,
        max_batches: int = 2,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.generator = generator
        self.phases = phases
        self.locks = locks
        self.personality = personality
        self.learning = learning or LearningContextBuilder()
        self.notifier = notifier
        self.ideas_per_batch = ideas_per_batch
        self.max_batches = max_batches
        self.clock = clock

    async def _get_session(self, session_id: str) -> Session:
        session = await self.store.get(Session, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def _build_context(
        self, session: Session, batch_number: int, ideas: list[Idea]
    ) -> tuple[SessionContext, LearningContext]:
        context = SessionContext(
            session_id=session.id,
            app_type=session.app_type,
            complexity_level=session.complexity_level,
            batch_number=batch_number,
            count=self.ideas_per_batch,
        )

        if batch_number == 1:
            personality = await self.personality.get_or_create(session.user_id)
            product, technical, avoided = self.personality.prompt_bias(personality)
            context.preferred_themes = product
            context.preferred_technologies = technical
            context.avoided_patterns = avoided
            return context, LearningContext()

        swipes = await self.store.list_by_session(Swipe, session.id)
        return context, self.learning.build(swipes, ideas)

    async def generate_ideas(self, session_id: str) -> IdeaBatchResponse:
        """
        Generate the next batch of ideas for a session.

        Batch 1 is steered by the user's long-term personality, later batches
        by this session's swipes. An unparsable model answer yields template
        ideas flagged ``degraded``.

        Raises:
            NotFoundError: Unknown session
            PhaseViolationError: Session is past the Spark phase
            ValidationError: The batch limit has been reached
            GenerationError / RateLimitedError: The generator failed outright
        """
        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.GENERATE_IDEAS)

            existing = await self.store.list_by_session(Idea, session_id)
            batch_number = max((i.batch_number for i in existing), default=0) + 1
            if batch_number > self.max_batches:
                raise ValidationError(
                    f"Session {session_id} already has the maximum of {self.max_batches} idea batches",
                    {"batch_number": batch_number, "max_batches": self.max_batches},
                )

            context, bias = await self._build_context(session, batch_number, existing)
            if self.notifier:
                await self.notifier.broadcast_progress(session_id, "ideas", 0, f"Generating batch {batch_number}")

            degraded = False
            try:
                generated = await self.generator.generate_ideas(context, bias)
            except UnparsableResponseError as e:
                logger.warning(f"Session {session_id}: idea fallback for batch {batch_number}: {e}")
                generated = fallback_ideas(self.ideas_per_batch)
                degraded = True

            if not generated:
                raise GenerationError(f"Generator returned no ideas for batch {batch_number}")

            now = self.clock()
            ideas = [
                Idea(
                    session_id=session_id,
                    batch_number=batch_number,
                    title=g.title,
                    description=g.description,
                    dna_keywords=list(dict.fromkeys(g.dna_keywords)),
                    degraded=degraded,
                    created_at=now,
                )
                for g in generated
            ]
            await self.store.save_many(ideas)

            if self.phases.commit_action(session, PipelineAction.GENERATE_IDEAS):
                await self.store.save(session)

        logger.info(f"Session {session_id}: batch {batch_number} with {len(ideas)} ideas (degraded={degraded})")
        if self.notifier:
            await self.notifier.broadcast_complete(
                session_id, {"step": "ideas", "batch_number": batch_number, "count": len(ideas)}
            )

        return IdeaBatchResponse(
            session_id=session_id,
            batch_number=batch_number,
            ideas=ideas,
            degraded=degraded,
            has_more_batches=batch_number < self.max_batches,
        )

    async def record_swipe(
        self,
        session_id: str,
        user_id: str,
        idea_id: str,
        direction: SwipeDirection,
        duration_ms: int,
    ) -> SwipeResponse:
        if duration_ms < 0:
            raise ValidationError(
                f"Swipe duration cannot be negative, got {duration_ms}",
                {"duration_ms": duration_ms},
            )

        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.RECORD_SWIPE)

            idea = await self.store.get(Idea, idea_id)
            if idea is None or idea.session_id != session_id:
                raise NotFoundError("Idea", idea_id)

            swipe = Swipe(
                session_id=session_id,
                idea_id=idea_id,
                user_id=user_id,
                direction=direction,
                duration_ms=duration_ms,
                speed_category=scoring.speed_bucket(duration_ms),
                timestamp=self.clock(),
            )
            idea.score = scoring.apply_delta(idea.score, scoring.score_delta(direction, duration_ms))
            await self.store.save_many([swipe, idea])

        await self.personality.apply_swipes(user_id, [swipe], [idea])
        logger.debug(
            f"Session {session_id}: {direction.value} on {idea_id} "
            f"({swipe.speed_category.value}) -> score {idea.score:.2f}"
        )
        return SwipeResponse(swipe=swipe, updated_score=idea.score)

    async def list_ideas(self, session_id: str, batch_number: int | None = None) -> list[Idea]:
        await self._get_session(session_id)
        ideas = await self.store.list_by_session(Idea, session_id)
        if batch_number is not None:
            ideas = [i for i in ideas if i.batch_number == batch_number]
        return ideas

    async def analyze_swipes(self, session_id: str) -> SwipeAnalysis:
        await self._get_session(session_id)
        return analyze(await self.store.list_by_session(Swipe, session_id))

    async def get_top_ideas(self, session_id: str, count: int = 3) -> TopIdeasResponse:
        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            ideas = await self.store.list_by_session(Idea, session_id)
            swipes = await self.store.list_by_session(Swipe, session_id)

            top = rank_liked_ideas(ideas, swipes)[:count]
            top_ids = [i.id for i in top]
            if session.top_idea_ids != top_ids:
                session.top_idea_ids = top_ids
                await self.store.save(session)

        return TopIdeasResponse(session_id=session_id, ideas=top, analysis=analyze(swipes))
