import logging

from ideaforge.errors import NotFoundError, ValidationError
from ideaforge.models.schemas import (
    Idea,
    Mutation,
    MutationBatchResponse,
    Session,
    Swipe,
    SwipeDirection,
)
from ideaforge.services.mutation_engine import MutationEngine
from ideaforge.services.phase_machine import PhaseStateMachine, PipelineAction
from ideaforge.services.session_locks import SessionLocks
from ideaforge.services.spark import rank_liked_ideas
from ideaforge.services.store import DurableStore

logger = logging.getLogger(__name__)


class MutationService:
    def __init__(
        self,
        store: DurableStore,
        engine: MutationEngine,
        phases: PhaseStateMachine,
        locks: SessionLocks,
        top_ideas: int = 2,
        mutations_per_idea: int = 4,
    ):
        self.store = store
        self.engine = engine
        self.phases = phases
        self.locks = locks
        self.top_ideas = top_ideas
        self.mutations_per_idea = mutations_per_idea

    async def _get_session(self, session_id: str) -> Session:
        session = await self.store.get(Session, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def generate_mutations(
        self,
        session_id: str,
        top_n: int | None = None,
        per_idea: int | None = None,
    ) -> MutationBatchResponse:
        """
        Mutate the session's best liked ideas.

        Each liked idea is processed on its own: some may fail while others
        succeed, and the failures are returned next to the mutations.
        """
        top_n = top_n or self.top_ideas
        per_idea = per_idea or self.mutations_per_idea

        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.GENERATE_MUTATIONS)

            ideas = await self.store.list_by_session(Idea, session_id)
            swipes = await self.store.list_by_session(Swipe, session_id)

            liked = rank_liked_ideas(ideas, swipes)
            if not liked:
                raise ValidationError(
                    "Mutation needs at least one liked idea; swipe right or up on an idea first"
                )
            disliked_ids = {s.idea_id for s in swipes if s.direction == SwipeDirection.LEFT}
            liked_ids = {idea.id for idea in liked}
            disliked = [i for i in ideas if i.id in disliked_ids and i.id not in liked_ids]

            outcome = await self.engine.mutate_batch(liked, disliked, top_n=top_n, per_idea=per_idea)
            await self.store.save_many(outcome.mutations)

            if self.phases.commit_action(session, PipelineAction.GENERATE_MUTATIONS):
                await self.store.save(session)

        logger.info(
            f"Session {session_id}: {len(outcome.mutations)} mutations "
            f"({outcome.degraded_count} degraded, {len(outcome.failures)} failed parents)"
        )
        return MutationBatchResponse(
            session_id=session_id,
            mutations=outcome.mutations,
            failures=outcome.failures,
            degraded_count=outcome.degraded_count,
        )

    async def rate_mutation(self, session_id: str, mutation_id: str, score: float) -> Mutation:
        if score < 0:
            raise ValidationError(f"Mutation score cannot be negative, got {score}")

        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.RATE_MUTATION)

            mutation = await self.store.get(Mutation, mutation_id)
            if mutation is None or mutation.session_id != session_id:
                raise NotFoundError("Mutation", mutation_id)

            mutation.score = score
            await self.store.save(mutation)
        return mutation

    async def list_mutations(self, session_id: str) -> list[Mutation]:
        await self._get_session(session_id)
        return await self.store.list_by_session(Mutation, session_id)

    async def get_top_mutations(self, session_id: str, count: int = 10) -> list[Mutation]:
        mutations = await self.list_mutations(session_id)
        return sorted(mutations, key=lambda m: m.score, reverse=True)[:count]
