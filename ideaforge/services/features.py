import logging

from ideaforge.errors import NotFoundError, ValidationError
from ideaforge.models.schemas import (
    FeatureExpansionResponse,
    FeatureVariation,
    Mutation,
    Session,
)
from ideaforge.services.feature_expansion import FeatureExpansionEngine
from ideaforge.services.phase_machine import PhaseStateMachine, PipelineAction
from ideaforge.services.session_locks import SessionLocks
from ideaforge.services.store import DurableStore

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


class FeatureExpansionService:
    def __init__(
        self,
        store: DurableStore,
        engine: FeatureExpansionEngine,
        phases: PhaseStateMachine,
        locks: SessionLocks,
        top_mutations: int = 3,
        variations_per_mutation: int = 3,
    ):
        self.store = store
        self.engine = engine
        self.phases = phases
        self.locks = locks
        self.top_mutations = top_mutations
        self.variations_per_mutation = variations_per_mutation

    async def _get_session(self, session_id: str) -> Session:
        session = await self.store.get(Session, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def _resolve_mutations(self, session_id: str, mutation_ids: list[str] | None) -> list[Mutation]:
        mutations = await self.store.list_by_session(Mutation, session_id)
        if not mutation_ids:
            if not mutations:
                raise ValidationError("Session has no mutations to expand")
            return sorted(mutations, key=lambda m: m.score, reverse=True)[: self.top_mutations]

        by_id = {m.id: m for m in mutations}
        missing = [mid for mid in mutation_ids if mid not in by_id]
        if missing:
            raise NotFoundError("Mutation", missing[0])
        return [by_id[mid] for mid in dict.fromkeys(mutation_ids)]

    async def expand_features(
        self,
        session_id: str,
        mutation_ids: list[str] | None = None,
        variations_per_mutation: int | None = None,
    ) -> FeatureExpansionResponse:
        theme_count = variations_per_mutation or self.variations_per_mutation

        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.EXPAND_FEATURES)
            mutations = await self._resolve_mutations(session_id, mutation_ids)

            outcome = await self.engine.expand_batch(
                mutations, theme_count, persist=self.store.save_many
            )

            if self.phases.commit_action(session, PipelineAction.EXPAND_FEATURES):
                await self.store.save(session)

        logger.info(
            f"Session {session_id}: {len(outcome.variations)} variations across "
            f"{len(mutations)} mutations ({len(outcome.failures)} failed)"
        )
        return FeatureExpansionResponse(
            session_id=session_id,
            variations=outcome.variations,
            failures=outcome.failures,
        )

    async def rate_variation(self, session_id: str, variation_id: str, rating: int) -> FeatureVariation:
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationError(
                f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}",
                {"rating": rating},
            )

        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.RATE_FEATURE_VARIATION)

            variation = await self.store.get(FeatureVariation, variation_id)
            if variation is None or variation.session_id != session_id:
                raise NotFoundError("FeatureVariation", variation_id)

            variation.score = float(rating)
            await self.store.save(variation)
        return variation

    async def list_variations(self, session_id: str, mutation_id: str | None = None) -> list[FeatureVariation]:
        await self._get_session(session_id)
        variations = await self.store.list_by_session(FeatureVariation, session_id)
        if mutation_id:
            variations = [v for v in variations if v.mutation_id == mutation_id]
        return variations

    async def get_top_variations(self, session_id: str, count: int = 3) -> list[FeatureVariation]:
        variations = await self.list_variations(session_id)
        return sorted(variations, key=lambda v: v.score, reverse=True)[:count]
