import logging
from collections import Counter

from ideaforge.errors import NotFoundError, ValidationError
from ideaforge.models.schemas import (
    FeaturePriority,
    FeatureVariation,
    IdeaSource,
    Mutation,
    SelectableIdea,
    Session,
    Synthesis,
    SynthesisResponse,
)
from ideaforge.services.phase_machine import PhaseStateMachine, PipelineAction
from ideaforge.services.session_locks import SessionLocks
from ideaforge.services.store import DurableStore
from ideaforge.services.synthesis_engine import MAX_SOURCES, SynthesisEngine

logger = logging.getLogger(__name__)


def summarize_variation(variation: FeatureVariation) -> str:
    counts = Counter(f.priority for f in variation.features)
    capabilities = ", ".join(
        f.name for f in variation.features if f.priority == FeaturePriority.MUST
    ) or ", ".join(f.name for f in variation.features[:3])
    integrations = ", ".join(variation.service_integrations) or "none"
    return (
        f"{len(variation.features)} features "
        f"(M:{counts[FeaturePriority.MUST]}, S:{counts[FeaturePriority.SHOULD]}, "
        f"C:{counts[FeaturePriority.COULD]}). "
        f"Key capabilities: {capabilities}. Integrations: {integrations}"
    )


def variation_source(variation: FeatureVariation) -> IdeaSource:
    names = ", ".join(f.name for f in variation.features[:3])
    return IdeaSource(
        id=variation.id,
        title=variation.variation_theme,
        description=(
            f"A {variation.variation_theme} approach with {len(variation.features)} features "
            f"and integrations: {', '.join(variation.service_integrations) or 'none'}. "
            f"Highlights: {names}."
        ),
        key_features=[f.name for f in variation.features],
    )


def mutation_source(mutation: Mutation) -> IdeaSource:
    return IdeaSource(
        id=mutation.id,
        title=mutation.title,
        description=mutation.description,
        key_features=[mutation.mutation_rationale] if mutation.mutation_rationale else [],
    )


class SynthesisService:
    """Turns the user's final selection into at most one Synthesis per session."""

    def __init__(
        self,
        store: DurableStore,
        engine: SynthesisEngine,
        phases: PhaseStateMachine,
        locks: SessionLocks,
    ):
        self.store = store
        self.engine = engine
        self.phases = phases
        self.locks = locks

    async def _get_session(self, session_id: str) -> Session:
        session = await self.store.get(Session, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def list_selectable(self, session_id: str, count: int = 10) -> list[SelectableIdea]:
        await self._get_session(session_id)
        variations = await self.store.list_by_session(FeatureVariation, session_id)
        ranked = sorted(variations, key=lambda v: v.score, reverse=True)[:count]
        return [
            SelectableIdea(
                id=v.id,
                title=v.variation_theme,
                summary=summarize_variation(v),
                score=v.score,
            )
            for v in ranked
        ]

    async def _resolve_sources(self, session_id: str, idea_ids: list[str]) -> list[IdeaSource]:
        variations = {v.id: v for v in await self.store.list_by_session(FeatureVariation, session_id)}
        mutations = {m.id: m for m in await self.store.list_by_session(Mutation, session_id)}

        sources = []
        for idea_id in idea_ids:
            if idea_id in variations:
                sources.append(variation_source(variations[idea_id]))
            elif idea_id in mutations:
                sources.append(mutation_source(mutations[idea_id]))
            else:
                raise NotFoundError("Selectable idea", idea_id)
        return sources

    async def submit_selection(self, session_id: str, idea_ids: list[str]) -> SynthesisResponse:
        """
        Record the selection and, for two or more ideas, synthesize them.

        A single selection skips synthesis. Any earlier synthesis for the
        session is replaced. On success the session moves to ProductRefinement.
        """
        idea_ids = list(dict.fromkeys(idea_ids))
        if not 1 <= len(idea_ids) <= MAX_SOURCES:
            raise ValidationError(
                f"Select between 1 and {MAX_SOURCES} ideas, got {len(idea_ids)}",
                {"selected_count": len(idea_ids)},
            )

        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.SUBMIT_SELECTION)
            sources = await self._resolve_sources(session_id, idea_ids)

            synthesis = None
            if len(sources) >= 2:
                result = await self.engine.synthesize(sources)
                previous = await self.store.list_by_session(Synthesis, session_id)
                synthesis = Synthesis(
                    session_id=session_id,
                    source_idea_ids=[s.id for s in sources],
                    merged_title=result.merged_title,
                    merged_description=result.merged_description,
                    thematic_bridge=result.thematic_bridge,
                    retained_elements=result.retained_elements,
                    degraded=result.degraded,
                )
                await self.store.replace_many(Synthesis, [s.id for s in previous], [synthesis])
                logger.info(
                    f"Session {session_id}: synthesized {len(sources)} ideas into "
                    f"'{synthesis.merged_title}' (degraded={synthesis.degraded})"
                )

            session.selected_idea_ids = idea_ids
            self.phases.commit_action(session, PipelineAction.SUBMIT_SELECTION)
            await self.store.save(session)

        return SynthesisResponse(
            session_id=session_id,
            synthesized=synthesis is not None,
            synthesis=synthesis,
            selected_idea_ids=idea_ids,
            current_phase=session.current_phase,
        )

    async def get_synthesis(self, session_id: str) -> Synthesis:
        await self._get_session(session_id)
        existing = await self.store.list_by_session(Synthesis, session_id)
        if not existing:
            raise NotFoundError("Synthesis", session_id)
        return existing[-1]
