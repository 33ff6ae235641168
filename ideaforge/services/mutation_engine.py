import asyncio
import logging
from dataclasses import dataclass, field

from ideaforge.errors import PartialBatchFailureError, PipelineError, UnparsableResponseError
from ideaforge.models.schemas import (
    BatchItemFailure,
    GeneratedMutation,
    Idea,
    Mutation,
    MutationType,
)
from ideaforge.services.generator import CandidateGenerator

logger = logging.getLogger(__name__)


@dataclass
class MutationOutcome:
    mutations: list[Mutation]
    degraded: bool = False


@dataclass
class MutationBatchOutcome:
    mutations: list[Mutation] = field(default_factory=list)
    failures: list[BatchItemFailure] = field(default_factory=list)

    @property
    def degraded_count(self) -> int:
        return sum(1 for m in self.mutations if m.degraded)


def split_mutation_count(total: int) -> dict[MutationType, int]:
    """Half crossover (rounded down), the rest repurposing."""
    crossover = total // 2
    return {
        MutationType.CROSSOVER: crossover,
        MutationType.REPURPOSING: total - crossover,
    }


class MutationEngine:
    """Evolves liked ideas into new candidates by crossover or repurposing."""

    def __init__(self, generator: CandidateGenerator):
        self.generator = generator

    @staticmethod
    def fallback_mutations(mutation_type: MutationType, parents: list[Idea], count: int) -> list[GeneratedMutation]:
        noun = "Hybrid" if mutation_type == MutationType.CROSSOVER else "Repurposed"
        return [
            GeneratedMutation(
                title=f"{noun} Concept {i + 1}",
                description=f"An evolved product concept through {mutation_type.value.lower()}.",
                mutation_rationale=f"{mutation_type.value} applied to create a new variation.",
            )
            for i in range(count)
        ]

    @staticmethod
    def _rationale_naming_parents(rationale: str, mutation_type: MutationType, parents: list[Idea]) -> str:
        """Ensure the rationale names every parent, prefixing a lineage line if not."""
        if rationale and all(p.title.lower() in rationale.lower() for p in parents):
            return rationale

        if mutation_type == MutationType.CROSSOVER:
            lineage = "Crossover of " + " and ".join(f'"{p.title}"' for p in parents)
        else:
            lineage = f'Repurposed from "{parents[0].title}"'
        return f"{lineage}. {rationale}".strip() if rationale else f"{lineage}."

    async def mutate(
        self,
        primary: Idea,
        liked_others: list[Idea],
        disliked: list[Idea],
        mutation_type: MutationType,
        count: int,
    ) -> MutationOutcome:
        """
        Produce ``count`` mutations of ``primary``.

        Crossover pairs ``primary`` with the first other liked idea; without
        one it degrades to repurposing. An unparsable generator response is
        replaced by template mutations flagged ``degraded``; every other
        generator error propagates.

        Args:
            primary: The liked idea being evolved
            liked_others: Other liked ideas available as crossover partners
            disliked: Ideas whose themes should be steered away from
            mutation_type: Requested strategy
            count: Number of mutations to create

        Returns:
            The new (unsaved) mutations and whether they came from the fallback
        """
        if count <= 0:
            return MutationOutcome(mutations=[])

        if mutation_type == MutationType.CROSSOVER and not liked_others:
            logger.info(f"No crossover partner for '{primary.title}', repurposing instead")
            mutation_type = MutationType.REPURPOSING

        parents = [primary, liked_others[0]] if mutation_type == MutationType.CROSSOVER else [primary]

        degraded = False
        try:
            generated = await self.generator.generate_mutations(parents, disliked, mutation_type, count)
        except UnparsableResponseError as e:
            logger.warning(f"Mutation fallback for '{primary.title}' ({mutation_type.value}): {e}")
            generated = self.fallback_mutations(mutation_type, parents, count)
            degraded = True

        mutations = [
            Mutation(
                session_id=primary.session_id,
                parent_idea_ids=[p.id for p in parents],
                mutation_type=mutation_type,
                title=g.title,
                description=g.description,
                mutation_rationale=self._rationale_naming_parents(g.mutation_rationale, mutation_type, parents),
                degraded=degraded,
            )
            for g in generated[:count]
        ]
        return MutationOutcome(mutations=mutations, degraded=degraded)

    async def mutate_batch(
        self,
        liked: list[Idea],
        disliked: list[Idea],
        top_n: int = 2,
        per_idea: int = 4,
    ) -> MutationBatchOutcome:
        """
        Mutate each of the ``top_n`` liked ideas independently.

        A failure for one idea is recorded and the rest carry on. When every
        idea fails the whole batch raises PartialBatchFailureError.
        """
        selected = liked[:top_n]
        outcome = MutationBatchOutcome()
        split = split_mutation_count(per_idea)

        for idea in selected:
            others = [other for other in liked if other.id != idea.id]
            try:
                for mutation_type, count in split.items():
                    result = await self.mutate(idea, others, disliked, mutation_type, count)
                    outcome.mutations.extend(result.mutations)
            except asyncio.CancelledError:
                raise
            except PipelineError as e:
                logger.warning(f"Mutation of idea {idea.id} failed: {e}")
                outcome.failures.append(
                    BatchItemFailure(item_id=idea.id, kind=e.kind.value, message=e.message)
                )

        if selected and not outcome.mutations and outcome.failures:
            raise PartialBatchFailureError(
                "mutation", [f.model_dump() for f in outcome.failures]
            )

        return outcome
