from unittest.mock import AsyncMock

import pytest

from ideaforge.errors import GenerationError, PartialBatchFailureError, UnparsableResponseError
from ideaforge.models.schemas import GeneratedMutation, MutationType
from ideaforge.services.mutation_engine import MutationEngine, split_mutation_count

from conftest import make_idea


@pytest.fixture
def liked():
    return [
        make_idea("s1", "Quest Log", ["gamification"]),
        make_idea("s1", "Focus Timer", ["productivity"]),
    ]


class TestSplitMutationCount:
    @pytest.mark.parametrize("total,crossover,repurposing", [(4, 2, 2), (5, 2, 3), (1, 0, 1)])
    def test_split(self, total, crossover, repurposing):
        split = split_mutation_count(total)

        assert split[MutationType.CROSSOVER] == crossover
        assert split[MutationType.REPURPOSING] == repurposing


class TestMutate:
    @pytest.mark.asyncio
    async def test_crossover_records_both_parents(self, generator, liked):
        engine = MutationEngine(generator)

        outcome = await engine.mutate(liked[0], liked[1:], [], MutationType.CROSSOVER, 2)

        assert len(outcome.mutations) == 2
        for mutation in outcome.mutations:
            assert mutation.parent_idea_ids == [liked[0].id, liked[1].id]
            assert "Quest Log" in mutation.mutation_rationale
            assert "Focus Timer" in mutation.mutation_rationale

    @pytest.mark.asyncio
    async def test_crossover_without_partner_falls_back_to_repurposing(self, generator, liked):
        engine = MutationEngine(generator)

        outcome = await engine.mutate(liked[0], [], [], MutationType.CROSSOVER, 1)

        assert outcome.mutations[0].mutation_type == MutationType.REPURPOSING
        assert outcome.mutations[0].parent_idea_ids == [liked[0].id]

    @pytest.mark.asyncio
    async def test_rationale_gets_lineage_when_parents_unnamed(self, liked):
        # Arrange
        generator = AsyncMock()
        generator.generate_mutations.return_value = [
            GeneratedMutation(title="Coach", description="A coach app", mutation_rationale="It is new.")
        ]
        engine = MutationEngine(generator)

        # Act
        outcome = await engine.mutate(liked[0], [], [], MutationType.REPURPOSING, 1)

        # Assert
        assert outcome.mutations[0].mutation_rationale == 'Repurposed from "Quest Log". It is new.'

    @pytest.mark.asyncio
    async def test_unparsable_response_uses_degraded_templates(self, liked):
        generator = AsyncMock()
        generator.generate_mutations.side_effect = UnparsableResponseError("bad json")
        engine = MutationEngine(generator)

        outcome = await engine.mutate(liked[0], liked[1:], [], MutationType.CROSSOVER, 2)

        assert outcome.degraded is True
        assert [m.title for m in outcome.mutations] == ["Hybrid Concept 1", "Hybrid Concept 2"]
        assert all(m.degraded for m in outcome.mutations)


class TestMutateBatch:
    @pytest.mark.asyncio
    async def test_one_failing_parent_does_not_sink_the_batch(self, generator, liked):
        # Arrange
        engine = MutationEngine(generator)
        real = generator.generate_mutations

        async def flaky(parents, disliked, mutation_type, count):
            if parents[0].id == liked[1].id:
                raise GenerationError("model crashed")
            return await real(parents, disliked, mutation_type, count)

        generator.generate_mutations = flaky

        # Act
        outcome = await engine.mutate_batch(liked, [], top_n=2, per_idea=4)

        # Assert
        assert len(outcome.mutations) == 4
        assert [f.item_id for f in outcome.failures] == [liked[1].id]
        assert outcome.failures[0].kind == "GenerationFailure"

    @pytest.mark.asyncio
    async def test_all_parents_failing_raises(self, liked):
        generator = AsyncMock()
        generator.generate_mutations.side_effect = GenerationError("down")
        engine = MutationEngine(generator)

        with pytest.raises(PartialBatchFailureError) as exc_info:
            await engine.mutate_batch(liked, [], top_n=2, per_idea=2)

        assert len(exc_info.value.failures) == 2
