from unittest.mock import AsyncMock

import pytest

from ideaforge.errors import NotFoundError, PhaseViolationError, ValidationError
from ideaforge.models.schemas import (
    AnswerInput,
    AppType,
    RefinementPhase,
    SessionPhase,
    SwipeDirection,
    Synthesis,
)
from ideaforge.services.refinement import ARCHITECT_QUESTIONS, PM_QUESTIONS


async def spark_session(container, liked: int = 2):
    session = await container.sessions.start_session("user-1", AppType.PRODUCTIVITY, 3)
    ideas = (await container.spark.generate_ideas(session.id)).ideas
    for idea in ideas[:liked]:
        await container.spark.record_swipe(session.id, "user-1", idea.id, SwipeDirection.RIGHT, 2000)
    for idea in ideas[liked:]:
        await container.spark.record_swipe(session.id, "user-1", idea.id, SwipeDirection.LEFT, 500)
    return session, ideas


async def expanded_session(container):
    session, _ = await spark_session(container)
    await container.mutations.generate_mutations(session.id)
    expansion = await container.features.expand_features(session.id)
    return session, expansion.variations


async def refinement_session(container):
    session, variations = await expanded_session(container)
    await container.synthesis.submit_selection(session.id, [v.id for v in variations[:2]])
    return session


def full_answers(questions):
    return [AnswerInput(question_number=i + 1, answer_text=f"Answer {i + 1}") for i in range(len(questions))]


class TestMutationService:
    @pytest.mark.asyncio
    async def test_mutates_top_liked_ideas_and_advances(self, container):
        # Arrange
        session, ideas = await spark_session(container)

        # Act
        response = await container.mutations.generate_mutations(session.id)

        # Assert
        assert len(response.mutations) == 8
        assert response.failures == []
        parents = {pid for m in response.mutations for pid in m.parent_idea_ids}
        assert parents <= {ideas[0].id, ideas[1].id}
        stored = await container.sessions.get_session(session.id)
        assert stored.current_phase == SessionPhase.MUTATION

    @pytest.mark.asyncio
    async def test_requires_a_liked_idea(self, container):
        session, _ = await spark_session(container, liked=0)

        with pytest.raises(ValidationError):
            await container.mutations.generate_mutations(session.id)

    @pytest.mark.asyncio
    async def test_rating_orders_top_mutations(self, container):
        session, _ = await spark_session(container)
        mutations = (await container.mutations.generate_mutations(session.id)).mutations

        await container.mutations.rate_mutation(session.id, mutations[3].id, 9.0)
        top = await container.mutations.get_top_mutations(session.id, count=1)

        assert top[0].id == mutations[3].id

    @pytest.mark.asyncio
    async def test_unknown_mutation(self, container):
        session, _ = await spark_session(container)
        await container.mutations.generate_mutations(session.id)

        with pytest.raises(NotFoundError):
            await container.mutations.rate_mutation(session.id, "nope", 1.0)


class TestFeatureExpansionService:
    @pytest.mark.asyncio
    async def test_expands_top_three_mutations(self, container):
        session, variations = await expanded_session(container)

        mutation_ids = {v.mutation_id for v in variations}
        assert len(mutation_ids) == 3
        assert len(variations) == 9
        stored = await container.sessions.get_session(session.id)
        assert stored.current_phase == SessionPhase.FEATURE_EXPANSION

    @pytest.mark.asyncio
    async def test_rating_must_be_one_to_five(self, container):
        session, variations = await expanded_session(container)

        with pytest.raises(ValidationError):
            await container.features.rate_variation(session.id, variations[0].id, 6)

        rated = await container.features.rate_variation(session.id, variations[0].id, 5)
        assert rated.score == 5.0

    @pytest.mark.asyncio
    async def test_explicit_unknown_mutation_id(self, container):
        session, _ = await spark_session(container)
        await container.mutations.generate_mutations(session.id)

        with pytest.raises(NotFoundError):
            await container.features.expand_features(session.id, mutation_ids=["ghost"])


class TestSynthesisService:
    @pytest.mark.asyncio
    async def test_selection_synthesizes_and_moves_to_product_refinement(self, container):
        # Arrange
        session, variations = await expanded_session(container)
        chosen = [v.id for v in variations[:3]]

        # Act
        response = await container.synthesis.submit_selection(session.id, chosen)

        # Assert
        assert response.synthesized is True
        assert set(response.synthesis.retained_elements) == set(chosen)
        assert response.current_phase == SessionPhase.PRODUCT_REFINEMENT
        assert (await container.synthesis.get_synthesis(session.id)).id == response.synthesis.id

    @pytest.mark.asyncio
    async def test_selection_replaces_earlier_synthesis(self, container):
        # Arrange
        session, variations = await expanded_session(container)
        stale = Synthesis(
            session_id=session.id,
            source_idea_ids=["old-a", "old-b"],
            merged_title="Stale",
            merged_description="left over",
            thematic_bridge="none",
            retained_elements={},
        )
        await container.store.save(stale)

        # Act
        response = await container.synthesis.submit_selection(session.id, [v.id for v in variations[:2]])

        # Assert
        stored = await container.store.list_by_session(Synthesis, session.id)
        assert [s.id for s in stored] == [response.synthesis.id]

    @pytest.mark.asyncio
    async def test_single_selection_skips_synthesis(self, container):
        session, variations = await expanded_session(container)
        container.synthesis.engine.generator = AsyncMock()

        response = await container.synthesis.submit_selection(session.id, [variations[0].id])

        assert response.synthesized is False
        container.synthesis.engine.generator.synthesize.assert_not_awaited()
        with pytest.raises(NotFoundError):
            await container.synthesis.get_synthesis(session.id)

    @pytest.mark.asyncio
    async def test_empty_selection_rejected(self, container):
        session, _ = await expanded_session(container)

        with pytest.raises(ValidationError):
            await container.synthesis.submit_selection(session.id, [])

    @pytest.mark.asyncio
    async def test_selection_before_feature_expansion_is_a_phase_violation(self, container):
        session, ideas = await spark_session(container)

        with pytest.raises(PhaseViolationError):
            await container.synthesis.submit_selection(session.id, [ideas[0].id, ideas[1].id])

    @pytest.mark.asyncio
    async def test_selectable_summaries(self, container):
        session, _ = await expanded_session(container)

        selectable = await container.synthesis.list_selectable(session.id)

        assert len(selectable) == 9
        assert "features (M:2, S:1, C:1)" in selectable[0].summary


class TestRefinementService:
    @pytest.mark.asyncio
    async def test_pm_then_architect_then_visual(self, container):
        # Arrange
        session = await refinement_session(container)

        # Act
        pm = await container.refinement.submit_answers(session.id, full_answers(PM_QUESTIONS))
        architect = await container.refinement.submit_answers(session.id, full_answers(ARCHITECT_QUESTIONS))

        # Assert
        assert pm.next_phase == SessionPhase.TECHNICAL_REFINEMENT
        assert pm.refinement_complete is False
        assert architect.next_phase == SessionPhase.VISUAL
        assert architect.refinement_complete is True

    @pytest.mark.asyncio
    async def test_partial_answers_stay_in_phase(self, container):
        session = await refinement_session(container)

        response = await container.refinement.submit_answers(
            session.id, [AnswerInput(question_number=1, answer_text="Parents")]
        )

        assert response.next_phase is None
        assert response.current_phase == SessionPhase.PRODUCT_REFINEMENT
        questions = await container.refinement.get_questions(session.id)
        assert questions.phase == RefinementPhase.PM
        assert questions.answered_count == 1
        assert questions.questions[0].existing_answer == "Parents"

    @pytest.mark.asyncio
    async def test_reanswering_replaces_previous_answer(self, container):
        session = await refinement_session(container)

        await container.refinement.submit_answers(session.id, [AnswerInput(question_number=2, answer_text="Old")])
        await container.refinement.submit_answers(session.id, [AnswerInput(question_number=2, answer_text="New")])

        answers = await container.refinement.list_answers(session.id, RefinementPhase.PM)
        assert [a.answer_text for a in answers] == ["New"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "answer",
        [
            AnswerInput(question_number=11, answer_text="out of range"),
            AnswerInput(question_number=1, answer_text="   "),
            AnswerInput(question_number=1, answer_text="x" * 2001),
        ],
    )
    async def test_invalid_answers_rejected(self, container, answer):
        session = await refinement_session(container)

        with pytest.raises(ValidationError):
            await container.refinement.submit_answers(session.id, [answer])
