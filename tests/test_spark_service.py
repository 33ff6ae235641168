from unittest.mock import AsyncMock

import pytest

from ideaforge.errors import NotFoundError, PhaseViolationError, UnparsableResponseError, ValidationError
from ideaforge.models.schemas import AppType, Idea, SessionPhase, Swipe, SwipeDirection


async def start(container):
    return await container.sessions.start_session("user-1", AppType.PRODUCTIVITY, 3)


async def swipe_all(container, session_id, ideas, direction, durations):
    for idea, duration in zip(ideas, durations):
        await container.spark.record_swipe(session_id, "user-1", idea.id, direction, duration)


class TestIdeaBatches:
    @pytest.mark.asyncio
    async def test_batch_numbers_and_limit(self, container):
        # Arrange
        session = await start(container)

        # Act
        first = await container.spark.generate_ideas(session.id)
        second = await container.spark.generate_ideas(session.id)

        # Assert
        assert first.batch_number == 1
        assert first.has_more_batches is True
        assert second.batch_number == 2
        assert second.has_more_batches is False
        assert len(first.ideas) == 5
        with pytest.raises(ValidationError):
            await container.spark.generate_ideas(session.id)

    @pytest.mark.asyncio
    async def test_unparsable_response_yields_degraded_ideas(self, container):
        session = await start(container)
        container.spark.generator = AsyncMock()
        container.spark.generator.generate_ideas.side_effect = UnparsableResponseError("prose")

        batch = await container.spark.generate_ideas(session.id)

        assert batch.degraded is True
        assert batch.ideas[0].title == "Generated Idea 1"
        assert all(i.degraded for i in batch.ideas)

    @pytest.mark.asyncio
    async def test_second_batch_receives_swipe_learning(self, container):
        # Arrange
        session = await start(container)
        batch = await container.spark.generate_ideas(session.id)
        await container.spark.record_swipe(session.id, "user-1", batch.ideas[0].id, SwipeDirection.UP, 2000)
        await container.spark.record_swipe(session.id, "user-1", batch.ideas[1].id, SwipeDirection.LEFT, 2000)
        generator = AsyncMock(wraps=container.generator)
        container.spark.generator = generator

        # Act
        await container.spark.generate_ideas(session.id)

        # Assert
        context, bias = generator.generate_ideas.await_args.args
        assert context.batch_number == 2
        assert bias.super_liked_themes == batch.ideas[0].dna_keywords
        assert bias.swipe_count == 2

    @pytest.mark.asyncio
    async def test_unknown_session(self, container):
        with pytest.raises(NotFoundError):
            await container.spark.generate_ideas("missing")


class TestSwipes:
    @pytest.mark.asyncio
    async def test_swipe_updates_score_and_personality(self, container):
        # Arrange
        session = await start(container)
        idea = (await container.spark.generate_ideas(session.id)).ideas[0]

        # Act
        response = await container.spark.record_swipe(
            session.id, "user-1", idea.id, SwipeDirection.RIGHT, 5000
        )

        # Assert
        assert response.updated_score == pytest.approx(1.5)
        assert response.swipe.speed_category.value == "Slow"
        personality = await container.personality.get_or_create("user-1")
        assert personality.product_biases

    @pytest.mark.asyncio
    async def test_failed_write_keeps_swipe_and_score_unchanged(self, container):
        # Arrange
        session = await start(container)
        idea = (await container.spark.generate_ideas(session.id)).ideas[0]
        container.store.save_many = AsyncMock(side_effect=RuntimeError("disk full"))

        # Act
        with pytest.raises(RuntimeError):
            await container.spark.record_swipe(session.id, "user-1", idea.id, SwipeDirection.RIGHT, 5000)

        # Assert
        assert await container.store.list_by_session(Swipe, session.id) == []
        assert (await container.store.get(Idea, idea.id)).score == idea.score

    @pytest.mark.asyncio
    async def test_repeated_dislikes_clamp_at_zero(self, container):
        session = await start(container)
        idea = (await container.spark.generate_ideas(session.id)).ideas[0]

        for _ in range(5):
            response = await container.spark.record_swipe(
                session.id, "user-1", idea.id, SwipeDirection.LEFT, 4000
            )
            assert response.updated_score >= 0

    @pytest.mark.asyncio
    async def test_negative_duration_rejected(self, container):
        session = await start(container)
        idea = (await container.spark.generate_ideas(session.id)).ideas[0]

        with pytest.raises(ValidationError):
            await container.spark.record_swipe(session.id, "user-1", idea.id, SwipeDirection.RIGHT, -1)

    @pytest.mark.asyncio
    async def test_swipe_outside_spark_is_a_phase_violation(self, container):
        # Arrange
        session = await start(container)
        idea = (await container.spark.generate_ideas(session.id)).ideas[0]
        await container.spark.record_swipe(session.id, "user-1", idea.id, SwipeDirection.RIGHT, 1500)
        await container.mutations.generate_mutations(session.id)

        # Act / Assert
        with pytest.raises(PhaseViolationError):
            await container.spark.record_swipe(session.id, "user-1", idea.id, SwipeDirection.RIGHT, 1500)


class TestTopIdeas:
    @pytest.mark.asyncio
    async def test_all_disliked_returns_nothing_and_offers_restart(self, container):
        # Arrange
        session = await start(container)
        ideas = (await container.spark.generate_ideas(session.id)).ideas
        ideas += (await container.spark.generate_ideas(session.id)).ideas
        await swipe_all(container, session.id, ideas, SwipeDirection.LEFT, [1500] * 10)

        # Act
        top = await container.spark.get_top_ideas(session.id)

        # Assert
        assert top.ideas == []
        assert top.analysis.all_disliked is True
        assert top.analysis.should_offer_restart is True
        assert top.analysis.suggested_message

    @pytest.mark.asyncio
    async def test_all_liked_ranking_uses_confidence(self, container):
        # Arrange
        session = await start(container)
        ideas = (await container.spark.generate_ideas(session.id)).ideas
        ideas += (await container.spark.generate_ideas(session.id)).ideas
        # Raw scores favour ideas[1] (2.5 vs 2.0); confidence puts ideas[0] first (4.0 vs 3.75)
        await container.spark.record_swipe(session.id, "user-1", ideas[0].id, SwipeDirection.RIGHT, 2000)
        await container.spark.record_swipe(session.id, "user-1", ideas[1].id, SwipeDirection.RIGHT, 2000)
        await container.spark.record_swipe(session.id, "user-1", ideas[1].id, SwipeDirection.RIGHT, 4000)
        await container.spark.record_swipe(session.id, "user-1", ideas[0].id, SwipeDirection.UP, 200)
        await swipe_all(container, session.id, ideas[2:], SwipeDirection.RIGHT, [500] * 6 + [2000] * 2)

        # Act
        top = await container.spark.get_top_ideas(session.id, count=3)

        # Assert
        assert top.analysis.all_liked is True
        assert [i.id for i in top.ideas[:2]] == [ideas[0].id, ideas[1].id]
        stored = await container.sessions.get_session(session.id)
        assert stored.top_idea_ids == [i.id for i in top.ideas]

    @pytest.mark.asyncio
    async def test_ideas_generation_moves_scope_session_to_spark(self, container):
        session = await container.sessions.start_session(
            "user-1", AppType.GAME, 2, phase=SessionPhase.SCOPE
        )

        await container.spark.generate_ideas(session.id)

        assert (await container.sessions.get_session(session.id)).current_phase == SessionPhase.SPARK
