from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from conftest import make_session
from ideaforge.errors import PhaseViolationError, RateLimitedError, ValidationError
from ideaforge.models.schemas import GenerationStatus, SessionPhase


@pytest_asyncio.fixture
async def refined_session(container):
    session = make_session(phase=SessionPhase.PRODUCT_REFINEMENT)
    await container.store.save(session)
    return session


class TestGenerateVisuals:
    @pytest.mark.asyncio
    async def test_generates_default_count_and_moves_to_visual(self, container, refined_session, tmp_path):
        # Act
        response = await container.visuals.generate_visuals(refined_session.id)

        # Assert
        assert len(response.visuals) == 3
        assert response.status == GenerationStatus.COMPLETED
        assert response.visuals[0].blob_url.startswith(f"/outputs/{refined_session.id}/")
        assert response.visuals[0].style_attributes.layout_style == "Dashboard"
        assert response.visuals[1].style_attributes.layout_style == "Card-based"
        assert len(list((tmp_path / "outputs" / refined_session.id).iterdir())) == 3
        stored = await container.sessions.get_session(refined_session.id)
        assert stored.current_phase == SessionPhase.VISUAL

    @pytest.mark.asyncio
    async def test_never_exceeds_four_visuals(self, container, refined_session):
        await container.visuals.generate_visuals(refined_session.id, count=3)

        second = await container.visuals.generate_visuals(refined_session.id, count=3)

        assert len(second.visuals) == 1
        with pytest.raises(ValidationError):
            await container.visuals.generate_visuals(refined_session.id)

    @pytest.mark.asyncio
    async def test_style_hint_reaches_prompt(self, container, refined_session):
        response = await container.visuals.generate_visuals(
            refined_session.id, count=1, style_hint="pastel and rounded"
        )

        assert "User style preference: pastel and rounded" in response.visuals[0].prompt

    @pytest.mark.asyncio
    async def test_not_allowed_before_refinement(self, container):
        session = make_session(phase=SessionPhase.MUTATION)
        await container.store.save(session)

        with pytest.raises(PhaseViolationError):
            await container.visuals.generate_visuals(session.id)


class TestOfflineQueue:
    @pytest.mark.asyncio
    async def test_rate_limit_queues_rest_of_batch(self, container, generator, refined_session):
        # Arrange
        generator.generate_image = AsyncMock(
            side_effect=[b"png-1", RateLimitedError("Provider throttled", attempts=4)]
        )

        # Act
        response = await container.visuals.generate_visuals(refined_session.id, count=3)

        # Assert
        assert len(response.visuals) == 1
        assert response.queued_count == 2
        assert response.status == GenerationStatus.QUEUED
        assert generator.generate_image.await_count == 2
        status = await container.visuals.generation_status(refined_session.id)
        assert status.status == GenerationStatus.QUEUED
        assert status.pending_count == 2
        assert status.visual_count == 1

    @pytest.mark.asyncio
    async def test_pending_requests_count_against_the_cap(self, container, generator, refined_session):
        generator.generate_image = AsyncMock(
            side_effect=[b"png-1", RateLimitedError("Provider throttled")]
        )
        await container.visuals.generate_visuals(refined_session.id, count=3)
        generator.generate_image = AsyncMock(return_value=b"png")

        response = await container.visuals.generate_visuals(refined_session.id, count=3)

        assert len(response.visuals) == 1

    @pytest.mark.asyncio
    async def test_replay_drains_queue_in_order(self, container, generator, refined_session, sleep):
        # Arrange
        generator.generate_image = AsyncMock(
            side_effect=[b"png-1", RateLimitedError("Provider throttled")]
        )
        await container.visuals.generate_visuals(refined_session.id, count=3)
        generator.generate_image = AsyncMock(return_value=b"png")

        # Act
        replay = await container.visuals.replay_queued(refined_session.id)

        # Assert
        assert replay.replayed == 2
        assert replay.remaining == 0
        assert [v.style_attributes.layout_style for v in replay.visuals] == ["Card-based", "Minimal"]
        assert sleep.calls == [2.0]
        status = await container.visuals.generation_status(refined_session.id)
        assert status.status == GenerationStatus.COMPLETED
        assert status.visual_count == 3

    @pytest.mark.asyncio
    async def test_replay_stops_at_first_failure(self, container, generator, refined_session):
        generator.generate_image = AsyncMock(
            side_effect=[b"png-1", RateLimitedError("Provider throttled")]
        )
        await container.visuals.generate_visuals(refined_session.id, count=3)
        generator.generate_image = AsyncMock(side_effect=RateLimitedError("Still throttled"))

        replay = await container.visuals.replay_queued(refined_session.id)

        assert replay.replayed == 0
        assert replay.remaining == 2
        assert container.offline_queue.pending(refined_session.id)[0].retry_count == 1


class TestSelectVisual:
    @pytest.mark.asyncio
    async def test_only_one_visual_is_selected(self, container, refined_session):
        visuals = (await container.visuals.generate_visuals(refined_session.id)).visuals

        await container.visuals.select_visual(refined_session.id, visuals[0].id)
        selected = await container.visuals.select_visual(refined_session.id, visuals[2].id)

        assert selected.is_selected is True
        stored = await container.visuals.list_visuals(refined_session.id)
        assert [v.id for v in stored if v.is_selected] == [visuals[2].id]


class TestProgressEvents:
    @pytest.mark.asyncio
    async def test_queued_visual_reports_error_and_completion(self, container, generator, refined_session):
        # Arrange
        notifier = AsyncMock()
        container.visuals.notifier = notifier
        generator.generate_image = AsyncMock(side_effect=RateLimitedError("Provider throttled"))

        # Act
        await container.visuals.generate_visuals(refined_session.id, count=2)

        # Assert
        notifier.broadcast_error.assert_awaited_once_with(
            refined_session.id, "RateLimited", "Provider throttled"
        )
        notifier.broadcast_complete.assert_awaited_once_with(
            refined_session.id, {"step": "visuals", "generated": 0, "queued": 2}
        )
