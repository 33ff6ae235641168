import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from ideaforge.errors import GenerationError, RateLimitedError, UnparsableResponseError
from ideaforge.models.schemas import (
    AppType,
    IdeaSource,
    LearningContext,
    MutationType,
    SessionContext,
)
from ideaforge.services.generator import LLMCandidateGenerator
from ideaforge.services.llm import LLMService
from ideaforge.services.response_cache import ResponseCache
from ideaforge.services.retry_policy import GenerationRetryPolicy

from conftest import make_idea


@pytest.fixture
def llm() -> AsyncMock:
    return AsyncMock(spec=LLMService)


@pytest.fixture
def llm_generator(llm, clock, sleep) -> LLMCandidateGenerator:
    return LLMCandidateGenerator(
        llm=llm,
        images=MagicMock(),
        cache=ResponseCache(clock=clock),
        retry_policy=GenerationRetryPolicy(sleep=sleep),
    )


def session_context(batch_number: int = 1, **kwargs) -> SessionContext:
    return SessionContext(
        session_id="s1",
        app_type=AppType.MOBILE,
        complexity_level=2,
        batch_number=batch_number,
        count=5,
        **kwargs,
    )


class TestIdeaGeneration:
    @pytest.mark.asyncio
    async def test_parses_wrapped_array(self, llm, llm_generator):
        # Arrange
        llm.chat.return_value = json.dumps(
            {
                "ideas": [
                    {"title": "Plant Pal", "description": "Care reminders", "dnaKeywords": ["plants", "care"]},
                    {"title": "", "description": "missing title"},
                ]
            }
        )

        # Act
        ideas = await llm_generator.generate_ideas(session_context(), LearningContext())

        # Assert
        assert len(ideas) == 1
        assert ideas[0].title == "Plant Pal"
        assert ideas[0].dna_keywords == ["plants", "care"]

    @pytest.mark.asyncio
    async def test_identical_prompt_is_served_from_cache(self, llm, llm_generator):
        llm.chat.return_value = '[{"title": "A", "description": "B"}]'

        await llm_generator.generate_ideas(session_context(), LearningContext())
        await llm_generator.generate_ideas(session_context(), LearningContext())

        assert llm.chat.await_count == 1

    @pytest.mark.asyncio
    async def test_unparsable_response_is_evicted_and_reported(self, llm, llm_generator):
        # Arrange
        llm.chat.return_value = "Sorry, I can't do that."

        # Act
        with pytest.raises(UnparsableResponseError):
            await llm_generator.generate_ideas(session_context(), LearningContext())
        llm.chat.return_value = '[{"title": "A", "description": "B"}]'
        ideas = await llm_generator.generate_ideas(session_context(), LearningContext())

        # Assert
        assert ideas[0].title == "A"
        assert llm.chat.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, llm, llm_generator, sleep):
        llm.chat.side_effect = [RateLimitedError("429"), '[{"title": "A", "description": "B"}]']

        ideas = await llm_generator.generate_ideas(session_context(), LearningContext())

        assert len(ideas) == 1
        assert sleep.calls == [10.0]


class TestPromptBuilding:
    def test_first_batch_uses_personality_bias(self, llm_generator):
        context = session_context(preferred_themes=["fitness"], avoided_patterns=["ads"])

        prompt = llm_generator.build_idea_prompt(context, LearningContext())

        assert "fitness" in prompt
        assert "ads" in prompt

    def test_later_batch_uses_swipe_directives(self, llm_generator):
        bias = LearningContext(liked_themes=["offline"], disliked_themes=["crypto"], swipe_count=5)

        prompt = llm_generator.build_idea_prompt(session_context(batch_number=2), bias)

        assert "The user likes ideas involving: offline" in prompt
        assert "AVOID themes like: crypto" in prompt

    def test_mutation_prompt_names_rejected_themes(self, llm_generator):
        liked = [make_idea("s1", "Quest Log", ["gamification"])]
        disliked = [make_idea("s1", "Ad Feed", ["ads"])]

        prompt = llm_generator.build_mutation_prompt(liked, disliked, MutationType.REPURPOSING, 2)

        assert "REPURPOSING" in prompt
        assert "ads" in prompt


class TestSynthesisParsing:
    @pytest.mark.asyncio
    async def test_camel_case_fields(self, llm, llm_generator):
        llm.chat.return_value = json.dumps(
            {
                "mergedTitle": "Garden Quest",
                "mergedDescription": "Plants meet quests",
                "thematicBridge": "Growth",
                "retainedElements": {"a": ["watering"], "b": "xp, levels"},
            }
        )
        sources = [
            IdeaSource(id="a", title="Plant Pal", description="Care"),
            IdeaSource(id="b", title="Quest Log", description="XP"),
        ]

        result = await llm_generator.synthesize(sources)

        assert result.merged_title == "Garden Quest"
        assert result.retained_elements == {"a": ["watering"], "b": ["xp", "levels"]}


class TestLLMService:
    @pytest.mark.asyncio
    async def test_returns_message_content(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["format"] == "json"
            assert request.url.path == "/api/chat"
            return httpx.Response(200, json={"message": {"content": "[]"}})

        service = LLMService("http://llm", "model", 5, transport=httpx.MockTransport(handler))

        assert await service.chat("hi") == "[]"

    @pytest.mark.asyncio
    async def test_429_maps_to_rate_limited(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(429, headers={"retry-after": "12"})
        )
        service = LLMService("http://llm", "model", 5, transport=transport)

        with pytest.raises(RateLimitedError) as exc_info:
            await service.chat("hi")

        assert exc_info.value.retry_after == 12.0

    @pytest.mark.asyncio
    async def test_server_error_maps_to_generation_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "oom"}))
        service = LLMService("http://llm", "model", 5, transport=transport)

        with pytest.raises(GenerationError, match="oom"):
            await service.chat("hi")

    @pytest.mark.asyncio
    async def test_empty_content_is_an_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"message": {"content": " "}}))
        service = LLMService("http://llm", "model", 5, transport=transport)

        with pytest.raises(GenerationError):
            await service.chat("hi")
