from unittest.mock import AsyncMock

import pytest

from ideaforge.errors import UnparsableResponseError, ValidationError
from ideaforge.models.schemas import IdeaSource, SynthesisResult
from ideaforge.services.synthesis_engine import FALLBACK_BRIDGE, SynthesisEngine


def sources(count: int) -> list[IdeaSource]:
    return [
        IdeaSource(
            id=f"idea-{i}",
            title=f"Concept{i} Planner",
            description=f"Description {i}",
            key_features=[f"feature {i}"],
        )
        for i in range(count)
    ]


class TestSynthesisEngine:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, 1])
    async def test_fewer_than_two_sources_rejected(self, generator, count):
        with pytest.raises(ValidationError):
            await SynthesisEngine(generator).synthesize(sources(count))

    @pytest.mark.asyncio
    async def test_more_than_ten_sources_rejected(self, generator):
        with pytest.raises(ValidationError):
            await SynthesisEngine(generator).synthesize(sources(11))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [2, 5, 10])
    async def test_retained_keys_match_sources(self, generator, count):
        items = sources(count)

        result = await SynthesisEngine(generator).synthesize(items)

        assert set(result.retained_elements) == {s.id for s in items}

    @pytest.mark.asyncio
    async def test_missing_and_unknown_sources_are_normalized(self):
        # Arrange
        generator = AsyncMock()
        generator.synthesize.return_value = SynthesisResult(
            merged_title="T" * 150,
            merged_description="Merged",
            thematic_bridge="",
            retained_elements={"idea-0": ["kept"], "ghost": ["invented"]},
        )
        items = sources(2)

        # Act
        result = await SynthesisEngine(generator).synthesize(items)

        # Assert
        assert result.retained_elements == {
            "idea-0": ["kept"],
            "idea-1": ["Concept1 Planner", "Core concept"],
        }
        assert len(result.merged_title) == 100
        assert result.thematic_bridge == FALLBACK_BRIDGE

    @pytest.mark.asyncio
    async def test_unparsable_response_falls_back(self):
        generator = AsyncMock()
        generator.synthesize.side_effect = UnparsableResponseError("not json")

        result = await SynthesisEngine(generator).synthesize(sources(3))

        assert result.degraded is True
        assert result.merged_title == "Concept0 × Concept1 × Concept2"
        assert set(result.retained_elements) == {"idea-0", "idea-1", "idea-2"}
