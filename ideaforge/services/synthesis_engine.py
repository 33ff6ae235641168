import logging

from ideaforge.errors import UnparsableResponseError, ValidationError
from ideaforge.models.schemas import IdeaSource, SynthesisResult
from ideaforge.services.generator import CandidateGenerator

logger = logging.getLogger(__name__)

MIN_SOURCES = 2
MAX_SOURCES = 10
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
FALLBACK_BRIDGE = "These ideas share common themes of innovation and user value."


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


class SynthesisEngine:
    """Merges 2-10 candidate ideas into one concept with a thematic bridge."""

    def __init__(self, generator: CandidateGenerator):
        self.generator = generator

    async def synthesize(self, sources: list[IdeaSource]) -> SynthesisResult:
        """
        Merge ``sources`` into a single concept.

        The result always has a retained-elements entry for every source.
        If the generator's answer cannot be parsed, a concatenation-based
        result flagged ``degraded`` is returned instead.

        Raises:
            ValidationError: Fewer than 2 or more than 10 sources, or duplicate ids
        """
        if len(sources) < MIN_SOURCES:
            raise ValidationError(
                f"Synthesis requires at least {MIN_SOURCES} sources, got {len(sources)}",
                {"source_count": len(sources)},
            )
        if len(sources) > MAX_SOURCES:
            raise ValidationError(
                f"Synthesis accepts at most {MAX_SOURCES} sources, got {len(sources)}",
                {"source_count": len(sources)},
            )
        if len({s.id for s in sources}) != len(sources):
            raise ValidationError("Synthesis sources must be distinct")

        try:
            result = await self.generator.synthesize(sources)
        except UnparsableResponseError as e:
            logger.warning(f"Synthesis fallback for {len(sources)} sources: {e}")
            return self.fallback(sources)

        return self._normalize(result, sources)

    def _normalize(self, result: SynthesisResult, sources: list[IdeaSource]) -> SynthesisResult:
        retained: dict[str, list[str]] = {}
        for source in sources:
            elements = [e for e in result.retained_elements.get(source.id, []) if e.strip()]
            if not elements:
                logger.info(f"Synthesis omitted source {source.id}; injecting default elements")
                elements = [source.title, "Core concept"]
            retained[source.id] = elements

        return SynthesisResult(
            merged_title=_truncate(result.merged_title, MAX_TITLE_LENGTH),
            merged_description=_truncate(result.merged_description, MAX_DESCRIPTION_LENGTH),
            thematic_bridge=result.thematic_bridge or FALLBACK_BRIDGE,
            retained_elements=retained,
            degraded=result.degraded,
        )

    @staticmethod
    def fallback(sources: list[IdeaSource]) -> SynthesisResult:
        first_words = [s.title.split()[0] for s in sources if s.title.split()]
        titles = ", ".join(s.title for s in sources)
        return SynthesisResult(
            merged_title=_truncate(" × ".join(first_words) or "Unified Concept", MAX_TITLE_LENGTH),
            merged_description=_truncate(
                f"A unified concept combining: {titles}. {sources[0].description}",
                MAX_DESCRIPTION_LENGTH,
            ),
            thematic_bridge=FALLBACK_BRIDGE,
            retained_elements={s.id: list(s.key_features) or [s.title] for s in sources},
            degraded=True,
        )
