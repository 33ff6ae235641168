import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from ideaforge.errors import GenerationError, PartialBatchFailureError, PipelineError, ValidationError
from ideaforge.models.schemas import (
    BatchItemFailure,
    Feature,
    FeaturePriority,
    FeatureVariation,
    GeneratedVariation,
    Mutation,
)
from ideaforge.services.generator import CandidateGenerator

logger = logging.getLogger(__name__)

VARIATION_THEMES = [
    "Minimalist MVP",
    "Enterprise-Ready",
    "Privacy-First",
    "Social-Heavy",
    "AI-Powered",
]

MIN_FEATURES = 3
MAX_FEATURES = 10

PRIORITY_ALIASES = {
    "must": FeaturePriority.MUST,
    "should": FeaturePriority.SHOULD,
    "could": FeaturePriority.COULD,
    "wont": FeaturePriority.WONT,
    "won't": FeaturePriority.WONT,
}


def map_priority(value: str) -> FeaturePriority:
    return PRIORITY_ALIASES.get(value.strip().lower(), FeaturePriority.COULD)


@dataclass
class ExpansionBatchOutcome:
    variations: list[FeatureVariation] = field(default_factory=list)
    failures: list[BatchItemFailure] = field(default_factory=list)


class FeatureExpansionEngine:
    """Requests feature sets for several themes in one generation call."""

    def __init__(self, generator: CandidateGenerator):
        self.generator = generator

    @staticmethod
    def themes_for(count: int) -> list[str]:
        if not 1 <= count <= len(VARIATION_THEMES):
            raise ValidationError(
                f"Theme count must be between 1 and {len(VARIATION_THEMES)}, got {count}"
            )
        return VARIATION_THEMES[:count]

    def _to_variation(
        self, mutation: Mutation, generated: GeneratedVariation, theme: str
    ) -> FeatureVariation | None:
        features = [
            Feature(
                name=f.name.strip(),
                description=f.description.strip(),
                priority=map_priority(f.priority),
            )
            for f in generated.features
            if f.name.strip()
        ][:MAX_FEATURES]

        if len(features) < MIN_FEATURES:
            logger.info(
                f"Dropping '{theme}' variation for mutation {mutation.id}: "
                f"{len(features)} valid feature(s), need at least {MIN_FEATURES}"
            )
            return None

        return FeatureVariation(
            session_id=mutation.session_id,
            mutation_id=mutation.id,
            variation_theme=theme,
            features=features,
            service_integrations=generated.service_integrations,
        )

    async def expand(self, mutation: Mutation, theme_count: int = 3) -> list[FeatureVariation]:
        """
        Build feature variations for ``mutation`` with a single generator call.

        Variations whose theme is missing or unknown take the requested theme
        at the same position. Variations left with fewer than three valid
        features are dropped.
        """
        themes = self.themes_for(theme_count)
        generated = await self.generator.generate_feature_set(mutation, themes)

        variations: list[FeatureVariation] = []
        used_themes: set[str] = set()
        for index, item in enumerate(generated):
            theme = next((t for t in themes if t.lower() == item.theme.strip().lower()), None)
            if theme is None or theme in used_themes:
                theme = next((t for t in themes[index:] + themes if t not in used_themes), None)
            if theme is None:
                break
            variation = self._to_variation(mutation, item, theme)
            if variation is not None:
                used_themes.add(theme)
                variations.append(variation)

        logger.info(
            f"Mutation {mutation.id}: {len(variations)}/{len(themes)} variations from one call"
        )
        return variations

    async def expand_batch(
        self,
        mutations: list[Mutation],
        theme_count: int = 3,
        persist: Callable[[list[FeatureVariation]], Awaitable[None]] | None = None,
    ) -> ExpansionBatchOutcome:
        """
        Expand each mutation independently.

        ``persist`` is awaited once per mutation with that mutation's
        variations, so each mutation's set is stored together or not at all.
        The batch raises only when every mutation fails.
        """
        self.themes_for(theme_count)
        outcome = ExpansionBatchOutcome()

        for mutation in mutations:
            try:
                variations = await self.expand(mutation, theme_count)
                if not variations:
                    raise GenerationError(f"No usable feature variations for mutation {mutation.id}")
                if persist is not None:
                    await persist(variations)
                outcome.variations.extend(variations)
            except asyncio.CancelledError:
                raise
            except PipelineError as e:
                logger.warning(f"Feature expansion failed for mutation {mutation.id}: {e}")
                outcome.failures.append(
                    BatchItemFailure(item_id=mutation.id, kind=e.kind.value, message=e.message)
                )

        if mutations and not outcome.variations:
            raise PartialBatchFailureError(
                "feature expansion", [f.model_dump() for f in outcome.failures]
            )

        return outcome
