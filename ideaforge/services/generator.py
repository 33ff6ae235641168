"""Candidate generators.

``CandidateGenerator`` is the five-operation capability the pipeline talks to.
``LLMCandidateGenerator`` renders prompts and parses model output;
``MockCandidateGenerator`` returns deterministic content for offline use.
"""
import logging
from abc import ABC, abstractmethod

from ideaforge.config import Settings
from ideaforge.errors import GenerationError, UnparsableResponseError
from ideaforge.models.schemas import (
    GeneratedFeature,
    GeneratedIdea,
    GeneratedMutation,
    GeneratedVariation,
    Idea,
    IdeaSource,
    LearningContext,
    Mutation,
    MutationType,
    SessionContext,
    SynthesisResult,
)
from ideaforge.services.image_service import ImageService
from ideaforge.services.json_utils import first_str, parse_json_array, parse_json_object, str_list
from ideaforge.services.learning import LearningContextBuilder
from ideaforge.services.llm import LLMService
from ideaforge.services.response_cache import ResponseCache
from ideaforge.services.retry_policy import GenerationRetryPolicy

logger = logging.getLogger(__name__)

COMPLEXITY_DESCRIPTIONS = {
    1: "simple, weekend project",
    2: "moderate, 1-2 week project",
    3: "complex, month-long project",
    4: "advanced, multi-month project",
    5: "enterprise-grade, extensive project",
}

IDEA_SYSTEM_PROMPT = """You are a creative product strategist who invents app concepts.

Each idea must have:
- "title": a catchy name of 2-4 words
- "description": 60-120 words covering the core concept, the target user and the main value
- "dnaKeywords": 5-7 short lowercase theme tags (e.g. "gamification", "offline", "social")

Make every idea distinct from the others.
Respond ONLY with a JSON array: [{"title": "...", "description": "...", "dnaKeywords": ["..."]}]"""

MUTATION_SYSTEM_PROMPT = """You evolve app concepts the way a genetic algorithm evolves genomes.

- Crossover: blend the strongest traits of two parent ideas into one hybrid product.
- Repurposing: keep the parent's core mechanic but apply it to a different audience or domain.

Each mutation must have a "title" (2-5 words), a "description" (60-120 words) and a
"mutationRationale" (1-2 sentences naming the parent idea(s) and what was taken from each).
Respond ONLY with a JSON array: [{"title": "...", "description": "...", "mutationRationale": "..."}]"""

SYNTHESIS_SYSTEM_PROMPT = """You merge several app concepts into one cohesive product.

Respond ONLY with a JSON object:
{
  "mergedTitle": "2-6 word product name",
  "mergedDescription": "under 600 characters describing the unified product",
  "thematicBridge": "1-3 sentences explaining why these ideas belong together",
  "retainedElements": {"<source id>": ["element kept from that source", "..."]}
}
Every source id must appear in retainedElements."""

FEATURE_SYSTEM_PROMPT = """You are a product manager turning a concept into concrete feature sets.

For EACH requested theme produce one variation with:
- "theme": the theme name exactly as given
- "features": 5-7 items of {"name": "...", "description": "one sentence", "priority": "Must|Should|Could|Wont"}
- "serviceIntegrations": 2-4 third-party services or APIs the variation relies on
Respond ONLY with a JSON array of variations, one per theme, in the order given."""


class CandidateGenerator(ABC):
    """Produces ideas, mutations, syntheses, feature sets and images."""

    @abstractmethod
    async def generate_ideas(
        self, context: SessionContext, bias: LearningContext
    ) -> list[GeneratedIdea]:
        ...

    @abstractmethod
    async def generate_mutations(
        self,
        liked: list[Idea],
        disliked: list[Idea],
        mutation_type: MutationType,
        count: int,
    ) -> list[GeneratedMutation]:
        ...

    @abstractmethod
    async def synthesize(self, sources: list[IdeaSource]) -> SynthesisResult:
        ...

    @abstractmethod
    async def generate_feature_set(
        self, mutation: Mutation, themes: list[str]
    ) -> list[GeneratedVariation]:
        ...

    @abstractmethod
    async def generate_image(self, prompt: str) -> bytes | None:
        ...

    async def health(self) -> dict:
        return {"status": "ok", "generator": type(self).__name__}


def _describe_idea(idea: Idea) -> str:
    keywords = ", ".join(idea.dna_keywords) or "none"
    return f'"{idea.title}": {idea.description}\n  Keywords: {keywords}'


class LLMCandidateGenerator(CandidateGenerator):
    """Model-backed generator.

    Text calls go cache -> retry policy -> LLM. A response that cannot be
    parsed is evicted from the cache and reported as UnparsableResponseError.
    """

    def __init__(
        self,
        llm: LLMService,
        images: ImageService,
        cache: ResponseCache,
        retry_policy: GenerationRetryPolicy,
    ):
        self.llm = llm
        self.images = images
        self.cache = cache
        self.retry_policy = retry_policy

    async def _complete(
        self,
        category: str,
        prompt: str,
        system: str,
        temperature: float = 0.8,
    ) -> str:
        cache_prompt = f"{system}\n\n{prompt}"

        async def call_model() -> str:
            return await self.retry_policy.execute(
                lambda: self.llm.chat(prompt, system=system, temperature=temperature),
                operation_name=category,
            )

        return await self.cache.get_or_create(category, cache_prompt, call_model)

    def _evict(self, category: str, prompt: str, system: str) -> None:
        self.cache.invalidate(category, f"{system}\n\n{prompt}")

    async def health(self) -> dict:
        model_info = await self.llm.check_model()
        images_ok = await self.images.health_check()
        llm_ok = bool(model_info.get("available")) and bool(model_info.get("text_model_found"))
        return {
            "status": "ok" if llm_ok and images_ok else "degraded",
            "generator": type(self).__name__,
            "llm": model_info,
            "images": {"status": "ok" if images_ok else "unavailable", "url": self.images.base_url},
        }

    def build_idea_prompt(self, context: SessionContext, bias: LearningContext) -> str:
        complexity = COMPLEXITY_DESCRIPTIONS.get(context.complexity_level, "moderate project")
        lines = [
            f"Generate {context.count} unique {context.app_type.value.lower()} app ideas.",
            f"Target complexity: {complexity} (level {context.complexity_level}/5).",
        ]

        if context.batch_number == 1:
            if context.preferred_themes:
                lines.append(f"This user historically favours: {', '.join(context.preferred_themes)}.")
            if context.preferred_technologies:
                lines.append(f"Preferred technologies: {', '.join(context.preferred_technologies)}.")
            if context.avoided_patterns:
                lines.append(f"Avoid patterns this user dislikes: {', '.join(context.avoided_patterns)}.")
        else:
            directives = LearningContextBuilder.to_prompt_directives(bias)
            if directives:
                lines.append(directives)
            lines.append(
                f"This is batch {context.batch_number}: evolve toward what the user liked "
                "while still offering fresh directions."
            )

        return "\n".join(lines)

    async def generate_ideas(
        self, context: SessionContext, bias: LearningContext
    ) -> list[GeneratedIdea]:
        prompt = self.build_idea_prompt(context, bias)
        response = await self._complete("ideas", prompt, IDEA_SYSTEM_PROMPT, temperature=0.9)

        try:
            items = parse_json_array(response)
        except ValueError as e:
            self._evict("ideas", prompt, IDEA_SYSTEM_PROMPT)
            raise UnparsableResponseError(f"Idea response was not a JSON array: {e}", response)

        ideas = []
        for item in items:
            if not isinstance(item, dict):
                continue
            title = first_str(item, "title", "name")
            description = first_str(item, "description", "summary")
            if not title or not description:
                continue
            keywords = str_list(item.get("dnaKeywords") or item.get("dna_keywords") or item.get("keywords"))
            ideas.append(GeneratedIdea(title=title, description=description, dna_keywords=keywords))

        if not ideas:
            self._evict("ideas", prompt, IDEA_SYSTEM_PROMPT)
            raise UnparsableResponseError("Idea response contained no usable ideas", response)

        logger.info(f"Parsed {len(ideas)} ideas for batch {context.batch_number}")
        return ideas[: context.count]

    def build_mutation_prompt(
        self,
        liked: list[Idea],
        disliked: list[Idea],
        mutation_type: MutationType,
        count: int,
    ) -> str:
        if mutation_type == MutationType.CROSSOVER:
            lines = [
                f"Create {count} CROSSOVER mutations combining these parent ideas:",
                *[f"Parent {i + 1} {_describe_idea(idea)}" for i, idea in enumerate(liked)],
                "Each hybrid must inherit recognisable traits from every parent.",
            ]
        else:
            lines = [
                f"Create {count} REPURPOSING mutations of this idea:",
                f"Source {_describe_idea(liked[0])}",
                "Keep the core mechanic but move it to a new audience, industry or context.",
            ]

        if disliked:
            avoided = sorted({kw for idea in disliked for kw in idea.dna_keywords})
            if avoided:
                lines.append(f"Avoid these themes the user rejected: {', '.join(avoided)}")

        return "\n".join(lines)

    async def generate_mutations(
        self,
        liked: list[Idea],
        disliked: list[Idea],
        mutation_type: MutationType,
        count: int,
    ) -> list[GeneratedMutation]:
        if not liked:
            raise GenerationError("Mutation needs at least one liked idea")

        prompt = self.build_mutation_prompt(liked, disliked, mutation_type, count)
        category = f"mutation-{mutation_type.value.lower()}"
        response = await self._complete(category, prompt, MUTATION_SYSTEM_PROMPT)

        try:
            items = parse_json_array(response)
        except ValueError as e:
            self._evict(category, prompt, MUTATION_SYSTEM_PROMPT)
            raise UnparsableResponseError(f"Mutation response was not a JSON array: {e}", response)

        mutations = [
            GeneratedMutation(
                title=first_str(item, "title", "name"),
                description=first_str(item, "description"),
                mutation_rationale=first_str(item, "mutationRationale", "mutation_rationale", "rationale"),
            )
            for item in items
            if isinstance(item, dict) and first_str(item, "title", "name") and first_str(item, "description")
        ]
        if not mutations:
            self._evict(category, prompt, MUTATION_SYSTEM_PROMPT)
            raise UnparsableResponseError("Mutation response contained no usable mutations", response)

        return mutations[:count]

    def build_synthesis_prompt(self, sources: list[IdeaSource]) -> str:
        lines = ["Merge these concepts into one product:"]
        for source in sources:
            features = ", ".join(source.key_features[:4]) or "none listed"
            lines.append(
                f'- {source.id}: "{source.title}" - {source.description[:120]}... [Features: {features}]'
            )
        return "\n".join(lines)

    async def synthesize(self, sources: list[IdeaSource]) -> SynthesisResult:
        prompt = self.build_synthesis_prompt(sources)
        response = await self._complete("synthesis", prompt, SYNTHESIS_SYSTEM_PROMPT, temperature=0.6)

        try:
            data = parse_json_object(response)
        except ValueError as e:
            self._evict("synthesis", prompt, SYNTHESIS_SYSTEM_PROMPT)
            raise UnparsableResponseError(f"Synthesis response was not a JSON object: {e}", response)

        title = first_str(data, "mergedTitle", "merged_title", "title")
        description = first_str(data, "mergedDescription", "merged_description", "description")
        if not title or not description:
            self._evict("synthesis", prompt, SYNTHESIS_SYSTEM_PROMPT)
            raise UnparsableResponseError("Synthesis response is missing title or description", response)

        raw_retained = data.get("retainedElements") or data.get("retained_elements") or {}
        retained = {}
        if isinstance(raw_retained, dict):
            retained = {str(k): str_list(v) for k, v in raw_retained.items()}

        return SynthesisResult(
            merged_title=title,
            merged_description=description,
            thematic_bridge=first_str(data, "thematicBridge", "thematic_bridge"),
            retained_elements=retained,
        )

    def build_feature_prompt(self, mutation: Mutation, themes: list[str]) -> str:
        lines = [
            f'Concept: "{mutation.title}"',
            mutation.description,
            "",
            f"Produce {len(themes)} feature variations, one for each theme:",
        ]
        lines.extend(f"{i + 1}. {theme}" for i, theme in enumerate(themes))
        return "\n".join(lines)

    async def generate_feature_set(
        self, mutation: Mutation, themes: list[str]
    ) -> list[GeneratedVariation]:
        prompt = self.build_feature_prompt(mutation, themes)
        response = await self._complete("features", prompt, FEATURE_SYSTEM_PROMPT, temperature=0.7)

        try:
            items = parse_json_array(response)
        except ValueError as e:
            self._evict("features", prompt, FEATURE_SYSTEM_PROMPT)
            raise UnparsableResponseError(f"Feature response was not a JSON array: {e}", response)

        variations = []
        for item in items:
            if not isinstance(item, dict):
                continue
            features = [
                GeneratedFeature(
                    name=first_str(f, "name", "title"),
                    description=first_str(f, "description"),
                    priority=first_str(f, "priority"),
                )
                for f in item.get("features") or []
                if isinstance(f, dict)
            ]
            variations.append(
                GeneratedVariation(
                    theme=first_str(item, "theme", "variationTheme", "variation_theme"),
                    features=features,
                    service_integrations=str_list(
                        item.get("serviceIntegrations") or item.get("service_integrations") or []
                    ),
                )
            )
        return variations

    async def generate_image(self, prompt: str) -> bytes | None:
        return await self.retry_policy.execute(
            lambda: self.images.generate(prompt),
            operation_name="image",
        )


# 1x1 PNG
PLACEHOLDER_PNG = bytes([
    0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A, 0x00, 0x00, 0x00, 0x0D,
    0x49, 0x48, 0x44, 0x52, 0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01,
    0x08, 0x02, 0x00, 0x00, 0x00, 0x90, 0x77, 0x53, 0xDE, 0x00, 0x00, 0x00,
    0x0C, 0x49, 0x44, 0x41, 0x54, 0x08, 0xD7, 0x63, 0xF8, 0xCF, 0xC0, 0x00,
    0x00, 0x00, 0x03, 0x00, 0x01, 0x00, 0x18, 0xDD, 0x8D, 0xB4, 0x00, 0x00,
    0x00, 0x00, 0x49, 0x45, 0x4E, 0x44, 0xAE, 0x42, 0x60, 0x82,
])

MOCK_THEMES = [
    ["habits", "gamification", "social"],
    ["ai", "automation", "productivity"],
    ["offline", "privacy", "mobile"],
    ["marketplace", "community", "subscription"],
    ["realtime", "collaboration", "web"],
    ["wellness", "tracking", "insights"],
]


class MockCandidateGenerator(CandidateGenerator):
    """Deterministic generator: same inputs, same outputs, no I/O."""

    async def generate_ideas(
        self, context: SessionContext, bias: LearningContext
    ) -> list[GeneratedIdea]:
        preferred = bias.super_liked_themes + bias.liked_themes
        ideas = []
        for i in range(context.count):
            themes = MOCK_THEMES[(i + context.batch_number - 1) % len(MOCK_THEMES)]
            keywords = list(dict.fromkeys(themes + preferred[:2]))
            keywords = [k for k in keywords if k not in bias.disliked_themes] or themes
            ideas.append(
                GeneratedIdea(
                    title=f"{context.app_type.value} {keywords[0].title()} {context.batch_number}-{i + 1}",
                    description=(
                        f"A {COMPLEXITY_DESCRIPTIONS.get(context.complexity_level, 'moderate project')} "
                        f"{context.app_type.value.lower()} app built around {', '.join(keywords)}."
                    ),
                    dna_keywords=keywords,
                )
            )
        return ideas

    async def generate_mutations(
        self,
        liked: list[Idea],
        disliked: list[Idea],
        mutation_type: MutationType,
        count: int,
    ) -> list[GeneratedMutation]:
        parent_titles = " and ".join(f'"{idea.title}"' for idea in liked)
        verb = "Blends" if mutation_type == MutationType.CROSSOVER else "Repurposes"
        return [
            GeneratedMutation(
                title=f"{liked[0].title} {mutation_type.value} {i + 1}",
                description=f"{verb} {parent_titles} into variation {i + 1}.",
                mutation_rationale=f"{verb} {parent_titles}.",
            )
            for i in range(count)
        ]

    async def synthesize(self, sources: list[IdeaSource]) -> SynthesisResult:
        return SynthesisResult(
            merged_title=" + ".join(s.title.split()[0] for s in sources if s.title)[:100],
            merged_description=" ".join(s.description for s in sources)[:1000],
            thematic_bridge="Each source contributes a complementary user need.",
            retained_elements={s.id: [s.title] + s.key_features[:1] for s in sources},
        )

    async def generate_feature_set(
        self, mutation: Mutation, themes: list[str]
    ) -> list[GeneratedVariation]:
        priorities = ["Must", "Must", "Should", "Could", "Wont"]
        return [
            GeneratedVariation(
                theme=theme,
                features=[
                    GeneratedFeature(
                        name=f"{theme} feature {j + 1}",
                        description=f"{theme} capability for {mutation.title}.",
                        priority=priorities[j],
                    )
                    for j in range(5)
                ],
                service_integrations=["Stripe", "SendGrid"],
            )
            for theme in themes
        ]

    async def generate_image(self, prompt: str) -> bytes | None:
        return PLACEHOLDER_PNG


def create_generator(
    settings: Settings,
    cache: ResponseCache,
    retry_policy: GenerationRetryPolicy,
) -> CandidateGenerator:
    if settings.use_mock_generator:
        logger.info("Using deterministic mock generator")
        return MockCandidateGenerator()

    logger.info(f"Using model-backed generator ({settings.text_model} at {settings.ollama_url})")
    return LLMCandidateGenerator(
        llm=LLMService(
            base_url=settings.ollama_url,
            model=settings.text_model,
            timeout=settings.llm_timeout_seconds,
        ),
        images=ImageService(base_url=settings.comfyui_url, image_size=settings.image_size),
        cache=cache,
        retry_policy=retry_policy,
    )
