import uuid
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field

from ideaforge.clock import utc_now


def generate_uuid() -> str:
    return str(uuid.uuid4())


class AppType(str, Enum):
    GAME = "Game"
    PRODUCTIVITY = "Productivity"
    MOBILE = "Mobile"
    AUTOMATION = "Automation"


class SessionPhase(str, Enum):
    SCOPE = "Scope"
    SPARK = "Spark"
    MUTATION = "Mutation"
    FEATURE_EXPANSION = "FeatureExpansion"
    PRODUCT_REFINEMENT = "ProductRefinement"
    TECHNICAL_REFINEMENT = "TechnicalRefinement"
    VISUAL = "Visual"
    COMPLETED = "Completed"


class SessionStatus(str, Enum):
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"


class SwipeDirection(str, Enum):
    LEFT = "Left"
    RIGHT = "Right"
    UP = "Up"


class SwipeSpeed(str, Enum):
    FAST = "Fast"
    MEDIUM = "Medium"
    SLOW = "Slow"


class MutationType(str, Enum):
    CROSSOVER = "Crossover"
    REPURPOSING = "Repurposing"


class FeaturePriority(str, Enum):
    MUST = "Must"
    SHOULD = "Should"
    COULD = "Could"
    WONT = "Wont"


class RefinementPhase(str, Enum):
    PM = "PM"
    ARCHITECT = "Architect"


class GenerationStatus(str, Enum):
    QUEUED = "Queued"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"


class ArtifactType(str, Enum):
    PRD = "PRD"
    TECHNICAL_DEEP_DIVE = "TechnicalDeepDive"
    VISUAL_PACK = "VisualPack"


# Persisted entities
class Session(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    user_id: str
    app_type: AppType
    complexity_level: int = Field(ge=1, le=5)
    current_phase: SessionPhase = SessionPhase.SPARK
    status: SessionStatus = SessionStatus.IN_PROGRESS
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    top_idea_ids: list[str] = Field(default=[])
    selected_idea_ids: list[str] = Field(default=[])


class Idea(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    session_id: str
    batch_number: int = Field(ge=1)
    title: str
    description: str
    dna_keywords: list[str] = Field(default=[], description="Ordered, de-duplicated theme tags")
    score: float = Field(default=0.0, ge=0)
    degraded: bool = Field(default=False, description="True when produced by the template fallback")
    created_at: datetime = Field(default_factory=utc_now)


class Swipe(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_uuid)
    session_id: str
    idea_id: str
    user_id: str
    direction: SwipeDirection
    duration_ms: int = Field(ge=0)
    speed_category: SwipeSpeed
    timestamp: datetime = Field(default_factory=utc_now)


class Mutation(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    session_id: str
    parent_idea_ids: list[str] = Field(min_length=1, max_length=2)
    mutation_type: MutationType
    title: str
    description: str
    mutation_rationale: str
    score: float = Field(default=0.0, ge=0)
    degraded: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class Feature(BaseModel):
    name: str
    description: str = ""
    priority: FeaturePriority = FeaturePriority.COULD


class FeatureVariation(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    session_id: str
    mutation_id: str
    variation_theme: str
    features: list[Feature] = Field(min_length=3, max_length=10)
    service_integrations: list[str] = Field(default=[])
    score: float = Field(default=0.0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)


class Synthesis(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    session_id: str
    source_idea_ids: list[str] = Field(min_length=2, max_length=10)
    merged_title: str = Field(max_length=100)
    merged_description: str = Field(max_length=1000)
    thematic_bridge: str
    retained_elements: dict[str, list[str]]
    degraded: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class StyleInfo(BaseModel):
    color_palette: list[str]
    layout_style: str
    vibe: str


class VisualAsset(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    session_id: str
    blob_url: str
    thumbnail_url: str
    prompt: str
    style_attributes: StyleInfo
    is_selected: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class SpeedProfile(BaseModel):
    average_fast_ms: float = 500.0
    average_medium_ms: float = 2000.0
    average_slow_ms: float = 5000.0


class ProductPersonality(BaseModel):
    user_id: str
    product_biases: dict[str, float] = Field(default={})
    technical_biases: dict[str, float] = Field(default={})
    disliked_patterns: list[str] = Field(default=[])
    swipe_speed_profile: SpeedProfile = Field(default_factory=SpeedProfile)
    total_sessions: int = 0
    last_updated_at: datetime = Field(default_factory=utc_now)

    @property
    def id(self) -> str:
        return self.user_id


class RefinementAnswer(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    session_id: str
    phase: RefinementPhase
    question_number: int = Field(ge=1)
    question_text: str
    question_category: str
    answer_text: str
    timestamp: datetime = Field(default_factory=utc_now)


class Artifact(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    session_id: str
    user_id: str
    type: ArtifactType
    title: str
    content: str
    blob_url: str | None = None
    is_published: bool = False
    human_readable_slug: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    published_at: datetime | None = None


class QueuedGenerationRequest(BaseModel):
    """Everything needed to rebuild a visual generation call later."""

    session_id: str
    app_title: str
    app_description: str
    app_type: AppType
    style_index: int
    style_hint: str | None = None
    requested_at: datetime = Field(default_factory=utc_now)
    retry_count: int = 0


# Generator inputs and outputs
class LearningContext(BaseModel):
    super_liked_themes: list[str] = Field(default=[])
    liked_themes: list[str] = Field(default=[])
    disliked_themes: list[str] = Field(default=[])
    swipe_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.super_liked_themes or self.liked_themes or self.disliked_themes)


class SessionContext(BaseModel):
    session_id: str
    app_type: AppType
    complexity_level: int
    batch_number: int
    count: int
    preferred_themes: list[str] = Field(default=[], description="Strong positive product biases")
    preferred_technologies: list[str] = Field(default=[], description="Strong positive technical biases")
    avoided_patterns: list[str] = Field(default=[])


class GeneratedIdea(BaseModel):
    title: str
    description: str
    dna_keywords: list[str] = Field(default=[])


class GeneratedMutation(BaseModel):
    title: str
    description: str
    mutation_rationale: str = ""


class IdeaSource(BaseModel):
    id: str
    title: str
    description: str
    key_features: list[str] = Field(default=[])


class SynthesisResult(BaseModel):
    merged_title: str
    merged_description: str
    thematic_bridge: str
    retained_elements: dict[str, list[str]] = Field(default={})
    degraded: bool = False


class GeneratedFeature(BaseModel):
    name: str = ""
    description: str = ""
    priority: str = ""


class GeneratedVariation(BaseModel):
    theme: str = ""
    features: list[GeneratedFeature] = Field(default=[])
    service_integrations: list[str] = Field(default=[])


# API request/response schemas
class SessionCreate(BaseModel):
    app_type: AppType
    complexity_level: int = Field(description="1 (weekend project) to 5 (enterprise-grade)")


class IdeaBatchResponse(BaseModel):
    session_id: str
    batch_number: int
    ideas: list[Idea]
    degraded: bool = False
    has_more_batches: bool


class SwipeCreate(BaseModel):
    idea_id: str
    direction: SwipeDirection
    duration_ms: int


class SwipeResponse(BaseModel):
    swipe: Swipe
    updated_score: float


class SwipeAnalysis(BaseModel):
    total_swipes: int
    like_count: int
    dislike_count: int
    super_like_count: int
    all_liked: bool
    all_disliked: bool
    should_offer_restart: bool
    suggested_message: str | None = None


class TopIdeasResponse(BaseModel):
    session_id: str
    ideas: list[Idea]
    analysis: SwipeAnalysis


class BatchItemFailure(BaseModel):
    item_id: str
    kind: str
    message: str


class MutationBatchResponse(BaseModel):
    session_id: str
    mutations: list[Mutation]
    failures: list[BatchItemFailure] = Field(default=[])
    degraded_count: int = 0


class MutationCreate(BaseModel):
    top_n: int | None = Field(default=None, ge=1, le=10)
    mutations_per_idea: int | None = Field(default=None, ge=1, le=10)


class ScoreUpdate(BaseModel):
    score: float = Field(ge=0)


class RatingUpdate(BaseModel):
    rating: int


class FeatureExpansionCreate(BaseModel):
    mutation_ids: list[str] | None = None
    variations_per_mutation: int | None = Field(default=None, ge=1, le=5)


class FeatureExpansionResponse(BaseModel):
    session_id: str
    variations: list[FeatureVariation]
    failures: list[BatchItemFailure] = Field(default=[])


class SelectableIdea(BaseModel):
    id: str
    title: str
    summary: str
    score: float


class SelectionCreate(BaseModel):
    idea_ids: list[str]


class SynthesisResponse(BaseModel):
    session_id: str
    synthesized: bool
    synthesis: Synthesis | None = None
    selected_idea_ids: list[str]
    current_phase: SessionPhase


class RefinementQuestion(BaseModel):
    question_number: int
    question_text: str
    category: str
    example_answer: str
    is_answered: bool = False
    existing_answer: str | None = None


class QuestionsResponse(BaseModel):
    phase: RefinementPhase
    phase_display_name: str
    questions: list[RefinementQuestion]
    answered_count: int
    total_questions: int


class AnswerInput(BaseModel):
    question_number: int
    answer_text: str


class AnswersCreate(BaseModel):
    answers: list[AnswerInput]


class AnswersResponse(BaseModel):
    session_id: str
    current_phase: SessionPhase
    answers_recorded: int
    next_phase: SessionPhase | None = None
    refinement_complete: bool = False
    message: str


class VisualsCreate(BaseModel):
    count: int | None = Field(default=None, ge=1, le=4)
    style_hint: str | None = Field(default=None, max_length=500)


class VisualsResponse(BaseModel):
    session_id: str
    visuals: list[VisualAsset]
    queued_count: int = 0
    status: GenerationStatus


class GenerationStatusResponse(BaseModel):
    session_id: str
    status: GenerationStatus
    pending_count: int
    visual_count: int


class ReplayResponse(BaseModel):
    session_id: str
    replayed: int
    remaining: int
    visuals: list[VisualAsset]


class PersonalityUpdate(BaseModel):
    product_bias_overrides: dict[str, float] = Field(default={})
    technical_bias_overrides: dict[str, float] = Field(default={})
    add_disliked_patterns: list[str] = Field(default=[])
    remove_disliked_patterns: list[str] = Field(default=[])
    reset: bool = False


class PersonalityResponse(BaseModel):
    personality: ProductPersonality
    top_preferences: list[str]


class ArtifactCreate(BaseModel):
    type: ArtifactType
    title: str = Field(min_length=1, max_length=200)
    content: str


class GalleryItem(BaseModel):
    artifact_id: str
    session_id: str
    title: str
    excerpt: str
    app_type: AppType | None = None
    artifact_type: ArtifactType
    published_at: datetime | None = None


class GalleryPage(BaseModel):
    items: list[GalleryItem]
    next_cursor: str | None = None
    has_more: bool = False
