import logging
from datetime import timedelta

from ideaforge.clock import Clock, utc_now
from ideaforge.models.schemas import (
    Idea,
    PersonalityUpdate,
    ProductPersonality,
    SpeedProfile,
    Swipe,
    SwipeDirection,
    SwipeSpeed,
)
from ideaforge.services import scoring
from ideaforge.services.session_locks import SessionLocks
from ideaforge.services.store import DurableStore

logger = logging.getLogger(__name__)

BIAS_STEP = 0.1
SPEED_MULTIPLIERS = {
    SwipeSpeed.FAST: 1.5,
    SwipeSpeed.MEDIUM: 1.0,
    SwipeSpeed.SLOW: 0.5,
}
TECHNICAL_KEYWORDS = {
    "serverless", "monolith", "microservices", "cloud", "api", "realtime",
    "offline", "mobile", "web", "desktop", "ai", "ml", "blockchain", "iot",
    "saas", "subscription",
}
MAX_DISLIKED_PATTERNS = 50
DECAY_FACTOR = 0.9
DECAY_PERIOD = timedelta(days=30)
STRONG_BIAS_THRESHOLD = 0.2


def _clamp(value: float) -> float:
    return max(-1.0, min(1.0, value))


class PersonalityService:
    """Cross-session product personality learned from swipe behaviour."""

    def __init__(
        self,
        store: DurableStore,
        locks: SessionLocks | None = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.locks = locks or SessionLocks()
        self.clock = clock

    def _hold(self, user_id: str):
        return self.locks.hold(f"user:{user_id}")

    async def get_or_create(self, user_id: str) -> ProductPersonality:
        personality = await self.store.get(ProductPersonality, user_id)
        if personality is None:
            personality = await self.store.create_if_absent(
                ProductPersonality(user_id=user_id, last_updated_at=self.clock())
            )
            logger.info(f"Created product personality for user {user_id}")
        return personality

    def _apply_swipe(self, personality: ProductPersonality, swipe: Swipe, idea: Idea) -> None:
        sign = 1.0 if scoring.is_positive(swipe.direction) else -1.0
        change = sign * BIAS_STEP * SPEED_MULTIPLIERS[swipe.speed_category]

        for keyword in idea.dna_keywords:
            key = keyword.strip().lower()
            if not key:
                continue
            personality.product_biases[key] = _clamp(personality.product_biases.get(key, 0.0) + change)
            if key in TECHNICAL_KEYWORDS:
                personality.technical_biases[key] = _clamp(
                    personality.technical_biases.get(key, 0.0) + change
                )

        if (
            swipe.direction == SwipeDirection.LEFT
            and swipe.speed_category == SwipeSpeed.FAST
            and idea.dna_keywords
        ):
            pattern = idea.dna_keywords[0].strip().lower()
            if pattern and pattern not in personality.disliked_patterns:
                personality.disliked_patterns.append(pattern)
                personality.disliked_patterns = personality.disliked_patterns[-MAX_DISLIKED_PATTERNS:]

    @staticmethod
    def _average_speeds(profile: SpeedProfile, swipes: list[Swipe]) -> SpeedProfile:
        updated = profile.model_copy()
        buckets = {
            SwipeSpeed.FAST: "average_fast_ms",
            SwipeSpeed.MEDIUM: "average_medium_ms",
            SwipeSpeed.SLOW: "average_slow_ms",
        }
        for speed, attr in buckets.items():
            durations = [s.duration_ms for s in swipes if s.speed_category == speed]
            if durations:
                batch_avg = sum(durations) / len(durations)
                setattr(updated, attr, (getattr(profile, attr) + batch_avg) / 2)
        return updated

    async def apply_swipes(
        self,
        user_id: str,
        swipes: list[Swipe],
        ideas: list[Idea],
        count_session: bool = False,
    ) -> ProductPersonality:
        """Fold a batch of swipes into the user's biases and speed profile.

        Holds the user's lock, so concurrent swipes from several sessions
        are applied one after another.
        """
        ideas_by_id = {idea.id: idea for idea in ideas}

        async with self._hold(user_id):
            personality = await self.get_or_create(user_id)
            for swipe in swipes:
                idea = ideas_by_id.get(swipe.idea_id)
                if idea is not None:
                    self._apply_swipe(personality, swipe, idea)

            if swipes:
                personality.swipe_speed_profile = self._average_speeds(personality.swipe_speed_profile, swipes)
            if count_session:
                personality.total_sessions += 1
            personality.last_updated_at = self.clock()

            await self.store.save(personality)
        return personality

    async def apply_decay(self, user_id: str) -> ProductPersonality:
        """Shrink every bias by 10% per full 30 days since the last update."""
        async with self._hold(user_id):
            personality = await self.get_or_create(user_id)
            periods = int((self.clock() - personality.last_updated_at) / DECAY_PERIOD)
            if periods <= 0:
                return personality

            factor = DECAY_FACTOR ** periods
            personality.product_biases = {k: v * factor for k, v in personality.product_biases.items()}
            personality.technical_biases = {k: v * factor for k, v in personality.technical_biases.items()}
            personality.last_updated_at = self.clock()
            await self.store.save(personality)
        logger.info(f"Decayed personality for user {user_id} over {periods} period(s)")
        return personality

    async def update(self, user_id: str, request: PersonalityUpdate) -> ProductPersonality:
        async with self._hold(user_id):
            if request.reset:
                personality = ProductPersonality(user_id=user_id, last_updated_at=self.clock())
                existing = await self.store.get(ProductPersonality, user_id)
                if existing is not None:
                    personality.total_sessions = existing.total_sessions
                await self.store.save(personality)
                logger.info(f"Reset personality for user {user_id}")
                return personality

            personality = await self.get_or_create(user_id)
            for key, value in request.product_bias_overrides.items():
                personality.product_biases[key.lower()] = _clamp(value)
            for key, value in request.technical_bias_overrides.items():
                personality.technical_biases[key.lower()] = _clamp(value)

            removed = {p.lower() for p in request.remove_disliked_patterns}
            patterns = [p for p in personality.disliked_patterns if p not in removed]
            for pattern in request.add_disliked_patterns:
                pattern = pattern.strip().lower()
                if pattern and pattern not in patterns:
                    patterns.append(pattern)
            personality.disliked_patterns = patterns[-MAX_DISLIKED_PATTERNS:]

            personality.last_updated_at = self.clock()
            await self.store.save(personality)
        return personality

    @staticmethod
    def top_preferences(personality: ProductPersonality, limit: int = 10) -> list[str]:
        product = sorted(personality.product_biases.items(), key=lambda kv: kv[1], reverse=True)[:5]
        technical = sorted(personality.technical_biases.items(), key=lambda kv: kv[1], reverse=True)[:5]
        merged: dict[str, float] = {}
        for key, value in product + technical:
            merged[key] = max(value, merged.get(key, value))
        ranked = sorted(merged.items(), key=lambda kv: kv[1], reverse=True)
        return [key for key, _ in ranked[:limit]]

    @staticmethod
    def prompt_bias(personality: ProductPersonality) -> tuple[list[str], list[str], list[str]]:
        """Strong product biases (top 5), technical biases (top 3), disliked patterns (up to 5)."""
        product = [
            k for k, v in sorted(personality.product_biases.items(), key=lambda kv: kv[1], reverse=True)
            if v > STRONG_BIAS_THRESHOLD
        ][:5]
        technical = [
            k for k, v in sorted(personality.technical_biases.items(), key=lambda kv: kv[1], reverse=True)
            if v > STRONG_BIAS_THRESHOLD
        ][:3]
        return product, technical, personality.disliked_patterns[:5]
