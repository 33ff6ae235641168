from typing import Iterable

from ideaforge.models.schemas import Idea, LearningContext, Swipe, SwipeDirection


def _add_unique(target: list[str], keywords: Iterable[str]) -> None:
    seen = {k.lower() for k in target}
    for keyword in keywords:
        keyword = keyword.strip()
        if keyword and keyword.lower() not in seen:
            seen.add(keyword.lower())
            target.append(keyword)


class LearningContextBuilder:
    """Turns a session's swipe log into prefer/avoid theme sets.

    The context is recomputed on every call and never written back.
    """

    def build(self, swipes: list[Swipe], ideas: Iterable[Idea]) -> LearningContext:
        if not swipes:
            return LearningContext()

        ideas_by_id = {idea.id: idea for idea in ideas}
        super_liked: list[str] = []
        liked: list[str] = []
        disliked: list[str] = []
        buckets = {
            SwipeDirection.UP: super_liked,
            SwipeDirection.RIGHT: liked,
            SwipeDirection.LEFT: disliked,
        }

        for swipe in swipes:
            idea = ideas_by_id.get(swipe.idea_id)
            if idea is None:
                continue
            _add_unique(buckets[swipe.direction], idea.dna_keywords)

        return LearningContext(
            super_liked_themes=super_liked,
            liked_themes=liked,
            disliked_themes=disliked,
            swipe_count=len(swipes),
        )

    @staticmethod
    def to_prompt_directives(context: LearningContext) -> str:
        """Render the context as explicit prompt directives (empty when unbiased)."""
        if context.is_empty:
            return ""

        lines = [f"Learning from {context.swipe_count} previous swipes:"]
        if context.super_liked_themes:
            lines.append(f"- The user LOVES ideas involving: {', '.join(context.super_liked_themes)}")
        if context.liked_themes:
            lines.append(f"- The user likes ideas involving: {', '.join(context.liked_themes)}")
        if context.disliked_themes:
            lines.append(f"- AVOID themes like: {', '.join(context.disliked_themes)}")
        return "\n".join(lines)
