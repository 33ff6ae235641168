from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from ideaforge.database import Base


class EntityRowMixin:
    """Key columns for lookups; the full entity lives in ``data``."""

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)


class SessionRow(EntityRowMixin, Base):
    __tablename__ = "sessions"


class IdeaRow(EntityRowMixin, Base):
    __tablename__ = "ideas"


class SwipeRow(EntityRowMixin, Base):
    __tablename__ = "swipes"


class MutationRow(EntityRowMixin, Base):
    __tablename__ = "mutations"


class FeatureVariationRow(EntityRowMixin, Base):
    __tablename__ = "feature_variations"


class SynthesisRow(EntityRowMixin, Base):
    __tablename__ = "syntheses"


class VisualAssetRow(EntityRowMixin, Base):
    __tablename__ = "visual_assets"


class RefinementAnswerRow(EntityRowMixin, Base):
    __tablename__ = "refinement_answers"


class PersonalityRow(EntityRowMixin, Base):
    __tablename__ = "personalities"


class ArtifactRow(EntityRowMixin, Base):
    __tablename__ = "artifacts"

    is_published: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
