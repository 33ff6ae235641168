import logging
from abc import ABC, abstractmethod
from typing import Iterable, TypeVar

from pydantic import BaseModel
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.models.schemas import (
    Artifact,
    FeatureVariation,
    Idea,
    Mutation,
    ProductPersonality,
    RefinementAnswer,
    Session,
    Swipe,
    Synthesis,
    VisualAsset,
)
from ideaforge.models.db_models import (
    ArtifactRow,
    FeatureVariationRow,
    IdeaRow,
    MutationRow,
    PersonalityRow,
    RefinementAnswerRow,
    SessionRow,
    SwipeRow,
    SynthesisRow,
    VisualAssetRow,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseModel)

ROW_TYPES: dict[type[BaseModel], type] = {
    Session: SessionRow,
    Idea: IdeaRow,
    Swipe: SwipeRow,
    Mutation: MutationRow,
    FeatureVariation: FeatureVariationRow,
    Synthesis: SynthesisRow,
    VisualAsset: VisualAssetRow,
    RefinementAnswer: RefinementAnswerRow,
    ProductPersonality: PersonalityRow,
    Artifact: ArtifactRow,
}


def _sort_key(entity: BaseModel):
    return (
        getattr(entity, "created_at", None)
        or getattr(entity, "timestamp", None)
        or getattr(entity, "last_updated_at", None)
    )


class DurableStore(ABC):
    """Keyed persistence for every pipeline entity.

    Listings come back in creation order.
    """

    @abstractmethod
    async def save(self, entity: BaseModel) -> None:
        ...

    @abstractmethod
    async def save_many(self, entities: Iterable[BaseModel]) -> None:
        """Persist all entities or none of them."""

    @abstractmethod
    async def replace_many(
        self,
        entity_type: type[E],
        delete_ids: Iterable[str],
        entities: Iterable[BaseModel],
    ) -> None:
        """Delete ``delete_ids`` of ``entity_type`` and persist ``entities`` in one step."""

    @abstractmethod
    async def create_if_absent(self, entity: E) -> E:
        """Insert ``entity`` unless its id is taken; return whichever is stored."""

    @abstractmethod
    async def get(self, entity_type: type[E], entity_id: str) -> E | None:
        ...

    @abstractmethod
    async def list_by_session(self, entity_type: type[E], session_id: str) -> list[E]:
        ...

    @abstractmethod
    async def list_by_user(self, entity_type: type[E], user_id: str) -> list[E]:
        ...

    @abstractmethod
    async def delete(self, entity_type: type[E], entity_id: str) -> bool:
        ...

    @abstractmethod
    async def list_published_artifacts(self) -> list[Artifact]:
        ...


class InMemoryStore(DurableStore):
    """Process-local store used in mock mode and by the test suite."""

    def __init__(self):
        self._tables: dict[type, dict[str, BaseModel]] = {t: {} for t in ROW_TYPES}

    async def save(self, entity: BaseModel) -> None:
        self._tables[type(entity)][entity.id] = entity.model_copy(deep=True)

    async def save_many(self, entities: Iterable[BaseModel]) -> None:
        for entity in list(entities):
            await self.save(entity)

    async def replace_many(
        self,
        entity_type: type[E],
        delete_ids: Iterable[str],
        entities: Iterable[BaseModel],
    ) -> None:
        entities = list(entities)
        for entity_id in list(delete_ids):
            self._tables[entity_type].pop(entity_id, None)
        for entity in entities:
            await self.save(entity)

    async def create_if_absent(self, entity: E) -> E:
        stored = self._tables[type(entity)].setdefault(entity.id, entity.model_copy(deep=True))
        return stored.model_copy(deep=True)

    async def get(self, entity_type: type[E], entity_id: str) -> E | None:
        entity = self._tables[entity_type].get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    async def list_by_session(self, entity_type: type[E], session_id: str) -> list[E]:
        items = [
            e.model_copy(deep=True)
            for e in self._tables[entity_type].values()
            if getattr(e, "session_id", None) == session_id
        ]
        return sorted(items, key=_sort_key)

    async def list_by_user(self, entity_type: type[E], user_id: str) -> list[E]:
        items = [
            e.model_copy(deep=True)
            for e in self._tables[entity_type].values()
            if getattr(e, "user_id", None) == user_id
        ]
        return sorted(items, key=_sort_key)

    async def delete(self, entity_type: type[E], entity_id: str) -> bool:
        return self._tables[entity_type].pop(entity_id, None) is not None

    async def list_published_artifacts(self) -> list[Artifact]:
        items = [
            a.model_copy(deep=True)
            for a in self._tables[Artifact].values()
            if a.is_published
        ]
        return sorted(items, key=lambda a: a.published_at or a.created_at, reverse=True)


class SqlAlchemyStore(DurableStore):
    """Table-per-entity store over an async SQLAlchemy engine."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    def _to_row(self, entity: BaseModel):
        row_type = ROW_TYPES[type(entity)]
        row = row_type(
            id=entity.id,
            session_id=getattr(entity, "session_id", None),
            user_id=getattr(entity, "user_id", None),
            created_at=_sort_key(entity),
            data=entity.model_dump(mode="json"),
        )
        if isinstance(entity, Artifact):
            row.is_published = entity.is_published
        return row

    async def save(self, entity: BaseModel) -> None:
        async with self.session_maker() as db:
            await db.merge(self._to_row(entity))
            await db.commit()

    async def save_many(self, entities: Iterable[BaseModel]) -> None:
        async with self.session_maker() as db:
            try:
                for entity in entities:
                    await db.merge(self._to_row(entity))
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def replace_many(
        self,
        entity_type: type[E],
        delete_ids: Iterable[str],
        entities: Iterable[BaseModel],
    ) -> None:
        row_type = ROW_TYPES[entity_type]
        delete_ids = list(delete_ids)
        async with self.session_maker() as db:
            try:
                if delete_ids:
                    await db.execute(delete(row_type).where(row_type.id.in_(delete_ids)))
                for entity in entities:
                    await db.merge(self._to_row(entity))
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def create_if_absent(self, entity: E) -> E:
        async with self.session_maker() as db:
            db.add(self._to_row(entity))
            try:
                await db.commit()
                return entity
            except IntegrityError:
                await db.rollback()
        logger.debug(f"{type(entity).__name__} {entity.id} already exists")
        stored = await self.get(type(entity), entity.id)
        return stored if stored is not None else entity

    async def get(self, entity_type: type[E], entity_id: str) -> E | None:
        row_type = ROW_TYPES[entity_type]
        async with self.session_maker() as db:
            row = await db.get(row_type, entity_id)
            if row is None:
                return None
            return entity_type.model_validate(row.data)

    async def _list(self, entity_type: type[E], *criteria) -> list[E]:
        row_type = ROW_TYPES[entity_type]
        async with self.session_maker() as db:
            result = await db.execute(
                select(row_type).where(*criteria).order_by(row_type.created_at)
            )
            return [entity_type.model_validate(row.data) for row in result.scalars().all()]

    async def list_by_session(self, entity_type: type[E], session_id: str) -> list[E]:
        return await self._list(entity_type, ROW_TYPES[entity_type].session_id == session_id)

    async def list_by_user(self, entity_type: type[E], user_id: str) -> list[E]:
        return await self._list(entity_type, ROW_TYPES[entity_type].user_id == user_id)

    async def delete(self, entity_type: type[E], entity_id: str) -> bool:
        row_type = ROW_TYPES[entity_type]
        async with self.session_maker() as db:
            result = await db.execute(delete(row_type).where(row_type.id == entity_id))
            await db.commit()
            return result.rowcount > 0

    async def list_published_artifacts(self) -> list[Artifact]:
        items = await self._list(Artifact, ArtifactRow.is_published.is_(True))
        return sorted(items, key=lambda a: a.published_at or a.created_at, reverse=True)
