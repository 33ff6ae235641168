import asyncio
import logging
from datetime import timedelta

from fastapi import Depends, Header

from ideaforge.clock import Clock, utc_now
from ideaforge.config import Settings, settings
from ideaforge.database import async_session_maker
from ideaforge.errors import NotFoundError, ValidationError
from ideaforge.models.schemas import Session
from ideaforge.services.feature_expansion import FeatureExpansionEngine
from ideaforge.services.features import FeatureExpansionService
from ideaforge.services.gallery import GalleryService
from ideaforge.services.gallery_cache import GalleryBrowseCache
from ideaforge.services.generation_queue import OfflineGenerationQueue
from ideaforge.services.generator import CandidateGenerator, create_generator
from ideaforge.services.learning import LearningContextBuilder
from ideaforge.services.mutation_engine import MutationEngine
from ideaforge.services.mutations import MutationService
from ideaforge.services.personality import PersonalityService
from ideaforge.services.phase_machine import PhaseStateMachine
from ideaforge.services.refinement import RefinementService
from ideaforge.services.response_cache import ResponseCache
from ideaforge.services.retry_policy import GenerationRetryPolicy, Sleep
from ideaforge.services.session_locks import SessionLocks
from ideaforge.services.sessions import SessionService
from ideaforge.services.spark import SparkService
from ideaforge.services.storage import BlobStore
from ideaforge.services.store import DurableStore, SqlAlchemyStore
from ideaforge.services.synthesis import SynthesisService
from ideaforge.services.synthesis_engine import SynthesisEngine
from ideaforge.services.visuals import VisualService
from ideaforge.websocket import ConnectionManager, manager

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Wires every pipeline service from one Settings object.

    Shared state (caches, offline queue, session locks) lives here, so one
    container per process keeps the single-writer guarantee.
    """

    def __init__(
        self,
        config: Settings,
        store: DurableStore | None = None,
        generator: CandidateGenerator | None = None,
        blobs: BlobStore | None = None,
        notifier: ConnectionManager | None = None,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = config
        self.store = store or SqlAlchemyStore(async_session_maker)
        self.blobs = blobs or BlobStore(config.outputs_dir, config.public_base_url)
        self.notifier = notifier

        self.response_cache = ResponseCache(
            ttl=timedelta(minutes=config.response_cache_ttl_minutes),
            absolute_ttl=timedelta(
                minutes=config.response_cache_ttl_minutes * config.response_cache_absolute_multiplier
            ),
            clock=clock,
        )
        self.retry_policy = GenerationRetryPolicy(
            max_retries=config.rate_limit_max_retries,
            base_delay=config.rate_limit_base_delay_seconds,
            sleep=sleep,
        )
        self.offline_queue = OfflineGenerationQueue(
            ttl=timedelta(hours=config.offline_queue_ttl_hours),
            replay_delay=config.offline_replay_delay_seconds,
            clock=clock,
            sleep=sleep,
        )
        self.gallery_cache = GalleryBrowseCache(
            ttl=timedelta(minutes=config.gallery_cache_ttl_minutes),
            max_entries=config.gallery_cache_max_entries,
            clock=clock,
        )
        self.generator = generator or create_generator(config, self.response_cache, self.retry_policy)

        self.phases = PhaseStateMachine()
        self.locks = SessionLocks()

        self.personality = PersonalityService(self.store, self.locks, clock=clock)
        self.sessions = SessionService(self.store, self.phases, self.locks, self.personality, clock=clock)
        self.spark = SparkService(
            self.store,
            self.generator,
            self.phases,
            self.locks,
            self.personality,
            learning=LearningContextBuilder(),
            notifier=notifier,
            ideas_per_batch=config.ideas_per_batch,
            max_batches=config.max_batches,
            clock=clock,
        )
        self.mutations = MutationService(
            self.store,
            MutationEngine(self.generator),
            self.phases,
            self.locks,
            top_ideas=config.top_ideas_for_mutation,
            mutations_per_idea=config.mutations_per_idea,
        )
        self.features = FeatureExpansionService(
            self.store,
            FeatureExpansionEngine(self.generator),
            self.phases,
            self.locks,
            top_mutations=config.top_mutations_for_expansion,
            variations_per_mutation=config.variations_per_mutation,
        )
        self.synthesis = SynthesisService(
            self.store, SynthesisEngine(self.generator), self.phases, self.locks
        )
        self.refinement = RefinementService(
            self.store,
            self.phases,
            self.locks,
            questions_per_phase=config.refinement_questions_per_phase,
            clock=clock,
        )
        self.visuals = VisualService(
            self.store,
            self.generator,
            self.phases,
            self.locks,
            self.offline_queue,
            self.blobs,
            notifier=notifier,
            max_visuals=config.max_visuals_per_session,
            default_count=config.visuals_per_request,
            clock=clock,
        )
        self.gallery = GalleryService(
            self.store,
            self.gallery_cache,
            self.sessions,
            max_page_size=config.gallery_max_page_size,
            clock=clock,
        )


_container: ServiceContainer | None = None


def get_container() -> ServiceContainer:
    global _container
    if _container is None:
        _container = ServiceContainer(settings, notifier=manager)
        logger.info(f"Service container ready (generator: {type(_container.generator).__name__})")
    return _container


def get_session_service(container: ServiceContainer = Depends(get_container)) -> SessionService:
    return container.sessions


def get_spark_service(container: ServiceContainer = Depends(get_container)) -> SparkService:
    return container.spark


def get_mutation_service(container: ServiceContainer = Depends(get_container)) -> MutationService:
    return container.mutations


def get_feature_service(container: ServiceContainer = Depends(get_container)) -> FeatureExpansionService:
    return container.features


def get_synthesis_service(container: ServiceContainer = Depends(get_container)) -> SynthesisService:
    return container.synthesis


def get_refinement_service(container: ServiceContainer = Depends(get_container)) -> RefinementService:
    return container.refinement


def get_visual_service(container: ServiceContainer = Depends(get_container)) -> VisualService:
    return container.visuals


def get_personality_service(container: ServiceContainer = Depends(get_container)) -> PersonalityService:
    return container.personality


def get_gallery_service(container: ServiceContainer = Depends(get_container)) -> GalleryService:
    return container.gallery


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, taken from the X-User-Id header."""
    if not x_user_id or not x_user_id.strip():
        raise ValidationError("X-User-Id header is required")
    return x_user_id.strip()


async def get_owned_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    sessions: SessionService = Depends(get_session_service),
) -> Session:
    # Other users' sessions are reported as missing
    session = await sessions.get_session(session_id)
    if session.user_id != user_id:
        raise NotFoundError("Session", session_id)
    return session
