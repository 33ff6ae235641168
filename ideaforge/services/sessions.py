import logging

from ideaforge.clock import Clock, utc_now
from ideaforge.errors import NotFoundError, ValidationError
from ideaforge.models.schemas import AppType, Session, SessionPhase, SessionStatus
from ideaforge.services.personality import PersonalityService
from ideaforge.services.phase_machine import PhaseStateMachine, PipelineAction
from ideaforge.services.session_locks import SessionLocks
from ideaforge.services.store import DurableStore

logger = logging.getLogger(__name__)


class SessionService:
    def __init__(
        self,
        store: DurableStore,
        phases: PhaseStateMachine,
        locks: SessionLocks,
        personality: PersonalityService,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.phases = phases
        self.locks = locks
        self.personality = personality
        self.clock = clock

    async def start_session(
        self,
        user_id: str,
        app_type: AppType,
        complexity_level: int,
        phase: SessionPhase = SessionPhase.SPARK,
    ) -> Session:
        if not 1 <= complexity_level <= 5:
            raise ValidationError(
                f"Complexity level must be between 1 and 5, got {complexity_level}",
                {"complexity_level": complexity_level},
            )

        session = Session(
            user_id=user_id,
            app_type=app_type,
            complexity_level=complexity_level,
            current_phase=phase,
            created_at=self.clock(),
        )
        await self.store.save(session)
        logger.info(f"Started session {session.id} ({app_type.value}, complexity {complexity_level})")
        return session

    async def get_session(self, session_id: str) -> Session:
        session = await self.store.get(Session, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def list_sessions(self, user_id: str) -> list[Session]:
        sessions = await self.store.list_by_user(Session, user_id)
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    async def complete_session(self, session_id: str) -> Session:
        async with self.locks.hold(session_id):
            session = await self.get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.COMPLETE_SESSION)

            self.phases.commit_action(session, PipelineAction.COMPLETE_SESSION)
            session.status = SessionStatus.COMPLETED
            session.completed_at = self.clock()
            await self.store.save(session)

        await self.personality.apply_swipes(session.user_id, [], [], count_session=True)
        logger.info(f"Session {session_id} completed")
        return session
