import logging

from ideaforge.clock import Clock, utc_now
from ideaforge.errors import NotFoundError, ValidationError
from ideaforge.models.schemas import (
    AnswerInput,
    AnswersResponse,
    QuestionsResponse,
    RefinementAnswer,
    RefinementPhase,
    RefinementQuestion,
    Session,
    SessionPhase,
)
from ideaforge.services.phase_machine import PhaseStateMachine, PipelineAction
from ideaforge.services.session_locks import SessionLocks
from ideaforge.services.store import DurableStore

logger = logging.getLogger(__name__)

MAX_ANSWER_LENGTH = 2000

# (category, question, example answer)
PM_QUESTIONS = [
    ("UserPersonas", "Who is your primary target user? Describe their demographics, needs, and pain points.",
     "Busy parents of school-age kids who juggle shared calendars and forget pickups."),
    ("UserPersonas", "What specific problem are you solving for these users?",
     "Family logistics live in five different apps; we put them in one shared timeline."),
    ("MarketPosition", "Who are your main competitors and how will you differentiate?",
     "Generic calendars cover scheduling; we add automatic carpool matching."),
    ("MarketPosition", "What is your unique value proposition in one sentence?",
     "The only family planner that reshuffles the week when plans change."),
    ("BusinessModel", "How will this product generate revenue?",
     "Free for one household, paid tier for extended family and school integrations."),
    ("BusinessModel", "What are the key metrics you'll track to measure success?",
     "Weekly active households, events created per week and 90-day retention."),
    ("UserExperience", "Describe the ideal first-time user experience (first 5 minutes).",
     "Import the school calendar, invite a partner, see next week's plan in two minutes."),
    ("UserExperience", "What are the top 3 features users will spend the most time with?",
     "1) Weekly timeline, 2) Quick-add from a photo of a flyer, 3) Carpool board."),
    ("GoToMarket", "What is your launch strategy?",
     "Pilot with three parent-teacher associations, then referral rewards per household."),
    ("RiskMitigation", "What is the biggest risk to this product's success and how will you mitigate it?",
     "Partners may not adopt it; mitigate with SMS reminders that need no install."),
]

ARCHITECT_QUESTIONS = [
    ("Architecture", "What is the preferred cloud platform and why?",
     "A managed container platform so the team avoids running servers."),
    ("Architecture", "Describe the high-level system architecture (frontend, backend, data layer).",
     "SPA frontend, a Python API, Postgres for data and object storage for uploads."),
    ("DataStrategy", "How will you handle data persistence and what database technology fits best?",
     "Postgres with row-level tenancy; Redis for short-lived session state."),
    ("DataStrategy", "What is your data backup and disaster recovery strategy?",
     "Nightly snapshots with 30-day retention and point-in-time recovery."),
    ("Security", "How will you handle authentication and authorization?",
     "OAuth sign-in with household-scoped roles checked on every request."),
    ("Security", "What sensitive data will you store and how will you protect it?",
     "Children's schedules; encrypt at rest, TLS in transit, minimal retention."),
    ("Integration", "What third-party services or APIs will you integrate with?",
     "Google Calendar, school SIS exports, Twilio for SMS and Stripe for billing."),
    ("Integration", "How will you handle API versioning and breaking changes?",
     "Versioned URLs with a six-month deprecation window."),
    ("Scalability", "What is your expected scale (users, requests per second, data volume)?",
     "10K households at launch, around 50 RPS at peak school-morning hours."),
    ("Deployment", "What is your CI/CD and deployment strategy?",
     "CI on every pull request, blue-green deploys and feature flags for rollouts."),
]

QUESTION_SETS = {
    RefinementPhase.PM: PM_QUESTIONS,
    RefinementPhase.ARCHITECT: ARCHITECT_QUESTIONS,
}
DISPLAY_NAMES = {
    RefinementPhase.PM: "Product Manager",
    RefinementPhase.ARCHITECT: "Technical Architect",
}
SESSION_TO_REFINEMENT = {
    SessionPhase.PRODUCT_REFINEMENT: RefinementPhase.PM,
    SessionPhase.TECHNICAL_REFINEMENT: RefinementPhase.ARCHITECT,
}
NEXT_PHASE = {
    RefinementPhase.PM: SessionPhase.TECHNICAL_REFINEMENT,
    RefinementPhase.ARCHITECT: SessionPhase.VISUAL,
}


class RefinementService:
    """Product manager and architect Q&A that drives the refinement phases."""

    def __init__(
        self,
        store: DurableStore,
        phases: PhaseStateMachine,
        locks: SessionLocks,
        questions_per_phase: int = 10,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.phases = phases
        self.locks = locks
        self.questions_per_phase = questions_per_phase
        self.clock = clock

    async def _get_session(self, session_id: str) -> Session:
        session = await self.store.get(Session, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def _answers_for(self, session_id: str, phase: RefinementPhase) -> dict[int, RefinementAnswer]:
        answers = await self.store.list_by_session(RefinementAnswer, session_id)
        return {a.question_number: a for a in answers if a.phase == phase}

    async def get_questions(
        self, session_id: str, phase: RefinementPhase | None = None
    ) -> QuestionsResponse:
        session = await self._get_session(session_id)
        phase = phase or SESSION_TO_REFINEMENT.get(session.current_phase, RefinementPhase.PM)
        answered = await self._answers_for(session_id, phase)

        questions = []
        for number, (category, text, example) in enumerate(QUESTION_SETS[phase], start=1):
            existing = answered.get(number)
            questions.append(
                RefinementQuestion(
                    question_number=number,
                    question_text=text,
                    category=category,
                    example_answer=example,
                    is_answered=existing is not None,
                    existing_answer=existing.answer_text if existing else None,
                )
            )

        return QuestionsResponse(
            phase=phase,
            phase_display_name=DISPLAY_NAMES[phase],
            questions=questions,
            answered_count=len(answered),
            total_questions=len(questions),
        )

    def _validate(self, answers: list[AnswerInput], total: int) -> None:
        if not answers:
            raise ValidationError("At least one answer is required")
        for answer in answers:
            if not 1 <= answer.question_number <= total:
                raise ValidationError(
                    f"Question number must be between 1 and {total}, got {answer.question_number}"
                )
            text = answer.answer_text.strip()
            if not text:
                raise ValidationError(f"Answer to question {answer.question_number} is empty")
            if len(text) > MAX_ANSWER_LENGTH:
                raise ValidationError(
                    f"Answer to question {answer.question_number} exceeds {MAX_ANSWER_LENGTH} characters"
                )

    async def submit_answers(self, session_id: str, answers: list[AnswerInput]) -> AnswersResponse:
        """
        Record answers for the session's current refinement phase.

        Re-answering a question replaces the earlier answer. Once every
        question of the phase has an answer the session advances: PM answers
        lead to TechnicalRefinement, architect answers lead to Visual.
        """
        async with self.locks.hold(session_id):
            session = await self._get_session(session_id)
            self.phases.ensure_allowed(session, PipelineAction.SUBMIT_REFINEMENT_ANSWER)

            phase = SESSION_TO_REFINEMENT[session.current_phase]
            templates = QUESTION_SETS[phase]
            self._validate(answers, len(templates))

            existing = await self._answers_for(session_id, phase)
            records = []
            latest = {a.question_number: a for a in answers}
            for answer in latest.values():
                category, text, _ = templates[answer.question_number - 1]
                previous = existing.get(answer.question_number)
                record = RefinementAnswer(
                    session_id=session_id,
                    phase=phase,
                    question_number=answer.question_number,
                    question_text=text,
                    question_category=category,
                    answer_text=answer.answer_text.strip(),
                    timestamp=self.clock(),
                )
                if previous is not None:
                    record.id = previous.id
                existing[answer.question_number] = record
                records.append(record)
            await self.store.save_many(records)

            answered = len(existing)
            required = min(self.questions_per_phase, len(templates))
            next_phase = None
            if answered >= required:
                next_phase = NEXT_PHASE[phase]
                self.phases.advance(session, next_phase)
                await self.store.save(session)

        refinement_complete = next_phase == SessionPhase.VISUAL
        if next_phase:
            message = f"All {DISPLAY_NAMES[phase]} questions answered. Proceeding to {next_phase.value}."
        else:
            message = f"Recorded {len(records)} answers. {required - answered} remaining."
        logger.info(f"Session {session_id}: {message}")

        return AnswersResponse(
            session_id=session_id,
            current_phase=session.current_phase,
            answers_recorded=len(records),
            next_phase=next_phase,
            refinement_complete=refinement_complete,
            message=message,
        )

    async def list_answers(
        self, session_id: str, phase: RefinementPhase | None = None
    ) -> list[RefinementAnswer]:
        await self._get_session(session_id)
        answers = await self.store.list_by_session(RefinementAnswer, session_id)
        if phase:
            answers = [a for a in answers if a.phase == phase]
        return sorted(answers, key=lambda a: (a.phase.value, a.question_number))
