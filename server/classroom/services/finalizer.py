"""
Submission Finalizer.

Runs the one-time sequence that ends a student's attempt: stamp
submitted_at, score the answers, fold the score into the course Result.

Two layers keep it effective at most once:
  * an in-memory guard per (student, exam) that turns every trigger after
    the first into a no-op while this process lives;
  * the storage-level "first stamp wins" update, which holds across
    restarts and multiple server processes.
"""
import enum
import logging
from typing import Callable, Dict, Optional, Set, Tuple

from pydantic import BaseModel

from classroom.config import Settings
from classroom.errors import (
    ExamAlreadySubmitted,
    ExamError,
    ExamNotAvailableYet,
    ExamNotFound,
    ExamStillRunning,
)
from classroom.schemas import ExamRecord
from classroom.services import exam_clock
from classroom.services.exam_clock import ExamPhase
from classroom.services.gateway import PersistenceGateway
from classroom.services.results import ResultCalculator
from classroom.services.session_registry import Connection, SessionRegistry

logger = logging.getLogger(__name__)


class Trigger(str, enum.Enum):
    MANUAL = "manual"
    COUNTDOWN = "countdown"
    EXAM_ENDED = "exam_ended"


class FinalizeState(str, enum.Enum):
    FINALIZING = "finalizing"
    SUBMITTED = "submitted"


class FinalizationOutcome(BaseModel):
    student_id: str
    exam_id: str
    status: Optional[str] = None  # "success", "expired", "already_submitted"; None while in flight
    student_exam_id: Optional[str] = None
    score: Optional[float] = None
    max_score: Optional[float] = None
    duplicate: bool = False

    def to_wire(self) -> dict:
        return {
            "examId": self.exam_id,
            "status": self.status,
            "studentExamId": self.student_exam_id,
            "score": self.score,
            "maxScore": self.max_score,
        }


class SubmissionFinalizer:

    def __init__(
        self,
        gateway: PersistenceGateway,
        registry: SessionRegistry,
        results: ResultCalculator,
        settings: Settings,
        now: Callable = exam_clock.utcnow,
    ):
        self.gateway = gateway
        self.registry = registry
        self.results = results
        self.settings = settings
        self.now = now
        self._states: Dict[Tuple[str, str], FinalizeState] = {}
        self._outcomes: Dict[Tuple[str, str], FinalizationOutcome] = {}
        # exam_id -> students with a guard entry, for forget_exam
        self._students_by_exam: Dict[str, Set[str]] = {}

    def state_of(self, student_id: str, exam_id: str) -> Optional[FinalizeState]:
        return self._states.get((student_id, exam_id))

    def forget_exam(self, exam_id: str) -> int:
        """
        Drop the guard entries of an exam that is long over.

        Entries still finalizing are kept. Storage keeps rejecting second
        stamps once the entries are gone.
        """
        forgotten = 0
        students = self._students_by_exam.get(exam_id, set())
        for student_id in list(students):
            key = (student_id, exam_id)
            if self._states.get(key) is FinalizeState.SUBMITTED:
                del self._states[key]
                self._outcomes.pop(key, None)
                students.discard(student_id)
                forgotten += 1
        if not students:
            self._students_by_exam.pop(exam_id, None)
        if forgotten:
            logger.debug("Forgot %d finalized attempts of exam %s", forgotten, exam_id)
        return forgotten

    def _claim(self, key: Tuple[str, str]) -> None:
        self._states[key] = FinalizeState.FINALIZING
        self._students_by_exam.setdefault(key[1], set()).add(key[0])

    def _release(self, key: Tuple[str, str]) -> None:
        del self._states[key]
        students = self._students_by_exam.get(key[1])
        if students is not None:
            students.discard(key[0])
            if not students:
                del self._students_by_exam[key[1]]

    def _check_trigger(self, exam: ExamRecord, trigger: Trigger) -> None:
        now = self.now()
        phase = exam_clock.phase_at(exam, now)
        if phase is ExamPhase.PENDING:
            raise ExamNotAvailableYet()
        if trigger is not Trigger.COUNTDOWN:
            return
        # A client countdown needs the server to agree that time is up
        if phase is ExamPhase.ACTIVE and exam_clock.time_left(exam, now) > self.settings.clock_skew_seconds:
            raise ExamStillRunning()

    async def finalize(
        self,
        student_id: str,
        exam_id: str,
        trigger: Trigger,
        connection: Optional[Connection] = None,
    ) -> FinalizationOutcome:
        """
        Finalize (student, exam) once.

        Raises ExamError for failures before submitted_at is stamped; the
        guard is released so the caller may retry. Anything that fails after
        the stamp is logged and left for a later result recomputation.
        A manual submit of an attempt that is already done raises
        ExamAlreadySubmitted; other repeated triggers get the earlier outcome.
        """
        key = (student_id, exam_id)
        if key in self._states:
            logger.debug("Ignoring %s trigger for %s: already %s", trigger.value, key, self._states[key].value)
            if trigger is Trigger.MANUAL:
                raise ExamAlreadySubmitted()
            previous = self._outcomes.get(key)
            if previous is None:
                return FinalizationOutcome(student_id=student_id, exam_id=exam_id, duplicate=True)
            return previous.model_copy(update={"duplicate": True})

        # Claimed before the first await, so concurrent triggers see it
        self._claim(key)
        try:
            exam = await self.gateway.get_exam(exam_id)
            if exam is None:
                raise ExamNotFound()
            self._check_trigger(exam, trigger)
            attempt = await self.gateway.get_or_create_student_exam(student_id, exam_id, self.now())
            stamped = await self.gateway.stamp_submitted(attempt.id, self.now())
        except Exception:
            self._release(key)
            raise

        if not stamped:
            # Someone else (another process, an earlier run) got there first
            self._states[key] = FinalizeState.SUBMITTED
            try:
                stored = await self.gateway.get_student_exam(attempt.id)
            except ExamError as e:
                logger.warning("Could not read back submitted attempt %s: %s", attempt.id, e.code)
                stored = None
            outcome = FinalizationOutcome(
                student_id=student_id,
                exam_id=exam_id,
                status="already_submitted",
                student_exam_id=attempt.id,
                score=stored.score if stored else None,
                max_score=stored.max_score if stored else None,
            )
            self._outcomes[key] = outcome
            logger.info("Student exam %s was already submitted", attempt.id)
            if trigger is Trigger.MANUAL:
                raise ExamAlreadySubmitted()
            return outcome

        logger.info("Student %s submitted exam %s (%s)", student_id, exam_id, trigger.value)
        score = max_score = None
        try:
            score, max_score = await self.results.score_student_exam(attempt.id)
            await self.results.recompute(student_id, exam.course_id, exam.class_id)
        except Exception:
            logger.exception("Scoring failed after submission of student exam %s; not retrying", attempt.id)

        outcome = FinalizationOutcome(
            student_id=student_id,
            exam_id=exam_id,
            status="success" if trigger is Trigger.MANUAL else "expired",
            student_exam_id=attempt.id,
            score=score,
            max_score=max_score,
        )
        self._states[key] = FinalizeState.SUBMITTED
        self._outcomes[key] = outcome

        if connection is not None:
            await self.registry.send(connection, "exam-submitted", outcome.to_wire())
        else:
            await self.registry.send_to_student(student_id, "exam-submitted", outcome.to_wire())
        return outcome
