"""
Exam Lifecycle Scheduler.

Polls the exams of interest and emits each phase transition exactly once:
exam-upcoming, exam-active, exam-ended. While an exam is active every pass
also pushes exam-timer-update to the students in it. After exam-ended the
scheduler finalizes every student still registered in that exam.
"""
import asyncio
import enum
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from classroom.config import Settings
from classroom.errors import ExamError
from classroom.schemas import ExamRecord, ExamSummary
from classroom.services import exam_clock
from classroom.services.exam_clock import ExamPhase
from classroom.services.finalizer import SubmissionFinalizer, Trigger
from classroom.services.gateway import PersistenceGateway
from classroom.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

# Longest exam the window scan has to reach back for
MAX_EXAM_MINUTES = 24 * 60


class Notified(enum.IntEnum):
    NONE = 0
    UPCOMING = 1
    ACTIVE = 2
    ENDED = 3


def summary_of(exam: ExamRecord) -> dict:
    return ExamSummary(
        exam_id=exam.id,
        title=exam.title,
        course_id=exam.course_id,
        class_id=exam.class_id,
        start_time=exam.start_time,
        duration=exam.duration,
    ).to_wire()


class ExamLifecycleScheduler:

    def __init__(
        self,
        gateway: PersistenceGateway,
        registry: SessionRegistry,
        finalizer: SubmissionFinalizer,
        settings: Settings,
        now: Callable = exam_clock.utcnow,
    ):
        self.gateway = gateway
        self.registry = registry
        self.finalizer = finalizer
        self.settings = settings
        self.now = now
        # exam_id -> highest transition already announced (never decreases)
        self.notified: Dict[str, Notified] = {}
        self._task: Optional[asyncio.Task] = None

    async def _exams_of_interest(self, now: datetime) -> List[ExamRecord]:
        start_from = now - timedelta(minutes=MAX_EXAM_MINUTES, seconds=self.settings.ended_lookback_seconds)
        start_to = now + timedelta(seconds=self.settings.upcoming_window_seconds)
        exams = {e.id: e for e in await self.gateway.list_exams_between(start_from, start_to)}

        for exam_id in self.registry.interested_exam_ids() - set(exams):
            exam = await self.gateway.get_exam(exam_id)
            if exam is not None:
                exams[exam.id] = exam
        return list(exams.values())

    def _forgettable(self, exam: ExamRecord, now: datetime) -> bool:
        lookback = timedelta(seconds=self.settings.ended_lookback_seconds)
        return now >= exam_clock.end_time(exam) + lookback

    async def evaluate(self, now: Optional[datetime] = None) -> None:
        """Run a single pass."""
        now = now or self.now()
        exams = await self._exams_of_interest(now)
        seen = set()

        for exam in exams:
            seen.add(exam.id)
            state = self.notified.get(exam.id, Notified.NONE)
            phase = exam_clock.phase_at(exam, now)
            if phase is ExamPhase.ENDED and self._forgettable(exam, now):
                self.finalizer.forget_exam(exam.id)

            if phase is ExamPhase.PENDING:
                if state < Notified.UPCOMING:
                    self.notified[exam.id] = Notified.UPCOMING
                    logger.info("Exam %s is upcoming", exam.id)
                    await self.registry.broadcast("exam-upcoming", summary_of(exam))

            elif phase is ExamPhase.ACTIVE:
                if state < Notified.ACTIVE:
                    self.notified[exam.id] = Notified.ACTIVE
                    logger.info("Exam %s is active", exam.id)
                    await self.registry.broadcast("exam-active", summary_of(exam))
                await self.registry.send_to_exam(exam.id, "exam-timer-update", {
                    "examId": exam.id,
                    "timeLeft": exam_clock.time_left(exam, now),
                })

            elif state < Notified.ENDED:
                if self._forgettable(exam, now) and state is Notified.NONE:
                    # Ended long before we ever saw it
                    continue
                self.notified[exam.id] = Notified.ENDED
                logger.info("Exam %s has ended", exam.id)
                await self.registry.broadcast("exam-ended", {"examId": exam.id})
                await self._finalize_all(exam)

        for exam_id in list(self.notified):
            if exam_id not in seen and self.notified[exam_id] is Notified.ENDED:
                del self.notified[exam_id]
                self.finalizer.forget_exam(exam_id)

    async def _finalize_all(self, exam: ExamRecord) -> None:
        for student_id in self.registry.students_in_exam(exam.id):
            try:
                await self.finalizer.finalize(student_id, exam.id, Trigger.EXAM_ENDED)
            except ExamError as e:
                logger.warning("Could not finalize exam %s for student %s: %s", exam.id, student_id, e.code)

    async def run(self) -> None:
        """Poll forever; cancel the task to stop."""
        logger.info("Exam scheduler started (every %ss)", self.settings.scheduler_interval_seconds)
        while True:
            try:
                await self.evaluate()
            except ExamError as e:
                logger.error("Exam scheduler pass failed: %s", e.message)
            except Exception:
                logger.exception("Exam scheduler pass crashed")
            await asyncio.sleep(self.settings.scheduler_interval_seconds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
