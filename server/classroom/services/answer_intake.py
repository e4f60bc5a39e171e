"""
Answer Intake.

Saves one selected option per ``save-answer`` event and reports the outcome
to the connection that sent it, never to anyone else.
"""
import asyncio
import logging
from typing import Callable, Dict, Tuple

from pydantic import ValidationError

from classroom.errors import (
    ExamAlreadySubmitted,
    ExamError,
    ExamNotFound,
    InvalidPayload,
    QuestionNotFound,
)
from classroom.schemas import AnswerRecord, SaveAnswerRequest
from classroom.services import exam_clock
from classroom.services.gateway import PersistenceGateway
from classroom.services.session_registry import Connection, SessionRegistry

logger = logging.getLogger(__name__)


class AnswerIntake:

    def __init__(
        self,
        gateway: PersistenceGateway,
        registry: SessionRegistry,
        now: Callable = exam_clock.utcnow,
    ):
        self.gateway = gateway
        self.registry = registry
        self.now = now
        # (student, exam, question) -> [lock, users]; keeps writes in arrival order
        self._locks: Dict[Tuple[str, str, str], list] = {}

    async def save(self, request: SaveAnswerRequest) -> AnswerRecord:
        """Validate against the exam window and upsert the answer."""
        exam = await self.gateway.get_exam(request.exam_id)
        if exam is None:
            raise ExamNotFound()
        exam_clock.ensure_writable(exam, self.now())

        questions = await self.gateway.list_questions(exam.id)
        if not any(q.id == request.question_id for q in questions):
            raise QuestionNotFound()

        key = (request.student_id, request.exam_id, request.question_id)
        entry = self._locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                attempt = await self.gateway.get_or_create_student_exam(request.student_id, exam.id, self.now())
                if attempt.submitted_at is not None:
                    raise ExamAlreadySubmitted()
                return await self.gateway.upsert_answer(attempt.id, request.question_id, request.selected_option)
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    async def handle(self, connection: Connection, payload) -> None:
        """Entry point for the ``save-answer`` socket event."""
        question_id = payload.get("questionId") if isinstance(payload, dict) else None
        try:
            request = SaveAnswerRequest.model_validate(payload)
        except ValidationError as e:
            logger.warning("Rejected save-answer from %s: %s", connection, e.errors())
            await self.registry.send(connection, "answer-save-error", {
                "questionId": question_id,
                "error": InvalidPayload("studentId, examId, questionId and selectedOption (A-D) are required").to_payload(),
            })
            return

        if request.student_id != connection.student_id:
            logger.warning("Connection %s tried to answer for student %s", connection, request.student_id)
            await self.registry.send(connection, "answer-save-error", {
                "questionId": request.question_id,
                "error": InvalidPayload("studentId does not match this connection").to_payload(),
            })
            return

        try:
            answer = await self.save(request)
        except ExamError as e:
            logger.warning("Answer for question %s not saved: %s", request.question_id, e.code)
            await self.registry.send(connection, "answer-save-error", {
                "questionId": request.question_id,
                "error": e.to_payload(),
            })
            return

        await self.registry.send(connection, "answer-saved", {
            "questionId": request.question_id,
            "answerId": answer.id,
        })
