"""
In-memory Persistence Gateway.

Keeps everything in process dictionaries; used for demos (storage_backend
"memory") and tests. Each method runs without awaiting, so on a single event
loop every operation is atomic and the uniqueness rules hold the same way the
SQL constraints make them hold.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from classroom.errors import DuplicateEntry, ExamAlreadySubmitted
from classroom.schemas import (
    AnswerRecord,
    ExamCreate,
    ExamRecord,
    QuestionCreate,
    QuestionRecord,
    ResultRecord,
    StudentExamRecord,
)
from classroom.services.gateway import PersistenceGateway


def _new_id() -> str:
    return uuid.uuid4().hex


class MemoryGateway(PersistenceGateway):

    def __init__(self):
        # Exam storage: exam_id -> exam
        self.exams: Dict[str, ExamRecord] = {}
        # Questions: exam_id -> list of questions, in creation order
        self.questions: Dict[str, List[QuestionRecord]] = {}
        # Attempts: (student_id, exam_id) -> attempt
        self.student_exams: Dict[Tuple[str, str], StudentExamRecord] = {}
        # Answers: (student_exam_id, question_id) -> answer
        self.answers: Dict[Tuple[str, str], AnswerRecord] = {}
        # Results: (student_id, course_id) -> result
        self.results: Dict[Tuple[str, str], ResultRecord] = {}

    # Exams and questions

    def _exam_clash(self, candidate: ExamRecord) -> bool:
        key = (candidate.class_id, candidate.teacher_id, candidate.start_time)
        return any(
            (e.class_id, e.teacher_id, e.start_time) == key
            for e in self.exams.values()
            if e.id != candidate.id
        )

    def _question_clash(self, candidate: QuestionRecord) -> bool:
        return any(
            q.question_text == candidate.question_text and q.id != candidate.id
            for q in self.questions.get(candidate.exam_id, [])
        )

    async def create_exam(self, data: ExamCreate) -> ExamRecord:
        exam = ExamRecord(id=_new_id(), **data.model_dump())
        if self._exam_clash(exam):
            raise DuplicateEntry("This teacher already has an exam for the class at that time")
        self.exams[exam.id] = exam
        self.questions[exam.id] = []
        return exam.model_copy()

    async def get_exam(self, exam_id: str) -> Optional[ExamRecord]:
        exam = self.exams.get(exam_id)
        return exam.model_copy() if exam else None

    async def list_exams_between(self, start_from: datetime, start_to: datetime) -> List[ExamRecord]:
        found = [e for e in self.exams.values() if start_from <= e.start_time <= start_to]
        return [e.model_copy() for e in sorted(found, key=lambda e: e.start_time)]

    async def list_exams(
        self,
        course_id: Optional[str] = None,
        class_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
    ) -> List[ExamRecord]:
        found = [
            e for e in self.exams.values()
            if (course_id is None or e.course_id == course_id)
            and (class_id is None or e.class_id == class_id)
            and (teacher_id is None or e.teacher_id == teacher_id)
        ]
        return [e.model_copy() for e in sorted(found, key=lambda e: e.start_time)]

    async def update_exam(self, exam_id: str, changes: Dict[str, Any]) -> Optional[ExamRecord]:
        exam = self.exams.get(exam_id)
        if exam is None:
            return None
        updated = exam.model_copy(update=changes)
        if self._exam_clash(updated):
            raise DuplicateEntry("This teacher already has an exam for the class at that time")
        self.exams[exam_id] = updated
        return updated.model_copy()

    async def delete_exam(self, exam_id: str) -> bool:
        if self.exams.pop(exam_id, None) is None:
            return False
        self.questions.pop(exam_id, None)
        return True

    async def add_question(self, exam_id: str, data: QuestionCreate) -> QuestionRecord:
        question = QuestionRecord(id=_new_id(), exam_id=exam_id, **data.model_dump())
        if self._question_clash(question):
            raise DuplicateEntry("The exam already has this question")
        self.questions.setdefault(exam_id, []).append(question)
        return question.model_copy()

    def _question_by_id(self, question_id: str) -> Optional[QuestionRecord]:
        return next(
            (q for questions in self.questions.values() for q in questions if q.id == question_id),
            None,
        )

    async def get_question(self, question_id: str) -> Optional[QuestionRecord]:
        question = self._question_by_id(question_id)
        return question.model_copy() if question else None

    async def update_question(self, question_id: str, changes: Dict[str, Any]) -> Optional[QuestionRecord]:
        question = self._question_by_id(question_id)
        if question is None:
            return None
        updated = question.model_copy(update=changes)
        if self._question_clash(updated):
            raise DuplicateEntry("The exam already has this question")
        questions = self.questions[question.exam_id]
        questions[questions.index(question)] = updated
        return updated.model_copy()

    async def delete_question(self, question_id: str) -> bool:
        question = self._question_by_id(question_id)
        if question is None:
            return False
        self.questions[question.exam_id].remove(question)
        return True

    async def list_questions(self, exam_id: str) -> List[QuestionRecord]:
        return [q.model_copy() for q in self.questions.get(exam_id, [])]

    # Attempts

    def _attempt_by_id(self, student_exam_id: str) -> Optional[StudentExamRecord]:
        return next((se for se in self.student_exams.values() if se.id == student_exam_id), None)

    async def find_student_exam(self, student_id: str, exam_id: str) -> Optional[StudentExamRecord]:
        attempt = self.student_exams.get((student_id, exam_id))
        return attempt.model_copy() if attempt else None

    async def get_student_exam(self, student_exam_id: str) -> Optional[StudentExamRecord]:
        attempt = self._attempt_by_id(student_exam_id)
        return attempt.model_copy() if attempt else None

    async def get_or_create_student_exam(self, student_id: str, exam_id: str, now: datetime) -> StudentExamRecord:
        key = (student_id, exam_id)
        if key not in self.student_exams:
            self.student_exams[key] = StudentExamRecord(
                id=_new_id(), student_id=student_id, exam_id=exam_id, started_at=now
            )
        return self.student_exams[key].model_copy()

    async def stamp_submitted(self, student_exam_id: str, now: datetime) -> bool:
        attempt = self._attempt_by_id(student_exam_id)
        if attempt is None or attempt.submitted_at is not None:
            return False
        attempt.submitted_at = now
        return True

    async def save_score(self, student_exam_id: str, score: float, max_score: float) -> None:
        attempt = self._attempt_by_id(student_exam_id)
        if attempt is not None:
            attempt.score = score
            attempt.max_score = max_score

    async def count_student_exams(self, exam_id: str) -> int:
        return sum(1 for (_, eid) in self.student_exams if eid == exam_id)

    async def list_student_exams(self, student_id: str, exam_ids: Sequence[str]) -> List[StudentExamRecord]:
        wanted = set(exam_ids)
        return [
            se.model_copy()
            for (sid, eid), se in self.student_exams.items()
            if sid == student_id and eid in wanted
        ]

    # Answers

    async def upsert_answer(self, student_exam_id: str, question_id: str, selected_option: str) -> AnswerRecord:
        attempt = self._attempt_by_id(student_exam_id)
        if attempt is not None and attempt.submitted_at is not None:
            raise ExamAlreadySubmitted()
        key = (student_exam_id, question_id)
        answer = self.answers.get(key)
        if answer is None:
            answer = AnswerRecord(
                id=_new_id(),
                student_exam_id=student_exam_id,
                question_id=question_id,
                selected_option=selected_option,
            )
            self.answers[key] = answer
        else:
            answer.selected_option = selected_option
        return answer.model_copy()

    async def list_answers(self, student_exam_id: str) -> List[AnswerRecord]:
        return [a.model_copy() for (se_id, _), a in self.answers.items() if se_id == student_exam_id]

    # Results

    async def find_result(self, student_id: str, course_id: str) -> Optional[ResultRecord]:
        result = self.results.get((student_id, course_id))
        return result.model_copy() if result else None

    async def get_result(self, result_id: str) -> Optional[ResultRecord]:
        result = next((r for r in self.results.values() if r.id == result_id), None)
        return result.model_copy() if result else None

    async def save_result(self, result: ResultRecord) -> ResultRecord:
        key = (result.student_id, result.course_id)
        existing = self.results.get(key)
        stored = result.model_copy(update={"id": existing.id if existing else (result.id or _new_id())})
        self.results[key] = stored
        return stored.model_copy()

    async def set_result_visibility(
        self, result_id: str, visible: bool, teacher_id: Optional[str], now: datetime
    ) -> Optional[ResultRecord]:
        result = next((r for r in self.results.values() if r.id == result_id), None)
        if result is None:
            return None
        result.is_visible_to_student = visible
        if visible:
            result.made_visible_by = teacher_id
            result.made_visible_at = now
        return result.model_copy()
