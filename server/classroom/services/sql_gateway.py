"""
SQLAlchemy implementation of the Persistence Gateway.

Each call opens its own session and runs in Starlette's threadpool so the
event loop never blocks on the database.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from classroom.errors import DuplicateEntry, ExamAlreadySubmitted, PersistenceError
from classroom.models import Answer, Exam, Question, Result, StudentExam
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

logger = logging.getLogger(__name__)

EXAM_CLASH = "This teacher already has an exam for the class at that time"
QUESTION_CLASH = "The exam already has this question"

RESULT_FIELDS = (
    "class_id",
    "mid_exam_score",
    "final_exam_score",
    "assignment_score",
    "overall_score",
    "grade",
    "is_visible_to_student",
    "made_visible_by",
    "made_visible_at",
)


class SqlGateway(PersistenceGateway):

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _run(self, fn, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except SQLAlchemyError as e:
            logger.exception("Database call %s failed", fn.__name__)
            raise PersistenceError() from e

    @staticmethod
    def _commit_unique(db, message: str) -> None:
        """Commit; a unique-constraint clash becomes DuplicateEntry."""
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise DuplicateEntry(message) from e

    # ------------------------------------------------------------------
    # Exams and questions
    # ------------------------------------------------------------------

    async def create_exam(self, data: ExamCreate) -> ExamRecord:
        return await self._run(self._create_exam, data)

    def _create_exam(self, data: ExamCreate) -> ExamRecord:
        with self.session_factory() as db:
            exam = Exam(**data.model_dump())
            db.add(exam)
            self._commit_unique(db, EXAM_CLASH)
            return ExamRecord.model_validate(exam)

    async def get_exam(self, exam_id: str) -> Optional[ExamRecord]:
        return await self._run(self._get_exam, exam_id)

    def _get_exam(self, exam_id: str) -> Optional[ExamRecord]:
        with self.session_factory() as db:
            exam = db.get(Exam, exam_id)
            return ExamRecord.model_validate(exam) if exam else None

    async def list_exams_between(self, start_from: datetime, start_to: datetime) -> List[ExamRecord]:
        return await self._run(self._list_exams_between, start_from, start_to)

    def _list_exams_between(self, start_from: datetime, start_to: datetime) -> List[ExamRecord]:
        with self.session_factory() as db:
            rows = (
                db.query(Exam)
                .filter(Exam.start_time >= start_from, Exam.start_time <= start_to)
                .order_by(Exam.start_time)
                .all()
            )
            return [ExamRecord.model_validate(row) for row in rows]

    async def list_exams(
        self,
        course_id: Optional[str] = None,
        class_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
    ) -> List[ExamRecord]:
        return await self._run(self._list_exams, course_id, class_id, teacher_id)

    def _list_exams(
        self, course_id: Optional[str], class_id: Optional[str], teacher_id: Optional[str]
    ) -> List[ExamRecord]:
        with self.session_factory() as db:
            query = db.query(Exam)
            if course_id is not None:
                query = query.filter(Exam.course_id == course_id)
            if class_id is not None:
                query = query.filter(Exam.class_id == class_id)
            if teacher_id is not None:
                query = query.filter(Exam.teacher_id == teacher_id)
            return [ExamRecord.model_validate(row) for row in query.order_by(Exam.start_time).all()]

    async def update_exam(self, exam_id: str, changes: Dict[str, Any]) -> Optional[ExamRecord]:
        return await self._run(self._update_exam, exam_id, changes)

    def _update_exam(self, exam_id: str, changes: Dict[str, Any]) -> Optional[ExamRecord]:
        with self.session_factory() as db:
            exam = db.get(Exam, exam_id)
            if exam is None:
                return None
            for field, value in changes.items():
                setattr(exam, field, value)
            self._commit_unique(db, EXAM_CLASH)
            return ExamRecord.model_validate(exam)

    async def delete_exam(self, exam_id: str) -> bool:
        return await self._run(self._delete_exam, exam_id)

    def _delete_exam(self, exam_id: str) -> bool:
        with self.session_factory() as db:
            exam = db.get(Exam, exam_id)
            if exam is None:
                return False
            # Questions go with it (delete-orphan cascade)
            db.delete(exam)
            db.commit()
            return True

    async def add_question(self, exam_id: str, data: QuestionCreate) -> QuestionRecord:
        return await self._run(self._add_question, exam_id, data)

    def _add_question(self, exam_id: str, data: QuestionCreate) -> QuestionRecord:
        with self.session_factory() as db:
            question = Question(exam_id=exam_id, **data.model_dump())
            db.add(question)
            self._commit_unique(db, QUESTION_CLASH)
            return QuestionRecord.model_validate(question)

    async def get_question(self, question_id: str) -> Optional[QuestionRecord]:
        return await self._run(self._get_question, question_id)

    def _get_question(self, question_id: str) -> Optional[QuestionRecord]:
        with self.session_factory() as db:
            question = db.get(Question, question_id)
            return QuestionRecord.model_validate(question) if question else None

    async def update_question(self, question_id: str, changes: Dict[str, Any]) -> Optional[QuestionRecord]:
        return await self._run(self._update_question, question_id, changes)

    def _update_question(self, question_id: str, changes: Dict[str, Any]) -> Optional[QuestionRecord]:
        with self.session_factory() as db:
            question = db.get(Question, question_id)
            if question is None:
                return None
            for field, value in changes.items():
                setattr(question, field, value)
            self._commit_unique(db, QUESTION_CLASH)
            return QuestionRecord.model_validate(question)

    async def delete_question(self, question_id: str) -> bool:
        return await self._run(self._delete_question, question_id)

    def _delete_question(self, question_id: str) -> bool:
        with self.session_factory() as db:
            deleted = db.query(Question).filter(Question.id == question_id).delete(synchronize_session=False)
            db.commit()
            return deleted == 1

    async def list_questions(self, exam_id: str) -> List[QuestionRecord]:
        return await self._run(self._list_questions, exam_id)

    def _list_questions(self, exam_id: str) -> List[QuestionRecord]:
        with self.session_factory() as db:
            rows = db.query(Question).filter(Question.exam_id == exam_id).order_by(Question.created_at).all()
            return [QuestionRecord.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    async def find_student_exam(self, student_id: str, exam_id: str) -> Optional[StudentExamRecord]:
        return await self._run(self._find_student_exam, student_id, exam_id)

    def _find_student_exam(self, student_id: str, exam_id: str) -> Optional[StudentExamRecord]:
        with self.session_factory() as db:
            row = db.query(StudentExam).filter_by(student_id=student_id, exam_id=exam_id).first()
            return StudentExamRecord.model_validate(row) if row else None

    async def get_student_exam(self, student_exam_id: str) -> Optional[StudentExamRecord]:
        return await self._run(self._get_student_exam, student_exam_id)

    def _get_student_exam(self, student_exam_id: str) -> Optional[StudentExamRecord]:
        with self.session_factory() as db:
            row = db.get(StudentExam, student_exam_id)
            return StudentExamRecord.model_validate(row) if row else None

    async def get_or_create_student_exam(self, student_id: str, exam_id: str, now: datetime) -> StudentExamRecord:
        return await self._run(self._get_or_create_student_exam, student_id, exam_id, now)

    def _get_or_create_student_exam(self, student_id: str, exam_id: str, now: datetime) -> StudentExamRecord:
        with self.session_factory() as db:
            row = db.query(StudentExam).filter_by(student_id=student_id, exam_id=exam_id).first()
            if row:
                return StudentExamRecord.model_validate(row)

            row = StudentExam(student_id=student_id, exam_id=exam_id, started_at=now)
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # Another request created it first
                db.rollback()
                row = db.query(StudentExam).filter_by(student_id=student_id, exam_id=exam_id).one()
            else:
                logger.info("Created student exam %s for student %s", row.id, student_id)
            return StudentExamRecord.model_validate(row)

    async def stamp_submitted(self, student_exam_id: str, now: datetime) -> bool:
        return await self._run(self._stamp_submitted, student_exam_id, now)

    def _stamp_submitted(self, student_exam_id: str, now: datetime) -> bool:
        with self.session_factory() as db:
            updated = (
                db.query(StudentExam)
                .filter(StudentExam.id == student_exam_id, StudentExam.submitted_at.is_(None))
                .update({StudentExam.submitted_at: now}, synchronize_session=False)
            )
            db.commit()
            return updated == 1

    async def save_score(self, student_exam_id: str, score: float, max_score: float) -> None:
        await self._run(self._save_score, student_exam_id, score, max_score)

    def _save_score(self, student_exam_id: str, score: float, max_score: float) -> None:
        with self.session_factory() as db:
            db.query(StudentExam).filter(StudentExam.id == student_exam_id).update(
                {StudentExam.score: score, StudentExam.max_score: max_score},
                synchronize_session=False,
            )
            db.commit()

    async def count_student_exams(self, exam_id: str) -> int:
        return await self._run(self._count_student_exams, exam_id)

    def _count_student_exams(self, exam_id: str) -> int:
        with self.session_factory() as db:
            return db.query(StudentExam).filter(StudentExam.exam_id == exam_id).count()

    async def list_student_exams(self, student_id: str, exam_ids: Sequence[str]) -> List[StudentExamRecord]:
        return await self._run(self._list_student_exams, student_id, list(exam_ids))

    def _list_student_exams(self, student_id: str, exam_ids: List[str]) -> List[StudentExamRecord]:
        if not exam_ids:
            return []
        with self.session_factory() as db:
            rows = (
                db.query(StudentExam)
                .filter(StudentExam.student_id == student_id, StudentExam.exam_id.in_(exam_ids))
                .all()
            )
            return [StudentExamRecord.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def upsert_answer(self, student_exam_id: str, question_id: str, selected_option: str) -> AnswerRecord:
        return await self._run(self._upsert_answer, student_exam_id, question_id, selected_option)

    def _upsert_answer(self, student_exam_id: str, question_id: str, selected_option: str) -> AnswerRecord:
        with self.session_factory() as db:
            for _ in range(2):
                self._hold_open_attempt(db, student_exam_id)
                answer = db.query(Answer).filter_by(student_exam_id=student_exam_id, question_id=question_id).first()
                if answer is None:
                    answer = Answer(
                        student_exam_id=student_exam_id,
                        question_id=question_id,
                        selected_option=selected_option,
                    )
                    db.add(answer)
                else:
                    answer.selected_option = selected_option
                try:
                    db.commit()
                except IntegrityError:
                    # Another request inserted the row first; go again as an update
                    db.rollback()
                    continue
                return AnswerRecord.model_validate(answer)
            raise PersistenceError("Could not save the answer, please retry")

    def _hold_open_attempt(self, db, student_exam_id: str) -> None:
        """
        Write-lock the attempt row if it is still unsubmitted.

        A concurrent stamp_submitted waits for this transaction, so an answer
        either lands before the stamp (and is scored) or is refused.
        """
        held = (
            db.query(StudentExam)
            .filter(StudentExam.id == student_exam_id, StudentExam.submitted_at.is_(None))
            .update({StudentExam.submitted_at: None}, synchronize_session=False)
        )
        if held != 1:
            db.rollback()
            raise ExamAlreadySubmitted()

    async def list_answers(self, student_exam_id: str) -> List[AnswerRecord]:
        return await self._run(self._list_answers, student_exam_id)

    def _list_answers(self, student_exam_id: str) -> List[AnswerRecord]:
        with self.session_factory() as db:
            rows = db.query(Answer).filter(Answer.student_exam_id == student_exam_id).all()
            return [AnswerRecord.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def find_result(self, student_id: str, course_id: str) -> Optional[ResultRecord]:
        return await self._run(self._find_result, student_id, course_id)

    def _find_result(self, student_id: str, course_id: str) -> Optional[ResultRecord]:
        with self.session_factory() as db:
            row = db.query(Result).filter_by(student_id=student_id, course_id=course_id).first()
            return ResultRecord.model_validate(row) if row else None

    async def get_result(self, result_id: str) -> Optional[ResultRecord]:
        return await self._run(self._get_result, result_id)

    def _get_result(self, result_id: str) -> Optional[ResultRecord]:
        with self.session_factory() as db:
            row = db.get(Result, result_id)
            return ResultRecord.model_validate(row) if row else None

    async def save_result(self, result: ResultRecord) -> ResultRecord:
        return await self._run(self._save_result, result)

    def _save_result(self, result: ResultRecord) -> ResultRecord:
        with self.session_factory() as db:
            row = db.query(Result).filter_by(student_id=result.student_id, course_id=result.course_id).first()
            if row is None:
                row = Result(student_id=result.student_id, course_id=result.course_id)
                db.add(row)
            for field in RESULT_FIELDS:
                setattr(row, field, getattr(result, field))
            db.commit()
            return ResultRecord.model_validate(row)

    async def set_result_visibility(
        self, result_id: str, visible: bool, teacher_id: Optional[str], now: datetime
    ) -> Optional[ResultRecord]:
        return await self._run(self._set_result_visibility, result_id, visible, teacher_id, now)

    def _set_result_visibility(
        self, result_id: str, visible: bool, teacher_id: Optional[str], now: datetime
    ) -> Optional[ResultRecord]:
        with self.session_factory() as db:
            row = db.get(Result, result_id)
            if row is None:
                return None
            row.is_visible_to_student = visible
            if visible:
                row.made_visible_by = teacher_id
                row.made_visible_at = now
            db.commit()
            return ResultRecord.model_validate(row)
