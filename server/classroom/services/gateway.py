"""
Persistence Gateway.

The exam flow only talks to storage through this interface. Every method is
a coroutine because any backend may hit the network.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from classroom.schemas import (
    AnswerRecord,
    ExamCreate,
    ExamRecord,
    QuestionCreate,
    QuestionRecord,
    ResultRecord,
    StudentExamRecord,
)


class PersistenceGateway(ABC):
    """Abstract storage contract for exams, attempts, answers and results."""

    # Exams and questions

    @abstractmethod
    async def create_exam(self, data: ExamCreate) -> ExamRecord:
        """Raises DuplicateEntry if the class already has this teacher's exam at that start time."""
        pass

    @abstractmethod
    async def get_exam(self, exam_id: str) -> Optional[ExamRecord]:
        pass

    @abstractmethod
    async def list_exams_between(self, start_from: datetime, start_to: datetime) -> List[ExamRecord]:
        """Exams whose start_time lies in [start_from, start_to]."""
        pass

    @abstractmethod
    async def list_exams(
        self,
        course_id: Optional[str] = None,
        class_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
    ) -> List[ExamRecord]:
        """Exams matching every filter given, ordered by start_time."""
        pass

    @abstractmethod
    async def update_exam(self, exam_id: str, changes: Dict[str, Any]) -> Optional[ExamRecord]:
        pass

    @abstractmethod
    async def delete_exam(self, exam_id: str) -> bool:
        """Delete an exam and its questions."""
        pass

    @abstractmethod
    async def add_question(self, exam_id: str, data: QuestionCreate) -> QuestionRecord:
        """Raises DuplicateEntry if the exam already has this question text."""
        pass

    @abstractmethod
    async def get_question(self, question_id: str) -> Optional[QuestionRecord]:
        pass

    @abstractmethod
    async def update_question(self, question_id: str, changes: Dict[str, Any]) -> Optional[QuestionRecord]:
        pass

    @abstractmethod
    async def delete_question(self, question_id: str) -> bool:
        pass

    @abstractmethod
    async def list_questions(self, exam_id: str) -> List[QuestionRecord]:
        pass

    # Attempts

    @abstractmethod
    async def find_student_exam(self, student_id: str, exam_id: str) -> Optional[StudentExamRecord]:
        pass

    @abstractmethod
    async def get_student_exam(self, student_exam_id: str) -> Optional[StudentExamRecord]:
        pass

    @abstractmethod
    async def get_or_create_student_exam(
        self, student_id: str, exam_id: str, now: datetime
    ) -> StudentExamRecord:
        """
        Return the attempt for (student, exam), creating it only when none
        exists. A concurrent insert that loses the unique constraint must
        re-read and return the winner.
        """
        pass

    @abstractmethod
    async def stamp_submitted(self, student_exam_id: str, now: datetime) -> bool:
        """
        Set submitted_at if it is still empty.

        Returns True only for the call that actually stamped.
        """
        pass

    @abstractmethod
    async def save_score(self, student_exam_id: str, score: float, max_score: float) -> None:
        pass

    @abstractmethod
    async def count_student_exams(self, exam_id: str) -> int:
        pass

    @abstractmethod
    async def list_student_exams(self, student_id: str, exam_ids: Sequence[str]) -> List[StudentExamRecord]:
        pass

    # Answers

    @abstractmethod
    async def upsert_answer(self, student_exam_id: str, question_id: str, selected_option: str) -> AnswerRecord:
        """
        Overwrite the answer for (attempt, question); never insert a second row.

        Raises ExamAlreadySubmitted if the attempt is submitted by the time
        the write lands.
        """
        pass

    @abstractmethod
    async def list_answers(self, student_exam_id: str) -> List[AnswerRecord]:
        pass

    # Results

    @abstractmethod
    async def find_result(self, student_id: str, course_id: str) -> Optional[ResultRecord]:
        pass

    @abstractmethod
    async def get_result(self, result_id: str) -> Optional[ResultRecord]:
        pass

    @abstractmethod
    async def save_result(self, result: ResultRecord) -> ResultRecord:
        """Insert or overwrite the result for (student, course)."""
        pass

    @abstractmethod
    async def set_result_visibility(
        self, result_id: str, visible: bool, teacher_id: Optional[str], now: datetime
    ) -> Optional[ResultRecord]:
        pass
