"""
Result recomputation for a (student, course) pair.
"""
import logging
from typing import Dict, Optional, Tuple

from classroom.config import Settings
from classroom.errors import ResultNotFound, StudentExamNotFound
from classroom.schemas import ExamRecord, ResultRecord, StudentExamRecord
from classroom.services.gateway import PersistenceGateway
from classroom.services import scoring

logger = logging.getLogger(__name__)


class ResultCalculator:

    def __init__(self, gateway: PersistenceGateway, settings: Settings):
        self.gateway = gateway
        self.settings = settings

    async def score_student_exam(self, student_exam_id: str) -> Tuple[float, float]:
        """Score one attempt from its stored answers and persist the score."""
        attempt = await self.gateway.get_student_exam(student_exam_id)
        if attempt is None:
            raise StudentExamNotFound()
        questions = await self.gateway.list_questions(attempt.exam_id)
        answers = await self.gateway.list_answers(attempt.id)
        score, max_score = scoring.score_attempt(questions, answers)
        await self.gateway.save_score(attempt.id, score, max_score)
        logger.info("Scored student exam %s: %s / %s", attempt.id, score, max_score)
        return score, max_score

    async def recompute(self, student_id: str, course_id: str, class_id: str) -> ResultRecord:
        """
        Rebuild mid/final scores from every submitted attempt of the course.

        assignment_score and visibility are kept from the stored result.
        """
        exams: Dict[str, ExamRecord] = {e.id: e for e in await self.gateway.list_exams(course_id=course_id)}
        attempts = await self.gateway.list_student_exams(student_id, list(exams))

        latest: Dict[str, StudentExamRecord] = {}
        for attempt in attempts:
            if attempt.submitted_at is None:
                continue
            kind = scoring.exam_kind(exams[attempt.exam_id].title)
            if kind is None:
                continue
            current = latest.get(kind)
            if current is None or attempt.submitted_at > current.submitted_at:
                latest[kind] = attempt

        kind_scores: Dict[str, Optional[float]] = {}
        for kind, attempt in latest.items():
            if attempt.score is None or attempt.max_score is None:
                score, max_score = await self.score_student_exam(attempt.id)
            else:
                score, max_score = attempt.score, attempt.max_score
            kind_scores[kind] = scoring.percentage(score, max_score)

        existing = await self.gateway.find_result(student_id, course_id)
        result = existing or ResultRecord(student_id=student_id, course_id=course_id, class_id=class_id)
        result.class_id = class_id
        result.mid_exam_score = kind_scores.get(scoring.MID_EXAM)
        result.final_exam_score = kind_scores.get(scoring.FINAL_EXAM)
        result.overall_score = scoring.overall_score(
            result.mid_exam_score,
            result.final_exam_score,
            result.assignment_score,
            self.settings.mid_exam_weight,
            self.settings.final_exam_weight,
            self.settings.assignment_weight,
        )
        result.grade = scoring.grade_for(result.overall_score)

        saved = await self.gateway.save_result(result)
        logger.info(
            "Result for student %s course %s: overall=%s grade=%s",
            student_id, course_id, saved.overall_score, saved.grade,
        )
        return saved

    async def set_assignment_score(self, result_id: str, assignment_score: Optional[float]) -> ResultRecord:
        """Teacher-entered assignment mark; overall score and grade follow."""
        result = await self.gateway.get_result(result_id)
        if result is None:
            raise ResultNotFound()
        result.assignment_score = assignment_score
        await self.gateway.save_result(result)
        return await self.recompute(result.student_id, result.course_id, result.class_id)
