"""
Pure scoring and grading policy.

Everything here is a function of persisted data, so results can be rebuilt
at any time without double counting.
"""
from typing import Iterable, Optional, Sequence, Tuple

from classroom.schemas import AnswerRecord, QuestionRecord

# (minimum overall score, grade), checked top-down
GRADE_THRESHOLDS: Sequence[Tuple[float, str]] = (
    (90, "A"),
    (80, "B"),
    (70, "C"),
    (60, "D"),
)
FAILING_GRADE = "F"

MID_EXAM = "mid"
FINAL_EXAM = "final"


def score_attempt(questions: Iterable[QuestionRecord], answers: Iterable[AnswerRecord]) -> Tuple[float, float]:
    """
    Weighted score of an attempt.

    Returns (score, max_score). Unanswered questions earn nothing but still
    count toward max_score; answers to questions outside the exam are ignored.
    """
    selected = {a.question_id: a.selected_option for a in answers}
    score = 0.0
    max_score = 0.0
    for question in questions:
        max_score += question.weight
        if selected.get(question.id) == question.correct_option:
            score += question.weight
    return score, max_score


def percentage(score: float, max_score: float) -> float:
    if max_score <= 0:
        return 0.0
    return round(score / max_score * 100, 2)


def exam_kind(title: str) -> Optional[str]:
    """Which Result field an exam feeds, judged from its title."""
    lowered = (title or "").lower()
    if "mid" in lowered:
        return MID_EXAM
    if "final" in lowered:
        return FINAL_EXAM
    return None


def overall_score(
    mid: Optional[float],
    final: Optional[float],
    assignment: Optional[float],
    mid_weight: float,
    final_weight: float,
    assignment_weight: float,
) -> Optional[float]:
    """Weighted mean of the components present, renormalised to 0-100."""
    parts = [
        (value, weight)
        for value, weight in ((mid, mid_weight), (final, final_weight), (assignment, assignment_weight))
        if value is not None and weight > 0
    ]
    if not parts:
        return None
    total_weight = sum(weight for _, weight in parts)
    return round(sum(value * weight for value, weight in parts) / total_weight, 2)


def grade_for(score: Optional[float]) -> Optional[str]:
    if score is None:
        return None
    for minimum, grade in GRADE_THRESHOLDS:
        if score >= minimum:
            return grade
    return FAILING_GRADE
