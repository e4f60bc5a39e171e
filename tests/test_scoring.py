import pytest

from classroom.schemas import AnswerRecord, QuestionRecord
from classroom.services import scoring


def question(qid, correct, weight=1):
    return QuestionRecord(
        id=qid,
        exam_id="exam-1",
        question_text=f"Question {qid}",
        option_a="a",
        option_b="b",
        option_c="c",
        option_d="d",
        correct_option=correct,
        weight=weight,
    )


def answer(qid, selected):
    return AnswerRecord(id=f"ans-{qid}", student_exam_id="se-1", question_id=qid, selected_option=selected)


def test_weighted_score_counts_only_matching_options():
    questions = [question("q1", "A", 1), question("q2", "B", 1), question("q3", "C", 2)]
    answers = [answer("q1", "A"), answer("q2", "B"), answer("q3", "D")]
    assert scoring.score_attempt(questions, answers) == (2, 4)


def test_unanswered_questions_still_count_toward_max():
    questions = [question("q1", "A", 1), question("q2", "B", 3)]
    assert scoring.score_attempt(questions, [answer("q1", "A")]) == (1, 4)
    assert scoring.score_attempt(questions, []) == (0, 4)


def test_answers_to_foreign_questions_are_ignored():
    questions = [question("q1", "A")]
    assert scoring.score_attempt(questions, [answer("other", "A")]) == (0, 1)


def test_percentage_of_empty_exam_is_zero():
    assert scoring.percentage(0, 0) == 0
    assert scoring.percentage(2, 4) == 50


@pytest.mark.parametrize("score, grade", [
    (100, "A"),
    (90, "A"),
    (89.99, "B"),
    (85, "B"),
    (80, "B"),
    (70, "C"),
    (60, "D"),
    (59, "F"),
    (0, "F"),
])
def test_grade_thresholds(score, grade):
    assert scoring.grade_for(score) == grade


def test_no_score_means_no_grade():
    assert scoring.grade_for(None) is None


@pytest.mark.parametrize("title, kind", [
    ("Mid-exam", "mid"),
    ("Midterm Physics", "mid"),
    ("Final-exam", "final"),
    ("FINAL", "final"),
    ("Quiz 3", None),
])
def test_exam_kind_from_title(title, kind):
    assert scoring.exam_kind(title) == kind


def test_overall_score_renormalises_over_present_parts():
    assert scoring.overall_score(None, None, None, 0.3, 0.5, 0.2) is None
    assert scoring.overall_score(50, None, None, 0.3, 0.5, 0.2) == 50
    assert scoring.overall_score(50, 100, None, 0.3, 0.5, 0.2) == 81.25
    assert scoring.overall_score(50, 100, 100, 0.3, 0.5, 0.2) == 85
