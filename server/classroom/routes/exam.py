from typing import Optional

from fastapi import APIRouter, Depends, Query

from classroom.dependencies import ExamServices, get_services
from classroom.errors import (
    ExamLocked,
    ExamNotAvailableYet,
    ExamNotFound,
    QuestionNotFound,
    StudentExamNotFound,
)
from classroom.schemas import (
    AttemptState,
    ExamCreate,
    ExamRecord,
    ExamUpdate,
    QuestionCreate,
    QuestionRecord,
    QuestionUpdate,
    SubmitExamRequest,
)
from classroom.services import exam_clock
from classroom.services.exam_clock import ExamPhase
from classroom.services.finalizer import Trigger

router = APIRouter(tags=["Exam"])


def success(data) -> dict:
    return {"status": "success", "data": data}


async def _load_exam(services: ExamServices, exam_id: str) -> ExamRecord:
    exam = await services.gateway.get_exam(exam_id)
    if exam is None:
        raise ExamNotFound()
    return exam


def _exam_with_phase(services: ExamServices, exam: ExamRecord) -> dict:
    data = exam.to_wire()
    data.update(exam_clock.phase_info(exam, services.now()).to_wire())
    return data


async def _load_question(services: ExamServices, exam: ExamRecord, question_id: str) -> QuestionRecord:
    question = await services.gateway.get_question(question_id)
    if question is None or question.exam_id != exam.id:
        raise QuestionNotFound()
    return question


def _ensure_questions_editable(services: ExamServices, exam: ExamRecord) -> None:
    if exam_clock.phase_at(exam, services.now()) is not ExamPhase.PENDING:
        raise ExamLocked("Questions can only be changed before the exam starts")


@router.post("/exams", status_code=201)
async def create_exam(request: ExamCreate, services: ExamServices = Depends(get_services)):
    """Schedule a new exam"""
    exam = await services.gateway.create_exam(request)
    return success(_exam_with_phase(services, exam))


@router.get("/exams")
async def list_exams(
    course_id: Optional[str] = Query(default=None, alias="courseId"),
    class_id: Optional[str] = Query(default=None, alias="classId"),
    teacher_id: Optional[str] = Query(default=None, alias="teacherId"),
    services: ExamServices = Depends(get_services),
):
    """Exams of a course, class or teacher, earliest first"""
    exams = await services.gateway.list_exams(course_id=course_id, class_id=class_id, teacher_id=teacher_id)
    return success([_exam_with_phase(services, exam) for exam in exams])


@router.get("/exams/{exam_id}")
async def get_exam(exam_id: str, services: ExamServices = Depends(get_services)):
    exam = await _load_exam(services, exam_id)
    return success(_exam_with_phase(services, exam))


@router.put("/exams/{exam_id}")
async def update_exam(exam_id: str, request: ExamUpdate, services: ExamServices = Depends(get_services)):
    """
    Edit an exam. The phase is recomputed from the new start time and duration.
    """
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    exam = await services.gateway.update_exam(exam_id, changes)
    if exam is None:
        raise ExamNotFound()
    return success(_exam_with_phase(services, exam))


@router.delete("/exams/{exam_id}")
async def delete_exam(exam_id: str, services: ExamServices = Depends(get_services)):
    """Delete an exam nobody has started yet"""
    exam = await _load_exam(services, exam_id)
    if await services.gateway.count_student_exams(exam.id):
        raise ExamLocked("Students have already taken this exam")
    await services.gateway.delete_exam(exam.id)
    return success({"examId": exam.id})


@router.get("/exams/{exam_id}/phase")
async def get_exam_phase(exam_id: str, services: ExamServices = Depends(get_services)):
    """
    Authoritative phase and time left.

    Clients call this on load and reconcile their countdown against it.
    """
    exam = await _load_exam(services, exam_id)
    return success(exam_clock.phase_info(exam, services.now()).to_wire())


@router.post("/exams/{exam_id}/questions", status_code=201)
async def add_question(exam_id: str, request: QuestionCreate, services: ExamServices = Depends(get_services)):
    exam = await _load_exam(services, exam_id)
    question = await services.gateway.add_question(exam.id, request)
    return success(question.to_wire())


@router.get("/exams/{exam_id}/questions")
async def get_exam_questions(exam_id: str, services: ExamServices = Depends(get_services)):
    """
    Questions for students (no answer key); only once the exam has started
    """
    exam = await _load_exam(services, exam_id)
    if exam_clock.phase_at(exam, services.now()) is ExamPhase.PENDING:
        raise ExamNotAvailableYet()
    questions = await services.gateway.list_questions(exam.id)
    return success({
        "examId": exam.id,
        "questions": [q.student_view() for q in questions],
        "totalQuestions": len(questions),
    })


@router.get("/exams/{exam_id}/questions/full")
async def get_exam_questions_full(exam_id: str, services: ExamServices = Depends(get_services)):
    """
    Questions for the teacher (includes correct options and weights)
    """
    exam = await _load_exam(services, exam_id)
    questions = await services.gateway.list_questions(exam.id)
    return success({
        "examId": exam.id,
        "questions": [q.to_wire() for q in questions],
        "totalWeight": sum(q.weight for q in questions),
    })


@router.put("/exams/{exam_id}/questions/{question_id}")
async def update_question(
    exam_id: str, question_id: str, request: QuestionUpdate, services: ExamServices = Depends(get_services)
):
    exam = await _load_exam(services, exam_id)
    question = await _load_question(services, exam, question_id)
    _ensure_questions_editable(services, exam)
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    updated = await services.gateway.update_question(question.id, changes)
    if updated is None:
        raise QuestionNotFound()
    return success(updated.to_wire())


@router.delete("/exams/{exam_id}/questions/{question_id}")
async def delete_question(exam_id: str, question_id: str, services: ExamServices = Depends(get_services)):
    exam = await _load_exam(services, exam_id)
    question = await _load_question(services, exam, question_id)
    _ensure_questions_editable(services, exam)
    await services.gateway.delete_question(question.id)
    return success({"examId": exam.id, "questionId": question.id})


@router.post("/exams/{exam_id}/submit")
async def submit_exam(exam_id: str, request: SubmitExamRequest, services: ExamServices = Depends(get_services)):
    """
    Student submits the exam over HTTP (same finalizer as the socket event)
    """
    outcome = await services.finalizer.finalize(request.student_id, exam_id, Trigger.MANUAL)
    return success(outcome.to_wire())


@router.get("/student-exams")
async def get_attempt(
    student_id: str = Query(alias="studentId", min_length=1),
    exam_id: str = Query(alias="examId", min_length=1),
    services: ExamServices = Depends(get_services),
):
    """
    Current attempt and saved answers; a reconnecting client resumes from here.
    """
    attempt = await services.gateway.find_student_exam(student_id, exam_id)
    answers = await services.gateway.list_answers(attempt.id) if attempt else []
    return success(AttemptState(student_exam=attempt, answers=answers).to_wire())


@router.post("/student-exams/{student_exam_id}/calculate-score")
async def calculate_score(student_exam_id: str, services: ExamServices = Depends(get_services)):
    attempt = await services.gateway.get_student_exam(student_exam_id)
    if attempt is None:
        raise StudentExamNotFound()
    score, max_score = await services.results.score_student_exam(attempt.id)
    return success({"studentExamId": attempt.id, "score": score, "maxScore": max_score})
