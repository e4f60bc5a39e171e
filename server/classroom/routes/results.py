from fastapi import APIRouter, Depends

from classroom.dependencies import ExamServices, get_services
from classroom.errors import ResultNotFound
from classroom.routes.exam import success
from classroom.schemas import AssignmentScoreUpdate, CalculateResultRequest, VisibilityUpdate

router = APIRouter(tags=["Results"])


@router.post("/calculate", status_code=201)
async def calculate_result(request: CalculateResultRequest, services: ExamServices = Depends(get_services)):
    """
    Recompute a student's course result from their submitted exams
    """
    result = await services.results.recompute(request.student_id, request.course_id, request.class_id)
    return success(result.to_wire())


@router.get("/{result_id}")
async def get_result(result_id: str, services: ExamServices = Depends(get_services)):
    result = await services.gateway.get_result(result_id)
    if result is None:
        raise ResultNotFound()
    return success(result.to_wire())


@router.put("/{result_id}")
async def update_assignment_score(
    result_id: str, request: AssignmentScoreUpdate, services: ExamServices = Depends(get_services)
):
    """
    Record the assignment mark; overall score and grade are recomputed
    """
    result = await services.results.set_assignment_score(result_id, request.assignment_score)
    return success(result.to_wire())


@router.put("/{result_id}/visibility")
async def update_visibility(
    result_id: str, request: VisibilityUpdate, services: ExamServices = Depends(get_services)
):
    """
    Teacher shows or hides a result from the student
    """
    result = await services.gateway.set_result_visibility(
        result_id, request.is_visible_to_student, request.teacher_id, services.now()
    )
    if result is None:
        raise ResultNotFound()
    return success(result.to_wire())
