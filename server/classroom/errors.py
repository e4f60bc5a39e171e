"""
Error taxonomy shared by the REST routes and the exam socket.

Every error renders as ``{"code": ..., "message": ...}`` so clients can
switch on ``code`` instead of parsing text.
"""
from typing import Dict


class ExamError(Exception):
    code: str = "exam_error"
    http_status: int = 400
    default_message: str = "Exam request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


# Validation errors
class InvalidPayload(ExamError):
    code = "invalid_payload"
    http_status = 422
    default_message = "Malformed request"


class ExamNotFound(ExamError):
    code = "exam_not_found"
    http_status = 404
    default_message = "Exam not found"


class QuestionNotFound(ExamError):
    code = "question_not_found"
    http_status = 404
    default_message = "Question does not belong to this exam"


class StudentExamNotFound(ExamError):
    code = "student_exam_not_found"
    http_status = 404
    default_message = "Student exam not found"


class ResultNotFound(ExamError):
    code = "result_not_found"
    http_status = 404
    default_message = "Result not found"


# Conflicts
class DuplicateEntry(ExamError):
    code = "already_exists"
    http_status = 409
    default_message = "An identical record already exists"


class ExamLocked(ExamError):
    code = "exam_locked"
    http_status = 409
    default_message = "This exam can no longer be changed"


# Exam-window errors
class ExamNotAvailableYet(ExamError):
    code = "not_available_yet"
    http_status = 409
    default_message = "This exam is not available yet"


class ExamNoLongerAvailable(ExamError):
    code = "no_longer_available"
    http_status = 409
    default_message = "This exam is no longer available"


class ExamStillRunning(ExamError):
    code = "still_running"
    http_status = 409
    default_message = "The exam is still running on the server"


class ExamAlreadySubmitted(ExamError):
    code = "already_submitted"
    http_status = 409
    default_message = "This exam has already been submitted"


# Persistence errors
class PersistenceError(ExamError):
    code = "persistence_error"
    http_status = 503
    default_message = "Storage is unavailable, please retry"
