from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Literal, Any
from datetime import datetime, timezone


OptionLetter = Literal["A", "B", "C", "D"]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite drops tzinfo) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses field names."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return as_utc(value)
        return value

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Stored records (returned by the persistence gateways)
# =============================================================================

class ExamRecord(CamelModel):
    id: str
    course_id: str
    teacher_id: str
    class_id: str
    title: str
    duration: int  # Minutes
    start_time: datetime


class QuestionRecord(CamelModel):
    id: str
    exam_id: str
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_option: OptionLetter
    weight: float = 1.0

    def student_view(self) -> dict:
        """Question as shown while the exam runs (no answer key)."""
        data = self.to_wire()
        data.pop("correctOption", None)
        return data


class StudentExamRecord(CamelModel):
    id: str
    student_id: str
    exam_id: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    score: Optional[float] = None
    max_score: Optional[float] = None


class AnswerRecord(CamelModel):
    id: str
    student_exam_id: str
    question_id: str
    selected_option: OptionLetter


class ResultRecord(CamelModel):
    id: Optional[str] = None
    student_id: str
    course_id: str
    class_id: str
    mid_exam_score: Optional[float] = None
    final_exam_score: Optional[float] = None
    assignment_score: Optional[float] = None
    overall_score: Optional[float] = None
    grade: Optional[str] = None
    is_visible_to_student: bool = False
    made_visible_by: Optional[str] = None
    made_visible_at: Optional[datetime] = None


# =============================================================================
# Requests
# =============================================================================

class ExamCreate(CamelModel):
    course_id: str = Field(min_length=1)
    teacher_id: str = Field(min_length=1)
    class_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    duration: int = Field(ge=1)
    start_time: datetime


class QuestionCreate(CamelModel):
    question_text: str = Field(min_length=1)
    option_a: str = Field(min_length=1)
    option_b: str = Field(min_length=1)
    option_c: str = Field(min_length=1)
    option_d: str = Field(min_length=1)
    correct_option: OptionLetter
    weight: float = Field(ge=0, default=1.0)


class ExamUpdate(CamelModel):
    """Administrative edit; only the fields sent are changed."""
    course_id: Optional[str] = Field(default=None, min_length=1)
    teacher_id: Optional[str] = Field(default=None, min_length=1)
    class_id: Optional[str] = Field(default=None, min_length=1)
    title: Optional[str] = Field(default=None, min_length=1)
    duration: Optional[int] = Field(default=None, ge=1)
    start_time: Optional[datetime] = None


class QuestionUpdate(CamelModel):
    question_text: Optional[str] = Field(default=None, min_length=1)
    option_a: Optional[str] = Field(default=None, min_length=1)
    option_b: Optional[str] = Field(default=None, min_length=1)
    option_c: Optional[str] = Field(default=None, min_length=1)
    option_d: Optional[str] = Field(default=None, min_length=1)
    correct_option: Optional[OptionLetter] = None
    weight: Optional[float] = Field(default=None, ge=0)


class SaveAnswerRequest(CamelModel):
    """Payload of the ``save-answer`` socket event."""
    student_id: str = Field(min_length=1)
    exam_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    selected_option: OptionLetter


class ExamRef(CamelModel):
    exam_id: str = Field(min_length=1)


class SubmitExamRequest(CamelModel):
    student_id: str = Field(min_length=1)


class CalculateResultRequest(CamelModel):
    student_id: str = Field(min_length=1)
    course_id: str = Field(min_length=1)
    class_id: str = Field(min_length=1)


class VisibilityUpdate(CamelModel):
    is_visible_to_student: bool
    teacher_id: Optional[str] = None


class AssignmentScoreUpdate(CamelModel):
    assignment_score: Optional[float] = Field(ge=0, le=100)


# =============================================================================
# Responses / outbound event payloads
# =============================================================================

class ExamPhaseInfo(CamelModel):
    exam_id: str
    phase: str
    time_left: int  # Seconds
    start_time: datetime
    end_time: datetime


class ExamSummary(CamelModel):
    """Payload of ``exam-upcoming`` / ``exam-active``."""
    exam_id: str
    title: str
    course_id: str
    class_id: str
    start_time: datetime
    duration: int


class AttemptState(CamelModel):
    """Attempt plus saved answers, fetched again on reconnect."""
    student_exam: Optional[StudentExamRecord] = None
    answers: List[AnswerRecord] = []
