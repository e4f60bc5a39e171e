"""
Exam Clock.

Phase is derived from start_time and duration every time it is needed and is
never stored. The server's answer is authoritative; clients only mirror it.
"""
import enum
import math
from datetime import datetime, timedelta, timezone

from classroom.errors import ExamNoLongerAvailable, ExamNotAvailableYet
from classroom.schemas import ExamPhaseInfo, ExamRecord


class ExamPhase(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def end_time(exam: ExamRecord) -> datetime:
    return exam.start_time + timedelta(minutes=exam.duration)


def phase_at(exam: ExamRecord, now: datetime) -> ExamPhase:
    if now < exam.start_time:
        return ExamPhase.PENDING
    if now < end_time(exam):
        return ExamPhase.ACTIVE
    return ExamPhase.ENDED


def time_left(exam: ExamRecord, now: datetime) -> int:
    """Whole seconds until the exam ends; 0 unless the exam is active."""
    if phase_at(exam, now) is not ExamPhase.ACTIVE:
        return 0
    return math.ceil((end_time(exam) - now).total_seconds())


def ensure_writable(exam: ExamRecord, now: datetime) -> None:
    """Raise the matching window error unless the exam accepts writes at ``now``."""
    phase = phase_at(exam, now)
    if phase is ExamPhase.PENDING:
        raise ExamNotAvailableYet()
    if phase is ExamPhase.ENDED:
        raise ExamNoLongerAvailable()


def phase_info(exam: ExamRecord, now: datetime) -> ExamPhaseInfo:
    return ExamPhaseInfo(
        exam_id=exam.id,
        phase=phase_at(exam, now).value,
        time_left=time_left(exam, now),
        start_time=exam.start_time,
        end_time=end_time(exam),
    )
