import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest

# Keep the module-level app off the SQLite file during tests
os.environ.setdefault("STORAGE_BACKEND", "memory")

from classroom.config import Settings
from classroom.dependencies import ExamServices
from classroom.schemas import ExamCreate, QuestionCreate
from classroom.storage import MemoryGateway


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, current):
        self.current = current

    def __call__(self):
        return self.current

    def set(self, when):
        self.current = when

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class SlowGateway(MemoryGateway):
    """Yields to the event loop on every lookup so triggers interleave."""

    async def get_exam(self, exam_id):
        await asyncio.sleep(0)
        return await super().get_exam(exam_id)

    async def stamp_submitted(self, student_exam_id, now):
        await asyncio.sleep(0)
        return await super().stamp_submitted(student_exam_id, now)


def run(coro):
    return asyncio.run(coro)


def drain(connection):
    """Everything queued for a connection so far."""
    messages = []
    while not connection.queue.empty():
        messages.append(connection.queue.get_nowait())
    return messages


def events(messages, name):
    return [m["data"] for m in messages if m["event"] == name]


async def make_exam(
    gateway,
    title="Mid-exam",
    start=T0,
    duration=30,
    weights=(1, 1, 2),
    correct=("A", "B", "C"),
    course_id="course-1",
    class_id="class-1",
):
    exam = await gateway.create_exam(ExamCreate(
        course_id=course_id,
        teacher_id="teacher-1",
        class_id=class_id,
        title=title,
        duration=duration,
        start_time=start,
    ))
    questions = []
    for i, (weight, option) in enumerate(zip(weights, correct)):
        questions.append(await gateway.add_question(exam.id, QuestionCreate(
            question_text=f"Question {i + 1}",
            option_a="first",
            option_b="second",
            option_c="third",
            option_d="fourth",
            correct_option=option,
            weight=weight,
        )))
    return exam, questions


@pytest.fixture
def clock():
    return FakeClock(T0 - timedelta(minutes=5))


@pytest.fixture
def settings():
    return Settings(storage_backend="memory", scheduler_interval_seconds=5)


@pytest.fixture
def gateway():
    return MemoryGateway()


@pytest.fixture
def services(settings, gateway, clock):
    return ExamServices(settings, gateway, now=clock)
