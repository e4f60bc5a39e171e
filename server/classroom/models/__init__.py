"""
Models package initialization
Import all models here to ensure they are registered with SQLAlchemy
"""

from classroom.models.content import Exam, Question
from classroom.models.session import StudentExam, Answer
from classroom.models.result import Result

__all__ = [
    "Exam",
    "Question",
    "StudentExam",
    "Answer",
    "Result",
]
