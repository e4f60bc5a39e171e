import uuid

from sqlalchemy import Column, String, Text, Integer, Float, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from classroom.database import Base


def new_id() -> str:
    return uuid.uuid4().hex


class Exam(Base):
    """Exams scheduled by teachers for a class and course"""
    __tablename__ = "exams"
    __table_args__ = (
        UniqueConstraint("class_id", "teacher_id", "start_time", name="uq_exam_class_teacher_start"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    course_id = Column(String(64), nullable=False, index=True)
    teacher_id = Column(String(64), nullable=False)
    class_id = Column(String(64), nullable=False)
    title = Column(String, nullable=False)
    duration = Column(Integer, nullable=False)  # Minutes
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    questions = relationship("Question", back_populates="exam", cascade="all, delete-orphan")


class Question(Base):
    """Four-option multiple choice question owned by an exam"""
    __tablename__ = "questions"
    __table_args__ = (
        UniqueConstraint("exam_id", "question_text", name="uq_question_exam_text"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    exam_id = Column(String(32), ForeignKey("exams.id"), nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    option_a = Column(Text, nullable=False)
    option_b = Column(Text, nullable=False)
    option_c = Column(Text, nullable=False)
    option_d = Column(Text, nullable=False)
    correct_option = Column(String(1), nullable=False)
    weight = Column(Float, nullable=False, default=1.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    exam = relationship("Exam", back_populates="questions")
