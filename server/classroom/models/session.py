from sqlalchemy import Column, String, Float, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from classroom.database import Base
from classroom.models.content import new_id


class StudentExam(Base):
    """One student's attempt at one exam"""
    __tablename__ = "student_exams"
    __table_args__ = (
        UniqueConstraint("student_id", "exam_id", name="uq_student_exam"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    student_id = Column(String(64), nullable=False, index=True)
    exam_id = Column(String(32), ForeignKey("exams.id"), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)  # First stamp wins
    score = Column(Float, nullable=True)
    max_score = Column(Float, nullable=True)

    # Relationships
    answers = relationship("Answer", back_populates="student_exam", cascade="all, delete-orphan")


class Answer(Base):
    """Selected option for one question of an attempt"""
    __tablename__ = "answers"
    __table_args__ = (
        UniqueConstraint("student_exam_id", "question_id", name="uq_answer_question"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    student_exam_id = Column(String(32), ForeignKey("student_exams.id"), nullable=False, index=True)
    question_id = Column(String(32), ForeignKey("questions.id"), nullable=False)
    selected_option = Column(String(1), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    student_exam = relationship("StudentExam", back_populates="answers")
