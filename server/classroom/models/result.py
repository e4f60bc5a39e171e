from sqlalchemy import Column, String, Float, Boolean, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from classroom.database import Base
from classroom.models.content import new_id


class Result(Base):
    """Aggregated course result for a student"""
    __tablename__ = "results"
    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_result_student_course"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    student_id = Column(String(64), nullable=False, index=True)
    course_id = Column(String(64), nullable=False)
    class_id = Column(String(64), nullable=False)
    mid_exam_score = Column(Float, nullable=True)
    final_exam_score = Column(Float, nullable=True)
    assignment_score = Column(Float, nullable=True)  # Set by the teacher elsewhere
    overall_score = Column(Float, nullable=True)
    grade = Column(String(2), nullable=True)

    # Teacher-controlled visibility
    is_visible_to_student = Column(Boolean, nullable=False, default=False)
    made_visible_by = Column(String(64), nullable=True)
    made_visible_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
