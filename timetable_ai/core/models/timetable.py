"""Current timetable (source of truth for a class). One row per class/day/period; replaced wholesale on each generation."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Time, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from timetable_ai.db.session import SCHEMA, Base


class Timetable(Base):
    __tablename__ = "timetables"
    __table_args__ = (
        # A class can hold at most one session per cell of the weekly grid.
        UniqueConstraint("school_id", "class_id", "day_of_week", "period", name="uq_timetable_class_cell"),
        {"schema": SCHEMA},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    class_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    subject_id = Column(UUID(as_uuid=True), nullable=False)
    teacher_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    teacher_name = Column(String(255), nullable=True)
    subject_name = Column(String(255), nullable=True)
    class_name = Column(String(255), nullable=True)
    day_of_week = Column(Integer, nullable=False)  # 0=Monday .. 6=Sunday
    period = Column(Integer, nullable=False)  # 1-based
    # Null when the period has no wall-clock mapping.
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    session_number = Column(Integer, nullable=False, default=1)
    total_sessions = Column(Integer, nullable=False, default=1)
    score = Column(Float, nullable=True)
    version_id = Column(
        UUID(as_uuid=True),
        ForeignKey(f"{SCHEMA}.timetable_versions.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    version = relationship("TimetableVersion", foreign_keys=[version_id])
