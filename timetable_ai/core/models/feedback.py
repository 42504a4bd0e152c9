"""Human review of a generated timetable: a feedback session and its append-only corrections."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from timetable_ai.db.session import SCHEMA, Base


class FeedbackSession(Base):
    __tablename__ = "feedback_sessions"
    __table_args__ = {"schema": SCHEMA}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    timetable_version_id = Column(
        UUID(as_uuid=True),
        ForeignKey(f"{SCHEMA}.timetable_versions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    learning_points = Column(JSON, nullable=False, default=dict)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    timetable_version = relationship("TimetableVersion")
    corrections = relationship(
        "Correction",
        back_populates="feedback_session",
        order_by="Correction.created_at",
        cascade="all, delete-orphan",
    )


class Correction(Base):
    __tablename__ = "corrections"
    __table_args__ = {"schema": SCHEMA}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    feedback_id = Column(
        UUID(as_uuid=True),
        ForeignKey(f"{SCHEMA}.feedback_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slot_id = Column(String(100), nullable=False)
    # {"teacher_id", "subject_id", "day", "period"}
    before = Column(JSON, nullable=False)
    after = Column(JSON, nullable=False)
    reason = Column(Text, nullable=False)
    corrected_by = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    feedback_session = relationship("FeedbackSession", back_populates="corrections")
