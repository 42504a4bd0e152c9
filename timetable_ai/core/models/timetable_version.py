"""
Timetable version ledger. Append-only: one row per generation run, never updated.
The current schedule lives in Timetable; versions keep the history.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, String
from sqlalchemy.dialects.postgresql import UUID

from timetable_ai.db.session import SCHEMA, Base


class TimetableVersion(Base):
    __tablename__ = "timetable_versions"
    __table_args__ = {"schema": SCHEMA}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    class_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    slots = Column(JSON, nullable=False, default=list)
    unassigned = Column(JSON, nullable=False, default=list)
    quality_score = Column(Float, nullable=False, default=0.0)
    generated_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
