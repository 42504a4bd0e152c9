"""Learned scheduling preference derived from human corrections. One row per (type, entity_id)."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from timetable_ai.db.session import SCHEMA, Base


class LearnedPattern(Base):
    __tablename__ = "learned_patterns"
    __table_args__ = (
        UniqueConstraint("type", "entity_id", name="uq_learned_pattern_type_entity"),
        {"schema": SCHEMA},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(String(50), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    # Slot keys such as "Monday_Period1"
    preferred_slots = Column(JSON, nullable=False, default=list)
    avoided_slots = Column(JSON, nullable=False, default=list)
    reasons = Column(JSON, nullable=False, default=list)
    confidence = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    last_updated = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
