"""
Turns human corrections into learned patterns.

A correction that changed the teacher, the period or the day of a slot yields a
pattern preferring the new slot and avoiding the old one. Patterns are stored one
per (type, entity_id) and replaced wholesale on every upsert.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from timetable_ai.core.enums import PatternType
from timetable_ai.core.exceptions import LearningPipelineError, PersistenceError

from .schemas import CorrectionBase, LearnedPatternData, LearningPoints

if TYPE_CHECKING:
    from .repository import PatternStore

logger = logging.getLogger(__name__)

CONFIDENCE: Dict[PatternType, float] = {
    PatternType.TEACHER_PREFERENCE: 0.9,
    PatternType.TIME_SLOT_PREFERENCE: 0.8,
    PatternType.DAY_PREFERENCE: 0.7,
}
# Preferences a reviewer states outright rather than implies through a correction.
EXPLICIT_CONFIDENCE = 1.0
EXPLICIT_REASON = "Stated in feedback session"


def _pattern(pattern_type: PatternType, entity_id: UUID, correction: CorrectionBase) -> LearnedPatternData:
    return LearnedPatternData(
        type=pattern_type,
        entity_id=entity_id,
        preferred_slots=[correction.after.key],
        avoided_slots=[correction.before.key],
        reasons=[correction.reason],
        confidence=CONFIDENCE[pattern_type],
    )


def derive_patterns(correction: CorrectionBase) -> List[LearnedPatternData]:
    before, after = correction.before, correction.after
    patterns: List[LearnedPatternData] = []
    if before.teacher_id != after.teacher_id:
        patterns.append(_pattern(PatternType.TEACHER_PREFERENCE, after.teacher_id, correction))
    if before.period != after.period:
        patterns.append(_pattern(PatternType.TIME_SLOT_PREFERENCE, after.subject_id, correction))
    if before.day != after.day:
        patterns.append(_pattern(PatternType.DAY_PREFERENCE, after.teacher_id, correction))
    return patterns


def _extend_unique(target: List[str], values: Iterable[str]) -> None:
    for value in values:
        if value not in target:
            target.append(value)


def aggregate_patterns(corrections: Iterable[CorrectionBase]) -> List[LearnedPatternData]:
    """One pattern per (type, entity_id) with slots unioned across all corrections."""
    grouped: Dict[Tuple[PatternType, UUID], LearnedPatternData] = {}
    for correction in corrections:
        for pattern in derive_patterns(correction):
            key = (pattern.type, pattern.entity_id)
            current = grouped.get(key)
            if current is None:
                grouped[key] = pattern
                continue
            _extend_unique(current.preferred_slots, pattern.preferred_slots)
            _extend_unique(current.avoided_slots, pattern.avoided_slots)
            current.reasons.extend(pattern.reasons)
    return list(grouped.values())


def patterns_from_learning_points(points: LearningPoints) -> List[LearnedPatternData]:
    patterns: List[LearnedPatternData] = []
    for tp in points.teacher_preferences:
        if tp.preferred_slots or tp.avoided_slots:
            patterns.append(
                LearnedPatternData(
                    type=PatternType.TEACHER_PREFERENCE,
                    entity_id=tp.teacher_id,
                    preferred_slots=tp.preferred_slots,
                    avoided_slots=tp.avoided_slots,
                    reasons=[EXPLICIT_REASON],
                    confidence=EXPLICIT_CONFIDENCE,
                )
            )
    for sp in points.subject_preferences:
        if sp.preferred_slots or sp.avoided_slots:
            patterns.append(
                LearnedPatternData(
                    type=PatternType.SUBJECT_PREFERENCE,
                    entity_id=sp.subject_id,
                    preferred_slots=sp.preferred_slots,
                    avoided_slots=sp.avoided_slots,
                    reasons=[EXPLICIT_REASON],
                    confidence=EXPLICIT_CONFIDENCE,
                )
            )
    return patterns


def merge_pattern(existing: Optional[LearnedPatternData], incoming: LearnedPatternData) -> LearnedPatternData:
    """
    Merge policy for upserts: last write wins. The incoming pattern replaces the
    stored slots, reasons and confidence; only the row identity is kept.
    """
    return incoming.model_copy(
        update={
            "id": existing.id if existing is not None else incoming.id,
            "last_updated": datetime.utcnow(),
        }
    )


class LearningPipeline:
    def __init__(self, store: "PatternStore") -> None:
        self.store = store

    async def _upsert_all(self, patterns: List[LearnedPatternData]) -> List[LearnedPatternData]:
        saved: List[LearnedPatternData] = []
        try:
            for pattern in patterns:
                saved.append(await self.store.upsert_pattern(pattern))
        except (PersistenceError, ValueError) as exc:
            raise LearningPipelineError(f"Failed to store learned patterns: {exc}") from exc
        for p in saved:
            logger.info("Learned %s for %s (confidence %.2f)", p.type.value, p.entity_id, p.confidence)
        return saved

    async def learn_from_correction(self, correction: CorrectionBase) -> List[LearnedPatternData]:
        return await self._upsert_all(derive_patterns(correction))

    async def learn_from_correction_batch(self, corrections: Iterable[CorrectionBase]) -> List[LearnedPatternData]:
        return await self._upsert_all(aggregate_patterns(corrections))

    async def learn_from_learning_points(self, points: LearningPoints) -> List[LearnedPatternData]:
        return await self._upsert_all(patterns_from_learning_points(points))
