"""
Storage seams of the scheduler.

AssignmentSource and PatternStore are the interfaces the generation and learning
code depend on; the Sql* classes implement them (and the version ledger) on an
AsyncSession.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from timetable_ai.core.enums import PatternType, Weekday
from timetable_ai.core.exceptions import PersistenceError, SlotConflictError
from timetable_ai.core.models import (
    Correction,
    FeedbackSession,
    LearnedPattern,
    TeacherSubjectAssignment,
    Timetable,
    TimetableVersion,
)

from .grid import PeriodClock, Slot
from .learning import merge_pattern
from .locks import pattern_locks
from .schemas import (
    Assignment,
    CorrectionCreate,
    LearnedPatternData,
    LearningPoints,
    ScheduledSession,
    SessionUnit,
    SlotAssignment,
)

logger = logging.getLogger(__name__)


class AssignmentSource(ABC):
    @abstractmethod
    async def list_active_assignments(self, school_id: UUID, class_id: UUID) -> List[Assignment]:
        ...


class PatternStore(ABC):
    @abstractmethod
    async def get_patterns(
        self,
        type: Optional[PatternType] = None,
        entity_id: Optional[UUID] = None,
    ) -> List[LearnedPatternData]:
        ...

    @abstractmethod
    async def upsert_pattern(self, pattern: LearnedPatternData) -> LearnedPatternData:
        ...


class SqlAssignmentSource(AssignmentSource):
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_active_assignments(self, school_id: UUID, class_id: UUID) -> List[Assignment]:
        result = await self.db.execute(
            select(TeacherSubjectAssignment)
            .where(
                TeacherSubjectAssignment.school_id == school_id,
                TeacherSubjectAssignment.class_id == class_id,
                TeacherSubjectAssignment.is_active.is_(True),
            )
            .order_by(TeacherSubjectAssignment.created_at, TeacherSubjectAssignment.id)
        )
        return [Assignment.model_validate(row) for row in result.scalars().all()]


def _pattern_to_data(row: LearnedPattern) -> LearnedPatternData:
    return LearnedPatternData(
        id=row.id,
        type=row.type,
        entity_id=row.entity_id,
        preferred_slots=list(row.preferred_slots or []),
        avoided_slots=list(row.avoided_slots or []),
        reasons=list(row.reasons or []),
        confidence=row.confidence,
        last_updated=row.last_updated,
    )


class SqlPatternStore(PatternStore):
    """
    Upserts are serialized per (type, entity_id): an in-process lock, a row lock
    on the existing record, and the unique constraint for concurrent inserts from
    other processes (the losing insert is retried as an update).
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_patterns(
        self,
        type: Optional[PatternType] = None,
        entity_id: Optional[UUID] = None,
    ) -> List[LearnedPatternData]:
        stmt = select(LearnedPattern)
        if type is not None:
            stmt = stmt.where(LearnedPattern.type == PatternType(type).value)
        if entity_id is not None:
            stmt = stmt.where(LearnedPattern.entity_id == entity_id)
        stmt = stmt.order_by(LearnedPattern.last_updated.desc(), LearnedPattern.id)
        result = await self.db.execute(stmt)
        return [_pattern_to_data(row) for row in result.scalars().all()]

    async def _write(self, pattern: LearnedPatternData) -> LearnedPatternData:
        result = await self.db.execute(
            select(LearnedPattern)
            .where(
                LearnedPattern.type == pattern.type.value,
                LearnedPattern.entity_id == pattern.entity_id,
            )
            .with_for_update()
        )
        row = result.scalar_one_or_none()
        merged = merge_pattern(_pattern_to_data(row) if row else None, pattern)
        if row is None:
            row = LearnedPattern(id=merged.id or uuid.uuid4(), type=merged.type.value, entity_id=merged.entity_id)
            self.db.add(row)
        row.preferred_slots = list(merged.preferred_slots)
        row.avoided_slots = list(merged.avoided_slots)
        row.reasons = list(merged.reasons)
        row.confidence = merged.confidence
        row.last_updated = merged.last_updated
        await self.db.commit()
        return _pattern_to_data(row)

    async def upsert_pattern(self, pattern: LearnedPatternData) -> LearnedPatternData:
        async with pattern_locks.hold((pattern.type, pattern.entity_id)):
            try:
                try:
                    return await self._write(pattern)
                except IntegrityError:
                    # Another writer inserted the same (type, entity_id) first.
                    await self.db.rollback()
                    return await self._write(pattern)
            except SQLAlchemyError as exc:
                await self.db.rollback()
                raise PersistenceError(f"Failed to save {pattern.type.value} pattern") from exc


class SqlTimetableStore:
    """
    Current slots (Timetable) and the append-only version ledger (TimetableVersion).
    The staging methods only add to the session; commit_generation commits.
    """

    def __init__(self, db: AsyncSession, clock: Optional[PeriodClock] = None) -> None:
        self.db = db
        self.clock = clock or PeriodClock.from_settings()

    async def teacher_busy_cells(
        self,
        school_id: UUID,
        exclude_class_id: UUID,
        teacher_ids: Iterable[UUID],
    ) -> Dict[UUID, List[Slot]]:
        ids = list(set(teacher_ids))
        if not ids:
            return {}
        result = await self.db.execute(
            select(Timetable.teacher_id, Timetable.day_of_week, Timetable.period).where(
                Timetable.school_id == school_id,
                Timetable.class_id != exclude_class_id,
                Timetable.teacher_id.in_(ids),
            )
        )
        busy: Dict[UUID, List[Slot]] = {}
        for teacher_id, day_of_week, period in result.all():
            busy.setdefault(teacher_id, []).append(Slot(Weekday(day_of_week), period))
        return busy

    def _slot_row(
        self,
        school_id: UUID,
        session: ScheduledSession,
        version_id: Optional[UUID],
    ) -> Timetable:
        window = self.clock.window(session.period)
        if window is None:
            logger.warning("No wall-clock time for period %d; storing %s without times", session.period, session.slot_key)
        return Timetable(
            school_id=school_id,
            class_id=session.class_id,
            subject_id=session.subject_id,
            teacher_id=session.teacher_id,
            teacher_name=session.teacher_name,
            subject_name=session.subject_name,
            class_name=session.class_name,
            day_of_week=int(session.day),
            period=session.period,
            start_time=window[0] if window else None,
            end_time=window[1] if window else None,
            session_number=session.session_number,
            total_sessions=session.total_sessions,
            score=session.score,
            version_id=version_id,
        )

    async def replace_class_slots(
        self,
        school_id: UUID,
        class_id: UUID,
        sessions: Sequence[ScheduledSession],
        version_id: Optional[UUID] = None,
    ) -> None:
        await self.db.execute(
            delete(Timetable).where(Timetable.school_id == school_id, Timetable.class_id == class_id)
        )
        self.db.add_all([self._slot_row(school_id, s, version_id) for s in sessions])

    async def append_version(
        self,
        school_id: UUID,
        class_id: UUID,
        sessions: Sequence[ScheduledSession],
        unassigned: Sequence[SessionUnit],
        quality_score: float,
        generated_by: Optional[str] = None,
    ) -> TimetableVersion:
        version = TimetableVersion(
            id=uuid.uuid4(),
            school_id=school_id,
            class_id=class_id,
            slots=[s.model_dump(mode="json") for s in sessions],
            unassigned=[u.model_dump(mode="json") for u in unassigned],
            quality_score=quality_score,
            generated_by=generated_by,
            created_at=datetime.utcnow(),
        )
        self.db.add(version)
        await self.db.flush()
        return version

    async def commit_generation(
        self,
        school_id: UUID,
        class_id: UUID,
        sessions: Sequence[ScheduledSession],
        unassigned: Sequence[SessionUnit],
        quality_score: float,
        generated_by: Optional[str] = None,
    ) -> TimetableVersion:
        """Append the version and replace the class's current slots in one transaction."""
        try:
            version = await self.append_version(
                school_id, class_id, sessions, unassigned, quality_score, generated_by
            )
            await self.replace_class_slots(school_id, class_id, sessions, version_id=version.id)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Saving timetable for class %s failed, rolled back: %s", class_id, exc)
            raise PersistenceError("Failed to save generated timetable") from exc
        return version

    async def list_current_slots(self, school_id: UUID, class_id: UUID) -> List[Timetable]:
        result = await self.db.execute(
            select(Timetable)
            .where(Timetable.school_id == school_id, Timetable.class_id == class_id)
            .order_by(Timetable.day_of_week, Timetable.period)
        )
        return list(result.scalars().all())

    async def get_version(self, version_id: UUID) -> Optional[TimetableVersion]:
        return await self.db.get(TimetableVersion, version_id)

    def _versions_filter(self, stmt, school_id: UUID, class_id: Optional[UUID]):
        stmt = stmt.where(TimetableVersion.school_id == school_id)
        if class_id is not None:
            stmt = stmt.where(TimetableVersion.class_id == class_id)
        return stmt

    async def list_versions(
        self,
        school_id: UUID,
        class_id: Optional[UUID] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> List[TimetableVersion]:
        stmt = self._versions_filter(select(TimetableVersion), school_id, class_id)
        stmt = stmt.order_by(TimetableVersion.created_at.desc()).offset(offset).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_versions(self, school_id: UUID, class_id: Optional[UUID] = None) -> int:
        stmt = self._versions_filter(select(func.count(TimetableVersion.id)), school_id, class_id)
        return (await self.db.execute(stmt)).scalar_one()

    async def version_ids(self, school_id: UUID, class_id: Optional[UUID] = None) -> List[UUID]:
        stmt = self._versions_filter(select(TimetableVersion.id), school_id, class_id)
        return list((await self.db.execute(stmt)).scalars().all())

    async def _cell(self, school_id: UUID, class_id: UUID, slot: Slot) -> Optional[Timetable]:
        result = await self.db.execute(
            select(Timetable).where(
                Timetable.school_id == school_id,
                Timetable.class_id == class_id,
                Timetable.day_of_week == int(slot.day),
                Timetable.period == slot.period,
            )
        )
        return result.scalar_one_or_none()

    async def move_slot(
        self,
        school_id: UUID,
        class_id: UUID,
        before: SlotAssignment,
        after: SlotAssignment,
    ) -> bool:
        """
        Rewrite the current slot at `before` to `after` (teacher, subject, cell).
        Returns False when nothing is scheduled at `before`. Does not commit.
        """
        row = await self._cell(school_id, class_id, before.slot)
        if row is None:
            return False
        if after.slot != before.slot:
            target = await self._cell(school_id, class_id, after.slot)
            if target is not None:
                raise SlotConflictError(f"{after.key} is already taken for this class")

        if (row.teacher_id, row.subject_id) != (after.teacher_id, after.subject_id):
            result = await self.db.execute(
                select(TeacherSubjectAssignment).where(
                    TeacherSubjectAssignment.school_id == school_id,
                    TeacherSubjectAssignment.class_id == class_id,
                    TeacherSubjectAssignment.teacher_id == after.teacher_id,
                    TeacherSubjectAssignment.subject_id == after.subject_id,
                )
            )
            roster = result.scalar_one_or_none()
            row.teacher_name = roster.teacher_name if roster else None
            row.subject_name = roster.subject_name if roster else None
            row.teacher_id = after.teacher_id
            row.subject_id = after.subject_id

        window = self.clock.window(after.period)
        row.day_of_week = int(after.day)
        row.period = after.period
        row.start_time = window[0] if window else None
        row.end_time = window[1] if window else None
        row.score = None
        return True


class SqlFeedbackStore:
    """Feedback sessions and their append-only corrections. Staging only; callers commit."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def create_feedback_session(
        self,
        timetable_version_id: UUID,
        learning_points: LearningPoints,
        created_by: Optional[str] = None,
    ) -> FeedbackSession:
        obj = FeedbackSession(
            id=uuid.uuid4(),
            timetable_version_id=timetable_version_id,
            learning_points=learning_points.model_dump(mode="json"),
            created_by=created_by,
            created_at=datetime.utcnow(),
        )
        self.db.add(obj)
        return obj

    def add_correction(self, payload: CorrectionCreate) -> Correction:
        obj = Correction(
            id=uuid.uuid4(),
            feedback_id=payload.feedback_id,
            slot_id=payload.slot_id,
            before=payload.before.model_dump(mode="json"),
            after=payload.after.model_dump(mode="json"),
            reason=payload.reason,
            corrected_by=payload.corrected_by,
            created_at=datetime.utcnow(),
        )
        self.db.add(obj)
        return obj

    async def get_feedback_session(self, feedback_id: UUID) -> Optional[FeedbackSession]:
        result = await self.db.execute(
            select(FeedbackSession)
            .where(FeedbackSession.id == feedback_id)
            .options(selectinload(FeedbackSession.corrections))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_feedback_sessions(
        self,
        timetable_version_id: UUID,
        offset: int = 0,
        limit: int = 10,
    ) -> List[FeedbackSession]:
        result = await self.db.execute(
            select(FeedbackSession)
            .where(FeedbackSession.timetable_version_id == timetable_version_id)
            .options(selectinload(FeedbackSession.corrections))
            .order_by(FeedbackSession.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_feedback_sessions(self, timetable_version_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(FeedbackSession.id)).where(
                FeedbackSession.timetable_version_id == timetable_version_id
            )
        )
        return result.scalar_one()

    async def corrections_for_versions(self, version_ids: Sequence[UUID]) -> List[Correction]:
        if not version_ids:
            return []
        result = await self.db.execute(
            select(Correction)
            .join(FeedbackSession, Correction.feedback_id == FeedbackSession.id)
            .where(FeedbackSession.timetable_version_id.in_(list(version_ids)))
            .order_by(Correction.created_at)
        )
        return list(result.scalars().all())

    async def count_sessions_for_versions(self, version_ids: Sequence[UUID]) -> int:
        if not version_ids:
            return 0
        result = await self.db.execute(
            select(func.count(FeedbackSession.id)).where(
                FeedbackSession.timetable_version_id.in_(list(version_ids))
            )
        )
        return result.scalar_one()
