from collections import Counter
from typing import Dict, List, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timetable_ai.core.enums import Weekday
from timetable_ai.core.exceptions import NotFoundError
from timetable_ai.core.models import LearnedPattern

from .engine import subject_distribution
from .grid import PeriodClock
from .repository import SqlFeedbackStore, SqlTimetableStore
from .schemas import (
    CorrectionReasonCount,
    ScheduledSession,
    SystemPerformance,
    TableCell,
    TableRow,
    TableSummaryEntry,
    TimetableAnalytics,
    TimetableSlotResponse,
    TimetableTable,
)

TOP_CORRECTION_REASONS = 5
RECENT_VERSIONS = 10

TableInput = Union[ScheduledSession, TimetableSlotResponse]


def system_improvement(scores_oldest_first: Sequence[float]) -> float:
    """Percentage change from the first to the last quality score."""
    if len(scores_oldest_first) < 2 or not scores_oldest_first[0]:
        return 0.0
    first, last = scores_oldest_first[0], scores_oldest_first[-1]
    return round((last - first) / first * 100, 2)


async def timetable_analytics(db: AsyncSession, version_id: UUID) -> TimetableAnalytics:
    version = await SqlTimetableStore(db).get_version(version_id)
    if not version:
        raise NotFoundError("Timetable version not found")
    feedback_store = SqlFeedbackStore(db)
    sessions = await feedback_store.count_sessions_for_versions([version_id])
    corrections = await feedback_store.corrections_for_versions([version_id])
    reasons = Counter(c.reason for c in corrections).most_common(TOP_CORRECTION_REASONS)
    return TimetableAnalytics(
        timetable_version_id=version.id,
        quality_score=version.quality_score,
        total_feedback_sessions=sessions,
        total_corrections=len(corrections),
        average_corrections_per_session=round(len(corrections) / sessions, 2) if sessions else 0.0,
        most_common_corrections=[CorrectionReasonCount(reason=r, count=n) for r, n in reasons],
        subject_distribution=dict(
            subject_distribution(ScheduledSession.model_validate(s) for s in version.slots or [])
        ),
    )


async def system_performance(db: AsyncSession, school_id: UUID) -> SystemPerformance:
    timetable_store = SqlTimetableStore(db)
    feedback_store = SqlFeedbackStore(db)
    recent = await timetable_store.list_versions(school_id, limit=RECENT_VERSIONS)
    total_versions = await timetable_store.count_versions(school_id)

    all_ids = await timetable_store.version_ids(school_id)
    sessions = await feedback_store.count_sessions_for_versions(all_ids)
    corrections = await feedback_store.corrections_for_versions(all_ids)
    patterns = (await db.execute(select(func.count(LearnedPattern.id)))).scalar_one()

    scores = [v.quality_score for v in recent]
    return SystemPerformance(
        school_id=school_id,
        average_quality_score=round(sum(scores) / len(scores), 2) if scores else 0.0,
        total_timetables_generated=total_versions,
        total_feedback_sessions=sessions,
        total_corrections=len(corrections),
        learning_patterns=patterns,
        system_improvement=system_improvement(list(reversed(scores))),
    )


def to_table_format(
    slots: Sequence[TableInput],
    clock: Optional[PeriodClock] = None,
) -> TimetableTable:
    """Pivot sessions into one row per period with a column per day."""
    clock = clock or PeriodClock.from_settings()
    normalised = [_cell_source(s) for s in slots]
    days = sorted({day for day, _, _ in normalised})
    periods = sorted({period for _, period, _ in normalised})

    matrix: Dict[int, Dict[str, Optional[TableCell]]] = {
        p: {d.label: None for d in days} for p in periods
    }
    subjects: Dict[UUID, TableSummaryEntry] = {}
    teachers: Dict[UUID, TableSummaryEntry] = {}
    for day, period, slot in normalised:
        window = clock.window(period)
        matrix[period][day.label] = TableCell(
            subject_id=slot.subject_id,
            subject_name=slot.subject_name,
            teacher_id=slot.teacher_id,
            teacher_name=slot.teacher_name,
            start_time=window[0].strftime("%H:%M") if window else "",
            end_time=window[1].strftime("%H:%M") if window else "",
            period_name=clock.label(period),
            day_name=day.label,
        )
        subjects.setdefault(slot.subject_id, TableSummaryEntry(id=slot.subject_id, name=slot.subject_name))
        teachers.setdefault(slot.teacher_id, TableSummaryEntry(id=slot.teacher_id, name=slot.teacher_name))

    rows: List[TableRow] = []
    for period in periods:
        window = clock.window(period)
        rows.append(
            TableRow(
                period=period,
                period_name=clock.label(period),
                time_slot=f"{window[0].strftime('%H:%M')}-{window[1].strftime('%H:%M')}" if window else "",
                slots=matrix[period],
            )
        )
    return TimetableTable(
        days=[d.label for d in days],
        periods=[clock.label(p) for p in periods],
        data=rows,
        subjects=list(subjects.values()),
        teachers=list(teachers.values()),
        total_slots=len(slots),
    )


def _cell_source(slot: TableInput):
    if isinstance(slot, TimetableSlotResponse):
        return Weekday(slot.day_of_week), slot.period, slot
    return slot.day, slot.period, slot
