import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from timetable_ai.core.enums import PatternType
from timetable_ai.core.exceptions import GenerationInProgressError, NotFoundError, ScheduleValidationError
from timetable_ai.core.models import Timetable, TimetableVersion

from .engine import assign_sessions, subject_distribution
from .expander import expand_sessions
from .grid import SlotGrid
from .locks import generation_locks, teacher_locks
from .repository import AssignmentSource, PatternStore, SqlAssignmentSource, SqlPatternStore, SqlTimetableStore
from .schemas import (
    Assignment,
    GenerationConfig,
    GenerationConstraints,
    GenerationResult,
    LearnedPatternData,
    Pagination,
    SchedulingPreferences,
    TimetableSlotResponse,
    TimetableVersionPage,
    TimetableVersionResponse,
)
from .scoring import PatternSnapshot, QualityScorer, find_constraint_violations, score_timetable

logger = logging.getLogger(__name__)


def _fmt_time(value) -> Optional[str]:
    return value.strftime("%H:%M") if value is not None else None


def _slot_to_response(t: Timetable) -> TimetableSlotResponse:
    return TimetableSlotResponse(
        id=t.id,
        school_id=t.school_id,
        class_id=t.class_id,
        subject_id=t.subject_id,
        teacher_id=t.teacher_id,
        teacher_name=t.teacher_name,
        subject_name=t.subject_name,
        class_name=t.class_name,
        day_of_week=t.day_of_week,
        period=t.period,
        start_time=_fmt_time(t.start_time),
        end_time=_fmt_time(t.end_time),
        session_number=t.session_number,
        total_sessions=t.total_sessions,
        score=t.score,
        version_id=t.version_id,
    )


def _version_to_response(v: TimetableVersion) -> TimetableVersionResponse:
    return TimetableVersionResponse.model_validate(v)


def _validation_messages(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]


def resolve_config(
    constraints: Union[GenerationConstraints, Mapping[str, Any], None] = None,
) -> GenerationConfig:
    """Merge per-call constraints over settings and validate the result once."""
    try:
        if constraints is not None and not isinstance(constraints, GenerationConstraints):
            constraints = GenerationConstraints.model_validate(constraints)
        return GenerationConfig.resolve(constraints)
    except ValidationError as exc:
        raise ScheduleValidationError("Invalid generation constraints", _validation_messages(exc)) from exc


def resolve_preferences(
    preferences: Union[SchedulingPreferences, Mapping[str, Any], None] = None,
) -> SchedulingPreferences:
    if preferences is None:
        return SchedulingPreferences()
    if isinstance(preferences, SchedulingPreferences):
        return preferences
    try:
        return SchedulingPreferences.model_validate(preferences)
    except ValidationError as exc:
        raise ScheduleValidationError("Invalid scheduling preferences", _validation_messages(exc)) from exc


async def generate_timetable(
    db: AsyncSession,
    school_id: UUID,
    class_id: UUID,
    assignments: Optional[Sequence[Assignment]] = None,
    constraints: Union[GenerationConstraints, Mapping[str, Any], None] = None,
    preferences: Union[SchedulingPreferences, Mapping[str, Any], None] = None,
    subject_requirements: Optional[Mapping[Union[UUID, str], int]] = None,
    generated_by: Optional[str] = None,
    *,
    assignment_source: Optional[AssignmentSource] = None,
    pattern_store: Optional[PatternStore] = None,
    timetable_store: Optional[SqlTimetableStore] = None,
    wait: bool = True,
) -> GenerationResult:
    """
    Generate and persist a timetable for one class.

    When `assignments` is None the class's active assignments are loaded from
    the assignment source. Runs for the same (school, class) are serialized; with
    wait=False a concurrent run raises GenerationInProgressError instead of queueing.
    With teacher exclusivity on, runs of one school also serialize from the
    teacher-cell read through the commit.
    """
    key = (school_id, class_id)
    if not wait and generation_locks.locked(key):
        raise GenerationInProgressError()
    async with generation_locks.hold(key):
        return await _generate(
            db,
            school_id,
            class_id,
            assignments,
            constraints,
            preferences,
            subject_requirements,
            generated_by,
            assignment_source or SqlAssignmentSource(db),
            pattern_store or SqlPatternStore(db),
            timetable_store or SqlTimetableStore(db),
        )


async def _generate(
    db: AsyncSession,
    school_id: UUID,
    class_id: UUID,
    assignments: Optional[Sequence[Assignment]],
    constraints,
    preferences,
    subject_requirements,
    generated_by: Optional[str],
    assignment_source: AssignmentSource,
    pattern_store: PatternStore,
    timetable_store: SqlTimetableStore,
) -> GenerationResult:
    config = resolve_config(constraints)
    prefs = resolve_preferences(preferences)

    if assignments is None:
        assignments = await assignment_source.list_active_assignments(school_id, class_id)
    assignments = [a for a in assignments if a.class_id == class_id]
    if not assignments:
        raise ScheduleValidationError("No active teacher-subject assignments found for this class")

    units = expand_sessions(assignments, subject_requirements)
    grid = SlotGrid(config.days, config.periods_per_day)
    snapshot = PatternSnapshot(await pattern_store.get_patterns())

    logger.info(
        "Generating timetable for class %s: %d assignments, %d sessions, %d cells, %d learned patterns",
        class_id,
        len(assignments),
        len(units),
        grid.size,
        len(snapshot),
    )
    async with AsyncExitStack() as stack:
        teacher_busy: Dict = {}
        if config.enforce_teacher_exclusivity:
            # Held from reading other classes' cells until this class's cells are committed.
            await stack.enter_async_context(teacher_locks.hold(school_id))
            teacher_busy = await timetable_store.teacher_busy_cells(
                school_id, class_id, (a.teacher_id for a in assignments)
            )

        result = assign_sessions(
            units,
            grid,
            QualityScorer(snapshot, prefs, grid.last_period),
            teacher_busy=teacher_busy,
            enforce_teacher_exclusivity=config.enforce_teacher_exclusivity,
        )
        quality = score_timetable(result.scheduled, config, prefs)
        violations = find_constraint_violations(result.scheduled, config, prefs)
        distribution = subject_distribution(result.scheduled)
        for subject, count in distribution.items():
            logger.info("Subject %s: %d sessions", subject, count)
        if result.is_partial:
            logger.warning(
                "Partial timetable for class %s: %d of %d sessions unassigned",
                class_id,
                len(result.unassigned),
                len(units),
            )

        version = await timetable_store.commit_generation(
            school_id, class_id, result.scheduled, result.unassigned, quality, generated_by
        )

    logger.info("Saved timetable version %s for class %s (quality %.2f)", version.id, class_id, quality)
    return GenerationResult(
        version=_version_to_response(version),
        unassigned=result.unassigned,
        subject_distribution=dict(distribution),
        constraint_violations=violations,
    )


async def generate_for_class(
    db: AsyncSession,
    school_id: UUID,
    class_id: UUID,
    **kwargs: Any,
) -> GenerationResult:
    """Generate from the class's active roster assignments."""
    kwargs.pop("assignments", None)
    return await generate_timetable(db, school_id, class_id, None, **kwargs)


async def get_current_timetable(
    db: AsyncSession,
    school_id: UUID,
    class_id: UUID,
) -> List[TimetableSlotResponse]:
    rows = await SqlTimetableStore(db).list_current_slots(school_id, class_id)
    return [_slot_to_response(t) for t in rows]


async def get_version(db: AsyncSession, version_id: UUID) -> TimetableVersionResponse:
    version = await SqlTimetableStore(db).get_version(version_id)
    if not version:
        raise NotFoundError("Timetable version not found")
    return _version_to_response(version)


async def list_versions(
    db: AsyncSession,
    school_id: UUID,
    class_id: Optional[UUID] = None,
    page: int = 1,
    limit: int = 10,
) -> TimetableVersionPage:
    if page < 1 or limit < 1:
        raise ScheduleValidationError("page and limit must be 1 or greater")
    store = SqlTimetableStore(db)
    total = await store.count_versions(school_id, class_id)
    rows = await store.list_versions(school_id, class_id, offset=(page - 1) * limit, limit=limit)
    return TimetableVersionPage(
        data=[_version_to_response(v) for v in rows],
        pagination=Pagination.build(page, limit, total),
    )


async def count_versions(db: AsyncSession, school_id: UUID, class_id: Optional[UUID] = None) -> int:
    return await SqlTimetableStore(db).count_versions(school_id, class_id)


async def list_patterns(
    db: AsyncSession,
    type: Optional[PatternType] = None,
    entity_id: Optional[UUID] = None,
) -> List[LearnedPatternData]:
    return await SqlPatternStore(db).get_patterns(type=type, entity_id=entity_id)
