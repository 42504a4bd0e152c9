"""
Human review of generated timetables.

Corrections are stored first and learned from second: a failure in the learning
pipeline is logged and reported on the result, it never loses the correction.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from timetable_ai.core.exceptions import (
    LearningPipelineError,
    NotFoundError,
    PersistenceError,
    ScheduleValidationError,
    SlotConflictError,
)
from timetable_ai.core.models import Correction, FeedbackSession

from .learning import LearningPipeline
from .repository import PatternStore, SqlFeedbackStore, SqlPatternStore, SqlTimetableStore
from .schemas import (
    CorrectionCreate,
    CorrectionResponse,
    CorrectionResult,
    FeedbackSessionCreate,
    FeedbackSessionPage,
    FeedbackSessionResponse,
    LearnedPatternData,
    LearningPoints,
    Pagination,
)

logger = logging.getLogger(__name__)


def _correction_to_response(c: Correction) -> CorrectionResponse:
    return CorrectionResponse(
        id=c.id,
        feedback_id=c.feedback_id,
        slot_id=c.slot_id,
        before=c.before,
        after=c.after,
        reason=c.reason,
        corrected_by=c.corrected_by,
        created_at=c.created_at,
    )


def _session_to_response(fs: FeedbackSession) -> FeedbackSessionResponse:
    return FeedbackSessionResponse(
        id=fs.id,
        timetable_version_id=fs.timetable_version_id,
        learning_points=LearningPoints.model_validate(fs.learning_points or {}),
        created_by=fs.created_by,
        created_at=fs.created_at,
        corrections=[_correction_to_response(c) for c in fs.corrections],
    )


async def _commit(db: AsyncSession, what: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError(f"Failed to save {what}") from exc


async def create_feedback_session(
    db: AsyncSession,
    payload: FeedbackSessionCreate,
    *,
    pattern_store: Optional[PatternStore] = None,
) -> FeedbackSessionResponse:
    """Open a review of a timetable version; stated learning points become patterns."""
    if not await SqlTimetableStore(db).get_version(payload.timetable_version_id):
        raise NotFoundError("Timetable version not found")
    store = SqlFeedbackStore(db)
    obj = store.create_feedback_session(
        payload.timetable_version_id, payload.learning_points, payload.created_by
    )
    await _commit(db, "feedback session")
    feedback_id = obj.id

    pipeline = LearningPipeline(pattern_store or SqlPatternStore(db))
    try:
        await pipeline.learn_from_learning_points(payload.learning_points)
    except LearningPipelineError:
        logger.exception("Learning from feedback session %s failed", feedback_id)

    return _session_to_response(await store.get_feedback_session(feedback_id))


async def get_feedback_session(db: AsyncSession, feedback_id: UUID) -> FeedbackSessionResponse:
    obj = await SqlFeedbackStore(db).get_feedback_session(feedback_id)
    if not obj:
        raise NotFoundError("Feedback session not found")
    return _session_to_response(obj)


async def add_correction(
    db: AsyncSession,
    payload: CorrectionCreate,
    *,
    apply_to_timetable: bool = True,
    pattern_store: Optional[PatternStore] = None,
) -> CorrectionResult:
    """
    Record a correction, move the class's current slot accordingly, then learn from it.

    The correction is always stored and learned from. Moving the current slot is
    best-effort: nothing scheduled at `before` or a taken `after` cell leaves the
    timetable as is and is reported through `timetable_updated`/`timetable_error`.
    """
    feedback_store = SqlFeedbackStore(db)
    feedback = await feedback_store.get_feedback_session(payload.feedback_id)
    if not feedback:
        raise NotFoundError("Feedback session not found")

    moved = False
    timetable_error: Optional[str] = None
    if apply_to_timetable:
        timetable_store = SqlTimetableStore(db)
        version = await timetable_store.get_version(feedback.timetable_version_id)
        try:
            moved = await timetable_store.move_slot(
                version.school_id, version.class_id, payload.before, payload.after
            )
        except SlotConflictError as exc:
            logger.warning("Correction on %s not applied to the timetable: %s", payload.slot_id, exc.message)
            timetable_error = exc.message
        else:
            if not moved:
                timetable_error = f"Nothing is scheduled at {payload.before.key}"
    correction = feedback_store.add_correction(payload)
    await _commit(db, "correction")
    # Built before learning: a failed pattern upsert rolls back and expires the session.
    response = _correction_to_response(correction)
    logger.info(
        "Correction %s recorded on %s: %s -> %s (%s)",
        response.id,
        payload.slot_id,
        payload.before.key,
        payload.after.key,
        payload.reason,
    )

    patterns: List[LearnedPatternData] = []
    learning_error: Optional[str] = None
    pipeline = LearningPipeline(pattern_store or SqlPatternStore(db))
    try:
        patterns = await pipeline.learn_from_correction(payload)
    except LearningPipelineError as exc:
        logger.exception("Learning from correction %s failed", response.id)
        learning_error = exc.message

    return CorrectionResult(
        correction=response,
        patterns=patterns,
        learning_error=learning_error,
        timetable_updated=moved,
        timetable_error=timetable_error,
    )


async def learn_from_feedback_session(
    db: AsyncSession,
    feedback_id: UUID,
    *,
    pattern_store: Optional[PatternStore] = None,
) -> List[LearnedPatternData]:
    """Re-learn from every stored correction of a session, one pattern per entity."""
    feedback = await SqlFeedbackStore(db).get_feedback_session(feedback_id)
    if not feedback:
        raise NotFoundError("Feedback session not found")
    try:
        corrections = [_correction_to_response(c) for c in feedback.corrections]
    except ValueError as exc:
        raise ScheduleValidationError(f"Stored correction is malformed: {exc}") from exc
    pipeline = LearningPipeline(pattern_store or SqlPatternStore(db))
    return await pipeline.learn_from_correction_batch(corrections)


async def list_feedback_sessions(
    db: AsyncSession,
    timetable_version_id: UUID,
    page: int = 1,
    limit: int = 10,
) -> FeedbackSessionPage:
    if page < 1 or limit < 1:
        raise ScheduleValidationError("page and limit must be 1 or greater")
    store = SqlFeedbackStore(db)
    total = await store.count_feedback_sessions(timetable_version_id)
    rows = await store.list_feedback_sessions(timetable_version_id, offset=(page - 1) * limit, limit=limit)
    return FeedbackSessionPage(
        data=[_session_to_response(fs) for fs in rows],
        pagination=Pagination.build(page, limit, total),
    )
