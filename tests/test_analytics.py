import uuid
from datetime import time

import pytest

from timetable_ai.core.exceptions import NotFoundError
from timetable_ai.timetables import analytics, feedback, service
from timetable_ai.timetables.grid import PeriodClock
from timetable_ai.timetables.schemas import CorrectionCreate, FeedbackSessionCreate


async def _correct(db, feedback_id, slot, reason: str) -> None:
    side = {"teacher_id": slot.teacher_id, "subject_id": slot.subject_id, "day": slot.day, "period": slot.period}
    await feedback.add_correction(
        db,
        CorrectionCreate(
            feedback_id=feedback_id,
            slot_id=slot.id,
            before=side,
            after={**side, "teacher_id": uuid.uuid4()},
            reason=reason,
            corrected_by="principal",
        ),
        apply_to_timetable=False,
    )


@pytest.mark.asyncio
async def test_timetable_analytics(db_session, school_id, class_id, roster) -> None:
    generated = await service.generate_timetable(
        db_session, school_id, class_id, subject_requirements={roster[0].subject_id: 2}
    )
    slot = generated.version.slots[0]
    first = await feedback.create_feedback_session(db_session, FeedbackSessionCreate(timetable_version_id=generated.version.id))
    second = await feedback.create_feedback_session(db_session, FeedbackSessionCreate(timetable_version_id=generated.version.id))
    for reason in ("Clash", "Clash", "Too late"):
        await _correct(db_session, first.id, slot, reason)
    await _correct(db_session, second.id, slot, "Clash")

    result = await analytics.timetable_analytics(db_session, generated.version.id)

    assert result.quality_score == generated.version.quality_score
    assert result.total_feedback_sessions == 2
    assert result.total_corrections == 4
    assert result.average_corrections_per_session == 2.0
    assert [(c.reason, c.count) for c in result.most_common_corrections] == [("Clash", 3), ("Too late", 1)]
    assert result.subject_distribution == {"Mathematics": 2, "English": 1, "Science": 1}
    assert result.subject_distribution == generated.subject_distribution


@pytest.mark.asyncio
async def test_analytics_unknown_version(db_session) -> None:
    with pytest.raises(NotFoundError):
        await analytics.timetable_analytics(db_session, uuid.uuid4())


@pytest.mark.asyncio
async def test_system_performance(db_session, school_id, class_id, roster) -> None:
    first = await service.generate_timetable(db_session, school_id, class_id)
    second = await service.generate_timetable(
        db_session, school_id, class_id, constraints={"days": ["Friday"], "periods_per_day": 6}
    )
    fs = await feedback.create_feedback_session(db_session, FeedbackSessionCreate(timetable_version_id=second.version.id))
    await _correct(db_session, fs.id, second.version.slots[0], "Clash")

    perf = await analytics.system_performance(db_session, school_id)

    assert perf.total_timetables_generated == 2
    assert perf.total_feedback_sessions == 1
    assert perf.total_corrections == 1
    assert perf.learning_patterns == 1
    scores = [first.version.quality_score, second.version.quality_score]
    assert perf.average_quality_score == round(sum(scores) / 2, 2)
    assert perf.system_improvement == analytics.system_improvement(scores)


@pytest.mark.asyncio
async def test_system_performance_for_empty_school(db_session) -> None:
    perf = await analytics.system_performance(db_session, uuid.uuid4())
    assert perf.total_timetables_generated == 0
    assert perf.average_quality_score == 0.0
    assert perf.system_improvement == 0.0


def test_system_improvement() -> None:
    assert analytics.system_improvement([0.5, 0.6, 0.75]) == 50.0
    assert analytics.system_improvement([0.8]) == 0.0
    assert analytics.system_improvement([0.0, 0.4]) == 0.0


@pytest.mark.asyncio
async def test_table_format(db_session, school_id, class_id, roster) -> None:
    await service.generate_timetable(db_session, school_id, class_id)
    current = await service.get_current_timetable(db_session, school_id, class_id)

    table = analytics.to_table_format(current, PeriodClock(time(8, 0), 45, 5, 8))

    assert table.days == ["Monday", "Tuesday", "Wednesday"]
    assert table.periods == ["Period 1", "Period 2", "Period 3"]
    assert table.total_slots == 3
    assert len(table.subjects) == 3
    row = table.data[0]
    assert row.time_slot == "08:00-08:45"
    assert row.slots["Monday"] is not None
    assert row.slots["Tuesday"] is None
    assert row.slots["Monday"].start_time == "08:00"
    assert table.data[2].slots["Wednesday"].period_name == "Period 3"
