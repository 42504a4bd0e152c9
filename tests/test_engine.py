import uuid
from collections import Counter

from timetable_ai.core.enums import Weekday
from timetable_ai.timetables.engine import assign_sessions
from timetable_ai.timetables.expander import expand_sessions
from timetable_ai.timetables.grid import Slot, SlotGrid
from timetable_ai.timetables.scoring import QualityScorer

WEEK = [Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY]


def _cells(sessions):
    return [(s.class_id, s.day, s.period) for s in sessions]


def test_three_subjects_two_sessions_each(class_id, make_assignment) -> None:
    """3 subjects x 2 sessions in a 30-cell grid: all 6 placed, no cell reused."""
    assignments = [make_assignment(class_id, n) for n in ("Mathematics", "English", "Science")]
    units = expand_sessions(assignments, {a.subject_id: 2 for a in assignments})
    result = assign_sessions(units, SlotGrid(WEEK, 6))
    assert len(result.scheduled) == 6
    assert result.unassigned == []
    assert len(set(_cells(result.scheduled))) == 6


def test_overflow_fills_grid_and_reports_rest(class_id, make_assignment) -> None:
    """40 required sessions against 30 cells: 30 placed, 10 unassigned, no duplicates."""
    assignments = [make_assignment(class_id, f"Subject {i}") for i in range(4)]
    units = expand_sessions(assignments, {a.subject_id: 10 for a in assignments})
    result = assign_sessions(units, SlotGrid(WEEK, 6))
    assert len(result.scheduled) == 30
    assert len(result.unassigned) == 10
    assert len(set(_cells(result.scheduled))) == 30
    assert result.is_partial
    # Unassigned units keep expansion order.
    assert result.unassigned == units[30:]


def test_every_unit_is_scheduled_or_unassigned(class_id, make_assignment) -> None:
    assignments = [make_assignment(class_id, f"Subject {i}") for i in range(3)]
    units = expand_sessions(assignments, {assignments[0].subject_id: 5, assignments[1].subject_id: 4})
    result = assign_sessions(units, SlotGrid(WEEK[:2], 4))
    assert len(result.scheduled) + len(result.unassigned) == len(units)
    placed = Counter((s.subject_id, s.session_number) for s in result.scheduled)
    missing = Counter((u.subject_id, u.session_number) for u in result.unassigned)
    assert placed + missing == Counter((u.subject_id, u.session_number) for u in units)


def test_assignment_is_deterministic(class_id, make_assignment) -> None:
    assignments = [make_assignment(class_id, f"Subject {i}") for i in range(5)]
    units = expand_sessions(assignments, {a.subject_id: 3 for a in assignments})
    first = assign_sessions(units, SlotGrid(WEEK, 6), QualityScorer(last_period=6))
    second = assign_sessions(units, SlotGrid(WEEK, 6), QualityScorer(last_period=6))
    assert [s.model_dump() for s in first.scheduled] == [s.model_dump() for s in second.scheduled]


def test_round_robin_spreads_first_placements(class_id, make_assignment) -> None:
    assignments = [make_assignment(class_id, f"Subject {i}") for i in range(3)]
    result = assign_sessions(expand_sessions(assignments), SlotGrid(WEEK, 6))
    assert [s.slot for s in result.scheduled] == [
        Slot(Weekday.MONDAY, 1),
        Slot(Weekday.TUESDAY, 2),
        Slot(Weekday.WEDNESDAY, 3),
    ]
    assert [s.id for s in result.scheduled] == ["slot_1", "slot_2", "slot_3"]


def test_scorer_annotates_without_choosing(class_id, make_assignment) -> None:
    assignments = [make_assignment(class_id, "Mathematics")]
    plain = assign_sessions(expand_sessions(assignments), SlotGrid(WEEK, 6))
    scored = assign_sessions(expand_sessions(assignments), SlotGrid(WEEK, 6), QualityScorer(last_period=6))
    assert plain.scheduled[0].slot == scored.scheduled[0].slot
    assert plain.scheduled[0].score is None
    # Monday period 1: base 10 + first period 2 + early week 1.
    assert scored.scheduled[0].score == 13.0
    assert scored.scheduled[0].quality == 13.0 / 30


def test_teacher_exclusivity_skips_busy_cells(class_id, make_assignment) -> None:
    teacher = uuid.uuid4()
    assignment = make_assignment(class_id, "Mathematics", teacher_id=teacher)
    busy = {teacher: [Slot(Weekday.MONDAY, 1), Slot(Weekday.MONDAY, 2)]}
    result = assign_sessions(
        expand_sessions([assignment]),
        SlotGrid(WEEK, 6),
        teacher_busy=busy,
        enforce_teacher_exclusivity=True,
    )
    assert result.scheduled[0].slot == Slot(Weekday.MONDAY, 3)


def test_teacher_busy_ignored_when_not_enforced(class_id, make_assignment) -> None:
    teacher = uuid.uuid4()
    assignment = make_assignment(class_id, "Mathematics", teacher_id=teacher)
    result = assign_sessions(
        expand_sessions([assignment]),
        SlotGrid(WEEK, 6),
        teacher_busy={teacher: [Slot(Weekday.MONDAY, 1)]},
    )
    assert result.scheduled[0].slot == Slot(Weekday.MONDAY, 1)


def test_shared_teacher_across_classes_not_double_booked(make_assignment) -> None:
    teacher = uuid.uuid4()
    class_a, class_b = uuid.uuid4(), uuid.uuid4()
    units = expand_sessions(
        [
            make_assignment(class_a, "Mathematics", teacher_id=teacher),
            make_assignment(class_b, "Mathematics", teacher_id=teacher),
        ],
        {},
    )
    result = assign_sessions(units, SlotGrid(WEEK[:1], 1), enforce_teacher_exclusivity=True)
    assert len(result.scheduled) == 1
    assert len(result.unassigned) == 1
