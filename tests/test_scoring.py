import uuid

import pytest

from timetable_ai.core.enums import PatternType, Weekday
from timetable_ai.timetables.engine import assign_sessions
from timetable_ai.timetables.expander import expand_sessions
from timetable_ai.timetables.grid import Slot, SlotGrid
from timetable_ai.timetables.schemas import (
    GenerationConfig,
    LearnedPatternData,
    ScheduledSession,
    SchedulingPreferences,
    SessionUnit,
)
from timetable_ai.timetables.scoring import (
    PatternSnapshot,
    QualityScorer,
    find_constraint_violations,
    quality_from_score,
    score_slot,
    score_timetable,
)

WEEK = [Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY]
WEDNESDAY_3 = Slot(Weekday.WEDNESDAY, 3)


def _config(**overrides) -> GenerationConfig:
    values = dict(
        days=WEEK,
        periods_per_day=6,
        max_periods_per_day=8,
        max_periods_per_subject=2,
        max_periods_per_teacher=6,
    )
    values.update(overrides)
    return GenerationConfig(**values)


def _unit(assignment) -> SessionUnit:
    return SessionUnit(assignment=assignment, session_number=1, total_sessions=1)


def _pattern(pattern_type, entity_id, preferred=(), avoided=()) -> LearnedPatternData:
    return LearnedPatternData(
        type=pattern_type,
        entity_id=entity_id,
        preferred_slots=list(preferred),
        avoided_slots=list(avoided),
        confidence=0.9,
    )


def _session(assignment, day, period, quality=None) -> ScheduledSession:
    return ScheduledSession(
        id="slot_1",
        day=day,
        period=period,
        teacher_id=assignment.teacher_id,
        class_id=assignment.class_id,
        subject_id=assignment.subject_id,
        quality=quality,
    )


def _score(slot, unit, patterns=(), preferences=None) -> float:
    return score_slot(slot, unit, PatternSnapshot(patterns), preferences or SchedulingPreferences(), 6)


def test_neutral_midweek_slot_scores_base(class_id, make_assignment) -> None:
    assert _score(WEDNESDAY_3, _unit(make_assignment(class_id))) == 10.0


@pytest.mark.parametrize(
    "slot, expected",
    [
        (Slot(Weekday.MONDAY, 1), 13.0),
        (Slot(Weekday.TUESDAY, 6), 10.0),
        (Slot(Weekday.FRIDAY, 1), 11.0),
        (Slot(Weekday.FRIDAY, 6), 8.0),
    ],
)
def test_static_period_and_day_adjustments(class_id, make_assignment, slot, expected) -> None:
    assert _score(slot, _unit(make_assignment(class_id))) == expected


@pytest.mark.parametrize(
    "pattern_type, entity, bonus, penalty",
    [
        (PatternType.TEACHER_PREFERENCE, "teacher", 8.0, -10.0),
        (PatternType.SUBJECT_PREFERENCE, "subject", 6.0, -8.0),
        (PatternType.TIME_SLOT_PREFERENCE, "subject", 4.0, -6.0),
        (PatternType.DAY_PREFERENCE, "teacher", 3.0, -5.0),
    ],
)
def test_learned_pattern_weights(class_id, make_assignment, pattern_type, entity, bonus, penalty) -> None:
    assignment = make_assignment(class_id)
    unit = _unit(assignment)
    entity_id = assignment.teacher_id if entity == "teacher" else assignment.subject_id
    preferred = _pattern(pattern_type, entity_id, preferred=[WEDNESDAY_3.key])
    avoided = _pattern(pattern_type, entity_id, avoided=[WEDNESDAY_3.key])
    assert _score(WEDNESDAY_3, unit, [preferred]) == 10.0 + bonus
    assert _score(WEDNESDAY_3, unit, [avoided]) == 10.0 + penalty


def test_day_preference_matches_any_period_of_the_day(class_id, make_assignment) -> None:
    assignment = make_assignment(class_id)
    pattern = _pattern(PatternType.DAY_PREFERENCE, assignment.teacher_id, preferred=["Wednesday_Period5"])
    assert _score(WEDNESDAY_3, _unit(assignment), [pattern]) == 13.0


def test_patterns_for_other_entities_are_ignored(class_id, make_assignment) -> None:
    pattern = _pattern(PatternType.TEACHER_PREFERENCE, uuid.uuid4(), avoided=[WEDNESDAY_3.key])
    assert _score(WEDNESDAY_3, _unit(make_assignment(class_id)), [pattern]) == 10.0


def test_slot_both_preferred_and_avoided_counts_as_preferred(class_id, make_assignment) -> None:
    assignment = make_assignment(class_id)
    pattern = _pattern(
        PatternType.TEACHER_PREFERENCE, assignment.teacher_id, preferred=[WEDNESDAY_3.key], avoided=[WEDNESDAY_3.key]
    )
    assert _score(WEDNESDAY_3, _unit(assignment), [pattern]) == 18.0


def test_manual_preferences(class_id, make_assignment) -> None:
    assignment = make_assignment(class_id, "Mathematics")
    prefs = SchedulingPreferences.model_validate(
        {
            "teacher_workload": {"preferred_days": ["Wednesday"]},
            "subject_distribution": {"core_subjects": ["mathematics"]},
        }
    )
    unit = _unit(assignment)
    assert _score(WEDNESDAY_3, unit, preferences=prefs) == 12.0
    # Core subject in period 2 on a preferred day.
    assert _score(Slot(Weekday.WEDNESDAY, 2), unit, preferences=prefs) == 15.0


def test_per_teacher_preferred_days_override(class_id, make_assignment) -> None:
    assignment = make_assignment(class_id)
    prefs = SchedulingPreferences.model_validate(
        {
            "teacher_workload": {
                "preferred_days": ["Wednesday"],
                "teacher_preferred_days": {str(assignment.teacher_id): ["Thursday"]},
            }
        }
    )
    unit = _unit(assignment)
    assert _score(WEDNESDAY_3, unit, preferences=prefs) == 10.0
    assert _score(Slot(Weekday.THURSDAY, 3), unit, preferences=prefs) == 12.0


def test_single_period_day_is_only_the_first_period(class_id, make_assignment) -> None:
    unit = _unit(make_assignment(class_id))
    score = score_slot(Slot(Weekday.WEDNESDAY, 1), unit, PatternSnapshot(), SchedulingPreferences(), 1)
    assert score == 12.0


def test_quality_is_clamped() -> None:
    assert quality_from_score(45.0) == 1.0
    assert quality_from_score(-3.0) == 0.0
    assert quality_from_score(15.0) == 0.5
    assert quality_from_score(None) == 0.5


def test_empty_timetable_scores_zero() -> None:
    assert score_timetable([], _config()) == 0.0


def test_timetable_score_is_mean_quality(class_id, make_assignment) -> None:
    a = make_assignment(class_id)
    sessions = [_session(a, Weekday.MONDAY, 1, 0.9), _session(a, Weekday.TUESDAY, 1, 0.5)]
    assert score_timetable(sessions, _config()) == 0.7


def test_sessions_without_quality_default_to_half(class_id, make_assignment) -> None:
    a = make_assignment(class_id)
    assert score_timetable([_session(a, Weekday.MONDAY, 1)], _config()) == 0.5


def test_violations_cost_a_tenth_each(class_id, make_assignment) -> None:
    a = make_assignment(class_id)
    sessions = [_session(a, Weekday.MONDAY, p, 0.8) for p in (1, 2, 3)]
    # 3 of the same subject on Monday: one subject-per-day violation.
    assert find_constraint_violations(sessions, _config()) != []
    assert score_timetable(sessions, _config()) == 0.7
    # Plus the class exceeding 2 periods/day.
    assert score_timetable(sessions, _config(max_periods_per_day=2)) == 0.6


def test_teacher_availability_violation(class_id, make_assignment) -> None:
    a = make_assignment(class_id)
    config = _config(teacher_availability={a.teacher_id: ["Tuesday_Period1"]})
    violations = find_constraint_violations([_session(a, Weekday.MONDAY, 1, 1.0)], config)
    assert violations == [f"Teacher {a.teacher_id} is not available at Monday_Period1"]


def test_teacher_workload_cap_is_a_violation(class_id, make_assignment) -> None:
    a = make_assignment(class_id)
    b = make_assignment(class_id, "English", teacher_id=a.teacher_id)
    sessions = [_session(a, Weekday.MONDAY, 1, 0.8), _session(b, Weekday.MONDAY, 2, 0.8)]
    prefs = SchedulingPreferences.model_validate({"teacher_workload": {"max_periods_per_day": 1}})

    assert find_constraint_violations(sessions, _config()) == []
    assert find_constraint_violations(sessions, _config(), prefs) == [
        f"Teacher {a.teacher_id} has 2 periods on Monday (max 1)"
    ]
    assert score_timetable(sessions, _config(), prefs) == 0.7


def test_score_never_negative(class_id, make_assignment) -> None:
    a = make_assignment(class_id)
    sessions = [_session(a, Weekday.MONDAY, p, 0.1) for p in range(1, 7)]
    assert score_timetable(sessions, _config(max_periods_per_day=1, max_periods_per_subject=1)) == 0.0


def test_generated_timetable_score_in_bounds(class_id, make_assignment) -> None:
    assignments = [make_assignment(class_id, f"Subject {i}") for i in range(6)]
    units = expand_sessions(assignments, {a.subject_id: 4 for a in assignments})
    result = assign_sessions(units, SlotGrid(WEEK, 6), QualityScorer(last_period=6))
    score = score_timetable(result.scheduled, _config())
    assert 0.0 <= score <= 1.0


def test_learned_avoidance_lowers_score(class_id, make_assignment) -> None:
    """Adding an avoided slot for the teacher strictly lowers that slot's score."""
    assignment = make_assignment(class_id)
    unit = _unit(assignment)
    baseline = _score(WEDNESDAY_3, unit)
    avoided = _pattern(PatternType.TEACHER_PREFERENCE, assignment.teacher_id, avoided=[WEDNESDAY_3.key])
    assert _score(WEDNESDAY_3, unit, [avoided]) < baseline
