"""
Slot scoring and timetable quality.

score_slot() rates one placement from learned patterns, manual preferences and
static period/day heuristics. score_timetable() folds per-session quality and
constraint violations into a single 0..1 figure stored on the version.
"""

import logging
from collections import Counter
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from timetable_ai.core.enums import PatternType, Weekday

from .grid import Slot, key_day
from .schemas import GenerationConfig, LearnedPatternData, ScheduledSession, SchedulingPreferences, SessionUnit

logger = logging.getLogger(__name__)

BASE_SCORE = 10.0
# Score that maps to quality 1.0.
MAX_SCORE = 30.0
DEFAULT_QUALITY = 0.5
VIOLATION_PENALTY = 0.10

# (bonus when preferred, penalty when avoided)
LEARNED_WEIGHTS: Dict[PatternType, Tuple[float, float]] = {
    PatternType.TEACHER_PREFERENCE: (8.0, -10.0),
    PatternType.SUBJECT_PREFERENCE: (6.0, -8.0),
    PatternType.TIME_SLOT_PREFERENCE: (4.0, -6.0),
    PatternType.DAY_PREFERENCE: (3.0, -5.0),
}

PREFERRED_DAY_BONUS = 2.0
CORE_SUBJECT_BONUS = 3.0
CORE_PERIODS = frozenset({1, 2})
FIRST_PERIOD_BONUS = 2.0
LAST_PERIOD_PENALTY = -1.0
EARLY_WEEK_BONUS = 1.0
EARLY_WEEK_DAYS = frozenset({Weekday.MONDAY, Weekday.TUESDAY})
FRIDAY_PENALTY = -1.0


class _Preference:
    __slots__ = ("preferred", "avoided")

    def __init__(self, preferred: FrozenSet, avoided: FrozenSet) -> None:
        self.preferred = preferred
        # A key both preferred and avoided counts as preferred.
        self.avoided = avoided - preferred


class PatternSnapshot:
    """Learned patterns read once before a generation and not touched afterwards."""

    def __init__(self, patterns: Iterable[LearnedPatternData] = ()) -> None:
        self._slots: Dict[Tuple[PatternType, UUID], _Preference] = {}
        self._days: Dict[UUID, _Preference] = {}
        for pattern in patterns:
            pref = _Preference(frozenset(pattern.preferred_slots), frozenset(pattern.avoided_slots))
            self._slots[(pattern.type, pattern.entity_id)] = pref
            if pattern.type == PatternType.DAY_PREFERENCE:
                self._days[pattern.entity_id] = _Preference(
                    frozenset(d for d in map(key_day, pref.preferred) if d is not None),
                    frozenset(d for d in map(key_day, pattern.avoided_slots) if d is not None),
                )

    def __len__(self) -> int:
        return len(self._slots)

    def slot_adjustment(self, pattern_type: PatternType, entity_id: UUID, key: str) -> float:
        pref = self._slots.get((pattern_type, entity_id))
        if pref is None:
            return 0.0
        bonus, penalty = LEARNED_WEIGHTS[pattern_type]
        if key in pref.preferred:
            return bonus
        if key in pref.avoided:
            return penalty
        return 0.0

    def day_adjustment(self, entity_id: UUID, day: Weekday) -> float:
        pref = self._days.get(entity_id)
        if pref is None:
            return 0.0
        bonus, penalty = LEARNED_WEIGHTS[PatternType.DAY_PREFERENCE]
        if day in pref.preferred:
            return bonus
        if day in pref.avoided:
            return penalty
        return 0.0


def _is_core_subject(unit: SessionUnit, preferences: SchedulingPreferences) -> bool:
    core = preferences.subject_distribution.core_subjects
    if not core:
        return False
    wanted = {str(c).strip().lower() for c in core}
    name = (unit.assignment.subject_name or "").strip().lower()
    return str(unit.subject_id) in wanted or (bool(name) and name in wanted)


def score_slot(
    slot: Slot,
    unit: SessionUnit,
    patterns: PatternSnapshot,
    preferences: SchedulingPreferences,
    last_period: int,
) -> float:
    score = BASE_SCORE
    key = slot.key

    score += patterns.slot_adjustment(PatternType.TEACHER_PREFERENCE, unit.teacher_id, key)
    score += patterns.slot_adjustment(PatternType.SUBJECT_PREFERENCE, unit.subject_id, key)
    score += patterns.slot_adjustment(PatternType.TIME_SLOT_PREFERENCE, unit.subject_id, key)
    score += patterns.day_adjustment(unit.teacher_id, slot.day)

    if slot.day in preferences.teacher_workload.preferred_days_for(unit.teacher_id):
        score += PREFERRED_DAY_BONUS
    if slot.period in CORE_PERIODS and _is_core_subject(unit, preferences):
        score += CORE_SUBJECT_BONUS

    # A single-period day counts period 1 as first only.
    if slot.period == 1:
        score += FIRST_PERIOD_BONUS
    elif slot.period == last_period:
        score += LAST_PERIOD_PENALTY
    if slot.day in EARLY_WEEK_DAYS:
        score += EARLY_WEEK_BONUS
    elif slot.day == Weekday.FRIDAY:
        score += FRIDAY_PENALTY
    return score


def quality_from_score(score: Optional[float]) -> float:
    if score is None:
        return DEFAULT_QUALITY
    return max(0.0, min(score / MAX_SCORE, 1.0))


class QualityScorer:
    """Callable handed to the assignment engine: (slot, unit) -> raw score."""

    def __init__(
        self,
        patterns: Optional[PatternSnapshot] = None,
        preferences: Optional[SchedulingPreferences] = None,
        last_period: int = 1,
    ) -> None:
        self.patterns = patterns or PatternSnapshot()
        self.preferences = preferences or SchedulingPreferences()
        self.last_period = last_period

    def __call__(self, slot: Slot, unit: SessionUnit) -> float:
        return score_slot(slot, unit, self.patterns, self.preferences, self.last_period)


def find_constraint_violations(
    sessions: Sequence[ScheduledSession],
    config: GenerationConfig,
    preferences: Optional[SchedulingPreferences] = None,
) -> List[str]:
    """
    Hard caps from the config plus the teacher workload cap from the preferences,
    which is the tighter of the two when both are set.
    """
    violations: List[str] = []
    teacher_cap = config.max_periods_per_teacher
    workload_cap = preferences.teacher_workload.max_periods_per_day if preferences else None
    if workload_cap is not None:
        teacher_cap = min(teacher_cap, workload_cap)
    per_class_day: Counter = Counter()
    per_subject_day: Counter = Counter()
    per_teacher_day: Counter = Counter()

    for s in sessions:
        per_class_day[(s.class_id, s.day)] += 1
        per_subject_day[(s.class_id, s.subject_id, s.day)] += 1
        per_teacher_day[(s.teacher_id, s.day)] += 1
        available = config.teacher_availability.get(s.teacher_id)
        if available is not None and s.slot_key not in available:
            violations.append(f"Teacher {s.teacher_id} is not available at {s.slot_key}")

    for (class_id, day), count in per_class_day.items():
        if count > config.max_periods_per_day:
            violations.append(
                f"Class {class_id} has {count} periods on {day.label} (max {config.max_periods_per_day})"
            )
    for (class_id, subject_id, day), count in per_subject_day.items():
        if count > config.max_periods_per_subject:
            violations.append(
                f"Subject {subject_id} has {count} periods on {day.label} for class {class_id} "
                f"(max {config.max_periods_per_subject})"
            )
    for (teacher_id, day), count in per_teacher_day.items():
        if count > teacher_cap:
            violations.append(f"Teacher {teacher_id} has {count} periods on {day.label} (max {teacher_cap})")
    return violations


def score_timetable(
    sessions: Sequence[ScheduledSession],
    config: GenerationConfig,
    preferences: Optional[SchedulingPreferences] = None,
) -> float:
    """Mean session quality minus a flat penalty per violation, in [0, 1], 2 decimals."""
    if not sessions:
        return 0.0
    mean_quality = sum(
        s.quality if s.quality is not None else DEFAULT_QUALITY for s in sessions
    ) / len(sessions)
    violations = find_constraint_violations(sessions, config, preferences)
    if violations:
        logger.info("Timetable has %d constraint violation(s)", len(violations))
    return round(min(1.0, max(0.0, mean_quality - VIOLATION_PENALTY * len(violations))), 2)
