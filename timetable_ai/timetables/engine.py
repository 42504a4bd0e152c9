"""
Deterministic slot assignment.

Each unit takes the first free cell of a round-robin scan of the grid; the scan
start shifts by one per unit so sessions spread over days and periods. The
scorer only annotates placements, it never chooses between cells.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Mapping, Optional, Sequence
from uuid import UUID

from .grid import Occupancy, Slot, SlotGrid
from .schemas import ScheduledSession, SessionUnit
from .scoring import quality_from_score

logger = logging.getLogger(__name__)

Scorer = Callable[[Slot, SessionUnit], float]


@dataclass
class AssignmentResult:
    scheduled: List[ScheduledSession] = field(default_factory=list)
    unassigned: List[SessionUnit] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.unassigned)


def _to_session(index: int, slot: Slot, unit: SessionUnit, score: Optional[float]) -> ScheduledSession:
    a = unit.assignment
    return ScheduledSession(
        id=f"slot_{index}",
        day=slot.day,
        period=slot.period,
        teacher_id=a.teacher_id,
        class_id=a.class_id,
        subject_id=a.subject_id,
        teacher_name=a.teacher_name,
        subject_name=a.subject_name,
        class_name=a.class_name,
        session_number=unit.session_number,
        total_sessions=unit.total_sessions,
        score=score,
        quality=quality_from_score(score) if score is not None else None,
    )


def assign_sessions(
    units: Sequence[SessionUnit],
    grid: SlotGrid,
    scorer: Optional[Scorer] = None,
    *,
    teacher_busy: Optional[Mapping[UUID, Iterable[Slot]]] = None,
    enforce_teacher_exclusivity: bool = False,
) -> AssignmentResult:
    """
    Place every unit into the grid without double-booking a class.

    teacher_busy seeds cells a teacher already teaches elsewhere (other classes);
    it is only consulted when enforce_teacher_exclusivity is set. Units that find
    no free cell are returned in `unassigned`, in input order.
    """
    classes = Occupancy(grid)
    teachers = Occupancy(grid)
    if enforce_teacher_exclusivity and teacher_busy:
        for teacher_id, slots in teacher_busy.items():
            for slot in slots:
                if slot in grid:
                    teachers.mark(teacher_id, slot)

    result = AssignmentResult()
    for slot_index, unit in enumerate(units):
        placed = False
        for slot in grid.rotated(slot_index):
            if not classes.is_free(unit.class_id, slot):
                continue
            if enforce_teacher_exclusivity and not teachers.is_free(unit.teacher_id, slot):
                continue
            classes.mark(unit.class_id, slot)
            teachers.mark(unit.teacher_id, slot)
            score = scorer(slot, unit) if scorer is not None else None
            result.scheduled.append(_to_session(len(result.scheduled) + 1, slot, unit, score))
            logger.debug(
                "Assigned %s (session %d/%d) to %s",
                unit.assignment.subject_name or unit.subject_id,
                unit.session_number,
                unit.total_sessions,
                slot.key,
            )
            placed = True
            break
        if not placed:
            result.unassigned.append(unit)
            logger.warning(
                "Could not assign %s (session %d/%d) for class %s: no free slot",
                unit.assignment.subject_name or unit.subject_id,
                unit.session_number,
                unit.total_sessions,
                unit.class_id,
            )

    logger.info(
        "Assignment finished: %d scheduled, %d unassigned",
        len(result.scheduled),
        len(result.unassigned),
    )
    return result


def subject_distribution(sessions: Iterable[ScheduledSession]) -> Counter:
    """Scheduled sessions per subject name (subject id when the name is missing)."""
    return Counter(s.subject_name or str(s.subject_id) for s in sessions)
