from typing import Dict, Iterable, List, Mapping, Optional, Union
from uuid import UUID

from timetable_ai.core.exceptions import ScheduleValidationError

from .schemas import Assignment, SessionUnit


def validate_subject_requirements(
    subject_requirements: Optional[Mapping[Union[UUID, str], int]],
) -> Dict[UUID, int]:
    """Normalise subject_id -> session count. Counts must be positive integers."""
    if not subject_requirements:
        return {}
    errors: List[str] = []
    out: Dict[UUID, int] = {}
    for raw_id, count in subject_requirements.items():
        try:
            subject_id = raw_id if isinstance(raw_id, UUID) else UUID(str(raw_id))
        except ValueError:
            errors.append(f"Invalid subject id in requirements: {raw_id!r}")
            continue
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            errors.append(f"Required sessions for subject {subject_id} must be a positive integer, got {count!r}")
            continue
        out[subject_id] = count
    if errors:
        raise ScheduleValidationError("Invalid subject requirements", errors)
    return out


def expand_sessions(
    assignments: Iterable[Assignment],
    subject_requirements: Optional[Mapping[Union[UUID, str], int]] = None,
) -> List[SessionUnit]:
    """
    One SessionUnit per required occurrence, numbered 1..N per assignment.
    Subjects without a requirement get a single session. Input order is preserved.
    """
    requirements = validate_subject_requirements(subject_requirements)
    units: List[SessionUnit] = []
    for assignment in assignments:
        total = requirements.get(assignment.subject_id, 1)
        for n in range(1, total + 1):
            units.append(SessionUnit(assignment=assignment, session_number=n, total_sessions=total))
    return units
