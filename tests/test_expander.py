import uuid

import pytest

from timetable_ai.core.exceptions import ScheduleValidationError
from timetable_ai.timetables.expander import expand_sessions, validate_subject_requirements


def test_default_is_one_session_per_assignment(class_id, make_assignment) -> None:
    """Subjects without a requirement get exactly one session."""
    assignments = [make_assignment(class_id, "Mathematics"), make_assignment(class_id, "English")]
    units = expand_sessions(assignments, {})
    assert [(u.assignment, u.session_number, u.total_sessions) for u in units] == [
        (assignments[0], 1, 1),
        (assignments[1], 1, 1),
    ]


def test_requirements_number_sessions_in_order(class_id, make_assignment) -> None:
    maths = make_assignment(class_id, "Mathematics")
    art = make_assignment(class_id, "Art")
    units = expand_sessions([maths, art], {maths.subject_id: 3, str(art.subject_id): 2})
    assert [(u.subject_id, u.session_number, u.total_sessions) for u in units] == [
        (maths.subject_id, 1, 3),
        (maths.subject_id, 2, 3),
        (maths.subject_id, 3, 3),
        (art.subject_id, 1, 2),
        (art.subject_id, 2, 2),
    ]


def test_empty_assignments_expand_to_nothing() -> None:
    assert expand_sessions([], {uuid.uuid4(): 4}) == []


@pytest.mark.parametrize("count", [0, -2, 1.5, "3", True])
def test_invalid_requirement_counts_are_rejected(count) -> None:
    with pytest.raises(ScheduleValidationError) as exc_info:
        validate_subject_requirements({uuid.uuid4(): count})
    assert exc_info.value.status_code == 400
    assert len(exc_info.value.errors) == 1


def test_invalid_subject_id_is_rejected() -> None:
    with pytest.raises(ScheduleValidationError):
        validate_subject_requirements({"not-a-uuid": 2})
