from timetable_ai.core.models.teacher_subject_assignment import TeacherSubjectAssignment
from timetable_ai.core.models.timetable_version import TimetableVersion
from timetable_ai.core.models.timetable import Timetable
from timetable_ai.core.models.learned_pattern import LearnedPattern
from timetable_ai.core.models.feedback import Correction, FeedbackSession

__all__ = [
    "Correction",
    "FeedbackSession",
    "LearnedPattern",
    "TeacherSubjectAssignment",
    "Timetable",
    "TimetableVersion",
]
