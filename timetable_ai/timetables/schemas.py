from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from timetable_ai.core.config import settings
from timetable_ai.core.enums import PatternType, Weekday

from .grid import Slot, parse_period, slot_key


def _parse_days(v):
    if v is None:
        return None
    return [Weekday.parse(d) for d in v]


def _check_slot_keys(keys: List[str]) -> List[str]:
    """Normalise slot keys to "Monday_Period1" form, dropping duplicates."""
    out: List[str] = []
    for key in keys:
        normalised = Slot.from_key(key).key
        if normalised not in out:
            out.append(normalised)
    return out


# ---------------------------------------------------------------------------
# Generation input
# ---------------------------------------------------------------------------


class Assignment(BaseModel):
    """Teacher-class-subject assignment from the roster. Read-only input."""

    teacher_id: UUID
    class_id: UUID
    subject_id: UUID
    teacher_name: Optional[str] = None
    subject_name: Optional[str] = None
    class_name: Optional[str] = None

    class Config:
        from_attributes = True
        frozen = True


class TeacherAvailability(BaseModel):
    teacher_id: UUID
    available_slots: List[str] = Field(default_factory=list, description='Slot keys, e.g. "Monday_Period1"')

    @field_validator("available_slots")
    @classmethod
    def normalise_slots(cls, v: List[str]) -> List[str]:
        return _check_slot_keys(v)


class GenerationConstraints(BaseModel):
    """Per-call overrides of the grid and limits. Unset fields fall back to settings."""

    days: Optional[List[Weekday]] = None
    periods_per_day: Optional[int] = Field(None, ge=1, le=10)
    max_periods_per_day: Optional[int] = Field(None, ge=1, le=10)
    max_periods_per_subject: Optional[int] = Field(None, ge=1)
    max_periods_per_teacher: Optional[int] = Field(None, ge=1)
    teacher_availability: List[TeacherAvailability] = Field(default_factory=list)
    enforce_teacher_exclusivity: Optional[bool] = None

    @field_validator("days", mode="before")
    @classmethod
    def parse_days(cls, v):
        return _parse_days(v)


class GenerationConfig(BaseModel):
    """Resolved configuration for one generation run. Validated once, then read-only."""

    days: List[Weekday] = Field(..., min_length=1)
    periods_per_day: int = Field(..., ge=1, le=10)
    max_periods_per_day: int = Field(..., ge=1, le=10)
    max_periods_per_subject: int = Field(..., ge=1)
    max_periods_per_teacher: int = Field(..., ge=1)
    teacher_availability: Dict[UUID, List[str]] = Field(default_factory=dict)
    enforce_teacher_exclusivity: bool = True

    class Config:
        frozen = True

    @field_validator("days", mode="before")
    @classmethod
    def parse_days(cls, v):
        return _parse_days(v)

    @field_validator("days")
    @classmethod
    def unique_days(cls, v: List[Weekday]) -> List[Weekday]:
        if len(set(v)) != len(v):
            raise ValueError("days must not repeat")
        return v

    @classmethod
    def resolve(cls, constraints: Optional[GenerationConstraints] = None) -> "GenerationConfig":
        c = constraints or GenerationConstraints()
        return cls(
            days=c.days if c.days is not None else settings.timetable_day_names,
            periods_per_day=c.periods_per_day or settings.timetable_periods_per_day,
            max_periods_per_day=c.max_periods_per_day or settings.timetable_max_periods_per_day,
            max_periods_per_subject=c.max_periods_per_subject or settings.timetable_max_periods_per_subject,
            max_periods_per_teacher=c.max_periods_per_teacher or settings.timetable_max_periods_per_teacher,
            teacher_availability={a.teacher_id: a.available_slots for a in c.teacher_availability},
            enforce_teacher_exclusivity=(
                c.enforce_teacher_exclusivity
                if c.enforce_teacher_exclusivity is not None
                else settings.timetable_enforce_teacher_exclusivity
            ),
        )


class TeacherWorkload(BaseModel):
    # Per-teacher daily cap, reported as a violation (never blocks placement).
    max_periods_per_day: Optional[int] = Field(None, ge=1, le=8)
    preferred_days: List[Weekday] = Field(default_factory=list)
    # Per-teacher override of preferred_days.
    teacher_preferred_days: Dict[UUID, List[Weekday]] = Field(default_factory=dict)

    @field_validator("preferred_days", mode="before")
    @classmethod
    def parse_days(cls, v):
        return _parse_days(v) or []

    @field_validator("teacher_preferred_days", mode="before")
    @classmethod
    def parse_teacher_days(cls, v):
        if not v:
            return {}
        return {teacher_id: _parse_days(days) for teacher_id, days in v.items()}

    def preferred_days_for(self, teacher_id: UUID) -> List[Weekday]:
        return self.teacher_preferred_days.get(teacher_id, self.preferred_days)


class SubjectDistribution(BaseModel):
    # Subject ids or subject names.
    core_subjects: List[str] = Field(default_factory=list)


class SchedulingPreferences(BaseModel):
    teacher_workload: TeacherWorkload = Field(default_factory=TeacherWorkload)
    subject_distribution: SubjectDistribution = Field(default_factory=SubjectDistribution)


# ---------------------------------------------------------------------------
# Engine values
# ---------------------------------------------------------------------------


class SessionUnit(BaseModel):
    """One required occurrence of an assignment. Lives for one generation call."""

    assignment: Assignment
    session_number: int = Field(..., ge=1)
    total_sessions: int = Field(..., ge=1)

    class Config:
        frozen = True

    @property
    def teacher_id(self) -> UUID:
        return self.assignment.teacher_id

    @property
    def class_id(self) -> UUID:
        return self.assignment.class_id

    @property
    def subject_id(self) -> UUID:
        return self.assignment.subject_id


class ScheduledSession(BaseModel):
    id: str
    day: Weekday
    period: int
    teacher_id: UUID
    class_id: UUID
    subject_id: UUID
    teacher_name: Optional[str] = None
    subject_name: Optional[str] = None
    class_name: Optional[str] = None
    session_number: int = 1
    total_sessions: int = 1
    score: Optional[float] = None
    quality: Optional[float] = None

    @property
    def slot(self) -> Slot:
        return Slot(self.day, self.period)

    @property
    def slot_key(self) -> str:
        return slot_key(self.day, self.period)


# ---------------------------------------------------------------------------
# Learned patterns and feedback
# ---------------------------------------------------------------------------


class LearnedPatternData(BaseModel):
    id: Optional[UUID] = None
    type: PatternType
    entity_id: UUID
    preferred_slots: List[str] = Field(default_factory=list)
    avoided_slots: List[str] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    last_updated: Optional[datetime] = None

    class Config:
        from_attributes = True


class SlotAssignment(BaseModel):
    """Who taught what, where, on either side of a correction."""

    teacher_id: UUID
    subject_id: UUID
    day: Weekday
    period: int = Field(..., ge=1)

    @model_validator(mode="before")
    @classmethod
    def accept_time_slot(cls, data):
        # "time_slot"/"timeSlot" ("Period 3") is accepted as an alias of period.
        if isinstance(data, dict) and "period" not in data:
            for alias in ("time_slot", "timeSlot"):
                if alias in data:
                    data = {**data, "period": data[alias]}
                    break
        return data

    @field_validator("day", mode="before")
    @classmethod
    def parse_day(cls, v):
        return Weekday.parse(v)

    @field_validator("period", mode="before")
    @classmethod
    def parse_period_label(cls, v):
        return parse_period(v)

    @property
    def slot(self) -> Slot:
        return Slot(self.day, self.period)

    @property
    def key(self) -> str:
        return slot_key(self.day, self.period)


class CorrectionBase(BaseModel):
    slot_id: str = Field(..., min_length=1)
    before: SlotAssignment
    after: SlotAssignment
    reason: str = Field(..., min_length=1)
    corrected_by: str = Field(..., min_length=1)


class CorrectionCreate(CorrectionBase):
    feedback_id: UUID


class CorrectionResponse(CorrectionBase):
    id: UUID
    feedback_id: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class TeacherPreferencePoint(BaseModel):
    teacher_id: UUID
    preferred_slots: List[str] = Field(default_factory=list)
    avoided_slots: List[str] = Field(default_factory=list)

    @field_validator("preferred_slots", "avoided_slots")
    @classmethod
    def normalise_slots(cls, v: List[str]) -> List[str]:
        return _check_slot_keys(v)


class SubjectPreferencePoint(BaseModel):
    subject_id: UUID
    preferred_slots: List[str] = Field(default_factory=list)
    avoided_slots: List[str] = Field(default_factory=list)

    @field_validator("preferred_slots", "avoided_slots")
    @classmethod
    def normalise_slots(cls, v: List[str]) -> List[str]:
        return _check_slot_keys(v)


class LearningPoints(BaseModel):
    """Preferences stated explicitly by the reviewer when opening a feedback session."""

    teacher_preferences: List[TeacherPreferencePoint] = Field(default_factory=list)
    subject_preferences: List[SubjectPreferencePoint] = Field(default_factory=list)


class FeedbackSessionCreate(BaseModel):
    timetable_version_id: UUID
    learning_points: LearningPoints = Field(default_factory=LearningPoints)
    created_by: Optional[str] = None


class FeedbackSessionResponse(BaseModel):
    id: UUID
    timetable_version_id: UUID
    learning_points: LearningPoints
    created_by: Optional[str] = None
    created_at: datetime
    corrections: List[CorrectionResponse] = Field(default_factory=list)


class CorrectionResult(BaseModel):
    correction: CorrectionResponse
    patterns: List[LearnedPatternData] = Field(default_factory=list)
    # Set when learning failed; the correction itself is still recorded.
    learning_error: Optional[str] = None
    timetable_updated: bool = False
    # Why the current timetable was left as is (e.g. the target cell is taken).
    timetable_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Ledger / output
# ---------------------------------------------------------------------------


class TimetableSlotResponse(BaseModel):
    id: UUID
    school_id: UUID
    class_id: UUID
    subject_id: UUID
    teacher_id: UUID
    teacher_name: Optional[str] = None
    subject_name: Optional[str] = None
    class_name: Optional[str] = None
    day_of_week: Weekday
    period: int
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    session_number: int
    total_sessions: int
    score: Optional[float] = None
    version_id: Optional[UUID] = None


class TimetableVersionResponse(BaseModel):
    id: UUID
    school_id: UUID
    class_id: UUID
    slots: List[ScheduledSession] = Field(default_factory=list)
    unassigned: List[SessionUnit] = Field(default_factory=list)
    quality_score: float
    generated_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class GenerationResult(BaseModel):
    version: TimetableVersionResponse
    unassigned: List[SessionUnit] = Field(default_factory=list)
    subject_distribution: Dict[str, int] = Field(default_factory=dict)
    constraint_violations: List[str] = Field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.unassigned)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class TimetableVersionPage(BaseModel):
    data: List[TimetableVersionResponse]
    pagination: Pagination


class FeedbackSessionPage(BaseModel):
    data: List[FeedbackSessionResponse]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class CorrectionReasonCount(BaseModel):
    reason: str
    count: int


class TimetableAnalytics(BaseModel):
    timetable_version_id: UUID
    quality_score: float
    total_feedback_sessions: int
    total_corrections: int
    average_corrections_per_session: float
    most_common_corrections: List[CorrectionReasonCount] = Field(default_factory=list)
    subject_distribution: Dict[str, int] = Field(default_factory=dict)


class SystemPerformance(BaseModel):
    school_id: UUID
    average_quality_score: float
    total_timetables_generated: int
    total_feedback_sessions: int
    total_corrections: int
    learning_patterns: int
    system_improvement: float


class TableCell(BaseModel):
    subject_id: UUID
    subject_name: Optional[str] = None
    teacher_id: UUID
    teacher_name: Optional[str] = None
    start_time: str = ""
    end_time: str = ""
    period_name: str
    day_name: str


class TableRow(BaseModel):
    period: int
    period_name: str
    time_slot: str
    slots: Dict[str, Optional[TableCell]]


class TableSummaryEntry(BaseModel):
    id: UUID
    name: Optional[str] = None


class TimetableTable(BaseModel):
    days: List[str]
    periods: List[str]
    data: List[TableRow]
    subjects: List[TableSummaryEntry] = Field(default_factory=list)
    teachers: List[TableSummaryEntry] = Field(default_factory=list)
    total_slots: int = 0
