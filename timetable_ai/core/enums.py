from enum import Enum, IntEnum


class Weekday(IntEnum):
    """0=Monday .. 6=Sunday, same numbering as Timetable.day_of_week."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value) -> "Weekday":
        """Accept a Weekday, its number, or a day name ("Monday", "mon")."""
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int):
            return cls(value)
        text = str(value).strip().upper()
        if text.isdigit():
            return cls(int(text))
        for day in cls:
            if day.name == text or day.name[:3] == text:
                return day
        raise ValueError(f"Unknown day: {value!r}")


class PatternType(str, Enum):
    TEACHER_PREFERENCE = "TEACHER_PREFERENCE"
    SUBJECT_PREFERENCE = "SUBJECT_PREFERENCE"
    TIME_SLOT_PREFERENCE = "TIME_SLOT_PREFERENCE"
    DAY_PREFERENCE = "DAY_PREFERENCE"
