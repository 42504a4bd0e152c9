from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Weekly grid defaults; a generation call may override them via GenerationConstraints.
    timetable_days: str = Field("Monday,Tuesday,Wednesday,Thursday,Friday", alias="TIMETABLE_DAYS")
    timetable_periods_per_day: int = Field(6, alias="TIMETABLE_PERIODS_PER_DAY")
    timetable_max_periods_per_day: int = Field(8, alias="TIMETABLE_MAX_PERIODS_PER_DAY")
    timetable_max_periods_per_subject: int = Field(2, alias="TIMETABLE_MAX_PERIODS_PER_SUBJECT")
    timetable_max_periods_per_teacher: int = Field(6, alias="TIMETABLE_MAX_PERIODS_PER_TEACHER")
    timetable_enforce_teacher_exclusivity: bool = Field(True, alias="TIMETABLE_ENFORCE_TEACHER_EXCLUSIVITY")

    # Wall-clock mapping: Period 1 = 08:00-08:45, then 5 minutes passing time.
    timetable_first_period_start: str = Field("08:00", alias="TIMETABLE_FIRST_PERIOD_START")
    timetable_period_minutes: int = Field(45, alias="TIMETABLE_PERIOD_MINUTES")
    timetable_passing_minutes: int = Field(5, alias="TIMETABLE_PASSING_MINUTES")
    timetable_mapped_periods: int = Field(8, alias="TIMETABLE_MAPPED_PERIODS")

    @property
    def timetable_day_names(self) -> List[str]:
        return [item.strip() for item in self.timetable_days.split(",") if item.strip()]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
