from typing import List, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ScheduleValidationError(ServiceError):
    """Generation input rejected before anything is computed or persisted."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)
        self.errors = errors or [message]


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class GenerationInProgressError(ServiceError):
    def __init__(self, message: str = "Timetable generation already in progress for this class") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class SlotConflictError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class PersistenceError(ServiceError):
    """Writing the timetable failed; the transaction was rolled back."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class LearningPipelineError(ServiceError):
    """Deriving or upserting learned patterns failed. Never blocks recording a correction."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)
