import logging
from typing import Optional

from timetable_ai.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for scripts and workers embedding the scheduler."""
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)
