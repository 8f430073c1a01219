"""Quiz-related constants shared across authoring, play and API layers."""

import re

BLANK_PATTERN: re.Pattern[str] = re.compile(r"_{3,}")
BLANK_DISPLAY: str = "___"
MAX_BLANKS_PER_QUESTION: int = 5

DEFAULT_TIME_LIMIT_SECONDS: int = 60
MIN_TIME_LIMIT_SECONDS: int = 10
MAX_TIME_LIMIT_SECONDS: int = 600
TIMER_TICK_SECONDS: float = 1.0

PASSING_PERCENTAGE: int = 70

# How long a finished session stays fetchable before it is dropped from memory.
SESSION_RETENTION_SECONDS: int = 300
