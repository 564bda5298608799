"""Learner progress tracking module.

Provides:
- Lesson start/resume, time accrual and completion toggling
- Course progress aggregation recomputed from lesson records
- Per-user statistics, bulk lookup and course reset
"""

from .models import (
    PROGRESS_TABLES_CQL,
    CourseProgress,
    LessonOutcome,
    LessonProgress,
    LessonProgressResult,
)
from .service import ProgressService
from .store import CourseProgressStore, LessonProgressStore


__all__ = [
    "PROGRESS_TABLES_CQL",
    "CourseProgress",
    "CourseProgressStore",
    "LessonOutcome",
    "LessonProgress",
    "LessonProgressResult",
    "LessonProgressStore",
    "ProgressService",
]
