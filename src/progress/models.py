"""Database models for learner progress tracking.

Cassandra table definitions for:
- Lesson progress: completion, time spent, attempts and score per lesson
- Course progress: aggregate over the completed lessons of a course

Architecture: lesson progress is the source of truth. Course progress is a
persisted cache recomputed from it whenever lesson completion changes.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


MAX_SCORE = 100
MAX_PERCENTAGE = 100
MAX_LESSON_ID_LENGTH = 255
# Lessons with at least this many attempts are reported as difficult
DIFFICULT_LESSON_ATTEMPTS = 3


class LessonOutcome(str, Enum):
    """Outcome of a lesson operation.

    Expected repeats (resume, already completed, nothing to unmark) are
    outcomes, not errors.
    """

    STARTED = "started"  # Record created
    RESUMED = "resumed"  # Record existed, last access refreshed
    COMPLETED = "completed"  # false -> true transition
    ALREADY_COMPLETED = "already_completed"  # No change
    UPDATED = "updated"  # true -> false transition
    UNCHANGED = "unchanged"  # Already incomplete, no change
    NOT_FOUND = "not_found"  # Never started


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def calculate_progress_percentage(completed_count: int, total_lessons: int) -> int:
    """Round 100 * completed / total half up, clamped to [0, 100].

    A course with no lessons is at 0%. The clamp covers a catalog that now
    reports fewer lessons than the learner already completed.
    """
    if total_lessons <= 0:
        return 0
    ratio = Decimal(100 * completed_count) / Decimal(total_lessons)
    percentage = int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return max(0, min(MAX_PERCENTAGE, percentage))


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Per-lesson progress of a user
# Partition key: (user_id, course_id) so recomputation and reset are
# single-partition operations. Writes go through lightweight transactions.
LESSON_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_progress (
    user_id UUID,
    course_id UUID,
    lesson_id TEXT,
    id UUID,
    completed BOOLEAN,
    time_spent_seconds INT,
    attempts INT,
    score INT,
    first_started_at TIMESTAMP,
    last_accessed_at TIMESTAMP,
    completed_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((user_id, course_id), lesson_id)
)
"""

# Per-course aggregate, partitioned by user
# Serves "all courses of a user" and "bulk by course ids" from one partition
COURSE_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_progress (
    user_id UUID,
    course_id UUID,
    id UUID,
    completed_lessons LIST<TEXT>,
    progress_percentage INT,
    last_accessed_at TIMESTAMP,
    completed_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY (user_id, course_id)
)
"""

PROGRESS_TABLES_CQL = [
    LESSON_PROGRESS_TABLE_CQL,
    COURSE_PROGRESS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class LessonProgress:
    """Lesson progress entity for a specific user.

    Attributes:
        user_id: User UUID
        course_id: Course UUID (partition key with user_id)
        lesson_id: Lesson identifier
        id: Synthetic identifier for external reference
        completed: Completion flag
        time_spent_seconds: Accumulated time on the lesson
        attempts: Number of false -> true completion transitions
        score: Optional quiz score (0-100)
        first_started_at: First start timestamp (set once)
        last_accessed_at: Last start/resume/accrual timestamp
        completed_at: Completion timestamp (None unless completed)
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        id: UUID | None = None,
        completed: bool = False,
        time_spent_seconds: int = 0,
        attempts: int = 0,
        score: int | None = None,
        first_started_at: datetime | None = None,
        last_accessed_at: datetime | None = None,
        completed_at: datetime | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        now = datetime.now(UTC)
        self.user_id = user_id
        self.course_id = course_id
        self.lesson_id = lesson_id
        self.id = id or uuid4()
        self.completed = completed
        self.time_spent_seconds = time_spent_seconds
        self.attempts = attempts
        self.score = score
        self.first_started_at = ensure_utc_aware(first_started_at) or now
        self.last_accessed_at = ensure_utc_aware(last_accessed_at) or now
        self.completed_at = ensure_utc_aware(completed_at)
        self.created_at = ensure_utc_aware(created_at) or self.first_started_at
        self.updated_at = ensure_utc_aware(updated_at) or self.last_accessed_at

    @classmethod
    def from_row(cls, row: Any) -> "LessonProgress":
        """Create LessonProgress instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            lesson_id=row.lesson_id,
            id=row.id,
            completed=bool(row.completed),
            time_spent_seconds=row.time_spent_seconds or 0,
            attempts=row.attempts or 0,
            score=row.score,
            first_started_at=row.first_started_at,
            last_accessed_at=row.last_accessed_at,
            completed_at=row.completed_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "course_id": self.course_id,
            "lesson_id": self.lesson_id,
            "completed": self.completed,
            "time_spent_seconds": self.time_spent_seconds,
            "attempts": self.attempts,
            "score": self.score,
            "first_started_at": self.first_started_at,
            "last_accessed_at": self.last_accessed_at,
            "completed_at": self.completed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        state = "completed" if self.completed else "in_progress"
        return (
            f"<LessonProgress user={self.user_id} lesson={self.lesson_id} "
            f"{state} {self.time_spent_seconds}s>"
        )


class CourseProgress:
    """Course progress entity (aggregated from lesson progress).

    Attributes:
        user_id: User UUID
        course_id: Course UUID
        id: Synthetic identifier for external reference
        completed_lessons: Completed lesson ids, no duplicates
        progress_percentage: Rounded completion percentage (0-100)
        last_accessed_at: Last access timestamp
        completed_at: Set while progress_percentage is 100
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        id: UUID | None = None,
        completed_lessons: list[str] | None = None,
        progress_percentage: int = 0,
        last_accessed_at: datetime | None = None,
        completed_at: datetime | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        now = datetime.now(UTC)
        self.user_id = user_id
        self.course_id = course_id
        self.id = id or uuid4()
        self.completed_lessons = list(completed_lessons or [])
        self.progress_percentage = progress_percentage
        self.last_accessed_at = ensure_utc_aware(last_accessed_at) or now
        self.completed_at = ensure_utc_aware(completed_at)
        self.created_at = ensure_utc_aware(created_at) or now
        self.updated_at = ensure_utc_aware(updated_at) or self.created_at

    @property
    def is_completed(self) -> bool:
        """Check if every lesson of the course is completed."""
        return self.progress_percentage >= MAX_PERCENTAGE

    @classmethod
    def from_row(cls, row: Any) -> "CourseProgress":
        """Create CourseProgress instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            id=row.id,
            completed_lessons=list(row.completed_lessons or []),
            progress_percentage=row.progress_percentage or 0,
            last_accessed_at=row.last_accessed_at,
            completed_at=row.completed_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "course_id": self.course_id,
            "completed_lessons": list(self.completed_lessons),
            "progress_percentage": self.progress_percentage,
            "last_accessed_at": self.last_accessed_at,
            "completed_at": self.completed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return (
            f"<CourseProgress user={self.user_id} course={self.course_id} "
            f"{len(self.completed_lessons)} lessons {self.progress_percentage}%>"
        )


# ==============================================================================
# Operation Results
# ==============================================================================


@dataclass
class LessonProgressResult:
    """A lesson record together with the outcome that produced it."""

    outcome: LessonOutcome
    progress: LessonProgress | None = None
    course_progress: CourseProgress | None = None


@dataclass
class ProgressStats:
    """Aggregate statistics over all course progress of a user."""

    total_courses: int = 0
    completed_courses: int = 0
    in_progress_courses: int = 0
    total_lessons_completed: int = 0
    average_progress: float = 0.0


@dataclass
class CourseStatistics:
    """Lesson-level statistics for the course dashboard."""

    total_lessons: int = 0
    completed_lessons: int = 0
    completion_rate: int = 0
    total_time_spent_seconds: int = 0
    total_attempts: int = 0
    average_score: int | None = None
    difficult_lessons: list[str] = field(default_factory=list)
    current_lesson: LessonProgress | None = None


@dataclass
class CourseOverview:
    """Course aggregate, lesson list and statistics for one learner."""

    user_id: UUID
    course_id: UUID
    course_progress: CourseProgress | None
    lessons: list[LessonProgress]
    statistics: CourseStatistics
