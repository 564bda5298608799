"""Pydantic schemas for learner progress tracking.

Request and response models for:
- Lesson start/resume, time accrual and completion
- Course progress (aggregate, dashboard overview, reset)
- User-level progress listing, statistics and bulk lookup
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import (
    MAX_SCORE,
    CourseOverview,
    CourseProgress,
    CourseStatistics,
    LessonProgress,
    ProgressStats,
)
from .store import MAX_INT_COLUMN


# ==============================================================================
# Lesson Request Schemas
# ==============================================================================


class StartLessonRequest(BaseModel):
    """Request to start or resume a lesson."""

    course_id: UUID = Field(..., description="Course UUID")


class AccrueTimeRequest(BaseModel):
    """Time spent since the last ping (sent periodically by the player)."""

    course_id: UUID = Field(..., description="Course UUID")
    time_spent_seconds: int = Field(
        ..., ge=0, le=MAX_INT_COLUMN, description="Seconds to add"
    )


class CompleteLessonRequest(BaseModel):
    """Request to mark a lesson as completed."""

    course_id: UUID = Field(..., description="Course UUID")
    score: int | None = Field(
        None, ge=0, le=MAX_SCORE, description="Optional quiz score (0-100)"
    )


class UncompleteLessonRequest(BaseModel):
    """Request to revoke completion of a lesson."""

    course_id: UUID = Field(..., description="Course UUID")


class BulkProgressRequest(BaseModel):
    """Request progress for several courses at once."""

    course_ids: list[UUID] = Field(..., description="Course UUIDs")


# ==============================================================================
# Progress Response Schemas
# ==============================================================================


class LessonProgressResponse(BaseModel):
    """Lesson progress response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lesson_id: str
    course_id: UUID
    completed: bool
    time_spent_seconds: int
    attempts: int
    score: int | None = None
    first_started_at: datetime
    last_accessed_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: LessonProgress) -> "LessonProgressResponse":
        """Create response from entity."""
        return cls(
            id=entity.id,
            lesson_id=entity.lesson_id,
            course_id=entity.course_id,
            completed=entity.completed,
            time_spent_seconds=entity.time_spent_seconds,
            attempts=entity.attempts,
            score=entity.score,
            first_started_at=entity.first_started_at,
            last_accessed_at=entity.last_accessed_at,
            completed_at=entity.completed_at,
        )


class CourseProgressResponse(BaseModel):
    """Course progress response (aggregated)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    course_id: UUID
    completed_lessons: list[str]
    progress_percentage: int = Field(description="0-100 percentage")
    last_accessed_at: datetime
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, entity: CourseProgress) -> "CourseProgressResponse":
        """Create response from entity."""
        return cls(
            id=entity.id,
            course_id=entity.course_id,
            completed_lessons=list(entity.completed_lessons),
            progress_percentage=entity.progress_percentage,
            last_accessed_at=entity.last_accessed_at,
            completed_at=entity.completed_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )


class LessonActionResponse(BaseModel):
    """Envelope for lesson operations."""

    success: bool = True
    message: str
    data: LessonProgressResponse
    course_progress: CourseProgressResponse | None = Field(
        None, description="Recomputed course aggregate, when completion changed"
    )


# ==============================================================================
# Course Overview Schemas
# ==============================================================================


class CourseStatisticsResponse(BaseModel):
    """Dashboard statistics for one course."""

    total_lessons: int
    completed_lessons: int
    completion_rate: int = Field(description="Rounded completion percentage")
    total_time_spent_seconds: int
    total_attempts: int
    average_score: int | None = Field(
        None, description="Mean score of completed lessons that have one"
    )
    difficult_lessons: list[str] = Field(
        default_factory=list, description="Lessons with 3 or more attempts"
    )
    current_lesson: LessonProgressResponse | None = None

    @classmethod
    def from_entity(cls, entity: CourseStatistics) -> "CourseStatisticsResponse":
        """Create response from entity."""
        current = entity.current_lesson
        return cls(
            total_lessons=entity.total_lessons,
            completed_lessons=entity.completed_lessons,
            completion_rate=entity.completion_rate,
            total_time_spent_seconds=entity.total_time_spent_seconds,
            total_attempts=entity.total_attempts,
            average_score=entity.average_score,
            difficult_lessons=list(entity.difficult_lessons),
            current_lesson=LessonProgressResponse.from_entity(current)
            if current
            else None,
        )


class CourseOverviewResponse(BaseModel):
    """Course aggregate with per-lesson progress and statistics."""

    course_id: UUID
    course_progress: CourseProgressResponse | None = None
    lessons: list[LessonProgressResponse] = []
    statistics: CourseStatisticsResponse

    @classmethod
    def from_entity(cls, entity: CourseOverview) -> "CourseOverviewResponse":
        """Create response from entity."""
        course_progress = entity.course_progress
        return cls(
            course_id=entity.course_id,
            course_progress=CourseProgressResponse.from_entity(course_progress)
            if course_progress
            else None,
            lessons=[LessonProgressResponse.from_entity(lp) for lp in entity.lessons],
            statistics=CourseStatisticsResponse.from_entity(entity.statistics),
        )


# ==============================================================================
# User Progress Schemas
# ==============================================================================


class CourseProgressListResponse(BaseModel):
    """All course progress of the current user."""

    items: list[CourseProgressResponse]
    total: int


class ProgressStatsResponse(BaseModel):
    """Aggregate statistics over the current user's courses."""

    model_config = ConfigDict(from_attributes=True)

    total_courses: int
    completed_courses: int
    in_progress_courses: int
    total_lessons_completed: int
    average_progress: float

    @classmethod
    def from_entity(cls, entity: ProgressStats) -> "ProgressStatsResponse":
        """Create response from entity."""
        return cls.model_validate(entity)


class BulkProgressResponse(BaseModel):
    """Progress keyed by course id; courses never started are absent."""

    progress: dict[UUID, CourseProgressResponse]


# ==============================================================================
# Generic Response
# ==============================================================================


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
    success: bool = True
