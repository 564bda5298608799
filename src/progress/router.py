"""Learner progress tracking API endpoints.

Provides routes for:
- Lesson start/resume, time accrual, completion and uncompletion
- Course progress overview, last-access touch and reset
- User progress listing, statistics and bulk lookup
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status

from src.auth.dependencies import CurrentUser
from src.catalog.dependencies import CourseCatalogDep, require_total_lessons
from src.config import get_settings

from .dependencies import ProgressServiceDep, handle_progress_error
from .models import MAX_LESSON_ID_LENGTH, LessonOutcome
from .schemas import (
    AccrueTimeRequest,
    BulkProgressRequest,
    BulkProgressResponse,
    CompleteLessonRequest,
    CourseOverviewResponse,
    CourseProgressListResponse,
    CourseProgressResponse,
    LessonActionResponse,
    LessonProgressResponse,
    MessageResponse,
    ProgressStatsResponse,
    StartLessonRequest,
    UncompleteLessonRequest,
)
from .service import LessonProgressNotFoundError, ProgressError


lessons_router = APIRouter(prefix="/v1/lessons", tags=["lessons"])
courses_router = APIRouter(prefix="/v1/courses", tags=["courses"])
router = APIRouter(prefix="/v1/progress", tags=["progress"])

LessonIdPath = Annotated[
    str,
    Path(
        min_length=1,
        max_length=MAX_LESSON_ID_LENGTH,
        description="Lesson identifier",
    ),
]


# ==============================================================================
# Lesson Endpoints
# ==============================================================================


@lessons_router.post(
    "/{lesson_id}/start",
    response_model=LessonActionResponse,
    summary="Start or resume lesson",
)
async def start_lesson(
    lesson_id: LessonIdPath,
    data: StartLessonRequest,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> LessonActionResponse:
    """Start a lesson, or refresh last access if already started.

    Called when the learner opens a lesson. Safe to repeat.
    """
    try:
        result = await progress_service.start_or_resume_lesson(
            user_id=user.id,
            course_id=data.course_id,
            lesson_id=lesson_id,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    message = (
        "Lesson started" if result.outcome == LessonOutcome.STARTED else "Lesson resumed"
    )
    return LessonActionResponse(
        message=message,
        data=LessonProgressResponse.from_entity(result.progress),
    )


@lessons_router.put(
    "/{lesson_id}/time",
    response_model=LessonActionResponse,
    summary="Add time spent on lesson",
)
async def accrue_lesson_time(
    lesson_id: LessonIdPath,
    data: AccrueTimeRequest,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> LessonActionResponse:
    """Add time spent since the last ping.

    Sent periodically by the frontend while the lesson is open.
    """
    try:
        progress = await progress_service.accrue_time(
            user_id=user.id,
            course_id=data.course_id,
            lesson_id=lesson_id,
            delta_seconds=data.time_spent_seconds,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return LessonActionResponse(
        message="Time updated",
        data=LessonProgressResponse.from_entity(progress),
    )


@lessons_router.post(
    "/{lesson_id}/complete",
    response_model=LessonActionResponse,
    summary="Mark lesson as complete",
)
async def complete_lesson(
    lesson_id: LessonIdPath,
    data: CompleteLessonRequest,
    progress_service: ProgressServiceDep,
    catalog: CourseCatalogDep,
    user: CurrentUser,
) -> LessonActionResponse:
    """Mark a started lesson as complete and recompute course progress.

    Completing an already completed lesson succeeds without changes.
    """
    total_lessons = await require_total_lessons(catalog, data.course_id)

    try:
        result = await progress_service.complete_lesson(
            user_id=user.id,
            course_id=data.course_id,
            lesson_id=lesson_id,
            total_lessons=total_lessons,
            score=data.score,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    if result.outcome == LessonOutcome.ALREADY_COMPLETED:
        message = "Lesson was already completed"
    else:
        message = "Lesson completed successfully"

    return LessonActionResponse(
        message=message,
        data=LessonProgressResponse.from_entity(result.progress),
        course_progress=CourseProgressResponse.from_entity(result.course_progress)
        if result.course_progress
        else None,
    )


@lessons_router.post(
    "/{lesson_id}/uncomplete",
    response_model=LessonActionResponse,
    summary="Mark lesson as incomplete",
)
async def uncomplete_lesson(
    lesson_id: LessonIdPath,
    data: UncompleteLessonRequest,
    progress_service: ProgressServiceDep,
    catalog: CourseCatalogDep,
    user: CurrentUser,
) -> LessonActionResponse:
    """Revoke completion of a lesson and recompute course progress.

    Time spent and attempts are kept.
    """
    total_lessons = await require_total_lessons(catalog, data.course_id)

    try:
        result = await progress_service.uncomplete_lesson(
            user_id=user.id,
            course_id=data.course_id,
            lesson_id=lesson_id,
            total_lessons=total_lessons,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    if result.outcome == LessonOutcome.NOT_FOUND:
        raise handle_progress_error(LessonProgressNotFoundError())

    if result.outcome == LessonOutcome.UNCHANGED:
        message = "Lesson was not completed"
    else:
        message = "Lesson marked as incomplete"

    return LessonActionResponse(
        message=message,
        data=LessonProgressResponse.from_entity(result.progress),
        course_progress=CourseProgressResponse.from_entity(result.course_progress)
        if result.course_progress
        else None,
    )


# ==============================================================================
# Course Endpoints
# ==============================================================================


@courses_router.get(
    "/{course_id}/progress",
    response_model=CourseOverviewResponse,
    summary="Get course progress overview",
)
async def get_course_progress(
    course_id: UUID,
    progress_service: ProgressServiceDep,
    catalog: CourseCatalogDep,
    user: CurrentUser,
) -> CourseOverviewResponse:
    """Get per-lesson progress and statistics for a course.

    Includes the lesson to continue from.
    """
    total_lessons = await require_total_lessons(catalog, course_id)

    try:
        overview = await progress_service.get_course_overview(
            user_id=user.id,
            course_id=course_id,
            total_lessons=total_lessons,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return CourseOverviewResponse.from_entity(overview)


@courses_router.post(
    "/{course_id}/progress/access",
    response_model=CourseProgressResponse,
    summary="Record course access",
)
async def touch_course_access(
    course_id: UUID,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> CourseProgressResponse:
    """Refresh the course's last access time."""
    try:
        record = await progress_service.touch_last_accessed(user.id, course_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return CourseProgressResponse.from_entity(record)


@courses_router.delete(
    "/{course_id}/progress",
    response_model=MessageResponse,
    summary="Reset course progress",
)
async def reset_course_progress(
    course_id: UUID,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> MessageResponse:
    """Delete all lesson and course progress of the current user for a course."""
    try:
        existed = await progress_service.reset_course_progress(user.id, course_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    if not existed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No progress to reset",
        )
    return MessageResponse(message="Course progress reset")


# ==============================================================================
# User Progress Endpoints
# ==============================================================================


@router.get(
    "",
    response_model=CourseProgressListResponse,
    summary="Get my course progress",
)
async def get_my_progress(
    progress_service: ProgressServiceDep,
    user: CurrentUser,
    include_completed: bool = Query(True, description="Include 100% courses"),
) -> CourseProgressListResponse:
    """Get progress of every course the current user has touched."""
    try:
        records = await progress_service.get_user_progress(
            user.id, include_completed=include_completed
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return CourseProgressListResponse(
        items=[CourseProgressResponse.from_entity(r) for r in records],
        total=len(records),
    )


@router.get(
    "/stats",
    response_model=ProgressStatsResponse,
    summary="Get my progress statistics",
)
async def get_my_progress_stats(
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> ProgressStatsResponse:
    """Get aggregate statistics over the current user's courses."""
    try:
        stats = await progress_service.get_progress_stats(user.id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return ProgressStatsResponse.from_entity(stats)


@router.post(
    "/bulk",
    response_model=BulkProgressResponse,
    summary="Get progress for several courses",
)
async def get_bulk_progress(
    data: BulkProgressRequest,
    progress_service: ProgressServiceDep,
    user: CurrentUser,
) -> BulkProgressResponse:
    """Get progress for a list of courses (course cards, catalog pages)."""
    max_courses = get_settings().progress_bulk_max_courses
    if len(data.course_ids) > max_courses:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"At most {max_courses} course ids per request",
        )

    try:
        records = await progress_service.get_bulk_course_progress(
            user.id, data.course_ids
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return BulkProgressResponse(
        progress={
            course_id: CourseProgressResponse.from_entity(record)
            for course_id, record in records.items()
        }
    )
