"""Learner progress tracking service layer.

Business logic for:
- Lesson lifecycle: start/resume, time accrual, completion, uncompletion
- Course aggregate recomputation from lesson records
- Course reset and last-access tracking
- Read views: per course, per user, bulk, statistics, dashboard overview

The course's total lesson count comes from the catalog and is passed in by
the caller on every operation that recomputes the aggregate.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

import structlog
from cassandra import DriverException
from cassandra.cluster import NoHostAvailable

from .models import (
    DIFFICULT_LESSON_ATTEMPTS,
    MAX_LESSON_ID_LENGTH,
    MAX_SCORE,
    CourseOverview,
    CourseProgress,
    CourseStatistics,
    LessonOutcome,
    LessonProgress,
    LessonProgressResult,
    ProgressStats,
    calculate_progress_percentage,
)
from .store import (
    CourseProgressStore,
    LessonProgressStore,
    StoreConstraintError,
    StoreContentionError,
    StoreOverflowError,
)


logger = structlog.get_logger(__name__)

STORE_EXCEPTIONS = (
    DriverException,
    NoHostAvailable,
    StoreConstraintError,
    StoreContentionError,
)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class ProgressError(Exception):
    """Base progress error."""

    def __init__(self, message: str, code: str = "progress_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class LessonProgressNotFoundError(ProgressError):
    """Lesson was never started by the user."""

    def __init__(self, message: str = "Lesson progress not found"):
        super().__init__(message, "progress_not_found")


class InvalidProgressInputError(ProgressError):
    """Input outside the accepted range."""

    def __init__(self, message: str = "Invalid progress input"):
        super().__init__(message, "invalid_input")


class ProgressStoreError(ProgressError):
    """Persistence unavailable or constraint violated unexpectedly."""

    def __init__(self, message: str = "Progress storage is unavailable"):
        super().__init__(message, "store_failure")


# ==============================================================================
# Input Validation
# ==============================================================================


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_lesson_id(lesson_id: str) -> None:
    if not isinstance(lesson_id, str) or not lesson_id.strip():
        raise InvalidProgressInputError("lesson_id must be a non-empty string")
    if len(lesson_id) > MAX_LESSON_ID_LENGTH:
        raise InvalidProgressInputError(
            f"lesson_id must be at most {MAX_LESSON_ID_LENGTH} characters"
        )


def validate_non_negative(name: str, value: int) -> None:
    if not _is_int(value) or value < 0:
        raise InvalidProgressInputError(f"{name} must be a non-negative integer")


def validate_score(score: int | None) -> None:
    if score is None:
        return
    if not _is_int(score) or not 0 <= score <= MAX_SCORE:
        raise InvalidProgressInputError(
            f"score must be an integer between 0 and {MAX_SCORE}"
        )


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ==============================================================================
# Progress Service
# ==============================================================================


class ProgressService:
    """Service for learner progress tracking."""

    def __init__(
        self,
        lesson_store: LessonProgressStore,
        course_store: CourseProgressStore,
        max_recompute_attempts: int = 10,
    ):
        self.lesson_store = lesson_store
        self.course_store = course_store
        self.max_recompute_attempts = max_recompute_attempts

    @contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        """Translate persistence failures into ProgressStoreError."""
        try:
            yield
        except STORE_EXCEPTIONS as e:
            logger.error(
                "progress_store_failure",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise ProgressStoreError from e

    # ==========================================================================
    # Lesson Operations
    # ==========================================================================

    async def start_or_resume_lesson(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
    ) -> LessonProgressResult:
        """Create the lesson record, or refresh last access if it exists.

        Never touches the course aggregate.
        """
        validate_lesson_id(lesson_id)

        with self._store_errors("start_or_resume_lesson"):
            # A reset can delete the record between the insert and the touch
            for _ in range(self.max_recompute_attempts):
                now = datetime.now(UTC)
                progress = LessonProgress(
                    user_id=user_id,
                    course_id=course_id,
                    lesson_id=lesson_id,
                    first_started_at=now,
                    last_accessed_at=now,
                )
                if await self.lesson_store.create_if_absent(progress):
                    logger.info(
                        "lesson_started",
                        user_id=str(user_id),
                        course_id=str(course_id),
                        lesson_id=lesson_id,
                    )
                    return LessonProgressResult(LessonOutcome.STARTED, progress)

                if await self.lesson_store.touch(user_id, course_id, lesson_id, now):
                    current = await self.lesson_store.get(user_id, course_id, lesson_id)
                    if current is not None:
                        logger.info(
                            "lesson_resumed",
                            user_id=str(user_id),
                            course_id=str(course_id),
                            lesson_id=lesson_id,
                        )
                        return LessonProgressResult(LessonOutcome.RESUMED, current)

        raise ProgressStoreError

    async def accrue_time(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        delta_seconds: int,
    ) -> LessonProgress:
        """Atomically add time spent to an existing lesson record.

        Raises:
            InvalidProgressInputError: If delta_seconds is negative or the
                total would overflow
            LessonProgressNotFoundError: If the lesson was never started
        """
        validate_lesson_id(lesson_id)
        validate_non_negative("time_spent_seconds", delta_seconds)

        with self._store_errors("accrue_time"):
            try:
                progress = await self.lesson_store.add_time(
                    user_id, course_id, lesson_id, delta_seconds, datetime.now(UTC)
                )
            except StoreOverflowError as e:
                raise InvalidProgressInputError(
                    "time_spent_seconds total would exceed the maximum"
                ) from e

        if progress is None:
            raise LessonProgressNotFoundError

        logger.info(
            "lesson_time_accrued",
            user_id=str(user_id),
            lesson_id=lesson_id,
            delta_seconds=delta_seconds,
            time_spent_seconds=progress.time_spent_seconds,
        )
        return progress

    async def complete_lesson(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        total_lessons: int,
        score: int | None = None,
    ) -> LessonProgressResult:
        """Mark a started lesson as completed and recompute the course.

        A lesson that is already completed is reported as ALREADY_COMPLETED
        with no change to the lesson; a stale course record is repaired.
        """
        validate_score(score)
        validate_non_negative("total_lessons", total_lessons)
        validate_lesson_id(lesson_id)

        with self._store_errors("complete_lesson"):
            outcome, progress = await self.lesson_store.mark_completed(
                user_id, course_id, lesson_id, datetime.now(UTC), score
            )

        if outcome == LessonOutcome.NOT_FOUND:
            raise LessonProgressNotFoundError

        if outcome == LessonOutcome.ALREADY_COMPLETED:
            logger.info(
                "lesson_already_completed",
                user_id=str(user_id),
                lesson_id=lesson_id,
            )
            course_progress = await self._verify_course_aggregate(
                user_id, course_id, total_lessons
            )
            return LessonProgressResult(outcome, progress, course_progress)

        course_progress = await self.recompute_course_aggregate(
            user_id, course_id, total_lessons
        )

        logger.info(
            "lesson_completed",
            user_id=str(user_id),
            course_id=str(course_id),
            lesson_id=lesson_id,
            attempts=progress.attempts,
            progress_percentage=course_progress.progress_percentage,
        )
        return LessonProgressResult(outcome, progress, course_progress)

    async def uncomplete_lesson(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        total_lessons: int,
    ) -> LessonProgressResult:
        """Revoke completion of a lesson and recompute the course.

        Missing records are reported as NOT_FOUND, not raised.
        An incomplete lesson is reported as UNCHANGED; a stale course record
        is repaired.
        """
        validate_non_negative("total_lessons", total_lessons)
        validate_lesson_id(lesson_id)

        with self._store_errors("uncomplete_lesson"):
            outcome, progress = await self.lesson_store.mark_incomplete(
                user_id, course_id, lesson_id, datetime.now(UTC)
            )

        if outcome == LessonOutcome.NOT_FOUND:
            return LessonProgressResult(outcome, progress)

        if outcome == LessonOutcome.UNCHANGED:
            course_progress = await self._verify_course_aggregate(
                user_id, course_id, total_lessons
            )
            return LessonProgressResult(outcome, progress, course_progress)

        course_progress = await self.recompute_course_aggregate(
            user_id, course_id, total_lessons
        )

        logger.info(
            "lesson_uncompleted",
            user_id=str(user_id),
            course_id=str(course_id),
            lesson_id=lesson_id,
            progress_percentage=course_progress.progress_percentage,
        )
        return LessonProgressResult(outcome, progress, course_progress)

    # ==========================================================================
    # Course Aggregate
    # ==========================================================================

    async def _completed_lesson_ids(self, user_id: UUID, course_id: UUID) -> list[str]:
        lessons = await self.lesson_store.list_for_course(user_id, course_id)
        return [lesson.lesson_id for lesson in lessons if lesson.completed]

    async def _verify_course_aggregate(
        self,
        user_id: UUID,
        course_id: UUID,
        total_lessons: int,
    ) -> CourseProgress | None:
        """Recompute the course record when it disagrees with the lessons.

        A recompute that failed after the lesson write committed leaves the
        course record behind; a retried complete or uncomplete repairs it.
        """
        with self._store_errors("verify_course_aggregate"):
            record = await self.course_store.get(user_id, course_id)
            completed_ids = await self._completed_lesson_ids(user_id, course_id)

        if record is None:
            stale = bool(completed_ids)
        else:
            expected = calculate_progress_percentage(len(completed_ids), total_lessons)
            stale = (
                set(record.completed_lessons) != set(completed_ids)
                or record.progress_percentage != expected
            )

        if not stale:
            return record

        logger.warning(
            "course_progress_stale",
            user_id=str(user_id),
            course_id=str(course_id),
            completed_lessons=len(completed_ids),
        )
        return await self.recompute_course_aggregate(user_id, course_id, total_lessons)

    async def recompute_course_aggregate(
        self,
        user_id: UUID,
        course_id: UUID,
        total_lessons: int,
    ) -> CourseProgress:
        """Rebuild the course record from the current lesson records.

        The completed set is re-read after the write; when a concurrent
        completion changed it, the aggregate is rebuilt again.
        """
        validate_non_negative("total_lessons", total_lessons)

        with self._store_errors("recompute_course_aggregate"):
            for _ in range(self.max_recompute_attempts):
                completed_ids = await self._completed_lesson_ids(user_id, course_id)
                percentage = calculate_progress_percentage(
                    len(completed_ids), total_lessons
                )
                now = datetime.now(UTC)

                record = await self.course_store.get(user_id, course_id)
                if record is None:
                    record = CourseProgress(
                        user_id=user_id,
                        course_id=course_id,
                        completed_lessons=completed_ids,
                        progress_percentage=percentage,
                        last_accessed_at=now,
                        completed_at=now if percentage == 100 else None,
                        created_at=now,
                    )
                    if not await self.course_store.create_if_absent(record):
                        continue
                else:
                    record.completed_lessons = completed_ids
                    record.progress_percentage = percentage
                    record.last_accessed_at = now
                    record.updated_at = now
                    if percentage == 100:
                        record.completed_at = record.completed_at or now
                    else:
                        record.completed_at = None
                    if not await self.course_store.update_aggregate(record):
                        continue

                if await self._completed_lesson_ids(user_id, course_id) == completed_ids:
                    logger.info(
                        "course_progress_recomputed",
                        user_id=str(user_id),
                        course_id=str(course_id),
                        completed_lessons=len(completed_ids),
                        total_lessons=total_lessons,
                        progress_percentage=percentage,
                    )
                    return record

        logger.warning(
            "course_progress_recompute_exhausted",
            user_id=str(user_id),
            course_id=str(course_id),
        )
        raise ProgressStoreError

    async def reset_course_progress(self, user_id: UUID, course_id: UUID) -> bool:
        """Delete the course record and every lesson record of the course.

        Returns:
            True if anything existed, False if there was nothing to reset
        """
        with self._store_errors("reset_course_progress"):
            lessons_deleted = await self.lesson_store.delete_for_course(
                user_id, course_id
            )
            course_existed = await self.course_store.delete(user_id, course_id)

        existed = lessons_deleted > 0 or course_existed
        if existed:
            logger.info(
                "course_progress_reset",
                user_id=str(user_id),
                course_id=str(course_id),
                lessons_deleted=lessons_deleted,
            )
        return existed

    async def touch_last_accessed(self, user_id: UUID, course_id: UUID) -> CourseProgress:
        """Refresh last access of a course, creating an empty record if needed."""
        with self._store_errors("touch_last_accessed"):
            for _ in range(self.max_recompute_attempts):
                now = datetime.now(UTC)
                if await self.course_store.touch(user_id, course_id, now):
                    record = await self.course_store.get(user_id, course_id)
                    if record is not None:
                        return record
                    continue

                record = CourseProgress(
                    user_id=user_id,
                    course_id=course_id,
                    last_accessed_at=now,
                    created_at=now,
                )
                if await self.course_store.create_if_absent(record):
                    logger.info(
                        "course_progress_created",
                        user_id=str(user_id),
                        course_id=str(course_id),
                    )
                    return record

        raise ProgressStoreError

    # ==========================================================================
    # Read Views
    # ==========================================================================

    async def get_course_progress(
        self, user_id: UUID, course_id: UUID
    ) -> CourseProgress | None:
        with self._store_errors("get_course_progress"):
            return await self.course_store.get(user_id, course_id)

    async def get_user_progress(
        self, user_id: UUID, include_completed: bool = True
    ) -> list[CourseProgress]:
        """All course records of a user, most recently accessed first."""
        with self._store_errors("get_user_progress"):
            records = await self.course_store.list_for_user(user_id)

        if not include_completed:
            records = [r for r in records if not r.is_completed]
        records.sort(key=lambda r: r.last_accessed_at, reverse=True)
        return records

    async def get_bulk_course_progress(
        self, user_id: UUID, course_ids: list[UUID]
    ) -> dict[UUID, CourseProgress]:
        """Course records for the given ids; ids without a record are omitted."""
        unique_ids = list(dict.fromkeys(course_ids))
        if not unique_ids:
            return {}

        with self._store_errors("get_bulk_course_progress"):
            return await self.course_store.get_many(user_id, unique_ids)

    async def get_progress_stats(self, user_id: UUID) -> ProgressStats:
        """Aggregate statistics over all course records of a user."""
        with self._store_errors("get_progress_stats"):
            records = await self.course_store.list_for_user(user_id)

        if not records:
            return ProgressStats()

        completed = sum(1 for r in records if r.is_completed)
        total_percentage = sum(r.progress_percentage for r in records)
        return ProgressStats(
            total_courses=len(records),
            completed_courses=completed,
            in_progress_courses=len(records) - completed,
            total_lessons_completed=sum(len(r.completed_lessons) for r in records),
            average_progress=round(total_percentage / len(records), 2),
        )

    async def is_lesson_completed(
        self, user_id: UUID, course_id: UUID, lesson_id: str
    ) -> bool:
        validate_lesson_id(lesson_id)
        with self._store_errors("is_lesson_completed"):
            progress = await self.lesson_store.get(user_id, course_id, lesson_id)
        return progress is not None and progress.completed

    async def get_completion_percentage(self, user_id: UUID, course_id: UUID) -> int:
        record = await self.get_course_progress(user_id, course_id)
        return record.progress_percentage if record else 0

    async def get_lesson_progress_list(
        self, user_id: UUID, course_id: UUID
    ) -> list[LessonProgress]:
        """Lesson records of a course, in first-started order."""
        with self._store_errors("get_lesson_progress_list"):
            return await self.lesson_store.list_for_course(user_id, course_id)

    @staticmethod
    def _pick_current_lesson(lessons: list[LessonProgress]) -> LessonProgress | None:
        if not lessons:
            return None
        for lesson in lessons:
            if not lesson.completed:
                return lesson
        return max(lessons, key=lambda lp: lp.last_accessed_at)

    async def get_current_lesson(
        self, user_id: UUID, course_id: UUID
    ) -> LessonProgress | None:
        """First incomplete lesson, or the last accessed one when all are done."""
        lessons = await self.get_lesson_progress_list(user_id, course_id)
        return self._pick_current_lesson(lessons)

    async def get_course_overview(
        self,
        user_id: UUID,
        course_id: UUID,
        total_lessons: int,
    ) -> CourseOverview:
        """Course record, lesson list and dashboard statistics."""
        validate_non_negative("total_lessons", total_lessons)

        with self._store_errors("get_course_overview"):
            lessons = await self.lesson_store.list_for_course(user_id, course_id)
            course_progress = await self.course_store.get(user_id, course_id)

        completed = [lp for lp in lessons if lp.completed]
        scores = [lp.score for lp in completed if lp.score is not None]
        average_score = (
            _round_half_up(Decimal(sum(scores)) / Decimal(len(scores)))
            if scores
            else None
        )

        statistics = CourseStatistics(
            total_lessons=total_lessons,
            completed_lessons=len(completed),
            completion_rate=calculate_progress_percentage(
                len(completed), total_lessons
            ),
            total_time_spent_seconds=sum(lp.time_spent_seconds for lp in lessons),
            total_attempts=sum(lp.attempts for lp in lessons),
            average_score=average_score,
            difficult_lessons=[
                lp.lesson_id
                for lp in lessons
                if lp.attempts >= DIFFICULT_LESSON_ATTEMPTS
            ],
            current_lesson=self._pick_current_lesson(lessons),
        )

        return CourseOverview(
            user_id=user_id,
            course_id=course_id,
            course_progress=course_progress,
            lessons=lessons,
            statistics=statistics,
        )
