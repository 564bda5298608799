"""Cassandra stores for lesson and course progress.

Both stores enforce the record invariants before any statement runs, since
Cassandra has no CHECK constraints. Uniqueness comes from the primary keys.

Every write to a progress row is a lightweight transaction (IF clause), and
reads that feed a compare-and-set use LOCAL_SERIAL consistency, so:
- a record is created exactly once (INSERT ... IF NOT EXISTS)
- time accrual is applied as an atomic increment (compare-and-set on the
  current total, re-armed from the value returned by the failed condition)
- a lesson transitions to completed exactly once per attempt
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog
from cassandra import ConsistencyLevel

from .models import (
    MAX_LESSON_ID_LENGTH,
    MAX_PERCENTAGE,
    MAX_SCORE,
    CourseProgress,
    LessonOutcome,
    LessonProgress,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)

# Upper bound of a Cassandra INT column
MAX_INT_COLUMN = 2**31 - 1


class StoreConstraintError(ValueError):
    """A write would violate a progress record invariant."""


class StoreOverflowError(StoreConstraintError):
    """An increment would push a column past its upper bound."""


class StoreContentionError(RuntimeError):
    """Compare-and-set did not converge within the configured attempts."""


def _check_lesson_key(lesson_id: str) -> None:
    if not isinstance(lesson_id, str) or not lesson_id:
        msg = "lesson_id must be a non-empty string"
        raise StoreConstraintError(msg)
    if len(lesson_id) > MAX_LESSON_ID_LENGTH:
        msg = f"lesson_id longer than {MAX_LESSON_ID_LENGTH} characters"
        raise StoreConstraintError(msg)


def check_lesson_constraints(progress: LessonProgress) -> None:
    """Validate a lesson record against the stored invariants."""
    _check_lesson_key(progress.lesson_id)
    if not 0 <= progress.time_spent_seconds <= MAX_INT_COLUMN:
        msg = "time_spent_seconds out of range"
        raise StoreConstraintError(msg)
    if not 0 <= progress.attempts <= MAX_INT_COLUMN:
        msg = "attempts out of range"
        raise StoreConstraintError(msg)
    if progress.score is not None and not 0 <= progress.score <= MAX_SCORE:
        msg = "score must be within [0, 100]"
        raise StoreConstraintError(msg)
    if progress.completed != (progress.completed_at is not None):
        msg = "completed_at must be set iff completed"
        raise StoreConstraintError(msg)


def check_course_constraints(progress: CourseProgress) -> None:
    """Validate a course record against the stored invariants."""
    if not 0 <= progress.progress_percentage <= MAX_PERCENTAGE:
        msg = "progress_percentage must be within [0, 100]"
        raise StoreConstraintError(msg)
    if len(set(progress.completed_lessons)) != len(progress.completed_lessons):
        msg = "completed_lessons contains duplicates"
        raise StoreConstraintError(msg)
    if progress.is_completed != (progress.completed_at is not None):
        msg = "completed_at must be set iff progress_percentage is 100"
        raise StoreConstraintError(msg)


# ==============================================================================
# Lesson Progress Store
# ==============================================================================


class LessonProgressStore:
    """Persistence for per (user, course, lesson) progress records."""

    def __init__(self, session: "Session", keyspace: str, cas_max_attempts: int = 10):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self.cas_max_attempts = cas_max_attempts
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
        """)

        # Linearizable read of the state a compare-and-set will be based on
        self._get_serial = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
        """)
        self._get_serial.consistency_level = ConsistencyLevel.LOCAL_SERIAL

        self._list_for_course = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND course_id = ?
        """)

        self._insert_if_absent = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lesson_progress
            (user_id, course_id, lesson_id, id, completed, time_spent_seconds,
             attempts, score, first_started_at, last_accessed_at, completed_at,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._touch = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET last_accessed_at = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF EXISTS
        """)

        self._add_time = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET time_spent_seconds = ?, last_accessed_at = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF time_spent_seconds = ?
        """)

        self._complete = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET completed = true, attempts = ?, score = ?, completed_at = ?,
                last_accessed_at = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF completed = false AND attempts = ?
        """)

        self._uncomplete = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET completed = false, completed_at = null, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF completed = true
        """)

        self._delete = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF EXISTS
        """)

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get(
        self, user_id: UUID, course_id: UUID, lesson_id: str
    ) -> LessonProgress | None:
        """Get a lesson record by key."""
        result = await self.session.aexecute(
            self._get, [user_id, course_id, lesson_id]
        )
        row = result.one()
        return LessonProgress.from_row(row) if row else None

    async def _get_for_update(
        self, user_id: UUID, course_id: UUID, lesson_id: str
    ) -> LessonProgress | None:
        result = await self.session.aexecute(
            self._get_serial, [user_id, course_id, lesson_id]
        )
        row = result.one()
        return LessonProgress.from_row(row) if row else None

    async def list_for_course(
        self, user_id: UUID, course_id: UUID
    ) -> list[LessonProgress]:
        """All lesson records of a (user, course), in first-started order."""
        rows = await self.session.aexecute(self._list_for_course, [user_id, course_id])
        lessons = [LessonProgress.from_row(row) for row in rows]
        lessons.sort(key=lambda lp: (lp.first_started_at, lp.lesson_id))
        return lessons

    # ==========================================================================
    # Conditional writes
    # ==========================================================================

    async def create_if_absent(self, progress: LessonProgress) -> bool:
        """Insert a new record; False when one already exists for the key."""
        check_lesson_constraints(progress)
        result = await self.session.aexecute(
            self._insert_if_absent,
            [
                progress.user_id,
                progress.course_id,
                progress.lesson_id,
                progress.id,
                progress.completed,
                progress.time_spent_seconds,
                progress.attempts,
                progress.score,
                progress.first_started_at,
                progress.last_accessed_at,
                progress.completed_at,
                progress.created_at,
                progress.updated_at,
            ],
        )
        return bool(result.was_applied)

    async def touch(
        self, user_id: UUID, course_id: UUID, lesson_id: str, now: datetime
    ) -> bool:
        """Refresh last_accessed_at; False when the record does not exist."""
        _check_lesson_key(lesson_id)
        result = await self.session.aexecute(
            self._touch, [now, now, user_id, course_id, lesson_id]
        )
        return bool(result.was_applied)

    async def add_time(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        delta_seconds: int,
        now: datetime,
    ) -> LessonProgress | None:
        """Atomically add delta_seconds to time_spent_seconds.

        Returns:
            The updated record, or None when the record does not exist

        Raises:
            StoreOverflowError: If the new total would overflow the column
            StoreContentionError: If concurrent writers kept winning
        """
        _check_lesson_key(lesson_id)
        if delta_seconds < 0:
            msg = "delta_seconds must be non-negative"
            raise StoreConstraintError(msg)

        current = await self._get_for_update(user_id, course_id, lesson_id)
        if current is None:
            return None

        for _ in range(self.cas_max_attempts):
            new_total = current.time_spent_seconds + delta_seconds
            if new_total > MAX_INT_COLUMN:
                msg = "time_spent_seconds out of range"
                raise StoreOverflowError(msg)

            result = await self.session.aexecute(
                self._add_time,
                [
                    new_total,
                    now,
                    now,
                    user_id,
                    course_id,
                    lesson_id,
                    current.time_spent_seconds,
                ],
            )
            if result.was_applied:
                current.time_spent_seconds = new_total
                current.last_accessed_at = now
                current.updated_at = now
                return current

            logger.debug(
                "lesson_time_cas_conflict",
                course_id=str(course_id),
                lesson_id=lesson_id,
            )

            # A failed condition returns the current value of the column,
            # or only the applied flag when the row is gone
            observed = getattr(result.one(), "time_spent_seconds", None)
            if observed is None:
                current = await self._get_for_update(user_id, course_id, lesson_id)
                if current is None:
                    return None
            else:
                current.time_spent_seconds = observed

        msg = "time accrual did not converge"
        raise StoreContentionError(msg)

    async def mark_completed(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        now: datetime,
        score: int | None = None,
    ) -> tuple[LessonOutcome, LessonProgress | None]:
        """Transition a lesson to completed, counting one attempt.

        Returns:
            (COMPLETED, record) on transition, (ALREADY_COMPLETED, record)
            when it was completed already, (NOT_FOUND, None) when absent
        """
        _check_lesson_key(lesson_id)
        if score is not None and not 0 <= score <= MAX_SCORE:
            msg = "score must be within [0, 100]"
            raise StoreConstraintError(msg)

        for _ in range(self.cas_max_attempts):
            current = await self._get_for_update(user_id, course_id, lesson_id)
            if current is None:
                return LessonOutcome.NOT_FOUND, None
            if current.completed:
                return LessonOutcome.ALREADY_COMPLETED, current

            attempts = current.attempts + 1
            new_score = score if score is not None else current.score

            result = await self.session.aexecute(
                self._complete,
                [
                    attempts,
                    new_score,
                    now,
                    now,
                    now,
                    user_id,
                    course_id,
                    lesson_id,
                    current.attempts,
                ],
            )
            if result.was_applied:
                current.completed = True
                current.attempts = attempts
                current.score = new_score
                current.completed_at = now
                current.last_accessed_at = now
                current.updated_at = now
                return LessonOutcome.COMPLETED, current

        msg = "lesson completion did not converge"
        raise StoreContentionError(msg)

    async def mark_incomplete(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: str,
        now: datetime,
    ) -> tuple[LessonOutcome, LessonProgress | None]:
        """Revoke completion. Attempts are kept.

        Returns:
            (UPDATED, record) on transition, (UNCHANGED, record) when it was
            not completed, (NOT_FOUND, None) when absent
        """
        _check_lesson_key(lesson_id)

        for _ in range(self.cas_max_attempts):
            current = await self._get_for_update(user_id, course_id, lesson_id)
            if current is None:
                return LessonOutcome.NOT_FOUND, None
            if not current.completed:
                return LessonOutcome.UNCHANGED, current

            result = await self.session.aexecute(
                self._uncomplete, [now, user_id, course_id, lesson_id]
            )
            if result.was_applied:
                current.completed = False
                current.completed_at = None
                current.updated_at = now
                return LessonOutcome.UPDATED, current

        msg = "lesson uncompletion did not converge"
        raise StoreContentionError(msg)

    async def delete_for_course(self, user_id: UUID, course_id: UUID) -> int:
        """Delete every lesson record of a (user, course).

        Each row is deleted through its own lightweight transaction, so the
        tombstones carry Paxos timestamps like every other write to the table.

        Returns:
            Number of records deleted
        """
        deleted = 0
        for lesson in await self.list_for_course(user_id, course_id):
            result = await self.session.aexecute(
                self._delete, [user_id, course_id, lesson.lesson_id]
            )
            if result.was_applied:
                deleted += 1
        return deleted


# ==============================================================================
# Course Progress Store
# ==============================================================================


class CourseProgressStore:
    """Persistence for per (user, course) aggregate records."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.course_progress
            WHERE user_id = ? AND course_id = ?
        """)

        self._list_for_user = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.course_progress
            WHERE user_id = ?
        """)

        self._get_many = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.course_progress
            WHERE user_id = ? AND course_id IN ?
        """)

        self._insert_if_absent = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.course_progress
            (user_id, course_id, id, completed_lessons, progress_percentage,
             last_accessed_at, completed_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._update_aggregate = self.session.prepare(f"""
            UPDATE {self.keyspace}.course_progress
            SET completed_lessons = ?, progress_percentage = ?,
                last_accessed_at = ?, completed_at = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ?
            IF EXISTS
        """)

        self._touch = self.session.prepare(f"""
            UPDATE {self.keyspace}.course_progress
            SET last_accessed_at = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ?
            IF EXISTS
        """)

        self._delete = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.course_progress
            WHERE user_id = ? AND course_id = ?
            IF EXISTS
        """)

    async def get(self, user_id: UUID, course_id: UUID) -> CourseProgress | None:
        """Get a course record by key."""
        result = await self.session.aexecute(self._get, [user_id, course_id])
        row = result.one()
        return CourseProgress.from_row(row) if row else None

    async def list_for_user(self, user_id: UUID) -> list[CourseProgress]:
        """All course records of a user."""
        rows = await self.session.aexecute(self._list_for_user, [user_id])
        return [CourseProgress.from_row(row) for row in rows]

    async def get_many(
        self, user_id: UUID, course_ids: list[UUID]
    ) -> dict[UUID, CourseProgress]:
        """Records for the given courses; courses without one are absent."""
        if not course_ids:
            return {}
        rows = await self.session.aexecute(self._get_many, [user_id, course_ids])
        records = [CourseProgress.from_row(row) for row in rows]
        return {record.course_id: record for record in records}

    async def create_if_absent(self, progress: CourseProgress) -> bool:
        """Insert a new record; False when one already exists for the key."""
        check_course_constraints(progress)
        result = await self.session.aexecute(
            self._insert_if_absent,
            [
                progress.user_id,
                progress.course_id,
                progress.id,
                progress.completed_lessons,
                progress.progress_percentage,
                progress.last_accessed_at,
                progress.completed_at,
                progress.created_at,
                progress.updated_at,
            ],
        )
        return bool(result.was_applied)

    async def update_aggregate(self, progress: CourseProgress) -> bool:
        """Overwrite the aggregate fields; False when the record is gone."""
        check_course_constraints(progress)
        result = await self.session.aexecute(
            self._update_aggregate,
            [
                progress.completed_lessons,
                progress.progress_percentage,
                progress.last_accessed_at,
                progress.completed_at,
                progress.updated_at,
                progress.user_id,
                progress.course_id,
            ],
        )
        return bool(result.was_applied)

    async def touch(self, user_id: UUID, course_id: UUID, now: datetime) -> bool:
        """Refresh last_accessed_at; False when the record does not exist."""
        result = await self.session.aexecute(
            self._touch, [now, now, user_id, course_id]
        )
        return bool(result.was_applied)

    async def delete(self, user_id: UUID, course_id: UUID) -> bool:
        """Delete a course record; True when one existed."""
        result = await self.session.aexecute(self._delete, [user_id, course_id])
        return bool(result.was_applied)
