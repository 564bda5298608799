"""Course catalog lookup.

Progress operations need a course's total lesson count at call time; the
count is never persisted with progress because a course's lessons change.
"""

from typing import TYPE_CHECKING, Protocol
from uuid import UUID

import structlog


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)


class CourseCatalog(Protocol):
    """Contract for the catalog collaborator."""

    async def get_total_lessons(self, course_id: UUID) -> int | None:
        """Return the course's lesson count, or None for an unknown course."""
        ...


class CassandraCourseCatalog:
    """Counts a course's lessons across its modules."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_course = self.session.prepare(f"""
            SELECT id FROM {self.keyspace}.courses WHERE id = ?
        """)

        self._get_course_modules = self.session.prepare(f"""
            SELECT module_id FROM {self.keyspace}.course_modules
            WHERE course_id = ?
        """)

        self._count_module_lessons = self.session.prepare(f"""
            SELECT COUNT(*) AS total FROM {self.keyspace}.module_lessons
            WHERE module_id = ?
        """)

    async def get_total_lessons(self, course_id: UUID) -> int | None:
        result = await self.session.aexecute(self._get_course, [course_id])
        if result.one() is None:
            return None

        modules = await self.session.aexecute(self._get_course_modules, [course_id])
        total = 0
        for row in modules:
            counted = await self.session.aexecute(
                self._count_module_lessons, [row.module_id]
            )
            count_row = counted.one()
            total += count_row.total if count_row else 0

        logger.debug(
            "course_lesson_count_resolved",
            course_id=str(course_id),
            total_lessons=total,
        )
        return total
