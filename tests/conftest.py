"""Shared test fixtures."""

import copy
import os
from collections.abc import Iterator
from datetime import datetime
from uuid import UUID, uuid4


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_TO_FILES", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret-key-with-at-least-32-characters")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.auth.security import create_access_token  # noqa: E402
from src.main import app  # noqa: E402
from src.progress.models import (  # noqa: E402
    CourseProgress,
    LessonOutcome,
    LessonProgress,
)
from src.progress.service import ProgressService  # noqa: E402
from src.progress.store import MAX_INT_COLUMN, StoreOverflowError  # noqa: E402


# ==============================================================================
# In-memory store doubles
# ==============================================================================


class InMemoryLessonStore:
    """LessonProgressStore double keyed by (user, course, lesson)."""

    def __init__(self) -> None:
        self.records: dict[tuple[UUID, UUID, str], LessonProgress] = {}

    async def get(self, user_id, course_id, lesson_id):
        record = self.records.get((user_id, course_id, lesson_id))
        return copy.deepcopy(record)

    async def list_for_course(self, user_id, course_id):
        lessons = [
            copy.deepcopy(r)
            for (uid, cid, _), r in self.records.items()
            if uid == user_id and cid == course_id
        ]
        lessons.sort(key=lambda lp: (lp.first_started_at, lp.lesson_id))
        return lessons

    async def create_if_absent(self, progress):
        key = (progress.user_id, progress.course_id, progress.lesson_id)
        if key in self.records:
            return False
        self.records[key] = copy.deepcopy(progress)
        return True

    async def touch(self, user_id, course_id, lesson_id, now):
        record = self.records.get((user_id, course_id, lesson_id))
        if record is None:
            return False
        record.last_accessed_at = now
        record.updated_at = now
        return True

    async def add_time(self, user_id, course_id, lesson_id, delta_seconds, now):
        record = self.records.get((user_id, course_id, lesson_id))
        if record is None:
            return None
        if record.time_spent_seconds + delta_seconds > MAX_INT_COLUMN:
            raise StoreOverflowError("time_spent_seconds out of range")
        record.time_spent_seconds += delta_seconds
        record.last_accessed_at = now
        record.updated_at = now
        return copy.deepcopy(record)

    async def mark_completed(self, user_id, course_id, lesson_id, now, score=None):
        record = self.records.get((user_id, course_id, lesson_id))
        if record is None:
            return LessonOutcome.NOT_FOUND, None
        if record.completed:
            return LessonOutcome.ALREADY_COMPLETED, copy.deepcopy(record)
        record.completed = True
        record.attempts += 1
        if score is not None:
            record.score = score
        record.completed_at = now
        record.last_accessed_at = now
        record.updated_at = now
        return LessonOutcome.COMPLETED, copy.deepcopy(record)

    async def mark_incomplete(self, user_id, course_id, lesson_id, now):
        record = self.records.get((user_id, course_id, lesson_id))
        if record is None:
            return LessonOutcome.NOT_FOUND, None
        if not record.completed:
            return LessonOutcome.UNCHANGED, copy.deepcopy(record)
        record.completed = False
        record.completed_at = None
        record.updated_at = now
        return LessonOutcome.UPDATED, copy.deepcopy(record)

    async def delete_for_course(self, user_id, course_id):
        keys = [k for k in self.records if k[0] == user_id and k[1] == course_id]
        for key in keys:
            del self.records[key]
        return len(keys)


class InMemoryCourseStore:
    """CourseProgressStore double keyed by (user, course)."""

    def __init__(self) -> None:
        self.records: dict[tuple[UUID, UUID], CourseProgress] = {}

    async def get(self, user_id, course_id):
        return copy.deepcopy(self.records.get((user_id, course_id)))

    async def list_for_user(self, user_id):
        return [copy.deepcopy(r) for (uid, _), r in self.records.items() if uid == user_id]

    async def get_many(self, user_id, course_ids):
        return {
            cid: copy.deepcopy(self.records[(user_id, cid)])
            for cid in course_ids
            if (user_id, cid) in self.records
        }

    async def create_if_absent(self, progress):
        key = (progress.user_id, progress.course_id)
        if key in self.records:
            return False
        self.records[key] = copy.deepcopy(progress)
        return True

    async def update_aggregate(self, progress):
        key = (progress.user_id, progress.course_id)
        if key not in self.records:
            return False
        self.records[key] = copy.deepcopy(progress)
        return True

    async def touch(self, user_id, course_id, now: datetime):
        record = self.records.get((user_id, course_id))
        if record is None:
            return False
        record.last_accessed_at = now
        record.updated_at = now
        return True

    async def delete(self, user_id, course_id):
        return self.records.pop((user_id, course_id), None) is not None


class FakeCourseCatalog:
    """CourseCatalog double with fixed lesson counts."""

    def __init__(self, totals: dict[UUID, int] | None = None) -> None:
        self.totals = dict(totals or {})

    async def get_total_lessons(self, course_id: UUID) -> int | None:
        return self.totals.get(course_id)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def user_id() -> UUID:
    """Test user ID."""
    return uuid4()


@pytest.fixture
def course_id() -> UUID:
    """Test course ID."""
    return uuid4()


@pytest.fixture
def lesson_store() -> InMemoryLessonStore:
    return InMemoryLessonStore()


@pytest.fixture
def course_store() -> InMemoryCourseStore:
    return InMemoryCourseStore()


@pytest.fixture
def progress_service(lesson_store, course_store) -> ProgressService:
    """ProgressService over in-memory stores."""
    return ProgressService(lesson_store=lesson_store, course_store=course_store)


@pytest.fixture
def catalog(course_id) -> FakeCourseCatalog:
    """Catalog where the test course has 3 lessons."""
    return FakeCourseCatalog({course_id: 3})


@pytest.fixture
def client() -> TestClient:
    """Test client without lifespan (no database connection)."""
    return TestClient(app)


@pytest.fixture
def api_client(progress_service, catalog) -> Iterator[TestClient]:
    """Test client with the progress service and catalog wired on app.state."""
    app.state.progress_service = progress_service
    app.state.course_catalog = catalog
    try:
        yield TestClient(app)
    finally:
        del app.state.progress_service
        del app.state.course_catalog


@pytest.fixture
def auth_headers(user_id) -> dict[str, str]:
    """Bearer headers for the test user."""
    token = create_access_token({"sub": str(user_id), "email": "learner@example.com"})
    return {"Authorization": f"Bearer {token}"}
