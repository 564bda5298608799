"""Tests for progress entities and percentage rounding."""

from datetime import datetime
from types import SimpleNamespace
from uuid import uuid4

import pytest

from src.progress.models import (
    CourseProgress,
    LessonProgress,
    calculate_progress_percentage,
    ensure_utc_aware,
)


class TestProgressPercentage:
    """Tests for calculate_progress_percentage."""

    @pytest.mark.parametrize(
        "completed,total,expected",
        [
            (0, 3, 0),
            (1, 3, 33),
            (2, 3, 67),
            (3, 3, 100),
            (1, 8, 13),  # 12.5 rounds half up
            (1, 200, 1),  # 0.5 rounds half up
            (0, 0, 0),
            (5, 0, 0),
            (4, 3, 100),  # catalog shrank below completed count
        ],
    )
    def test_rounding(self, completed: int, total: int, expected: int) -> None:
        assert calculate_progress_percentage(completed, total) == expected


class TestEntities:
    """Tests for entity construction from rows."""

    def test_lesson_defaults(self) -> None:
        progress = LessonProgress(user_id=uuid4(), course_id=uuid4(), lesson_id="a")

        assert progress.completed is False
        assert progress.time_spent_seconds == 0
        assert progress.attempts == 0
        assert progress.score is None
        assert progress.completed_at is None
        assert progress.first_started_at == progress.last_accessed_at

    def test_lesson_from_row_with_nulls(self) -> None:
        """Unset counters read back as zero."""
        row = SimpleNamespace(
            user_id=uuid4(),
            course_id=uuid4(),
            lesson_id="a",
            id=uuid4(),
            completed=None,
            time_spent_seconds=None,
            attempts=None,
            score=None,
            first_started_at=datetime(2026, 1, 1),
            last_accessed_at=None,
            completed_at=None,
            created_at=None,
            updated_at=None,
        )

        progress = LessonProgress.from_row(row)

        assert progress.completed is False
        assert progress.time_spent_seconds == 0
        assert progress.attempts == 0
        assert progress.first_started_at.tzinfo is not None

    def test_course_is_completed(self) -> None:
        record = CourseProgress(
            user_id=uuid4(), course_id=uuid4(), progress_percentage=100
        )

        assert record.is_completed is True
        assert record.to_dict()["completed_lessons"] == []

    def test_ensure_utc_aware_none(self) -> None:
        assert ensure_utc_aware(None) is None
