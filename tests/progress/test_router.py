"""Tests for progress endpoints."""

from unittest.mock import AsyncMock
from uuid import uuid4

from fastapi.testclient import TestClient

from src.progress.service import ProgressStoreError


def _start(api_client, auth_headers, course_id, lesson_id="intro"):
    return api_client.post(
        f"/v1/lessons/{lesson_id}/start",
        json={"course_id": str(course_id)},
        headers=auth_headers,
    )


class TestAuthentication:
    """Every progress route requires a valid access token."""

    def test_missing_token(self, api_client: TestClient, course_id) -> None:
        response = api_client.post(
            "/v1/lessons/intro/start", json={"course_id": str(course_id)}
        )

        assert response.status_code == 401
        assert response.json()["message"] == "Authentication required"

    def test_invalid_token(self, api_client: TestClient) -> None:
        response = api_client.get(
            "/v1/progress", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"


class TestLessonEndpoints:
    """Tests for /v1/lessons routes."""

    def test_start_then_resume(
        self, api_client: TestClient, auth_headers, course_id
    ) -> None:
        first = _start(api_client, auth_headers, course_id)
        second = _start(api_client, auth_headers, course_id)

        assert first.status_code == 200
        assert first.json()["message"] == "Lesson started"
        assert second.json()["message"] == "Lesson resumed"
        data = second.json()["data"]
        assert data["id"] == first.json()["data"]["id"]
        assert data["lesson_id"] == "intro"
        assert data["completed"] is False
        assert data["time_spent_seconds"] == 0
        assert data["attempts"] == 0

    def test_start_malformed_course_id(
        self, api_client: TestClient, auth_headers, lesson_store
    ) -> None:
        response = api_client.post(
            "/v1/lessons/intro/start",
            json={"course_id": "not-a-uuid"},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["details"][0]["field"] == "body.course_id"
        assert lesson_store.records == {}

    def test_start_oversized_lesson_id(
        self, api_client: TestClient, auth_headers, course_id
    ) -> None:
        response = _start(api_client, auth_headers, course_id, lesson_id="x" * 256)

        assert response.status_code == 422

    def test_accrue_time(self, api_client: TestClient, auth_headers, course_id) -> None:
        _start(api_client, auth_headers, course_id)

        for seconds in (120, 180):
            response = api_client.put(
                "/v1/lessons/intro/time",
                json={"course_id": str(course_id), "time_spent_seconds": seconds},
                headers=auth_headers,
            )

        assert response.status_code == 200
        assert response.json()["data"]["time_spent_seconds"] == 300

    def test_accrue_negative_time(
        self, api_client: TestClient, auth_headers, course_id
    ) -> None:
        _start(api_client, auth_headers, course_id)

        response = api_client.put(
            "/v1/lessons/intro/time",
            json={"course_id": str(course_id), "time_spent_seconds": -5},
            headers=auth_headers,
        )

        assert response.status_code == 422

    def test_accrue_past_column_maximum(
        self, api_client: TestClient, auth_headers, course_id
    ) -> None:
        _start(api_client, auth_headers, course_id)
        payload = {"course_id": str(course_id), "time_spent_seconds": 2**31 - 1}
        api_client.put("/v1/lessons/intro/time", json=payload, headers=auth_headers)
        payload["time_spent_seconds"] = 1

        response = api_client.put(
            "/v1/lessons/intro/time", json=payload, headers=auth_headers
        )

        assert response.status_code == 422
        assert response.json()["message"] == (
            "time_spent_seconds total would exceed the maximum"
        )

    def test_accrue_without_start(
        self, api_client: TestClient, auth_headers, course_id
    ) -> None:
        response = api_client.put(
            "/v1/lessons/intro/time",
            json={"course_id": str(course_id), "time_spent_seconds": 5},
            headers=auth_headers,
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Lesson progress not found"

    def test_complete_and_already_completed(
        self, api_client: TestClient, auth_headers, course_id
    ) -> None:
        _start(api_client, auth_headers, course_id)
        payload = {"course_id": str(course_id), "score": 90}

        first = api_client.post(
            "/v1/lessons/intro/complete", json=payload, headers=auth_headers
        )
        second = api_client.post(
            "/v1/lessons/intro/complete", json=payload, headers=auth_headers
        )

        assert first.status_code == 200
        assert first.json()["message"] == "Lesson completed successfully"
        assert first.json()["data"]["score"] == 90
        assert first.json()["data"]["completed_at"] is not None
        assert first.json()["course_progress"]["progress_percentage"] == 33
        assert second.status_code == 200
        assert second.json()["success"] is True
        assert second.json()["message"] == "Lesson was already completed"
        assert second.json()["data"]["attempts"] == 1

    def test_complete_invalid_score(
        self, api_client: TestClient, auth_headers, course_id
    ) -> None:
        _start(api_client, auth_headers, course_id)

        response = api_client.post(
            "/v1/lessons/intro/complete",
            json={"course_id": str(course_id), "score": 150},
            headers=auth_headers,
        )

        assert response.status_code == 422

    def test_complete_unknown_course(
        self, api_client: TestClient, auth_headers
    ) -> None:
        response = api_client.post(
            "/v1/lessons/intro/complete",
            json={"course_id": str(uuid4())},
            headers=auth_headers,
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Course not found"

    def test_uncomplete(self, api_client: TestClient, auth_headers, course_id) -> None:
        _start(api_client, auth_headers, course_id)
        api_client.post(
            "/v1/lessons/intro/complete",
            json={"course_id": str(course_id)},
            headers=auth_headers,
        )

        response = api_client.post(
            "/v1/lessons/intro/uncomplete",
            json={"course_id": str(course_id)},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["data"]["completed"] is False
        assert response.json()["course_progress"]["progress_percentage"] == 0

    def test_uncomplete_never_started(
        self, api_client: TestClient, auth_headers, course_id
    ) -> None:
        response = api_client.post(
            "/v1/lessons/intro/uncomplete",
            json={"course_id": str(course_id)},
            headers=auth_headers,
        )

        assert response.status_code == 404


class TestCourseEndpoints:
    """Tests for /v1/courses routes."""

    def test_overview(self, api_client: TestClient, auth_headers, course_id) -> None:
        _start(api_client, auth_headers, course_id, "a")
        _start(api_client, auth_headers, course_id, "b")
        api_client.post(
            "/v1/lessons/a/complete",
            json={"course_id": str(course_id), "score": 80},
            headers=auth_headers,
        )

        response = api_client.get(
            f"/v1/courses/{course_id}/progress", headers=auth_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert [lp["lesson_id"] for lp in body["lessons"]] == ["a", "b"]
        assert body["statistics"]["total_lessons"] == 3
        assert body["statistics"]["completed_lessons"] == 1
        assert body["statistics"]["completion_rate"] == 33
        assert body["statistics"]["average_score"] == 80
        assert body["statistics"]["current_lesson"]["lesson_id"] == "b"

    def test_touch_access(self, api_client: TestClient, auth_headers, course_id) -> None:
        response = api_client.post(
            f"/v1/courses/{course_id}/progress/access", headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["progress_percentage"] == 0

    def test_reset(self, api_client: TestClient, auth_headers, course_id) -> None:
        _start(api_client, auth_headers, course_id)

        first = api_client.delete(
            f"/v1/courses/{course_id}/progress", headers=auth_headers
        )
        second = api_client.delete(
            f"/v1/courses/{course_id}/progress", headers=auth_headers
        )

        assert first.status_code == 200
        assert first.json() == {"message": "Course progress reset", "success": True}
        assert second.status_code == 404


class TestUserProgressEndpoints:
    """Tests for /v1/progress routes."""

    def test_list_and_stats(
        self, api_client: TestClient, auth_headers, course_id
    ) -> None:
        _start(api_client, auth_headers, course_id)
        api_client.post(
            "/v1/lessons/intro/complete",
            json={"course_id": str(course_id)},
            headers=auth_headers,
        )

        listing = api_client.get("/v1/progress", headers=auth_headers)
        stats = api_client.get("/v1/progress/stats", headers=auth_headers)

        assert listing.json()["total"] == 1
        assert listing.json()["items"][0]["completed_lessons"] == ["intro"]
        assert stats.json() == {
            "total_courses": 1,
            "completed_courses": 0,
            "in_progress_courses": 1,
            "total_lessons_completed": 1,
            "average_progress": 33.0,
        }

    def test_bulk(self, api_client: TestClient, auth_headers, course_id) -> None:
        _start(api_client, auth_headers, course_id)
        api_client.post(
            "/v1/lessons/intro/complete",
            json={"course_id": str(course_id)},
            headers=auth_headers,
        )

        response = api_client.post(
            "/v1/progress/bulk",
            json={"course_ids": [str(course_id), str(uuid4())]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert list(response.json()["progress"]) == [str(course_id)]

    def test_bulk_too_many_courses(self, api_client: TestClient, auth_headers) -> None:
        response = api_client.post(
            "/v1/progress/bulk",
            json={"course_ids": [str(uuid4()) for _ in range(101)]},
            headers=auth_headers,
        )

        assert response.status_code == 422


class TestErrorMapping:
    """Store failures never leak driver detail."""

    def test_store_failure_is_503(
        self, api_client: TestClient, auth_headers, progress_service, course_id
    ) -> None:
        progress_service.start_or_resume_lesson = AsyncMock(
            side_effect=ProgressStoreError()
        )

        response = _start(api_client, auth_headers, course_id)

        assert response.status_code == 503
        assert "request_id" in response.json()

    def test_service_unavailable_without_database(
        self, client: TestClient, auth_headers, course_id
    ) -> None:
        """Without a database the service is not wired."""
        response = client.post(
            "/v1/lessons/intro/start",
            json={"course_id": str(course_id)},
            headers=auth_headers,
        )

        assert response.status_code == 503
