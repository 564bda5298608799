"""FastAPI dependencies for the catalog lookup."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status

from .service import CourseCatalog


async def get_course_catalog(request: Request) -> CourseCatalog:
    """Get the catalog lookup from app state."""
    catalog = getattr(request.app.state, "course_catalog", None)
    if catalog is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Course catalog not available",
        )
    return catalog


CourseCatalogDep = Annotated[CourseCatalog, Depends(get_course_catalog)]


async def require_total_lessons(catalog: CourseCatalog, course_id: UUID) -> int:
    """Resolve the lesson count for a course, 404 when the course is unknown."""
    total = await catalog.get_total_lessons(course_id)
    if total is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Course not found",
        )
    return total
