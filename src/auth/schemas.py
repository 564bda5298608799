"""Pydantic schemas for the authenticated caller."""

from uuid import UUID

from pydantic import BaseModel


class AuthenticatedUser(BaseModel):
    """Identity extracted from a verified access token."""

    id: UUID
    email: str | None = None
    role: str | None = None
