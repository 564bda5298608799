"""FastAPI dependencies for authentication.

Resolves the learner from the Bearer access token. Handlers receive the
learner's id through the CurrentUser alias and never see raw credentials.
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from src.auth.schemas import AuthenticatedUser
from src.auth.security import decode_access_token
from src.core.context import set_user_id


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> AuthenticatedUser:
    """Get the authenticated learner from the access token.

    Raises:
        HTTPException(401): If token is missing, invalid, expired or its
            subject is not a user UUID
    """
    if not token:
        raise _unauthorized("Authentication required")

    try:
        payload = decode_access_token(token)
        user_id = UUID(str(payload["sub"]))
    except (JWTError, ValueError) as e:
        raise _unauthorized("Invalid or expired token") from e

    # Set user_id in context for logging
    set_user_id(user_id)

    return AuthenticatedUser(
        id=user_id,
        email=payload.get("email"),
        role=payload.get("role"),
    )


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
