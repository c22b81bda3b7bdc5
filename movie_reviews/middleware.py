"""Request tracking middleware and JWT authentication."""

import uuid
from datetime import UTC, datetime, timedelta

from fastapi import Header, Request
from jose import JWTError, jwt
from loguru import logger

from .config import settings
from .exceptions import AuthenticationError
from .types import Identity


async def add_request_id(request: Request, call_next):
    """Add request ID to context for tracking.

    Args:
        request: Incoming FastAPI request.
        call_next: Next middleware or handler in chain.

    Returns:
        Response with X-Request-ID header.

    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    with logger.contextualize(request_id=request_id):
        logger.debug(
            "Request started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.debug(
            "Request completed",
            status_code=response.status_code,
        )

        return response


def create_token(user_id: str) -> str:
    """Create a JWT token for a user.

    Only the user id is encoded; the role is looked up on every request.

    Args:
        user_id: The user identifier to encode in the token.

    Returns:
        Encoded JWT token as string.
    """
    issued_at = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "exp": issued_at + timedelta(minutes=settings.jwt_expiration_minutes),
        "iat": issued_at,
    }
    token: str = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token


def decode_token(authorization: str | None) -> str:
    """Extract and validate user_id from a Bearer authorization header.

    Raises:
        AuthenticationError: If the header is missing or the token is invalid or expired.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("No token, authorization denied")

    token = authorization.removeprefix("Bearer ")
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationError("Token is not valid") from e

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token is not valid")
    return user_id


async def get_current_identity(
    request: Request, authorization: str | None = Header(default=None)
) -> Identity:
    """Resolve the caller's canonical identity, role included, from the store."""
    user_id = decode_token(authorization)
    identity = await request.app.state.services.accounts.resolve_identity(user_id)
    request.state.identity = identity
    return identity

