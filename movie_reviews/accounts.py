"""User accounts: registration, credentials and profiles."""

import asyncio
import uuid
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from passlib.context import CryptContext

from .config import settings
from .exceptions import AuthenticationError, ForbiddenError, NotFoundError
from .storage import Repository
from .types import Identity, UserRecord
from .validation import (
    clean_bio,
    clean_username,
    normalize_email,
    validate_password,
)

pwd_context = CryptContext(
    schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.password_hash_rounds
)

RECENT_REVIEWS_LIMIT = 10


async def hash_password(password: str) -> str:
    """Hash a password off the event loop (bcrypt is deliberately slow)."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, pwd_context.hash, password)


async def verify_password(password: str, password_hash: str | None) -> bool:
    """Check a password; a missing hash still costs one verification."""
    loop = asyncio.get_event_loop()
    if not password_hash:
        await loop.run_in_executor(None, pwd_context.dummy_verify)
        return False
    return await loop.run_in_executor(None, pwd_context.verify, password, password_hash)


def public_profile(user: UserRecord) -> dict[str, Any]:
    """User fields safe to return to any caller."""
    return {key: value for key, value in user.items() if key != "password_hash"}


class AccountService:
    """Registration, authentication and profile management."""

    def __init__(self, repository: Repository) -> None:
        """Initialize with injected repository."""
        self.repository = repository

    async def register(self, username: str, email: str, password: str) -> dict[str, Any]:
        """Create a user with role ``user``; username and email must be unused."""
        username = clean_username(username)
        email = normalize_email(email)
        validate_password(password)

        now = datetime.now(UTC)
        user: UserRecord = {
            "id": uuid.uuid4().hex,
            "username": username,
            "email": email,
            "password_hash": await hash_password(password),
            "profile_picture": "",
            "bio": "",
            "role": "user",
            "created_at": now,
            "updated_at": now,
        }
        await self.repository.create_user(user)
        logger.info(f"Registered user {user['id']}")
        return public_profile(user)

    async def authenticate(self, email: str, password: str) -> dict[str, Any]:
        """Return the user owning these credentials.

        Raises:
            AuthenticationError: Unknown email or wrong password (indistinguishable).
        """
        user = await self.repository.get_user_by_email((email or "").strip().lower())
        if not await verify_password(password, user["password_hash"] if user else None):
            raise AuthenticationError("Invalid credentials")
        return public_profile(user)  # type: ignore[arg-type]

    async def resolve_identity(self, user_id: str) -> Identity:
        """Build the canonical identity from the stored user record."""
        user = await self.repository.get_user(user_id)
        if user is None:
            raise AuthenticationError("User not found, authorization denied")
        return Identity(user_id=user["id"], role=user["role"])

    async def get_user(self, user_id: str) -> dict[str, Any]:
        user = await self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return public_profile(user)

    async def get_profile(self, user_id: str) -> dict[str, Any]:
        """Public profile with relationship counts and recent reviews."""
        user = await self.get_user(user_id)

        recent_reviews, review_count = await self.repository.list_reviews(
            search=None,
            movie_id=None,
            author_id=user_id,
            sort="created_at",
            descending=True,
            offset=0,
            limit=RECENT_REVIEWS_LIMIT,
        )
        watchlist = await self.repository.list_watchlist(user_id)
        followers = await self.repository.list_followers(user_id)
        following = await self.repository.list_following(user_id)

        return {
            "user": user,
            "followers": followers,
            "following": following,
            "stats": {
                "review_count": review_count,
                "watchlist_count": len(watchlist),
                "followers_count": len(followers),
                "following_count": len(following),
            },
            "recent_reviews": recent_reviews,
        }

    async def update_profile(
        self, identity: Identity, user_id: str, patch: dict[str, Any]
    ) -> dict[str, Any]:
        """Update the caller's own username, email, bio or profile picture."""
        if identity.user_id != user_id:
            raise ForbiddenError("Access denied. You can only update your own profile.")

        fields: dict[str, Any] = {}
        if patch.get("username") is not None:
            fields["username"] = clean_username(patch["username"])
        if patch.get("email") is not None:
            fields["email"] = normalize_email(patch["email"])
        if patch.get("bio") is not None:
            fields["bio"] = clean_bio(patch["bio"])
        if patch.get("profile_picture") is not None:
            fields["profile_picture"] = patch["profile_picture"].strip()

        if not fields:
            return await self.get_user(user_id)

        user = await self.repository.update_user(user_id, fields)
        if user is None:
            raise NotFoundError("User", user_id)
        logger.info(f"Updated profile of user {user_id}: {sorted(fields)}")
        return public_profile(user)

    async def change_password(
        self, identity: Identity, current_password: str, new_password: str
    ) -> None:
        """Replace the caller's password after verifying the current one."""
        user = await self.repository.get_user(identity.user_id)
        if user is None:
            raise NotFoundError("User", identity.user_id)
        if not await verify_password(current_password, user["password_hash"]):
            raise AuthenticationError("Current password is incorrect")

        validate_password(new_password, field="new_password")
        await self.repository.update_user(
            identity.user_id, {"password_hash": await hash_password(new_password)}
        )
        logger.info(f"Changed password of user {identity.user_id}")
