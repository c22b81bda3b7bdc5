"""Watchlists and follow edges between users."""

from datetime import UTC, datetime

from loguru import logger

from .exceptions import NotFoundError, ValidationError
from .storage import Repository
from .types import AuthorSummary, WatchlistEntry


class RelationshipManager:
    """Maintains user-to-movie (watchlist) and user-to-user (follow) links."""

    def __init__(self, repository: Repository) -> None:
        """Initialize with injected repository."""
        self.repository = repository

    async def add_to_watchlist(self, user_id: str, movie_id: str) -> WatchlistEntry:
        """Add a movie to the user's watchlist; a duplicate raises ConflictError."""
        await self._require_user(user_id)
        movie = await self.repository.get_movie(movie_id)
        if movie is None:
            raise NotFoundError("Movie", movie_id)

        date_added = datetime.now(UTC)
        if not await self.repository.add_watchlist_entry(user_id, movie_id, date_added):
            raise NotFoundError("Movie", movie_id)
        logger.info(f"User {user_id} added movie {movie_id} to watchlist")

        return {
            "movie_id": movie_id,
            "date_added": date_added,
            "movie": {
                "id": movie["id"],
                "title": movie["title"],
                "poster_path": movie["poster_path"],
                "average_rating": movie["average_rating"],
                "total_reviews": movie["total_reviews"],
                "release_date": movie["release_date"],
                "genres": movie["genres"],
                "runtime": movie["runtime"],
            },
        }

    async def remove_from_watchlist(self, user_id: str, movie_id: str) -> None:
        """Remove a movie from the watchlist; absent entries are ignored."""
        await self._require_user(user_id)
        await self.repository.remove_watchlist_entry(user_id, movie_id)
        logger.info(f"User {user_id} removed movie {movie_id} from watchlist")

    async def list_watchlist(self, user_id: str) -> list[WatchlistEntry]:
        await self._require_user(user_id)
        return await self.repository.list_watchlist(user_id)

    async def follow(self, follower_id: str, followee_id: str) -> None:
        """Make ``follower_id`` follow ``followee_id``.

        Raises:
            ValidationError: A user tried to follow itself
            NotFoundError: Either user does not exist
            ConflictError: The edge already exists
        """
        if follower_id == followee_id:
            raise ValidationError("You cannot follow yourself", field="id")
        await self._require_user(follower_id)
        await self._require_user(followee_id)

        if not await self.repository.add_follow(follower_id, followee_id):
            raise NotFoundError("User", followee_id)
        logger.info(f"User {follower_id} followed {followee_id}")

    async def unfollow(self, follower_id: str, followee_id: str) -> None:
        await self._require_user(follower_id)
        await self._require_user(followee_id)

        await self.repository.remove_follow(follower_id, followee_id)
        logger.info(f"User {follower_id} unfollowed {followee_id}")

    async def list_followers(self, user_id: str) -> list[AuthorSummary]:
        await self._require_user(user_id)
        return await self.repository.list_followers(user_id)

    async def list_following(self, user_id: str) -> list[AuthorSummary]:
        await self._require_user(user_id)
        return await self.repository.list_following(user_id)

    async def _require_user(self, user_id: str) -> None:
        if await self.repository.get_user(user_id) is None:
            raise NotFoundError("User", user_id)
