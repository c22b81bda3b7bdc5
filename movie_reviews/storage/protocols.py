"""Storage protocol definitions using typing.Protocol."""

from datetime import datetime
from typing import Any, Protocol

from ..types import (
    AuthorSummary,
    MovieRecord,
    ReviewRecord,
    UserRecord,
    WatchlistEntry,
)


class Repository(Protocol):
    """Repository protocol over the users, movies and reviews collections.

    Implementations enforce every uniqueness rule themselves (username,
    email, tmdb id, one review per author and movie, one watchlist entry per
    movie, one follow edge per pair) and raise ``ConflictError`` when one is
    violated. Connectivity failures surface as ``UnavailableError``.
    """

    # Users

    async def create_user(self, user: UserRecord) -> None:
        """Insert a new user."""
        ...

    async def get_user(self, user_id: str) -> UserRecord | None:
        """Get a user by id."""
        ...

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        """Get a user by normalized email."""
        ...

    async def update_user(self, user_id: str, fields: dict[str, Any]) -> UserRecord | None:
        """Apply fields to a user, returning the updated record."""
        ...

    async def list_users(
        self,
        search: str | None,
        role: str | None,
        sort: str,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[UserRecord], int]:
        """List users matching the filter along with the total match count."""
        ...

    async def delete_users(self, user_ids: list[str]) -> tuple[int, set[str]]:
        """Delete users with their reviews, votes, watchlist and follow edges.

        Returns the number of users deleted and the ids of movies whose
        reviews were removed.
        """
        ...

    async def count_users(self) -> int:
        """Count all users."""
        ...

    # Movies

    async def create_movie(self, movie: MovieRecord) -> None:
        """Insert a new movie."""
        ...

    async def get_movie(self, movie_id: str) -> MovieRecord | None:
        """Get a movie by id."""
        ...

    async def get_movie_by_tmdb_id(self, tmdb_id: int) -> MovieRecord | None:
        """Get a movie by its external catalog id."""
        ...

    async def update_movie(self, movie_id: str, fields: dict[str, Any]) -> MovieRecord | None:
        """Apply fields to a movie, returning the updated record."""
        ...

    async def set_movie_aggregate(
        self, movie_id: str, average_rating: float, total_reviews: int
    ) -> bool:
        """Write the derived rating fields. Returns False if the movie is gone."""
        ...

    async def list_movies(
        self,
        search: str | None,
        genre: str | None,
        year: int | None,
        sort: str,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[MovieRecord], int]:
        """List movies matching the filter along with the total match count."""
        ...

    async def delete_movies(self, movie_ids: list[str]) -> int:
        """Delete movies with their reviews, votes and watchlist entries."""
        ...

    async def count_movies(self) -> int:
        """Count all movies."""
        ...

    # Reviews

    async def create_review(self, review: ReviewRecord) -> bool:
        """Insert a new review; False when its movie or author no longer exists."""
        ...

    async def get_review(self, review_id: str) -> ReviewRecord | None:
        """Get a review joined with its author and movie summaries."""
        ...

    async def update_review(self, review_id: str, fields: dict[str, Any]) -> ReviewRecord | None:
        """Apply fields to a review, returning the updated joined record."""
        ...

    async def delete_reviews(self, review_ids: list[str]) -> tuple[int, set[str]]:
        """Delete reviews and their votes.

        Returns the number deleted and the ids of the movies they belonged to.
        """
        ...

    async def list_reviews(
        self,
        search: str | None,
        movie_id: str | None,
        author_id: str | None,
        sort: str,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[ReviewRecord], int]:
        """List joined reviews matching the filter along with the total count."""
        ...

    async def get_movie_ratings(self, movie_id: str) -> list[int]:
        """Get the rating of every current review of a movie."""
        ...

    async def review_rating_totals(self) -> tuple[int, int]:
        """Get the number of reviews and the sum of their ratings."""
        ...

    async def get_vote(self, review_id: str, user_id: str) -> str | None:
        """Get a user's vote on a review ('like', 'dislike' or None)."""
        ...

    async def set_vote(self, review_id: str, user_id: str, vote: str | None) -> bool:
        """Replace a user's vote on a review; None removes it.

        Returns False when the review or voter no longer exists.
        """
        ...

    async def count_votes(self, review_id: str) -> tuple[int, int]:
        """Count likes and dislikes of a review."""
        ...

    # Relationships

    async def add_watchlist_entry(self, user_id: str, movie_id: str, date_added: datetime) -> bool:
        """Add a movie to a user's watchlist; False when either side is gone."""
        ...

    async def remove_watchlist_entry(self, user_id: str, movie_id: str) -> None:
        """Remove a movie from a user's watchlist if present."""
        ...

    async def list_watchlist(self, user_id: str) -> list[WatchlistEntry]:
        """List watchlist entries joined with movie summaries, newest first."""
        ...

    async def add_follow(self, follower_id: str, followee_id: str) -> bool:
        """Record that follower follows followee (both sides at once).

        Returns False when either user no longer exists.
        """
        ...

    async def remove_follow(self, follower_id: str, followee_id: str) -> None:
        """Remove a follow edge if present (both sides at once)."""
        ...

    async def list_followers(self, user_id: str) -> list[AuthorSummary]:
        """List users following the given user."""
        ...

    async def list_following(self, user_id: str) -> list[AuthorSummary]:
        """List users the given user follows."""
        ...

    # Lifecycle

    async def health_check(self) -> bool:
        """Check if repository is healthy."""
        ...

    async def startup(self) -> None:
        """Initialize repository on startup."""
        ...

    async def shutdown(self) -> None:
        """Cleanup repository on shutdown."""
        ...
