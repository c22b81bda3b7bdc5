"""Admin back-office: listings, role changes, deletions and stats."""

from typing import Any

from loguru import logger

from .exceptions import ForbiddenError, NotFoundError, ValidationError
from .ratings import RatingAggregator, round_rating
from .storage import Repository
from .types import Identity, Page, Stats
from .validation import make_page, page_bounds, validate_role

# Public sort keys -> store columns; anything else means newest first
USER_SORTS = {
    "username": "username",
    "email": "email",
    "role": "role",
    "createdAt": "created_at",
    "created_at": "created_at",
}
MOVIE_SORTS = {
    "title": "title",
    "releaseDate": "release_date",
    "release_date": "release_date",
    "averageRating": "average_rating",
    "average_rating": "average_rating",
    "totalReviews": "total_reviews",
    "total_reviews": "total_reviews",
    "createdAt": "created_at",
    "created_at": "created_at",
}
REVIEW_SORTS = {
    "rating": "rating",
    "title": "title",
    "createdAt": "created_at",
    "created_at": "created_at",
}


def require_admin(identity: Identity) -> None:
    """Raise ForbiddenError unless the caller is an admin."""
    if not identity.is_admin:
        logger.warning(f"Admin operation denied for user {identity.user_id}")
        raise ForbiddenError("Access denied. Admin role required.")


def resolve_sort(sorts: dict[str, str], sort: str | None, order: str | None) -> tuple[str, bool]:
    """Map a requested sort onto a column; unknown keys fall back to newest first."""
    column = sorts.get(sort or "")
    if column is None:
        return "created_at", True
    return column, (order or "desc").lower() != "asc"


class AdminFacade:
    """Admin-only queries and mutations over users, movies and reviews.

    Every method re-checks the caller's role before touching the store, so a
    denied call leaves no trace.
    """

    def __init__(self, repository: Repository, aggregator: RatingAggregator) -> None:
        """Initialize with injected dependencies."""
        self.repository = repository
        self.aggregator = aggregator

    async def list_users(
        self,
        identity: Identity,
        search: str | None = None,
        role: str | None = None,
        page: int | None = None,
        limit: int | None = None,
        sort: str | None = None,
        order: str | None = None,
    ) -> Page:
        require_admin(identity)
        page, limit, offset = page_bounds(page, limit)
        column, descending = resolve_sort(USER_SORTS, sort, order)
        users, total = await self.repository.list_users(
            search=search or None,
            role=role or None,
            sort=column,
            descending=descending,
            offset=offset,
            limit=limit,
        )
        items = [{k: v for k, v in user.items() if k != "password_hash"} for user in users]
        return make_page(items, total, page, limit)

    async def list_movies(
        self,
        identity: Identity,
        search: str | None = None,
        genre: str | None = None,
        year: int | None = None,
        page: int | None = None,
        limit: int | None = None,
        sort: str | None = None,
        order: str | None = None,
    ) -> Page:
        require_admin(identity)
        page, limit, offset = page_bounds(page, limit)
        column, descending = resolve_sort(MOVIE_SORTS, sort, order)
        movies, total = await self.repository.list_movies(
            search=search or None,
            genre=genre or None,
            year=year,
            sort=column,
            descending=descending,
            offset=offset,
            limit=limit,
        )
        return make_page(movies, total, page, limit)

    async def list_reviews(
        self,
        identity: Identity,
        search: str | None = None,
        movie_id: str | None = None,
        author_id: str | None = None,
        page: int | None = None,
        limit: int | None = None,
        sort: str | None = None,
        order: str | None = None,
    ) -> Page:
        require_admin(identity)
        page, limit, offset = page_bounds(page, limit)
        column, descending = resolve_sort(REVIEW_SORTS, sort, order)
        reviews, total = await self.repository.list_reviews(
            search=search or None,
            movie_id=movie_id or None,
            author_id=author_id or None,
            sort=column,
            descending=descending,
            offset=offset,
            limit=limit,
        )
        return make_page(reviews, total, page, limit)

    async def set_user_role(
        self, identity: Identity, target_user_id: str, new_role: str
    ) -> dict[str, Any]:
        """Grant or revoke the admin role."""
        require_admin(identity)
        validate_role(new_role)

        user = await self.repository.update_user(target_user_id, {"role": new_role})
        if user is None:
            raise NotFoundError("User", target_user_id)

        logger.info(f"User {identity.user_id} set role of {target_user_id} to {new_role}")
        return {k: v for k, v in user.items() if k != "password_hash"}

    async def delete_user(self, identity: Identity, target_user_id: str) -> None:
        """Delete a user and everything they authored."""
        require_admin(identity)
        if target_user_id == identity.user_id:
            raise ValidationError("You cannot delete your own account", field="id")
        if await self.repository.get_user(target_user_id) is None:
            raise NotFoundError("User", target_user_id)

        _, movie_ids = await self.repository.delete_users([target_user_id])
        await self.aggregator.refresh_many(movie_ids)
        logger.info(f"User {identity.user_id} deleted user {target_user_id}")

    async def bulk_delete_users(self, identity: Identity, user_ids: list[str]) -> int:
        """Delete many users at once; the caller may not be among them."""
        require_admin(identity)
        if not user_ids:
            raise ValidationError("User IDs array is required", field="user_ids")
        if identity.user_id in user_ids:
            raise ValidationError("You cannot delete your own account", field="user_ids")

        deleted, movie_ids = await self.repository.delete_users(list(dict.fromkeys(user_ids)))
        await self.aggregator.refresh_many(movie_ids)
        logger.info(f"User {identity.user_id} bulk deleted {deleted} users")
        return deleted

    async def bulk_delete_movies(self, identity: Identity, movie_ids: list[str]) -> int:
        """Delete many movies with all of their reviews."""
        require_admin(identity)
        if not movie_ids:
            raise ValidationError("Movie IDs array is required", field="movie_ids")

        deleted = await self.repository.delete_movies(list(dict.fromkeys(movie_ids)))
        logger.info(f"User {identity.user_id} bulk deleted {deleted} movies")
        return deleted

    async def get_stats(self, identity: Identity) -> Stats:
        """Dashboard totals with the site-wide mean rating."""
        require_admin(identity)
        review_count, rating_sum = await self.repository.review_rating_totals()
        return {
            "total_movies": await self.repository.count_movies(),
            "total_users": await self.repository.count_users(),
            "total_reviews": review_count,
            "average_rating": round_rating(rating_sum, review_count),
        }
