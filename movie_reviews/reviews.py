"""Review ledger: the only writer of reviews and their votes."""

import uuid
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from .admin import require_admin
from .exceptions import ForbiddenError, NotFoundError, ValidationError
from .ratings import RatingAggregator
from .storage import Repository
from .types import Identity, Page, ReviewRecord, VoteCounts
from .validation import (
    clean_review_content,
    clean_review_title,
    make_page,
    page_bounds,
    validate_rating,
)

MOVIE_REVIEW_SORTS = {
    "newest": ("created_at", True),
    "oldest": ("created_at", False),
    "highest": ("rating", True),
    "lowest": ("rating", False),
}


class ReviewLedger:
    """Creates, edits, deletes and votes on reviews.

    Every mutation that can change a movie's ratings is followed by a full
    aggregate refresh of that movie once the store has committed it.
    """

    def __init__(self, repository: Repository, aggregator: RatingAggregator) -> None:
        """Initialize with injected dependencies."""
        self.repository = repository
        self.aggregator = aggregator

    async def submit_review(
        self,
        author_id: str,
        movie_id: str,
        rating: int,
        title: str,
        content: str,
    ) -> ReviewRecord:
        """Submit the author's single review of a movie.

        Args:
            author_id: Id of the reviewing user
            movie_id: Id of the reviewed movie
            rating: Whole star rating from 1 to 5
            title: Review headline
            content: Review body

        Returns:
            The stored review joined with its author and movie

        Raises:
            ValidationError: A field is out of bounds
            NotFoundError: The movie or the author does not exist
            ConflictError: The author already reviewed this movie
        """
        rating = validate_rating(rating)
        title = clean_review_title(title)
        content = clean_review_content(content)

        if await self.repository.get_movie(movie_id) is None:
            raise NotFoundError("Movie", movie_id)

        now = datetime.now(UTC)
        review: ReviewRecord = {
            "id": uuid.uuid4().hex,
            "author_id": author_id,
            "movie_id": movie_id,
            "rating": rating,
            "title": title,
            "content": content,
            "created_at": now,
            "updated_at": now,
        }
        # The store decides concurrent duplicates and concurrent movie deletes
        if not await self.repository.create_review(review):
            if await self.repository.get_movie(movie_id) is None:
                raise NotFoundError("Movie", movie_id)
            raise NotFoundError("User", author_id)
        await self.aggregator.refresh(movie_id)

        logger.info(f"User {author_id} reviewed movie {movie_id} ({rating} stars)")
        return await self.get_review(review["id"])

    async def edit_review(
        self, review_id: str, author_id: str, patch: dict[str, Any]
    ) -> ReviewRecord:
        """Apply the provided fields of ``patch`` to the author's own review."""
        review = await self.get_review(review_id)
        if review["author_id"] != author_id:
            raise ForbiddenError("Access denied. You can only edit your own reviews.")

        fields: dict[str, Any] = {}
        if patch.get("rating") is not None:
            fields["rating"] = validate_rating(patch["rating"])
        if patch.get("title") is not None:
            fields["title"] = clean_review_title(patch["title"])
        if patch.get("content") is not None:
            fields["content"] = clean_review_content(patch["content"])

        if not fields:
            return review

        updated = await self.repository.update_review(review_id, fields)
        if updated is None:
            raise NotFoundError("Review", review_id)
        await self.aggregator.refresh(review["movie_id"])

        logger.info(f"User {author_id} edited review {review_id}")
        return updated

    async def delete_review(self, review_id: str, requester: Identity) -> None:
        """Delete a review; allowed for its author and for admins."""
        review = await self.get_review(review_id)
        if review["author_id"] != requester.user_id and not requester.is_admin:
            raise ForbiddenError("Access denied. You can only delete your own reviews.")

        _, movie_ids = await self.repository.delete_reviews([review_id])
        await self.aggregator.refresh_many(movie_ids)
        logger.info(f"User {requester.user_id} deleted review {review_id}")

    async def toggle_like(self, review_id: str, user_id: str) -> VoteCounts:
        return await self._toggle_vote(review_id, user_id, "like")

    async def toggle_dislike(self, review_id: str, user_id: str) -> VoteCounts:
        return await self._toggle_vote(review_id, user_id, "dislike")

    async def bulk_delete(self, review_ids: list[str], requester: Identity) -> int:
        """Delete many reviews and refresh each affected movie once."""
        require_admin(requester)
        if not review_ids:
            raise ValidationError("Review IDs array is required", field="review_ids")

        deleted, movie_ids = await self.repository.delete_reviews(list(dict.fromkeys(review_ids)))
        await self.aggregator.refresh_many(movie_ids)

        logger.info(
            f"User {requester.user_id} bulk deleted {deleted} reviews "
            f"across {len(movie_ids)} movies"
        )
        return deleted

    async def get_review(self, review_id: str) -> ReviewRecord:
        review = await self.repository.get_review(review_id)
        if review is None:
            raise NotFoundError("Review", review_id)
        return review

    async def list_reviews(self, page: int | None = None, limit: int | None = None) -> Page:
        """All reviews, newest first."""
        page, limit, offset = page_bounds(page, limit)
        reviews, total = await self.repository.list_reviews(
            search=None,
            movie_id=None,
            author_id=None,
            sort="created_at",
            descending=True,
            offset=offset,
            limit=limit,
        )
        return make_page(reviews, total, page, limit)

    async def list_movie_reviews(
        self,
        movie_id: str,
        page: int | None = None,
        limit: int | None = None,
        sort: str | None = None,
    ) -> Page:
        """Reviews of one movie sorted by newest, oldest, highest or lowest."""
        if await self.repository.get_movie(movie_id) is None:
            raise NotFoundError("Movie", movie_id)

        page, limit, offset = page_bounds(page, limit)
        column, descending = MOVIE_REVIEW_SORTS.get(sort or "", MOVIE_REVIEW_SORTS["newest"])
        reviews, total = await self.repository.list_reviews(
            search=None,
            movie_id=movie_id,
            author_id=None,
            sort=column,
            descending=descending,
            offset=offset,
            limit=limit,
        )
        return make_page(reviews, total, page, limit)

    async def list_user_reviews(
        self, user_id: str, page: int | None = None, limit: int | None = None
    ) -> Page:
        if await self.repository.get_user(user_id) is None:
            raise NotFoundError("User", user_id)

        page, limit, offset = page_bounds(page, limit)
        reviews, total = await self.repository.list_reviews(
            search=None,
            movie_id=None,
            author_id=user_id,
            sort="created_at",
            descending=True,
            offset=offset,
            limit=limit,
        )
        return make_page(reviews, total, page, limit)

    async def _toggle_vote(self, review_id: str, user_id: str, vote: str) -> VoteCounts:
        """Flip ``vote`` for the user; a vote row replaces any opposite vote."""
        await self.get_review(review_id)

        current = await self.repository.get_vote(review_id, user_id)
        new_vote = None if current == vote else vote
        if not await self.repository.set_vote(review_id, user_id, new_vote):
            raise NotFoundError("Review", review_id)

        likes, dislikes = await self.repository.count_votes(review_id)
        logger.debug(f"User {user_id} {vote} on review {review_id}: active={new_vote is not None}")
        return {
            "likes_count": likes,
            "dislikes_count": dislikes,
            "active": new_vote is not None,
        }
