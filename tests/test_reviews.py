"""Tests for the review ledger."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from conftest import make_movie, make_user

from movie_reviews.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)

CONTENT = "A perfectly reasonable review body."


async def movie_aggregate(services, movie_id):
    movie = await services.repository.get_movie(movie_id)
    return movie["average_rating"], movie["total_reviews"]


class TestSubmitReview:
    """Review submission and its validation."""

    @pytest.mark.asyncio
    async def test_submit_returns_joined_review(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)

        review = await services.reviews.submit_review(
            author.user_id, movie_id, 4, "  Great  ", f"  {CONTENT}  "
        )

        assert review["rating"] == 4
        assert review["title"] == "Great"
        assert review["content"] == CONTENT
        assert review["author"] == {"id": author.user_id, "username": "alice", "profile_picture": ""}
        assert review["likes"] == []
        assert review["dislikes"] == []
        assert await movie_aggregate(services, movie_id) == (4.0, 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [0, 6, 4.5, "5", True, None])
    async def test_invalid_rating(self, services, rating):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)

        with pytest.raises(ValidationError) as exc_info:
            await services.reviews.submit_review(author.user_id, movie_id, rating, "T", CONTENT)
        assert exc_info.value.field == "rating"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("title", "content", "field"),
        [
            ("   ", CONTENT, "title"),
            ("x" * 101, CONTENT, "title"),
            ("Title", "too short", "content"),
            ("Title", "x" * 2001, "content"),
        ],
    )
    async def test_invalid_text_fields(self, services, title, content, field):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)

        with pytest.raises(ValidationError) as exc_info:
            await services.reviews.submit_review(author.user_id, movie_id, 3, title, content)
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_missing_movie(self, services):
        author = await make_user(services, "alice")

        with pytest.raises(NotFoundError):
            await services.reviews.submit_review(author.user_id, "nope", 3, "Title", CONTENT)

    @pytest.mark.asyncio
    async def test_second_review_conflicts(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)
        await services.reviews.submit_review(author.user_id, movie_id, 3, "First", CONTENT)

        with pytest.raises(ConflictError):
            await services.reviews.submit_review(author.user_id, movie_id, 5, "Second", CONTENT)

        assert await movie_aggregate(services, movie_id) == (3.0, 1)

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_yield_one_review(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)

        results = await asyncio.gather(
            services.reviews.submit_review(author.user_id, movie_id, 2, "One", CONTENT),
            services.reviews.submit_review(author.user_id, movie_id, 4, "Two", CONTENT),
            return_exceptions=True,
        )

        assert sum(isinstance(r, dict) for r in results) == 1
        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert len(await services.repository.get_movie_ratings(movie_id)) == 1


class TestDeletedParents:
    """Writes racing a delete of the movie, author or review they attach to."""

    @pytest.mark.asyncio
    async def test_movie_deleted_after_lookup(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)
        movie = await services.repository.get_movie(movie_id)
        await services.repository.delete_movies([movie_id])

        with patch.object(services.repository, "get_movie", AsyncMock(return_value=movie)):
            with pytest.raises(NotFoundError):
                await services.reviews.submit_review(author.user_id, movie_id, 4, "Late", CONTENT)

        assert await services.repository.get_movie_ratings(movie_id) == []
        assert await services.repository.review_rating_totals() == (0, 0)

    @pytest.mark.asyncio
    async def test_author_deleted_before_insert(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)
        await services.repository.delete_users([author.user_id])

        with pytest.raises(NotFoundError):
            await services.reviews.submit_review(author.user_id, movie_id, 4, "Ghost", CONTENT)

        assert await services.repository.review_rating_totals() == (0, 0)

    @pytest.mark.asyncio
    async def test_concurrent_movie_delete_leaves_no_orphans(self, services):
        admin = await make_user(services, "admin", role="admin")
        authors = [await make_user(services, name) for name in ("alice", "bobby", "carol")]
        movie_id = await make_movie(services)

        results = await asyncio.gather(
            *(
                services.reviews.submit_review(a.user_id, movie_id, 4, "Race", CONTENT)
                for a in authors
            ),
            services.catalog.delete_movie(admin, movie_id),
            return_exceptions=True,
        )

        assert results[-1] is None
        assert await services.repository.get_movie(movie_id) is None
        assert await services.repository.get_movie_ratings(movie_id) == []
        assert await services.repository.review_rating_totals() == (0, 0)

    @pytest.mark.asyncio
    async def test_vote_on_review_deleted_after_lookup(self, services):
        author = await make_user(services, "alice")
        voter = await make_user(services, "bobby")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 4, "T", CONTENT)
        await services.repository.delete_reviews([review["id"]])

        with patch.object(services.reviews, "get_review", AsyncMock(return_value=review)):
            with pytest.raises(NotFoundError):
                await services.reviews.toggle_like(review["id"], voter.user_id)

        assert await services.repository.get_vote(review["id"], voter.user_id) is None


class TestAggregateConsistency:
    """Aggregates follow every review mutation."""

    @pytest.mark.asyncio
    async def test_submit_then_delete(self, services):
        movie_id = await make_movie(services)
        reviews = {}
        for name, rating in (("alice", 5), ("bobby", 4), ("carol", 4)):
            author = await make_user(services, name)
            review = await services.reviews.submit_review(
                author.user_id, movie_id, rating, "Title", CONTENT
            )
            reviews[name] = (author, review["id"])

        assert await movie_aggregate(services, movie_id) == (4.3, 3)

        author, review_id = reviews["alice"]
        await services.reviews.delete_review(review_id, author)

        assert await movie_aggregate(services, movie_id) == (4.0, 2)

    @pytest.mark.asyncio
    async def test_delete_last_review_resets_aggregate(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)

        await services.reviews.delete_review(review["id"], author)

        assert await movie_aggregate(services, movie_id) == (0.0, 0)

    @pytest.mark.asyncio
    async def test_edit_rating_refreshes(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)

        updated = await services.reviews.edit_review(review["id"], author.user_id, {"rating": 2})

        assert updated["rating"] == 2
        assert updated["title"] == "T"
        assert await movie_aggregate(services, movie_id) == (2.0, 1)


class TestEditAndDelete:
    """Ownership rules."""

    @pytest.mark.asyncio
    async def test_edit_by_other_user_forbidden(self, services):
        author = await make_user(services, "alice")
        other = await make_user(services, "bobby")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)

        with pytest.raises(ForbiddenError):
            await services.reviews.edit_review(review["id"], other.user_id, {"rating": 1})

        assert (await services.reviews.get_review(review["id"]))["rating"] == 5

    @pytest.mark.asyncio
    async def test_edit_validates_provided_fields(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)

        with pytest.raises(ValidationError):
            await services.reviews.edit_review(review["id"], author.user_id, {"content": "short"})

    @pytest.mark.asyncio
    async def test_edit_missing_review(self, services):
        with pytest.raises(NotFoundError):
            await services.reviews.edit_review("nope", "someone", {"rating": 3})

    @pytest.mark.asyncio
    async def test_admin_can_delete_any_review(self, services):
        author = await make_user(services, "alice")
        admin = await make_user(services, "admin", role="admin")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)

        await services.reviews.delete_review(review["id"], admin)

        with pytest.raises(NotFoundError):
            await services.reviews.get_review(review["id"])

    @pytest.mark.asyncio
    async def test_other_user_cannot_delete(self, services):
        author = await make_user(services, "alice")
        other = await make_user(services, "bobby")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)

        with pytest.raises(ForbiddenError):
            await services.reviews.delete_review(review["id"], other)

    @pytest.mark.asyncio
    async def test_delete_survives_missing_movie(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)
        # Drop only the movie row so the review is orphaned
        await services.repository.database.execute(
            services.repository.movies.delete().where(services.repository.movies.c.id == movie_id)
        )

        await services.reviews.delete_review(review["id"], author)


class TestVotes:
    """Like/dislike toggles."""

    @pytest.mark.asyncio
    async def test_like_toggle(self, services):
        author = await make_user(services, "alice")
        voter = await make_user(services, "bobby")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)

        first = await services.reviews.toggle_like(review["id"], voter.user_id)
        second = await services.reviews.toggle_like(review["id"], voter.user_id)

        assert first == {"likes_count": 1, "dislikes_count": 0, "active": True}
        assert second == {"likes_count": 0, "dislikes_count": 0, "active": False}

    @pytest.mark.asyncio
    async def test_like_and_dislike_are_exclusive(self, services):
        author = await make_user(services, "alice")
        voter = await make_user(services, "bobby")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)

        await services.reviews.toggle_like(review["id"], voter.user_id)
        result = await services.reviews.toggle_dislike(review["id"], voter.user_id)

        assert result == {"likes_count": 0, "dislikes_count": 1, "active": True}
        stored = await services.reviews.get_review(review["id"])
        assert stored["likes"] == []
        assert stored["dislikes"] == [voter.user_id]

    @pytest.mark.asyncio
    async def test_vote_on_missing_review(self, services):
        with pytest.raises(NotFoundError):
            await services.reviews.toggle_like("nope", "someone")


class TestBulkDelete:
    """Admin bulk deletion."""

    @pytest.mark.asyncio
    async def test_requires_admin(self, services):
        author = await make_user(services, "alice")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(author.user_id, movie_id, 5, "T", CONTENT)

        with pytest.raises(ForbiddenError):
            await services.reviews.bulk_delete([review["id"]], author)

        assert await services.reviews.get_review(review["id"])

    @pytest.mark.asyncio
    async def test_empty_ids_rejected(self, services):
        admin = await make_user(services, "admin", role="admin")

        with pytest.raises(ValidationError):
            await services.reviews.bulk_delete([], admin)

    @pytest.mark.asyncio
    async def test_deletes_and_refreshes_each_movie(self, services):
        admin = await make_user(services, "admin", role="admin")
        first_movie = await make_movie(services, "First")
        second_movie = await make_movie(services, "Second")
        ids = []
        for name, rating in (("alice", 5), ("bobby", 1)):
            author = await make_user(services, name)
            for movie_id in (first_movie, second_movie):
                review = await services.reviews.submit_review(
                    author.user_id, movie_id, rating, "T", CONTENT
                )
                if name == "alice":
                    ids.append(review["id"])

        deleted = await services.reviews.bulk_delete(ids + ["unknown"], admin)

        assert deleted == 2
        assert await movie_aggregate(services, first_movie) == (1.0, 1)
        assert await movie_aggregate(services, second_movie) == (1.0, 1)


class TestListings:
    """Paginated review listings."""

    @pytest.mark.asyncio
    async def test_movie_reviews_sorting(self, services):
        movie_id = await make_movie(services)
        for name, rating in (("alice", 3), ("bobby", 5), ("carol", 1)):
            author = await make_user(services, name)
            await services.reviews.submit_review(author.user_id, movie_id, rating, "T", CONTENT)

        highest = await services.reviews.list_movie_reviews(movie_id, sort="highest")
        lowest = await services.reviews.list_movie_reviews(movie_id, sort="lowest")

        assert [r["rating"] for r in highest["items"]] == [5, 3, 1]
        assert [r["rating"] for r in lowest["items"]] == [1, 3, 5]
        assert highest["total_count"] == 3
        assert highest["total_pages"] == 1

    @pytest.mark.asyncio
    async def test_pagination(self, services):
        movie_id = await make_movie(services)
        for index in range(5):
            author = await make_user(services, f"user{index}")
            await services.reviews.submit_review(author.user_id, movie_id, 3, "T", CONTENT)

        page = await services.reviews.list_reviews(page=2, limit=2)

        assert len(page["items"]) == 2
        assert page["current_page"] == 2
        assert page["total_pages"] == 3
        assert page["total_count"] == 5

    @pytest.mark.asyncio
    async def test_user_reviews_missing_user(self, services):
        with pytest.raises(NotFoundError):
            await services.reviews.list_user_reviews("nope")
