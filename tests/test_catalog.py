"""Tests for the movie catalog."""

import asyncio
from datetime import date

import pytest
from conftest import make_movie, make_user

from movie_reviews.catalog import genre_names, parse_release_date
from movie_reviews.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)

DESCRIPTOR = {
    "id": 603,
    "title": "The Matrix",
    "overview": "A hacker learns the truth.",
    "release_date": "1999-03-30",
    "poster_path": "/matrix.jpg",
    "backdrop_path": "/matrix-bg.jpg",
    "vote_average": 8.2,
    "vote_count": 24000,
    "genres": [{"id": 28, "name": "Action"}, {"id": 878, "name": "Science Fiction"}],
    "runtime": 136,
}


class TestBrowse:
    """Public listing and detail."""

    @pytest.mark.asyncio
    async def test_default_sort_is_newest(self, services):
        first = await make_movie(services, "First")
        second = await make_movie(services, "Second")

        page = await services.catalog.list_movies()

        assert [m["id"] for m in page["items"]] == [second, first]
        assert page["has_next"] is False
        assert page["has_prev"] is False

    @pytest.mark.asyncio
    async def test_sort_by_title_and_pagination_flags(self, services):
        for title in ("Casablanca", "Alien", "Brazil"):
            await make_movie(services, title)

        first_page = await services.catalog.list_movies(sort="title", limit=2)
        second_page = await services.catalog.list_movies(sort="title", limit=2, page=2)

        assert [m["title"] for m in first_page["items"]] == ["Alien", "Brazil"]
        assert first_page["has_next"] is True
        assert [m["title"] for m in second_page["items"]] == ["Casablanca"]
        assert second_page["has_prev"] is True
        assert second_page["has_next"] is False

    @pytest.mark.asyncio
    async def test_unknown_sort_falls_back(self, services):
        first = await make_movie(services, "First")

        page = await services.catalog.list_movies(sort="bogus")

        assert [m["id"] for m in page["items"]] == [first]

    @pytest.mark.asyncio
    async def test_detail_has_recent_reviews(self, services):
        movie_id = await make_movie(services)
        for index in range(7):
            author = await make_user(services, f"user{index}")
            await services.reviews.submit_review(
                author.user_id, movie_id, 3, f"Review {index}", "Long enough content"
            )

        detail = await services.catalog.get_movie(movie_id)

        assert detail["movie"]["total_reviews"] == 7
        assert [r["title"] for r in detail["recent_reviews"]] == [
            "Review 6",
            "Review 5",
            "Review 4",
            "Review 3",
            "Review 2",
        ]

    @pytest.mark.asyncio
    async def test_detail_missing(self, services):
        with pytest.raises(NotFoundError):
            await services.catalog.get_movie("nope")


class TestAdminEdits:
    """Admin-only create/update/delete."""

    @pytest.mark.asyncio
    async def test_create_ignores_aggregate_fields(self, services):
        admin = await make_user(services, "admin", role="admin")

        movie = await services.catalog.create_movie(
            admin,
            {
                "title": "Alien",
                "overview": "In space no one can hear you scream.",
                "release_date": "1979-05-25",
                "average_rating": 5,
                "total_reviews": 1000,
            },
        )

        assert movie["release_date"] == date(1979, 5, 25)
        assert movie["average_rating"] == 0.0
        assert movie["total_reviews"] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("draft", "field"),
        [
            ({"overview": "o", "release_date": "1979-05-25"}, "title"),
            ({"title": "t", "overview": " ", "release_date": "1979-05-25"}, "overview"),
            ({"title": "t", "overview": "o"}, "release_date"),
            ({"title": "t", "overview": "o", "release_date": "someday"}, "release_date"),
        ],
    )
    async def test_create_validation(self, services, draft, field):
        admin = await make_user(services, "admin", role="admin")

        with pytest.raises(ValidationError) as exc_info:
            await services.catalog.create_movie(admin, draft)
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_non_admin_cannot_edit(self, services):
        user = await make_user(services, "alice")
        movie_id = await make_movie(services)

        with pytest.raises(ForbiddenError):
            await services.catalog.create_movie(
                user, {"title": "t", "overview": "o", "release_date": "2000-01-01"}
            )
        with pytest.raises(ForbiddenError):
            await services.catalog.update_movie(user, movie_id, {"title": "Hacked"})
        with pytest.raises(ForbiddenError):
            await services.catalog.delete_movie(user, movie_id)

        assert (await services.repository.get_movie(movie_id))["title"] == "The Matrix"

    @pytest.mark.asyncio
    async def test_update_ignores_aggregate(self, services):
        admin = await make_user(services, "admin", role="admin")
        movie_id = await make_movie(services)

        movie = await services.catalog.update_movie(
            admin, movie_id, {"title": "Matrix", "average_rating": 5.0}
        )

        assert movie["title"] == "Matrix"
        assert movie["average_rating"] == 0.0

    @pytest.mark.asyncio
    async def test_update_missing(self, services):
        admin = await make_user(services, "admin", role="admin")

        with pytest.raises(NotFoundError):
            await services.catalog.update_movie(admin, "nope", {"title": "x"})

    @pytest.mark.asyncio
    async def test_duplicate_tmdb_id(self, services):
        admin = await make_user(services, "admin", role="admin")
        await make_movie(services, "First", tmdb_id=1)

        with pytest.raises(ConflictError):
            await services.catalog.create_movie(
                admin,
                {"title": "Second", "overview": "o", "release_date": "2000-01-01", "tmdb_id": 1},
            )

    @pytest.mark.asyncio
    async def test_delete_cascades(self, services):
        admin = await make_user(services, "admin", role="admin")
        alice = await make_user(services, "alice")
        movie_id = await make_movie(services)
        review = await services.reviews.submit_review(
            alice.user_id, movie_id, 4, "T", "Long enough content"
        )

        await services.catalog.delete_movie(admin, movie_id)

        assert await services.repository.get_review(review["id"]) is None
        with pytest.raises(NotFoundError):
            await services.catalog.delete_movie(admin, movie_id)


class TestUpsert:
    """Import from provider descriptors."""

    @pytest.mark.asyncio
    async def test_creates_from_descriptor(self, services):
        movie = await services.catalog.upsert_from_descriptor(DESCRIPTOR)

        assert movie["tmdb_id"] == 603
        assert movie["genres"] == ["Action", "Science Fiction"]
        assert movie["release_date"] == date(1999, 3, 30)
        assert movie["runtime"] == 136
        assert movie["average_rating"] == 0.0

    @pytest.mark.asyncio
    async def test_idempotent(self, services):
        first = await services.catalog.upsert_from_descriptor(DESCRIPTOR)
        second = await services.catalog.upsert_from_descriptor({**DESCRIPTOR, "title": "Renamed"})

        assert second["id"] == first["id"]
        assert second["title"] == "The Matrix"
        assert await services.repository.count_movies() == 1

    @pytest.mark.asyncio
    async def test_concurrent_imports_resolve_to_one(self, services):
        results = await asyncio.gather(
            *(services.catalog.upsert_from_descriptor(DESCRIPTOR) for _ in range(3))
        )

        assert len({movie["id"] for movie in results}) == 1
        assert await services.repository.count_movies() == 1

    @pytest.mark.asyncio
    async def test_missing_overview_allowed(self, services):
        movie = await services.catalog.upsert_from_descriptor(
            {"id": 7, "title": "Untold", "overview": ""}
        )

        assert movie["overview"] == ""
        assert movie["release_date"] is None

    @pytest.mark.asyncio
    async def test_requires_integer_id(self, services):
        with pytest.raises(ValidationError):
            await services.catalog.upsert_from_descriptor({"title": "No id"})


def test_genre_names():
    assert genre_names([{"id": 1, "name": "Drama"}, "Crime", " ", None]) == ["Drama", "Crime"]
    assert genre_names(None) == []


def test_parse_release_date():
    assert parse_release_date("1999-03-30T00:00:00Z") == date(1999, 3, 30)
    assert parse_release_date("") is None
    with pytest.raises(ValidationError):
        parse_release_date("30/03/1999")
