"""Tests for watchlists and follows."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from conftest import make_movie, make_user

from movie_reviews.exceptions import ConflictError, NotFoundError, ValidationError


class TestWatchlist:
    """Watchlist add/remove/list."""

    @pytest.mark.asyncio
    async def test_add_returns_movie_summary(self, services):
        user = await make_user(services, "alice")
        movie_id = await make_movie(services, "Heat", genres=["Crime"], runtime=170)

        entry = await services.relationships.add_to_watchlist(user.user_id, movie_id)

        assert entry["movie_id"] == movie_id
        assert entry["movie"]["title"] == "Heat"
        assert entry["movie"]["genres"] == ["Crime"]
        assert entry["movie"]["runtime"] == 170

    @pytest.mark.asyncio
    async def test_duplicate_conflicts(self, services):
        user = await make_user(services, "alice")
        movie_id = await make_movie(services)
        await services.relationships.add_to_watchlist(user.user_id, movie_id)

        with pytest.raises(ConflictError):
            await services.relationships.add_to_watchlist(user.user_id, movie_id)

        assert len(await services.relationships.list_watchlist(user.user_id)) == 1

    @pytest.mark.asyncio
    async def test_missing_user_or_movie(self, services):
        user = await make_user(services, "alice")
        movie_id = await make_movie(services)

        with pytest.raises(NotFoundError):
            await services.relationships.add_to_watchlist(user.user_id, "nope")
        with pytest.raises(NotFoundError):
            await services.relationships.add_to_watchlist("nope", movie_id)
        with pytest.raises(NotFoundError):
            await services.relationships.list_watchlist("nope")

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, services):
        user = await make_user(services, "alice")
        movie_id = await make_movie(services)
        await services.relationships.add_to_watchlist(user.user_id, movie_id)

        await services.relationships.remove_from_watchlist(user.user_id, movie_id)
        await services.relationships.remove_from_watchlist(user.user_id, movie_id)

        assert await services.relationships.list_watchlist(user.user_id) == []

    @pytest.mark.asyncio
    async def test_newest_first(self, services):
        user = await make_user(services, "alice")
        first = await make_movie(services, "First")
        second = await make_movie(services, "Second")
        await services.relationships.add_to_watchlist(user.user_id, first)
        await services.relationships.add_to_watchlist(user.user_id, second)

        entries = await services.relationships.list_watchlist(user.user_id)

        assert [e["movie_id"] for e in entries] == [second, first]


class TestFollow:
    """Follow edges."""

    @pytest.mark.asyncio
    async def test_follow_is_asymmetric(self, services):
        alice = await make_user(services, "alice")
        bobby = await make_user(services, "bobby")

        await services.relationships.follow(alice.user_id, bobby.user_id)

        assert [u["id"] for u in await services.relationships.list_following(alice.user_id)] == [
            bobby.user_id
        ]
        assert [u["id"] for u in await services.relationships.list_followers(bobby.user_id)] == [
            alice.user_id
        ]
        assert await services.relationships.list_followers(alice.user_id) == []
        assert await services.relationships.list_following(bobby.user_id) == []

    @pytest.mark.asyncio
    async def test_self_follow_rejected(self, services):
        alice = await make_user(services, "alice")

        with pytest.raises(ValidationError):
            await services.relationships.follow(alice.user_id, alice.user_id)

    @pytest.mark.asyncio
    async def test_double_follow_conflicts(self, services):
        alice = await make_user(services, "alice")
        bobby = await make_user(services, "bobby")
        await services.relationships.follow(alice.user_id, bobby.user_id)

        with pytest.raises(ConflictError):
            await services.relationships.follow(alice.user_id, bobby.user_id)

    @pytest.mark.asyncio
    async def test_follow_missing_user(self, services):
        alice = await make_user(services, "alice")

        with pytest.raises(NotFoundError):
            await services.relationships.follow(alice.user_id, "nope")

    @pytest.mark.asyncio
    async def test_unfollow_removes_both_sides_and_is_idempotent(self, services):
        alice = await make_user(services, "alice")
        bobby = await make_user(services, "bobby")
        await services.relationships.follow(alice.user_id, bobby.user_id)

        await services.relationships.unfollow(alice.user_id, bobby.user_id)
        await services.relationships.unfollow(alice.user_id, bobby.user_id)

        assert await services.relationships.list_following(alice.user_id) == []
        assert await services.relationships.list_followers(bobby.user_id) == []


class TestDeletedParents:
    """Links racing a delete of either end."""

    @pytest.mark.asyncio
    async def test_watchlist_movie_deleted_after_lookup(self, services):
        user = await make_user(services, "alice")
        movie_id = await make_movie(services)
        movie = await services.repository.get_movie(movie_id)
        await services.repository.delete_movies([movie_id])

        with patch.object(services.repository, "get_movie", AsyncMock(return_value=movie)):
            with pytest.raises(NotFoundError):
                await services.relationships.add_to_watchlist(user.user_id, movie_id)

        assert await services.repository.count_movies() == 0
        watchlist = services.repository.watchlist
        assert await services.repository._count(watchlist) == 0

    @pytest.mark.asyncio
    async def test_concurrent_movie_delete_leaves_no_watchlist_rows(self, services):
        users = [await make_user(services, name) for name in ("alice", "bobby", "carol")]
        movie_id = await make_movie(services)

        await asyncio.gather(
            *(services.relationships.add_to_watchlist(u.user_id, movie_id) for u in users),
            services.repository.delete_movies([movie_id]),
            return_exceptions=True,
        )

        assert await services.repository.get_movie(movie_id) is None
        for user in users:
            assert await services.relationships.list_watchlist(user.user_id) == []
        assert await services.repository._count(services.repository.watchlist) == 0

    @pytest.mark.asyncio
    async def test_follow_target_deleted_after_lookup(self, services):
        alice = await make_user(services, "alice")
        bobby = await make_user(services, "bobby")
        bobby_record = await services.repository.get_user(bobby.user_id)
        await services.repository.delete_users([bobby.user_id])

        lookup = AsyncMock(return_value=bobby_record)
        with patch.object(services.repository, "get_user", lookup):
            with pytest.raises(NotFoundError):
                await services.relationships.follow(alice.user_id, bobby.user_id)

        assert await services.relationships.list_following(alice.user_id) == []
        assert await services.repository._count(services.repository.follows) == 0
