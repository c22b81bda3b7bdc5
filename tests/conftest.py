"""Shared test fixtures."""

import os
from collections.abc import AsyncGenerator
from datetime import date

# Set test environment before the settings object is created
os.environ["MOVIES_DATABASE_URL"] = "sqlite+aiosqlite:///./data/test-movies.db"
os.environ["MOVIES_PASSWORD_HASH_ROUNDS"] = "4"
os.environ["MOVIES_RATE_LIMIT"] = "10000/minute"
os.environ["MOVIES_AUTH_RATE_LIMIT"] = "10000/minute"
os.environ["MOVIES_REVIEW_RATE_LIMIT"] = "10000/minute"
os.environ["MOVIES_LOG_LEVEL"] = "ERROR"  # Reduce log noise
os.environ.pop("MOVIES_ENV", None)
os.environ.pop("AWS_LAMBDA_FUNCTION_NAME", None)

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from movie_reviews import app  # noqa: E402
from movie_reviews.catalog import new_movie  # noqa: E402
from movie_reviews.factory import Services  # noqa: E402
from movie_reviews.middleware import create_token  # noqa: E402
from movie_reviews.storage import SQLRepository  # noqa: E402
from movie_reviews.types import Identity  # noqa: E402


@pytest_asyncio.fixture
async def repository(tmp_path) -> AsyncGenerator[SQLRepository, None]:
    """SQL repository on a throwaway SQLite file."""
    repo = SQLRepository(f"sqlite+aiosqlite:///{tmp_path / 'movies.db'}")
    await repo.startup()
    yield repo
    await repo.shutdown()


@pytest_asyncio.fixture
async def services(repository: SQLRepository) -> Services:
    return Services.from_repository(repository)


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    """Test client fixture - services injected via app.state."""
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.services = None


async def make_user(services: Services, username: str, role: str = "user") -> Identity:
    """Register a user (optionally promoted) and return its identity."""
    user = await services.accounts.register(username, f"{username}@example.com", "secret123")
    if role != "user":
        await services.repository.update_user(user["id"], {"role": role})
    return Identity(user_id=user["id"], role=role)


async def make_movie(services: Services, title: str = "The Matrix", **fields) -> str:
    """Insert a movie directly and return its id."""
    movie = new_movie(
        {
            "title": title,
            "overview": f"{title} overview",
            "release_date": fields.pop("release_date", date(1999, 3, 31)),
            **fields,
        }
    )
    await services.repository.create_movie(movie)
    return movie["id"]


def auth_headers(identity: Identity) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_token(identity.user_id)}"}
