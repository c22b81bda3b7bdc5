"""SQL repository implementation (SQLite locally, PostgreSQL in docker)."""

import sqlite3
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from typing import Any

import databases
import sqlalchemy as sa
from loguru import logger
from sqlalchemy.schema import CreateIndex, CreateTable

from ..exceptions import ConflictError, UnavailableError
from ..retry import with_connection_retry
from ..types import (
    AuthorSummary,
    MovieRecord,
    MovieSummary,
    ReviewRecord,
    UserRecord,
    WatchlistEntry,
)

_UNREACHABLE_ERRORS = (ConnectionError, TimeoutError, OSError, sqlite3.OperationalError)


def _is_unique_violation(exc: Exception) -> bool:
    """Check whether a driver error is a uniqueness violation."""
    if isinstance(exc, sqlite3.IntegrityError):
        return True
    # asyncpg raises UniqueViolationError
    return exc.__class__.__name__ in {"UniqueViolationError", "IntegrityError"}


def _icontains(column: Any, term: str) -> Any:
    """Case-insensitive substring match with LIKE wildcards in ``term`` escaped.

    The pattern is bound as a parameter so no literal ``%`` reaches the SQL
    string the databases SQLite backend formats.
    """
    escaped = term.lower().replace("/", "//").replace("%", "/%").replace("_", "/_")
    return sa.func.lower(column).like(f"%{escaped}%", escape="/")


class SQLRepository:
    """SQLite/PostgreSQL repository using databases."""

    def __init__(self, database_url: str):
        """Initialize SQL repository.

        Args:
            database_url: Database connection URL.
        """
        self.database = databases.Database(database_url)
        self.metadata = sa.MetaData()

        self.users = sa.Table(
            "users",
            self.metadata,
            sa.Column("id", sa.String, primary_key=True),
            sa.Column("username", sa.String(30), nullable=False, unique=True),
            sa.Column("email", sa.String, nullable=False, unique=True),
            sa.Column("password_hash", sa.String, nullable=False),
            sa.Column("profile_picture", sa.String, nullable=False, default=""),
            sa.Column("bio", sa.String(500), nullable=False, default=""),
            sa.Column("role", sa.String, nullable=False, default="user"),
            sa.Column("created_at", sa.DateTime, nullable=False),
            sa.Column("updated_at", sa.DateTime, nullable=False),
        )

        self.movies = sa.Table(
            "movies",
            self.metadata,
            sa.Column("id", sa.String, primary_key=True),
            sa.Column("tmdb_id", sa.Integer, nullable=True, unique=True),
            sa.Column("title", sa.String, nullable=False),
            sa.Column("overview", sa.Text, nullable=False),
            sa.Column("release_date", sa.Date, nullable=True),
            sa.Column("runtime", sa.Integer, nullable=False, default=0),
            sa.Column("genres", sa.JSON, nullable=False, default=list),
            sa.Column("director", sa.String, nullable=False, default=""),
            sa.Column("poster_path", sa.String, nullable=False, default=""),
            sa.Column("backdrop_path", sa.String, nullable=False, default=""),
            sa.Column("vote_average", sa.Float, nullable=False, default=0),
            sa.Column("vote_count", sa.Integer, nullable=False, default=0),
            sa.Column("average_rating", sa.Float, nullable=False, default=0),
            sa.Column("total_reviews", sa.Integer, nullable=False, default=0),
            sa.Column("created_at", sa.DateTime, nullable=False),
            sa.Column("updated_at", sa.DateTime, nullable=False),
        )

        # One row per genre name so filters match whole names, not the JSON text
        self.movie_genres = sa.Table(
            "movie_genres",
            self.metadata,
            sa.Column("movie_id", sa.String, sa.ForeignKey("movies.id"), primary_key=True),
            sa.Column("name", sa.String, primary_key=True),
        )

        self.reviews = sa.Table(
            "reviews",
            self.metadata,
            sa.Column("id", sa.String, primary_key=True),
            sa.Column("author_id", sa.String, sa.ForeignKey("users.id"), nullable=False),
            sa.Column("movie_id", sa.String, sa.ForeignKey("movies.id"), nullable=False),
            sa.Column("rating", sa.Integer, nullable=False),
            sa.Column("title", sa.String(100), nullable=False),
            sa.Column("content", sa.Text, nullable=False),
            sa.Column("created_at", sa.DateTime, nullable=False),
            sa.Column("updated_at", sa.DateTime, nullable=False),
            sa.UniqueConstraint("author_id", "movie_id", name="uq_review_author_movie"),
            sa.Index("idx_reviews_movie_id", "movie_id"),
        )

        # One row per (review, user): a user can never both like and dislike
        self.review_votes = sa.Table(
            "review_votes",
            self.metadata,
            sa.Column("review_id", sa.String, sa.ForeignKey("reviews.id"), primary_key=True),
            sa.Column("user_id", sa.String, sa.ForeignKey("users.id"), primary_key=True),
            sa.Column("vote", sa.String, nullable=False),
        )

        self.watchlist = sa.Table(
            "watchlist",
            self.metadata,
            sa.Column("user_id", sa.String, sa.ForeignKey("users.id"), primary_key=True),
            sa.Column("movie_id", sa.String, sa.ForeignKey("movies.id"), primary_key=True),
            sa.Column("date_added", sa.DateTime, nullable=False),
        )

        # A single edge row is both the follower's "following" entry and the
        # followee's "followers" entry
        self.follows = sa.Table(
            "follows",
            self.metadata,
            sa.Column("follower_id", sa.String, sa.ForeignKey("users.id"), primary_key=True),
            sa.Column("followee_id", sa.String, sa.ForeignKey("users.id"), primary_key=True),
            sa.Column("created_at", sa.DateTime, nullable=False),
            sa.Index("idx_follows_followee_id", "followee_id"),
        )

    @with_connection_retry("sql")
    async def startup(self) -> None:
        """Initialize database connection and create tables."""
        await self.database.connect()
        await self._create_tables()
        logger.info("SQL repository ready")

    async def shutdown(self) -> None:
        """Close database connection."""
        await self.database.disconnect()

    async def health_check(self) -> bool:
        """Check if database is accessible.

        Returns:
            True if database is healthy, False otherwise.
        """
        try:
            await self.database.execute("SELECT 1")
            return True
        except _UNREACHABLE_ERRORS:
            logger.exception("Database health check failed")
            return False

    # Users

    async def create_user(self, user: UserRecord) -> None:
        async with self._guard("create_user"):
            try:
                await self.database.execute(self.users.insert().values(**user))
            except Exception as e:
                if _is_unique_violation(e):
                    raise ConflictError(self._user_conflict_message(e)) from e
                raise

    async def get_user(self, user_id: str) -> UserRecord | None:
        query = self.users.select().where(self.users.c.id == user_id)
        async with self._guard("get_user"):
            row = await self.database.fetch_one(query)
        return self._record(self.users, row) if row else None  # type: ignore[return-value]

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        query = self.users.select().where(self.users.c.email == email)
        async with self._guard("get_user_by_email"):
            row = await self.database.fetch_one(query)
        return self._record(self.users, row) if row else None  # type: ignore[return-value]

    async def update_user(self, user_id: str, fields: dict[str, Any]) -> UserRecord | None:
        query = (
            self.users.update()
            .where(self.users.c.id == user_id)
            .values(**fields, updated_at=datetime.now(UTC))
        )
        async with self._guard("update_user"):
            try:
                await self.database.execute(query)
            except Exception as e:
                if _is_unique_violation(e):
                    raise ConflictError(self._user_conflict_message(e)) from e
                raise
        return await self.get_user(user_id)

    async def list_users(
        self,
        search: str | None,
        role: str | None,
        sort: str,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[UserRecord], int]:
        conditions = []
        if search:
            conditions.append(
                sa.or_(
                    _icontains(self.users.c.username, search),
                    _icontains(self.users.c.email, search),
                )
            )
        if role:
            conditions.append(self.users.c.role == role)

        rows, total = await self._page(self.users, conditions, sort, descending, offset, limit)
        return [self._record(self.users, row) for row in rows], total  # type: ignore[misc]

    async def delete_users(self, user_ids: list[str]) -> tuple[int, set[str]]:
        u, r, v = self.users, self.reviews, self.review_votes
        authored = sa.select(r.c.id).where(r.c.author_id.in_(user_ids))
        async with self._guard("delete_users"), self.database.transaction():
            # The first statement writes so the transaction holds the write
            # lock before it reads anything
            await self.database.execute(
                v.delete().where(sa.or_(v.c.review_id.in_(authored), v.c.user_id.in_(user_ids)))
            )
            existing = await self._ids(sa.select(u.c.id).where(u.c.id.in_(user_ids)))
            if not existing:
                return 0, set()

            review_rows = await self.database.fetch_all(
                sa.select(r.c.id, r.c.movie_id).where(r.c.author_id.in_(existing))
            )
            review_ids = [row["id"] for row in review_rows]
            affected_movies = {row["movie_id"] for row in review_rows}

            await self.database.execute(r.delete().where(r.c.author_id.in_(existing)))
            await self.database.execute(
                self.watchlist.delete().where(self.watchlist.c.user_id.in_(existing))
            )
            await self.database.execute(
                self.follows.delete().where(
                    sa.or_(
                        self.follows.c.follower_id.in_(existing),
                        self.follows.c.followee_id.in_(existing),
                    )
                )
            )
            await self.database.execute(u.delete().where(u.c.id.in_(existing)))

        logger.info(f"Deleted {len(existing)} users and {len(review_ids)} of their reviews")
        return len(existing), affected_movies

    async def count_users(self) -> int:
        return await self._count(self.users)

    # Movies

    async def create_movie(self, movie: MovieRecord) -> None:
        async with self._guard("create_movie"):
            try:
                async with self.database.transaction():
                    await self.database.execute(self.movies.insert().values(**movie))
                    await self._replace_genres(movie["id"], movie.get("genres") or [])
            except Exception as e:
                if _is_unique_violation(e):
                    raise ConflictError(
                        f"Movie with tmdb id {movie.get('tmdb_id')} already exists"
                    ) from e
                raise

    async def get_movie(self, movie_id: str) -> MovieRecord | None:
        query = self.movies.select().where(self.movies.c.id == movie_id)
        async with self._guard("get_movie"):
            row = await self.database.fetch_one(query)
        return self._record(self.movies, row) if row else None  # type: ignore[return-value]

    async def get_movie_by_tmdb_id(self, tmdb_id: int) -> MovieRecord | None:
        query = self.movies.select().where(self.movies.c.tmdb_id == tmdb_id)
        async with self._guard("get_movie_by_tmdb_id"):
            row = await self.database.fetch_one(query)
        return self._record(self.movies, row) if row else None  # type: ignore[return-value]

    async def update_movie(self, movie_id: str, fields: dict[str, Any]) -> MovieRecord | None:
        query = (
            self.movies.update()
            .where(self.movies.c.id == movie_id)
            .values(**fields, updated_at=datetime.now(UTC))
        )
        async with self._guard("update_movie"):
            try:
                async with self.database.transaction():
                    await self.database.execute(query)
                    if "genres" in fields:
                        await self._replace_genres(movie_id, fields["genres"] or [])
            except Exception as e:
                if _is_unique_violation(e):
                    raise ConflictError(
                        f"Movie with tmdb id {fields.get('tmdb_id')} already exists"
                    ) from e
                raise
        return await self.get_movie(movie_id)

    async def set_movie_aggregate(
        self, movie_id: str, average_rating: float, total_reviews: int
    ) -> bool:
        if await self.get_movie(movie_id) is None:
            return False
        query = (
            self.movies.update()
            .where(self.movies.c.id == movie_id)
            .values(average_rating=average_rating, total_reviews=total_reviews)
        )
        async with self._guard("set_movie_aggregate"):
            await self.database.execute(query)
        return True

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
        m = self.movies
        conditions = []
        if search:
            conditions.append(_icontains(m.c.title, search))
        if genre:
            g = self.movie_genres
            tagged = sa.select(g.c.movie_id).where(_icontains(g.c.name, genre))
            conditions.append(m.c.id.in_(tagged))
        if year:
            conditions.append(m.c.release_date >= date(year, 1, 1))
            conditions.append(m.c.release_date < date(year + 1, 1, 1))

        rows, total = await self._page(m, conditions, sort, descending, offset, limit)
        return [self._record(m, row) for row in rows], total  # type: ignore[misc]

    async def delete_movies(self, movie_ids: list[str]) -> int:
        m, r, v = self.movies, self.reviews, self.review_votes
        attached = sa.select(r.c.id).where(r.c.movie_id.in_(movie_ids))
        async with self._guard("delete_movies"), self.database.transaction():
            # Write first: see delete_users
            await self.database.execute(v.delete().where(v.c.review_id.in_(attached)))
            existing = await self._ids(sa.select(m.c.id).where(m.c.id.in_(movie_ids)))
            if not existing:
                return 0

            review_ids = await self._ids(sa.select(r.c.id).where(r.c.movie_id.in_(existing)))
            await self.database.execute(r.delete().where(r.c.movie_id.in_(existing)))
            await self.database.execute(
                self.watchlist.delete().where(self.watchlist.c.movie_id.in_(existing))
            )
            await self.database.execute(
                self.movie_genres.delete().where(self.movie_genres.c.movie_id.in_(existing))
            )
            await self.database.execute(m.delete().where(m.c.id.in_(existing)))

        logger.info(f"Deleted {len(existing)} movies and {len(review_ids)} of their reviews")
        return len(existing)

    async def count_movies(self) -> int:
        return await self._count(self.movies)

    # Reviews

    async def create_review(self, review: ReviewRecord) -> bool:
        r = self.reviews
        query = self._insert_if_present(
            r,
            {k: v for k, v in review.items() if k in r.c},
            (self.movies.c.id, review["movie_id"]),
            (self.users.c.id, review["author_id"]),
        )
        async with self._guard("create_review"):
            try:
                await self.database.execute(query)
            except Exception as e:
                if _is_unique_violation(e):
                    raise ConflictError("You have already reviewed this movie") from e
                raise
        return await self._count(r, [r.c.id == review["id"]]) > 0

    async def get_review(self, review_id: str) -> ReviewRecord | None:
        query = self._review_select().where(self.reviews.c.id == review_id)
        async with self._guard("get_review"):
            row = await self.database.fetch_one(query)
            if row is None:
                return None
            return (await self._joined_reviews([row]))[0]

    async def update_review(self, review_id: str, fields: dict[str, Any]) -> ReviewRecord | None:
        query = (
            self.reviews.update()
            .where(self.reviews.c.id == review_id)
            .values(**fields, updated_at=datetime.now(UTC))
        )
        async with self._guard("update_review"):
            await self.database.execute(query)
        return await self.get_review(review_id)

    async def delete_reviews(self, review_ids: list[str]) -> tuple[int, set[str]]:
        r, v = self.reviews, self.review_votes
        async with self._guard("delete_reviews"), self.database.transaction():
            await self.database.execute(v.delete().where(v.c.review_id.in_(review_ids)))
            rows = await self.database.fetch_all(
                sa.select(r.c.id, r.c.movie_id).where(r.c.id.in_(review_ids))
            )
            existing = [row["id"] for row in rows]
            if not existing:
                return 0, set()
            await self.database.execute(r.delete().where(r.c.id.in_(existing)))
        return len(existing), {row["movie_id"] for row in rows}

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
        r = self.reviews
        conditions = []
        if search:
            conditions.append(
                sa.or_(_icontains(r.c.title, search), _icontains(r.c.content, search))
            )
        if movie_id:
            conditions.append(r.c.movie_id == movie_id)
        if author_id:
            conditions.append(r.c.author_id == author_id)

        column = r.c[sort]
        order = column.desc() if descending else column.asc()
        query = (
            self._review_select()
            .where(*conditions)
            .order_by(order, r.c.id)
            .offset(offset)
            .limit(limit)
        )
        async with self._guard("list_reviews"):
            rows = await self.database.fetch_all(query)
            total = await self._count(r, conditions)
            return await self._joined_reviews(rows), total

    async def get_movie_ratings(self, movie_id: str) -> list[int]:
        query = sa.select(self.reviews.c.rating).where(self.reviews.c.movie_id == movie_id)
        async with self._guard("get_movie_ratings"):
            rows = await self.database.fetch_all(query)
        return [row["rating"] for row in rows]

    async def review_rating_totals(self) -> tuple[int, int]:
        query = sa.select(
            sa.func.count().label("total"),
            sa.func.coalesce(sa.func.sum(self.reviews.c.rating), 0).label("rating_sum"),
        ).select_from(self.reviews)
        async with self._guard("review_rating_totals"):
            row = await self.database.fetch_one(query)
        return int(row["total"]), int(row["rating_sum"])  # type: ignore[index]

    async def get_vote(self, review_id: str, user_id: str) -> str | None:
        v = self.review_votes
        query = sa.select(v.c.vote).where(v.c.review_id == review_id, v.c.user_id == user_id)
        async with self._guard("get_vote"):
            row = await self.database.fetch_one(query)
        return row["vote"] if row else None

    async def set_vote(self, review_id: str, user_id: str, vote: str | None) -> bool:
        v = self.review_votes
        async with self._guard("set_vote"), self.database.transaction():
            await self.database.execute(
                v.delete().where(v.c.review_id == review_id, v.c.user_id == user_id)
            )
            if vote is None:
                return True
            await self.database.execute(
                self._insert_if_present(
                    v,
                    {"review_id": review_id, "user_id": user_id, "vote": vote},
                    (self.reviews.c.id, review_id),
                    (self.users.c.id, user_id),
                )
            )
            return await self.get_vote(review_id, user_id) is not None

    async def count_votes(self, review_id: str) -> tuple[int, int]:
        v = self.review_votes
        query = (
            sa.select(v.c.vote, sa.func.count().label("n"))
            .where(v.c.review_id == review_id)
            .group_by(v.c.vote)
        )
        async with self._guard("count_votes"):
            rows = await self.database.fetch_all(query)
        counts = {row["vote"]: row["n"] for row in rows}
        return counts.get("like", 0), counts.get("dislike", 0)

    # Relationships

    async def add_watchlist_entry(self, user_id: str, movie_id: str, date_added: datetime) -> bool:
        w = self.watchlist
        query = self._insert_if_present(
            w,
            {"user_id": user_id, "movie_id": movie_id, "date_added": date_added},
            (self.users.c.id, user_id),
            (self.movies.c.id, movie_id),
        )
        async with self._guard("add_watchlist_entry"):
            try:
                await self.database.execute(query)
            except Exception as e:
                if _is_unique_violation(e):
                    raise ConflictError("Movie already in watchlist") from e
                raise
        return await self._count(w, [w.c.user_id == user_id, w.c.movie_id == movie_id]) > 0

    async def remove_watchlist_entry(self, user_id: str, movie_id: str) -> None:
        w = self.watchlist
        async with self._guard("remove_watchlist_entry"):
            await self.database.execute(
                w.delete().where(w.c.user_id == user_id, w.c.movie_id == movie_id)
            )

    async def list_watchlist(self, user_id: str) -> list[WatchlistEntry]:
        w, m = self.watchlist, self.movies
        query = (
            sa.select(
                w.c.movie_id,
                w.c.date_added,
                m.c.title,
                m.c.poster_path,
                m.c.average_rating,
                m.c.total_reviews,
                m.c.release_date,
                m.c.genres,
                m.c.runtime,
            )
            .select_from(w.join(m, m.c.id == w.c.movie_id))
            .where(w.c.user_id == user_id)
            .order_by(w.c.date_added.desc())
        )
        async with self._guard("list_watchlist"):
            rows = await self.database.fetch_all(query)

        entries: list[WatchlistEntry] = []
        for row in rows:
            movie: MovieSummary = {
                "id": row["movie_id"],
                "title": row["title"],
                "poster_path": row["poster_path"],
                "average_rating": row["average_rating"],
                "total_reviews": row["total_reviews"],
                "release_date": row["release_date"],
                "genres": row["genres"] or [],
                "runtime": row["runtime"],
            }
            entries.append(
                {"movie_id": row["movie_id"], "date_added": row["date_added"], "movie": movie}
            )
        return entries

    async def add_follow(self, follower_id: str, followee_id: str) -> bool:
        f = self.follows
        query = self._insert_if_present(
            f,
            {
                "follower_id": follower_id,
                "followee_id": followee_id,
                "created_at": datetime.now(UTC),
            },
            (self.users.c.id, follower_id),
            (self.users.c.id, followee_id),
        )
        async with self._guard("add_follow"):
            try:
                await self.database.execute(query)
            except Exception as e:
                if _is_unique_violation(e):
                    raise ConflictError("Already following this user") from e
                raise
        edge = [f.c.follower_id == follower_id, f.c.followee_id == followee_id]
        return await self._count(f, edge) > 0

    async def remove_follow(self, follower_id: str, followee_id: str) -> None:
        f = self.follows
        async with self._guard("remove_follow"):
            await self.database.execute(
                f.delete().where(f.c.follower_id == follower_id, f.c.followee_id == followee_id)
            )

    async def list_followers(self, user_id: str) -> list[AuthorSummary]:
        f = self.follows
        return await self._edge_users(f.c.follower_id, f.c.followee_id == user_id)

    async def list_following(self, user_id: str) -> list[AuthorSummary]:
        f = self.follows
        return await self._edge_users(f.c.followee_id, f.c.follower_id == user_id)

    # Helpers

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        """Translate connectivity failures into UnavailableError."""
        try:
            yield
        except _UNREACHABLE_ERRORS as e:
            logger.error(f"Database operation {operation} failed: {e}")
            raise UnavailableError(operation, str(e)) from e

    async def _create_tables(self) -> None:
        """Create database tables and indexes if they don't exist."""
        for table in self.metadata.sorted_tables:
            await self.database.execute(CreateTable(table, if_not_exists=True))
            for index in table.indexes:
                await self.database.execute(CreateIndex(index, if_not_exists=True))

    @staticmethod
    def _insert_if_present(
        table: sa.Table, values: dict[str, Any], *parents: tuple[sa.Column, str]
    ) -> Any:
        """INSERT ... SELECT that writes nothing unless every parent row exists.

        The existence check and the write are one statement, so a row can
        never land after a concurrent delete of its parent has committed.
        """
        names = list(values)
        source = sa.select(
            *(sa.literal(values[name], type_=table.c[name].type).label(name) for name in names)
        ).where(*(sa.select(column).where(column == key).exists() for column, key in parents))
        return table.insert().from_select(names, source)

    async def _replace_genres(self, movie_id: str, genres: list[str]) -> None:
        g = self.movie_genres
        await self.database.execute(g.delete().where(g.c.movie_id == movie_id))
        names = list(dict.fromkeys(genres))
        if names:
            await self.database.execute_many(
                g.insert(), [{"movie_id": movie_id, "name": name} for name in names]
            )

    @staticmethod
    def _record(table: sa.Table, row: Any) -> dict[str, Any]:
        return {column.name: row[column.name] for column in table.c}

    async def _ids(self, query: Any) -> list[str]:
        return [row[0] for row in await self.database.fetch_all(query)]

    async def _count(self, table: sa.Table, conditions: list | None = None) -> int:
        query = sa.select(sa.func.count()).select_from(table).where(*(conditions or []))
        async with self._guard(f"count_{table.name}"):
            value = await self.database.fetch_val(query)
        return int(value or 0)

    async def _page(
        self,
        table: sa.Table,
        conditions: list,
        sort: str,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[Any], int]:
        column = table.c[sort]
        order = column.desc() if descending else column.asc()
        query = (
            table.select()
            .where(*conditions)
            .order_by(order, table.c.id)
            .offset(offset)
            .limit(limit)
        )
        async with self._guard(f"list_{table.name}"):
            rows = await self.database.fetch_all(query)
        return rows, await self._count(table, conditions)

    def _review_select(self) -> sa.Select:
        r, u, m = self.reviews, self.users, self.movies
        return sa.select(
            r,
            u.c.username.label("author_username"),
            u.c.profile_picture.label("author_profile_picture"),
            m.c.title.label("movie_title"),
            m.c.poster_path.label("movie_poster_path"),
            m.c.average_rating.label("movie_average_rating"),
        ).select_from(
            r.outerjoin(u, u.c.id == r.c.author_id).outerjoin(m, m.c.id == r.c.movie_id)
        )

    async def _joined_reviews(self, rows: list[Any]) -> list[ReviewRecord]:
        """Build review records with author/movie summaries and vote sets."""
        review_ids = [row["id"] for row in rows]
        votes: dict[str, dict[str, list[str]]] = defaultdict(lambda: defaultdict(list))
        if review_ids:
            v = self.review_votes
            vote_rows = await self.database.fetch_all(
                sa.select(v).where(v.c.review_id.in_(review_ids)).order_by(v.c.user_id)
            )
            for vote_row in vote_rows:
                votes[vote_row["review_id"]][vote_row["vote"]].append(vote_row["user_id"])

        records: list[ReviewRecord] = []
        for row in rows:
            record: ReviewRecord = self._record(self.reviews, row)  # type: ignore[assignment]
            record["likes"] = votes[row["id"]]["like"]
            record["dislikes"] = votes[row["id"]]["dislike"]
            record["author"] = (
                {
                    "id": row["author_id"],
                    "username": row["author_username"],
                    "profile_picture": row["author_profile_picture"] or "",
                }
                if row["author_username"] is not None
                else None
            )
            record["movie"] = (
                {
                    "id": row["movie_id"],
                    "title": row["movie_title"],
                    "poster_path": row["movie_poster_path"] or "",
                    "average_rating": row["movie_average_rating"] or 0,
                }
                if row["movie_title"] is not None
                else None
            )
            records.append(record)
        return records

    async def _edge_users(self, user_column: sa.Column, condition: Any) -> list[AuthorSummary]:
        u = self.users
        query = (
            sa.select(u.c.id, u.c.username, u.c.profile_picture)
            .select_from(self.follows.join(u, u.c.id == user_column))
            .where(condition)
            .order_by(u.c.username)
        )
        async with self._guard("list_follow_edges"):
            rows = await self.database.fetch_all(query)
        return [
            {"id": row["id"], "username": row["username"], "profile_picture": row["profile_picture"]}
            for row in rows
        ]

    @staticmethod
    def _user_conflict_message(exc: Exception) -> str:
        if "email" in str(exc):
            return "Email already in use"
        return "Username already taken"
