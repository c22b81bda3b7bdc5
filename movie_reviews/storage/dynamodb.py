"""DynamoDB repository implementation.

Single-table layout (``pk``/``sk`` string keys, ``kind`` discriminator):

=====================================  ===================  =========
pk                                     sk                   kind
=====================================  ===================  =========
``USER#<id>``                          ``PROFILE``          user
``USER#<id>``                          ``WATCH#<movie>``    watch
``USER#<id>``                          ``FOLLOWING#<id>``   following
``USER#<id>``                          ``FOLLOWER#<id>``    follower
``USER#<id>``                          ``REVIEW#<id>``      authored
``MOVIE#<id>``                         ``MOVIE``            movie
``MOVIE#<id>``                         ``RATING#<review>``  rating
``REVIEW#<id>``                        ``REVIEW``           review
``REVIEW#<id>``                        ``VOTE#<user>``      vote
``USERNAME#<name>`` / ``EMAIL#<addr>`` ``UNIQUE``           marker
``TMDB#<id>`` / ``AUTHORSHIP#<u>#<m>`` ``UNIQUE``           marker
=====================================  ===================  =========

Uniqueness is enforced by writing marker items in the same
``TransactWriteItems`` call as the entity, each guarded by
``attribute_not_exists(pk)``. Writes that reference a user, movie or review
carry a ``ConditionCheck`` on the parent item, so nothing can attach to a
parent once its delete has committed.

Each review is mirrored by a ``rating`` item in its movie's partition and an
``authored`` item in its author's partition, written in the same transaction.
Aggregates and cascades read those partitions with strongly consistent
queries. The ``movie-index`` (``movie_id``) and ``author-index``
(``author_id``) global secondary indexes only serve listings.
"""

import asyncio
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, TypeVar
from urllib.parse import urlparse

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from loguru import logger

from ..exceptions import ConflictError, UnavailableError
from ..types import (
    AuthorSummary,
    MovieRecord,
    ReviewRecord,
    UserRecord,
    WatchlistEntry,
)

T = TypeVar("T")

USER_FIELDS = (
    "id",
    "username",
    "email",
    "password_hash",
    "profile_picture",
    "bio",
    "role",
    "created_at",
    "updated_at",
)
MOVIE_FIELDS = (
    "id",
    "tmdb_id",
    "title",
    "overview",
    "release_date",
    "runtime",
    "genres",
    "director",
    "poster_path",
    "backdrop_path",
    "vote_average",
    "vote_count",
    "average_rating",
    "total_reviews",
    "created_at",
    "updated_at",
)
REVIEW_FIELDS = (
    "id",
    "author_id",
    "movie_id",
    "rating",
    "title",
    "content",
    "created_at",
    "updated_at",
)

_DATETIME_FIELDS = {"created_at", "updated_at", "date_added"}
_DATE_FIELDS = {"release_date"}
_FLOAT_FIELDS = {"vote_average", "average_rating"}
_UNREACHABLE_ERRORS = (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)
_CONDITION_FAILURES = {"ConditionalCheckFailedException", "TransactionCanceledException"}


def _encode(value: Any) -> Any:
    """Convert a Python value into something boto3 can store."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value


def _decode(item: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    """Convert a stored item back into a record with Python types."""
    record: dict[str, Any] = {}
    for key in fields:
        if key not in item:
            continue
        value = item[key]
        if value is None:
            record[key] = None
        elif key in _DATETIME_FIELDS:
            record[key] = datetime.fromisoformat(value)
        elif key in _DATE_FIELDS:
            record[key] = date.fromisoformat(value)
        elif isinstance(value, Decimal):
            record[key] = float(value) if key in _FLOAT_FIELDS else int(value)
        elif isinstance(value, list):
            record[key] = list(value)
        else:
            record[key] = value
    return record


def _is_condition_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in _CONDITION_FAILURES


def _failed_conditions(exc: BaseException | None) -> set[int]:
    """Positions of the transaction items whose condition failed."""
    if not isinstance(exc, ClientError):
        return set()
    reasons = exc.response.get("CancellationReasons") or []
    return {
        position
        for position, reason in enumerate(reasons)
        if reason.get("Code") == "ConditionalCheckFailed"
    }


def _sorted_page(
    records: list[dict[str, Any]], sort: str, descending: bool, offset: int, limit: int
) -> list[dict[str, Any]]:
    """Sort records on a field (missing values lowest, as in SQL) and slice one page."""
    present = [r for r in records if r.get(sort) is not None]
    missing = [r for r in records if r.get(sort) is None]
    present.sort(key=lambda r: (r[sort], r["id"]), reverse=descending)
    ordered = present + missing if descending else missing + present
    return ordered[offset : offset + limit]


def _contains(value: Any, needle: str) -> bool:
    return needle.lower() in str(value or "").lower()


class DynamoDBRepository:
    """DynamoDB repository implementation."""

    def __init__(self, database_url: str):
        """Initialize DynamoDB repository.

        Args:
            database_url: DynamoDB URL in format: dynamodb://table_name?region=us-east-1
        """
        parsed = urlparse(database_url)
        self.table_name = parsed.netloc or parsed.path.lstrip("/")
        self.region = None

        # Parse region from query string
        if parsed.query:
            for param in parsed.query.split("&"):
                if param.startswith("region="):
                    self.region = param.split("=")[1]

        self.client = None
        self.table = None

    async def startup(self) -> None:
        """Initialize DynamoDB connection."""
        try:
            import boto3

            resource = boto3.resource("dynamodb", region_name=self.region)
            self.table = resource.Table(self.table_name)
            # The resource's client accepts plain Python values, unlike boto3.client()
            self.client = self.table.meta.client

            logger.info(f"Connected to DynamoDB table: {self.table_name} in {self.region}")
        except ImportError:
            logger.error("boto3 not available. Install with: pip install boto3")
            raise

    async def shutdown(self) -> None:
        """No cleanup needed for DynamoDB."""
        pass

    async def health_check(self) -> bool:
        """Check if DynamoDB is accessible.

        Returns:
            True if DynamoDB is healthy, False otherwise.
        """
        try:
            await self._run("health_check", lambda: self.table.table_status)
            return True
        except (AttributeError, RuntimeError, UnavailableError, ClientError) as e:
            logger.warning(f"DynamoDB health check failed: {e}")
            return False

    # Users

    async def create_user(self, user: UserRecord) -> None:
        item = self._item(f"USER#{user['id']}", "PROFILE", "user", user)
        try:
            await self._transact(
                "create_user",
                [
                    self._put(item),
                    self._put_marker(f"USERNAME#{user['username']}", user["id"]),
                    self._put_marker(f"EMAIL#{user['email']}", user["id"]),
                ],
            )
        except ConflictError as e:
            raise ConflictError(await self._user_conflict_message(user)) from e

    async def get_user(self, user_id: str) -> UserRecord | None:
        item = await self._get(f"USER#{user_id}", "PROFILE")
        return _decode(item, USER_FIELDS) if item else None  # type: ignore[return-value]

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        marker = await self._get(f"EMAIL#{email}", "UNIQUE")
        if marker is None:
            return None
        return await self.get_user(marker["owner_id"])

    async def update_user(self, user_id: str, fields: dict[str, Any]) -> UserRecord | None:
        current = await self.get_user(user_id)
        if current is None:
            return None

        updated = {**current, **fields, "updated_at": datetime.now(UTC)}
        actions = [
            self._put(self._item(f"USER#{user_id}", "PROFILE", "user", updated), None)
        ]
        for prefix, key in (("USERNAME", "username"), ("EMAIL", "email")):
            old_value, new_value = current[key], updated[key]
            if new_value != old_value:
                actions.append(self._put_marker(f"{prefix}#{new_value}", user_id))
                actions.append(self._delete(f"{prefix}#{old_value}", "UNIQUE"))

        try:
            await self._transact("update_user", actions)
        except ConflictError as e:
            raise ConflictError(await self._user_conflict_message(updated, user_id)) from e
        return updated  # type: ignore[return-value]

    async def list_users(
        self,
        search: str | None,
        role: str | None,
        sort: str,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[UserRecord], int]:
        users = [_decode(item, USER_FIELDS) for item in await self._scan_kind("user")]
        if search:
            users = [
                u for u in users if _contains(u["username"], search) or _contains(u["email"], search)
            ]
        if role:
            users = [u for u in users if u["role"] == role]
        return _sorted_page(users, sort, descending, offset, limit), len(users)  # type: ignore[return-value]

    async def delete_users(self, user_ids: list[str]) -> tuple[int, set[str]]:
        deleted = 0
        affected_movies: set[str] = set()
        for user_id in dict.fromkeys(user_ids):
            user = await self.get_user(user_id)
            if user is None:
                continue

            # The profile goes first: later writes naming this user fail their
            # condition check, so the sweep below sees every dependent
            await self._transact(
                "delete_users",
                [
                    self._delete(f"USER#{user_id}", "PROFILE"),
                    self._delete(f"USERNAME#{user['username']}", "UNIQUE"),
                    self._delete(f"EMAIL#{user['email']}", "UNIQUE"),
                ],
            )

            partition = await self._query_partition(f"USER#{user_id}")
            review_ids = [item["review_id"] for item in partition if item["kind"] == "authored"]
            _, movies = await self.delete_reviews(review_ids)
            affected_movies.update(movies)

            for vote in await self._scan_votes_by(user_id):
                await self._delete_key("delete_users", vote["pk"], vote["sk"])

            for edge in partition:
                if edge["kind"] == "following":
                    await self._delete_key(
                        "delete_users", f"USER#{edge['other_id']}", f"FOLLOWER#{user_id}"
                    )
                elif edge["kind"] == "follower":
                    await self._delete_key(
                        "delete_users", f"USER#{edge['other_id']}", f"FOLLOWING#{user_id}"
                    )
                if edge["kind"] in ("watch", "following", "follower"):
                    await self._delete_key("delete_users", edge["pk"], edge["sk"])
            deleted += 1

        logger.info(f"Deleted {deleted} users")
        return deleted, affected_movies

    async def count_users(self) -> int:
        return len(await self._scan_kind("user"))

    # Movies

    async def create_movie(self, movie: MovieRecord) -> None:
        actions = [self._put(self._item(f"MOVIE#{movie['id']}", "MOVIE", "movie", movie))]
        if movie.get("tmdb_id") is not None:
            actions.append(self._put_marker(f"TMDB#{movie['tmdb_id']}", movie["id"]))
        try:
            await self._transact("create_movie", actions)
        except ConflictError as e:
            raise ConflictError(f"Movie with tmdb id {movie.get('tmdb_id')} already exists") from e

    async def get_movie(self, movie_id: str) -> MovieRecord | None:
        item = await self._get(f"MOVIE#{movie_id}", "MOVIE")
        return _decode(item, MOVIE_FIELDS) if item else None  # type: ignore[return-value]

    async def get_movie_by_tmdb_id(self, tmdb_id: int) -> MovieRecord | None:
        marker = await self._get(f"TMDB#{tmdb_id}", "UNIQUE")
        if marker is None:
            return None
        return await self.get_movie(marker["owner_id"])

    async def update_movie(self, movie_id: str, fields: dict[str, Any]) -> MovieRecord | None:
        current = await self.get_movie(movie_id)
        if current is None:
            return None

        updated = {**current, **fields, "updated_at": datetime.now(UTC)}
        actions = [
            self._put(self._item(f"MOVIE#{movie_id}", "MOVIE", "movie", updated), None)
        ]
        if updated.get("tmdb_id") != current.get("tmdb_id"):
            if updated.get("tmdb_id") is not None:
                actions.append(self._put_marker(f"TMDB#{updated['tmdb_id']}", movie_id))
            if current.get("tmdb_id") is not None:
                actions.append(self._delete(f"TMDB#{current['tmdb_id']}", "UNIQUE"))
        try:
            await self._transact("update_movie", actions)
        except ConflictError as e:
            raise ConflictError(
                f"Movie with tmdb id {updated.get('tmdb_id')} already exists"
            ) from e
        return updated  # type: ignore[return-value]

    async def set_movie_aggregate(
        self, movie_id: str, average_rating: float, total_reviews: int
    ) -> bool:
        try:
            await self._run(
                "set_movie_aggregate",
                lambda: self.table.update_item(
                    Key={"pk": f"MOVIE#{movie_id}", "sk": "MOVIE"},
                    UpdateExpression="SET average_rating = :avg, total_reviews = :total",
                    ConditionExpression="attribute_exists(pk)",
                    ExpressionAttributeValues={
                        ":avg": _encode(float(average_rating)),
                        ":total": total_reviews,
                    },
                ),
            )
        except ClientError as e:
            if _is_condition_failure(e):
                return False
            raise
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
        movies = [_decode(item, MOVIE_FIELDS) for item in await self._scan_kind("movie")]
        if search:
            movies = [m for m in movies if _contains(m["title"], search)]
        if genre:
            movies = [m for m in movies if any(_contains(g, genre) for g in m.get("genres", []))]
        if year:
            movies = [m for m in movies if m.get("release_date") and m["release_date"].year == year]
        return _sorted_page(movies, sort, descending, offset, limit), len(movies)  # type: ignore[return-value]

    async def delete_movies(self, movie_ids: list[str]) -> int:
        deleted = 0
        for movie_id in dict.fromkeys(movie_ids):
            movie = await self.get_movie(movie_id)
            if movie is None:
                continue

            # Movie first, then sweep its dependents: see delete_users
            actions = [self._delete(f"MOVIE#{movie_id}", "MOVIE")]
            if movie.get("tmdb_id") is not None:
                actions.append(self._delete(f"TMDB#{movie['tmdb_id']}", "UNIQUE"))
            await self._transact("delete_movies", actions)

            ratings = await self._query_partition(f"MOVIE#{movie_id}", "RATING#")
            await self.delete_reviews([item["review_id"] for item in ratings])
            for entry in await self._scan_watch_entries(movie_id):
                await self._delete_key("delete_movies", entry["pk"], entry["sk"])
            deleted += 1

        logger.info(f"Deleted {deleted} movies")
        return deleted

    async def count_movies(self) -> int:
        return len(await self._scan_kind("movie"))

    # Reviews

    async def create_review(self, review: ReviewRecord) -> bool:
        record = {k: v for k, v in review.items() if k in REVIEW_FIELDS}
        try:
            await self._transact(
                "create_review",
                [
                    self._require(f"MOVIE#{review['movie_id']}", "MOVIE"),
                    self._require(f"USER#{review['author_id']}", "PROFILE"),
                    self._put(self._item(f"REVIEW#{review['id']}", "REVIEW", "review", record)),
                    self._put_marker(
                        f"AUTHORSHIP#{review['author_id']}#{review['movie_id']}", review["id"]
                    ),
                    self._put(self._rating_item(record)),
                    self._put(self._authored_item(record)),
                ],
            )
        except ConflictError as e:
            if _failed_conditions(e.__cause__) & {0, 1}:
                return False
            raise ConflictError("You have already reviewed this movie") from e
        return True

    async def get_review(self, review_id: str) -> ReviewRecord | None:
        item = await self._get(f"REVIEW#{review_id}", "REVIEW")
        if item is None:
            return None
        return (await self._joined_reviews([_decode(item, REVIEW_FIELDS)]))[0]

    async def update_review(self, review_id: str, fields: dict[str, Any]) -> ReviewRecord | None:
        current = await self._get(f"REVIEW#{review_id}", "REVIEW")
        if current is None:
            return None
        updated = {**_decode(current, REVIEW_FIELDS), **fields, "updated_at": datetime.now(UTC)}
        exists = "attribute_exists(pk)"
        actions = [
            self._put(self._item(f"REVIEW#{review_id}", "REVIEW", "review", updated), exists)
        ]
        if "rating" in fields:
            actions.append(self._put(self._rating_item(updated), exists))
        try:
            await self._transact("update_review", actions)
        except ConflictError:
            # Deleted since it was read
            return None
        return await self.get_review(review_id)

    async def delete_reviews(self, review_ids: list[str]) -> tuple[int, set[str]]:
        deleted = 0
        affected_movies: set[str] = set()
        for review_id in dict.fromkeys(review_ids):
            item = await self._get(f"REVIEW#{review_id}", "REVIEW")
            if item is None:
                continue
            for vote in await self._query_partition(f"REVIEW#{review_id}", "VOTE#"):
                await self._delete_key("delete_reviews", vote["pk"], vote["sk"])
            await self._transact(
                "delete_reviews",
                [
                    self._delete(f"REVIEW#{review_id}", "REVIEW"),
                    self._delete(f"AUTHORSHIP#{item['author_id']}#{item['movie_id']}", "UNIQUE"),
                    self._delete(f"MOVIE#{item['movie_id']}", f"RATING#{review_id}"),
                    self._delete(f"USER#{item['author_id']}", f"REVIEW#{review_id}"),
                ],
            )
            affected_movies.add(item["movie_id"])
            deleted += 1
        return deleted, affected_movies

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
        if movie_id:
            items = await self._query_index("movie-index", "movie_id", movie_id)
        elif author_id:
            items = await self._query_index("author-index", "author_id", author_id)
        else:
            items = await self._scan_kind("review")

        reviews = [_decode(item, REVIEW_FIELDS) for item in items]
        if movie_id:
            reviews = [r for r in reviews if r["movie_id"] == movie_id]
        if author_id:
            reviews = [r for r in reviews if r["author_id"] == author_id]
        if search:
            reviews = [
                r for r in reviews if _contains(r["title"], search) or _contains(r["content"], search)
            ]
        page = _sorted_page(reviews, sort, descending, offset, limit)
        return await self._joined_reviews(page), len(reviews)

    async def get_movie_ratings(self, movie_id: str) -> list[int]:
        items = await self._query_partition(f"MOVIE#{movie_id}", "RATING#")
        return [int(item["rating"]) for item in items]

    async def review_rating_totals(self) -> tuple[int, int]:
        items = await self._scan_kind("review")
        return len(items), sum(int(item["rating"]) for item in items)

    async def get_vote(self, review_id: str, user_id: str) -> str | None:
        item = await self._get(f"REVIEW#{review_id}", f"VOTE#{user_id}")
        return item["vote"] if item else None

    async def set_vote(self, review_id: str, user_id: str, vote: str | None) -> bool:
        # One item per (review, user), so a put replaces the opposite vote
        if vote is None:
            await self._delete_key("set_vote", f"REVIEW#{review_id}", f"VOTE#{user_id}")
            return True
        item = {
            "pk": f"REVIEW#{review_id}",
            "sk": f"VOTE#{user_id}",
            "kind": "vote",
            "user_id": user_id,
            "vote": vote,
        }
        try:
            await self._transact(
                "set_vote",
                [
                    self._require(f"REVIEW#{review_id}", "REVIEW"),
                    self._require(f"USER#{user_id}", "PROFILE"),
                    self._put(item, None),
                ],
            )
        except ConflictError:
            return False
        return True

    async def count_votes(self, review_id: str) -> tuple[int, int]:
        votes = [item["vote"] for item in await self._query_partition(f"REVIEW#{review_id}", "VOTE#")]
        return votes.count("like"), votes.count("dislike")

    # Relationships

    async def add_watchlist_entry(self, user_id: str, movie_id: str, date_added: datetime) -> bool:
        item = {
            "pk": f"USER#{user_id}",
            "sk": f"WATCH#{movie_id}",
            "kind": "watch",
            "watch_movie_id": movie_id,
            "date_added": date_added.isoformat(),
        }
        try:
            await self._transact(
                "add_watchlist_entry",
                [
                    self._require(f"USER#{user_id}", "PROFILE"),
                    self._require(f"MOVIE#{movie_id}", "MOVIE"),
                    self._put(item),
                ],
            )
        except ConflictError as e:
            if _failed_conditions(e.__cause__) & {0, 1}:
                return False
            raise ConflictError("Movie already in watchlist") from e
        return True

    async def remove_watchlist_entry(self, user_id: str, movie_id: str) -> None:
        await self._delete_key("remove_watchlist_entry", f"USER#{user_id}", f"WATCH#{movie_id}")

    async def list_watchlist(self, user_id: str) -> list[WatchlistEntry]:
        entries: list[WatchlistEntry] = []
        for item in await self._query_partition(f"USER#{user_id}", "WATCH#"):
            movie = await self.get_movie(item["watch_movie_id"])
            if movie is None:
                continue
            entries.append(
                {
                    "movie_id": item["watch_movie_id"],
                    "date_added": datetime.fromisoformat(item["date_added"]),
                    "movie": {
                        "id": movie["id"],
                        "title": movie["title"],
                        "poster_path": movie.get("poster_path", ""),
                        "average_rating": movie.get("average_rating", 0),
                        "total_reviews": movie.get("total_reviews", 0),
                        "release_date": movie.get("release_date"),
                        "genres": movie.get("genres", []),
                        "runtime": movie.get("runtime", 0),
                    },
                }
            )
        entries.sort(key=lambda e: e["date_added"], reverse=True)
        return entries

    async def add_follow(self, follower_id: str, followee_id: str) -> bool:
        now = datetime.now(UTC).isoformat()
        try:
            await self._transact(
                "add_follow",
                [
                    self._require(f"USER#{follower_id}", "PROFILE"),
                    self._require(f"USER#{followee_id}", "PROFILE"),
                    self._put(
                        {
                            "pk": f"USER#{follower_id}",
                            "sk": f"FOLLOWING#{followee_id}",
                            "kind": "following",
                            "other_id": followee_id,
                            "created_at": now,
                        }
                    ),
                    self._put(
                        {
                            "pk": f"USER#{followee_id}",
                            "sk": f"FOLLOWER#{follower_id}",
                            "kind": "follower",
                            "other_id": follower_id,
                            "created_at": now,
                        }
                    ),
                ],
            )
        except ConflictError as e:
            if _failed_conditions(e.__cause__) & {0, 1}:
                return False
            raise ConflictError("Already following this user") from e
        return True

    async def remove_follow(self, follower_id: str, followee_id: str) -> None:
        await self._transact(
            "remove_follow",
            [
                self._delete(f"USER#{follower_id}", f"FOLLOWING#{followee_id}"),
                self._delete(f"USER#{followee_id}", f"FOLLOWER#{follower_id}"),
            ],
        )

    async def list_followers(self, user_id: str) -> list[AuthorSummary]:
        return await self._edge_users(user_id, "FOLLOWER#")

    async def list_following(self, user_id: str) -> list[AuthorSummary]:
        return await self._edge_users(user_id, "FOLLOWING#")

    # Helpers

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        """Run a blocking boto3 call in the executor."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except _UNREACHABLE_ERRORS as e:
            logger.error(f"DynamoDB operation {operation} failed: {e}")
            raise UnavailableError(operation, str(e)) from e

    async def _transact(self, operation: str, actions: list[dict[str, Any]]) -> None:
        """Apply actions in one TransactWriteItems call; condition failures conflict."""
        try:
            await self._run(
                operation, lambda: self.client.transact_write_items(TransactItems=actions)
            )
        except ClientError as e:
            if _is_condition_failure(e):
                raise ConflictError(f"{operation} violates a uniqueness constraint") from e
            raise

    def _item(self, pk: str, sk: str, kind: str, record: Any) -> dict[str, Any]:
        item = {key: _encode(value) for key, value in dict(record).items()}
        item.update(pk=pk, sk=sk, kind=kind)
        return item

    def _put(
        self, item: dict[str, Any], condition: str | None = "attribute_not_exists(pk)"
    ) -> dict[str, Any]:
        put: dict[str, Any] = {"TableName": self.table_name, "Item": item}
        if condition:
            put["ConditionExpression"] = condition
        return {"Put": put}

    def _require(self, pk: str, sk: str) -> dict[str, Any]:
        """Transaction item that cancels the write unless ``pk``/``sk`` exists."""
        return {
            "ConditionCheck": {
                "TableName": self.table_name,
                "Key": {"pk": pk, "sk": sk},
                "ConditionExpression": "attribute_exists(pk)",
            }
        }

    def _rating_item(self, review: dict[str, Any]) -> dict[str, Any]:
        return {
            "pk": f"MOVIE#{review['movie_id']}",
            "sk": f"RATING#{review['id']}",
            "kind": "rating",
            "review_id": review["id"],
            "rating": review["rating"],
        }

    def _authored_item(self, review: dict[str, Any]) -> dict[str, Any]:
        return {
            "pk": f"USER#{review['author_id']}",
            "sk": f"REVIEW#{review['id']}",
            "kind": "authored",
            "review_id": review["id"],
        }

    def _put_marker(self, pk: str, owner_id: str) -> dict[str, Any]:
        return {
            "Put": {
                "TableName": self.table_name,
                "Item": {"pk": pk, "sk": "UNIQUE", "kind": "marker", "owner_id": owner_id},
                "ConditionExpression": "attribute_not_exists(pk)",
            }
        }

    def _delete(self, pk: str, sk: str) -> dict[str, Any]:
        return {"Delete": {"TableName": self.table_name, "Key": {"pk": pk, "sk": sk}}}

    async def _get(self, pk: str, sk: str) -> dict[str, Any] | None:
        response = await self._run(
            "get_item", lambda: self.table.get_item(Key={"pk": pk, "sk": sk})
        )
        return response.get("Item")

    async def _delete_key(self, operation: str, pk: str, sk: str) -> None:
        await self._run(operation, lambda: self.table.delete_item(Key={"pk": pk, "sk": sk}))

    async def _paginate(self, method: Callable[..., dict[str, Any]], **kwargs: Any) -> list[dict]:
        """Follow LastEvaluatedKey until a scan or query is exhausted."""

        def _collect() -> list[dict]:
            items: list[dict] = []
            while True:
                response = method(**kwargs)
                items.extend(response["Items"])
                if "LastEvaluatedKey" not in response:
                    return items
                kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

        return await self._run("paginate", _collect)

    async def _scan_kind(self, kind: str) -> list[dict]:
        from boto3.dynamodb.conditions import Attr

        return await self._paginate(self.table.scan, FilterExpression=Attr("kind").eq(kind))

    # Cascade sweeps run after the parent delete and must see every dependent
    # committed before it, hence the strongly consistent reads

    async def _scan_votes_by(self, user_id: str) -> list[dict]:
        from boto3.dynamodb.conditions import Attr

        return await self._paginate(
            self.table.scan,
            FilterExpression=Attr("kind").eq("vote") & Attr("user_id").eq(user_id),
            ConsistentRead=True,
        )

    async def _scan_watch_entries(self, movie_id: str) -> list[dict]:
        from boto3.dynamodb.conditions import Attr

        return await self._paginate(
            self.table.scan,
            FilterExpression=Attr("kind").eq("watch") & Attr("watch_movie_id").eq(movie_id),
            ConsistentRead=True,
        )

    async def _query_partition(self, pk: str, sk_prefix: str | None = None) -> list[dict]:
        from boto3.dynamodb.conditions import Key

        condition = Key("pk").eq(pk)
        if sk_prefix:
            condition = condition & Key("sk").begins_with(sk_prefix)
        return await self._paginate(
            self.table.query, KeyConditionExpression=condition, ConsistentRead=True
        )

    async def _query_index(self, index: str, attribute: str, value: str) -> list[dict]:
        from boto3.dynamodb.conditions import Attr, Key

        return await self._paginate(
            self.table.query,
            IndexName=index,
            KeyConditionExpression=Key(attribute).eq(value),
            FilterExpression=Attr("kind").eq("review"),
        )

    async def _joined_reviews(self, reviews: list[dict[str, Any]]) -> list[ReviewRecord]:
        users: dict[str, UserRecord | None] = {}
        movies: dict[str, MovieRecord | None] = {}
        records: list[ReviewRecord] = []
        for review in reviews:
            if review["author_id"] not in users:
                users[review["author_id"]] = await self.get_user(review["author_id"])
            if review["movie_id"] not in movies:
                movies[review["movie_id"]] = await self.get_movie(review["movie_id"])
            author = users[review["author_id"]]
            movie = movies[review["movie_id"]]

            votes = await self._query_partition(f"REVIEW#{review['id']}", "VOTE#")
            record: ReviewRecord = dict(review)  # type: ignore[assignment]
            record["likes"] = sorted(v["user_id"] for v in votes if v["vote"] == "like")
            record["dislikes"] = sorted(v["user_id"] for v in votes if v["vote"] == "dislike")
            record["author"] = (
                {
                    "id": author["id"],
                    "username": author["username"],
                    "profile_picture": author.get("profile_picture", ""),
                }
                if author
                else None
            )
            record["movie"] = (
                {
                    "id": movie["id"],
                    "title": movie["title"],
                    "poster_path": movie.get("poster_path", ""),
                    "average_rating": movie.get("average_rating", 0),
                }
                if movie
                else None
            )
            records.append(record)
        return records

    async def _edge_users(self, user_id: str, prefix: str) -> list[AuthorSummary]:
        summaries: list[AuthorSummary] = []
        for edge in await self._query_partition(f"USER#{user_id}", prefix):
            user = await self.get_user(edge["other_id"])
            if user is not None:
                summaries.append(
                    {
                        "id": user["id"],
                        "username": user["username"],
                        "profile_picture": user.get("profile_picture", ""),
                    }
                )
        summaries.sort(key=lambda s: s["username"])
        return summaries

    async def _user_conflict_message(self, user: Any, user_id: str | None = None) -> str:
        marker = await self._get(f"EMAIL#{user['email']}", "UNIQUE")
        if marker is not None and marker["owner_id"] != (user_id or user.get("id")):
            return "Email already in use"
        return "Username already taken"
