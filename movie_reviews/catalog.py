"""Movie catalog: browsing, admin edits and import from provider descriptors."""

import uuid
from datetime import UTC, date, datetime
from typing import Any

from loguru import logger

from .admin import require_admin
from .exceptions import ConflictError, NotFoundError, ValidationError
from .storage import Repository
from .types import Identity, MovieRecord
from .validation import make_page, page_bounds

RECENT_REVIEWS_LIMIT = 5

MOVIE_SORTS = {
    "title": ("title", False),
    "releaseDate": ("release_date", True),
    "release_date": ("release_date", True),
    "averageRating": ("average_rating", True),
    "average_rating": ("average_rating", True),
    "totalReviews": ("total_reviews", True),
    "total_reviews": ("total_reviews", True),
    "newest": ("created_at", True),
    "oldest": ("created_at", False),
}

# Fields an admin may set; the rating aggregate is never among them
EDITABLE_FIELDS = (
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
)


def parse_release_date(value: Any) -> date | None:
    """Accept a date, a datetime or an ISO-8601 string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise ValidationError("Valid release date is required", field="release_date") from e


def genre_names(genres: Any) -> list[str]:
    """Normalize genres given as names or as ``{"id", "name"}`` objects."""
    names = []
    for genre in genres or []:
        name = genre.get("name") if isinstance(genre, dict) else genre
        if name and str(name).strip():
            names.append(str(name).strip())
    return names


def _clean_fields(data: dict[str, Any]) -> dict[str, Any]:
    fields = {key: data[key] for key in EDITABLE_FIELDS if key in data}

    for key in ("title", "overview"):
        if key in fields:
            value = (fields[key] or "").strip()
            if not value:
                raise ValidationError(f"{key.capitalize()} cannot be empty", field=key)
            fields[key] = value
    if "release_date" in fields:
        fields["release_date"] = parse_release_date(fields["release_date"])
    if "genres" in fields:
        fields["genres"] = genre_names(fields["genres"])
    for key in ("director", "poster_path", "backdrop_path"):
        if key in fields:
            fields[key] = fields[key] or ""
    for key in ("runtime", "vote_count"):
        if key in fields:
            fields[key] = int(fields[key] or 0)
    if "vote_average" in fields:
        fields["vote_average"] = float(fields["vote_average"] or 0)
    return fields


def new_movie(fields: dict[str, Any]) -> MovieRecord:
    """Build a complete movie record with an empty rating aggregate."""
    now = datetime.now(UTC)
    return {
        "id": uuid.uuid4().hex,
        "tmdb_id": fields.get("tmdb_id"),
        "title": fields["title"],
        "overview": fields["overview"],
        "release_date": fields.get("release_date"),
        "runtime": fields.get("runtime", 0),
        "genres": fields.get("genres", []),
        "director": fields.get("director", ""),
        "poster_path": fields.get("poster_path", ""),
        "backdrop_path": fields.get("backdrop_path", ""),
        "vote_average": fields.get("vote_average", 0.0),
        "vote_count": fields.get("vote_count", 0),
        "average_rating": 0.0,
        "total_reviews": 0,
        "created_at": now,
        "updated_at": now,
    }


class CatalogService:
    """Public movie browsing plus admin-only catalog maintenance."""

    def __init__(self, repository: Repository) -> None:
        """Initialize with injected repository."""
        self.repository = repository

    async def list_movies(
        self,
        search: str | None = None,
        genre: str | None = None,
        year: int | None = None,
        page: int | None = None,
        limit: int | None = None,
        sort: str | None = None,
    ) -> dict[str, Any]:
        """Browse the catalog; newest first unless another sort is requested."""
        page, limit, offset = page_bounds(page, limit)
        column, descending = MOVIE_SORTS.get(sort or "", ("created_at", True))
        movies, total = await self.repository.list_movies(
            search=search or None,
            genre=genre or None,
            year=year,
            sort=column,
            descending=descending,
            offset=offset,
            limit=limit,
        )
        envelope = make_page(movies, total, page, limit)
        return {
            **envelope,
            "has_next": page < envelope["total_pages"],
            "has_prev": page > 1,
        }

    async def get_movie(self, movie_id: str) -> dict[str, Any]:
        """Movie detail with its most recent reviews."""
        movie = await self.repository.get_movie(movie_id)
        if movie is None:
            raise NotFoundError("Movie", movie_id)

        recent_reviews, _ = await self.repository.list_reviews(
            search=None,
            movie_id=movie_id,
            author_id=None,
            sort="created_at",
            descending=True,
            offset=0,
            limit=RECENT_REVIEWS_LIMIT,
        )
        return {"movie": movie, "recent_reviews": recent_reviews}

    async def create_movie(self, identity: Identity, draft: dict[str, Any]) -> MovieRecord:
        """Add a movie by hand (admin only)."""
        require_admin(identity)
        fields = _clean_fields(draft)
        for key in ("title", "overview"):
            if key not in fields:
                raise ValidationError(f"{key.capitalize()} is required", field=key)
        if fields.get("release_date") is None:
            raise ValidationError("Valid release date is required", field="release_date")

        movie = new_movie(fields)
        await self.repository.create_movie(movie)
        logger.info(f"User {identity.user_id} created movie {movie['id']}")
        return movie

    async def update_movie(
        self, identity: Identity, movie_id: str, patch: dict[str, Any]
    ) -> MovieRecord:
        """Edit catalog fields of a movie (admin only)."""
        require_admin(identity)
        fields = _clean_fields(patch)
        if "release_date" in fields and fields["release_date"] is None:
            raise ValidationError("Valid release date is required", field="release_date")

        if not fields:
            movie = await self.repository.get_movie(movie_id)
        else:
            movie = await self.repository.update_movie(movie_id, fields)
        if movie is None:
            raise NotFoundError("Movie", movie_id)

        logger.info(f"User {identity.user_id} updated movie {movie_id}: {sorted(fields)}")
        return movie

    async def delete_movie(self, identity: Identity, movie_id: str) -> None:
        """Delete a movie with its reviews and watchlist entries (admin only)."""
        require_admin(identity)
        if not await self.repository.delete_movies([movie_id]):
            raise NotFoundError("Movie", movie_id)
        logger.info(f"User {identity.user_id} deleted movie {movie_id}")

    async def upsert_from_descriptor(self, descriptor: dict[str, Any]) -> MovieRecord:
        """Import a provider movie descriptor, keyed on its external id.

        Re-importing a known id returns the stored movie unchanged. When two
        imports of the same id race, the store's uniqueness on ``tmdb_id``
        lets one insert win and the other reads the winner back.
        """
        tmdb_id = descriptor.get("tmdb_id", descriptor.get("id"))
        if isinstance(tmdb_id, bool) or not isinstance(tmdb_id, int):
            raise ValidationError("Descriptor must carry an integer id", field="id")

        existing = await self.repository.get_movie_by_tmdb_id(tmdb_id)
        if existing is not None:
            return existing

        data = {**descriptor, "tmdb_id": tmdb_id}
        # Provider descriptors may lack a synopsis
        if not (data.get("overview") or "").strip():
            data.pop("overview", None)
        fields = _clean_fields(data)
        if "title" not in fields:
            raise ValidationError("Title is required", field="title")
        fields.setdefault("overview", "")

        movie = new_movie(fields)
        try:
            await self.repository.create_movie(movie)
        except ConflictError:
            winner = await self.repository.get_movie_by_tmdb_id(tmdb_id)
            if winner is None:
                raise
            return winner

        logger.info(f"Imported movie {movie['id']} from external id {tmdb_id}")
        return movie
