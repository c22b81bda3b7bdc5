"""Type definitions for the Movie Reviews API."""

from dataclasses import dataclass
from datetime import date, datetime

from typing_extensions import TypedDict

ROLES: tuple[str, ...] = ("user", "admin")


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, normalized once at the API boundary.

    ``role`` always comes from the stored user record, never from a token claim.
    """

    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class UserRecord(TypedDict, total=False):
    """Stored user document."""

    id: str
    username: str
    email: str
    password_hash: str
    profile_picture: str
    bio: str
    role: str
    created_at: datetime
    updated_at: datetime


class AuthorSummary(TypedDict):
    """Minimal public profile joined into other records."""

    id: str
    username: str
    profile_picture: str


class MovieRecord(TypedDict, total=False):
    """Stored movie document."""

    id: str
    tmdb_id: int | None
    title: str
    overview: str
    release_date: date | None
    runtime: int
    genres: list[str]
    director: str
    poster_path: str
    backdrop_path: str
    vote_average: float
    vote_count: int
    average_rating: float
    total_reviews: int
    created_at: datetime
    updated_at: datetime


class MovieSummary(TypedDict, total=False):
    """Movie fields joined into reviews and watchlist entries."""

    id: str
    title: str
    poster_path: str
    average_rating: float
    total_reviews: int
    release_date: date | None
    genres: list[str]
    runtime: int


class ReviewRecord(TypedDict, total=False):
    """Stored review document, optionally joined with author and movie."""

    id: str
    author_id: str
    movie_id: str
    rating: int
    title: str
    content: str
    likes: list[str]
    dislikes: list[str]
    created_at: datetime
    updated_at: datetime
    author: AuthorSummary | None
    movie: MovieSummary | None


class WatchlistEntry(TypedDict):
    """A movie in a user's watchlist."""

    movie_id: str
    date_added: datetime
    movie: MovieSummary | None


class VoteCounts(TypedDict):
    """Result of a like/dislike toggle."""

    likes_count: int
    dislikes_count: int
    active: bool


class Aggregate(TypedDict):
    """Derived rating statistics of a movie."""

    average_rating: float
    total_reviews: int


class Page(TypedDict):
    """Paginated listing envelope."""

    items: list
    current_page: int
    total_pages: int
    total_count: int


class Stats(TypedDict):
    """Admin dashboard figures."""

    total_movies: int
    total_users: int
    total_reviews: int
    average_rating: float


class HealthStatus(TypedDict):
    """Health status of system components."""

    storage: bool
