"""Request and response models using Pydantic."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic_core import PydanticCustomError


class RegisterRequest(BaseModel):
    """New account details."""

    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=6)

    @field_validator("username", mode="before")
    @classmethod
    def validate_username(cls, value: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise PydanticCustomError(
                "empty_username", "Username cannot be empty", {"input": value}
            )
        return value.strip()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserOut(BaseModel):
    """Public user profile; never carries the password hash."""

    id: str
    username: str
    email: str
    profile_picture: str = ""
    bio: str = ""
    role: str = "user"
    created_at: datetime | None = None


class AuthResponse(BaseModel):
    token: str
    user: UserOut


class ProfileUpdate(BaseModel):
    username: str | None = Field(None, min_length=3, max_length=30)
    email: EmailStr | None = None
    bio: str | None = Field(None, max_length=500)
    profile_picture: str | None = None


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class MovieDraft(BaseModel):
    """Admin-supplied movie fields.

    Unknown keys, including ``average_rating`` and ``total_reviews``, are dropped.
    """

    model_config = ConfigDict(extra="ignore")

    title: str = Field(..., min_length=1)
    overview: str = Field(..., min_length=1)
    release_date: date
    tmdb_id: int | None = None
    runtime: int = Field(0, ge=0)
    genres: list[str] = []
    director: str = ""
    poster_path: str = ""
    backdrop_path: str = ""
    vote_average: float = 0.0
    vote_count: int = 0


class MoviePatch(BaseModel):
    """Partial movie edit; omitted fields stay untouched."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = Field(None, min_length=1)
    overview: str | None = Field(None, min_length=1)
    release_date: date | None = None
    tmdb_id: int | None = None
    runtime: int | None = Field(None, ge=0)
    genres: list[str] | None = None
    director: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    vote_average: float | None = None
    vote_count: int | None = None


class MovieImport(BaseModel):
    """Provider movie descriptors to upsert by external id."""

    movies: list[dict[str, Any]] = Field(..., min_length=1)


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    content: str = Field(..., min_length=10, max_length=2000)


class ReviewUpdate(BaseModel):
    rating: int | None = Field(None, ge=1, le=5)
    title: str | None = Field(None, min_length=1, max_length=100)
    content: str | None = Field(None, min_length=10, max_length=2000)


class RoleUpdate(BaseModel):
    role: str


class ReviewIds(BaseModel):
    review_ids: list[str]


class UserIds(BaseModel):
    user_ids: list[str]


class MovieIds(BaseModel):
    movie_ids: list[str]


class VoteResponse(BaseModel):
    """Vote totals after a like/dislike toggle."""

    likes_count: int
    dislikes_count: int
    active: bool


class MessageResponse(BaseModel):
    message: str


class DeletedResponse(BaseModel):
    message: str
    deleted_count: int


class WatchlistAdd(BaseModel):
    movie_id: str = Field(..., min_length=1)
