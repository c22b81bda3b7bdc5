"""Input sanitizing shared by the services."""

import math

from email_validator import EmailNotValidError, validate_email

from .config import settings
from .exceptions import ValidationError
from .types import ROLES, Page

RATING_MIN, RATING_MAX = 1, 5
TITLE_MAX_LENGTH = 100
CONTENT_MIN_LENGTH, CONTENT_MAX_LENGTH = 10, 2000
USERNAME_MIN_LENGTH, USERNAME_MAX_LENGTH = 3, 30
PASSWORD_MIN_LENGTH = 6
BIO_MAX_LENGTH = 500


def validate_rating(rating: object) -> int:
    """Star ratings are whole numbers from 1 to 5."""
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError("Rating must be an integer between 1 and 5", field="rating")
    if not RATING_MIN <= rating <= RATING_MAX:
        raise ValidationError("Rating must be between 1 and 5", field="rating")
    return rating


def clean_review_title(title: str | None) -> str:
    if not title or not title.strip():
        raise ValidationError("Review title is required", field="title")
    title = title.strip()
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(
            f"Review title cannot exceed {TITLE_MAX_LENGTH} characters", field="title"
        )
    return title


def clean_review_content(content: str | None) -> str:
    content = (content or "").strip()
    if not CONTENT_MIN_LENGTH <= len(content) <= CONTENT_MAX_LENGTH:
        raise ValidationError(
            f"Review content must be between {CONTENT_MIN_LENGTH} and "
            f"{CONTENT_MAX_LENGTH} characters",
            field="content",
        )
    return content


def clean_username(username: str | None) -> str:
    username = (username or "").strip()
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters",
            field="username",
        )
    return username


def normalize_email(email: str | None) -> str:
    """Validate an address and normalize it to trimmed lowercase."""
    try:
        result = validate_email((email or "").strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError("Please provide a valid email", field="email") from e
    return result.normalized.lower()


def validate_password(password: str | None, field: str = "password") -> str:
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters long", field=field
        )
    return password


def clean_bio(bio: str | None) -> str:
    bio = (bio or "").strip()
    if len(bio) > BIO_MAX_LENGTH:
        raise ValidationError(f"Bio must be less than {BIO_MAX_LENGTH} characters", field="bio")
    return bio


def validate_role(role: str | None) -> str:
    if role not in ROLES:
        raise ValidationError("Invalid role", field="role")
    return role


def page_bounds(page: int | None, limit: int | None) -> tuple[int, int, int]:
    """Clamp page/limit and return (page, limit, offset)."""
    page = max(page or 1, 1)
    limit = min(max(limit or settings.default_page_size, 1), settings.max_page_size)
    return page, limit, (page - 1) * limit


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def make_page(items: list, total: int, page: int, limit: int) -> Page:
    """Wrap one page of results in the listing envelope."""
    return {
        "items": items,
        "current_page": page,
        "total_pages": total_pages(total, limit),
        "total_count": total,
    }
