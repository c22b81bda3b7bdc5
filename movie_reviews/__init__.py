"""Movie Reviews API - movie catalog, reviews, watchlists and follows."""

__version__ = "1.0.0"

from .api import app, create_app  # noqa: E402
from .factory import Services, create_services  # noqa: E402
from .types import Identity  # noqa: E402

__all__ = [
    "Identity",
    "Services",
    "app",
    "create_app",
    "create_services",
]
