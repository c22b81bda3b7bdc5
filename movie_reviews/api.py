"""FastAPI application and route handlers."""

import sys
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from . import __version__
from .admin import require_admin
from .config import settings
from .exceptions import ForbiddenError, MovieAPIError
from .factory import ServiceFactory, Services
from .middleware import add_request_id, create_token, get_current_identity
from .models import (
    AuthResponse,
    DeletedResponse,
    LoginRequest,
    MessageResponse,
    MovieDraft,
    MovieIds,
    MovieImport,
    MoviePatch,
    PasswordChange,
    ProfileUpdate,
    RegisterRequest,
    ReviewCreate,
    ReviewIds,
    ReviewUpdate,
    RoleUpdate,
    UserIds,
    UserOut,
    VoteResponse,
    WatchlistAdd,
)
from .types import Identity


def configure_logging() -> None:
    """Configure logging - should be called at startup, not import time."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.log_level,
        serialize=False,
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            level=settings.log_level,
        )


def get_limiter() -> Limiter:
    """Get or create rate limiter."""
    return Limiter(
        key_func=get_remote_address,
        storage_uri="memory://",
        default_limits=[settings.rate_limit],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    configure_logging()

    app.state.services = await ServiceFactory.create_for_environment()
    logger.info("Application started successfully")

    yield

    await ServiceFactory.shutdown_services(app.state.services)
    app.state.services = None
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Movie Reviews API",
    version=__version__,
    description="Movie catalog with user reviews, watchlists and follows",
    lifespan=lifespan,
)

app.middleware("http")(add_request_id)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = get_limiter()
app.state.limiter = limiter  # Required by slowapi
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle validation errors with clean messages."""
    error_messages = []

    for error in exc.errors():  # type: ignore[attr-defined]
        field = error["loc"][-1] if error["loc"] else "field"
        message = error.get("msg", f"Invalid {field}")

        match error["type"]:
            case "missing":
                message = f"Required field '{field}' is missing"
            case "json_invalid":
                message = "Invalid JSON format"

        error_messages.append(message)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Validation failed",
            "message": "; ".join(error_messages),
            "details": error_messages,
        },
    )


app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]


@app.exception_handler(MovieAPIError)
async def movie_api_exception_handler(request: Request, exc: MovieAPIError) -> JSONResponse:
    """Handle domain-specific errors."""
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc}")
    else:
        logger.warning(f"{exc.__class__.__name__} on {request.url.path}: {exc}")

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Request-ID": getattr(request.state, "request_id", "")},
    )


def get_services(request: Request) -> Services:
    """Get the services created at startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized")
    return services


ServicesDep = Annotated[Services, Depends(get_services)]
IdentityDep = Annotated[Identity, Depends(get_current_identity)]

router = APIRouter(prefix="/api")


# Auth


@router.post("/auth/register", tags=["auth"], status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.auth_rate_limit)
async def register_endpoint(
    request: Request, body: RegisterRequest, services: ServicesDep
) -> AuthResponse:
    """Create an account and return a token for it."""
    user = await services.accounts.register(body.username, body.email, body.password)
    return AuthResponse(token=create_token(user["id"]), user=UserOut(**user))


@router.post("/auth/login", tags=["auth"])
@limiter.limit(settings.auth_rate_limit)
async def login_endpoint(
    request: Request, body: LoginRequest, services: ServicesDep
) -> AuthResponse:
    """Exchange email and password for a token."""
    user = await services.accounts.authenticate(body.email, body.password)
    return AuthResponse(token=create_token(user["id"]), user=UserOut(**user))


@router.get("/auth/me", tags=["auth"])
async def me_endpoint(identity: IdentityDep, services: ServicesDep) -> UserOut:
    return UserOut(**await services.accounts.get_user(identity.user_id))


# Movies


@router.get("/movies", tags=["movies"])
async def list_movies_endpoint(
    services: ServicesDep,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    search: str | None = None,
    genre: str | None = None,
    year: int | None = Query(None, ge=1900, le=2100),
    sort: str | None = None,
) -> dict[str, Any]:
    """Browse the catalog with search, genre and year filters."""
    return await services.catalog.list_movies(
        search=search, genre=genre, year=year, page=page, limit=limit, sort=sort
    )


@router.post("/movies", tags=["movies"], status_code=status.HTTP_201_CREATED)
async def create_movie_endpoint(
    body: MovieDraft, identity: IdentityDep, services: ServicesDep
) -> dict[str, Any]:
    return await services.catalog.create_movie(identity, body.model_dump())  # type: ignore[return-value]


@router.post("/movies/import", tags=["movies"])
async def import_movies_endpoint(
    body: MovieImport, identity: IdentityDep, services: ServicesDep
) -> list[dict[str, Any]]:
    """Upsert already-fetched provider descriptors by their external id."""
    require_admin(identity)
    return [
        await services.catalog.upsert_from_descriptor(descriptor)  # type: ignore[misc]
        for descriptor in body.movies
    ]


@router.delete("/movies/bulk", tags=["movies"])
async def bulk_delete_movies_endpoint(
    body: MovieIds, identity: IdentityDep, services: ServicesDep
) -> DeletedResponse:
    deleted = await services.admin.bulk_delete_movies(identity, body.movie_ids)
    return DeletedResponse(message=f"{deleted} movies deleted successfully", deleted_count=deleted)


@router.get("/movies/{movie_id}", tags=["movies"])
async def get_movie_endpoint(movie_id: str, services: ServicesDep) -> dict[str, Any]:
    """Movie detail with its five most recent reviews."""
    return await services.catalog.get_movie(movie_id)


@router.put("/movies/{movie_id}", tags=["movies"])
async def update_movie_endpoint(
    movie_id: str, body: MoviePatch, identity: IdentityDep, services: ServicesDep
) -> dict[str, Any]:
    patch = body.model_dump(exclude_unset=True)
    return await services.catalog.update_movie(identity, movie_id, patch)  # type: ignore[return-value]


@router.delete("/movies/{movie_id}", tags=["movies"])
async def delete_movie_endpoint(
    movie_id: str, identity: IdentityDep, services: ServicesDep
) -> MessageResponse:
    await services.catalog.delete_movie(identity, movie_id)
    return MessageResponse(message="Movie deleted successfully")


@router.get("/movies/{movie_id}/reviews", tags=["reviews"])
async def list_movie_reviews_endpoint(
    movie_id: str,
    services: ServicesDep,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    sort: str = Query("newest", pattern="^(newest|oldest|highest|lowest)$"),
) -> dict[str, Any]:
    return await services.reviews.list_movie_reviews(movie_id, page, limit, sort)  # type: ignore[return-value]


@router.post(
    "/movies/{movie_id}/reviews", tags=["reviews"], status_code=status.HTTP_201_CREATED
)
@limiter.limit(settings.review_rate_limit)
async def create_review_endpoint(
    request: Request,
    movie_id: str,
    body: ReviewCreate,
    identity: IdentityDep,
    services: ServicesDep,
) -> dict[str, Any]:
    """Submit the caller's review of a movie."""
    return await services.reviews.submit_review(  # type: ignore[return-value]
        identity.user_id, movie_id, body.rating, body.title, body.content
    )


# Reviews


@router.get("/reviews", tags=["reviews"])
async def list_reviews_endpoint(
    services: ServicesDep,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
) -> dict[str, Any]:
    return await services.reviews.list_reviews(page, limit)  # type: ignore[return-value]


@router.delete("/reviews/bulk", tags=["reviews"])
async def bulk_delete_reviews_endpoint(
    body: ReviewIds, identity: IdentityDep, services: ServicesDep
) -> DeletedResponse:
    deleted = await services.reviews.bulk_delete(body.review_ids, identity)
    return DeletedResponse(
        message=f"{deleted} reviews deleted successfully", deleted_count=deleted
    )


@router.get("/reviews/{review_id}", tags=["reviews"])
async def get_review_endpoint(review_id: str, services: ServicesDep) -> dict[str, Any]:
    return await services.reviews.get_review(review_id)  # type: ignore[return-value]


@router.put("/reviews/{review_id}", tags=["reviews"])
async def update_review_endpoint(
    review_id: str, body: ReviewUpdate, identity: IdentityDep, services: ServicesDep
) -> dict[str, Any]:
    patch = body.model_dump(exclude_unset=True)
    return await services.reviews.edit_review(review_id, identity.user_id, patch)  # type: ignore[return-value]


@router.delete("/reviews/{review_id}", tags=["reviews"])
async def delete_review_endpoint(
    review_id: str, identity: IdentityDep, services: ServicesDep
) -> MessageResponse:
    await services.reviews.delete_review(review_id, identity)
    return MessageResponse(message="Review deleted successfully")


@router.post("/reviews/{review_id}/like", tags=["reviews"])
async def like_review_endpoint(
    review_id: str, identity: IdentityDep, services: ServicesDep
) -> VoteResponse:
    return VoteResponse(**await services.reviews.toggle_like(review_id, identity.user_id))


@router.post("/reviews/{review_id}/dislike", tags=["reviews"])
async def dislike_review_endpoint(
    review_id: str, identity: IdentityDep, services: ServicesDep
) -> VoteResponse:
    return VoteResponse(**await services.reviews.toggle_dislike(review_id, identity.user_id))


# Users


@router.put("/users/password", tags=["users"])
async def change_password_endpoint(
    body: PasswordChange, identity: IdentityDep, services: ServicesDep
) -> MessageResponse:
    await services.accounts.change_password(identity, body.current_password, body.new_password)
    return MessageResponse(message="Password updated successfully")


@router.get("/users/{user_id}", tags=["users"])
async def get_profile_endpoint(user_id: str, services: ServicesDep) -> dict[str, Any]:
    """Public profile with stats and recent reviews."""
    return await services.accounts.get_profile(user_id)


@router.put("/users/{user_id}", tags=["users"])
async def update_profile_endpoint(
    user_id: str, body: ProfileUpdate, identity: IdentityDep, services: ServicesDep
) -> UserOut:
    patch = body.model_dump(exclude_unset=True)
    return UserOut(**await services.accounts.update_profile(identity, user_id, patch))


@router.get("/users/{user_id}/watchlist", tags=["users"])
async def get_watchlist_endpoint(user_id: str, services: ServicesDep) -> list[dict[str, Any]]:
    return await services.relationships.list_watchlist(user_id)  # type: ignore[return-value]


@router.post(
    "/users/{user_id}/watchlist", tags=["users"], status_code=status.HTTP_201_CREATED
)
async def add_to_watchlist_endpoint(
    user_id: str, body: WatchlistAdd, identity: IdentityDep, services: ServicesDep
) -> dict[str, Any]:
    """Add a movie to the caller's own watchlist."""
    _require_self(identity, user_id)
    return await services.relationships.add_to_watchlist(user_id, body.movie_id)  # type: ignore[return-value]


@router.delete("/users/{user_id}/watchlist/{movie_id}", tags=["users"])
async def remove_from_watchlist_endpoint(
    user_id: str, movie_id: str, identity: IdentityDep, services: ServicesDep
) -> MessageResponse:
    _require_self(identity, user_id)
    await services.relationships.remove_from_watchlist(user_id, movie_id)
    return MessageResponse(message="Movie removed from watchlist")


@router.post("/users/{user_id}/follow", tags=["users"])
async def follow_endpoint(
    user_id: str, identity: IdentityDep, services: ServicesDep
) -> MessageResponse:
    """Follow ``user_id`` as the caller."""
    await services.relationships.follow(identity.user_id, user_id)
    return MessageResponse(message="User followed successfully")


@router.delete("/users/{user_id}/follow", tags=["users"])
async def unfollow_endpoint(
    user_id: str, identity: IdentityDep, services: ServicesDep
) -> MessageResponse:
    await services.relationships.unfollow(identity.user_id, user_id)
    return MessageResponse(message="User unfollowed successfully")


@router.get("/users/{user_id}/followers", tags=["users"])
async def followers_endpoint(user_id: str, services: ServicesDep) -> list[dict[str, Any]]:
    return await services.relationships.list_followers(user_id)  # type: ignore[return-value]


@router.get("/users/{user_id}/following", tags=["users"])
async def following_endpoint(user_id: str, services: ServicesDep) -> list[dict[str, Any]]:
    return await services.relationships.list_following(user_id)  # type: ignore[return-value]


@router.get("/users/{user_id}/reviews", tags=["users"])
async def user_reviews_endpoint(
    user_id: str,
    services: ServicesDep,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
) -> dict[str, Any]:
    return await services.reviews.list_user_reviews(user_id, page, limit)  # type: ignore[return-value]


# Admin


@router.get("/admin/stats", tags=["admin"])
async def stats_endpoint(identity: IdentityDep, services: ServicesDep) -> dict[str, Any]:
    return await services.admin.get_stats(identity)  # type: ignore[return-value]


@router.get("/admin/users", tags=["admin"])
async def admin_users_endpoint(
    identity: IdentityDep,
    services: ServicesDep,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    role: str | None = None,
    sort: str | None = None,
    order: str | None = Query(None, pattern="^(asc|desc)$"),
) -> dict[str, Any]:
    return await services.admin.list_users(  # type: ignore[return-value]
        identity, search=search, role=role, page=page, limit=limit, sort=sort, order=order
    )


@router.get("/admin/movies", tags=["admin"])
async def admin_movies_endpoint(
    identity: IdentityDep,
    services: ServicesDep,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    genre: str | None = None,
    year: int | None = None,
    sort: str | None = None,
    order: str | None = Query(None, pattern="^(asc|desc)$"),
) -> dict[str, Any]:
    return await services.admin.list_movies(  # type: ignore[return-value]
        identity,
        search=search,
        genre=genre,
        year=year,
        page=page,
        limit=limit,
        sort=sort,
        order=order,
    )


@router.get("/admin/reviews", tags=["admin"])
async def admin_reviews_endpoint(
    identity: IdentityDep,
    services: ServicesDep,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    movie_id: str | None = Query(None, alias="movieId"),
    author_id: str | None = Query(None, alias="userId"),
    sort: str | None = None,
    order: str | None = Query(None, pattern="^(asc|desc)$"),
) -> dict[str, Any]:
    return await services.admin.list_reviews(  # type: ignore[return-value]
        identity,
        search=search,
        movie_id=movie_id,
        author_id=author_id,
        page=page,
        limit=limit,
        sort=sort,
        order=order,
    )


@router.delete("/admin/users/bulk", tags=["admin"])
async def admin_bulk_delete_users_endpoint(
    body: UserIds, identity: IdentityDep, services: ServicesDep
) -> DeletedResponse:
    deleted = await services.admin.bulk_delete_users(identity, body.user_ids)
    return DeletedResponse(message=f"{deleted} users deleted successfully", deleted_count=deleted)


@router.patch("/admin/users/{user_id}/role", tags=["admin"])
async def admin_set_role_endpoint(
    user_id: str, body: RoleUpdate, identity: IdentityDep, services: ServicesDep
) -> UserOut:
    return UserOut(**await services.admin.set_user_role(identity, user_id, body.role))


@router.delete("/admin/users/{user_id}", tags=["admin"])
async def admin_delete_user_endpoint(
    user_id: str, identity: IdentityDep, services: ServicesDep
) -> MessageResponse:
    await services.admin.delete_user(identity, user_id)
    return MessageResponse(message="User and associated data deleted successfully")


def _require_self(identity: Identity, user_id: str) -> None:
    """Watchlists are only editable by their owner."""
    if identity.user_id != user_id:
        raise ForbiddenError("Access denied. You can only modify your own watchlist.")


app.include_router(router)


@app.get("/health", tags=["health"])
async def health_endpoint(
    response: Response,
    services: ServicesDep,
    detailed: bool = Query(False, description="Include detailed environment information"),
) -> dict[str, Any]:
    """Check health status of all components.

    Args:
        detailed: If True, includes version and environment information.

    """
    health = await services.health_check()
    all_healthy = all(health.values())

    if not all_healthy:
        response.status_code = 503

    result: dict[str, Any] = {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": health,
    }

    if detailed:
        result["version"] = __version__
        result["environment"] = {
            "environment": settings.environment,
            "rate_limit": settings.rate_limit,
        }

    return result


@app.get("/", tags=["health"])
async def root_endpoint() -> dict[str, str]:
    """API information endpoint."""
    return {
        "name": "Movie Reviews API",
        "version": __version__,
        "status": "running",
        "docs": "/docs",
    }


app.openapi_tags = [
    {"name": "auth", "description": "Registration and login"},
    {"name": "movies", "description": "Movie catalog"},
    {"name": "reviews", "description": "Reviews and votes"},
    {"name": "users", "description": "Profiles, watchlists and follows"},
    {"name": "admin", "description": "Back-office operations"},
    {"name": "health", "description": "Health checks"},
]


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    return app
