"""Rating aggregation: keeps each movie's derived rating fields honest."""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from loguru import logger

from .storage import Repository
from .types import Aggregate


def round_rating(total: int, count: int) -> float:
    """Mean of ``count`` ratings summing to ``total``, to one decimal place.

    Ties round half away from zero (4.25 -> 4.3), unlike ``round()``.
    """
    if count == 0:
        return 0.0
    mean = Decimal(total) / Decimal(count)
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def compute_aggregate(ratings: Iterable[int]) -> Aggregate:
    """Compute the average rating and review count for a set of ratings."""
    values = list(ratings)
    return {
        "average_rating": round_rating(sum(values), len(values)),
        "total_reviews": len(values),
    }


class RatingAggregator:
    """Recomputes a movie's aggregate from its full current review set.

    A refresh always re-reads every rating, so overlapping refreshes for the
    same movie converge on the true aggregate instead of drifting the way
    incremental counters would.
    """

    def __init__(self, repository: Repository) -> None:
        """Initialize with injected repository."""
        self.repository = repository

    async def refresh(self, movie_id: str) -> Aggregate | None:
        """Recompute and store the aggregate; None if the movie is gone."""
        ratings = await self.repository.get_movie_ratings(movie_id)
        aggregate = compute_aggregate(ratings)

        stored = await self.repository.set_movie_aggregate(
            movie_id, aggregate["average_rating"], aggregate["total_reviews"]
        )
        if not stored:
            logger.debug(f"Skipped aggregate refresh for missing movie {movie_id}")
            return None

        logger.debug(
            f"Refreshed movie {movie_id}: average={aggregate['average_rating']}, "
            f"total={aggregate['total_reviews']}"
        )
        return aggregate

    async def refresh_many(self, movie_ids: Iterable[str]) -> None:
        """Refresh each distinct movie exactly once."""
        for movie_id in dict.fromkeys(movie_ids):
            await self.refresh(movie_id)
