"""Service factory for dependency injection."""

from dataclasses import dataclass
from enum import Enum

from loguru import logger

from .accounts import AccountService
from .admin import AdminFacade
from .catalog import CatalogService
from .config import settings
from .ratings import RatingAggregator
from .relationships import RelationshipManager
from .reviews import ReviewLedger
from .storage import Repository, create_repository


class Environment(Enum):
    """Explicit environment types - no magic detection."""

    DEVELOPMENT = "development"
    DOCKER = "docker"
    LAMBDA = "lambda"


def detect_environment() -> Environment:
    """Detect current environment with explicit logic."""
    if settings.is_lambda_environment:
        return Environment.LAMBDA
    return Environment(settings.environment)


@dataclass
class Services:
    """Every domain service, wired to one shared repository."""

    repository: Repository
    accounts: AccountService
    catalog: CatalogService
    reviews: ReviewLedger
    ratings: RatingAggregator
    relationships: RelationshipManager
    admin: AdminFacade

    @classmethod
    def from_repository(cls, repository: Repository) -> "Services":
        aggregator = RatingAggregator(repository)
        return cls(
            repository=repository,
            accounts=AccountService(repository),
            catalog=CatalogService(repository),
            reviews=ReviewLedger(repository, aggregator),
            ratings=aggregator,
            relationships=RelationshipManager(repository),
            admin=AdminFacade(repository, aggregator),
        )

    async def health_check(self) -> dict[str, bool]:
        """Check health of all components."""
        return {"storage": await self.repository.health_check()}


class ServiceFactory:
    """Factory for creating configured Services instances."""

    @staticmethod
    async def create_for_environment(database_url: str | None = None) -> Services:
        """Create and start services for the current environment."""
        env = detect_environment()
        logger.info(f"Creating services for environment: {env.value}")

        repository = create_repository(database_url)
        await repository.startup()

        services = Services.from_repository(repository)
        logger.info(f"Services created successfully for {env.value}")
        return services

    @staticmethod
    async def shutdown_services(services: Services) -> None:
        """Clean shutdown of all service components."""
        logger.info("Shutting down services")

        try:
            await services.repository.shutdown()
            logger.debug("Repository shutdown complete")
        except (ConnectionError, TimeoutError, OSError) as e:
            logger.warning(f"Repository shutdown failed: {e}")

        logger.info("Services shutdown complete")


async def create_services(database_url: str | None = None) -> Services:
    """Create Services for current environment (convenience function)."""
    return await ServiceFactory.create_for_environment(database_url)
