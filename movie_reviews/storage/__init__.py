"""Storage module with factory for creating repository instances."""

import os
from urllib.parse import urlparse

from loguru import logger

from ..config import settings
from .dynamodb import DynamoDBRepository
from .protocols import Repository
from .sql import SQLRepository


def create_repository(database_url: str | None = None) -> Repository:
    """Create repository instance based on database URL.

    Args:
        database_url: Database URL. Uses settings if not provided.

    Returns:
        Repository instance.
    """
    url = database_url or settings.effective_database_url

    # Auto-detect AWS environment
    if not database_url and os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
        url = f"dynamodb://{settings.dynamodb_table}?region={settings.aws_region}"
        logger.info(f"AWS Lambda detected, using DynamoDB: {settings.dynamodb_table}")

    parsed = urlparse(url)

    if parsed.scheme == "dynamodb":
        logger.info("Creating DynamoDB repository")
        return DynamoDBRepository(url)
    logger.info("Creating SQL repository")
    return SQLRepository(url)


__all__ = [
    "DynamoDBRepository",
    "Repository",
    "SQLRepository",
    "create_repository",
]
