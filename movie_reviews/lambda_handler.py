"""AWS Lambda handler for the Movie Reviews API."""

import asyncio
from typing import Any

from loguru import logger
from mangum import Mangum

from .api import app, configure_logging
from .factory import ServiceFactory

# Mangum's lifespan cycle would start and stop the services around every
# invocation, so it stays off and the services live as long as the container
handler = Mangum(app, lifespan="off")


def _ensure_services() -> None:
    """Create the services on the first invocation of this container."""
    if getattr(app.state, "services", None) is not None:
        return
    configure_logging()
    # Mangum runs every invocation on this same loop
    loop = asyncio.get_event_loop()
    app.state.services = loop.run_until_complete(ServiceFactory.create_for_environment())
    logger.info("Lambda services initialized")


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """AWS Lambda entry point.

    Args:
        event: Lambda event dictionary containing request information.
        context: Lambda context object with runtime information.

    Returns:
        Response dictionary with statusCode, headers, and body.
    """
    _ensure_services()

    logger.info(
        "Lambda request: {} {}",
        event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method"),
        event.get("path") or event.get("rawPath"),
    )

    response = handler(event, context)

    logger.info("Lambda response status: {}", response.get("statusCode"))

    return response  # type: ignore[no-any-return]
