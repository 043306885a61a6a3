import logging

import httpx
from fastapi import HTTPException, Request, status

from analytics_proxy.analytics.dispatcher import Dispatcher
from analytics_proxy.core.dependency_container import DependencyContainer
from analytics_proxy.settings import Settings

logger = logging.getLogger(__name__)

# --- Dependency Providers --- #


def get_dependencies(request: Request) -> DependencyContainer:
    """Dependency to retrieve the DependencyContainer from application state."""
    dependencies: DependencyContainer | None = getattr(request.app.state, "dependencies", None)
    if dependencies is None:
        logger.critical(
            "DependencyContainer not found in application state. "
            "This indicates a critical setup error in the application lifespan."
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: Application dependencies not initialized.",
        )
    return dependencies


def initialize_app_dependencies(app_settings: Settings, dispatcher: Dispatcher) -> DependencyContainer:
    """Initialize and configure core application dependencies.

    Args:
        app_settings: The application settings instance.
        dispatcher: The pageview dispatcher shared with the tracker middleware.

    Returns:
        A DependencyContainer instance populated with initialized dependencies.

    Raises:
        RuntimeError: If initialization of the HTTP client fails.
    """
    logger.info("Initializing core application dependencies...")

    try:
        timeout = httpx.Timeout(5.0, connect=5.0, read=app_settings.get_upstream_timeout(), write=5.0)
        # Redirects are relayed to the client as-is, never followed.
        http_client = httpx.AsyncClient(timeout=timeout, follow_redirects=False)
    except ValueError as e:
        logger.critical(f"Failed to initialize upstream HTTP client: {e}")
        raise RuntimeError(f"Failed to initialize upstream HTTP client: {e}") from e
    logger.info("HTTP Client initialized for DependencyContainer.")

    dependencies = DependencyContainer(
        settings=app_settings,
        http_client=http_client,
        dispatcher=dispatcher,
    )
    logger.info("Dependency Container created successfully.")
    return dependencies
