import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from analytics_proxy.analytics.dispatcher import Dispatcher
from analytics_proxy.analytics.tracker import Tracker
from analytics_proxy.core.dependencies import initialize_app_dependencies
from analytics_proxy.proxy.server import router as proxy_router
from analytics_proxy.settings import Settings
from analytics_proxy.version import __version__

logger = logging.getLogger(__name__)

# How long shutdown waits for pageview hits that are still in flight.
SHUTDOWN_DRAIN_TIMEOUT = 5.0


def create_app(settings: Optional[Settings] = None, dispatcher: Optional[Dispatcher] = None) -> FastAPI:
    """Build the proxy application.

    Every request is relayed to the upstream by the proxy router, wrapped in
    the Tracker middleware which reports a pageview for it.

    Args:
        settings: Application settings. Loaded from the environment when omitted.
        dispatcher: Pageview dispatcher. Built from the tracker configuration when omitted.

    Returns:
        The configured FastAPI application.
    """
    app_settings = settings or Settings()
    tracker_config = app_settings.get_tracker_config()
    pageview_dispatcher = dispatcher or Dispatcher.from_config(tracker_config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage the lifespan of the application resources.

        Creates the upstream HTTP client on startup, and on shutdown closes it
        and drains any pageview hits still in flight.
        """
        logger.info(f"analytics-proxy version {__version__}")
        logger.info(
            f"proxying traffic to {app_settings.get_upstream_endpoint()} ({app_settings.get_upstream_hostname()})"
        )
        if tracker_config.dry_run:
            logger.info(f"skipping analytics for {tracker_config.tracking_id} ({tracker_config.property_name})")
        else:
            logger.info(f"tracking analytics for {tracker_config.tracking_id} ({tracker_config.property_name})")

        dependencies = initialize_app_dependencies(app_settings, pageview_dispatcher)
        app.state.dependencies = dependencies

        yield  # Application runs here

        logger.info("Application shutdown sequence initiated.")
        await dependencies.http_client.aclose()
        logger.info("Upstream HTTP Client closed.")
        await dependencies.dispatcher.aclose(timeout=SHUTDOWN_DRAIN_TIMEOUT)
        logger.info(
            f"Pageview dispatcher closed (sent={pageview_dispatcher.stats.sent}, "
            f"failed={pageview_dispatcher.stats.failed}, skipped={pageview_dispatcher.stats.skipped})."
        )

    app = FastAPI(
        title="Analytics Proxy",
        description="A transparent reverse proxy that reports pageviews to Google Analytics.",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(Tracker, config=tracker_config, dispatcher=pageview_dispatcher)
    app.include_router(proxy_router)
    return app
