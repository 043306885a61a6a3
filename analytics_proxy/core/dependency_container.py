# Dependency Injection Container.

import httpx

from analytics_proxy.analytics.dispatcher import Dispatcher
from analytics_proxy.settings import Settings


class DependencyContainer:
    """Holds shared dependencies for the application.

    This class is responsible for holding all shared dependencies for the application.
    It is used to inject dependencies into the application and to make it easier to mock dependencies for testing.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        dispatcher: Dispatcher,
    ) -> None:
        """
        Initializes the container.

        Args:
            settings: Application settings.
            http_client: Shared asynchronous HTTP client used to reach the upstream.
            dispatcher: Delivers pageview hits to the analytics collector.
        """
        self.settings = settings
        self.http_client = http_client
        self.dispatcher = dispatcher
