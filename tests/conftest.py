import httpx
import pytest
from analytics_proxy.analytics.config import TrackerConfig
from analytics_proxy.analytics.dispatcher import Dispatcher

from tests.helpers.asgi import StubCollector

# Environment variables read by Settings. Cleared for every test so a developer's
# shell or .env file cannot leak into assertions.
SETTINGS_ENV_VARS = [
    "LISTEN",
    "UPSTREAM_ENDPOINT",
    "UPSTREAM_HOSTNAME",
    "UPSTREAM_TIMEOUT",
    "GOOGLE_ANALYTICS_TRACKING_ID",
    "GOOGLE_ANALYTICS_PROPERTY_NAME",
    "GOOGLE_ANALYTICS_DRY_RUN",
    "GOOGLE_ANALYTICS_ENDPOINT",
    "ANALYTICS_COOKIE_NAME",
    "ANALYTICS_COOKIE_MAX_AGE",
    "ANALYTICS_DISPATCH_TIMEOUT",
    "LOG_LEVEL",
    "SSL_KEYFILE",
    "SSL_CERTFILE",
]

COLLECTOR_URL = "https://collector.test/collect"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """AUTOUSE: Removes every variable Settings reads from the environment."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def collector() -> StubCollector:
    return StubCollector()


@pytest.fixture
def tracker_config() -> TrackerConfig:
    return TrackerConfig(
        tracking_id="UA-123456789-1",
        property_name="example.com",
        collector_endpoint=COLLECTOR_URL,
    )


@pytest.fixture
def dispatcher(collector: StubCollector, tracker_config: TrackerConfig) -> Dispatcher:
    """A live (non dry-run) dispatcher whose hits land in the stub collector."""
    client = httpx.AsyncClient(transport=collector.transport)
    return Dispatcher.from_config(tracker_config, client=client)
