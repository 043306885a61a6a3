import os
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from analytics_proxy.analytics.config import (
    DEFAULT_COLLECTOR_ENDPOINT,
    DEFAULT_COOKIE_MAX_AGE,
    DEFAULT_COOKIE_NAME,
    DEFAULT_DISPATCH_TIMEOUT,
    TrackerConfig,
)

# Load .env file variables into environment
load_dotenv(verbose=True)

# Values accepted as booleans, matching the vocabulary of Go's strconv.ParseBool.
_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parses a boolean flag, returning the default for missing or unrecognized values."""
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


class Settings:
    """Application configuration settings loaded from environment variables."""

    # --- Listener Settings ---
    def get_listen_address(self) -> str:
        """Returns the host:port the proxy listens on."""
        return os.getenv("LISTEN", "0.0.0.0:8080")  # nosec B104

    def get_app_host(self) -> str:
        host, _, _ = self.get_listen_address().rpartition(":")
        return host or "0.0.0.0"  # nosec B104

    def get_app_port(self) -> int:
        """Returns the listen port as an integer."""
        listen = self.get_listen_address()
        _, _, port_str = listen.rpartition(":")
        try:
            return int(port_str)
        except ValueError:
            raise ValueError(f"LISTEN environment variable must end with a port number, got: {listen}")

    def get_ssl_keyfile(self) -> str | None:
        return os.getenv("SSL_KEYFILE")

    def get_ssl_certfile(self) -> str | None:
        return os.getenv("SSL_CERTFILE")

    # --- Upstream Settings ---
    def get_upstream_endpoint(self) -> str:
        """Returns the upstream endpoint URL that traffic is proxied to."""
        url = os.getenv("UPSTREAM_ENDPOINT")
        if not url:
            raise ValueError("UPSTREAM_ENDPOINT environment variable is required.")
        parsed = urlparse(url)
        if not all([parsed.scheme, parsed.netloc]):
            raise ValueError(f"Invalid UPSTREAM_ENDPOINT format: {url}")
        return url

    def get_upstream_hostname(self) -> str:
        """Returns the Host header used for upstream requests.

        Falls back to the analytics property name, then to the host of the
        upstream endpoint itself.
        """
        hostname = os.getenv("UPSTREAM_HOSTNAME")
        if hostname:
            return hostname
        property_name = self.get_property_name()
        if property_name:
            return property_name
        return urlparse(self.get_upstream_endpoint()).netloc

    def get_upstream_timeout(self) -> float:
        """Returns the read timeout in seconds for upstream requests."""
        try:
            return float(os.getenv("UPSTREAM_TIMEOUT", "60"))
        except ValueError:
            raise ValueError("UPSTREAM_TIMEOUT environment variable must be a number.")

    # --- Analytics Settings ---
    def get_tracking_id(self) -> str:
        """Returns the Google Analytics tracking id, e.g. UA-123456789-1."""
        return os.getenv("GOOGLE_ANALYTICS_TRACKING_ID", "")

    def get_property_name(self) -> str:
        """Returns the Google Analytics property name, e.g. example.com."""
        return os.getenv("GOOGLE_ANALYTICS_PROPERTY_NAME", "")

    def get_dry_run(self) -> bool:
        """Returns True if pageview reporting is disabled. Unparsable values count as False."""
        return parse_bool(os.getenv("GOOGLE_ANALYTICS_DRY_RUN"))

    def get_collector_endpoint(self) -> str:
        url = os.getenv("GOOGLE_ANALYTICS_ENDPOINT", DEFAULT_COLLECTOR_ENDPOINT)
        parsed = urlparse(url)
        if not all([parsed.scheme, parsed.netloc]):
            raise ValueError(f"Invalid GOOGLE_ANALYTICS_ENDPOINT format: {url}")
        return url

    def get_cookie_name(self) -> str:
        return os.getenv("ANALYTICS_COOKIE_NAME", DEFAULT_COOKIE_NAME)

    def get_cookie_max_age(self) -> int:
        """Returns the identity cookie lifetime in seconds."""
        try:
            return int(os.getenv("ANALYTICS_COOKIE_MAX_AGE", str(DEFAULT_COOKIE_MAX_AGE)))
        except ValueError:
            raise ValueError("ANALYTICS_COOKIE_MAX_AGE environment variable must be an integer.")

    def get_dispatch_timeout(self) -> float:
        """Returns the timeout in seconds for a single pageview dispatch."""
        try:
            return float(os.getenv("ANALYTICS_DISPATCH_TIMEOUT", str(DEFAULT_DISPATCH_TIMEOUT)))
        except ValueError:
            raise ValueError("ANALYTICS_DISPATCH_TIMEOUT environment variable must be a number.")

    def get_tracker_config(self) -> TrackerConfig:
        """Builds the immutable tracking configuration from the environment."""
        return TrackerConfig(
            tracking_id=self.get_tracking_id(),
            property_name=self.get_property_name(),
            collector_endpoint=self.get_collector_endpoint(),
            dry_run=self.get_dry_run(),
            cookie_name=self.get_cookie_name(),
            cookie_max_age=self.get_cookie_max_age(),
            dispatch_timeout=self.get_dispatch_timeout(),
        )

    # --- Logging Settings ---
    def get_log_level(self, default: str = "INFO") -> str:
        """Gets the configured log level, defaulting if not set."""
        return os.getenv("LOG_LEVEL", default).upper()
