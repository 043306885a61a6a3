from pydantic import BaseModel, ConfigDict, Field

# Cookie used to pseudonymously identify a client across requests.
DEFAULT_COOKIE_NAME = "_gap"

# Two years, in seconds.
# See: https://developers.google.com/analytics/devguides/collection/analyticsjs/cookies-user-id#configuring_cookie_field_settings
DEFAULT_COOKIE_MAX_AGE = 60 * 60 * 24 * 365 * 2

DEFAULT_COLLECTOR_ENDPOINT = "https://www.google-analytics.com/collect"

DEFAULT_DISPATCH_TIMEOUT = 5.0


class TrackerConfig(BaseModel):
    """Process-wide tracking configuration.

    Built once at startup and shared by reference with the tracker middleware
    and the dispatcher. Instances are frozen.
    """

    model_config = ConfigDict(frozen=True)

    tracking_id: str = Field(default="")
    property_name: str = Field(default="")
    collector_endpoint: str = Field(default=DEFAULT_COLLECTOR_ENDPOINT)
    dry_run: bool = Field(default=False)
    cookie_name: str = Field(default=DEFAULT_COOKIE_NAME)
    cookie_max_age: int = Field(default=DEFAULT_COOKIE_MAX_AGE, gt=0)
    dispatch_timeout: float = Field(default=DEFAULT_DISPATCH_TIMEOUT, gt=0)
