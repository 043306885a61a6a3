from typing import Dict, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field

from analytics_proxy.analytics.config import TrackerConfig

# Measurement Protocol version.
# See: https://developers.google.com/analytics/devguides/collection/protocol/v1/parameters
PROTOCOL_VERSION = "1"

HIT_TYPE_PAGEVIEW = "pageview"


class PageviewEvent(BaseModel):
    """A single pageview hit, built fresh for every proxied request."""

    model_config = ConfigDict(frozen=True)

    tracking_id: str
    property_name: str
    client_id: str
    path: str
    title: str = Field(default="")
    user_agent: Optional[str] = Field(default=None)
    referrer: Optional[str] = Field(default=None)
    client_ip: Optional[str] = Field(default=None)

    def to_params(self) -> Dict[str, str]:
        """Returns the Measurement Protocol fields for this hit."""
        params = {
            "v": PROTOCOL_VERSION,
            "t": HIT_TYPE_PAGEVIEW,
            "tid": self.tracking_id,
            "cid": self.client_id,
            "dh": self.property_name,
            "dp": self.path,
            "dt": self.title,
        }
        if self.user_agent:
            params["ua"] = self.user_agent
        if self.referrer:
            params["dr"] = self.referrer
        if self.client_ip:
            params["uip"] = self.client_ip
        return params

    @property
    def payload(self) -> bytes:
        """The form-encoded request body expected by the collector."""
        return urlencode(self.to_params()).encode("ascii")


def build_pageview(
    config: TrackerConfig,
    client_id: str,
    path: str,
    title: str,
    user_agent: Optional[str] = None,
    referrer: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> PageviewEvent:
    return PageviewEvent(
        tracking_id=config.tracking_id,
        property_name=config.property_name,
        client_id=client_id,
        path=path,
        title=title,
        user_agent=user_agent,
        referrer=referrer,
        client_ip=client_ip,
    )
