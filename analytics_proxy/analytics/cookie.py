import http.cookies
import uuid
from typing import Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from analytics_proxy.analytics.config import DEFAULT_COOKIE_MAX_AGE, DEFAULT_COOKIE_NAME


class IdentityCookie(BaseModel):
    """A client cookie used to pseudonymously identify a user across multiple requests."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    max_age: int
    path: str = "/"
    samesite: str = "lax"

    def header_value(self) -> str:
        """Renders the cookie as the value of a Set-Cookie header."""
        cookie: http.cookies.SimpleCookie = http.cookies.SimpleCookie()
        cookie[self.name] = self.value
        cookie[self.name]["max-age"] = self.max_age
        cookie[self.name]["path"] = self.path
        cookie[self.name]["samesite"] = self.samesite
        return cookie.output(header="").strip()


def _is_valid_client_id(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def get_client_id(
    cookies: Mapping[str, str],
    name: str = DEFAULT_COOKIE_NAME,
    max_age: int = DEFAULT_COOKIE_MAX_AGE,
) -> Tuple[str, Optional[IdentityCookie]]:
    """Returns the client id carried by the request cookies, or a new one.

    If the named cookie holds a valid id it is returned along with ``None``,
    since there is nothing to set. Otherwise a fresh UUID (version 4) is
    generated and returned with the cookie that should be attached to the
    response.
    See: https://developers.google.com/analytics/devguides/collection/protocol/v1/parameters#cid
    """
    existing = cookies.get(name)
    if existing and _is_valid_client_id(existing):
        return existing, None

    cookie = IdentityCookie(name=name, value=str(uuid.uuid4()), max_age=max_age)
    return cookie.value, cookie
