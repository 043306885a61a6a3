import logging
from typing import Optional

from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from analytics_proxy.analytics.config import TrackerConfig
from analytics_proxy.analytics.cookie import get_client_id
from analytics_proxy.analytics.dispatcher import Dispatcher
from analytics_proxy.analytics.hit import build_pageview
from analytics_proxy.analytics.recorder import ResponseRecorder
from analytics_proxy.analytics.title import get_title
from analytics_proxy.exceptions import ContentDecodeError

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> Optional[str]:
    """Returns the originating client address, preferring the first X-Forwarded-For entry."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


class Tracker:
    """ASGI middleware that reports a pageview for every request it serves.

    The wrapped app writes into a `ResponseRecorder` instead of the live
    connection. Once it has finished, the title is pulled from the recorded
    body, a pageview hit is handed to the dispatcher without waiting on it,
    and the recording is replayed to the client. The only visible change to
    the response is a Set-Cookie header carrying a newly issued client id.
    """

    def __init__(self, app: ASGIApp, config: TrackerConfig, dispatcher: Dispatcher) -> None:
        self.app = app
        self.config = config
        self.dispatcher = dispatcher

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        client_id, new_cookie = get_client_id(
            request.cookies,
            name=self.config.cookie_name,
            max_age=self.config.cookie_max_age,
        )

        recorder = ResponseRecorder()
        await self.app(scope, receive, recorder.send)

        title = self._extract_title(recorder)
        event = build_pageview(
            self.config,
            client_id=client_id,
            path=scope["path"],
            title=title,
            user_agent=request.headers.get("user-agent"),
            referrer=request.headers.get("referer"),
            client_ip=get_client_ip(request),
        )
        self.dispatcher.dispatch(event.payload)

        if new_cookie is not None:
            recorder.append_header("set-cookie", new_cookie.header_value())

        await recorder.replay(send)

    def _extract_title(self, recorder: ResponseRecorder) -> str:
        try:
            return get_title(recorder.headers, recorder.body)
        except ContentDecodeError as e:
            logger.warning(f"Could not decode response body for title extraction: {e}")
            return ""
