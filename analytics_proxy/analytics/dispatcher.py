import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Set

import httpx

from analytics_proxy.analytics.config import DEFAULT_DISPATCH_TIMEOUT, TrackerConfig

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass
class DispatchStats:
    """Counters describing what happened to dispatched hits."""

    sent: int = 0
    failed: int = 0
    skipped: int = 0


class Dispatcher:
    """Fire-and-forget delivery of pageview hits to the analytics collector.

    Each call to `dispatch` makes a single best-effort POST in a detached
    task. Callers never wait for the outcome, failures are logged and
    counted in `stats`, and nothing is retried.
    """

    def __init__(
        self,
        endpoint: str,
        dry_run: bool = False,
        timeout: float = DEFAULT_DISPATCH_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            endpoint: The collector URL hits are POSTed to.
            dry_run: If True, hits are dropped without any network activity.
            timeout: Deadline in seconds for a single POST, from connecting until
                the whole response has been read.
            client: Optional HTTP client to send with. When omitted the
                dispatcher creates and owns one.
        """
        self.endpoint = endpoint
        self.dry_run = dry_run
        self.timeout_seconds = timeout
        self.timeout = httpx.Timeout(timeout)
        self.stats = DispatchStats()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.timeout)
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: TrackerConfig, client: Optional[httpx.AsyncClient] = None) -> "Dispatcher":
        return cls(
            endpoint=config.collector_endpoint,
            dry_run=config.dry_run,
            timeout=config.dispatch_timeout,
            client=client,
        )

    @property
    def pending(self) -> int:
        """Number of hits still in flight."""
        return len(self._pending)

    def dispatch(self, payload: bytes) -> Optional[asyncio.Task]:
        """Schedules delivery of a hit payload without waiting for it.

        Must be called from within a running event loop.

        Returns:
            The detached task sending the hit, or None in dry-run mode.
        """
        if self.dry_run:
            self.stats.skipped += 1
            logger.debug(f"Dry run, skipping pageview hit: {payload.decode('ascii', errors='replace')}")
            return None

        task = asyncio.create_task(self._send(payload))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _post(self, payload: bytes) -> httpx.Response:
        return await self._client.post(
            self.endpoint,
            content=payload,
            headers={"Content-Type": FORM_CONTENT_TYPE},
            timeout=self.timeout,
        )

    async def _send(self, payload: bytes) -> None:
        try:
            # Bounds the whole exchange; httpx timeouts only bound each phase.
            response = await asyncio.wait_for(self._post(payload), self.timeout_seconds)
            response.raise_for_status()
        except asyncio.TimeoutError:
            self.stats.failed += 1
            logger.warning(f"Pageview hit to {self.endpoint} timed out after {self.timeout_seconds}s")
            return
        except httpx.HTTPStatusError as e:
            self.stats.failed += 1
            logger.warning(f"Collector rejected pageview hit with status {e.response.status_code}")
            return
        except httpx.HTTPError as e:
            self.stats.failed += 1
            logger.warning(f"Failed to send pageview hit to {self.endpoint}: {e.__class__.__name__}: {e}")
            return

        self.stats.sent += 1
        logger.debug(f"Sent pageview hit, collector responded {response.status_code}")

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            self.stats.failed += 1
            logger.warning("Pageview hit was cancelled before delivery")
            return
        exc = task.exception()
        if exc is not None:
            self.stats.failed += 1
            logger.error(f"Unexpected error sending pageview hit: {exc}", exc_info=exc)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Waits for in-flight hits to finish, cancelling whatever is left after the timeout."""
        if not self._pending:
            return
        pending = list(self._pending)
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning(f"Cancelled {len(not_done)} pageview hits still in flight")
            await asyncio.wait(not_done)

    async def aclose(self, timeout: Optional[float] = None) -> None:
        """Drains in-flight hits and closes the HTTP client if this dispatcher created it."""
        await self.drain(timeout=timeout)
        if self._owns_client:
            await self._client.aclose()
