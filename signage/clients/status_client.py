import asyncio
import logging
from typing import Callable, Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

class ServerStatusClient:
    """Polls the signage server health endpoint and reports reachability changes."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        health_path: Optional[str] = None,
        poll_interval: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.client = httpx.AsyncClient(
            base_url=(base_url or settings.SERVER_BASE_URL).rstrip('/'),
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport
        )
        self.health_path = health_path or settings.SERVER_HEALTH_PATH
        self.poll_interval = poll_interval if poll_interval is not None else settings.SERVER_STATUS_POLL_SECONDS
        self.reachable = False
        self.running = True

    async def check(self) -> bool:
        try:
            resp = await self.client.get(self.health_path)
            return resp.is_success
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    async def watch(self, on_change: Callable[[bool], None]):
        """Polls until stopped, calling on_change whenever reachability flips (and once at start)."""
        first = True
        while self.running:
            reachable = await self.check()
            if first or reachable != self.reachable:
                self.reachable = reachable
                logger.info(f"Server {'reachable' if reachable else 'unreachable'}")
                on_change(reachable)
                first = False
            await asyncio.sleep(self.poll_interval)

    def stop(self):
        self.running = False

    async def aclose(self):
        self.stop()
        await self.client.aclose()
