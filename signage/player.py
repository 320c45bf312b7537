import asyncio
import logging
import signal
import sys

from .config import settings
from .channel import LiveUpdateChannel
from .clients.status_client import ServerStatusClient
from .models import ChannelView

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("websockets").setLevel(logging.WARNING)

logger = logging.getLogger("player")

class PlayerService:
    """Headless carousel driver: keeps the live update channel connected while the server is reachable."""

    def __init__(self):
        self.status = ServerStatusClient()
        # Not reachable until the first health check says otherwise
        self.channel = LiveUpdateChannel(server_reachable=False)
        self.channel.add_listener(self.log_change)
        self._last_seen = None

    def log_change(self, view: ChannelView):
        current = view.current_item.id if view.current_item else None
        seen = (view.connection_state, current, view.total_items)
        if seen == self._last_seen:
            return
        self._last_seen = seen
        logger.info(
            f"Channel {view.connection_state.value}: "
            f"{view.total_items} items, current={current}, ready={view.server_ready}"
        )

    async def start(self):
        try:
            await self.status.watch(self.channel.set_server_reachable)
        except asyncio.CancelledError:
            pass
        finally:
            await self.channel.aclose()
            await self.status.aclose()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

if __name__ == "__main__":
    signal.signal(signal.SIGTERM, handle_sigterm)
    service = PlayerService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
