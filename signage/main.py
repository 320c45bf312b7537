import asyncio
import logging
import signal
import sys
import uvicorn

from .config import settings
from .state import StateManager
from .clients.drive_client import DriveClient
from .mirror import FolderMirror, MirrorInitError
from . import server

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("google").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class MirrorService:
    def __init__(self):
        self.state_manager = StateManager(settings.STATE_PATH)
        self.drive = DriveClient()
        self.mirror = FolderMirror(self.drive, state_manager=self.state_manager)

        # Link state to server module
        server.state_manager = self.state_manager
        server.mirror = self.mirror

    async def setup(self):
        # Fatal: never start mirroring against a broken remote or directory
        await self.mirror.initialize()

    async def start(self):
        await self.setup()

        if self.mirror.paused and not settings.HTTP_SERVER_ENABLED:
            # Nothing could resume it without the status API
            logger.warning("Ignoring persisted pause: HTTP server is disabled")
            self.mirror.paused = False
            self.state_manager.set_paused(False)

        try:
            await self.mirror.start_sync(settings.SYNC_INTERVAL_SECONDS)
        except Exception as e:
            # The schedule stays installed; later passes may recover
            logger.error(f"Initial sync failed: {e}", exc_info=True)

        try:
            if settings.HTTP_SERVER_ENABLED:
                config = uvicorn.Config(server.app, host="0.0.0.0", port=settings.HTTP_SERVER_PORT, log_level="warning")
                await uvicorn.Server(config).serve()
            else:
                await asyncio.Event().wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.mirror.aclose()
            await self.drive.aclose()
            self.state_manager.save()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

if __name__ == "__main__":
    signal.signal(signal.SIGTERM, handle_sigterm)
    service = MirrorService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except MirrorInitError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)
