import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Protocol, Union
from urllib.parse import urlsplit, urlunsplit

import websockets
from pydantic import ValidationError

from .config import settings
from .models import ChannelMessage, ChannelView, ConnectionState, MediaItem
from .playlist import Direction, Playlist

logger = logging.getLogger(__name__)

PLAYLIST_MESSAGE_TYPES = {"mediaList", "mediaUpdate"}
PING_MESSAGE = json.dumps({"type": "ping"})

class Connection(Protocol):
    def __aiter__(self) -> AsyncIterator[Union[str, bytes]]: ...
    async def send(self, message: str) -> Any: ...
    async def close(self) -> Any: ...

Connector = Callable[[str], Awaitable[Connection]]

def build_channel_url(base_url: str, path: Optional[str] = None) -> str:
    """Derives the ws:// or wss:// endpoint from the server's http(s) base URL."""
    parts = urlsplit(base_url)
    scheme = "wss" if parts.scheme in ("https", "wss") else "ws"
    path = path or "/ws"
    if not path.startswith("/"):
        path = "/" + path
    return urlunsplit((scheme, parts.netloc, path, "", ""))

async def websocket_connector(url: str) -> Connection:
    return await websockets.connect(url)

class LiveUpdateChannel:
    """
    Best-effort persistent connection to the signage server.

    Owns the socket, the reconnect timer and the keep-alive task. Each socket
    event maps to one transition method (on_open, on_message, on_error,
    on_close) so the state machine can be driven without a live server.
    Must be used from inside a running event loop.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        connector: Optional[Connector] = None,
        max_reconnect_attempts: Optional[int] = None,
        reconnect_interval: Optional[float] = None,
        ping_interval: Optional[float] = None,
        active: bool = True,
        server_reachable: bool = True
    ):
        self.url = url or build_channel_url(settings.SERVER_BASE_URL, settings.WS_PATH)
        self.connector = connector or websocket_connector
        self.max_reconnect_attempts = (
            max_reconnect_attempts if max_reconnect_attempts is not None else settings.WS_MAX_RECONNECT_ATTEMPTS
        )
        self.reconnect_interval = (
            reconnect_interval if reconnect_interval is not None else settings.WS_RECONNECT_INTERVAL_SECONDS
        )
        self.ping_interval = ping_interval if ping_interval is not None else settings.WS_PING_INTERVAL_SECONDS

        self.active = active
        self.server_reachable = server_reachable
        self.playlist = Playlist()
        self.loading = True
        self.connection_state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0

        self._connected_once = False
        self._connection: Optional[Connection] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Callable[[ChannelView], None]] = []

    # Exposed state

    @property
    def current_item(self) -> Optional[MediaItem]:
        return self.playlist.current

    @property
    def total_items(self) -> int:
        return len(self.playlist)

    @property
    def server_ready(self) -> bool:
        # Sticky: stays true once connected or once any items have arrived
        return self._connected_once or len(self.playlist) > 0

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None and not self._reconnect_handle.cancelled()

    def view(self) -> ChannelView:
        return ChannelView(
            current_item=self.current_item,
            loading=self.loading,
            server_ready=self.server_ready,
            connection_state=self.connection_state,
            total_items=self.total_items
        )

    def add_listener(self, callback: Callable[[ChannelView], None]):
        self._listeners.append(callback)

    def navigate(self, direction: Union[Direction, str]):
        if not self.playlist.items:
            return
        self.playlist.navigate(direction)
        self._notify()

    # Activation

    def set_active(self, active: bool):
        self.active = active
        self._apply_activation()

    def set_server_reachable(self, reachable: bool):
        self.server_reachable = reachable
        self._apply_activation()

    def deactivate(self):
        self.set_active(False)

    async def aclose(self):
        """Deactivates and waits for the socket to be released."""
        task = self._reader_task
        self.deactivate()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _apply_activation(self):
        if self.active and self.server_reachable:
            self.connect()
            return
        self._cancel_reconnect()
        self._drop_connection()
        if self.connection_state is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

    # Transitions

    def connect(self):
        self._cancel_reconnect()
        if not self.active or not self.server_reachable:
            return
        if self.connection_state is ConnectionState.CONNECTED and self._connection is not None:
            return

        # Close any stale connection first
        self._drop_connection()

        logger.info(f"Attempting live update connection to {self.url}")
        self._set_state(ConnectionState.CONNECTING)
        self._reader_task = asyncio.get_running_loop().create_task(self._run())

    def on_open(self):
        logger.info("Live update channel connected")
        self._connected_once = True
        self.reconnect_attempts = 0
        self._cancel_reconnect()
        self._start_keepalive()
        self._set_state(ConnectionState.CONNECTED)

    def on_message(self, raw: Union[str, bytes]):
        try:
            message = ChannelMessage.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Error processing live update message: {e}")
            return

        logger.debug(f"Received live update message: {message.type}")
        if message.type not in PLAYLIST_MESSAGE_TYPES:
            return
        if message.media is None:
            logger.warning(f"Ignoring {message.type} message without media")
            return

        self.playlist.replace(message.media)
        self.loading = False
        self._notify()

    def on_error(self, error: BaseException):
        logger.warning(f"Live update channel error: {error}")
        self._set_state(ConnectionState.ERROR)

    def on_close(self):
        logger.info("Live update connection closed")
        self._connection = None
        self._stop_keepalive()
        self._set_state(ConnectionState.DISCONNECTED)

        if self.active and self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            logger.info(
                f"Will attempt to reconnect... ({self.reconnect_attempts}/{self.max_reconnect_attempts})"
            )
            self._cancel_reconnect()
            self._reconnect_handle = asyncio.get_running_loop().call_later(
                self.reconnect_interval, self.connect
            )

    # Internals

    async def _run(self):
        try:
            conn = await self.connector(self.url)
        except Exception as e:
            self.on_error(e)
            self.on_close()
            return

        self._connection = conn
        self.on_open()
        try:
            async for raw in conn:
                self.on_message(raw)
        except asyncio.CancelledError:
            await self._close_quietly(conn)
            raise
        except Exception as e:
            self.on_error(e)
        self.on_close()

    async def _keepalive(self, conn: Connection):
        while True:
            await asyncio.sleep(self.ping_interval)
            if self._connection is not conn:
                return
            try:
                await conn.send(PING_MESSAGE)
            except Exception as e:
                logger.debug(f"Keep-alive ping failed: {e}")
                return

    def _start_keepalive(self):
        self._stop_keepalive()
        if self._connection is not None:
            self._ping_task = asyncio.get_running_loop().create_task(self._keepalive(self._connection))

    def _stop_keepalive(self):
        if self._ping_task is not None:
            self._ping_task.cancel()
            self._ping_task = None

    def _cancel_reconnect(self):
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _drop_connection(self):
        self._stop_keepalive()
        if self._reader_task is not None and not self._reader_task.done():
            # The reader closes its socket on cancellation
            self._reader_task.cancel()
        self._reader_task = None
        self._connection = None

    async def _close_quietly(self, conn: Connection):
        try:
            await conn.close()
        except Exception as e:
            logger.debug(f"Error closing live update connection: {e}")

    def _set_state(self, state: ConnectionState):
        self.connection_state = state
        self._notify()

    def _notify(self):
        if not self._listeners:
            return
        snapshot = self.view()
        for callback in self._listeners:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Live update listener failed: {e}", exc_info=True)
