import asyncio
import json
import unittest
from signage.channel import LiveUpdateChannel, build_channel_url
from signage.models import ConnectionState

CLOSED = object()

class FakeConnection:
    def __init__(self):
        self.queue = asyncio.Queue()
        self.sent = []
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, message):
        self.sent.append(message)

    async def close(self):
        self.closed = True
        self.queue.put_nowait(CLOSED)

    def push(self, payload):
        self.queue.put_nowait(json.dumps(payload))

    def drop(self):
        self.queue.put_nowait(CLOSED)

class FakeConnector:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0
        self.connections = []

    async def __call__(self, url):
        self.calls += 1
        if self.fail:
            raise OSError("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn

def media(*ids):
    return [{"id": i, "path": f"/media/{i}.jpg", "type": "image"} for i in ids]

async def settle():
    for _ in range(10):
        await asyncio.sleep(0)

class TestLiveUpdateChannel(unittest.IsolatedAsyncioTestCase):
    def make_channel(self, connector=None, **kwargs):
        kwargs.setdefault("max_reconnect_attempts", 3)
        kwargs.setdefault("reconnect_interval", 0.01)
        kwargs.setdefault("ping_interval", 30)
        self.connector = connector or FakeConnector()
        channel = LiveUpdateChannel(url="ws://signage.local/ws", connector=self.connector, **kwargs)
        self.addAsyncCleanup(channel.aclose)
        return channel

    async def test_connect_opens_and_marks_ready(self):
        channel = self.make_channel()
        channel.reconnect_attempts = 2
        channel.connect()
        self.assertEqual(channel.connection_state, ConnectionState.CONNECTING)
        await settle()
        self.assertEqual(channel.connection_state, ConnectionState.CONNECTED)
        self.assertTrue(channel.server_ready)
        self.assertEqual(channel.reconnect_attempts, 0)
        self.assertTrue(channel.loading)

    async def test_connect_is_noop_when_connected(self):
        channel = self.make_channel()
        channel.connect()
        await settle()
        channel.connect()
        await settle()
        self.assertEqual(self.connector.calls, 1)

    async def test_connect_is_noop_when_inactive_or_unreachable(self):
        inactive = self.make_channel(active=False)
        inactive.connect()
        unreachable = LiveUpdateChannel(url="ws://x/ws", connector=self.connector, server_reachable=False)
        unreachable.connect()
        await settle()
        self.assertEqual(self.connector.calls, 0)
        self.assertEqual(inactive.connection_state, ConnectionState.DISCONNECTED)
        self.assertEqual(unreachable.connection_state, ConnectionState.DISCONNECTED)

    async def test_media_list_replaces_items(self):
        channel = self.make_channel()
        channel.connect()
        await settle()
        conn = self.connector.connections[0]

        conn.push({"type": "mediaList", "media": media("a", "b", "c")})
        await settle()
        self.assertEqual(channel.total_items, 3)
        self.assertFalse(channel.loading)
        self.assertEqual(channel.current_item.id, "a")

        channel.navigate("next")
        channel.navigate("next")
        conn.push({"type": "mediaUpdate", "media": media("x", "y", "z", "w")})
        await settle()
        self.assertEqual(channel.current_item.id, "z")

        conn.push({"type": "mediaUpdate", "media": media("only")})
        await settle()
        self.assertEqual(channel.current_item.id, "only")

    async def test_unknown_and_malformed_messages_are_ignored(self):
        channel = self.make_channel()
        channel.connect()
        await settle()
        conn = self.connector.connections[0]

        conn.push({"type": "ping"})
        conn.queue.put_nowait("{not json")
        conn.push({"type": "mediaList"})
        await settle()
        self.assertEqual(channel.connection_state, ConnectionState.CONNECTED)
        self.assertEqual(channel.total_items, 0)
        self.assertTrue(channel.loading)

    async def test_close_schedules_reconnect(self):
        channel = self.make_channel()
        channel.connect()
        await settle()
        self.connector.connections[0].drop()
        await settle()
        self.assertEqual(channel.connection_state, ConnectionState.DISCONNECTED)
        self.assertEqual(channel.reconnect_attempts, 1)
        self.assertTrue(channel.reconnect_pending)

        await asyncio.sleep(0.05)
        self.assertEqual(self.connector.calls, 2)
        self.assertEqual(channel.connection_state, ConnectionState.CONNECTED)
        self.assertEqual(channel.reconnect_attempts, 0)

    async def test_reconnect_stops_after_max_attempts(self):
        channel = self.make_channel(connector=FakeConnector(fail=True))
        channel.connect()
        await asyncio.sleep(0.2)
        # initial attempt plus three retries
        self.assertEqual(self.connector.calls, 4)
        self.assertEqual(channel.reconnect_attempts, 3)
        self.assertFalse(channel.reconnect_pending)
        self.assertEqual(channel.connection_state, ConnectionState.DISCONNECTED)

        await asyncio.sleep(0.05)
        self.assertEqual(self.connector.calls, 4)

    async def test_error_state_on_failed_connect_then_disconnected(self):
        states = []
        channel = self.make_channel(connector=FakeConnector(fail=True), max_reconnect_attempts=0)
        channel.add_listener(lambda view: states.append(view.connection_state))
        channel.connect()
        await settle()
        self.assertEqual(
            states,
            [ConnectionState.CONNECTING, ConnectionState.ERROR, ConnectionState.DISCONNECTED]
        )

    async def test_keepalive_pings_while_connected(self):
        channel = self.make_channel(ping_interval=0.01)
        channel.connect()
        await asyncio.sleep(0.05)
        conn = self.connector.connections[0]
        self.assertTrue(conn.sent)
        self.assertEqual(json.loads(conn.sent[0]), {"type": "ping"})

        channel.max_reconnect_attempts = 0
        conn.drop()
        await settle()
        sent = len(conn.sent)
        await asyncio.sleep(0.05)
        self.assertEqual(len(conn.sent), sent)

    async def test_deactivate_releases_socket_and_timers(self):
        channel = self.make_channel()
        channel.connect()
        await settle()
        conn = self.connector.connections[0]

        await channel.aclose()
        self.assertTrue(conn.closed)
        self.assertFalse(channel.reconnect_pending)
        self.assertEqual(channel.connection_state, ConnectionState.DISCONNECTED)

        await asyncio.sleep(0.05)
        self.assertEqual(self.connector.calls, 1)

    async def test_deactivate_cancels_pending_reconnect(self):
        channel = self.make_channel(connector=FakeConnector(fail=True), reconnect_interval=0.05)
        channel.connect()
        await settle()
        self.assertTrue(channel.reconnect_pending)
        channel.deactivate()
        await asyncio.sleep(0.1)
        self.assertEqual(self.connector.calls, 1)

    async def test_server_reachability_drives_connection(self):
        channel = self.make_channel(server_reachable=False)
        channel.set_server_reachable(True)
        await settle()
        self.assertEqual(channel.connection_state, ConnectionState.CONNECTED)

        channel.set_server_reachable(False)
        await settle()
        self.assertTrue(self.connector.connections[0].closed)
        self.assertEqual(channel.connection_state, ConnectionState.DISCONNECTED)

    async def test_server_ready_is_sticky(self):
        channel = self.make_channel(max_reconnect_attempts=0)
        channel.connect()
        await settle()
        self.connector.connections[0].push({"type": "mediaList", "media": media("a")})
        await settle()
        self.connector.connections[0].drop()
        await settle()
        self.assertEqual(channel.connection_state, ConnectionState.DISCONNECTED)
        self.assertTrue(channel.server_ready)

class TestChannelUrl(unittest.TestCase):
    def test_scheme_follows_page_scheme(self):
        self.assertEqual(build_channel_url("http://kiosk:3000"), "ws://kiosk:3000/ws")
        self.assertEqual(build_channel_url("https://kiosk.example.com/app", "/live"), "wss://kiosk.example.com/live")
        self.assertEqual(build_channel_url("http://kiosk", "socket"), "ws://kiosk/socket")

if __name__ == '__main__':
    unittest.main()
