import asyncio
import os
import tempfile
import time
import unittest

import httpx
from fastapi.testclient import TestClient

from signage import server
from signage.config import settings
from signage.mirror import FolderMirror
from signage.state import StateManager

class FakeMirror:
    def __init__(self):
        self.busy = False
        self.paused = False
        self.resumed = 0

    def pause(self):
        self.paused = True

    async def resume(self):
        self.paused = False
        self.resumed += 1
        return ["a", "b"]

class TestStatusServer(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.sm = StateManager(os.path.join(self.tmp.name, "state.json"), persist=False)
        self.mirror = FakeMirror()
        server.state_manager = self.sm
        server.mirror = self.mirror
        settings.HTTP_SERVER_TOKEN = None
        settings.SYNC_INTERVAL_SECONDS = 300
        self.client = TestClient(server.app)

    def tearDown(self):
        server.state_manager = None
        server.mirror = None
        settings.HTTP_SERVER_TOKEN = None
        self.tmp.cleanup()

    def test_healthz_ok_after_recent_sync(self):
        self.sm.record_success(time.time(), 3, 1, 0)
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})

    def test_healthz_lagging_without_recent_sync(self):
        self.assertEqual(self.client.get("/healthz").json()["status"], "lagging")

    def test_healthz_reports_failures(self):
        self.sm.record_failure(time.time(), "listing failed")
        body = self.client.get("/healthz").json()
        self.assertEqual(body["status"], "failing")
        self.assertEqual(body["last_error"], "listing failed")

    def test_healthz_starting(self):
        server.state_manager = None
        self.assertEqual(self.client.get("/healthz").json(), {"status": "starting"})

    def test_status_requires_token(self):
        settings.HTTP_SERVER_TOKEN = "secret"
        self.assertEqual(self.client.get("/status").status_code, 401)
        resp = self.client.get("/status", headers={"X-Token": "secret"})
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["paused"])

    def test_metrics(self):
        self.sm.record_success(time.time(), 4, 2, 1)
        text = self.client.get("/metrics").text
        self.assertIn("signage_mirror_files 4", text)
        self.assertIn("signage_mirror_downloaded_total 2", text)

    def test_pause_and_resume(self):
        self.assertEqual(self.client.post("/pause").json(), {"paused": True})
        self.assertTrue(self.mirror.paused)
        self.assertEqual(self.client.post("/resume").json(), {"paused": False, "files": 2})
        self.assertEqual(self.mirror.resumed, 1)

    def test_pause_before_ready(self):
        server.mirror = None
        self.assertEqual(self.client.post("/pause").status_code, 503)

class EmptyDrive:
    async def initialize(self):
        pass

    async def list_children(self, folder_id):
        return []

    async def download(self, file_id, dest):
        raise AssertionError("nothing to download")

class TestPauseOnLiveMirror(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        asyncio.get_running_loop().set_debug(True)
        self.tmp = tempfile.TemporaryDirectory()
        media = os.path.join(self.tmp.name, "media")
        os.mkdir(media)
        self.sm = StateManager(os.path.join(self.tmp.name, "state.json"), persist=True)
        self.mirror = FolderMirror(EmptyDrive(), download_path=media, folder_id="root", state_manager=self.sm)
        server.state_manager = self.sm
        server.mirror = self.mirror
        settings.HTTP_SERVER_TOKEN = None
        self.client = httpx.AsyncClient(transport=httpx.ASGITransport(app=server.app), base_url="http://signage")

    async def asyncTearDown(self):
        await self.client.aclose()
        await self.mirror.aclose()
        server.state_manager = None
        server.mirror = None
        self.tmp.cleanup()

    async def test_pause_cancels_schedule_on_owning_loop(self):
        await self.mirror.start_sync(300)
        self.assertTrue(self.mirror.scheduled)

        resp = await self.client.post("/pause")

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(self.mirror.paused)
        self.assertFalse(self.mirror.scheduled)
        self.assertTrue(StateManager(self.sm.path).state.paused)

        resp = await self.client.post("/resume")
        self.assertEqual(resp.json(), {"paused": False, "files": 0})
        self.assertTrue(self.mirror.scheduled)

if __name__ == '__main__':
    unittest.main()
