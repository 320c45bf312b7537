import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import google.auth.transport.requests
from google.oauth2 import service_account

from ..config import settings
from ..models import RemoteFile

logger = logging.getLogger(__name__)

LIST_FIELDS = "nextPageToken, files(id, name, mimeType, parents)"

def _flush_and_sync(f):
    f.flush()
    os.fsync(f.fileno())

class DriveClient:
    """Minimal Google Drive v3 REST client: folder listing and media download."""

    def __init__(self, credentials: Any = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client = httpx.AsyncClient(
            base_url=settings.GOOGLE_DRIVE_API_URL.rstrip('/'),
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport
        )
        self.credentials = credentials

    async def initialize(self):
        try:
            if self.credentials is None:
                self.credentials = service_account.Credentials.from_service_account_file(
                    settings.GOOGLE_SERVICE_ACCOUNT_PATH,
                    scopes=[settings.GOOGLE_SCOPES]
                )
            # Probe connectivity
            resp = await self.client.get("/files", params={"pageSize": 1}, headers=await self._auth_headers())
            resp.raise_for_status()
            logger.info("Google Drive client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Google Drive client: {e}")
            raise

    async def _auth_headers(self) -> Dict[str, str]:
        if self.credentials is None:
            raise RuntimeError("Drive client used before initialize()")
        if not self.credentials.valid:
            # google-auth refresh is blocking
            request = google.auth.transport.requests.Request()
            await asyncio.to_thread(self.credentials.refresh, request)
        return {"Authorization": f"Bearer {self.credentials.token}"}

    async def list_children(self, folder_id: str) -> List[RemoteFile]:
        """
        Lists the direct children of a folder, following pagination.
        Raises on any HTTP or transport error.
        """
        results: List[RemoteFile] = []
        page_token: Optional[str] = None
        while True:
            params = {
                "q": f"'{folder_id}' in parents and trashed = false",
                "fields": LIST_FIELDS,
                "spaces": "drive",
                "pageSize": 1000,
            }
            if page_token:
                params["pageToken"] = page_token

            resp = await self.client.get("/files", params=params, headers=await self._auth_headers())
            resp.raise_for_status()
            data = resp.json()
            results.extend(RemoteFile.model_validate(f) for f in data.get("files", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return results

    async def download(self, file_id: str, dest: Path):
        """
        Streams file content to dest. The file only appears under its final
        name once every chunk has been written and flushed.
        """
        dest = Path(dest)
        tmp_path = dest.with_name(dest.name + ".part")
        try:
            async with self.client.stream(
                "GET", f"/files/{file_id}", params={"alt": "media"}, headers=await self._auth_headers()
            ) as resp:
                resp.raise_for_status()
                # Disk I/O stays off the event loop
                f = await asyncio.to_thread(open, tmp_path, "wb")
                try:
                    async for chunk in resp.aiter_bytes():
                        await asyncio.to_thread(f.write, chunk)
                    await asyncio.to_thread(_flush_and_sync, f)
                finally:
                    f.close()
            os.replace(tmp_path, dest)
        except Exception as e:
            logger.error(f"Failed to download file {file_id}: {e}")
            raise
        finally:
            # Partial file never survives a failed or cancelled download
            if tmp_path.exists():
                tmp_path.unlink()

    async def aclose(self):
        await self.client.aclose()
