import asyncio
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable, FrozenSet, List, Optional, Protocol, Set, Tuple

from .config import settings
from .models import RemoteFile
from .state import StateManager
from .validators import is_valid_file

logger = logging.getLogger(__name__)

class RemoteFolder(Protocol):
    async def initialize(self) -> None: ...
    async def list_children(self, folder_id: str) -> List[RemoteFile]: ...
    async def download(self, file_id: str, dest: Path) -> None: ...

class MirrorInitError(Exception):
    pass

async def walk_folder(drive: RemoteFolder, folder_id: str, ancestors: FrozenSet[str] = frozenset()) -> List[RemoteFile]:
    """
    Returns every entry under folder_id, each subfolder's contents following
    the subfolder entry itself. Folders already on the current path are not
    re-entered.
    """
    path = ancestors | {folder_id}
    entries = await drive.list_children(folder_id)
    result: List[RemoteFile] = []
    for entry in entries:
        result = result + [entry]
        if entry.is_folder and entry.id not in path:
            result = result + await walk_folder(drive, entry.id, path)
    return result

def remove_path(path: Path):
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()

class FolderMirror:
    """Keeps a flat local directory in step with a remote folder tree."""

    def __init__(
        self,
        drive: RemoteFolder,
        download_path: Optional[str] = None,
        folder_id: Optional[str] = None,
        is_valid: Optional[Callable[[str], bool]] = None,
        state_manager: Optional[StateManager] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None
    ):
        self.drive = drive
        self.download_path = Path(download_path or settings.DOWNLOAD_PATH)
        self.folder_id = folder_id or settings.GOOGLE_FOLDER_ID
        self.is_valid = is_valid or is_valid_file
        self.sm = state_manager
        self.max_retries = max(1, max_retries if max_retries is not None else settings.SYNC_MAX_RETRIES)
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.SYNC_RETRY_BACKOFF_SECONDS

        self.initialized = False
        self.paused = state_manager.state.paused if state_manager else False
        self.busy = False
        self._schedule_task: Optional[asyncio.Task] = None
        self._pass_tasks: Set[asyncio.Task] = set()
        self._sleep = asyncio.sleep

        if self.paused:
            logger.warning("Mirror restored in paused state from a previous run; no sync will run until resumed")

    async def initialize(self):
        try:
            if not self.folder_id:
                raise ValueError("GOOGLE_FOLDER_ID is not configured")
            await self.drive.initialize()
            self.download_path.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            logger.error(f"Failed to initialize folder mirror: {e}")
            raise MirrorInitError(f"Mirror initialization failed: {e}") from e

        self.initialized = True
        logger.info(f"Folder mirror initialized, mirroring {self.folder_id} into {self.download_path}")

    @property
    def scheduled(self) -> bool:
        return self._schedule_task is not None and not self._schedule_task.done()

    async def start_sync(self, interval: Optional[float] = None) -> Optional[List[RemoteFile]]:
        """
        Installs the periodic schedule (replacing any previous one) and runs
        one pass immediately. Errors from the immediate pass propagate.
        """
        self.stop()

        if self.paused:
            logger.info("Mirror is paused, not starting sync")
            return None

        interval = interval if interval is not None else settings.SYNC_INTERVAL_SECONDS
        self._schedule_task = asyncio.get_running_loop().create_task(self._schedule(interval))

        return await self.sync_files()

    async def _schedule(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            # Passes run beside the timer so stop() never interrupts one mid-flight
            task = asyncio.get_running_loop().create_task(self._scheduled_pass())
            self._pass_tasks.add(task)
            task.add_done_callback(self._pass_tasks.discard)

    async def _scheduled_pass(self):
        if self.paused:
            return
        try:
            await self.sync_files()
        except Exception as e:
            logger.error(f"Sync failed: {e}", exc_info=True)

    async def sync_files(self) -> Optional[List[RemoteFile]]:
        """
        One mirror pass with bounded retry. Returns the valid remote files,
        or None when the pass was skipped (paused, or another pass running).
        """
        if self.paused:
            logger.info("Mirror is paused, skipping sync")
            return None
        if self.busy:
            logger.warning("Previous sync still running, skipping this cycle")
            return None

        self.busy = True
        try:
            return await self._sync_with_retry()
        finally:
            self.busy = False

    async def _sync_with_retry(self) -> Optional[List[RemoteFile]]:
        attempt = 0
        while True:
            try:
                files, downloaded, removed = await self._reconcile()
            except Exception as e:
                attempt += 1
                logger.warning(f"Sync attempt {attempt} failed: {e}")
                if attempt >= self.max_retries:
                    logger.error("Max retry attempts reached")
                    if self.sm:
                        self.sm.record_failure(time.time(), str(e))
                    raise
                await self._sleep(self.retry_backoff * attempt)
                if self.paused:
                    logger.info("Mirror paused during retry backoff, abandoning pass")
                    return None
                continue

            logger.info(f"Sync complete: {downloaded} downloaded, {removed} removed, {len(files)} mirrored")
            if self.sm:
                self.sm.record_success(time.time(), len(files), downloaded, removed)
            return files

    async def _reconcile(self) -> Tuple[List[RemoteFile], int, int]:
        files = await self.list_files()
        logger.info(f"Found {len(files)} valid files in Google Drive")

        local_names = os.listdir(self.download_path)
        remote_names = {f.name for f in files}

        downloaded = 0
        for remote in files:
            local_path = self.download_path / remote.name
            if local_path.exists():
                continue
            try:
                await self.drive.download(remote.id, local_path)
            except Exception as e:
                logger.warning(f"Failed to download {remote.name}, skipping: {e}")
                continue
            downloaded += 1
            logger.info(f"Downloaded: {remote.name}")

        removed = 0
        for name in local_names:
            if name in remote_names:
                continue
            try:
                remove_path(self.download_path / name)
            except OSError as e:
                logger.warning(f"Failed to remove {name}: {e}")
                continue
            removed += 1
            logger.info(f"Removed local file: {name}")

        return files, downloaded, removed

    async def list_files(self) -> List[RemoteFile]:
        entries = await walk_folder(self.drive, self.folder_id)
        return [e for e in entries if not e.is_folder and self.is_valid(e.name)]

    def stop(self):
        if self._schedule_task is not None:
            self._schedule_task.cancel()
            self._schedule_task = None

    def pause(self):
        logger.info("Pausing folder mirror")
        self.paused = True
        self.stop()
        if self.sm:
            self.sm.set_paused(True)

    async def resume(self, interval: Optional[float] = None) -> Optional[List[RemoteFile]]:
        logger.info("Resuming folder mirror")
        self.paused = False
        if self.sm:
            self.sm.set_paused(False)
        return await self.start_sync(interval)

    async def aclose(self):
        self.stop()
        for task in list(self._pass_tasks):
            task.cancel()
        if self._pass_tasks:
            await asyncio.gather(*self._pass_tasks, return_exceptions=True)
