"""
Snapshot Downloader

Design Decision: Download Strategy
===================================

Options Considered:
1. Sequential fetch of every file
   - Simple but slow on snapshots with many small files
2. Parallel fetch, bounded per session
   - Keeps a handful of requests in flight against one peer
3. Parallel fetch with per-file retry
   - Hides flaky links, but a snapshot could end up half retried

Decision: Bounded parallel fetch, no retry
- The manifest is fetched first and buffered in memory
- Files are streamed straight to their content-addressed location
- Any failure aborts the download before the manifest is persisted, so the
  local index never points at a snapshot that is not fully present
- Re-running a failed download is safe: every file is content-addressed,
  so a successful re-run overwrites anything left behind

Download Flow:
1. Probe: store and root hash must both exist on the peer
2. Fetch ``<root_hash>.dat`` and parse it
3. Fetch every listed file in parallel (bounded), verifying its sha256
4. Write the manifest locally and regenerate the store index
"""

import contextlib
import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
import aiofiles.os
import httpx

from .probe import ExistenceProbe
from .progress import ProgressFactory, null_progress
from .protocol import check_status, fetch_path, require_content_length
from .scheduler import TransferScheduler, first_error
from ..exceptions import SnapshotNotFoundError, TransferError
from ..file.manifest import Manifest, TransferTask
from ..file.storage import ContentStore

logger = logging.getLogger(__name__)


class DownloadState(Enum):
    INIT = "init"
    PROBED = "probed"
    MANIFEST_FETCHED = "manifest_fetched"
    DOWNLOADING = "downloading"
    FINALIZED = "finalized"
    ABORTED = "aborted"


@dataclass
class DownloadResult:
    """What a finished download did."""
    store_id: str
    root_hash: str
    files_downloaded: int = 0
    bytes_downloaded: int = 0
    manifest_path: Optional[Path] = None


async def fetch_bytes(client: httpx.AsyncClient, store_id: str, data_path: str,
                      progress: ProgressFactory = null_progress,
                      label: Optional[str] = None) -> bytes:
    """Fetch a file into memory. The response must declare its length."""
    label = label or data_path
    chunks = []
    try:
        async with client.stream('GET', fetch_path(store_id, data_path)) as response:
            check_status(response, TransferError, f"Fetch of {label} failed",
                         store_id=store_id, data_path=data_path)
            total = require_content_length(response, store_id, data_path)

            sink = progress(label)
            sink.on_start(total, label)
            try:
                async for chunk in response.aiter_bytes():
                    chunks.append(chunk)
                    sink.on_progress(response.num_bytes_downloaded)
            finally:
                sink.on_end()
            # content-length counts encoded bytes, not the decoded body
            received = response.num_bytes_downloaded
    except httpx.HTTPError as e:
        raise TransferError(
            f"Error fetching {label}: {e}", store_id=store_id, data_path=data_path,
        ) from e

    if received != total:
        raise TransferError(
            f"Short read for {label}: {received} of {total} bytes",
            store_id=store_id, data_path=data_path,
        )
    return b''.join(chunks)


class DownloadSession:
    """One pull of one snapshot from a peer into a local store."""

    def __init__(self, client: httpx.AsyncClient, store: ContentStore,
                 root_hash: str, scheduler: TransferScheduler,
                 progress: ProgressFactory = null_progress):
        self.client = client
        self.store = store
        self.store_id = store.store_id
        self.root_hash = root_hash
        self.scheduler = scheduler
        self.progress = progress

        self.state = DownloadState.INIT
        self.manifest: Optional[Manifest] = None

    async def run(self) -> DownloadResult:
        """Drive the session from probe to finalize."""
        result = DownloadResult(store_id=self.store_id, root_hash=self.root_hash)
        try:
            status = await ExistenceProbe(self.client).probe_store(self.store_id, self.root_hash)
            if not status.store_exists or not status.root_hash_exists:
                raise SnapshotNotFoundError(
                    f"Store {self.store_id} does not exist or lacks root hash {self.root_hash}",
                    store_id=self.store_id,
                )
            self.state = DownloadState.PROBED

            await self.fetch_manifest()

            result.files_downloaded, result.bytes_downloaded = await self.download_all()
            result.manifest_path = await self.finalize()
        except Exception:
            self.state = DownloadState.ABORTED
            logger.error(f"Download of {self.root_hash} from store {self.store_id} aborted")
            raise

        logger.info(f"All files have been downloaded to {self.store_id}.")
        return result

    async def fetch_file(self, data_path: str, label: Optional[str] = None) -> bytes:
        return await fetch_bytes(self.client, self.store_id, data_path,
                                 progress=self.progress, label=label)

    async def fetch_manifest(self) -> Manifest:
        """Fetch and parse ``<root_hash>.dat``."""
        data = await self.fetch_file(f"{self.root_hash}.dat")
        self.manifest = Manifest.from_bytes(data)
        self.state = DownloadState.MANIFEST_FETCHED
        logger.info(f"Fetched manifest for {self.root_hash}: {self.manifest.file_count} files, "
                    f"{self.manifest.total_size:,} bytes")
        return self.manifest

    async def download_all(self) -> Tuple[int, int]:
        """
        Download every manifest file through the scheduler.

        Returns:
            (files, bytes) downloaded
        """
        tasks = self.manifest.transfer_tasks()
        self.state = DownloadState.DOWNLOADING
        logger.info(f"Downloading {len(tasks)} files "
                    f"(concurrency {self.scheduler.concurrency_limit})")

        outcomes = await self.scheduler.run(tasks, self.download_file)

        error = first_error(outcomes)
        if error is not None:
            raise error

        return len(outcomes), sum(o.result for o in outcomes)

    async def download_file(self, task: TransferTask) -> int:
        """
        Stream one file to its content-addressed location.

        The body goes to a ``.part`` file first and replaces the destination
        only once its length and digest check out.

        Returns:
            Bytes written
        """
        destination = self.store.resolve(task.data_path)
        temp_path = destination.with_name(destination.name + '.part')
        await aiofiles.os.makedirs(destination.parent, exist_ok=True)

        hasher = hashlib.sha256()
        written = 0
        try:
            async with self.client.stream('GET', fetch_path(self.store_id, task.data_path)) as response:
                check_status(response, TransferError, f"Fetch of {task.label} failed",
                             store_id=self.store_id, data_path=task.data_path)
                total = require_content_length(response, self.store_id, task.data_path)

                sink = self.progress(task.label)
                sink.on_start(total, task.label)
                try:
                    async with aiofiles.open(temp_path, 'wb') as f:
                        async for chunk in response.aiter_bytes():
                            await f.write(chunk)
                            hasher.update(chunk)
                            written += len(chunk)
                            sink.on_progress(response.num_bytes_downloaded)
                finally:
                    sink.on_end()
                received = response.num_bytes_downloaded

            if received != total:
                raise TransferError(
                    f"Short read for {task.label}: {received} of {total} bytes",
                    store_id=self.store_id, data_path=task.data_path,
                )
            if task.sha256 and hasher.hexdigest() != task.sha256:
                raise TransferError(
                    f"Hash mismatch for {task.label}",
                    store_id=self.store_id, data_path=task.data_path,
                )

            await aiofiles.os.replace(temp_path, destination)
        except (httpx.HTTPError, OSError) as e:
            await self._discard(temp_path)
            raise TransferError(
                f"Error downloading {task.label}: {e}",
                store_id=self.store_id, data_path=task.data_path,
            ) from e
        except BaseException:
            await self._discard(temp_path)
            raise

        logger.debug(f"Downloaded {task.data_path} ({written:,} bytes)")
        return written

    async def _discard(self, path: Path):
        with contextlib.suppress(FileNotFoundError):
            await aiofiles.os.remove(path)

    async def finalize(self) -> Path:
        """Persist the manifest and let the local store reindex."""
        path = await self.store.write_manifest(self.root_hash, self.manifest.raw)
        await self.store.generate_manifest_file()
        self.state = DownloadState.FINALIZED
        return path
