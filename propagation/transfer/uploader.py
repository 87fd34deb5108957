"""
Snapshot Uploader

Pushes one snapshot (store id + root hash) to a peer.

Upload Flow:
1. Probe the peer for the store and root hash
   - root hash already there: nothing to do
   - store unknown: ask the operator for credentials (Basic auth)
2. Start a session by posting ``<root_hash>.dat``; the peer returns a
   session id
3. For every file in the manifest, in parallel (bounded):
   - ask for a nonce; the peer also says whether it already has the file
   - skip files the peer has
   - sign the nonce and PUT the body with nonce, public key and signature
4. Commit, only once every file has succeeded

Any failure aborts the whole upload. Nothing is retried and a session with
missing files is never committed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import aiofiles
import aiofiles.os
import httpx

from .probe import ExistenceProbe
from .progress import ProgressFactory, ProgressSink, null_progress
from .protocol import (
    KEY_OWNERSHIP_SIG, NONCE, PUBLIC_KEY, CommitResult, FileNonce,
    SessionStarted, check_status, commit_path, parse_json, upload_file_path,
    upload_path,
)
from .scheduler import TransferScheduler, first_error
from ..auth.credentials import CredentialPrompt, Credentials, basic_auth
from ..auth.signer import AuthSigner
from ..exceptions import (
    CommitError, ManifestError, NonceError, PropagationError, SessionStartError,
    TransferError,
)
from ..file.manifest import Manifest, TransferTask
from ..file.storage import ContentStore

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class UploadState(Enum):
    INIT = "init"
    PROBED = "probed"
    CREDENTIALS_ACQUIRED = "credentials_acquired"
    SESSION_STARTED = "session_started"
    UPLOADING = "uploading"
    COMMITTED = "committed"
    SKIPPED = "skipped"  # snapshot already on the peer
    ABORTED = "aborted"


@dataclass
class UploadResult:
    """What a finished upload did."""
    store_id: str
    root_hash: str
    already_replicated: bool = False
    session_id: Optional[str] = None
    files_uploaded: int = 0
    files_skipped: int = 0
    commit: Dict[str, Any] = field(default_factory=dict)


class UploadSession:
    """
    One push of one snapshot.

    All session state (session id, credentials) lives on this object and
    dies with it; several sessions can run side by side in one process.
    """

    def __init__(self, client: httpx.AsyncClient, store: ContentStore,
                 root_hash: str, signer: AuthSigner,
                 scheduler: TransferScheduler,
                 prompt: Optional[CredentialPrompt] = None,
                 progress: ProgressFactory = null_progress,
                 peer_address: str = '',
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        """
        Args:
            client: httpx client bound to the peer (see SecureChannel.client)
            store: Local store holding the snapshot
            root_hash: Snapshot to push
            signer: Signs per-file nonces
            scheduler: Bounded fan-out for the file uploads
            prompt: Asked for credentials when the peer lacks the store
            progress: Builds one ProgressSink per file
            peer_address: Shown to the operator when prompting
            chunk_size: Read size when streaming file bodies
        """
        self.client = client
        self.store = store
        self.store_id = store.store_id
        self.root_hash = root_hash
        self.signer = signer
        self.scheduler = scheduler
        self.prompt = prompt
        self.progress = progress
        self.peer_address = peer_address
        self.chunk_size = chunk_size

        self.state = UploadState.INIT
        self.session_id: Optional[str] = None
        self.credentials: Optional[Credentials] = None
        self.manifest: Optional[Manifest] = None

    async def run(self) -> UploadResult:
        """Drive the session from probe to commit."""
        result = UploadResult(store_id=self.store_id, root_hash=self.root_hash)
        try:
            status = await ExistenceProbe(self.client).probe_store(self.store_id, self.root_hash)
            self.state = UploadState.PROBED

            if status.root_hash_exists:
                logger.info(f"Root hash {self.root_hash} already exists in the store. Skipping upload.")
                self.state = UploadState.SKIPPED
                result.already_replicated = True
                return result

            if not status.store_exists:
                self.acquire_credentials()

            await self.start()
            result.session_id = self.session_id

            uploaded, skipped = await self.upload_all()
            result.files_uploaded = uploaded
            result.files_skipped = skipped

            result.commit = await self.commit()
        except Exception:
            self.state = UploadState.ABORTED
            logger.error(f"Upload of {self.root_hash} to store {self.store_id} aborted")
            raise

        logger.info(f"All files have been uploaded to DataStore {self.store_id}.")
        return result

    def acquire_credentials(self):
        """Ask once for the credentials needed to create the store."""
        if self.prompt is None:
            logger.warning(f"Store {self.store_id} does not exist and no credential prompt is set")
            return
        logger.info(f"Store {self.store_id} does not exist. Prompting for credentials...")
        self.credentials = self.prompt.ask(self.peer_address)
        self.state = UploadState.CREDENTIALS_ACQUIRED

    async def start(self) -> str:
        """Open an upload session by posting the snapshot manifest."""
        try:
            self.manifest = await self.store.read_manifest(self.root_hash)
        except ManifestError as e:
            raise SessionStartError(str(e), store_id=self.store_id) from e

        files = {'file': (f"{self.root_hash}.dat", self.manifest.raw, 'application/octet-stream')}
        try:
            response = await self.client.post(
                upload_path(self.store_id),
                params={'roothash': self.root_hash},
                files=files,
                auth=basic_auth(self.credentials),
            )
        except httpx.HTTPError as e:
            raise SessionStartError(
                f"Error starting upload session: {e}", store_id=self.store_id,
            ) from e

        check_status(response, SessionStartError, "Error starting upload session",
                     store_id=self.store_id)
        started = parse_json(response, SessionStarted, store_id=self.store_id)

        self.session_id = started.session_id
        self.state = UploadState.SESSION_STARTED
        logger.info(f"Upload session started for DataStore {self.store_id} "
                    f"with session ID {self.session_id}")
        return self.session_id

    async def upload_all(self) -> Tuple[int, int]:
        """
        Upload every manifest file through the scheduler.

        Returns:
            (uploaded, skipped) counts
        """
        self._require_session()
        tasks = self.manifest.transfer_tasks()
        self.state = UploadState.UPLOADING
        logger.info(f"Uploading {len(tasks)} files "
                    f"(concurrency {self.scheduler.concurrency_limit})")

        outcomes = await self.scheduler.run(tasks, self.upload_file)

        error = first_error(outcomes)
        if error is not None:
            raise error

        uploaded = sum(1 for o in outcomes if o.result)
        return uploaded, len(outcomes) - uploaded

    async def request_nonce(self, data_path: str) -> FileNonce:
        """Ask the peer for this file's nonce (and whether it already has it)."""
        self._require_session()
        try:
            response = await self.client.head(
                upload_file_path(self.store_id, self.session_id, data_path)
            )
        except httpx.HTTPError as e:
            raise NonceError(
                f"Error generating nonce for file {data_path}: {e}",
                store_id=self.store_id, data_path=data_path,
            ) from e

        check_status(response, NonceError, f"Error generating nonce for file {data_path}",
                     store_id=self.store_id, data_path=data_path)
        return FileNonce.from_headers(response.headers)

    async def upload_file(self, task: TransferTask) -> bool:
        """
        Upload one file unless the peer already has it.

        Returns:
            True if the body was sent, False if the file was skipped
        """
        nonce = await self.request_nonce(task.data_path)

        if nonce.file_exists:
            logger.info(f"File {task.label} already exists. Skipping upload.")
            return False

        file_path = self.store.resolve(task.data_path)
        try:
            file_size = (await aiofiles.os.stat(file_path)).st_size
        except OSError as e:
            raise TransferError(
                f"Cannot read {file_path}: {e}",
                store_id=self.store_id, data_path=task.data_path,
            ) from e

        headers = {
            'content-type': 'application/octet-stream',
            'content-length': str(file_size),
            NONCE: nonce.nonce,
            PUBLIC_KEY: self.signer.public_key().hex(),
            KEY_OWNERSHIP_SIG: self.signer.sign(nonce.nonce).hex(),
        }

        sink = self.progress(task.label)
        sink.on_start(file_size, task.label)
        try:
            response = await self.client.put(
                upload_file_path(self.store_id, self.session_id, task.data_path),
                content=self._read_body(file_path, sink),
                headers=headers,
            )
        except (httpx.HTTPError, OSError) as e:
            raise TransferError(
                f"Error uploading {task.label}: {e}",
                store_id=self.store_id, data_path=task.data_path,
            ) from e
        finally:
            sink.on_end()

        check_status(response, TransferError, f"Upload of {task.label} rejected",
                     store_id=self.store_id, data_path=task.data_path)
        logger.debug(f"Uploaded {task.data_path} ({file_size:,} bytes)")
        return True

    async def _read_body(self, file_path, sink: ProgressSink) -> AsyncIterator[bytes]:
        sent = 0
        async with aiofiles.open(file_path, 'rb') as f:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                sent += len(chunk)
                sink.on_progress(sent)
                yield chunk

    async def commit(self) -> Dict[str, Any]:
        """Commit the session; only called after every file succeeded."""
        self._require_session()
        try:
            response = await self.client.post(
                commit_path(self.store_id, self.session_id),
                json={},
                auth=basic_auth(self.credentials),
            )
        except httpx.HTTPError as e:
            raise CommitError(
                f"Error committing upload session: {e}", store_id=self.store_id,
            ) from e

        check_status(response, CommitError, "Error committing upload session",
                     store_id=self.store_id)
        result = parse_json(response, CommitResult, store_id=self.store_id)

        self.state = UploadState.COMMITTED
        logger.info(f"Upload session {self.session_id} successfully committed.")
        return result.to_dict()

    def _require_session(self):
        if self.session_id is None or self.manifest is None:
            raise PropagationError("No active upload session", store_id=self.store_id)
