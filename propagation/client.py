"""
Propagation Client - Main Controller

Entry point that wires the pieces together for one peer and one store:
- SecureChannel for TLS and the httpx client
- ExistenceProbe for store/file checks
- UploadSession / DownloadSession for push and pull
- TransferScheduler for bounded fan-out
"""

import logging
from typing import Optional

import httpx

from .auth.credentials import CredentialPrompt, PromptCredentials
from .auth.signer import AuthSigner, KeyFileSigner
from .config import Config
from .file.storage import LocalContentStore
from .transfer.channel import SecureChannel
from .transfer.downloader import DownloadResult, DownloadSession, fetch_bytes
from .transfer.probe import ExistenceProbe
from .transfer.progress import ProgressFactory, logging_progress
from .transfer.protocol import FileStatus, StoreStatus
from .transfer.scheduler import TransferScheduler
from .transfer.uploader import UploadResult, UploadSession

logger = logging.getLogger(__name__)


class PropagationClient:
    """
    Push and pull snapshots of one store to and from one peer.

    Every operation opens its own httpx client and session object, so a
    PropagationClient carries no per-operation state and concurrent
    operations do not interfere.
    """

    def __init__(self, config: Config, store_id: str, peer_host: str,
                 signer: Optional[AuthSigner] = None,
                 prompt: Optional[CredentialPrompt] = None,
                 progress: ProgressFactory = logging_progress,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            config: Client configuration
            store_id: Store to operate on
            peer_host: Peer address (host name or IP)
            signer: Ownership signer; loaded from ``config.key_file`` when
                a push first needs it
            prompt: Credential prompt; interactive terminal prompt by default
            progress: Progress sink factory
            transport: httpx transport override (in-process peers, tests)
        """
        self.config = config
        self.store_id = store_id
        self.peer_host = peer_host
        self._signer = signer
        self.prompt = prompt if prompt is not None else PromptCredentials()
        self.progress = progress

        self.channel = SecureChannel(
            host=peer_host,
            port=config.port,
            cert_path=config.cert_path,
            key_path=config.key_path,
            timeout=config.timeout,
            transport=transport,
        )
        self.store = LocalContentStore(config.store_root, store_id)

    @property
    def signer(self) -> AuthSigner:
        if self._signer is None:
            self._signer = KeyFileSigner(self.config.key_file)
        return self._signer

    def _scheduler(self, concurrency_limit: int) -> TransferScheduler:
        return TransferScheduler(concurrency_limit, policy=self.config.failure_policy)

    # === Operations ===

    async def push(self, root_hash: str) -> UploadResult:
        """Upload a snapshot to the peer (no-op if the peer already has it)."""
        logger.info(f"Pushing {root_hash} of store {self.store_id} to {self.channel.address}")
        async with self.channel.client() as client:
            session = UploadSession(
                client=client,
                store=self.store,
                root_hash=root_hash,
                signer=self.signer,
                scheduler=self._scheduler(self.config.upload_concurrency),
                prompt=self.prompt,
                progress=self.progress,
                peer_address=self.peer_host,
                chunk_size=self.config.chunk_size,
            )
            return await session.run()

    async def pull(self, root_hash: str) -> DownloadResult:
        """Download a snapshot from the peer into the local store."""
        logger.info(f"Pulling {root_hash} of store {self.store_id} from {self.channel.address}")
        async with self.channel.client() as client:
            session = DownloadSession(
                client=client,
                store=self.store,
                root_hash=root_hash,
                scheduler=self._scheduler(self.config.download_concurrency),
                progress=self.progress,
            )
            return await session.run()

    async def probe(self, root_hash: Optional[str] = None) -> StoreStatus:
        """Does the peer hold the store (and root hash)?"""
        async with self.channel.client() as client:
            return await ExistenceProbe(client).probe_store(self.store_id, root_hash)

    async def file_details(self, root_hash: str, data_path: str) -> FileStatus:
        """Existence and size of one committed file on the peer."""
        async with self.channel.client() as client:
            return await ExistenceProbe(client).probe_file(self.store_id, root_hash, data_path)

    async def fetch_file(self, data_path: str) -> bytes:
        """Fetch one file from the peer into memory."""
        async with self.channel.client() as client:
            return await fetch_bytes(client, self.store_id, data_path, progress=self.progress)

    # === One-shot helpers ===

    @staticmethod
    async def upload_store(store_id: str, root_hash: str, peer_host: str,
                           config: Optional[Config] = None, **kwargs) -> UploadResult:
        """Push one snapshot without keeping a client around."""
        client = PropagationClient(config or Config(), store_id, peer_host, **kwargs)
        return await client.push(root_hash)

    @staticmethod
    async def download_store(store_id: str, root_hash: str, peer_host: str,
                             config: Optional[Config] = None, **kwargs) -> DownloadResult:
        """Pull one snapshot without keeping a client around."""
        client = PropagationClient(config or Config(), store_id, peer_host, **kwargs)
        return await client.pull(root_hash)
