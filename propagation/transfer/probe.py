"""
Existence Probe

Metadata-only HEAD checks against a peer. A store that does not exist is
an ordinary answer, not an error; only transport failures and non-2xx
statuses raise.
"""

import logging
from typing import Optional

import httpx

from .protocol import (
    FileStatus, StoreStatus, check_status, committed_file_path, store_path,
)
from ..exceptions import ProbeError

logger = logging.getLogger(__name__)


class ExistenceProbe:
    """Store-level and file-level existence checks. No retries."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def probe_store(self, store_id: str,
                          root_hash: Optional[str] = None) -> StoreStatus:
        """
        Check whether the peer holds a store, and optionally a root hash in it.

        Returns:
            StoreStatus(store_exists, root_hash_exists)
        """
        params = {'hasRootHash': root_hash} if root_hash else None
        try:
            response = await self.client.head(store_path(store_id), params=params)
        except httpx.HTTPError as e:
            raise ProbeError(
                f"Could not check store {store_id}: {e}", store_id=store_id,
            ) from e

        check_status(response, ProbeError, f"Store probe for {store_id} failed",
                     store_id=store_id)
        status = StoreStatus.from_headers(response.headers)

        if status.store_exists:
            logger.info(f"Store {store_id} exists on peer")
        else:
            logger.info(f"Store {store_id} does not exist on peer")
        return status

    async def probe_file(self, store_id: str, root_hash: str,
                         data_path: str) -> FileStatus:
        """
        Check a single committed file without transferring it.

        Returns:
            FileStatus(exists, size); size is 0 when the file is absent
        """
        try:
            response = await self.client.head(
                committed_file_path(store_id, root_hash, data_path)
            )
        except httpx.HTTPError as e:
            raise ProbeError(
                f"Could not check file {data_path}: {e}",
                store_id=store_id, data_path=data_path,
            ) from e

        check_status(response, ProbeError, f"File probe for {data_path} failed",
                     store_id=store_id, data_path=data_path)
        return FileStatus.from_headers(response.headers)
