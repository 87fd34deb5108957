"""
Local Content Store

Storage Layout:
```
<store_root>/
└── <store_id>/
    ├── <root_hash>.dat      # snapshot manifests
    ├── manifest.dat         # index: one root hash per line, oldest first
    └── data/
        └── ab/
            └── cd/
                └── ...      # file bytes, path derived from sha256
```

The transfer sessions only need a few things from the store: where a file
lives, reading and writing manifests, and a way to rebuild the index after
a snapshot has been pulled.
"""

import logging
from pathlib import Path
from typing import List, Protocol

import aiofiles
import aiofiles.os

from .manifest import Manifest, TransferTask
from ..exceptions import ManifestError

logger = logging.getLogger(__name__)

MANIFEST_INDEX = 'manifest.dat'


class ContentStore(Protocol):
    """What the transfer sessions need from a local store."""

    store_id: str

    def resolve(self, data_path: str) -> Path: ...

    def manifest_path(self, root_hash: str) -> Path: ...

    async def read_manifest(self, root_hash: str) -> Manifest: ...

    async def write_manifest(self, root_hash: str, data: bytes) -> Path: ...

    async def generate_manifest_file(self) -> Path: ...


class LocalContentStore:
    """
    On-disk store for one store id.

    Provides:
    - data path resolution
    - manifest read/write
    - manifest index regeneration
    """

    def __init__(self, store_root: Path, store_id: str):
        """
        Args:
            store_root: Directory holding every local store
            store_id: Store this instance manages
        """
        self.store_root = Path(store_root)
        self.store_id = store_id
        self.store_dir = self.store_root / store_id

    def resolve(self, data_path: str) -> Path:
        """Local path of a store-relative data path."""
        path = (self.store_dir / data_path).resolve()
        if not path.is_relative_to(self.store_dir.resolve()):
            raise ManifestError(
                f"Data path escapes the store directory: {data_path}",
                store_id=self.store_id, data_path=data_path,
            )
        return path

    def manifest_path(self, root_hash: str) -> Path:
        return self.store_dir / f"{root_hash}.dat"

    def has_manifest(self, root_hash: str) -> bool:
        return self.manifest_path(root_hash).exists()

    # === Manifest Operations ===

    async def read_manifest(self, root_hash: str) -> Manifest:
        """Load and parse ``<root_hash>.dat``."""
        path = self.manifest_path(root_hash)
        if not path.exists():
            raise ManifestError(f"File not found: {path}", store_id=self.store_id)

        async with aiofiles.open(path, 'rb') as f:
            data = await f.read()

        return Manifest.from_bytes(data)

    async def write_manifest(self, root_hash: str, data: bytes) -> Path:
        """Persist manifest bytes exactly as received."""
        path = self.manifest_path(root_hash)
        await aiofiles.os.makedirs(path.parent, exist_ok=True)

        # Write to a temp name first, then rename
        temp_path = path.with_suffix('.dat.tmp')
        async with aiofiles.open(temp_path, 'wb') as f:
            await f.write(data)
        await aiofiles.os.replace(temp_path, path)

        return path

    async def get_file_set(self, root_hash: str) -> List[TransferTask]:
        """Files making up a locally held snapshot."""
        manifest = await self.read_manifest(root_hash)
        return manifest.transfer_tasks()

    def list_root_hashes(self) -> List[str]:
        """Root hashes held locally, oldest manifest first."""
        if not self.store_dir.exists():
            return []
        manifests = [
            p for p in self.store_dir.glob('*.dat')
            if p.name != MANIFEST_INDEX
        ]
        manifests.sort(key=lambda p: (p.stat().st_mtime, p.name))
        return [p.stem for p in manifests]

    async def generate_manifest_file(self) -> Path:
        """Rebuild ``manifest.dat`` from the manifests present on disk."""
        root_hashes = self.list_root_hashes()
        index_path = self.store_dir / MANIFEST_INDEX
        await aiofiles.os.makedirs(self.store_dir, exist_ok=True)

        async with aiofiles.open(index_path, 'w') as f:
            await f.write(''.join(f"{h}\n" for h in root_hashes))

        logger.debug(f"Regenerated {index_path} with {len(root_hashes)} root hashes")
        return index_path

