"""
Snapshot Manifest

Design Decision: Manifest Handling
==================================

A snapshot is described by ``<root_hash>.dat``: a JSON document whose
``files`` member maps an opaque file key to ``{"sha256": ..., "size": ...}``.

Options Considered:
1. Re-serialize the parsed manifest when persisting it
   - Loses members we do not model, may change the bytes
2. Keep the exact bytes next to the parsed view

Decision: keep the raw bytes
- The bytes are what the root hash identifies
- Parsing only needs the ``files`` member; everything else is carried along

File keys are hex-encoded UTF-8 names. They are decoded only for display.
"""

import binascii
import json
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..exceptions import ManifestError

DATA_DIR = 'data'

_SHA256_RE = re.compile(r'^[0-9a-fA-F]{64}$')


def data_path_for_sha256(sha256: str, data_dir: str = DATA_DIR) -> str:
    """
    Content-addressed path of a file, relative to its store directory.

    The digest is split into two-character directory segments:
    ``data/ab/cd/ef/...``.
    """
    if not sha256:
        raise ManifestError("Empty sha256 digest")
    segments = [sha256[i:i + 2] for i in range(0, len(sha256), 2)]
    return '/'.join([data_dir, *segments])


def decode_file_key(file_key: str) -> str:
    """Display label for a file key; keys that are not hex UTF-8 are shown as-is."""
    try:
        return binascii.unhexlify(file_key).decode('utf-8')
    except (binascii.Error, ValueError):
        return file_key


@dataclass
class FileRecord:
    """A content-addressed file listed in a manifest."""
    sha256: str
    size: int

    @property
    def data_path(self) -> str:
        return data_path_for_sha256(self.sha256)


@dataclass
class TransferTask:
    """One file to move: what to show, and where it lives in the store."""
    label: str
    data_path: str
    sha256: Optional[str] = None


@dataclass
class Manifest:
    """
    Parsed ``<root_hash>.dat``.

    ``raw`` holds the exact bytes the manifest was read from.
    """
    files: Dict[str, FileRecord]
    raw: bytes = field(default=b'', repr=False)

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(record.size for record in self.files.values())

    def transfer_tasks(self) -> List[TransferTask]:
        """
        Expand into one TransferTask per distinct content, in manifest order.

        Keys sharing a digest share a data path, so they become one task.
        """
        tasks: Dict[str, TransferTask] = {}
        for key, record in self.files.items():
            if record.data_path not in tasks:
                tasks[record.data_path] = TransferTask(
                    label=decode_file_key(key),
                    data_path=record.data_path,
                    sha256=record.sha256,
                )
        return list(tasks.values())

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Manifest':
        """Parse manifest bytes; raises ManifestError on anything malformed."""
        try:
            document = json.loads(data.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ManifestError(f"Manifest is not valid JSON: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get('files'), dict):
            raise ManifestError("Manifest has no 'files' mapping")

        files = {}
        for key, entry in document['files'].items():
            if not isinstance(entry, dict):
                raise ManifestError(f"Manifest entry {key!r} is not an object")
            sha256 = entry.get('sha256')
            if not isinstance(sha256, str) or not _SHA256_RE.match(sha256):
                raise ManifestError(f"Manifest entry {key!r} has an invalid sha256")
            size = entry.get('size', 0)
            if not isinstance(size, int) or isinstance(size, bool) or size < 0:
                raise ManifestError(f"Manifest entry {key!r} has an invalid size")
            files[key] = FileRecord(sha256=sha256.lower(), size=size)

        return cls(files=files, raw=data)

    @classmethod
    def from_files(cls, files: Dict[str, FileRecord], **extra) -> 'Manifest':
        """Build a manifest (and its bytes) from file records."""
        document = dict(extra)
        document['files'] = {
            key: {'sha256': record.sha256, 'size': record.size}
            for key, record in files.items()
        }
        raw = json.dumps(document, indent=2).encode('utf-8')
        return cls(files=dict(files), raw=raw)
