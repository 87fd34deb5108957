"""
File Module - Manifests and Local Storage

Content-addressed snapshot files as they sit in a local store.
"""

from .manifest import Manifest, FileRecord, TransferTask, data_path_for_sha256, decode_file_key
from .storage import ContentStore, LocalContentStore

__all__ = [
    'Manifest',
    'FileRecord',
    'TransferTask',
    'ContentStore',
    'LocalContentStore',
    'data_path_for_sha256',
    'decode_file_key',
]
