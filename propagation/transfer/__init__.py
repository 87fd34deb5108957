"""
Transfer Module - Snapshot Push/Pull

Handles HTTPS transfers of snapshot files between this node and a peer.
"""

from .channel import SecureChannel
from .probe import ExistenceProbe
from .protocol import StoreStatus, FileStatus, FileNonce, SessionStarted, CommitResult
from .scheduler import TransferScheduler, TaskOutcome, FailurePolicy
from .progress import ProgressSink, ProgressFactory, NullProgressSink, LoggingProgressSink
from .uploader import UploadSession, UploadResult, UploadState
from .downloader import DownloadSession, DownloadResult, DownloadState, fetch_bytes

__all__ = [
    'SecureChannel',
    'ExistenceProbe',
    'StoreStatus',
    'FileStatus',
    'FileNonce',
    'SessionStarted',
    'CommitResult',
    'TransferScheduler',
    'TaskOutcome',
    'FailurePolicy',
    'ProgressSink',
    'ProgressFactory',
    'NullProgressSink',
    'LoggingProgressSink',
    'UploadSession',
    'UploadResult',
    'UploadState',
    'DownloadSession',
    'DownloadResult',
    'DownloadState',
    'fetch_bytes',
]
