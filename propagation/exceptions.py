"""
Propagation Errors

Every failure in a push or pull surfaces as one of these. Transport
exceptions from httpx are chained (``raise ... from exc``) so the original
cause stays visible in tracebacks.
"""

from typing import Optional


class PropagationError(Exception):
    """Base exception for all propagation client errors."""

    def __init__(self, message: str, store_id: Optional[str] = None,
                 data_path: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.store_id = store_id
        self.data_path = data_path
        self.status_code = status_code


class ConfigError(PropagationError):
    """Invalid configuration value."""
    pass


class ProbeError(PropagationError):
    """
    Existence check failed.

    Raised when:
    - The peer is unreachable or the TLS handshake fails
    - The peer answers a HEAD probe with a non-2xx status
    """
    pass


class SnapshotNotFoundError(ProbeError):
    """The peer does not hold the requested store or root hash."""
    pass


class SessionStartError(PropagationError):
    """
    Upload session could not be opened.

    Raised when:
    - The local ``<root_hash>.dat`` manifest is missing
    - The peer rejects session creation (e.g. bad credentials)
    """
    pass


class NonceError(PropagationError):
    """Transport failure while requesting a per-file nonce."""
    pass


class TransferError(PropagationError):
    """A file body failed to upload or download."""
    pass


class MissingContentLengthError(TransferError):
    """A fetch response did not declare its content length."""
    pass


class TransferCancelledError(TransferError):
    """A transfer was cancelled because a sibling transfer failed."""
    pass


class CommitError(PropagationError):
    """The peer rejected the commit of an upload session."""
    pass


class ManifestError(PropagationError):
    """A ``.dat`` manifest is missing locally or cannot be parsed."""
    pass


class ProtocolError(PropagationError):
    """
    The peer answered with a malformed response.

    Raised when:
    - A JSON body does not parse or lacks a required field
    - A header carries a value outside its contract
    """
    pass
