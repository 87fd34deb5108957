"""
Propagation Wire Protocol

Design Decision: Typed Responses
================================

Options Considered:
1. Read headers / JSON fields ad hoc wherever they are needed
   - Little code, but a malformed peer response fails late and vaguely
2. One pydantic model per call, validated right after the response arrives
   - Every contract is written down once
   - A malformed response raises ProtocolError at the boundary

Decision: pydantic models per call.

Calls (HTTPS, one peer, fixed port):
```
HEAD /{storeId}[?hasRootHash=H]              x-store-exists, x-has-root-hash
HEAD /store/{storeId}/{rootHash}/{dataPath}  x-file-exists, x-file-size
POST /upload/{storeId}?roothash=H            multipart "file" -> {"sessionId"}
HEAD /upload/{storeId}/{sessionId}/{path}    x-file-exists, x-nonce
PUT  /upload/{storeId}/{sessionId}/{path}    body + x-nonce, x-public-key,
                                             x-key-ownership-sig
POST /commit/{storeId}/{sessionId}           -> JSON commit result
GET  /fetch/{storeId}/{dataPath}             body, content-length required
```
"""

import logging
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import (
    MissingContentLengthError, PropagationError, ProtocolError,
)

logger = logging.getLogger(__name__)

# Header names
STORE_EXISTS = 'x-store-exists'
HAS_ROOT_HASH = 'x-has-root-hash'
FILE_EXISTS = 'x-file-exists'
FILE_SIZE = 'x-file-size'
NONCE = 'x-nonce'
PUBLIC_KEY = 'x-public-key'
KEY_OWNERSHIP_SIG = 'x-key-ownership-sig'

M = TypeVar('M', bound=BaseModel)


# === Paths ===

def store_path(store_id: str) -> str:
    return f"/{store_id}"


def committed_file_path(store_id: str, root_hash: str, data_path: str) -> str:
    return f"/store/{store_id}/{root_hash}/{data_path}"


def upload_path(store_id: str) -> str:
    return f"/upload/{store_id}"


def upload_file_path(store_id: str, session_id: str, data_path: str) -> str:
    return f"/upload/{store_id}/{session_id}/{data_path}"


def commit_path(store_id: str, session_id: str) -> str:
    return f"/commit/{store_id}/{session_id}"


def fetch_path(store_id: str, data_path: str) -> str:
    return f"/fetch/{store_id}/{data_path}"


# === Header parsing ===

def header_flag(headers: Mapping[str, str], name: str) -> bool:
    """
    Read a "true"/"false" header.

    An absent header reads as false; any other value breaks the contract.
    """
    value = headers.get(name)
    if value is None:
        return False
    value = value.strip().lower()
    if value not in ('true', 'false'):
        raise ProtocolError(f"Header {name} must be 'true' or 'false', got {value!r}")
    return value == 'true'


def header_int(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        number = int(value)
    except ValueError:
        raise ProtocolError(f"Header {name} must be an integer, got {value!r}")
    if number < 0:
        raise ProtocolError(f"Header {name} must not be negative, got {number}")
    return number


# === Response models ===

class StoreStatus(BaseModel):
    """Result of probing a store (and optionally one of its root hashes)."""
    store_exists: bool
    root_hash_exists: bool = False

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> 'StoreStatus':
        return cls(
            store_exists=header_flag(headers, STORE_EXISTS),
            root_hash_exists=header_flag(headers, HAS_ROOT_HASH),
        )


class FileStatus(BaseModel):
    """Existence and size of a committed file on the peer."""
    exists: bool
    size: int = 0

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> 'FileStatus':
        exists = header_flag(headers, FILE_EXISTS)
        if not exists:
            return cls(exists=False, size=0)
        size = header_int(headers, FILE_SIZE)
        if size is None:
            raise ProtocolError(f"Peer reported an existing file without {FILE_SIZE}")
        return cls(exists=True, size=size)


class FileNonce(BaseModel):
    """Per-file challenge issued inside an upload session."""
    file_exists: bool
    nonce: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> 'FileNonce':
        file_exists = header_flag(headers, FILE_EXISTS)
        nonce = headers.get(NONCE)
        if not file_exists and not nonce:
            raise ProtocolError(f"Peer issued no {NONCE} for a file it does not have")
        return cls(file_exists=file_exists, nonce=nonce)


class SessionStarted(BaseModel):
    """Body of a successful session start."""
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    session_id: str = Field(alias='sessionId', min_length=1)


class CommitResult(BaseModel):
    """Body of a successful commit. The peer decides what else it reports."""
    model_config = ConfigDict(extra='allow')

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


# === Response checks ===

def parse_json(response: httpx.Response, model: Type[M],
               store_id: Optional[str] = None) -> M:
    """Validate a JSON body against ``model``."""
    try:
        data = response.json() if response.content else {}
    except ValueError as e:
        raise ProtocolError(
            f"Peer returned invalid JSON for {response.request.url.path}",
            store_id=store_id, status_code=response.status_code,
        ) from e
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(
            f"Unexpected response for {response.request.url.path}: {e.error_count()} error(s)",
            store_id=store_id, status_code=response.status_code,
        ) from e


def check_status(response: httpx.Response, error_cls: Type[PropagationError],
                 message: str, store_id: Optional[str] = None,
                 data_path: Optional[str] = None):
    """Raise ``error_cls`` when the peer answered with a non-2xx status."""
    if response.is_success:
        return
    raise error_cls(
        f"{message}: peer answered {response.status_code} {response.reason_phrase}",
        store_id=store_id, data_path=data_path, status_code=response.status_code,
    )


def require_content_length(response: httpx.Response, store_id: Optional[str] = None,
                           data_path: Optional[str] = None) -> int:
    """
    Declared body length of a fetch.

    Progress reporting is driven by this value, so a missing length is a
    protocol violation. A declared length of zero is an empty file.
    """
    try:
        length = header_int(response.headers, 'content-length')
    except ProtocolError as e:
        raise MissingContentLengthError(
            str(e), store_id=store_id, data_path=data_path,
            status_code=response.status_code,
        ) from e
    if length is None:
        raise MissingContentLengthError(
            "Content-Length header is missing",
            store_id=store_id, data_path=data_path, status_code=response.status_code,
        )
    return length
