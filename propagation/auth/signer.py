"""
Ownership Signing

The peer hands out a nonce per file and per session; the uploader proves
it holds a key by signing that nonce. Anything with ``public_key()`` and
``sign(nonce)`` can act as the signer. KeyFileSigner keeps an Ed25519 key
in a PEM file.
"""

import logging
import os
from pathlib import Path
from typing import Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey, Ed25519PublicKey,
)
from cryptography.exceptions import InvalidSignature

from ..exceptions import ConfigError

logger = logging.getLogger(__name__)


class AuthSigner(Protocol):
    """Produces the public key and ownership signature for a nonce."""

    def public_key(self) -> bytes: ...

    def sign(self, nonce: str) -> bytes: ...


class KeyFileSigner:
    """Ed25519 signer backed by a PEM key file, created on first use."""

    def __init__(self, key_path: Path):
        self.key_path = Path(key_path)
        if self.key_path.exists():
            with open(self.key_path, 'rb') as f:
                try:
                    self.private_key = serialization.load_pem_private_key(f.read(), password=None)
                except (ValueError, TypeError) as e:
                    raise ConfigError(f"Cannot load signing key {self.key_path}: {e}") from e
            if not isinstance(self.private_key, Ed25519PrivateKey):
                raise ConfigError(f"{self.key_path} does not hold an Ed25519 key")
        else:
            self.private_key = Ed25519PrivateKey.generate()
            self._save()
            logger.info(f"Generated new signing key at {self.key_path}")

    def _save(self):
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'wb') as f:
            f.write(pem)

    def public_key(self) -> bytes:
        # Raw encoding, 32 bytes
        return self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def sign(self, nonce: str) -> bytes:
        return self.private_key.sign(nonce.encode('utf-8'))


def verify_signature(public_key: bytes, nonce: str, signature: bytes) -> bool:
    """Check an ownership signature the way a peer does."""
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, nonce.encode('utf-8'))
        return True
    except (InvalidSignature, ValueError):
        return False
