"""
Secure Channel

TLS configuration shared by every request to a peer. Peers present
self-signed certificates, so server verification is relaxed; our own client
certificate is still presented when one is configured.
"""

import logging
import ssl
from pathlib import Path
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class SecureChannel:
    """
    TLS client context plus the httpx client factory built on it.

    Holds only the loaded credential material, so one channel can back any
    number of concurrent requests and sessions.
    """

    def __init__(self, host: str, port: int,
                 cert_path: Optional[Path] = None,
                 key_path: Optional[Path] = None,
                 timeout: Optional[float] = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            host: Peer address
            port: Peer propagation port
            cert_path: Client certificate (PEM)
            key_path: Private key for ``cert_path``; defaults to the cert file
            timeout: Per-request timeout in seconds, None to wait forever
            transport: Replacement transport (in-process peers, tests)
        """
        self.host = host
        self.port = port
        self.cert_path = Path(cert_path) if cert_path else None
        self.key_path = Path(key_path) if key_path else None
        self.timeout = timeout
        self.transport = transport
        self._ssl_context: Optional[ssl.SSLContext] = None

    @property
    def base_url(self) -> str:
        return f"https://{self.host}:{self.port}"

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def ssl_context(self) -> ssl.SSLContext:
        """Build the TLS context once, on first use."""
        if self._ssl_context is None:
            self._ssl_context = self._create_ssl_context()
        return self._ssl_context

    def _create_ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        if self.cert_path:
            context.load_cert_chain(
                certfile=str(self.cert_path),
                keyfile=str(self.key_path) if self.key_path else None,
            )
            logger.debug(f"Loaded client certificate {self.cert_path}")

        return context

    def client(self) -> httpx.AsyncClient:
        """
        A new AsyncClient bound to the peer.

        The caller owns the client and must close it (``async with``).
        """
        if self.transport is not None:
            return httpx.AsyncClient(
                base_url=self.base_url,
                transport=self.transport,
                timeout=self.timeout,
            )
        return httpx.AsyncClient(
            base_url=self.base_url,
            verify=self.ssl_context,
            timeout=self.timeout,
        )
