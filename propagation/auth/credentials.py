"""
Peer Credentials

Credentials are only needed to create a store the peer does not know yet.
They live in memory for the duration of one upload and are never written
to disk.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from rich.console import Console
from rich.prompt import Prompt


@dataclass(frozen=True)
class Credentials:
    """Basic-auth username and password for one upload."""
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"

    def auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.username, self.password)


def basic_auth(credentials: Optional[Credentials]) -> Optional[httpx.BasicAuth]:
    """httpx auth for a request, or None when no credentials were acquired."""
    return credentials.auth() if credentials else None


class CredentialPrompt(Protocol):
    """Asks the operator for credentials for a peer."""

    def ask(self, peer_address: str) -> Credentials: ...


class PromptCredentials:
    """Interactive prompt on the terminal (password input hidden)."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def ask(self, peer_address: str) -> Credentials:
        self.console.print(f"[yellow]Credentials required for {peer_address}[/yellow]")
        username = Prompt.ask("Username", console=self.console)
        password = Prompt.ask("Password", console=self.console, password=True)
        return Credentials(username=username, password=password)


class StaticCredentials:
    """Credentials supplied up front (CLI options, environment)."""

    def __init__(self, credentials: Credentials):
        self.credentials = credentials

    def ask(self, peer_address: str) -> Credentials:
        return self.credentials
