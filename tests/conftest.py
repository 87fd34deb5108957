"""
Shared fixtures: an in-process mock peer and clients wired to it.
"""

import httpx
import pytest

from mock_peer import MockPeer, create_app
from propagation.auth.credentials import Credentials
from propagation.auth.signer import KeyFileSigner
from propagation.client import PropagationClient
from propagation.config import Config
from propagation.transfer.progress import null_progress

STORE_ID = 'a' * 64


class RecordingPrompt:
    """
    Credential prompt that answers from a fixed pair and counts calls.

    When given a ``log`` list (e.g. the mock peer's call log), each prompt
    is also appended there as ``("PROMPT", peer_address)``.
    """

    def __init__(self, username='admin', password='secret', log=None):
        self.credentials = Credentials(username=username, password=password)
        self.calls = []
        self.log = log

    def ask(self, peer_address):
        self.calls.append(peer_address)
        if self.log is not None:
            self.log.append(('PROMPT', peer_address))
        return self.credentials


class RecordingProgress:
    """Progress factory that keeps every event per label."""

    def __init__(self):
        self.events = {}

    def __call__(self, label):
        events = self.events.setdefault(label, [])

        class Sink:
            def on_start(self, total, name):
                events.append(('start', total))

            def on_progress(self, transferred):
                events.append(('progress', transferred))

            def on_end(self):
                events.append(('end',))

        return Sink()


@pytest.fixture
def peer():
    return MockPeer()


@pytest.fixture
def transport(peer):
    return httpx.ASGITransport(app=create_app(peer))


@pytest.fixture
def signer(tmp_path):
    return KeyFileSigner(tmp_path / 'keys' / 'propagation.key')


@pytest.fixture
def prompt():
    return RecordingPrompt()


@pytest.fixture
def config(tmp_path):
    return Config(
        store_root=tmp_path / 'stores',
        key_file=tmp_path / 'keys' / 'propagation.key',
        upload_concurrency=3,
        download_concurrency=5,
    )


@pytest.fixture
def make_client(config, transport, signer, prompt):
    """Factory for PropagationClients talking to the mock peer."""
    def factory(store_id=STORE_ID, **kwargs):
        kwargs.setdefault('signer', signer)
        kwargs.setdefault('prompt', prompt)
        kwargs.setdefault('progress', null_progress)
        return PropagationClient(config, store_id, 'peer.test', transport=transport, **kwargs)
    return factory
