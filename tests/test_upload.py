"""
Upload tests against the in-process mock peer.

Tests cover:
- Full push into a store the peer does not know (credentials, commit)
- Skipping a snapshot the peer already holds
- Skipping files the peer already has inside a session
- All-or-nothing commit and nonce binding
- Concurrency bound on file uploads
"""

import pytest

from conftest import RecordingProgress, RecordingPrompt, STORE_ID
from mock_peer import write_snapshot
from propagation.client import PropagationClient
from propagation.exceptions import (
    CommitError, ProbeError, SessionStartError, TransferCancelledError,
    TransferError,
)
from propagation.file.storage import LocalContentStore
from propagation.transfer.channel import SecureChannel
from propagation.transfer.scheduler import FailurePolicy, TransferScheduler
from propagation.transfer.uploader import UploadSession, UploadState


class StaleSigner:
    """Signs a fixed nonce instead of the one it is given."""

    def __init__(self, signer):
        self.signer = signer

    def public_key(self):
        return self.signer.public_key()

    def sign(self, nonce):
        return self.signer.sign('stale-nonce')


def files(count, size=100):
    return {f"file{i}.bin": bytes([i]) * (size + i) for i in range(count)}


class TestPushNewStore:
    """Test pushing into a store the peer does not hold yet."""

    @pytest.mark.asyncio
    async def test_push_creates_store(self, config, peer, prompt, make_client):
        root_hash, manifest, blobs = write_snapshot(
            config.store_root, STORE_ID, {'a.txt': b'alpha', 'b.txt': b'bravo'}
        )

        result = await make_client().push(root_hash)

        assert not result.already_replicated
        assert result.files_uploaded == 2
        assert result.files_skipped == 0
        assert result.commit['success'] is True
        assert prompt.calls == ['peer.test']

        puts = [i for i, (m, p) in enumerate(peer.calls) if m == 'PUT']
        commits = [i for i, (m, p) in enumerate(peer.calls) if p.startswith('/commit')]
        assert len(puts) == 2
        assert len(commits) == 1 and commits[0] > max(puts)

        store = peer.stores[STORE_ID]
        assert root_hash in store.root_hashes
        assert store.files[f"{root_hash}.dat"] == manifest.raw
        for data_path, data in blobs.items():
            assert store.files[data_path] == data

    @pytest.mark.asyncio
    async def test_credentials_sent_on_start_and_commit(self, config, peer, make_client):
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, {'a': b'1'})

        await make_client().push(root_hash)

        assert peer.auth_headers['start'].startswith('Basic ')
        assert peer.auth_headers['commit'] == peer.auth_headers['start']

    @pytest.mark.asyncio
    async def test_prompt_precedes_session_start(self, config, peer, make_client):
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, {'a': b'1'})
        prompt = RecordingPrompt(log=peer.calls)

        await make_client(prompt=prompt).push(root_hash)

        prompts = [i for i, (m, _) in enumerate(peer.calls) if m == 'PROMPT']
        starts = [i for i, (m, p) in enumerate(peer.calls)
                  if m == 'POST' and p == f"/upload/{STORE_ID}"]
        assert len(prompts) == 1
        assert len(starts) == 1
        assert prompts[0] < starts[0]

    @pytest.mark.asyncio
    async def test_wrong_credentials_fail_session_start(self, config, peer, make_client):
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, {'a': b'1'})

        with pytest.raises(SessionStartError) as exc_info:
            await make_client(prompt=RecordingPrompt(password='wrong')).push(root_hash)

        assert exc_info.value.status_code == 401
        assert peer.count('PUT', '/upload') == 0
        assert STORE_ID not in peer.stores

    @pytest.mark.asyncio
    async def test_progress_events_per_file(self, config, make_client):
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, {'a.txt': b'x' * 1000})
        progress = RecordingProgress()

        await make_client(progress=progress).push(root_hash)

        events = progress.events['a.txt']
        assert events[0] == ('start', 1000)
        assert ('progress', 1000) in events
        assert events[-1] == ('end',)


class TestPushExistingStore:
    """Test pushing into a store the peer already holds."""

    @pytest.mark.asyncio
    async def test_already_replicated_is_a_no_op(self, config, peer, prompt, make_client):
        root_hash, manifest, blobs = write_snapshot(config.store_root, STORE_ID, files(3))
        peer.add_snapshot(STORE_ID, root_hash, manifest.raw, blobs)
        peer.calls.clear()

        result = await make_client().push(root_hash)

        assert result.already_replicated
        assert prompt.calls == []
        assert peer.calls == [('HEAD', f"/{STORE_ID}")]

    @pytest.mark.asyncio
    async def test_no_credentials_for_existing_store(self, config, peer, prompt, make_client):
        peer.add_store(STORE_ID)
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, files(2))

        result = await make_client().push(root_hash)

        assert result.files_uploaded == 2
        assert prompt.calls == []
        assert peer.auth_headers['start'] is None

    @pytest.mark.asyncio
    async def test_files_peer_has_are_skipped(self, config, peer, make_client):
        peer.add_store(STORE_ID)
        root_hash, manifest, blobs = write_snapshot(config.store_root, STORE_ID, files(4))
        existing = sorted(blobs)[:2]
        peer.existing_for_session.update(existing)

        result = await make_client().push(root_hash)

        assert result.files_uploaded == 2
        assert result.files_skipped == 2
        assert peer.count('PUT', '/upload') == 2
        for data_path in existing:
            assert ('PUT', f"/upload/{STORE_ID}/{result.session_id}/{data_path}") not in peer.calls


class TestAllOrNothing:
    """Test that a session with a failed file is never committed."""

    @pytest.mark.asyncio
    async def test_failed_put_aborts_before_commit(self, config, peer, make_client):
        peer.add_store(STORE_ID)
        root_hash, _, blobs = write_snapshot(config.store_root, STORE_ID, files(5))
        bad = sorted(blobs)[2]
        peer.fail_puts.add(bad)

        with pytest.raises(TransferError) as exc_info:
            await make_client().push(root_hash)

        assert exc_info.value.data_path == bad
        assert exc_info.value.status_code == 500
        assert peer.count('POST', '/commit') == 0
        assert root_hash not in peer.stores[STORE_ID].root_hashes

    @pytest.mark.asyncio
    async def test_drain_uploads_remaining_files(self, config, peer, make_client):
        peer.add_store(STORE_ID)
        root_hash, _, blobs = write_snapshot(config.store_root, STORE_ID, files(5))
        peer.fail_puts.add(sorted(blobs)[0])

        with pytest.raises(TransferError):
            await make_client().push(root_hash)

        assert peer.count('PUT', '/upload') == 5

    @pytest.mark.asyncio
    async def test_cancel_policy_raises_root_failure(self, config, peer, make_client):
        config.failure_policy = FailurePolicy.CANCEL
        config.upload_concurrency = 1
        peer.add_store(STORE_ID)
        root_hash, manifest, _ = write_snapshot(config.store_root, STORE_ID, files(4))
        first = manifest.transfer_tasks()[0].data_path
        peer.fail_puts.add(first)

        with pytest.raises(TransferError) as exc_info:
            await make_client().push(root_hash)

        assert not isinstance(exc_info.value, TransferCancelledError)
        assert exc_info.value.data_path == first
        assert peer.count('PUT', '/upload') == 1
        assert peer.count('POST', '/commit') == 0

    @pytest.mark.asyncio
    async def test_stale_signature_rejected(self, config, peer, signer, make_client):
        peer.add_store(STORE_ID)
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, files(2))

        with pytest.raises(TransferError) as exc_info:
            await make_client(signer=StaleSigner(signer)).push(root_hash)

        assert exc_info.value.status_code == 403
        assert len(peer.rejected_signatures) == 2
        assert peer.count('POST', '/commit') == 0

    @pytest.mark.asyncio
    async def test_commit_rejected(self, config, peer, make_client):
        peer.add_store(STORE_ID)
        peer.reject_commit = True
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, files(1))

        with pytest.raises(CommitError) as exc_info:
            await make_client().push(root_hash)

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_local_manifest(self, peer, make_client):
        peer.add_store(STORE_ID)

        with pytest.raises(SessionStartError):
            await make_client().push('f' * 64)

        assert peer.count('POST', '/upload') == 0

    @pytest.mark.asyncio
    async def test_missing_local_file(self, config, peer, make_client):
        peer.add_store(STORE_ID)
        root_hash, _, blobs = write_snapshot(config.store_root, STORE_ID, files(2))
        missing = sorted(blobs)[0]
        (config.store_root / STORE_ID / missing).unlink()

        with pytest.raises(TransferError) as exc_info:
            await make_client().push(root_hash)

        assert exc_info.value.data_path == missing
        assert peer.count('POST', '/commit') == 0


class TestUploadConcurrency:
    """Test the upload concurrency bound."""

    @pytest.mark.asyncio
    async def test_bounded_parallel_uploads(self, config, peer, make_client):
        peer.add_store(STORE_ID)
        peer.delay = 0.05
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, files(8))

        result = await make_client().push(root_hash)

        assert result.files_uploaded == 8
        assert 1 < peer.max_in_flight <= config.upload_concurrency


class TestProbeFailures:
    """Test transport failures during the initial probe."""

    @pytest.mark.asyncio
    async def test_unreachable_peer(self, config):
        client = PropagationClient(config, STORE_ID, '127.0.0.1')
        client.channel.port = 1  # nothing listens here

        with pytest.raises(ProbeError):
            await client.probe()


class TestSessionStates:
    """Test UploadSession state transitions."""

    def session(self, config, transport, signer, prompt, root_hash):
        channel = SecureChannel('peer.test', config.port, transport=transport)
        client = channel.client()
        return client, UploadSession(
            client=client,
            store=LocalContentStore(config.store_root, STORE_ID),
            root_hash=root_hash,
            signer=signer,
            scheduler=TransferScheduler(2),
            prompt=prompt,
        )

    @pytest.mark.asyncio
    async def test_committed(self, config, transport, signer, prompt):
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, files(2))

        client, session = self.session(config, transport, signer, prompt, root_hash)
        async with client:
            result = await session.run()

        assert session.state is UploadState.COMMITTED
        assert session.credentials == prompt.credentials
        assert result.session_id == session.session_id

    @pytest.mark.asyncio
    async def test_skipped(self, config, peer, transport, signer, prompt):
        root_hash, manifest, blobs = write_snapshot(config.store_root, STORE_ID, files(1))
        peer.add_snapshot(STORE_ID, root_hash, manifest.raw, blobs)

        client, session = self.session(config, transport, signer, prompt, root_hash)
        async with client:
            await session.run()

        assert session.state is UploadState.SKIPPED
        assert session.session_id is None

    @pytest.mark.asyncio
    async def test_aborted(self, config, peer, transport, signer, prompt):
        peer.add_store(STORE_ID)
        peer.reject_commit = True
        root_hash, _, _ = write_snapshot(config.store_root, STORE_ID, files(1))

        client, session = self.session(config, transport, signer, prompt, root_hash)
        async with client:
            with pytest.raises(CommitError):
                await session.run()

        assert session.state is UploadState.ABORTED
