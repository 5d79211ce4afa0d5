"""Chunked, resumable buffer staging"""

import asyncio
from datetime import datetime, timezone

import pytest
from solders.keypair import Keypair

from captain.api.exceptions import (
    BufferCorruptedError,
    ChunkWriteFailedError,
    InsufficientFundsError,
)
from captain.chain.instructions import parse_buffer_account
from captain.chain.keys import DeployerKey
from captain.chain.memory import MemoryChainClient, instruction_matches
from captain.constants import BUFFER_METADATA_SIZE, LAMPORTS_PER_SOL
from captain.core.artifact_versioner import content_hash
from captain.core.buffer_writer import BufferWriter
from captain.core.session_store import SessionStore
from captain.models.artifact import ProgramArtifact
from captain.models.config import DeploySettings, RetryPolicy

from conftest import CHUNK_SIZE, NETWORK, PROGRAM, make_payload


def make_artifact(payload: bytes) -> ProgramArtifact:
    return ProgramArtifact(
        program=PROGRAM,
        payload=payload,
        content_hash=content_hash(payload),
        built_at=datetime.now(timezone.utc),
    )


class Harness:
    """A writer on a fresh cluster with a funded deployer"""

    def __init__(self, tmp_path, airdrop_sol: int = 100):
        self.cluster = MemoryChainClient.get_cluster(
            f"writer-{tmp_path.name}", airdrop_sol * LAMPORTS_PER_SOL
        )
        self.client = MemoryChainClient({"url": f"memory://{self.cluster.name}"},
                                        cluster=self.cluster)
        self.sessions = SessionStore(tmp_path / "sessions")
        self.settings = DeploySettings(
            chunk_size=CHUNK_SIZE,
            retry=RetryPolicy(max_attempts=3, retry_delay=0, max_retry_delay=0),
        )
        self.deployer = DeployerKey.from_keypair(Keypair())
        self.reports = []

    def writer(self) -> BufferWriter:
        return BufferWriter(self.client, self.sessions, self.settings,
                            progress=lambda done, total: self.reports.append((done, total)))

    def stage(self, artifact):
        return asyncio.run(self.writer().stage(artifact, NETWORK, self.deployer))

    def buffer_payload(self, address: str) -> bytes:
        return parse_buffer_account(self.cluster.accounts[address].data).payload


@pytest.fixture
def harness(tmp_path):
    return Harness(tmp_path)


def test_stages_whole_binary_in_order(harness):
    artifact = make_artifact(make_payload(1000))

    session = harness.stage(artifact)

    assert session.is_complete
    assert harness.buffer_payload(session.buffer_address) == artifact.payload
    assert harness.cluster.written_offsets(session.buffer_address) == list(range(0, 1000, CHUNK_SIZE))
    assert harness.reports[0] == (0, 1000)
    assert harness.reports[-1] == (1000, 1000)


def test_transient_failures_are_retried(harness):
    artifact = make_artifact(make_payload(600))
    harness.cluster.inject_fault(instruction_matches("write", offset=256), times=2)

    session = harness.stage(artifact)

    assert harness.cluster.written_offsets(session.buffer_address) == [0, 128, 256, 384, 512]


def test_failed_chunk_reports_durable_offset_and_resumes(harness):
    artifact = make_artifact(make_payload(1000))
    harness.cluster.inject_fault(instruction_matches("write", offset=512), times=3)

    with pytest.raises(ChunkWriteFailedError) as exc_info:
        harness.stage(artifact)

    error = exc_info.value
    assert error.offset == 512
    assert error.total == 1000
    assert error.attempts == 3

    stored = harness.sessions.load(PROGRAM, NETWORK)
    assert stored.bytes_written == 512

    session = harness.stage(artifact)

    assert session.buffer_address == stored.buffer_address
    # Every chunk is committed exactly once across both attempts
    assert harness.cluster.written_offsets(session.buffer_address) == list(range(0, 1000, CHUNK_SIZE))
    assert harness.buffer_payload(session.buffer_address) == artifact.payload


def test_tampered_prefix_is_rewritten_from_zero(harness):
    artifact = make_artifact(make_payload(700))
    harness.cluster.inject_fault(instruction_matches("write", offset=384), times=3)
    with pytest.raises(ChunkWriteFailedError):
        harness.stage(artifact)

    address = harness.sessions.load(PROGRAM, NETWORK).buffer_address
    account = harness.cluster.accounts[address]
    data = bytearray(account.data)
    data[BUFFER_METADATA_SIZE] ^= 0xFF
    account.data = bytes(data)

    harness.stage(artifact)

    assert harness.cluster.written_offsets(address)[3:] == [0, 128, 256, 384, 512, 640]
    assert harness.buffer_payload(address) == artifact.payload


def test_corrupted_buffer_fails_verification(harness):
    artifact = make_artifact(make_payload(300))
    harness.cluster.corrupt_writes = True

    with pytest.raises(BufferCorruptedError) as exc_info:
        harness.stage(artifact)

    assert exc_info.value.expected == artifact.content_hash
    assert harness.sessions.load(PROGRAM, NETWORK).bytes_written == 0

    harness.cluster.corrupt_writes = False
    session = harness.stage(artifact)

    assert harness.buffer_payload(session.buffer_address) == artifact.payload


def test_stale_session_buffer_is_closed(harness):
    old = make_artifact(make_payload(500, seed=1))
    harness.cluster.inject_fault(instruction_matches("write", offset=256), times=3)
    with pytest.raises(ChunkWriteFailedError):
        harness.stage(old)
    stale = harness.sessions.load(PROGRAM, NETWORK).buffer_address

    new = make_artifact(make_payload(500, seed=2))
    session = harness.stage(new)

    assert session.buffer_address != stale
    assert stale not in harness.cluster.accounts
    assert session.content_hash == new.content_hash


def test_unfunded_deployer_is_rejected_before_any_transaction(tmp_path):
    harness = Harness(tmp_path, airdrop_sol=0)
    artifact = make_artifact(make_payload(1000))

    with pytest.raises(InsufficientFundsError) as exc_info:
        harness.stage(artifact)

    assert exc_info.value.available == 0
    assert exc_info.value.required > 0
    assert harness.cluster.submitted == []
    assert harness.sessions.load(PROGRAM, NETWORK) is None


def test_close_buffer_reclaims_rent(harness):
    artifact = make_artifact(make_payload(400))
    session = harness.stage(artifact)
    writer = harness.writer()
    before = asyncio.run(harness.client.get_balance(harness.deployer.pubkey))

    closed = asyncio.run(writer.close_buffer(session, harness.deployer))

    assert closed
    assert session.buffer_address not in harness.cluster.accounts
    assert asyncio.run(harness.client.get_balance(harness.deployer.pubkey)) > before


def test_unreadable_session_is_ignored(harness):
    path = harness.sessions.path(PROGRAM, NETWORK)
    path.parent.mkdir(parents=True)
    path.write_text("{not json")

    assert harness.sessions.load(PROGRAM, NETWORK) is None

    session = harness.stage(make_artifact(make_payload(200)))
    assert session.is_complete
