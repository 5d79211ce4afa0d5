"""Deploy and upgrade flows against an in-memory cluster"""

import asyncio
import json

import pytest
from solders.keypair import Keypair

from captain.api.exceptions import (
    AddressConflictError,
    AuthorityMismatchError,
    ChunkWriteFailedError,
    OperationInProgressError,
    OperationMismatchError,
    ProgramCapacityError,
    SignerUnavailableError,
    TransientNetworkError,
    UnknownProgramError,
)
from captain.chain.instructions import find_programdata_address, parse_programdata_account
from captain.chain.memory import instruction_matches
from captain.constants import PROGRAMDATA_METADATA_SIZE
from captain.core.key_vault import load_keypair, write_keypair
from captain.models.artifact import Classification
from captain.models.deployment import DeployState
from captain.models.result import DeployResult, OperationStatus
from captain.utils.hash_utils import calculate_content_hash

from conftest import CHUNK_SIZE, NETWORK, PROGRAM, make_payload

FULL_DEPLOY = [
    DeployState.CLASSIFIED,
    DeployState.BUFFER_STAGING,
    DeployState.BUFFER_VERIFIED,
    DeployState.FINALIZING,
    DeployState.AUTHORITY_HANDOFF,
    DeployState.COMPLETE,
]


def onchain(project, address):
    data = project.cluster.accounts[find_programdata_address(address)].data
    return parse_programdata_account(data)


def deployed(project, payload=None):
    project.write_binary(payload or make_payload(1000))
    api = project.deployer_api()
    return api, api.deploy(PROGRAM, NETWORK)


def test_devnet_lifecycle(project):
    project.write_binary(make_payload(10 * 1024))
    api = project.deployer_api()

    first = api.deploy(PROGRAM, NETWORK)

    assert first.status is OperationStatus.SUCCESS
    assert first.is_success
    assert first.classification is Classification.FIRST_DEPLOY
    assert first.states() == FULL_DEPLOY
    record = first.record
    generated = project.resolver().resolve(PROGRAM, NETWORK).program_keypair_path
    assert record.program_address == str(load_keypair(generated).pubkey())
    assert record.authority == str(project.authority.pubkey())
    assert project.record_path().exists()
    assert not project.session_path().exists()

    submitted = len(project.cluster.submitted)
    second = api.deploy(PROGRAM, NETWORK)

    assert second.classification is Classification.NO_OP_NEEDED
    assert second.status is OperationStatus.SKIPPED
    assert second.states() == [DeployState.CLASSIFIED, DeployState.COMPLETE]
    assert len(project.cluster.submitted) == submitted

    project.write_binary(make_payload(10 * 1024, seed=2))
    third = api.upgrade(PROGRAM, NETWORK)

    assert third.classification is Classification.UPGRADE
    assert third.record.program_address == record.program_address
    assert third.record.content_hash != record.content_hash
    assert third.record.authority == record.authority
    assert [h.content_hash for h in third.record.history] == [record.content_hash]


def test_upgrade_twice_is_a_noop(project):
    api, _ = deployed(project)
    project.write_binary(make_payload(1000, seed=5))
    api.upgrade(PROGRAM, NETWORK)
    submitted = len(project.cluster.submitted)

    again = api.upgrade(PROGRAM, NETWORK)

    assert again.is_noop
    assert len(project.cluster.submitted) == submitted


def test_deployed_code_matches_content_hash(project):
    api, result = deployed(project)

    state = onchain(project, result.program_address)

    assert state.authority == str(project.authority.pubkey())
    assert state.authority != str(project.deployer.pubkey())
    assert state.code[:1000] == make_payload(1000)
    assert api.verify(NETWORK) == {f"{NETWORK}:{PROGRAM}": True}


def test_verify_detects_foreign_code(project):
    api, result = deployed(project)
    account = project.cluster.accounts[find_programdata_address(result.program_address)]
    data = bytearray(account.data)
    data[PROGRAMDATA_METADATA_SIZE] ^= 0xFF
    account.data = bytes(data)

    assert api.verify() == {f"{NETWORK}:{PROGRAM}": False}


def test_deployed_binary_is_archived(project):
    project.write_binary(make_payload(1000))
    api = project.deployer_api()

    api.deploy(PROGRAM, NETWORK, version="1.0.0")

    target = project.resolver().resolve(PROGRAM, NETWORK)
    archived = target.artifacts_dir / PROGRAM / "1.0.0" / "program.so"
    assert archived.read_bytes() == make_payload(1000)


def test_wrong_authority_cannot_upgrade(project):
    deployed(project)
    project.network["upgrade_authority"] = "keys/other.json"
    project.write_key(project.root / "keys" / "other.json")
    project.save()
    project.write_binary(make_payload(1000, seed=9))
    writes = len(project.cluster.written_offsets())
    record_text = project.record_path().read_text()

    api = project.deployer_api()
    with pytest.raises(AuthorityMismatchError) as exc_info:
        api.upgrade(PROGRAM, NETWORK)

    error = exc_info.value
    assert error.exit_code == 5
    assert error.expected == str(project.authority.pubkey())
    assert error.supplied != error.expected
    assert project.record_path().read_text() == record_text
    assert len(project.cluster.written_offsets()) == writes
    assert api.last_result.state is DeployState.ABORTED


def test_authority_rotation_with_override(project):
    _, first = deployed(project)
    old_authority_path = project.authority_path
    project.network["upgrade_authority"] = "keys/new-authority.json"
    new_authority = project.write_key(project.root / "keys" / "new-authority.json")
    project.save()
    project.write_binary(make_payload(1000, seed=4))

    result = project.deployer_api().upgrade(
        PROGRAM, NETWORK, authority_keypair=old_authority_path
    )

    assert result.record.authority == str(new_authority.pubkey())
    assert result.record.program_address == first.program_address
    assert onchain(project, first.program_address).authority == str(new_authority.pubkey())


def test_pubkey_only_authority_fails_before_writing(project):
    deployed(project)
    project.network["upgrade_authority"] = str(project.authority.pubkey())
    project.save()
    project.write_binary(make_payload(1000, seed=6))
    writes = len(project.cluster.written_offsets())

    with pytest.raises(SignerUnavailableError):
        project.deployer_api().upgrade(PROGRAM, NETWORK)

    assert len(project.cluster.written_offsets()) == writes


def test_pubkey_only_authority_with_signer_from_environment(project, monkeypatch):
    deployed(project)
    project.network["upgrade_authority"] = str(project.authority.pubkey())
    project.save()
    project.write_binary(make_payload(1000, seed=6))
    monkeypatch.setenv("UPGRADE_AUTHORITY_KEYPAIR", str(project.authority_path))

    result = project.deployer_api().upgrade(PROGRAM, NETWORK)

    assert result.status is OperationStatus.SUCCESS


def test_shared_keypair_still_records_authority(project):
    project.network["upgrade_authority"] = project.network["deployer"]
    project.save()

    _, result = deployed(project)

    assert result.record.authority == str(project.deployer.pubkey())
    assert onchain(project, result.program_address).authority == result.record.authority


def test_operation_mismatch(project):
    project.write_binary(make_payload(1000))
    api = project.deployer_api()

    with pytest.raises(OperationMismatchError) as exc_info:
        api.upgrade(PROGRAM, NETWORK)
    assert exc_info.value.exit_code == 7
    assert "captain deploy" in str(exc_info.value)
    assert project.cluster.submitted == []

    api.deploy(PROGRAM, NETWORK)
    project.write_binary(make_payload(1000, seed=2))

    with pytest.raises(OperationMismatchError) as exc_info:
        api.deploy(PROGRAM, NETWORK)
    assert "captain upgrade" in str(exc_info.value)


def test_upgrade_beyond_capacity(project):
    api, _ = deployed(project, make_payload(500))
    project.write_binary(make_payload(1500))

    with pytest.raises(ProgramCapacityError) as exc_info:
        api.upgrade(PROGRAM, NETWORK)

    assert exc_info.value.capacity == 1000


def test_pinned_address_must_match_record(project):
    deployed(project)
    project.network["programs"] = {PROGRAM: str(Keypair().pubkey())}
    project.save()
    project.write_binary(make_payload(1000, seed=3))

    with pytest.raises(AddressConflictError):
        project.deployer_api().upgrade(PROGRAM, NETWORK)


def test_deploy_with_pinned_keypair(project):
    keypair = Keypair()
    write_keypair(project.root / "keys" / "counter.json", keypair)
    project.network["programs"] = {PROGRAM: {"keypair": "keys/counter.json"}}
    project.save()

    _, result = deployed(project)

    assert result.program_address == str(keypair.pubkey())


def test_failed_upgrade_resumes_from_checkpoint(project):
    api, first = deployed(project)
    project.write_binary(make_payload(1000, seed=7))
    project.cluster.inject_fault(instruction_matches("write", offset=3 * CHUNK_SIZE), times=3)

    with pytest.raises(ChunkWriteFailedError) as exc_info:
        api.upgrade(PROGRAM, NETWORK)

    partial = api.last_result
    assert exc_info.value.offset == 3 * CHUNK_SIZE
    assert partial.state is DeployState.ABORTED
    assert partial.bytes_written == 3 * CHUNK_SIZE
    assert partial.total_size == 1000
    assert partial.resume_command == f"captain upgrade --program {PROGRAM} --network {NETWORK}"
    assert json.loads(project.record_path().read_text())["content_hash"] == first.content_hash

    buffer = partial.buffer_address
    result = api.upgrade(PROGRAM, NETWORK)

    assert project.cluster.written_offsets(buffer) == list(range(0, 1000, CHUNK_SIZE))
    assert result.record.content_hash != first.content_hash
    assert not project.session_path().exists()


def test_lost_deploy_confirmation_is_recovered(project):
    project.write_binary(make_payload(1000))
    project.cluster.inject_fault(instruction_matches("deploy_with_max_data_len"),
                                 after_apply=True)
    api = project.deployer_api()

    with pytest.raises(TransientNetworkError):
        api.deploy(PROGRAM, NETWORK)
    assert not project.record_path().exists()

    result = api.deploy(PROGRAM, NETWORK)

    assert result.recovered
    assert result.states() == [DeployState.CLASSIFIED, DeployState.AUTHORITY_HANDOFF,
                               DeployState.COMPLETE]
    assert len(project.cluster.committed("deploy_with_max_data_len")) == 1
    assert onchain(project, result.program_address).authority == str(project.authority.pubkey())


def test_lost_upgrade_confirmation_is_recovered(project):
    api, first = deployed(project)
    project.write_binary(make_payload(1000, seed=8))
    project.cluster.inject_fault(instruction_matches("upgrade"), after_apply=True)

    with pytest.raises(TransientNetworkError):
        api.upgrade(PROGRAM, NETWORK)

    result = api.upgrade(PROGRAM, NETWORK)

    assert result.recovered
    assert len(project.cluster.committed("upgrade")) == 1
    assert result.record.program_address == first.program_address


def test_handoff_failure_leaves_no_record_and_recovers(project):
    project.write_binary(make_payload(1000))
    project.cluster.inject_fault(instruction_matches("set_program_authority"), times=3)
    api = project.deployer_api()

    with pytest.raises(TransientNetworkError):
        api.deploy(PROGRAM, NETWORK)

    assert api.last_result.states()[-2:] == [DeployState.AUTHORITY_HANDOFF,
                                             DeployState.ABORTED]
    assert not project.record_path().exists()

    result = api.deploy(PROGRAM, NETWORK)

    assert result.recovered
    assert result.record.authority == str(project.authority.pubkey())


def test_lost_handoff_confirmation_is_retried(project):
    project.write_binary(make_payload(1000))
    project.cluster.inject_fault(instruction_matches("set_program_authority"),
                                 after_apply=True)

    result = project.deployer_api().deploy(PROGRAM, NETWORK)

    assert result.status is OperationStatus.SUCCESS
    assert len(project.cluster.committed("set_program_authority")) == 1


def test_pair_in_use_by_another_process(project):
    project.write_binary(make_payload(1000))
    api = project.deployer_api()
    lock = api.ledger.lock(PROGRAM, NETWORK)
    lock.lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock.lock_path.write_text("{}")

    with pytest.raises(OperationInProgressError):
        api.deploy(PROGRAM, NETWORK)

    assert project.cluster.submitted == []


def test_distinct_pairs_deploy_concurrently(project):
    project.write_binary(make_payload(1000), PROGRAM)
    project.write_binary(make_payload(800, seed=3), "escrow")
    api = project.deployer_api()

    results = asyncio.run(api.deploy_many_async(
        [(PROGRAM, NETWORK), ("escrow", NETWORK), ("missing", NETWORK)]
    ))

    counter, escrow, missing = results
    assert isinstance(counter, DeployResult) and counter.status is OperationStatus.SUCCESS
    assert isinstance(escrow, DeployResult) and escrow.status is OperationStatus.SUCCESS
    assert counter.program_address != escrow.program_address
    assert isinstance(missing, UnknownProgramError)
    assert [r.program for r in api.status(NETWORK)] == ["counter", "escrow"]


def test_upgrade_to_a_prefix_of_the_deployed_code(project):
    old = make_payload(2000)
    api, first = deployed(project, old)
    project.write_binary(old[:1000])

    result = api.upgrade(PROGRAM, NETWORK)

    assert not result.recovered
    assert result.states() == FULL_DEPLOY
    assert len(project.cluster.committed("upgrade")) == 1
    code = onchain(project, first.program_address).code
    assert code[:1000] == old[:1000]
    assert not any(code[1000:])
    assert api.verify(NETWORK) == {f"{NETWORK}:{PROGRAM}": True}


def test_verify_rejects_longer_code_behind_a_matching_prefix(project):
    old = make_payload(2000)
    deployed(project, old)
    record = json.loads(project.record_path().read_text())
    record["content_hash"] = calculate_content_hash(old[:1000])
    record["size"] = 1000
    project.record_path().write_text(json.dumps(record))

    assert project.deployer_api().verify(NETWORK) == {f"{NETWORK}:{PROGRAM}": False}


def test_cancel_between_chunks_keeps_checkpoint(project):
    project.write_binary(make_payload(1000))
    api = project.deployer_api()
    stop_at = 3 * CHUNK_SIZE

    async def main():
        def progress(written, total):
            if written == stop_at:
                task.cancel()

        task = asyncio.ensure_future(api.deploy_async(PROGRAM, NETWORK, progress=progress))
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(main())

    partial = api.last_result
    buffer = partial.buffer_address
    assert partial.state is DeployState.ABORTED
    assert partial.bytes_written == stop_at
    assert project.session_path().exists()
    assert not project.record_path().exists()
    assert project.cluster.written_offsets(buffer) == [0, CHUNK_SIZE, 2 * CHUNK_SIZE]

    result = api.deploy(PROGRAM, NETWORK)

    assert result.status is OperationStatus.SUCCESS
    assert project.cluster.written_offsets(buffer) == list(range(0, 1000, CHUNK_SIZE))


def test_cancel_during_finalize_still_records(project):
    project.write_binary(make_payload(1000))
    api = project.deployer_api()

    async def main():
        finalizing = instruction_matches("deploy_with_max_data_len")

        def cancel_on_finalize(transaction):
            if finalizing(transaction):
                task.cancel()
            return False

        project.cluster.inject_fault(cancel_on_finalize)
        task = asyncio.ensure_future(api.deploy_async(PROGRAM, NETWORK))
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(main())

    result = api.last_result
    assert result.status is OperationStatus.SUCCESS
    assert result.states() == FULL_DEPLOY
    assert project.record_path().exists()
    assert not project.session_path().exists()
    assert onchain(project, result.program_address).authority == str(project.authority.pubkey())


def test_resume_command_repeats_invocation_options(project):
    api, _ = deployed(project)
    signer_path = project.authority_path
    artifact = project.root / "build" / "counter-next.so"
    artifact.parent.mkdir()
    artifact.write_bytes(make_payload(1000, seed=8))
    project.cluster.inject_fault(instruction_matches("write", offset=CHUNK_SIZE), times=3)

    with pytest.raises(ChunkWriteFailedError):
        api.upgrade(PROGRAM, NETWORK, version="2.0.0", artifact_path=artifact,
                    authority_keypair=signer_path)

    assert api.last_result.resume_command == (
        f"captain upgrade --program {PROGRAM} --network {NETWORK} --version 2.0.0 "
        f"--artifact {artifact} --authority-keypair {signer_path}"
    )
