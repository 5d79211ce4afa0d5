"""Deployment record persistence and per-pair locking"""

import asyncio
import json

import pytest

from captain.api.exceptions import LedgerReadError, OperationInProgressError
from captain.core.deployment_ledger import DeploymentLedger
from captain.models.deployment import DeploymentRecord, utc_now


def make_record(program="counter", network="devnet", content_hash="aa" * 32):
    now = utc_now()
    return DeploymentRecord(
        program=program,
        network=network,
        program_address="Prog1111111111111111111111111111111111111111",
        content_hash=content_hash,
        size=1000,
        deployer="Depl1111111111111111111111111111111111111111",
        authority="Auth1111111111111111111111111111111111111111",
        deployed_at=now,
        updated_at=now,
        version="1.0.0",
    )


@pytest.fixture
def ledger(tmp_path):
    return DeploymentLedger(tmp_path / "deployments", tmp_path / "locks")


def test_save_and_load(ledger):
    record = make_record()

    path = asyncio.run(ledger.save(record))
    loaded = asyncio.run(ledger.load("counter", "devnet"))

    assert path == ledger.record_path("counter", "devnet")
    assert loaded == record
    assert asyncio.run(ledger.load("counter", "mainnet")) is None


def test_record_file_is_stable_json(ledger):
    asyncio.run(ledger.save(make_record()))

    text = ledger.record_path("counter", "devnet").read_text()
    data = json.loads(text)

    assert list(data) == sorted(data)
    assert text.endswith("\n")
    assert data["history"] == []


def test_upgrade_keeps_address_and_appends_history(ledger):
    record = make_record()
    upgraded = record.upgraded(content_hash="bb" * 32, size=1200,
                               deployer=record.deployer, authority=record.authority,
                               version="1.1.0")
    asyncio.run(ledger.save(upgraded))

    loaded = asyncio.run(ledger.load("counter", "devnet"))

    assert loaded.program_address == record.program_address
    assert loaded.deployed_at == record.deployed_at
    assert [h.content_hash for h in loaded.history] == [record.content_hash]
    assert loaded.history[0].version == "1.0.0"


@pytest.mark.parametrize("content", [
    "{broken",
    json.dumps({"program": "counter"}),
    json.dumps(dict(make_record(program="other").to_dict())),
])
def test_unreadable_record(ledger, content):
    path = ledger.record_path("counter", "devnet")
    path.parent.mkdir(parents=True)
    path.write_text(content)

    with pytest.raises(LedgerReadError) as exc_info:
        asyncio.run(ledger.load("counter", "devnet"))

    assert exc_info.value.exit_code == 6


def test_list_records(ledger):
    for program, network in [("b", "devnet"), ("a", "devnet"), ("a", "mainnet")]:
        asyncio.run(ledger.save(make_record(program, network)))

    everything = asyncio.run(ledger.list_records())
    devnet = asyncio.run(ledger.list_records("devnet"))

    assert [r.key for r in everything] == ["devnet:a", "devnet:b", "mainnet:a"]
    assert [r.program for r in devnet] == ["a", "b"]
    assert asyncio.run(ledger.list_records("testnet")) == []


def test_lock_held_by_another_process_fails_fast(ledger):
    lock = ledger.lock("counter", "devnet")
    lock.lock_path.parent.mkdir(parents=True)
    lock.lock_path.write_text('{"pid": 1}')

    async def attempt():
        async with ledger.lock("counter", "devnet"):
            pass

    with pytest.raises(OperationInProgressError):
        asyncio.run(attempt())


def test_lock_serializes_same_pair_in_process(ledger):
    events = []

    async def operation(name):
        async with ledger.lock("counter", "devnet"):
            events.append(f"{name}-start")
            await asyncio.sleep(0.01)
            events.append(f"{name}-end")

    async def main():
        await asyncio.gather(operation("first"), operation("second"))

    asyncio.run(main())

    assert events == ["first-start", "first-end", "second-start", "second-end"]
    assert not ledger.lock("counter", "devnet").lock_path.exists()


def test_distinct_pairs_do_not_block(ledger):
    async def main():
        async with ledger.lock("counter", "devnet"):
            async with ledger.lock("counter", "mainnet"):
                async with ledger.lock("escrow", "devnet"):
                    return True

    assert asyncio.run(main())
