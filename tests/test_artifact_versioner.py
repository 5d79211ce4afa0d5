"""Content hashing, classification and version labels"""

import asyncio
import logging

import pytest

from captain.api.exceptions import ArtifactNotFoundError, ConfigError
from captain.core.artifact_versioner import ArtifactVersioner, classify, content_hash
from captain.models.artifact import Classification
from captain.models.deployment import DeploymentRecord, utc_now

from conftest import PROGRAM, make_payload


def load(versioner, path, version=None):
    return asyncio.run(versioner.load_artifact(path, PROGRAM, version))


def record_for(artifact, version=None):
    now = utc_now()
    return DeploymentRecord(
        program=PROGRAM,
        network="devnet",
        program_address="11111111111111111111111111111111",
        content_hash=artifact.content_hash,
        size=artifact.size,
        deployer="deployer",
        authority="authority",
        deployed_at=now,
        updated_at=now,
        version=version,
    )


def test_hash_depends_only_on_bytes(tmp_path):
    payload = make_payload(500)
    first = tmp_path / "a" / "counter.so"
    second = tmp_path / "b" / "counter.so"
    for path in (first, second):
        path.parent.mkdir()
        path.write_bytes(payload)

    versioner = ArtifactVersioner()
    a = load(versioner, first)
    b = load(versioner, second)

    assert a.content_hash == b.content_hash == content_hash(payload)
    assert len(a.content_hash) == 64
    assert content_hash(make_payload(500, seed=2)) != a.content_hash


def test_classification(tmp_path):
    path = tmp_path / "counter.so"
    path.write_bytes(make_payload(300))
    artifact = load(ArtifactVersioner(), path)

    assert classify(artifact, None) is Classification.FIRST_DEPLOY
    assert classify(artifact, record_for(artifact)) is Classification.NO_OP_NEEDED

    path.write_bytes(make_payload(300, seed=3))
    changed = load(ArtifactVersioner(), path)
    assert classify(changed, record_for(artifact)) is Classification.UPGRADE


def test_missing_binary(tmp_path):
    with pytest.raises(ArtifactNotFoundError):
        load(ArtifactVersioner(), tmp_path / "counter.so")


def test_empty_binary(tmp_path):
    path = tmp_path / "counter.so"
    path.write_bytes(b"")

    with pytest.raises(ConfigError):
        load(ArtifactVersioner(), path)


def test_explicit_version_is_validated(tmp_path):
    path = tmp_path / "counter.so"
    path.write_bytes(make_payload(10))

    assert load(ArtifactVersioner(), path, "1.2.0").version == "1.2.0"
    with pytest.raises(ConfigError):
        load(ArtifactVersioner(), path, "not a version")


def test_version_from_cargo_manifest(tmp_path):
    crate = tmp_path / "programs" / PROGRAM
    crate.mkdir(parents=True)
    (crate / "Cargo.toml").write_text('[package]\nname = "counter"\nversion = "0.4.1"\n')
    binary = tmp_path / "counter.so"
    binary.write_bytes(make_payload(10))

    artifact = load(ArtifactVersioner(tmp_path), binary)

    assert artifact.version == "0.4.1"
    assert artifact.label == "0.4.1"


def test_workspace_inherited_version_is_ignored(tmp_path):
    crate = tmp_path / "programs" / PROGRAM
    crate.mkdir(parents=True)
    (crate / "Cargo.toml").write_text('[package]\nname = "counter"\n\n[package.version]\nworkspace = true\n')

    assert ArtifactVersioner(tmp_path).read_cargo_version(PROGRAM) is None


def test_label_falls_back_to_short_hash(tmp_path):
    binary = tmp_path / "counter.so"
    binary.write_bytes(make_payload(10))

    artifact = load(ArtifactVersioner(tmp_path), binary)

    assert artifact.version is None
    assert artifact.label == artifact.content_hash[:16]


def test_version_regression_warns(tmp_path, caplog):
    binary = tmp_path / "counter.so"
    binary.write_bytes(make_payload(10))
    artifact = load(ArtifactVersioner(), binary, "1.0.0")

    with caplog.at_level(logging.WARNING, logger="captain"):
        regressed = ArtifactVersioner.check_regression(artifact, record_for(artifact, "2.0.0"))

    assert regressed
    assert "goes backwards" in caplog.text
    assert not ArtifactVersioner.check_regression(artifact, record_for(artifact, "0.9.0"))
    assert not ArtifactVersioner.check_regression(artifact, None)
