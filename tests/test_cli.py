"""Command line behavior and exit codes"""

import pytest
import yaml
from click.testing import CliRunner

from captain.chain.memory import instruction_matches
from captain.cli.main import cli
from captain.constants import PROJECT_CONFIG_FILE

from conftest import NETWORK, PROGRAM, make_payload


@pytest.fixture
def runner(monkeypatch):
    # Keep rich from wrapping long addresses
    monkeypatch.setenv("COLUMNS", "400")
    return CliRunner()


def invoke(runner, project, *args):
    return runner.invoke(cli, list(args), env={"CAPTAIN_MANIFEST": str(project.manifest_path)})


def test_init_writes_manifest_without_keys(runner, tmp_path):
    target = tmp_path / "workspace"

    result = runner.invoke(cli, ["init", str(target), "--name", "demo"])

    assert result.exit_code == 0, result.output
    manifest = yaml.safe_load((target / PROJECT_CONFIG_FILE).read_text())
    assert manifest["project"]["name"] == "demo"
    assert set(manifest["networks"]) >= {"devnet", "mainnet"}
    assert all(not network["programs"] for network in manifest["networks"].values())
    assert "solana-keygen new" in result.output
    assert not (target / ".captain" / "deployers").exists()
    assert ".captain/deployers/" in (target / ".gitignore").read_text()


def test_init_refuses_to_overwrite(runner, tmp_path):
    runner.invoke(cli, ["init", str(tmp_path)])

    result = runner.invoke(cli, ["init", str(tmp_path)])

    assert result.exit_code == 2
    assert "already initialized" in result.output

    assert runner.invoke(cli, ["init", str(tmp_path), "--force"]).exit_code == 0


def test_deploy_noop_and_status(runner, project):
    project.write_binary(make_payload(1000))

    first = invoke(runner, project, "deploy", "--program", PROGRAM, "--network", NETWORK)
    second = invoke(runner, project, "deploy", "-p", PROGRAM, "-n", NETWORK)
    status = invoke(runner, project, "status", "--network", NETWORK, "--verify")

    assert first.exit_code == 0, first.output
    assert "completed successfully" in first.output
    assert second.exit_code == 0, second.output
    assert "already up to date" in second.output
    assert status.exit_code == 0, status.output
    assert PROGRAM in status.output


def test_unknown_network_is_a_config_error(runner, project):
    project.write_binary(make_payload(1000))

    result = invoke(runner, project, "deploy", "-p", PROGRAM, "-n", "nowhere")

    assert result.exit_code == 2
    assert "nowhere" in result.output


def test_missing_deployer_key_is_a_config_error(runner, project):
    project.write_binary(make_payload(1000))
    project.deployer_path.unlink()

    result = invoke(runner, project, "deploy", "-p", PROGRAM, "-n", NETWORK)

    assert result.exit_code == 2
    assert "Deployer" in result.output


def test_corrupt_deployer_key(runner, project):
    project.write_binary(make_payload(1000))
    project.deployer_path.write_text("[1, 2, 3]")

    result = invoke(runner, project, "deploy", "-p", PROGRAM, "-n", NETWORK)

    assert result.exit_code == 3


def test_authority_mismatch_reports_both_identities(runner, project):
    project.write_binary(make_payload(1000))
    assert invoke(runner, project, "deploy", "-p", PROGRAM, "-n", NETWORK).exit_code == 0

    other = project.write_key(project.root / "keys" / "other.json")
    project.network["upgrade_authority"] = "keys/other.json"
    project.save()
    project.write_binary(make_payload(1000, seed=2))

    result = invoke(runner, project, "upgrade", "-p", PROGRAM, "-n", NETWORK)

    assert result.exit_code == 5
    assert f"Expected authority: {project.authority.pubkey()}" in result.output
    assert f"Supplied authority: {other.pubkey()}" in result.output
    assert str(list(bytes(other))) not in result.output


def test_upgrade_before_deploy(runner, project):
    project.write_binary(make_payload(1000))

    result = invoke(runner, project, "upgrade", "-p", PROGRAM, "-n", NETWORK)

    assert result.exit_code == 7
    assert "captain deploy" in result.output


def test_failed_write_prints_resume_command(runner, project):
    project.write_binary(make_payload(1000))
    project.cluster.inject_fault(instruction_matches("write", offset=256), times=3)

    result = invoke(runner, project, "deploy", "-p", PROGRAM, "-n", NETWORK)

    assert result.exit_code == 4
    assert "256/1000 bytes written" in result.output
    assert "captain deploy --program counter --network memnet" in result.output


def test_programs_lists_build_output(runner, project):
    project.write_binary(make_payload(1000))
    invoke(runner, project, "deploy", "-p", PROGRAM, "-n", NETWORK)
    project.write_binary(make_payload(500), "escrow")

    result = invoke(runner, project, "programs", "--network", NETWORK)

    assert result.exit_code == 0, result.output
    assert "escrow" in result.output
    assert "new" in result.output
    assert "deployed" in result.output


def test_commands_outside_a_project(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(cli, ["status"])

    assert result.exit_code == 2


def test_resume_command_keeps_artifact_and_version(runner, project):
    artifact = project.root / "build" / "counter-rc.so"
    artifact.parent.mkdir()
    artifact.write_bytes(make_payload(1000))
    project.cluster.inject_fault(instruction_matches("write", offset=256), times=3)

    result = invoke(runner, project, "deploy", "-p", PROGRAM, "-n", NETWORK,
                    "--version", "0.9.0", "--artifact", str(artifact))

    assert result.exit_code == 4
    assert (f"captain deploy --program counter --network memnet --version 0.9.0 "
            f"--artifact {artifact}") in result.output
