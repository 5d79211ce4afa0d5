"""Build toolchain selection"""

import pytest

from captain.api.exceptions import ConfigError
from captain.core import build_runner
from captain.core.build_runner import build_command, run_build


def test_cargo_workspace(tmp_path):
    assert build_command(tmp_path) == ["cargo", "build-sbf"]
    assert build_command(tmp_path, "counter") == [
        "cargo", "build-sbf", "--manifest-path",
        str(tmp_path / "programs" / "counter" / "Cargo.toml"),
    ]


def test_anchor_workspace(tmp_path):
    (tmp_path / "Anchor.toml").write_text("[programs.localnet]\n")

    assert build_command(tmp_path) == ["anchor", "build"]
    assert build_command(tmp_path, "counter") == ["anchor", "build", "-p", "counter"]


def test_missing_toolchain(tmp_path, monkeypatch):
    def not_installed(command, cwd):
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(build_runner.subprocess, "run", not_installed)

    with pytest.raises(ConfigError, match="cargo"):
        run_build(tmp_path)
