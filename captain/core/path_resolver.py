"""Path resolution module for captain"""

import os
from pathlib import Path
from typing import Optional, Union

from ..constants import (
    PROJECT_CONFIG_FILE,
    PROGRAM_BINARY_PATTERN,
    PROGRAM_KEYPAIR_PATTERN,
    SESSIONS_DIR,
    LOCKS_DIR,
)
from ..models.config import ProjectPaths


def find_project_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Nearest directory at or above `start_path` that holds `.captain.yaml`"""
    start = Path(start_path).resolve() if start_path is not None else Path.cwd()
    for candidate in (start, *start.parents):
        if (candidate / PROJECT_CONFIG_FILE).is_file():
            return candidate
    return None


class PathResolver:
    """Resolves paths within a captain project"""

    def __init__(self, project_root: Union[str, Path], paths: Optional[ProjectPaths] = None):
        """Initialize path resolver

        Args:
            project_root: Root directory of the project
            paths: Directory layout from the manifest
        """
        self.project_root = Path(project_root).resolve()
        self.paths = paths or ProjectPaths()

    def resolve(self, path: Union[str, Path]) -> Path:
        """Absolute paths pass through; relative ones hang off the project root"""
        path = Path(path)
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()

    def expand_path(self, path: str) -> Path:
        """Resolve a manifest path after expanding `$VARS` and `~`"""
        return self.resolve(os.path.expanduser(os.path.expandvars(path)))

    def make_relative(self, path: Union[str, Path]) -> Path:
        """Project-relative form of `path` for display; absolute when outside the project"""
        path = Path(path).resolve()
        try:
            return path.relative_to(self.project_root)
        except ValueError:
            return path

    @property
    def manifest_path(self) -> Path:
        return self.project_root / PROJECT_CONFIG_FILE

    def get_build_output_dir(self) -> Path:
        return self.expand_path(self.paths.build_output)

    def get_deployments_dir(self) -> Path:
        return self.expand_path(self.paths.deployments)

    def get_artifacts_dir(self) -> Path:
        return self.expand_path(self.paths.artifacts)

    def get_program_keypairs_dir(self) -> Path:
        return self.expand_path(self.paths.program_keypairs)

    def get_state_dir(self) -> Path:
        return self.expand_path(self.paths.state)

    def get_sessions_dir(self) -> Path:
        return self.get_state_dir() / SESSIONS_DIR

    def get_locks_dir(self) -> Path:
        return self.get_state_dir() / LOCKS_DIR

    def get_artifact_path(self, program: str) -> Path:
        """Path where the build toolchain writes a program binary

        Args:
            program: Program name

        Returns:
            Path to `<build_output>/<program>.so`
        """
        return self.get_build_output_dir() / PROGRAM_BINARY_PATTERN.format(program=program)

    def get_program_keypair_path(self, program: str, network: str) -> Path:
        """Path of the generated program address keypair

        Args:
            program: Program name
            network: Network name

        Returns:
            Path to `<program_keypairs>/<program>-<network>.json`
        """
        filename = PROGRAM_KEYPAIR_PATTERN.format(program=program, network=network)
        return self.get_program_keypairs_dir() / filename
