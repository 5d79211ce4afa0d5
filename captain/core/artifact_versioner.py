"""Content identity and version comparison for program binaries"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import aiofiles
import toml
from packaging.version import Version, InvalidVersion

from ..api.exceptions import ArtifactNotFoundError, ConfigError
from ..models.artifact import ProgramArtifact, Classification
from ..models.deployment import DeploymentRecord
from ..utils.hash_utils import calculate_content_hash

logger = logging.getLogger(__name__)


def content_hash(payload: bytes) -> str:
    """SHA-256 of the binary bytes only

    Build time and file location do not take part in the identity.
    """
    return calculate_content_hash(payload, "sha256")


def classify(artifact: ProgramArtifact,
             record: Optional[DeploymentRecord]) -> Classification:
    """
    Decide what an operation has to do

    Args:
        artifact: Binary to deploy
        record: Current deployment record for the pair, if any

    Returns:
        NO_OP_NEEDED when the recorded hash matches, FIRST_DEPLOY when there
        is no record, UPGRADE otherwise
    """
    if record is None:
        return Classification.FIRST_DEPLOY
    if record.content_hash == artifact.content_hash:
        return Classification.NO_OP_NEEDED
    return Classification.UPGRADE


def validate_version(label: str) -> str:
    """
    Check a version label

    Raises:
        ConfigError: If the label is not a valid version
    """
    try:
        Version(label)
    except InvalidVersion:
        raise ConfigError(f"Invalid version label: {label}")
    return label


class ArtifactVersioner:
    """Loads built binaries and compares them against deployment records"""

    def __init__(self, project_root: Optional[Union[str, Path]] = None):
        self.project_root = Path(project_root) if project_root else None

    async def load_artifact(self,
                            path: Union[str, Path],
                            program: str,
                            version: Optional[str] = None) -> ProgramArtifact:
        """
        Read a built binary

        Args:
            path: Binary produced by the build toolchain
            program: Program name
            version: Explicit version label (otherwise read from Cargo.toml)

        Returns:
            Immutable artifact

        Raises:
            ArtifactNotFoundError: If the binary does not exist
        """
        path = Path(path)
        if not path.is_file():
            raise ArtifactNotFoundError(str(path))

        async with aiofiles.open(path, 'rb') as f:
            payload = await f.read()

        if not payload:
            raise ConfigError(f"Program binary is empty: {path}")

        if version is not None:
            label = validate_version(version)
        else:
            label = self.read_cargo_version(program)

        artifact = ProgramArtifact(
            program=program,
            payload=payload,
            content_hash=content_hash(payload),
            built_at=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
            source_path=path,
            version=label,
        )
        logger.debug(f"Loaded {program} ({artifact.size} bytes, {artifact.short_hash})")
        return artifact

    def read_cargo_version(self, program: str) -> Optional[str]:
        """Version from programs/<name>/Cargo.toml, if present and valid"""
        if self.project_root is None:
            return None

        candidates = [program, program.replace("_", "-"), program.replace("-", "_")]
        for name in dict.fromkeys(candidates):
            cargo_file = self.project_root / "programs" / name / "Cargo.toml"
            if not cargo_file.is_file():
                continue
            try:
                data = toml.load(cargo_file)
            except (OSError, toml.TomlDecodeError) as e:
                logger.warning(f"Cannot read {cargo_file}: {e}")
                return None

            version = data.get("package", {}).get("version")
            # Workspace-inherited versions are tables, not strings
            if not isinstance(version, str):
                return None
            try:
                return validate_version(version)
            except ConfigError:
                logger.warning(f"Ignoring invalid version '{version}' in {cargo_file}")
                return None
        return None

    @staticmethod
    def check_regression(artifact: ProgramArtifact,
                         record: Optional[DeploymentRecord]) -> bool:
        """
        Warn when the version label goes backwards

        Identity is always the content hash; labels are informational.

        Returns:
            True if the new label is lower than the recorded one
        """
        if record is None or not record.version or not artifact.version:
            return False
        try:
            regressed = Version(artifact.version) < Version(record.version)
        except InvalidVersion:
            return False
        if regressed:
            logger.warning(
                f"Version of {artifact.program} goes backwards on {record.network}: "
                f"{record.version} -> {artifact.version}"
            )
        return regressed
