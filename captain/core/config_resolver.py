"""Manifest loading and per-(program, network) resolution"""

import logging
import os
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Union

import jsonschema
import yaml
from solders.pubkey import Pubkey

from .path_resolver import PathResolver, find_project_root
from ..api.exceptions import (
    ConfigError,
    ManifestFormatError,
    ProjectNotFoundError,
    UnknownNetworkError,
    UnknownProgramError,
    MissingKeyError,
    AmbiguousBindingError,
)
from ..constants import (
    PROJECT_CONFIG_FILE,
    ENV_MANIFEST_PATH,
    MAX_CHUNK_SIZE,
    SUPPORTED_COMMITMENTS,
    PROGRAM_NAME_PATTERN,
    NETWORK_NAME_PATTERN,
)
from ..models.config import (
    ProjectManifest,
    NetworkConfig,
    ProgramBinding,
    KeyReference,
    ResolvedTarget,
)

logger = logging.getLogger(__name__)


_BINDING_SCHEMA = {
    "anyOf": [
        {"type": "null"},
        {"type": "string", "minLength": 1},
        {
            "type": "object",
            "properties": {
                "address": {"type": "string", "minLength": 1},
                "keypair": {"type": "string", "minLength": 1},
            },
            "additionalProperties": False,
        },
    ]
}

_NETWORK_SCHEMA = {
    "type": "object",
    "required": ["deployer", "upgrade_authority"],
    "properties": {
        "url": {"type": "string", "minLength": 1},
        "ws_url": {"type": "string", "minLength": 1},
        "deployer": {"type": "string", "minLength": 1},
        "upgrade_authority": {"type": "string", "minLength": 1},
        "programs": {
            "type": ["object", "null"],
            "propertyNames": {"pattern": PROGRAM_NAME_PATTERN.pattern},
            "additionalProperties": _BINDING_SCHEMA,
        },
    },
    "additionalProperties": False,
}

_DEPLOY_SCHEMA = {
    "type": "object",
    "properties": {
        "chunk_size": {"type": "integer", "minimum": 1, "maximum": MAX_CHUNK_SIZE},
        "commitment": {"enum": SUPPORTED_COMMITMENTS},
        "max_data_len_multiplier": {"type": "integer", "minimum": 1},
        "timeouts": {
            "type": "object",
            "properties": {
                "transaction": {"type": "number", "exclusiveMinimum": 0},
                "confirmation": {"type": "number", "exclusiveMinimum": 0},
            },
            "additionalProperties": False,
        },
        "retry": {
            "type": "object",
            "properties": {
                "max_attempts": {"type": "integer", "minimum": 1},
                "retry_delay": {"type": "number", "minimum": 0},
                "backoff_multiplier": {"type": "number", "minimum": 1},
                "max_retry_delay": {"type": "number", "minimum": 0},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}

MANIFEST_SCHEMA = {
    "type": "object",
    "required": ["networks"],
    "properties": {
        "version": {"type": ["string", "number"]},
        "project": {
            "type": "object",
            "properties": {"name": {"type": "string"}},
        },
        "paths": {
            "type": "object",
            "properties": {
                name: {"type": "string", "minLength": 1}
                for name in ("build_output", "deployments", "artifacts",
                             "program_keypairs", "state")
            },
            "additionalProperties": False,
        },
        "networks": {
            "type": "object",
            "minProperties": 1,
            "propertyNames": {"pattern": NETWORK_NAME_PATTERN.pattern},
            "additionalProperties": _NETWORK_SCHEMA,
        },
        "deploy": _DEPLOY_SCHEMA,
    },
    "additionalProperties": False,
}


def parse_pubkey(value: str) -> Optional[str]:
    """Return the canonical base58 form if `value` is a public key"""
    try:
        return str(Pubkey.from_string(value.strip()))
    except ValueError:
        return None


class ConfigResolver:
    """Resolves the effective configuration for one (program, network) pair

    Resolution never writes files and never parses key material; it only
    checks that referenced keypair files exist.
    """

    def __init__(self, manifest: ProjectManifest, project_root: Union[str, Path]):
        self.manifest = manifest
        self.project_root = Path(project_root).resolve()
        self.path_resolver = PathResolver(self.project_root, manifest.paths)
        self.check_bindings(manifest)

    @classmethod
    def load(cls,
             manifest_path: Optional[Union[str, Path]] = None,
             start_path: Optional[Path] = None) -> 'ConfigResolver':
        """
        Load the project manifest

        Args:
            manifest_path: Explicit manifest file; otherwise CAPTAIN_MANIFEST
                or a search upwards from `start_path`
            start_path: Directory to start the search from

        Returns:
            ConfigResolver for the project

        Raises:
            ProjectNotFoundError: If no manifest is found
            ManifestFormatError: If the manifest is invalid
        """
        if manifest_path is None and os.environ.get(ENV_MANIFEST_PATH):
            manifest_path = os.environ[ENV_MANIFEST_PATH]

        if manifest_path is not None:
            manifest_path = Path(manifest_path).expanduser().resolve()
            if not manifest_path.is_file():
                raise ProjectNotFoundError(f"Manifest not found: {manifest_path}")
        else:
            root = find_project_root(start_path)
            if root is None:
                raise ProjectNotFoundError()
            manifest_path = root / PROJECT_CONFIG_FILE

        try:
            content = manifest_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ManifestFormatError(f"Cannot read manifest {manifest_path}: {e}")

        manifest = cls.parse_manifest(content, str(manifest_path))
        logger.debug(f"Loaded manifest {manifest_path} "
                     f"(networks: {', '.join(manifest.network_names())})")
        return cls(manifest, manifest_path.parent)

    @staticmethod
    def parse_manifest(content: str, source: str = PROJECT_CONFIG_FILE) -> ProjectManifest:
        """
        Parse and validate manifest text

        Args:
            content: YAML document
            source: Name used in error messages

        Returns:
            Parsed manifest

        Raises:
            ManifestFormatError: If the document is not a valid manifest
        """
        # Environment variable expansion
        content = os.path.expandvars(content)

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ManifestFormatError(f"Invalid YAML in {source}: {e}")

        if not isinstance(data, dict):
            raise ManifestFormatError(f"Manifest {source} is empty or not a mapping")

        try:
            jsonschema.validate(data, MANIFEST_SCHEMA)
        except jsonschema.ValidationError as e:
            location = "/".join(str(p) for p in e.absolute_path) or "<root>"
            raise ManifestFormatError(f"Invalid manifest {source} at {location}: {e.message}")

        manifest = ProjectManifest.from_dict(data)

        for network in manifest.networks.values():
            if not network.url:
                raise ManifestFormatError(
                    f"Network '{network.name}' in {source} needs a url"
                )
            for binding in network.programs.values():
                if binding.address and parse_pubkey(binding.address) is None:
                    raise ManifestFormatError(
                        f"Program '{binding.name}' on '{network.name}' has an "
                        f"invalid address: {binding.address}"
                    )

        return manifest

    def check_bindings(self, manifest: ProjectManifest) -> None:
        """
        Reject networks that bind one address to several programs

        Raises:
            AmbiguousBindingError: If an address or program keypair file is
                shared by two programs within one network
        """
        for network in manifest.networks.values():
            by_address: Dict[str, List[str]] = defaultdict(list)
            by_keypair: Dict[Path, List[str]] = defaultdict(list)

            for binding in network.programs.values():
                if binding.address:
                    by_address[parse_pubkey(binding.address) or binding.address].append(binding.name)
                if binding.keypair:
                    by_keypair[self.path_resolver.expand_path(binding.keypair)].append(binding.name)

            for address, programs in by_address.items():
                if len(programs) > 1:
                    raise AmbiguousBindingError(network.name, address, programs)
            for keypair_path, programs in by_keypair.items():
                if len(programs) > 1:
                    raise AmbiguousBindingError(network.name, f"keypair {keypair_path}", programs)

    def resolve_network(self, network: str) -> NetworkConfig:
        """
        Get a network by name

        Raises:
            UnknownNetworkError: If the network is not declared
        """
        config = self.manifest.get_network(network)
        if config is None:
            raise UnknownNetworkError(network, self.manifest.network_names())
        return config

    def known_programs(self, network: str) -> List[str]:
        """Programs bound on a network or present in the build output"""
        names = set(self.resolve_network(network).programs)
        build_dir = self.path_resolver.get_build_output_dir()
        if build_dir.is_dir():
            names.update(p.stem for p in build_dir.glob("*.so"))
        return sorted(names)

    def resolve(self,
                program: str,
                network: str,
                artifact_path: Optional[Union[str, Path]] = None) -> ResolvedTarget:
        """
        Resolve the effective configuration for one pair

        Args:
            program: Program name
            network: Network name
            artifact_path: Binary to deploy instead of the build output

        Returns:
            Resolved target

        Raises:
            UnknownNetworkError: Network not in the manifest
            UnknownProgramError: Program neither bound nor built
            MissingKeyError: A referenced keypair file does not exist
        """
        network_config = self.resolve_network(network)

        if not PROGRAM_NAME_PATTERN.match(program):
            raise UnknownProgramError(program, network, self.known_programs(network))

        if artifact_path is not None:
            artifact = self.path_resolver.expand_path(str(artifact_path))
        else:
            artifact = self.path_resolver.get_artifact_path(program)

        binding = network_config.get_binding(program)
        if binding is None:
            if not artifact.exists():
                raise UnknownProgramError(program, network, self.known_programs(network))
            # Address is generated on first deploy
            binding = ProgramBinding(name=program)

        deployer = self._key_reference(
            "Deployer", network_config.deployer, network, allow_pubkey=False
        )
        authority = self._key_reference(
            "Upgrade authority", network_config.upgrade_authority, network, allow_pubkey=True
        )

        if binding.keypair:
            program_keypair_path = self.path_resolver.expand_path(binding.keypair)
            if not program_keypair_path.exists():
                raise MissingKeyError("Program", str(program_keypair_path), network)
        else:
            program_keypair_path = self.path_resolver.get_program_keypair_path(program, network)

        return ResolvedTarget(
            program=program,
            network=network_config,
            binding=binding,
            deployer=deployer,
            authority=authority,
            program_keypair_path=program_keypair_path,
            artifact_path=artifact,
            deployments_dir=self.path_resolver.get_deployments_dir(),
            artifacts_dir=self.path_resolver.get_artifacts_dir(),
            state_dir=self.path_resolver.get_state_dir(),
            settings=self.manifest.deploy,
        )

    def _key_reference(self, role: str, value: str, network: str,
                       allow_pubkey: bool) -> KeyReference:
        pubkey = parse_pubkey(value)
        if pubkey is not None:
            if not allow_pubkey:
                raise ConfigError(
                    f"{role} for network '{network}' must be a keypair file, "
                    f"not a public key ({pubkey})"
                )
            return KeyReference(role=role, pubkey=pubkey)

        path = self.path_resolver.expand_path(value)
        if not path.exists():
            raise MissingKeyError(role, str(path), network)
        return KeyReference(role=role, path=path)
