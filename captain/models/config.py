"""Configuration data models"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Any

from ..constants import (
    MANIFEST_VERSION,
    CLUSTER_URLS,
    Network,
    DEFAULT_BUILD_OUTPUT_DIR,
    DEFAULT_DEPLOYMENTS_DIR,
    DEFAULT_ARTIFACTS_DIR,
    DEFAULT_PROGRAM_KEYPAIRS_DIR,
    DEFAULT_STATE_DIR,
    DEFAULT_DEPLOYERS_DIR,
    DEFAULT_UPGRADE_AUTHORITY,
    DEPLOYER_KEYPAIR_PATTERN,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_COMMITMENT,
    DEFAULT_MAX_DATA_LEN_MULTIPLIER,
    DEFAULT_TRANSACTION_TIMEOUT,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_DELAY,
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_MAX_RETRY_DELAY,
)


@dataclass
class ProjectPaths:
    """Project directory layout (relative to project root unless absolute)"""

    build_output: str = DEFAULT_BUILD_OUTPUT_DIR
    deployments: str = DEFAULT_DEPLOYMENTS_DIR
    artifacts: str = DEFAULT_ARTIFACTS_DIR
    program_keypairs: str = DEFAULT_PROGRAM_KEYPAIRS_DIR
    state: str = DEFAULT_STATE_DIR

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary"""
        return {
            "build_output": self.build_output,
            "deployments": self.deployments,
            "artifacts": self.artifacts,
            "program_keypairs": self.program_keypairs,
            "state": self.state,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProjectPaths':
        """Create from dictionary"""
        return cls(**data)


@dataclass
class RetryPolicy:
    """Retry policy for transient chunk write failures"""

    max_attempts: int = DEFAULT_RETRY_COUNT
    retry_delay: float = DEFAULT_RETRY_DELAY
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "max_attempts": self.max_attempts,
            "retry_delay": self.retry_delay,
            "backoff_multiplier": self.backoff_multiplier,
            "max_retry_delay": self.max_retry_delay
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RetryPolicy':
        """Create from dictionary"""
        return cls(**data)


@dataclass
class DeploySettings:
    """Tuning for buffer writes and transaction handling"""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    commitment: str = DEFAULT_COMMITMENT
    max_data_len_multiplier: int = DEFAULT_MAX_DATA_LEN_MULTIPLIER
    transaction_timeout: float = DEFAULT_TRANSACTION_TIMEOUT
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "chunk_size": self.chunk_size,
            "commitment": self.commitment,
            "max_data_len_multiplier": self.max_data_len_multiplier,
            "timeouts": {
                "transaction": self.transaction_timeout,
                "confirmation": self.confirmation_timeout,
            },
            "retry": self.retry.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeploySettings':
        """Create from dictionary"""
        timeouts = data.get("timeouts", {})
        return cls(
            chunk_size=data.get("chunk_size", DEFAULT_CHUNK_SIZE),
            commitment=data.get("commitment", DEFAULT_COMMITMENT),
            max_data_len_multiplier=data.get("max_data_len_multiplier",
                                             DEFAULT_MAX_DATA_LEN_MULTIPLIER),
            transaction_timeout=timeouts.get("transaction", DEFAULT_TRANSACTION_TIMEOUT),
            confirmation_timeout=timeouts.get("confirmation", DEFAULT_CONFIRMATION_TIMEOUT),
            retry=RetryPolicy.from_dict(data.get("retry", {})),
        )


@dataclass
class ProgramBinding:
    """Program address binding for one network

    Both fields empty means the address is generated on first deploy.
    """

    name: str
    address: Optional[str] = None
    keypair: Optional[str] = None

    @property
    def is_pinned(self) -> bool:
        """Check if the manifest fixes the program address"""
        return bool(self.address or self.keypair)

    def to_dict(self) -> Any:
        """Convert to manifest representation"""
        if not self.is_pinned:
            return None
        if self.address and not self.keypair:
            return self.address
        data = {}
        if self.address:
            data["address"] = self.address
        if self.keypair:
            data["keypair"] = self.keypair
        return data

    @classmethod
    def from_value(cls, name: str, value: Any) -> 'ProgramBinding':
        """Create from manifest value (None, address string or mapping)"""
        if value is None:
            return cls(name=name)
        if isinstance(value, str):
            return cls(name=name, address=value)
        return cls(
            name=name,
            address=value.get("address"),
            keypair=value.get("keypair")
        )


@dataclass
class NetworkConfig:
    """Configuration for one cluster

    Deployer and upgrade authority may reference the same keypair file but
    are always handled as separate roles.
    """

    name: str
    url: str
    deployer: str
    upgrade_authority: str
    ws_url: Optional[str] = None
    programs: Dict[str, ProgramBinding] = field(default_factory=dict)

    def get_binding(self, program: str) -> Optional[ProgramBinding]:
        """Get the binding for a program, if declared"""
        return self.programs.get(program)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        data = {
            "url": self.url,
            "deployer": self.deployer,
            "upgrade_authority": self.upgrade_authority,
        }
        if self.ws_url:
            data["ws_url"] = self.ws_url
        data["programs"] = {
            name: binding.to_dict() for name, binding in self.programs.items()
        }
        return data

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'NetworkConfig':
        """Create from dictionary"""
        programs = data.get("programs") or {}
        return cls(
            name=name,
            url=data.get("url") or CLUSTER_URLS.get(name, ""),
            deployer=data["deployer"],
            upgrade_authority=data["upgrade_authority"],
            ws_url=data.get("ws_url"),
            programs={
                program: ProgramBinding.from_value(program, value)
                for program, value in programs.items()
            }
        )


@dataclass
class ProjectManifest:
    """Complete project manifest (.captain.yaml)"""

    version: str = MANIFEST_VERSION
    project_name: str = ""
    paths: ProjectPaths = field(default_factory=ProjectPaths)
    networks: Dict[str, NetworkConfig] = field(default_factory=dict)
    deploy: DeploySettings = field(default_factory=DeploySettings)

    def get_network(self, name: str) -> Optional[NetworkConfig]:
        """Get network configuration by name"""
        return self.networks.get(name)

    def network_names(self) -> List[str]:
        """Get declared network names"""
        return list(self.networks.keys())

    @classmethod
    def empty(cls, project_name: str) -> 'ProjectManifest':
        """Create the manifest written by `captain init`

        Every well-known cluster gets its own deployer path and the default
        Solana CLI keypair as upgrade authority. No programs are bound.
        """
        manifest = cls(project_name=project_name)
        for network in Network:
            deployer = f"{DEFAULT_DEPLOYERS_DIR}/" + DEPLOYER_KEYPAIR_PATTERN.format(
                network=network.value
            )
            manifest.networks[network.value] = NetworkConfig(
                name=network.value,
                url=CLUSTER_URLS[network.value],
                deployer=deployer,
                upgrade_authority=DEFAULT_UPGRADE_AUTHORITY,
            )
        return manifest

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProjectManifest':
        """Create from dictionary"""
        manifest = cls(version=str(data.get("version", MANIFEST_VERSION)))

        project = data.get("project") or {}
        manifest.project_name = project.get("name", "")

        manifest.paths = ProjectPaths.from_dict(data.get("paths") or {})

        for name, network_data in (data.get("networks") or {}).items():
            manifest.networks[name] = NetworkConfig.from_dict(name, network_data)

        manifest.deploy = DeploySettings.from_dict(data.get("deploy") or {})

        return manifest

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "version": self.version,
            "project": {
                "name": self.project_name,
            },
            "paths": self.paths.to_dict(),
            "networks": {
                name: network.to_dict()
                for name, network in self.networks.items()
            },
            "deploy": self.deploy.to_dict(),
        }


@dataclass(frozen=True)
class KeyReference:
    """Resolved reference to key material for one role

    Exactly one of `path` or `pubkey` is set. A pubkey-only reference names
    an identity that cannot sign (e.g. a hardware wallet).
    """

    role: str
    path: Optional[Path] = None
    pubkey: Optional[str] = None

    @property
    def is_pubkey_only(self) -> bool:
        return self.path is None

    def describe(self) -> str:
        """Human readable location, never key material"""
        if self.path is not None:
            return str(self.path)
        return f"pubkey:{self.pubkey}"


@dataclass(frozen=True)
class ResolvedTarget:
    """Effective configuration for one (program, network) pair"""

    program: str
    network: NetworkConfig
    binding: ProgramBinding
    deployer: KeyReference
    authority: KeyReference
    program_keypair_path: Path
    artifact_path: Path
    deployments_dir: Path
    artifacts_dir: Path
    state_dir: Path
    settings: DeploySettings

    @property
    def network_name(self) -> str:
        return self.network.name

    @property
    def url(self) -> str:
        return self.network.url

    @property
    def pinned_address(self) -> Optional[str]:
        return self.binding.address
