"""Captain - deployment lifecycle management for Solana programs.

Captain deploys and upgrades programs across clusters with resumable buffer
writes, strict separation of the deployer and upgrade authority keys, and a
version-controlled ledger of what is deployed where.
"""

from .__version__ import __version__, __version_info__, __author__, __license__

# Core API
from .api.exceptions import CaptainError, ConfigError, KeypairError, NetworkError
from .api.exceptions import AuthorityError, LedgerError, DeployError
from .api.deployer import Deployer
from .core.config_resolver import ConfigResolver

# Data models
from .models import (
    ProjectManifest,
    ProgramArtifact,
    Classification,
    DeploymentRecord,
    BufferSession,
    DeployResult,
    DeployState,
)

__all__ = [
    # Version information
    "__version__",
    "__version_info__",
    "__author__",
    "__license__",

    # Main classes
    "Deployer",
    "ConfigResolver",

    # Data models
    "ProjectManifest",
    "ProgramArtifact",
    "Classification",
    "DeploymentRecord",
    "BufferSession",
    "DeployResult",
    "DeployState",

    # Exceptions
    "CaptainError",
    "ConfigError",
    "KeypairError",
    "NetworkError",
    "AuthorityError",
    "LedgerError",
    "DeployError",
]
