"""Core functionality for captain"""

from .path_resolver import PathResolver, find_project_root
from .config_resolver import ConfigResolver
from .key_vault import KeyVault, load_keypair, write_keypair
from .artifact_versioner import ArtifactVersioner, classify, content_hash
from .deployment_ledger import DeploymentLedger, PairLock
from .session_store import SessionStore
from .buffer_writer import BufferWriter
from .orchestrator import DeploymentOrchestrator, OPERATION_DEPLOY, OPERATION_UPGRADE
from .project_manager import ProjectManager
from .build_runner import run_build

__all__ = [
    "PathResolver",
    "find_project_root",
    "ConfigResolver",
    "KeyVault",
    "load_keypair",
    "write_keypair",
    "ArtifactVersioner",
    "classify",
    "content_hash",
    "DeploymentLedger",
    "PairLock",
    "SessionStore",
    "BufferWriter",
    "DeploymentOrchestrator",
    "OPERATION_DEPLOY",
    "OPERATION_UPGRADE",
    "ProjectManager",
    "run_build",
]
