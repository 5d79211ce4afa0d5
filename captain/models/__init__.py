# captain/models/__init__.py
"""Data models for captain"""

from .config import (
    ProjectManifest,
    ProjectPaths,
    NetworkConfig,
    ProgramBinding,
    DeploySettings,
    RetryPolicy,
    KeyReference,
    ResolvedTarget,
)
from .artifact import ProgramArtifact, Classification
from .deployment import DeploymentRecord, HistoryEntry, BufferSession, DeployState
from .result import DeployResult, OperationStatus, Transition

__all__ = [
    # Config models
    "ProjectManifest",
    "ProjectPaths",
    "NetworkConfig",
    "ProgramBinding",
    "DeploySettings",
    "RetryPolicy",
    "KeyReference",
    "ResolvedTarget",

    # Artifact models
    "ProgramArtifact",
    "Classification",

    # Deployment models
    "DeploymentRecord",
    "HistoryEntry",
    "BufferSession",
    "DeployState",

    # Result models
    "DeployResult",
    "OperationStatus",
    "Transition",
]
