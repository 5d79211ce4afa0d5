# captain/api/__init__.py
"""API layer for captain"""

# Exceptions first: the core modules import them while this package loads
from .exceptions import (
    CaptainError,
    ConfigError,
    ManifestFormatError,
    ProjectNotFoundError,
    UnknownNetworkError,
    UnknownProgramError,
    MissingKeyError,
    AmbiguousBindingError,
    AddressConflictError,
    ArtifactNotFoundError,
    KeypairError,
    UnreadableKeyError,
    InvalidKeyFormatError,
    SignerUnavailableError,
    NetworkError,
    TransientNetworkError,
    ConfirmationTimeoutError,
    TransactionRejectedError,
    BufferStagingError,
    ChunkWriteFailedError,
    BufferCorruptedError,
    InsufficientFundsError,
    AuthorityError,
    AuthorityMismatchError,
    LedgerError,
    LedgerReadError,
    LedgerWriteError,
    OperationInProgressError,
    DeployError,
    OperationMismatchError,
    ProgramStateError,
    ProgramCapacityError,
)
from .deployer import Deployer

__all__ = [
    # Main classes
    "Deployer",

    # Exceptions
    "CaptainError",
    "ConfigError",
    "ManifestFormatError",
    "ProjectNotFoundError",
    "UnknownNetworkError",
    "UnknownProgramError",
    "MissingKeyError",
    "AmbiguousBindingError",
    "AddressConflictError",
    "ArtifactNotFoundError",
    "KeypairError",
    "UnreadableKeyError",
    "InvalidKeyFormatError",
    "SignerUnavailableError",
    "NetworkError",
    "TransientNetworkError",
    "ConfirmationTimeoutError",
    "TransactionRejectedError",
    "BufferStagingError",
    "ChunkWriteFailedError",
    "BufferCorruptedError",
    "InsufficientFundsError",
    "AuthorityError",
    "AuthorityMismatchError",
    "LedgerError",
    "LedgerReadError",
    "LedgerWriteError",
    "OperationInProgressError",
    "DeployError",
    "OperationMismatchError",
    "ProgramStateError",
    "ProgramCapacityError",
]
