"""Exception definitions for captain"""

from typing import Optional

from ..constants import ErrorCode, ExitCode


class CaptainError(Exception):
    """Base exception for captain"""

    exit_code = ExitCode.FAILURE

    def __init__(self, message: str, error_code: str = None):
        super().__init__(message)
        self.error_code = error_code


# Configuration


class ConfigError(CaptainError):
    """Manifest or resolution error. The manifest must be fixed."""

    exit_code = ExitCode.CONFIG

    def __init__(self, message: str, error_code: str = ErrorCode.CONFIG_FORMAT_ERROR):
        super().__init__(message, error_code)


class ManifestFormatError(ConfigError):
    """Manifest could not be parsed or failed schema validation"""
    pass


class ProjectNotFoundError(ConfigError):
    """No manifest found in the directory tree"""

    def __init__(self, message: str = None):
        if message is None:
            message = (
                "No captain project found. Please ensure:\n"
                "1. You are inside a project directory\n"
                "2. The project root contains .captain.yaml\n"
                "\n"
                "Initialize a new project: captain init"
            )
        super().__init__(message, ErrorCode.CONFIG_FORMAT_ERROR)


class UnknownNetworkError(ConfigError):
    """Requested network is not declared in the manifest"""

    def __init__(self, network: str, available=None):
        message = f"Network not found in manifest: {network}"
        if available:
            message += f" (available: {', '.join(sorted(available))})"
        super().__init__(message, ErrorCode.UNKNOWN_NETWORK)
        self.network = network


class UnknownProgramError(ConfigError):
    """Program is neither bound for the network nor built"""

    def __init__(self, program: str, network: str, known=None):
        message = (
            f"Program '{program}' is not bound on network '{network}' "
            f"and no build artifact exists for it"
        )
        if known:
            message += f" (known: {', '.join(known)})"
        super().__init__(message, ErrorCode.UNKNOWN_PROGRAM)
        self.program = program
        self.network = network


class MissingKeyError(ConfigError):
    """A keypair path referenced by the manifest does not exist"""

    def __init__(self, role: str, path: str, network: str):
        message = f"{role} keypair for network '{network}' does not exist: {path}"
        super().__init__(message, ErrorCode.MISSING_KEY)
        self.role = role
        self.path = path
        self.network = network


class AmbiguousBindingError(ConfigError):
    """Two programs bound to the same address within one network"""

    def __init__(self, network: str, address: str, programs):
        message = (
            f"Address {address} is bound to more than one program on network "
            f"'{network}': {', '.join(sorted(programs))}"
        )
        super().__init__(message, ErrorCode.AMBIGUOUS_BINDING)
        self.network = network
        self.address = address
        self.programs = list(programs)


class AddressConflictError(ConfigError):
    """Pinned address differs from the address already deployed"""

    def __init__(self, program: str, network: str, pinned: str, recorded: str):
        message = (
            f"Program '{program}' on '{network}' is pinned to {pinned} but was "
            f"deployed at {recorded}. Program addresses cannot change after deploy."
        )
        super().__init__(message, ErrorCode.ADDRESS_CONFLICT)
        self.pinned = pinned
        self.recorded = recorded


class ArtifactNotFoundError(ConfigError):
    """Program binary has not been built"""

    def __init__(self, path: str):
        message = f"Program binary not found: {path}. Run 'captain build' first."
        super().__init__(message, ErrorCode.ARTIFACT_NOT_FOUND)
        self.path = path


# Key material


class KeypairError(CaptainError):
    """Missing or unusable key material"""

    exit_code = ExitCode.KEY


class UnreadableKeyError(KeypairError):
    """Keypair file could not be read"""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot read keypair {path}: {reason}", ErrorCode.KEY_UNREADABLE)
        self.path = path


class InvalidKeyFormatError(KeypairError):
    """Keypair file content is not a valid keypair"""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid keypair file {path}: {reason}", ErrorCode.KEY_INVALID_FORMAT)
        self.path = path


class SignerUnavailableError(KeypairError):
    """Key is known only by its public key and cannot sign"""

    def __init__(self, role: str, pubkey: str):
        message = (
            f"The {role} {pubkey} is declared as a public key only and cannot sign. "
            f"Pass --authority-keypair or set UPGRADE_AUTHORITY_KEYPAIR."
        )
        super().__init__(message, ErrorCode.KEY_CANNOT_SIGN)
        self.role = role
        self.pubkey = pubkey


# Network and buffer


class NetworkError(CaptainError):
    """Cluster communication failure"""

    exit_code = ExitCode.NETWORK

    def __init__(self, message: str, error_code: str = ErrorCode.NETWORK_FAILURE):
        super().__init__(message, error_code)


class TransientNetworkError(NetworkError):
    """Failure that may succeed when retried"""
    pass


class ConfirmationTimeoutError(TransientNetworkError):
    """Transaction was not confirmed in time"""

    def __init__(self, signature: str, timeout: float):
        super().__init__(
            f"Transaction {signature} not confirmed within {timeout:.0f}s",
            ErrorCode.CONFIRMATION_TIMEOUT
        )
        self.signature = signature


class TransactionRejectedError(NetworkError):
    """Cluster rejected or failed the transaction"""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.TRANSACTION_REJECTED)


class BufferStagingError(NetworkError):
    """Buffer staging failure"""
    pass


class ChunkWriteFailedError(BufferStagingError):
    """A chunk could not be written; the session can resume at `offset`"""

    def __init__(self, program: str, network: str, buffer_address: str,
                 offset: int, total: int, attempts: int, cause: Optional[Exception] = None):
        message = (
            f"Writing {program} to buffer {buffer_address} on '{network}' failed at "
            f"offset {offset}/{total} after {attempts} attempt(s)"
        )
        if cause is not None:
            message += f": {cause}"
        super().__init__(message, ErrorCode.CHUNK_WRITE_FAILED)
        self.program = program
        self.network = network
        self.buffer_address = buffer_address
        self.offset = offset
        self.total = total
        self.attempts = attempts


class BufferCorruptedError(BufferStagingError):
    """On-chain buffer content does not match the local artifact"""

    def __init__(self, buffer_address: str, expected: str, actual: str):
        message = (
            f"Buffer {buffer_address} content hash {actual[:16]} does not match "
            f"artifact hash {expected[:16]}"
        )
        super().__init__(message, ErrorCode.BUFFER_CORRUPTED)
        self.buffer_address = buffer_address
        self.expected = expected
        self.actual = actual


class InsufficientFundsError(BufferStagingError):
    """Payer balance cannot cover rent and fees"""

    def __init__(self, payer: str, required: int, available: int):
        message = (
            f"Deployer {payer} has {available} lamports but {required} are required"
        )
        super().__init__(message, ErrorCode.INSUFFICIENT_FUNDS)
        self.payer = payer
        self.required = required
        self.available = available


# Authority


class AuthorityError(CaptainError):
    """Key or role mismatch. Never retried automatically."""

    exit_code = ExitCode.AUTHORITY


class AuthorityMismatchError(AuthorityError):
    """Supplied authority does not hold upgrade rights for the program"""

    def __init__(self, program: str, network: str, expected: str, supplied: str):
        message = (
            f"Upgrade authority mismatch for '{program}' on '{network}': "
            f"expected {expected}, supplied {supplied}"
        )
        super().__init__(message, ErrorCode.AUTHORITY_MISMATCH)
        self.program = program
        self.network = network
        self.expected = expected
        self.supplied = supplied


# Local persisted state


class LedgerError(CaptainError):
    """Deployment ledger read or write failure"""

    exit_code = ExitCode.LEDGER


class LedgerReadError(LedgerError):
    """Deployment record could not be read"""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot read deployment record {path}: {reason}",
                         ErrorCode.LEDGER_READ_FAILED)
        self.path = path


class LedgerWriteError(LedgerError):
    """Deployment record could not be written"""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot write deployment record {path}: {reason}",
                         ErrorCode.LEDGER_WRITE_FAILED)
        self.path = path


class OperationInProgressError(LedgerError):
    """Another operation holds the lock for this (program, network)"""

    def __init__(self, program: str, network: str, lock_path: str):
        message = (
            f"Another operation is in progress for '{program}' on '{network}'. "
            f"If no other captain process is running, remove {lock_path}"
        )
        super().__init__(message, ErrorCode.OPERATION_IN_PROGRESS)
        self.lock_path = lock_path


# Deployment state


class DeployError(CaptainError):
    """Deployment operation error"""
    pass


class OperationMismatchError(DeployError):
    """deploy requested for a deployed program, or upgrade for a new one"""

    exit_code = ExitCode.OPERATION_MISMATCH

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.OPERATION_MISMATCH)


class ProgramStateError(DeployError):
    """On-chain program state does not match the deployment record"""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.PROGRAM_STATE)


class ProgramCapacityError(DeployError):
    """New binary does not fit the program data account"""

    def __init__(self, program: str, size: int, capacity: int):
        message = (
            f"Binary for '{program}' is {size} bytes but the program data account "
            f"holds at most {capacity} bytes"
        )
        super().__init__(message, ErrorCode.PROGRAM_CAPACITY)
        self.size = size
        self.capacity = capacity
