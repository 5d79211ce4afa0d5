"""Global constants for captain"""

from enum import Enum
import re

APP_NAME = "captain"
LOG_FORMAT = "%(message)s"

# Version related
MANIFEST_VERSION = "1.0"
LEDGER_RECORD_VERSION = "1.0"

# Project identification
PROJECT_CONFIG_FILE = ".captain.yaml"

# Directory structure
DEFAULT_BUILD_OUTPUT_DIR = "target/deploy"
DEFAULT_DEPLOYMENTS_DIR = "deployments"
DEFAULT_ARTIFACTS_DIR = "artifacts"
DEFAULT_PROGRAM_KEYPAIRS_DIR = ".captain/programs"
DEFAULT_STATE_DIR = ".captain/state"
DEFAULT_DEPLOYERS_DIR = ".captain/deployers"
DEFAULT_UPGRADE_AUTHORITY = "~/.config/solana/id.json"

SESSIONS_DIR = "sessions"
LOCKS_DIR = "locks"

# File patterns
PROGRAM_BINARY_PATTERN = "{program}.so"
PROGRAM_KEYPAIR_PATTERN = "{program}-{network}.json"
DEPLOYER_KEYPAIR_PATTERN = "{network}/deployer.json"
LEDGER_FILE_PATTERN = "{network}/{program}.json"
ARCHIVED_PROGRAM_FILE = "program.so"

# Well-known clusters
class Network(Enum):
    MAINNET = "mainnet"
    DEVNET = "devnet"
    TESTNET = "testnet"
    LOCALNET = "localnet"


CLUSTER_URLS = {
    Network.MAINNET.value: "https://api.mainnet-beta.solana.com",
    Network.DEVNET.value: "https://api.devnet.solana.com",
    Network.TESTNET.value: "https://api.testnet.solana.com",
    Network.LOCALNET.value: "http://127.0.0.1:8899",
}

MEMORY_URL_SCHEME = "memory"

# Upgradeable loader
BPF_LOADER_UPGRADEABLE_ID = "BPFLoaderUpgradeab1e11111111111111111111111"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
SYSVAR_RENT_ID = "SysvarRent111111111111111111111111111111111"
SYSVAR_CLOCK_ID = "SysvarC1ock11111111111111111111111111111111"

BUFFER_METADATA_SIZE = 37        # tag(4) + Option<Pubkey>(33)
PROGRAM_ACCOUNT_SIZE = 36        # tag(4) + Pubkey(32)
PROGRAMDATA_METADATA_SIZE = 45   # tag(4) + slot(8) + Option<Pubkey>(33)

# Deploy defaults
DEFAULT_CHUNK_SIZE = 900  # bytes of program data per write transaction
MAX_CHUNK_SIZE = 1000
DEFAULT_COMMITMENT = "confirmed"
SUPPORTED_COMMITMENTS = ["processed", "confirmed", "finalized"]
DEFAULT_MAX_DATA_LEN_MULTIPLIER = 2
DEFAULT_TRANSACTION_TIMEOUT = 30  # seconds
DEFAULT_CONFIRMATION_TIMEOUT = 60  # seconds
DEFAULT_POLL_INTERVAL = 0.5  # seconds
DEFAULT_RETRY_COUNT = 5
DEFAULT_RETRY_DELAY = 0.5  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_RETRY_DELAY = 8.0  # seconds
DEFAULT_SIGNATURE_FEE = 5000  # lamports per signature

# Lamports
LAMPORTS_PER_SOL = 1_000_000_000

# Environment variables
ENV_MANIFEST_PATH = "CAPTAIN_MANIFEST"
ENV_LOG_LEVEL = "CAPTAIN_LOG_LEVEL"
ENV_UPGRADE_AUTHORITY_KEYPAIR = "UPGRADE_AUTHORITY_KEYPAIR"


# Error codes
class ErrorCode:
    CONFIG_FORMAT_ERROR = "CP001"
    UNKNOWN_NETWORK = "CP002"
    UNKNOWN_PROGRAM = "CP003"
    MISSING_KEY = "CP004"
    AMBIGUOUS_BINDING = "CP005"
    ADDRESS_CONFLICT = "CP006"
    ARTIFACT_NOT_FOUND = "CP007"
    KEY_UNREADABLE = "CP010"
    KEY_INVALID_FORMAT = "CP011"
    KEY_CANNOT_SIGN = "CP012"
    NETWORK_FAILURE = "CP020"
    TRANSACTION_REJECTED = "CP021"
    CONFIRMATION_TIMEOUT = "CP022"
    CHUNK_WRITE_FAILED = "CP023"
    BUFFER_CORRUPTED = "CP024"
    INSUFFICIENT_FUNDS = "CP025"
    AUTHORITY_MISMATCH = "CP030"
    LEDGER_READ_FAILED = "CP040"
    LEDGER_WRITE_FAILED = "CP041"
    OPERATION_IN_PROGRESS = "CP042"
    OPERATION_MISMATCH = "CP050"
    PROGRAM_STATE = "CP051"
    PROGRAM_CAPACITY = "CP052"


# Process exit codes
class ExitCode:
    OK = 0
    FAILURE = 1
    CONFIG = 2
    KEY = 3
    NETWORK = 4
    AUTHORITY = 5
    LEDGER = 6
    OPERATION_MISMATCH = 7
    INTERRUPTED = 130


# Validation patterns
PROGRAM_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")
NETWORK_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")

# Display constants
EMOJI_SUCCESS = "✓"
EMOJI_ERROR = "✗"
EMOJI_WARNING = "⚠"
EMOJI_ROCKET = "🚀"
