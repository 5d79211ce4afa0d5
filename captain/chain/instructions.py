# captain/chain/instructions.py
"""Upgradeable loader instructions and account layouts

Instructions are plain dataclasses holding role-tagged key handles. They
are turned into `solders` instructions only when a transaction is sent
over RPC; the in-memory cluster interprets them directly.
"""

import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..constants import (
    BPF_LOADER_UPGRADEABLE_ID,
    SYSTEM_PROGRAM_ID,
    SYSVAR_RENT_ID,
    SYSVAR_CLOCK_ID,
    BUFFER_METADATA_SIZE,
    PROGRAM_ACCOUNT_SIZE,
    PROGRAMDATA_METADATA_SIZE,
)
from .keys import RoleKey, DeployerKey, AuthorityKey, ProgramKey, BufferKey, require_role

# Loader instruction tags (bincode u32 enum discriminants)
TAG_INITIALIZE_BUFFER = 0
TAG_WRITE = 1
TAG_DEPLOY_WITH_MAX_DATA_LEN = 2
TAG_UPGRADE = 3
TAG_SET_AUTHORITY = 4
TAG_CLOSE = 5

# Loader account state tags
STATE_UNINITIALIZED = 0
STATE_BUFFER = 1
STATE_PROGRAM = 2
STATE_PROGRAMDATA = 3

AccountSpec = Tuple[str, bool, bool]  # (pubkey, is_signer, is_writable)


def find_programdata_address(program_address: str) -> str:
    """Derive the program data address owned by the loader"""
    loader = Pubkey.from_string(BPF_LOADER_UPGRADEABLE_ID)
    program = Pubkey.from_string(program_address)
    address, _ = Pubkey.find_program_address([bytes(program)], loader)
    return str(address)


class ChainInstruction(ABC):
    """Base class for instructions understood by the chain clients"""

    name = "instruction"
    program_id = BPF_LOADER_UPGRADEABLE_ID

    @abstractmethod
    def accounts(self) -> List[AccountSpec]:
        """Accounts in loader order"""
        pass

    @abstractmethod
    def data(self) -> bytes:
        """Serialized instruction data"""
        pass

    def signers(self) -> List[RoleKey]:
        """Handles whose signature the instruction requires"""
        return []

    def to_solders(self) -> Instruction:
        """Encode as a `solders` instruction"""
        metas = [
            AccountMeta(Pubkey.from_string(pubkey), is_signer, is_writable)
            for pubkey, is_signer, is_writable in self.accounts()
        ]
        return Instruction(Pubkey.from_string(self.program_id), self.data(), metas)


@dataclass
class CreateAccount(ChainInstruction):
    """System program create-account for buffer and program accounts"""

    payer: DeployerKey
    new_account: RoleKey
    lamports: int
    space: int
    owner: str = BPF_LOADER_UPGRADEABLE_ID

    name = "create_account"
    program_id = SYSTEM_PROGRAM_ID

    def __post_init__(self):
        require_role("payer", self.payer, (DeployerKey,))
        require_role("new_account", self.new_account, (BufferKey, ProgramKey))

    def accounts(self) -> List[AccountSpec]:
        return [
            (self.payer.pubkey, True, True),
            (self.new_account.pubkey, True, True),
        ]

    def data(self) -> bytes:
        return (struct.pack("<IQQ", 0, self.lamports, self.space)
                + bytes(Pubkey.from_string(self.owner)))

    def signers(self) -> List[RoleKey]:
        return [self.payer, self.new_account]


@dataclass
class InitializeBuffer(ChainInstruction):
    """Mark a loader-owned account as a buffer with the given authority"""

    buffer: str
    authority: DeployerKey

    name = "initialize_buffer"

    def __post_init__(self):
        require_role("authority", self.authority, (DeployerKey,))

    def accounts(self) -> List[AccountSpec]:
        return [
            (self.buffer, False, True),
            (self.authority.pubkey, False, False),
        ]

    def data(self) -> bytes:
        return struct.pack("<I", TAG_INITIALIZE_BUFFER)


@dataclass
class WriteBuffer(ChainInstruction):
    """Write one chunk into a buffer at `offset`"""

    buffer: str
    authority: DeployerKey
    offset: int
    payload: bytes = field(repr=False)

    name = "write"

    def __post_init__(self):
        require_role("authority", self.authority, (DeployerKey,))

    def accounts(self) -> List[AccountSpec]:
        return [
            (self.buffer, False, True),
            (self.authority.pubkey, True, False),
        ]

    def data(self) -> bytes:
        return struct.pack("<IIQ", TAG_WRITE, self.offset, len(self.payload)) + self.payload

    def signers(self) -> List[RoleKey]:
        return [self.authority]


@dataclass
class DeployWithMaxDataLen(ChainInstruction):
    """Create the program data account from a verified buffer

    The buffer authority becomes the program's initial upgrade authority.
    """

    payer: DeployerKey
    program: ProgramKey
    buffer: str
    authority: DeployerKey
    max_data_len: int

    name = "deploy_with_max_data_len"

    def __post_init__(self):
        require_role("payer", self.payer, (DeployerKey,))
        require_role("program", self.program, (ProgramKey,))
        require_role("authority", self.authority, (DeployerKey,))

    @property
    def programdata(self) -> str:
        return find_programdata_address(self.program.pubkey)

    def accounts(self) -> List[AccountSpec]:
        return [
            (self.payer.pubkey, True, True),
            (self.programdata, False, True),
            (self.program.pubkey, False, True),
            (self.buffer, False, True),
            (SYSVAR_RENT_ID, False, False),
            (SYSVAR_CLOCK_ID, False, False),
            (SYSTEM_PROGRAM_ID, False, False),
            (self.authority.pubkey, True, False),
        ]

    def data(self) -> bytes:
        return struct.pack("<IQ", TAG_DEPLOY_WITH_MAX_DATA_LEN, self.max_data_len)

    def signers(self) -> List[RoleKey]:
        return [self.payer, self.authority]


@dataclass
class UpgradeProgram(ChainInstruction):
    """Replace a program's code with the content of a buffer"""

    program: str
    buffer: str
    spill: str
    authority: AuthorityKey

    name = "upgrade"

    def __post_init__(self):
        require_role("authority", self.authority, (AuthorityKey,))

    @property
    def programdata(self) -> str:
        return find_programdata_address(self.program)

    def accounts(self) -> List[AccountSpec]:
        return [
            (self.programdata, False, True),
            (self.program, False, True),
            (self.buffer, False, True),
            (self.spill, False, True),
            (SYSVAR_RENT_ID, False, False),
            (SYSVAR_CLOCK_ID, False, False),
            (self.authority.pubkey, True, False),
        ]

    def data(self) -> bytes:
        return struct.pack("<I", TAG_UPGRADE)

    def signers(self) -> List[RoleKey]:
        return [self.authority]


@dataclass
class SetBufferAuthority(ChainInstruction):
    """Hand a buffer from the deployer to another authority"""

    buffer: str
    current: DeployerKey
    new_authority: str

    name = "set_buffer_authority"

    def __post_init__(self):
        require_role("current", self.current, (DeployerKey,))

    def accounts(self) -> List[AccountSpec]:
        return [
            (self.buffer, False, True),
            (self.current.pubkey, True, False),
            (self.new_authority, False, False),
        ]

    def data(self) -> bytes:
        return struct.pack("<I", TAG_SET_AUTHORITY)

    def signers(self) -> List[RoleKey]:
        return [self.current]


@dataclass
class SetProgramAuthority(ChainInstruction):
    """Change the upgrade authority of a deployed program

    Right after a first deploy the current authority is the deployer.
    """

    program: str
    current: RoleKey
    new_authority: str

    name = "set_program_authority"

    def __post_init__(self):
        require_role("current", self.current, (AuthorityKey, DeployerKey))

    @property
    def programdata(self) -> str:
        return find_programdata_address(self.program)

    def accounts(self) -> List[AccountSpec]:
        return [
            (self.programdata, False, True),
            (self.current.pubkey, True, False),
            (self.new_authority, False, False),
        ]

    def data(self) -> bytes:
        return struct.pack("<I", TAG_SET_AUTHORITY)

    def signers(self) -> List[RoleKey]:
        return [self.current]


@dataclass
class CloseBuffer(ChainInstruction):
    """Close a buffer and reclaim its rent"""

    buffer: str
    recipient: str
    authority: DeployerKey

    name = "close"

    def __post_init__(self):
        require_role("authority", self.authority, (DeployerKey,))

    def accounts(self) -> List[AccountSpec]:
        return [
            (self.buffer, False, True),
            (self.recipient, False, True),
            (self.authority.pubkey, True, False),
        ]

    def data(self) -> bytes:
        return struct.pack("<I", TAG_CLOSE)

    def signers(self) -> List[RoleKey]:
        return [self.authority]


@dataclass
class ChainTransaction:
    """An atomic group of instructions paid for by the deployer"""

    instructions: List[ChainInstruction]
    fee_payer: DeployerKey

    def __post_init__(self):
        require_role("fee_payer", self.fee_payer, (DeployerKey,))
        if not self.instructions:
            raise ValueError("Transaction needs at least one instruction")

    def signers(self) -> List[RoleKey]:
        """Required signers, fee payer first, one handle per public key"""
        seen = set()
        result = []
        for key in [self.fee_payer] + [k for ix in self.instructions for k in ix.signers()]:
            if key.pubkey not in seen:
                seen.add(key.pubkey)
                result.append(key)
        return result

    def describe(self) -> str:
        return "+".join(ix.name for ix in self.instructions)


# Account layouts


def _encode_option_pubkey(pubkey: Optional[str]) -> bytes:
    if pubkey is None:
        return b"\x00" + bytes(32)
    return b"\x01" + bytes(Pubkey.from_string(pubkey))


def _decode_option_pubkey(data: bytes) -> Optional[str]:
    if data[0] == 0:
        return None
    return str(Pubkey.from_bytes(bytes(data[1:33])))


def _state_tag(data: bytes) -> int:
    if len(data) < 4:
        raise ValueError(f"Account data too short ({len(data)} bytes)")
    return struct.unpack_from("<I", data, 0)[0]


@dataclass(frozen=True)
class BufferState:
    authority: Optional[str]
    payload: bytes = field(repr=False)


@dataclass(frozen=True)
class ProgramDataState:
    slot: int
    authority: Optional[str]
    code: bytes = field(repr=False)

    @property
    def capacity(self) -> int:
        return len(self.code)


def encode_buffer_account(authority: Optional[str], payload: bytes) -> bytes:
    return struct.pack("<I", STATE_BUFFER) + _encode_option_pubkey(authority) + payload


def encode_program_account(programdata_address: str) -> bytes:
    return struct.pack("<I", STATE_PROGRAM) + bytes(Pubkey.from_string(programdata_address))


def encode_programdata_account(slot: int, authority: Optional[str], code: bytes) -> bytes:
    return (struct.pack("<IQ", STATE_PROGRAMDATA, slot)
            + _encode_option_pubkey(authority) + code)


def parse_buffer_account(data: bytes) -> BufferState:
    """Parse a loader buffer account

    Raises:
        ValueError: If the data is not a buffer account
    """
    if _state_tag(data) != STATE_BUFFER or len(data) < BUFFER_METADATA_SIZE:
        raise ValueError("Account is not a loader buffer")
    return BufferState(
        authority=_decode_option_pubkey(data[4:BUFFER_METADATA_SIZE]),
        payload=bytes(data[BUFFER_METADATA_SIZE:]),
    )


def parse_program_account(data: bytes) -> str:
    """Parse a program account and return its program data address"""
    if _state_tag(data) != STATE_PROGRAM or len(data) < PROGRAM_ACCOUNT_SIZE:
        raise ValueError("Account is not an upgradeable program")
    return str(Pubkey.from_bytes(bytes(data[4:PROGRAM_ACCOUNT_SIZE])))


def parse_programdata_account(data: bytes) -> ProgramDataState:
    """Parse a program data account"""
    if _state_tag(data) != STATE_PROGRAMDATA or len(data) < PROGRAMDATA_METADATA_SIZE:
        raise ValueError("Account is not program data")
    slot = struct.unpack_from("<Q", data, 4)[0]
    return ProgramDataState(
        slot=slot,
        authority=_decode_option_pubkey(data[12:PROGRAMDATA_METADATA_SIZE]),
        code=bytes(data[PROGRAMDATA_METADATA_SIZE:]),
    )
