# captain/chain/memory.py
"""In-process cluster with upgradeable loader semantics

Used for `memory://<name>` networks and by the test-suite. Each
transaction is applied atomically: either every instruction takes effect
or none does.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse, parse_qs

from ..api.exceptions import TransactionRejectedError, TransientNetworkError
from ..constants import (
    BPF_LOADER_UPGRADEABLE_ID,
    SYSTEM_PROGRAM_ID,
    BUFFER_METADATA_SIZE,
    PROGRAM_ACCOUNT_SIZE,
    PROGRAMDATA_METADATA_SIZE,
    DEFAULT_SIGNATURE_FEE,
    LAMPORTS_PER_SOL,
)
from .base import AccountInfo, ChainClient
from .instructions import (
    ChainInstruction,
    ChainTransaction,
    CreateAccount,
    InitializeBuffer,
    WriteBuffer,
    DeployWithMaxDataLen,
    UpgradeProgram,
    SetBufferAuthority,
    SetProgramAuthority,
    CloseBuffer,
    encode_buffer_account,
    encode_program_account,
    encode_programdata_account,
    parse_buffer_account,
    parse_program_account,
    parse_programdata_account,
)

logger = logging.getLogger(__name__)

ACCOUNT_STORAGE_OVERHEAD = 128
LAMPORTS_PER_BYTE_YEAR = 3480
EXEMPTION_THRESHOLD_YEARS = 2


def rent_exempt_minimum(data_len: int) -> int:
    """Rent-exempt balance using the mainnet rent parameters"""
    return (ACCOUNT_STORAGE_OVERHEAD + data_len) * LAMPORTS_PER_BYTE_YEAR * EXEMPTION_THRESHOLD_YEARS


@dataclass
class _Account:
    lamports: int
    owner: str
    data: bytes = b""
    executable: bool = False


@dataclass
class InjectedFault:
    """A failure the cluster raises for matching transactions"""
    predicate: Callable[[ChainTransaction], bool]
    error: BaseException
    times: int = 1
    after_apply: bool = False


def instruction_matches(name: str, **attrs) -> Callable[[ChainTransaction], bool]:
    """Predicate matching transactions that contain a given instruction"""

    def predicate(transaction: ChainTransaction) -> bool:
        for ix in transaction.instructions:
            if ix.name == name and all(getattr(ix, k, None) == v for k, v in attrs.items()):
                return True
        return False

    return predicate


class _Rejected(Exception):
    """Instruction failed; the transaction is rolled back"""
    pass


class MemoryCluster:
    """Shared state of one in-memory cluster"""

    def __init__(self, name: str, airdrop_lamports: int = 0):
        self.name = name
        self.airdrop_lamports = airdrop_lamports
        self.accounts: Dict[str, _Account] = {}
        self.slot = 0
        self.submitted: List[ChainTransaction] = []
        self.corrupt_writes = False
        self._faults: List[InjectedFault] = []
        self._signatures: Dict[str, Optional[str]] = {}
        self._counter = itertools.count(1)

    # Test and faucet helpers

    def airdrop(self, address: str, lamports: int) -> None:
        account = self.accounts.get(address)
        if account is None:
            self.accounts[address] = _Account(lamports=lamports, owner=SYSTEM_PROGRAM_ID)
        else:
            account.lamports += lamports

    def fund_from_faucet(self, address: str) -> None:
        """Fund an unknown address once when the cluster has a faucet"""
        if self.airdrop_lamports and address not in self.accounts:
            self.airdrop(address, self.airdrop_lamports)

    def inject_fault(self,
                     predicate: Optional[Callable[[ChainTransaction], bool]] = None,
                     error: Optional[BaseException] = None,
                     times: int = 1,
                     after_apply: bool = False) -> InjectedFault:
        """
        Fail matching transactions

        Args:
            predicate: Transactions to fail (all when None)
            error: Exception to raise (a transient network error by default)
            times: How many matching transactions fail
            after_apply: Apply the transaction first, then raise

        Returns:
            The registered fault
        """
        fault = InjectedFault(
            predicate=predicate or (lambda tx: True),
            error=error or TransientNetworkError(f"Injected fault on {self.name}"),
            times=times,
            after_apply=after_apply,
        )
        self._faults.append(fault)
        return fault

    def committed(self, name: Optional[str] = None) -> List[ChainInstruction]:
        """Instructions of committed transactions, optionally filtered by name"""
        return [
            ix for tx in self.submitted for ix in tx.instructions
            if name is None or ix.name == name
        ]

    def written_offsets(self, buffer: Optional[str] = None) -> List[int]:
        """Offsets of committed buffer writes, in submission order"""
        return [
            ix.offset for ix in self.committed(WriteBuffer.name)
            if buffer is None or ix.buffer == buffer
        ]

    def get_account(self, address: str) -> Optional[AccountInfo]:
        account = self.accounts.get(address)
        if account is None:
            return None
        return AccountInfo(
            address=address,
            lamports=account.lamports,
            owner=account.owner,
            data=account.data,
            executable=account.executable,
        )

    def signature_status(self, signature: str) -> Optional[str]:
        if signature not in self._signatures:
            raise TransactionRejectedError(f"Unknown signature {signature}")
        return self._signatures[signature]

    # Execution

    def _take_fault(self, transaction: ChainTransaction, after_apply: bool) -> Optional[BaseException]:
        for fault in self._faults:
            if fault.times > 0 and fault.after_apply == after_apply and fault.predicate(transaction):
                fault.times -= 1
                return fault.error
        return None

    def execute(self, transaction: ChainTransaction) -> str:
        """Apply a transaction atomically and return its signature"""
        error = self._take_fault(transaction, after_apply=False)
        if error is not None:
            raise error

        signers = transaction.signers()
        for key in signers:
            key.signer()
        signed_by = {key.pubkey for key in signers}

        payer = transaction.fee_payer.pubkey
        self.fund_from_faucet(payer)

        staged = {address: replace(account) for address, account in self.accounts.items()}
        try:
            fee = DEFAULT_SIGNATURE_FEE * len(signers)
            self._debit(staged, payer, fee, "fee")
            for ix in transaction.instructions:
                self._apply(staged, ix, signed_by)
        except _Rejected as e:
            raise TransactionRejectedError(
                f"{transaction.describe()} rejected by {self.name}: {e}"
            )

        self.accounts = staged
        self.slot += 1
        self.submitted.append(transaction)

        signature = f"{self.name}-{next(self._counter)}"
        self._signatures[signature] = None

        error = self._take_fault(transaction, after_apply=True)
        if error is not None:
            raise error

        return signature

    @staticmethod
    def _debit(staged: Dict[str, _Account], address: str, lamports: int, purpose: str) -> None:
        account = staged.get(address)
        if account is None or account.lamports < lamports:
            available = account.lamports if account else 0
            raise _Rejected(
                f"insufficient funds for {purpose}: {address} has {available}, needs {lamports}"
            )
        account.lamports -= lamports

    @staticmethod
    def _credit(staged: Dict[str, _Account], address: str, lamports: int) -> None:
        account = staged.get(address)
        if account is None:
            staged[address] = _Account(lamports=lamports, owner=SYSTEM_PROGRAM_ID)
        else:
            account.lamports += lamports

    @staticmethod
    def _loader_account(staged: Dict[str, _Account], address: str) -> _Account:
        account = staged.get(address)
        if account is None:
            raise _Rejected(f"account {address} not found")
        if account.owner != BPF_LOADER_UPGRADEABLE_ID:
            raise _Rejected(f"account {address} is not owned by the loader")
        return account

    def _buffer(self, staged: Dict[str, _Account], address: str):
        account = self._loader_account(staged, address)
        try:
            return account, parse_buffer_account(account.data)
        except ValueError as e:
            raise _Rejected(f"{address}: {e}")

    @staticmethod
    def _require_signed(pubkey: str, signed_by: set) -> None:
        if pubkey not in signed_by:
            raise _Rejected(f"missing required signature for {pubkey}")

    def _apply(self, staged: Dict[str, _Account], ix: ChainInstruction, signed_by: set) -> None:
        for key in ix.signers():
            self._require_signed(key.pubkey, signed_by)

        if isinstance(ix, CreateAccount):
            existing = staged.get(ix.new_account.pubkey)
            if existing is not None and (existing.data or existing.lamports):
                raise _Rejected(f"account {ix.new_account.pubkey} already in use")
            self._debit(staged, ix.payer.pubkey, ix.lamports, "account creation")
            staged[ix.new_account.pubkey] = _Account(
                lamports=ix.lamports, owner=ix.owner, data=bytes(ix.space)
            )

        elif isinstance(ix, InitializeBuffer):
            account = self._loader_account(staged, ix.buffer)
            if len(account.data) < BUFFER_METADATA_SIZE or any(account.data[:4]):
                raise _Rejected(f"account {ix.buffer} already initialized")
            account.data = encode_buffer_account(
                ix.authority.pubkey, account.data[BUFFER_METADATA_SIZE:]
            )

        elif isinstance(ix, WriteBuffer):
            account, state = self._buffer(staged, ix.buffer)
            if state.authority != ix.authority.pubkey:
                raise _Rejected("IncorrectAuthority")
            end = ix.offset + len(ix.payload)
            if end > len(state.payload):
                raise _Rejected("AccountDataTooSmall")
            payload = bytes(ix.payload)
            if self.corrupt_writes and payload:
                payload = bytes([payload[0] ^ 0xFF]) + payload[1:]
            data = bytearray(account.data)
            start = BUFFER_METADATA_SIZE + ix.offset
            data[start:start + len(payload)] = payload
            account.data = bytes(data)

        elif isinstance(ix, DeployWithMaxDataLen):
            program = self._loader_account(staged, ix.program.pubkey)
            if len(program.data) != PROGRAM_ACCOUNT_SIZE or any(program.data[:4]):
                raise _Rejected("program account already initialized")
            buffer, state = self._buffer(staged, ix.buffer)
            if state.authority != ix.authority.pubkey:
                raise _Rejected("IncorrectAuthority")
            if ix.programdata in staged:
                raise _Rejected("program data account already exists")
            if ix.max_data_len < len(state.payload):
                raise _Rejected("max data length is smaller than the buffer")

            rent = rent_exempt_minimum(PROGRAMDATA_METADATA_SIZE + ix.max_data_len)
            self._debit(staged, ix.payer.pubkey, rent, "program data rent")
            self._credit(staged, ix.payer.pubkey, buffer.lamports)
            del staged[ix.buffer]

            code = state.payload + bytes(ix.max_data_len - len(state.payload))
            staged[ix.programdata] = _Account(
                lamports=rent,
                owner=BPF_LOADER_UPGRADEABLE_ID,
                data=encode_programdata_account(self.slot, ix.authority.pubkey, code),
            )
            program.data = encode_program_account(ix.programdata)
            program.executable = True

        elif isinstance(ix, UpgradeProgram):
            program = self._loader_account(staged, ix.program)
            try:
                programdata_address = parse_program_account(program.data)
            except ValueError as e:
                raise _Rejected(str(e))
            if programdata_address != ix.programdata:
                raise _Rejected("program data address mismatch")
            programdata = self._loader_account(staged, programdata_address)
            current = parse_programdata_account(programdata.data)
            if current.authority is None:
                raise _Rejected("program is immutable")
            if current.authority != ix.authority.pubkey:
                raise _Rejected("IncorrectAuthority")
            buffer, state = self._buffer(staged, ix.buffer)
            if state.authority != current.authority:
                raise _Rejected("IncorrectAuthority: buffer authority differs")
            if len(state.payload) > current.capacity:
                raise _Rejected("AccountDataTooSmall")

            code = state.payload + bytes(current.capacity - len(state.payload))
            programdata.data = encode_programdata_account(self.slot, current.authority, code)
            self._credit(staged, ix.spill, buffer.lamports)
            del staged[ix.buffer]

        elif isinstance(ix, SetBufferAuthority):
            account, state = self._buffer(staged, ix.buffer)
            if state.authority != ix.current.pubkey:
                raise _Rejected("IncorrectAuthority")
            account.data = encode_buffer_account(ix.new_authority, state.payload)

        elif isinstance(ix, SetProgramAuthority):
            programdata = self._loader_account(staged, ix.programdata)
            current = parse_programdata_account(programdata.data)
            if current.authority != ix.current.pubkey:
                raise _Rejected("IncorrectAuthority")
            programdata.data = encode_programdata_account(
                current.slot, ix.new_authority, current.code
            )

        elif isinstance(ix, CloseBuffer):
            account, state = self._buffer(staged, ix.buffer)
            if state.authority != ix.authority.pubkey:
                raise _Rejected("IncorrectAuthority")
            self._credit(staged, ix.recipient, account.lamports)
            del staged[ix.buffer]

        else:
            raise _Rejected(f"unsupported instruction {ix.name}")


class MemoryChainClient(ChainClient):
    """Chain client backed by a shared in-process cluster

    URL form: `memory://<cluster>[?airdrop=<sol>]`. Clients with the same
    cluster name share state for the lifetime of the process.
    """

    _clusters: Dict[str, MemoryCluster] = {}

    def __init__(self, config: Dict = None, cluster: Optional[MemoryCluster] = None):
        super().__init__(config)
        if cluster is None:
            parsed = urlparse(self.url)
            name = parsed.netloc or parsed.path.strip("/") or "default"
            airdrop_sol = float(parse_qs(parsed.query).get("airdrop", ["0"])[0])
            cluster = self.get_cluster(name, int(airdrop_sol * LAMPORTS_PER_SOL))
        self.cluster = cluster

    @classmethod
    def get_cluster(cls, name: str, airdrop_lamports: int = 0) -> MemoryCluster:
        """Get or create the shared cluster called `name`"""
        if name not in cls._clusters:
            cls._clusters[name] = MemoryCluster(name, airdrop_lamports)
        return cls._clusters[name]

    @classmethod
    def reset_clusters(cls) -> None:
        cls._clusters.clear()

    async def submit_transaction(self, transaction: ChainTransaction) -> str:
        await asyncio.sleep(0)
        return self.cluster.execute(transaction)

    async def wait_for_confirmation(self, signature: str) -> None:
        await asyncio.sleep(0)
        error = self.cluster.signature_status(signature)
        if error:
            raise TransactionRejectedError(f"Transaction {signature} failed: {error}")

    async def read_account(self, address: str) -> Optional[AccountInfo]:
        await asyncio.sleep(0)
        return self.cluster.get_account(address)

    async def get_balance(self, address: str) -> int:
        self.cluster.fund_from_faucet(address)
        return await super().get_balance(address)

    async def estimate_rent(self, data_len: int) -> int:
        return rent_exempt_minimum(data_len)

    async def estimate_fee(self, transaction: ChainTransaction) -> int:
        return DEFAULT_SIGNATURE_FEE * len(transaction.signers())
