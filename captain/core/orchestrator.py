"""Deployment state machine for one (program, network) pair"""

import logging
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from .artifact_versioner import ArtifactVersioner, classify
from .buffer_writer import BufferWriter, ProgressCallback
from .deployment_ledger import DeploymentLedger
from .key_vault import KeyVault
from .session_store import SessionStore
from ..api.exceptions import (
    AddressConflictError,
    AuthorityMismatchError,
    LedgerWriteError,
    OperationMismatchError,
    ProgramCapacityError,
    ProgramStateError,
    TransientNetworkError,
)
from ..chain.base import ChainClient
from ..chain.instructions import (
    ChainTransaction,
    CreateAccount,
    DeployWithMaxDataLen,
    ProgramDataState,
    SetBufferAuthority,
    SetProgramAuthority,
    UpgradeProgram,
    find_programdata_address,
    parse_program_account,
    parse_programdata_account,
)
from ..chain.keys import AuthorityKey, DeployerKey, RoleKey
from ..constants import (
    ARCHIVED_PROGRAM_FILE,
    DEFAULT_SIGNATURE_FEE,
    PROGRAM_ACCOUNT_SIZE,
    PROGRAMDATA_METADATA_SIZE,
)
from ..models.artifact import ProgramArtifact, Classification
from ..models.config import ResolvedTarget
from ..models.deployment import (
    ALLOWED_TRANSITIONS,
    DeploymentRecord,
    DeployState,
    utc_now,
)
from ..models.result import DeployResult, OperationStatus, Transition
from ..utils.async_utils import retry_async, run_to_completion
from ..utils.file_utils import atomic_write
from ..utils.hash_utils import calculate_content_hash

logger = logging.getLogger(__name__)

OPERATION_DEPLOY = "deploy"
OPERATION_UPGRADE = "upgrade"

# Finalize and handoff transactions, at most three signatures each
FINALIZE_FEE_ALLOWANCE = DEFAULT_SIGNATURE_FEE * 3 * 2


def code_matches(state: ProgramDataState, content_hash: str, size: int) -> bool:
    """
    Check that deployed code is exactly a binary of `size` bytes

    The loader zero-fills program data past the deployed binary, so a
    matching prefix with a non-zero tail is older, longer code.
    """
    if size > state.capacity:
        return False
    if state.code[size:].strip(b"\x00"):
        return False
    return calculate_content_hash(state.code[:size]) == content_hash


async def read_programdata(client: ChainClient, address: str) -> Optional[ProgramDataState]:
    """
    Read the program data behind a program address

    Returns:
        Program data state, or None if no account exists at the address

    Raises:
        ProgramStateError: If the address holds something else
    """
    account = await client.read_account(address)
    if account is None:
        return None
    try:
        programdata_address = parse_program_account(account.data)
    except ValueError:
        raise ProgramStateError(f"Account {address} exists but is not an upgradeable program")
    if programdata_address != find_programdata_address(address):
        raise ProgramStateError(f"Program {address} points at unexpected program data")

    data_account = await client.read_account(programdata_address)
    if data_account is None:
        raise ProgramStateError(f"Program data of {address} is missing")
    try:
        return parse_programdata_account(data_account.data)
    except ValueError as e:
        raise ProgramStateError(f"Program data of {address} is invalid: {e}")


async def verify_onchain(client: ChainClient, record: DeploymentRecord) -> bool:
    """Check that the chain holds the code a record describes"""
    state = await read_programdata(client, record.program_address)
    if state is None:
        return False
    return code_matches(state, record.content_hash, record.size)


class DeploymentOrchestrator:
    """Drives one deploy or upgrade from classification to a durable record

    States: CLASSIFIED, BUFFER_STAGING, BUFFER_VERIFIED, FINALIZING,
    AUTHORITY_HANDOFF, COMPLETE, with ABORTED reachable from any of them.
    The deployment record is written only on the way into COMPLETE, so an
    abort always leaves the previous record untouched.
    """

    def __init__(self,
                 target: ResolvedTarget,
                 vault: KeyVault,
                 client: ChainClient,
                 ledger: DeploymentLedger,
                 sessions: SessionStore,
                 progress: Optional[ProgressCallback] = None):
        self.target = target
        self.vault = vault
        self.client = client
        self.ledger = ledger
        self.sessions = sessions
        self.settings = target.settings
        self.writer = BufferWriter(client, sessions, self.settings, progress)
        self.result: Optional[DeployResult] = None

    @property
    def program(self) -> str:
        return self.target.program

    @property
    def network(self) -> str:
        return self.target.network_name

    # State bookkeeping

    def _enter(self, state: DeployState, detail: str = "") -> None:
        result = self.result
        if result.transitions:
            current = result.state
            allowed = ALLOWED_TRANSITIONS[current]
            if state != DeployState.ABORTED and state not in allowed:
                raise RuntimeError(f"Illegal transition {current.value} -> {state.value}")
            if state == DeployState.ABORTED and current.is_terminal:
                raise RuntimeError(f"Cannot abort from {current.value}")

        result.state = state
        result.transitions.append(Transition(state=state, detail=detail))
        message = f"{self.program}@{self.network}: {state.value}"
        if detail:
            message += f" ({detail})"
        logger.info(message)

    def _abort(self, error: BaseException) -> None:
        result = self.result
        if result.state == DeployState.COMPLETE:
            # Cancelled after the record was written; the operation stands
            logger.warning(f"{self.program}@{self.network}: cancelled after completing")
            return

        if isinstance(error, Exception):
            result.error = error

        session = self.sessions.load(self.program, self.network)
        if session is not None:
            result.buffer_address = session.buffer_address
            result.bytes_written = session.bytes_written
            result.total_size = session.total_size

        if not result.state.is_terminal:
            self._enter(DeployState.ABORTED, str(error) or type(error).__name__)
        result.complete(OperationStatus.FAILED)

    # Entry point

    async def run(self,
                  artifact: ProgramArtifact,
                  operation: str,
                  options: Optional[Dict[str, str]] = None) -> DeployResult:
        """
        Deploy or upgrade an artifact

        Args:
            artifact: Binary to put on chain
            operation: "deploy" or "upgrade"
            options: Command line options to repeat in the resume command

        Returns:
            Result with the visited states and the new record

        Raises:
            CaptainError: Any abort; `self.result` holds the partial result
        """
        if operation not in (OPERATION_DEPLOY, OPERATION_UPGRADE):
            raise ValueError(f"Unknown operation: {operation}")

        self.result = DeployResult(
            program=self.program,
            network=self.network,
            operation=operation,
            content_hash=artifact.content_hash,
            options=dict(options or {}),
        )

        async with self.ledger.lock(self.program, self.network):
            try:
                await self._run(artifact, operation)
            except BaseException as e:
                self._abort(e)
                raise

        return self.result

    async def _run(self, artifact: ProgramArtifact, operation: str) -> None:
        result = self.result
        deployer = self.vault.deployer()
        authority = self.vault.authority()
        logger.info(f"Using {self.vault.describe(deployer)}")
        logger.info(f"Using {self.vault.describe(authority)}")

        record = await self.ledger.load(self.program, self.network)
        pinned = self.target.pinned_address
        if record is not None and pinned and pinned != record.program_address:
            raise AddressConflictError(self.program, self.network, pinned, record.program_address)

        classification = classify(artifact, record)
        result.classification = classification
        ArtifactVersioner.check_regression(artifact, record)
        self._enter(DeployState.CLASSIFIED, classification.value)

        if classification == Classification.NO_OP_NEEDED:
            result.program_address = record.program_address
            result.authority = record.authority
            result.record = record
            self._enter(DeployState.COMPLETE, "already deployed")
            result.complete(OperationStatus.SKIPPED)
            return

        if operation == OPERATION_DEPLOY and classification == Classification.UPGRADE:
            raise OperationMismatchError(
                f"'{self.program}' is already deployed on '{self.network}' at "
                f"{record.program_address}; use 'captain upgrade'"
            )
        if operation == OPERATION_UPGRADE and classification == Classification.FIRST_DEPLOY:
            raise OperationMismatchError(
                f"'{self.program}' has not been deployed on '{self.network}'; "
                f"use 'captain deploy'"
            )

        if classification == Classification.FIRST_DEPLOY:
            await self._first_deploy(artifact, deployer, authority)
        else:
            await self._upgrade(artifact, record, deployer, authority)

    # First deploy

    async def _first_deploy(self,
                            artifact: ProgramArtifact,
                            deployer: DeployerKey,
                            authority: AuthorityKey) -> None:
        program_key = self.vault.program_key(create=True)
        address = program_key.pubkey
        self.result.program_address = address

        existing = await self.read_programdata(address)
        if existing is not None:
            if not code_matches(existing, artifact.content_hash, artifact.size):
                raise ProgramStateError(
                    f"Address {address} on '{self.network}' already holds a different "
                    f"program and there is no deployment record for it"
                )
            self.result.recovered = True
            self._enter(DeployState.AUTHORITY_HANDOFF, "code already on chain")
            await run_to_completion(self._finish(artifact, None, deployer, authority))
            return

        max_data_len = artifact.size * self.settings.max_data_len_multiplier
        program_rent = await self.client.estimate_rent(PROGRAM_ACCOUNT_SIZE)
        programdata_rent = await self.client.estimate_rent(PROGRAMDATA_METADATA_SIZE + max_data_len)

        session = await self._stage(
            artifact, deployer,
            extra_lamports=program_rent + programdata_rent + FINALIZE_FEE_ALLOWANCE,
        )

        self._enter(DeployState.FINALIZING, f"program {address}")
        transaction = ChainTransaction(
            instructions=[
                CreateAccount(payer=deployer, new_account=program_key,
                              lamports=program_rent, space=PROGRAM_ACCOUNT_SIZE),
                DeployWithMaxDataLen(payer=deployer, program=program_key,
                                     buffer=session.buffer_address, authority=deployer,
                                     max_data_len=max_data_len),
            ],
            fee_payer=deployer,
        )
        await run_to_completion(self._finish(
            artifact, None, deployer, authority,
            finalize=lambda: self.client.send_and_confirm(transaction),
        ))

    # Upgrade

    async def _upgrade(self,
                       artifact: ProgramArtifact,
                       record: DeploymentRecord,
                       deployer: DeployerKey,
                       authority: AuthorityKey) -> None:
        address = record.program_address
        self.result.program_address = address
        signer = self.vault.upgrade_signer()

        if signer.pubkey != record.authority:
            raise AuthorityMismatchError(self.program, self.network,
                                         expected=record.authority, supplied=signer.pubkey)

        state = await self.read_programdata(address)
        if state is None:
            raise ProgramStateError(
                f"No upgradeable program at {address} on '{self.network}' although "
                f"the deployment record lists one"
            )

        if code_matches(state, artifact.content_hash, artifact.size):
            self.result.recovered = True
            self._enter(DeployState.AUTHORITY_HANDOFF, "code already on chain")
            await run_to_completion(self._finish(artifact, record, deployer, authority))
            return

        self._check_upgrade_authority(state, signer)
        if artifact.size > state.capacity:
            raise ProgramCapacityError(self.program, artifact.size, state.capacity)

        # Fail before any write if the signer is public-key only
        signer.signer()

        session = await self._stage(
            artifact, deployer,
            extra_lamports=FINALIZE_FEE_ALLOWANCE,
            handed_to=signer.pubkey,
        )

        self._enter(DeployState.FINALIZING, f"buffer {session.buffer_address}")
        await run_to_completion(self._finish(
            artifact, record, deployer, authority,
            finalize=lambda: self._finalize_upgrade(address, session.buffer_address,
                                                    deployer, signer),
        ))

    def _check_upgrade_authority(self, state: ProgramDataState, signer: AuthorityKey) -> None:
        if state.authority is None:
            raise ProgramStateError(f"Program {self.program} on '{self.network}' is immutable")
        if state.authority != signer.pubkey:
            raise AuthorityMismatchError(self.program, self.network,
                                         expected=state.authority, supplied=signer.pubkey)

    async def _finalize_upgrade(self,
                                address: str,
                                buffer_address: str,
                                deployer: DeployerKey,
                                signer: AuthorityKey) -> str:
        # Authority may have changed while the buffer was written
        state = await self.read_programdata(address)
        self._check_upgrade_authority(state, signer)

        instructions = []
        buffer_state = await self.writer.read_buffer(buffer_address)
        if buffer_state is None:
            raise ProgramStateError(f"Buffer {buffer_address} disappeared before upgrade")
        if buffer_state.authority != signer.pubkey:
            instructions.append(SetBufferAuthority(buffer=buffer_address, current=deployer,
                                                   new_authority=signer.pubkey))
        instructions.append(UpgradeProgram(program=address, buffer=buffer_address,
                                           spill=deployer.pubkey, authority=signer))

        transaction = ChainTransaction(instructions=instructions, fee_payer=deployer)
        return await self.client.send_and_confirm(transaction)

    # Shared steps

    async def _stage(self, artifact: ProgramArtifact, deployer: DeployerKey,
                     extra_lamports: int, handed_to: Optional[str] = None):
        self._enter(DeployState.BUFFER_STAGING, f"{artifact.size} bytes")
        session = await self.writer.stage(
            artifact, self.network, deployer,
            extra_lamports=extra_lamports, handed_to=handed_to,
        )
        self.result.buffer_address = session.buffer_address
        self.result.bytes_written = session.bytes_written
        self.result.total_size = session.total_size
        self._enter(DeployState.BUFFER_VERIFIED, artifact.short_hash)
        return session

    async def _finish(self,
                      artifact: ProgramArtifact,
                      record: Optional[DeploymentRecord],
                      deployer: DeployerKey,
                      authority: AuthorityKey,
                      finalize: Optional[Callable[[], Awaitable[str]]] = None) -> None:
        """Finalize, hand off and record; callers shield this as one unit"""
        if finalize is not None:
            self.result.transactions.append(await finalize())
            self._enter(DeployState.AUTHORITY_HANDOFF)
        await self._handoff(self.result.program_address, deployer, authority)
        await self._complete(artifact, record, deployer, authority)

    async def _handoff(self, address: str, deployer: DeployerKey,
                       authority: AuthorityKey) -> None:
        """Point the program's upgrade authority at the configured key"""
        wanted = authority.pubkey

        async def handoff_once():
            state = await self.read_programdata(address)
            if state is None:
                raise ProgramStateError(f"Program {address} not found during handoff")
            if state.authority == wanted:
                return None

            current = self._current_authority_key(state, deployer)
            transaction = ChainTransaction(
                instructions=[SetProgramAuthority(program=address, current=current,
                                                  new_authority=wanted)],
                fee_payer=deployer,
            )
            return await self.client.send_and_confirm(transaction)

        signature = await self._retry(handoff_once, f"authority handoff for {address}")
        if signature is None:
            logger.debug(f"Upgrade authority of {address} already {wanted}")
        else:
            self.result.transactions.append(signature)
            logger.info(f"Upgrade authority of {address} set to {wanted}")
        self.result.authority = wanted

    def _current_authority_key(self, state: ProgramDataState, deployer: DeployerKey) -> RoleKey:
        if state.authority == deployer.pubkey:
            return deployer
        signer = self.vault.upgrade_signer()
        if state.authority == signer.pubkey:
            return signer
        raise AuthorityMismatchError(self.program, self.network,
                                     expected=state.authority or "none",
                                     supplied=signer.pubkey)

    async def _complete(self,
                        artifact: ProgramArtifact,
                        record: Optional[DeploymentRecord],
                        deployer: DeployerKey,
                        authority: AuthorityKey) -> None:
        self.archive(artifact)

        if record is None:
            now = utc_now()
            new_record = DeploymentRecord(
                program=self.program,
                network=self.network,
                program_address=self.result.program_address,
                content_hash=artifact.content_hash,
                size=artifact.size,
                deployer=deployer.pubkey,
                authority=authority.pubkey,
                deployed_at=now,
                updated_at=now,
                version=artifact.version,
            )
        else:
            new_record = record.upgraded(
                content_hash=artifact.content_hash,
                size=artifact.size,
                deployer=deployer.pubkey,
                authority=authority.pubkey,
                version=artifact.version,
            )

        await self.ledger.save(new_record)
        self.result.record = new_record
        self._enter(DeployState.COMPLETE, f"record {self.ledger.record_path(self.program, self.network)}")
        self.sessions.delete(self.program, self.network)
        self.result.complete(OperationStatus.SUCCESS)

    def archive(self, artifact: ProgramArtifact) -> Path:
        """Keep a copy of the deployed binary under the artifacts directory"""
        base = self.target.artifacts_dir / self.program
        path = base / artifact.label / ARCHIVED_PROGRAM_FILE
        if path.exists() and calculate_content_hash(path.read_bytes()) != artifact.content_hash:
            path = base / f"{artifact.label}-{artifact.short_hash}" / ARCHIVED_PROGRAM_FILE

        try:
            atomic_write(path, artifact.payload, mode='wb')
        except OSError as e:
            raise LedgerWriteError(str(path), e.strerror or str(e))
        logger.debug(f"Archived {self.program} to {path}")
        return path

    # Chain reads

    async def read_programdata(self, address: str) -> Optional[ProgramDataState]:
        return await self._retry(read_programdata, f"reading program {address}",
                                 self.client, address)

    async def _retry(self, func, description: str, *args):
        policy = self.settings.retry

        def on_retry(attempt, error, delay):
            logger.warning(f"{description} failed ({error}); retrying in {delay:.1f}s")

        return await retry_async(
            func,
            *args,
            max_attempts=policy.max_attempts,
            delay=policy.retry_delay,
            backoff=policy.backoff_multiplier,
            max_delay=policy.max_retry_delay,
            exceptions=(TransientNetworkError,),
            on_retry=on_retry,
        )
