"""Resumable staging of program binaries into loader buffer accounts"""

import logging
from typing import Callable, Optional

from solders.keypair import Keypair

from .session_store import SessionStore
from ..api.exceptions import (
    BufferCorruptedError,
    ChunkWriteFailedError,
    InsufficientFundsError,
    TransactionRejectedError,
    TransientNetworkError,
)
from ..chain.base import ChainClient
from ..chain.instructions import (
    BufferState,
    ChainTransaction,
    CloseBuffer,
    CreateAccount,
    InitializeBuffer,
    WriteBuffer,
    parse_buffer_account,
)
from ..chain.keys import BufferKey, DeployerKey
from ..constants import BUFFER_METADATA_SIZE
from ..models.artifact import ProgramArtifact
from ..models.config import DeploySettings
from ..models.deployment import BufferSession
from ..utils.async_utils import retry_async
from ..utils.hash_utils import calculate_content_hash

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class BufferWriter:
    """Writes an artifact into a buffer account chunk by chunk

    Every confirmed chunk advances a persisted checkpoint. A later attempt
    for the same content resumes at that checkpoint; chunks below it are
    never re-sent unless the on-chain prefix no longer matches.
    """

    def __init__(self,
                 client: ChainClient,
                 sessions: SessionStore,
                 settings: Optional[DeploySettings] = None,
                 progress: Optional[ProgressCallback] = None):
        self.client = client
        self.sessions = sessions
        self.settings = settings or DeploySettings()
        self.progress = progress

    async def stage(self,
                    artifact: ProgramArtifact,
                    network: str,
                    deployer: DeployerKey,
                    extra_lamports: int = 0,
                    handed_to: Optional[str] = None) -> BufferSession:
        """
        Get an artifact into a verified buffer

        Args:
            artifact: Binary to stage
            network: Network name (checkpoint key)
            deployer: Payer and buffer authority
            extra_lamports: Further lamports the caller will spend after
                staging, included in the funding check
            handed_to: Authority a completed buffer may already have been
                handed to by an interrupted upgrade

        Returns:
            Completed and verified session

        Raises:
            InsufficientFundsError: Deployer cannot pay rent and fees
            ChunkWriteFailedError: A chunk could not be written
            BufferCorruptedError: Buffer content does not match the artifact
        """
        session = await self._resume(artifact, network, deployer, handed_to)

        if session is None:
            session = await self._open(artifact, network, deployer, extra_lamports)
        elif not session.is_complete:
            write_cost = await self._write_cost(session, deployer)
            await self._check_funds(deployer, write_cost + extra_lamports)

        await self.write_chunks(session, artifact, deployer)
        await self.verify(session, artifact)
        return session

    async def _resume(self,
                      artifact: ProgramArtifact,
                      network: str,
                      deployer: DeployerKey,
                      handed_to: Optional[str]) -> Optional[BufferSession]:
        """Return a usable stored session, discarding stale ones"""
        session = self.sessions.load(artifact.program, network)
        if session is None:
            return None

        if session.content_hash != artifact.content_hash or session.total_size != artifact.size:
            logger.info(f"Discarding stale buffer {session.buffer_address} "
                        f"for a previous build of {artifact.program}")
            await self.close_buffer(session, deployer)
            self.sessions.delete(artifact.program, network)
            return None

        state = await self.read_buffer(session.buffer_address)
        if state is None or len(state.payload) != artifact.size:
            logger.warning(f"Buffer {session.buffer_address} is gone or resized; "
                           f"starting a new buffer")
            self.sessions.delete(artifact.program, network)
            return None

        if state.authority != deployer.pubkey:
            if session.is_complete and handed_to and state.authority == handed_to:
                logger.info(f"Buffer {session.buffer_address} is complete and already "
                            f"held by {handed_to}")
                return session
            logger.warning(f"Buffer {session.buffer_address} is held by "
                           f"{state.authority}, not the deployer; starting a new buffer")
            self.sessions.delete(artifact.program, network)
            return None

        written = session.bytes_written
        if state.payload[:written] != artifact.payload[:written]:
            logger.warning(f"On-chain prefix of {session.buffer_address} does not match; "
                           f"rewriting from offset 0")
            session.reset()
            self.sessions.save(session)
        else:
            logger.info(f"Resuming buffer {session.buffer_address} at "
                        f"{written}/{session.total_size} bytes")
        return session

    async def _open(self,
                    artifact: ProgramArtifact,
                    network: str,
                    deployer: DeployerKey,
                    extra_lamports: int) -> BufferSession:
        """Create, fund and initialize a new buffer account"""
        buffer_key = BufferKey.from_keypair(Keypair())
        space = BUFFER_METADATA_SIZE + artifact.size
        rent = await self.client.estimate_rent(space)

        create = ChainTransaction(
            instructions=[
                CreateAccount(payer=deployer, new_account=buffer_key, lamports=rent, space=space),
                InitializeBuffer(buffer=buffer_key.pubkey, authority=deployer),
            ],
            fee_payer=deployer,
        )

        session = BufferSession(
            program=artifact.program,
            network=network,
            buffer_address=buffer_key.pubkey,
            content_hash=artifact.content_hash,
            total_size=artifact.size,
            chunk_size=self.settings.chunk_size,
        )

        create_fee = await self.client.estimate_fee(create)
        write_cost = await self._write_cost(session, deployer)
        await self._check_funds(deployer, rent + create_fee + write_cost + extra_lamports)

        # Persist before creating so an interrupted run can find the account
        self.sessions.save(session)

        async def create_once():
            if await self.client.read_account(buffer_key.pubkey) is not None:
                return
            await self.client.send_and_confirm(create)

        await self._retry(create_once, f"creating buffer {buffer_key.pubkey}")
        logger.info(f"Created buffer {buffer_key.pubkey} ({space} bytes, {rent} lamports)")
        return session

    async def _write_cost(self, session: BufferSession, deployer: DeployerKey) -> int:
        chunks = len(session.chunk_offsets())
        if chunks == 0:
            return 0
        sample = ChainTransaction(
            instructions=[WriteBuffer(buffer=session.buffer_address, authority=deployer,
                                      offset=0, payload=bytes(session.chunk_size))],
            fee_payer=deployer,
        )
        return chunks * await self.client.estimate_fee(sample)

    async def _check_funds(self, deployer: DeployerKey, required: int) -> None:
        balance = await self.client.get_balance(deployer.pubkey)
        if balance < required:
            raise InsufficientFundsError(deployer.pubkey, required, balance)

    async def write_chunks(self,
                           session: BufferSession,
                           artifact: ProgramArtifact,
                           deployer: DeployerKey) -> None:
        """
        Write the chunks above the checkpoint in increasing offset order

        Raises:
            ChunkWriteFailedError: With the last durable offset
        """
        self._report(session)

        for offset in session.chunk_offsets():
            chunk = artifact.payload[offset:offset + session.chunk_size]
            transaction = ChainTransaction(
                instructions=[WriteBuffer(buffer=session.buffer_address, authority=deployer,
                                          offset=offset, payload=chunk)],
                fee_payer=deployer,
            )

            attempts = 1

            def on_retry(attempt, error, delay):
                nonlocal attempts
                attempts = attempt + 1
                logger.warning(f"Chunk at offset {offset} failed ({error}); "
                               f"retrying in {delay:.1f}s")

            try:
                await retry_async(
                    self.client.send_and_confirm,
                    transaction,
                    max_attempts=self.settings.retry.max_attempts,
                    delay=self.settings.retry.retry_delay,
                    backoff=self.settings.retry.backoff_multiplier,
                    max_delay=self.settings.retry.max_retry_delay,
                    exceptions=(TransientNetworkError,),
                    on_retry=on_retry,
                )
            except (TransientNetworkError, TransactionRejectedError) as e:
                raise ChunkWriteFailedError(
                    program=session.program,
                    network=session.network,
                    buffer_address=session.buffer_address,
                    offset=session.bytes_written,
                    total=session.total_size,
                    attempts=attempts,
                    cause=e,
                ) from e

            session.advance(offset + len(chunk))
            self.sessions.save(session)
            self._report(session)

    async def verify(self, session: BufferSession, artifact: ProgramArtifact) -> None:
        """
        Check that the buffer holds exactly the artifact bytes

        Raises:
            BufferCorruptedError: On mismatch; the checkpoint is reset so the
                next attempt rewrites the buffer
        """
        state = await self.read_buffer(session.buffer_address)
        if state is None:
            actual = "missing"
        else:
            actual = calculate_content_hash(state.payload[:session.total_size])

        if actual != artifact.content_hash:
            session.reset()
            self.sessions.save(session)
            raise BufferCorruptedError(session.buffer_address, artifact.content_hash, actual)

        logger.debug(f"Verified buffer {session.buffer_address} ({artifact.short_hash})")

    async def read_buffer(self, address: str) -> Optional[BufferState]:
        """Read and parse a buffer account, None if absent or not a buffer"""
        account = await self._retry(self.client.read_account, f"reading {address}", address)
        if account is None:
            return None
        try:
            return parse_buffer_account(account.data)
        except ValueError:
            return None

    async def close_buffer(self, session: BufferSession, deployer: DeployerKey) -> bool:
        """Close a session's buffer and reclaim its rent to the deployer

        Returns:
            True if the buffer was closed
        """
        state = await self.read_buffer(session.buffer_address)
        if state is None:
            return False
        if state.authority != deployer.pubkey:
            logger.warning(f"Cannot close buffer {session.buffer_address}: held by "
                           f"{state.authority}")
            return False

        transaction = ChainTransaction(
            instructions=[CloseBuffer(buffer=session.buffer_address,
                                      recipient=deployer.pubkey, authority=deployer)],
            fee_payer=deployer,
        )
        await self._retry(self.client.send_and_confirm, f"closing {session.buffer_address}",
                          transaction)
        logger.info(f"Closed buffer {session.buffer_address}")
        return True

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

    def _report(self, session: BufferSession) -> None:
        if self.progress:
            self.progress(session.bytes_written, session.total_size)
