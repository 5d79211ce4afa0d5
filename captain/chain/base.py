# captain/chain/base.py
"""Chain client abstract base class"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..api.exceptions import ConfirmationTimeoutError, TransientNetworkError
from ..constants import (
    DEFAULT_COMMITMENT,
    DEFAULT_TRANSACTION_TIMEOUT,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
)
from .instructions import ChainTransaction
from ..utils.async_utils import raise_if_cancelling

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountInfo:
    """Snapshot of an on-chain account"""
    address: str
    lamports: int
    owner: str
    data: bytes = field(repr=False)
    executable: bool = False


class ChainClient(ABC):
    """Abstract base class for cluster clients

    Every network round-trip of a deployment goes through this interface.
    """

    def __init__(self, config: Dict[str, Any] = None):
        """
        Initialize chain client

        Args:
            config: Client configuration (url, commitment, timeouts)
        """
        self.config = config or {}
        self.url = self.config.get("url", "")
        self.name = self.config.get("name", self.url)
        self.commitment = self.config.get("commitment", DEFAULT_COMMITMENT)
        self.transaction_timeout = float(
            self.config.get("transaction_timeout", DEFAULT_TRANSACTION_TIMEOUT)
        )
        self.confirmation_timeout = float(
            self.config.get("confirmation_timeout", DEFAULT_CONFIRMATION_TIMEOUT)
        )
        self.poll_interval = float(self.config.get("poll_interval", DEFAULT_POLL_INTERVAL))
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize client (e.g., open connections)"""
        if not self._initialized:
            await self._do_initialize()
            self._initialized = True

    async def _do_initialize(self) -> None:
        """Actual initialization logic, overridden by subclasses"""
        pass

    @abstractmethod
    async def submit_transaction(self, transaction: ChainTransaction) -> str:
        """
        Sign and submit a transaction

        Args:
            transaction: Transaction to submit

        Returns:
            Transaction signature

        Raises:
            TransientNetworkError: Retryable transport failure
            TransactionRejectedError: The cluster refused the transaction
        """
        pass

    @abstractmethod
    async def wait_for_confirmation(self, signature: str) -> None:
        """
        Wait until a transaction reaches the configured commitment

        Args:
            signature: Transaction signature

        Raises:
            TransactionRejectedError: The transaction failed on chain
        """
        pass

    @abstractmethod
    async def read_account(self, address: str) -> Optional[AccountInfo]:
        """
        Read account data

        Args:
            address: Base58 account address

        Returns:
            Account snapshot or None if the account does not exist
        """
        pass

    @abstractmethod
    async def estimate_rent(self, data_len: int) -> int:
        """
        Minimum balance for a rent-exempt account

        Args:
            data_len: Account data length in bytes

        Returns:
            Lamports
        """
        pass

    @abstractmethod
    async def estimate_fee(self, transaction: ChainTransaction) -> int:
        """
        Fee the cluster would charge for a transaction

        Args:
            transaction: Transaction to price

        Returns:
            Lamports
        """
        pass

    async def get_balance(self, address: str) -> int:
        """Lamports held by an account, 0 if it does not exist"""
        account = await self.read_account(address)
        return account.lamports if account else 0

    async def send_and_confirm(self, transaction: ChainTransaction) -> str:
        """
        Submit a transaction and wait for confirmation

        Each step carries its own timeout. A cancellation requested before
        submission is raised here, so nothing is sent after a cancel.

        Args:
            transaction: Transaction to send

        Returns:
            Transaction signature
        """
        raise_if_cancelling()

        try:
            async with asyncio.timeout(self.transaction_timeout):
                signature = await self.submit_transaction(transaction)
        except asyncio.TimeoutError:
            raise TransientNetworkError(
                f"Submitting {transaction.describe()} timed out after "
                f"{self.transaction_timeout:.0f}s"
            )

        logger.debug(f"Submitted {transaction.describe()}: {signature}")

        try:
            async with asyncio.timeout(self.confirmation_timeout):
                await self.wait_for_confirmation(signature)
        except asyncio.TimeoutError:
            raise ConfirmationTimeoutError(signature, self.confirmation_timeout)

        return signature

    async def close(self) -> None:
        """Close client connections"""
        if self._initialized:
            await self._do_close()
            self._initialized = False

    async def _do_close(self) -> None:
        """Actual cleanup logic, overridden by subclasses"""
        pass

    async def __aenter__(self):
        """Async context manager entry"""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()
