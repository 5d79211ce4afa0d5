# captain/chain/rpc.py
"""JSON-RPC cluster client"""

import asyncio
import base64
import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ..api.exceptions import NetworkError, TransientNetworkError, TransactionRejectedError
from ..constants import DEFAULT_SIGNATURE_FEE
from .base import AccountInfo, ChainClient
from .instructions import ChainTransaction

logger = logging.getLogger(__name__)

COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}

# Node is behind or unhealthy; the request may succeed later
TRANSIENT_RPC_CODES = {-32004, -32005, -32007, -32014}
TRANSIENT_RPC_MESSAGES = ("blockhash not found", "node is behind", "too many requests")


class RpcChainClient(ChainClient):
    """Cluster client speaking Solana JSON-RPC over HTTP"""

    def __init__(self, config: Dict[str, Any] = None):
        super().__init__(config)
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def _do_initialize(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.transaction_timeout),
            headers={"Content-Type": "application/json"},
        )

    async def _do_close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        """Issue one JSON-RPC call and return its result"""
        if self._client is None:
            await self.initialize()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} to {self.url} failed: {e}")

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientNetworkError(
                f"{method} to {self.url} returned HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            raise NetworkError(f"{method} to {self.url} returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError(f"{method} returned invalid JSON: {e}")

        error = body.get("error")
        if error:
            raise self._translate_error(method, error)

        return body.get("result")

    @staticmethod
    def _translate_error(method: str, error: Dict[str, Any]) -> NetworkError:
        code = error.get("code")
        message = error.get("message", "unknown error")
        text = f"{method} failed ({code}): {message}"
        if code in TRANSIENT_RPC_CODES or any(m in message.lower() for m in TRANSIENT_RPC_MESSAGES):
            return TransientNetworkError(text)
        return TransactionRejectedError(text)

    async def _latest_blockhash(self) -> Hash:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self.commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    def _build_message(self, transaction: ChainTransaction, blockhash: Hash) -> Message:
        instructions = [ix.to_solders() for ix in transaction.instructions]
        payer = Pubkey.from_string(transaction.fee_payer.pubkey)
        return Message.new_with_blockhash(instructions, payer, blockhash)

    async def submit_transaction(self, transaction: ChainTransaction) -> str:
        blockhash = await self._latest_blockhash()
        message = self._build_message(transaction, blockhash)
        keypairs = [key.signer() for key in transaction.signers()]
        signed = Transaction(keypairs, message, blockhash)

        encoded = base64.b64encode(bytes(signed)).decode("ascii")
        return await self._rpc("sendTransaction", [
            encoded,
            {"encoding": "base64", "preflightCommitment": self.commitment},
        ])

    async def wait_for_confirmation(self, signature: str) -> None:
        wanted = COMMITMENT_RANK.get(self.commitment, 1)

        while True:
            result = await self._rpc(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}]
            )
            status = (result.get("value") or [None])[0]

            if status is not None:
                if status.get("err"):
                    raise TransactionRejectedError(
                        f"Transaction {signature} failed: {status['err']}"
                    )
                reached = COMMITMENT_RANK.get(status.get("confirmationStatus") or "processed", 0)
                if reached >= wanted:
                    return

            await asyncio.sleep(self.poll_interval)

    async def read_account(self, address: str) -> Optional[AccountInfo]:
        result = await self._rpc("getAccountInfo", [
            address,
            {"encoding": "base64", "commitment": self.commitment},
        ])
        value = result.get("value") if result else None
        if value is None:
            return None

        data, _encoding = value["data"]
        return AccountInfo(
            address=address,
            lamports=int(value["lamports"]),
            owner=value["owner"],
            data=base64.b64decode(data),
            executable=bool(value.get("executable", False)),
        )

    async def estimate_rent(self, data_len: int) -> int:
        result = await self._rpc("getMinimumBalanceForRentExemption", [data_len])
        return int(result)

    async def estimate_fee(self, transaction: ChainTransaction) -> int:
        blockhash = await self._latest_blockhash()
        message = self._build_message(transaction, blockhash)
        encoded = base64.b64encode(bytes(message)).decode("ascii")

        result = await self._rpc("getFeeForMessage", [encoded, {"commitment": self.commitment}])
        value = result.get("value") if result else None
        if value is None:
            # Blockhash expired between the two calls
            return DEFAULT_SIGNATURE_FEE * len(transaction.signers())
        return int(value)
