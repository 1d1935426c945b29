"""
Solana backend over JSON-RPC.
"""

import base64
import logging
import statistics
from typing import Any, Dict, Optional

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from ...core.errors import NetworkError, ParseError, SimulationError, TransactionError
from ...core.execution.models import (
    AccountState,
    BroadcastAck,
    SignedTransaction,
    SimulationResult,
    TransactionOutcome,
    UnsignedTransaction,
)
from ..client import ChainClient
from ..transport import HttpTransport, JsonRpcError


logger = logging.getLogger(__name__)

NATIVE_DENOM = "lamports"

_ALREADY_PROCESSED = "already been processed"


class SolanaRpcBackend:
    """
    Implements the chain capabilities for one Solana cluster.

    ``fetch_account`` only checks that the fee payer exists; there is no
    sequence to track.
    """

    def __init__(self, name: str, endpoint_url: str, commitment: str = "confirmed", transport: Optional[HttpTransport] = None):
        self.name = name
        self.commitment = commitment
        self._transport = transport or HttpTransport(endpoint_url, chain=name)

    async def _rpc(self, method: str, *params: Any) -> Any:
        try:
            return await self._transport.rpc_call(method, list(params))
        except JsonRpcError as e:
            raise NetworkError(f"{method} failed on {self.name}: {e.message}", chain=self.name) from e

    async def simulate(self, unsigned: UnsignedTransaction, account: AccountState) -> SimulationResult:
        payer = Pubkey.from_string(unsigned.signer_address)
        # The node swaps in a recent blockhash and skips signature checks
        message = Message.new_with_blockhash(unsigned.messages, payer, Hash.default())
        tx = Transaction.new_unsigned(message)

        result = await self._rpc(
            "simulateTransaction",
            base64.b64encode(bytes(tx)).decode(),
            {
                "encoding": "base64",
                "sigVerify": False,
                "replaceRecentBlockhash": True,
                "commitment": self.commitment,
            },
        )
        value = (result or {}).get("value")
        if not isinstance(value, dict):
            raise ParseError(f"Malformed simulateTransaction response from {self.name}", chain=self.name)

        logs = tuple(value.get("logs") or ())
        if value.get("err") is not None:
            raise SimulationError(
                f"Simulation failed on {self.name}: {value['err']}",
                raw_log="\n".join(logs) or str(value["err"]),
                chain=self.name,
            )
        return SimulationResult(
            gas_used=value.get("unitsConsumed"),
            payload_digest=unsigned.payload_digest,
            logs=logs,
        )

    async def broadcast(self, signed: SignedTransaction) -> BroadcastAck:
        try:
            signature = await self._transport.rpc_call(
                "sendTransaction",
                [
                    base64.b64encode(signed.raw).decode(),
                    {"encoding": "base64", "preflightCommitment": self.commitment},
                ],
            )
        except JsonRpcError as e:
            if _ALREADY_PROCESSED in e.message.lower():
                return BroadcastAck(tx_hash=signed.tx_hash, raw_log=e.message, already_known=True)
            raise TransactionError(
                f"Transaction rejected by {self.name}: {e.message}",
                code=e.code,
                raw_log=e.message,
                chain=self.name,
                tx_hash=signed.tx_hash,
            ) from e
        return BroadcastAck(tx_hash=signature or signed.tx_hash)

    async def lookup_by_hash(self, tx_hash: str) -> Optional[TransactionOutcome]:
        result = await self._rpc(
            "getTransaction",
            tx_hash,
            {"encoding": "json", "commitment": self.commitment, "maxSupportedTransactionVersion": 0},
        )
        if result is None:
            return None

        meta: Dict[str, Any] = result.get("meta") or {}
        err = meta.get("err")
        logs = meta.get("logMessages") or []
        return TransactionOutcome(
            tx_hash=tx_hash,
            height=int(result.get("slot") or 0),
            success=err is None,
            code=0 if err is None else 1,
            gas_used=meta.get("computeUnitsConsumed"),
            raw_log="" if err is None else f"{err}",
            timestamp=str(result["blockTime"]) if result.get("blockTime") is not None else None,
            data={"fee": meta.get("fee"), "logs": logs},
        )

    async def query_balance(self, address: str, denom: str) -> int:
        """Lamports, or the owner's total balance of an SPL mint when ``denom`` is a mint address."""
        if denom == NATIVE_DENOM:
            result = await self._rpc("getBalance", address, {"commitment": self.commitment})
            return int((result or {}).get("value") or 0)

        result = await self._rpc(
            "getTokenAccountsByOwner",
            address,
            {"mint": denom},
            {"encoding": "jsonParsed", "commitment": self.commitment},
        )
        total = 0
        for entry in (result or {}).get("value") or []:
            try:
                total += int(entry["account"]["data"]["parsed"]["info"]["tokenAmount"]["amount"])
            except (KeyError, TypeError, ValueError) as e:
                raise ParseError(f"Malformed token account for {address}", chain=self.name) from e
        return total

    async def fetch_account(self, address: str) -> AccountState:
        result = await self._rpc("getAccountInfo", address, {"encoding": "base64", "commitment": self.commitment})
        if (result or {}).get("value") is None:
            raise NetworkError(f"Account {address} does not exist on {self.name}", chain=self.name)
        return AccountState(address=address)

    async def latest_blockhash(self) -> str:
        result = await self._rpc("getLatestBlockhash", {"commitment": self.commitment})
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError) as e:
            raise ParseError(f"Malformed getLatestBlockhash response from {self.name}", chain=self.name) from e

    async def suggest_gas_price(self) -> float:
        """Median recent prioritization fee, in lamports per compute unit."""
        fees = await self._rpc("getRecentPrioritizationFees", [])
        values = [int(f.get("prioritizationFee", 0)) for f in fees or []]
        if not values:
            return 0.0
        return statistics.median(values) / 1_000_000

    async def request_airdrop(self, address: str, lamports: int) -> str:
        return await self._rpc("requestAirdrop", address, lamports, {"commitment": self.commitment})

    async def close(self) -> None:
        await self._transport.close()


class SolanaChainClient(ChainClient):
    """Chain client with SOL transfers and faucet airdrops."""

    backend: SolanaRpcBackend

    async def transfer_sol(self, to_address: str, lamports: int, memo: str = "") -> TransactionOutcome:
        instruction = transfer(
            TransferParams(
                from_pubkey=Pubkey.from_string(self.address),
                to_pubkey=Pubkey.from_string(to_address),
                lamports=lamports,
            )
        )
        return await self.execute([instruction], memo)

    async def airdrop(self, lamports: int, address: Optional[str] = None) -> TransactionOutcome:
        """Request devnet/testnet lamports and wait for the airdrop to land."""
        signature = await self.backend.request_airdrop(address or self.address, lamports)
        logger.info(f"Requested airdrop of {lamports} lamports on {self.name}: {signature}")
        return await self.wait_for_success(signature)
