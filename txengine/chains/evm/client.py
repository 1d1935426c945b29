"""
EVM backend over JSON-RPC.
"""

import logging
from typing import Any, Callable, Dict, Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, is_address

from ...config import settings
from ...core.errors import NetworkError, ParseError, SimulationError, TransactionError
from ...core.execution.models import (
    AccountState,
    BroadcastAck,
    Event,
    PollOutcome,
    SignedTransaction,
    SimulationResult,
    TransactionOutcome,
    UnsignedTransaction,
)
from ..client import ChainClient
from ..transport import HttpTransport, JsonRpcError
from .signer import EvmCall


logger = logging.getLogger(__name__)

BALANCE_OF_SELECTOR = function_signature_to_4byte_selector("balanceOf(address)")

_NONCE_TOO_LOW = ("nonce too low", "nonce is too low", "invalid nonce")
_ALREADY_KNOWN = ("already known", "known transaction", "already imported")


def hex_to_int(value: Any, label: str = "quantity") -> int:
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise ParseError(f"Invalid hex {label}: {value!r}")
    try:
        return int(value, 16)
    except ValueError as e:
        raise ParseError(f"Invalid hex {label}: {value!r}") from e


def hex_to_bytes(value: Optional[str]) -> bytes:
    if not value:
        return b""
    try:
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    except ValueError as e:
        raise ParseError(f"Invalid hex data: {value[:20]}...") from e


def _log_to_event(log: Dict[str, Any]) -> Event:
    topics = log.get("topics") or []
    return Event(
        type=(topics[0].lower() if topics else ""),
        attributes=(
            ("address", str(log.get("address", "")).lower()),
            ("data", str(log.get("data", "0x"))),
            ("topics", ",".join(topics)),
        ),
    )


class EvmRpcBackend:
    """Implements the chain capabilities for one EVM network."""

    def __init__(self, name: str, endpoint_url: str, transport: Optional[HttpTransport] = None):
        self.name = name
        self._transport = transport or HttpTransport(endpoint_url, chain=name)

    async def _rpc(self, method: str, *params: Any) -> Any:
        try:
            return await self._transport.rpc_call(method, list(params))
        except JsonRpcError as e:
            raise NetworkError(f"{method} failed on {self.name}: {e.message}", chain=self.name) from e

    async def simulate(self, unsigned: UnsignedTransaction, account: AccountState) -> SimulationResult:
        call: EvmCall = unsigned.messages[0]
        try:
            result = await self._transport.rpc_call(
                "eth_estimateGas",
                [call.to_rpc(sender=unsigned.signer_address)],
            )
        except JsonRpcError as e:
            raise SimulationError(
                f"Gas estimation failed on {self.name}: {e.message}",
                code=e.code,
                raw_log=e.message,
                chain=self.name,
            ) from e
        return SimulationResult(
            gas_used=hex_to_int(result, "gas estimate") if result is not None else None,
            payload_digest=unsigned.payload_digest,
        )

    async def broadcast(self, signed: SignedTransaction) -> BroadcastAck:
        try:
            tx_hash = await self._transport.rpc_call("eth_sendRawTransaction", ["0x" + signed.raw.hex()])
        except JsonRpcError as e:
            message = e.message.lower()
            if any(marker in message for marker in _ALREADY_KNOWN):
                logger.info(f"Transaction {signed.tx_hash} already known to {self.name}")
                return BroadcastAck(tx_hash=signed.tx_hash, raw_log=e.message, already_known=True)
            raise TransactionError(
                f"Transaction rejected by {self.name}: {e.message}",
                code=e.code,
                raw_log=e.message,
                sequence_mismatch=any(marker in message for marker in _NONCE_TOO_LOW),
                chain=self.name,
                tx_hash=signed.tx_hash,
            ) from e
        return BroadcastAck(tx_hash=tx_hash or signed.tx_hash)

    async def lookup_by_hash(self, tx_hash: str) -> Optional[TransactionOutcome]:
        receipt = await self._rpc("eth_getTransactionReceipt", tx_hash)
        if receipt is None:
            return None
        if not isinstance(receipt, dict):
            raise ParseError(f"Malformed receipt for {tx_hash}", chain=self.name)

        status = hex_to_int(receipt.get("status", "0x1"), "status")
        return TransactionOutcome(
            tx_hash=receipt.get("transactionHash") or tx_hash,
            height=hex_to_int(receipt.get("blockNumber") or "0x0", "block number"),
            success=status == 1,
            code=0 if status == 1 else 1,
            gas_used=hex_to_int(receipt["gasUsed"], "gas used") if receipt.get("gasUsed") else None,
            raw_log="" if status == 1 else "execution reverted",
            events=tuple(_log_to_event(log) for log in receipt.get("logs") or []),
            data=receipt,
        )

    async def query_balance(self, address: str, denom: str) -> int:
        """Native balance, or ERC-20 balance when ``denom`` is a token contract address."""
        if is_address(denom):
            data = BALANCE_OF_SELECTOR + encode(["address"], [address])
            result = await self.call(EvmCall(to=denom, data=data))
            try:
                return decode(["uint256"], result)[0]
            except DecodingError as e:
                raise ParseError(f"Undecodable balanceOf result from {denom}", chain=self.name) from e
        return hex_to_int(await self._rpc("eth_getBalance", address, "latest"), "balance")

    async def fetch_account(self, address: str) -> AccountState:
        nonce = await self._rpc("eth_getTransactionCount", address, "pending")
        return AccountState(address=address, sequence=hex_to_int(nonce, "nonce"))

    async def suggest_gas_price(self) -> float:
        return float(hex_to_int(await self._rpc("eth_gasPrice"), "gas price"))

    async def call(self, call: EvmCall, block: str = "latest") -> bytes:
        return hex_to_bytes(await self._rpc("eth_call", call.to_rpc(), block))

    async def latest_block_number(self) -> int:
        return hex_to_int(await self._rpc("eth_blockNumber"), "block number")

    async def close(self) -> None:
        await self._transport.close()


class EvmChainClient(ChainClient):
    """Chain client with EVM conveniences."""

    backend: EvmRpcBackend

    async def send(self, to: str, data: bytes = b"", value: int = 0) -> TransactionOutcome:
        return await self.execute([EvmCall(to=to, data=data, value=value)])

    async def transfer(self, to_address: str, amount: int) -> TransactionOutcome:
        """Native value transfer in wei."""
        return await self.send(to_address, value=amount)

    async def call(self, to: str, data: bytes) -> bytes:
        return await self.backend.call(EvmCall(to=to, data=data))

    async def latest_block_number(self) -> int:
        return await self.backend.latest_block_number()

    async def poll_for_condition(
        self,
        to: str,
        data: bytes,
        predicate: Callable[[bytes], bool],
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> PollOutcome[Any]:
        """Poll a read-only contract call until ``predicate`` holds for its result."""
        return await self.poller.wait_for_condition(
            lambda: self.call(to, data),
            predicate,
            interval=interval or self.config.poll_interval_seconds or settings.tx_poll_interval_seconds,
            timeout=timeout or self.config.poll_timeout_seconds or settings.tx_poll_timeout_seconds,
            label=f"eth_call {to}",
        )
