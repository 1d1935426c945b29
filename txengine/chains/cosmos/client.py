"""
Cosmos-SDK backend over the REST (LCD) gateway.
"""

import base64
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ...core.errors import (
    NetworkError,
    NotFoundError,
    ParseError,
    SimulationError,
    TransactionError,
)
from ...core.execution.models import (
    AccountState,
    BroadcastAck,
    Coin,
    Event,
    Fee,
    SignedTransaction,
    SimulationResult,
    TransactionOutcome,
    UnsignedTransaction,
)
from ..client import ChainClient
from ..transport import HttpTransport
from . import proto


logger = logging.getLogger(__name__)

# ABCI codes from the SDK "sdk" codespace
CODE_OK = 0
CODE_NOT_FOUND = 5
CODE_TX_IN_MEMPOOL_CACHE = 19
CODE_WRONG_SEQUENCE = 32

_SEQUENCE_MISMATCH_RE = re.compile(r"account sequence mismatch", re.IGNORECASE)
_DEC_COIN_RE = re.compile(r"^(\d+(?:\.\d+)?)([a-zA-Z][a-zA-Z0-9/:._-]*)$")
_RFC3339_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$")


def parse_timestamp_nanos(value: str) -> int:
    """RFC 3339 timestamp (nanosecond precision) to Unix nanoseconds."""
    match = _RFC3339_RE.match(value or "")
    if not match:
        raise ParseError(f"Invalid block time {value!r}")
    seconds_part, fraction, offset = match.groups()
    if offset == "Z":
        offset = "+00:00"
    try:
        moment = datetime.fromisoformat(seconds_part + offset)
    except ValueError as e:
        raise ParseError(f"Invalid block time {value!r}") from e
    nanos = int((fraction or "0")[:9].ljust(9, "0"))
    return int(moment.timestamp()) * 1_000_000_000 + nanos


@dataclass(frozen=True)
class BlockHeader:
    chain_id: str
    height: int
    time: str

    @property
    def time_nanos(self) -> int:
        return parse_timestamp_nanos(self.time)

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.time_nanos / 1_000_000_000, tz=timezone.utc)


def _int_field(data: Dict[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    value = data.get(key)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid integer in field {key}: {value!r}") from e


def _contract_json(msg: Dict[str, Any]) -> bytes:
    """Compact JSON as CosmWasm contracts receive it."""
    return json.dumps(msg, separators=(",", ":")).encode("utf-8")


def _parse_events(raw_events: Any) -> tuple:
    events = []
    for raw in raw_events or []:
        attributes = tuple(
            (str(a.get("key", "")), str(a.get("value", "")))
            for a in raw.get("attributes") or []
        )
        events.append(Event(type=raw.get("type", ""), attributes=attributes))
    return tuple(events)


class CosmosRestBackend:
    """
    Implements the chain capabilities for one Cosmos-SDK network.

    Node errors are mapped onto the library taxonomy here so the submitter never
    sees gateway-specific shapes.
    """

    def __init__(self, name: str, endpoint_url: str, denom: str = "", transport: Optional[HttpTransport] = None):
        self.name = name
        self.denom = denom
        self._transport = transport or HttpTransport(endpoint_url, chain=name)

    def _error(self, body: Any, status: int) -> tuple:
        if isinstance(body, dict):
            return body.get("code"), str(body.get("message") or body.get("error") or body)
        return None, f"HTTP {status}"

    async def simulate(self, unsigned: UnsignedTransaction, account: AccountState) -> SimulationResult:
        body_bytes = unsigned.extras.get("body_bytes")
        if body_bytes is None:
            raise ParseError("Unsigned Cosmos transaction has no encoded body", chain=self.name)

        public_key = unsigned.extras.get("public_key") or account.public_key
        empty_fee = Fee(amount=Coin(denom=self.denom, amount=0), gas_limit=0)
        auth_info = proto.encode_auth_info(public_key, account.sequence, empty_fee)
        tx_bytes = proto.encode_tx_raw(body_bytes, auth_info, [b""])

        status, body = await self._transport.post(
            "/cosmos/tx/v1beta1/simulate",
            {"tx_bytes": base64.b64encode(tx_bytes).decode()},
        )
        if status != 200:
            code, message = self._error(body, status)
            raise SimulationError(
                f"Simulation failed on {self.name}: {message}",
                code=code,
                raw_log=message,
                sequence_mismatch=bool(_SEQUENCE_MISMATCH_RE.search(message)),
                chain=self.name,
            )

        gas_info = (body or {}).get("gas_info") or {}
        result = (body or {}).get("result") or {}
        return SimulationResult(
            gas_used=_int_field(gas_info, "gas_used"),
            gas_wanted=_int_field(gas_info, "gas_wanted"),
            payload_digest=unsigned.payload_digest,
            logs=(result["log"],) if result.get("log") else (),
        )

    async def broadcast(self, signed: SignedTransaction) -> BroadcastAck:
        status, body = await self._transport.post(
            "/cosmos/tx/v1beta1/txs",
            {"tx_bytes": base64.b64encode(signed.raw).decode(), "mode": "BROADCAST_MODE_SYNC"},
        )
        tx_response = (body or {}).get("tx_response") if isinstance(body, dict) else None
        if tx_response is None:
            code, message = self._error(body, status)
            raise TransactionError(
                f"Broadcast failed on {self.name}: {message}",
                code=code,
                raw_log=message,
                sequence_mismatch=bool(_SEQUENCE_MISMATCH_RE.search(message)),
                chain=self.name,
                tx_hash=signed.tx_hash,
            )

        code = _int_field(tx_response, "code", 0)
        raw_log = str(tx_response.get("raw_log") or "")
        tx_hash = tx_response.get("txhash") or signed.tx_hash

        if code == CODE_TX_IN_MEMPOOL_CACHE:
            logger.info(f"Transaction {tx_hash} already in mempool on {self.name}")
            return BroadcastAck(tx_hash=tx_hash, code=code, raw_log=raw_log, already_known=True)
        if code != CODE_OK:
            raise TransactionError(
                f"Transaction rejected by {self.name} (code {code}): {raw_log}",
                code=code,
                codespace=tx_response.get("codespace"),
                raw_log=raw_log,
                sequence_mismatch=code == CODE_WRONG_SEQUENCE,
                chain=self.name,
                tx_hash=tx_hash,
            )
        return BroadcastAck(tx_hash=tx_hash, code=code, raw_log=raw_log)

    async def lookup_by_hash(self, tx_hash: str) -> Optional[TransactionOutcome]:
        status, body = await self._transport.get(f"/cosmos/tx/v1beta1/txs/{tx_hash}")
        if status == 404:
            return None
        if status != 200:
            code, message = self._error(body, status)
            if code == CODE_NOT_FOUND or "not found" in message.lower():
                return None
            raise NetworkError(f"Lookup of {tx_hash} failed on {self.name}: {message}", chain=self.name)

        tx_response = (body or {}).get("tx_response")
        if not isinstance(tx_response, dict):
            raise ParseError(f"Lookup of {tx_hash} returned no tx_response", chain=self.name)

        code = _int_field(tx_response, "code", 0)
        return TransactionOutcome(
            tx_hash=tx_response.get("txhash") or tx_hash,
            height=_int_field(tx_response, "height", 0),
            success=code == CODE_OK,
            code=code,
            gas_used=_int_field(tx_response, "gas_used"),
            gas_wanted=_int_field(tx_response, "gas_wanted"),
            raw_log=str(tx_response.get("raw_log") or ""),
            events=_parse_events(tx_response.get("events")),
            timestamp=tx_response.get("timestamp"),
            data=tx_response.get("data"),
        )

    async def query_balance(self, address: str, denom: str) -> int:
        status, body = await self._transport.get(
            f"/cosmos/bank/v1beta1/balances/{address}/by_denom",
            params={"denom": denom},
        )
        if status != 200:
            _, message = self._error(body, status)
            raise NetworkError(f"Balance query for {address} failed on {self.name}: {message}", chain=self.name)
        balance = (body or {}).get("balance") or {}
        return _int_field(balance, "amount", 0)

    async def query_contract_state(self, contract: str, query: bytes) -> Any:
        """Smart query against a CosmWasm contract; returns the decoded JSON answer."""
        encoded = base64.urlsafe_b64encode(query).decode()
        status, body = await self._transport.get(f"/cosmwasm/wasm/v1/contract/{contract}/smart/{encoded}")
        if status == 404:
            raise NotFoundError(f"Contract {contract} not found on {self.name}", chain=self.name)
        if status != 200:
            _, message = self._error(body, status)
            raise NetworkError(f"Query of contract {contract} failed on {self.name}: {message}", chain=self.name)
        if not isinstance(body, dict) or "data" not in body:
            raise ParseError(f"Query of contract {contract} returned no data", chain=self.name)
        return body["data"]

    async def fetch_account(self, address: str) -> AccountState:
        status, body = await self._transport.get(f"/cosmos/auth/v1beta1/accounts/{address}")
        if status == 404:
            raise NotFoundError(f"Account {address} not found on {self.name}", chain=self.name)
        if status != 200:
            _, message = self._error(body, status)
            raise NetworkError(f"Account query for {address} failed on {self.name}: {message}", chain=self.name)

        account = (body or {}).get("account")
        if not isinstance(account, dict):
            raise ParseError(f"Account query for {address} returned no account", chain=self.name)

        # Vesting and module accounts wrap the base account
        if "base_vesting_account" in account:
            account = account["base_vesting_account"].get("base_account") or {}
        elif "base_account" in account:
            account = account["base_account"] or {}

        public_key = None
        pub_key = account.get("pub_key")
        if isinstance(pub_key, dict) and pub_key.get("key"):
            public_key = base64.b64decode(pub_key["key"])

        return AccountState(
            address=account.get("address") or address,
            account_number=_int_field(account, "account_number", 0),
            sequence=_int_field(account, "sequence", 0),
            public_key=public_key,
        )

    async def suggest_gas_price(self) -> float:
        """The node's own minimum gas price for this backend's denom."""
        status, body = await self._transport.get("/cosmos/base/node/v1beta1/config")
        if status != 200:
            _, message = self._error(body, status)
            raise NetworkError(f"Node config query failed on {self.name}: {message}", chain=self.name)

        raw = str((body or {}).get("minimum_gas_price") or "")
        for entry in raw.split(","):
            match = _DEC_COIN_RE.match(entry.strip())
            if match and match.group(2) == self.denom:
                return float(match.group(1))
        raise ParseError(f"Node on {self.name} advertises no minimum gas price for {self.denom}", chain=self.name)

    async def latest_block_header(self) -> BlockHeader:
        status, body = await self._transport.get("/cosmos/base/tendermint/v1beta1/blocks/latest")
        if status != 200:
            _, message = self._error(body, status)
            raise NetworkError(f"Latest block query failed on {self.name}: {message}", chain=self.name)

        block = (body or {}).get("sdk_block") or (body or {}).get("block") or {}
        header = block.get("header")
        if not isinstance(header, dict):
            raise ParseError(f"Latest block on {self.name} has no header", chain=self.name)
        return BlockHeader(
            chain_id=header.get("chain_id", ""),
            height=_int_field(header, "height", 0),
            time=header.get("time", ""),
        )

    async def close(self) -> None:
        await self._transport.close()


class CosmosChainClient(ChainClient):
    """Chain client with the Cosmos-native operations."""

    backend: CosmosRestBackend

    async def transfer(
        self,
        to_address: str,
        amount: int,
        denom: Optional[str] = None,
        memo: str = "",
    ) -> TransactionOutcome:
        """Bank send from the configured signer."""
        coin = Coin(denom=denom or self.config.denom, amount=amount)
        message = proto.msg_send(self.address, to_address, [coin])
        return await self.execute([message], memo)

    async def ibc_transfer(
        self,
        to_address: str,
        denom: str,
        amount: int,
        channel_id: str,
        timeout_seconds: int,
        memo: str = "",
    ) -> TransactionOutcome:
        """
        ICS-20 transfer over ``channel_id``.

        The timeout is measured from the latest block time rather than the local
        clock so a skewed host cannot produce an already-expired packet.
        """
        header = await self.backend.latest_block_header()
        timeout_timestamp = header.time_nanos + timeout_seconds * 1_000_000_000

        message = proto.MsgTransfer(
            source_channel=channel_id,
            token=Coin(denom=denom, amount=amount),
            sender=self.address,
            receiver=to_address,
            timeout_timestamp=timeout_timestamp,
            memo=memo,
        ).to_any()
        return await self.execute([message])

    async def execute_wasm(
        self,
        contract: str,
        msg: Dict[str, Any],
        funds: Optional[List[Coin]] = None,
        memo: str = "",
        fee: Optional[Fee] = None,
    ) -> TransactionOutcome:
        """Execute ``msg`` on a CosmWasm contract, optionally attaching ``funds``."""
        message = proto.msg_execute_contract(self.address, contract, _contract_json(msg), funds or [])
        return await self.execute([message], memo, fee)

    async def instantiate(
        self,
        code_id: int,
        label: str,
        msg: Dict[str, Any],
        admin: Optional[str] = None,
        funds: Optional[List[Coin]] = None,
    ) -> str:
        """
        Instantiate stored code and return the new contract's address.

        Raises:
            ParseError: empty label, or the included transaction carries no
                contract address
        """
        if not label:
            raise ParseError("Contract label cannot be empty", chain=self.name)
        message = proto.msg_instantiate_contract(
            self.address, code_id, label, _contract_json(msg), admin or "", funds or []
        )
        outcome = await self.execute([message])

        for event_type in ("instantiate", "instantiate_contract"):
            for event in outcome.find_events(event_type):
                address = event.get("_contract_address") or event.get("contract_address")
                if address:
                    return address
        raise ParseError(
            f"No contract address in {outcome.tx_hash} on {self.name}",
            chain=self.name,
            tx_hash=outcome.tx_hash,
        )

    async def query_contract_state(self, contract: str, query: Dict[str, Any]) -> Any:
        return await self.backend.query_contract_state(contract, _contract_json(query))

    async def latest_block_header(self) -> BlockHeader:
        return await self.backend.latest_block_header()
