"""
EVM transaction signing with ``eth_account``.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_account import Account
from eth_utils import is_address, keccak, to_checksum_address

from ...config import ChainConfig
from ...core.errors import ParseError, SigningError
from ...core.execution.models import (
    AccountState,
    Fee,
    SignedTransaction,
    UnsignedTransaction,
    payload_digest,
)


@dataclass(frozen=True)
class EvmCall:
    """One contract call or value transfer."""
    to: str
    data: bytes = b""
    value: int = 0

    def to_rpc(self, sender: Optional[str] = None) -> Dict[str, Any]:
        """Call object for ``eth_call`` / ``eth_estimateGas``."""
        payload: Dict[str, Any] = {"to": self.to, "data": "0x" + self.data.hex()}
        if self.value:
            payload["value"] = hex(self.value)
        if sender:
            payload["from"] = sender
        return payload


class EvmSigner:
    """
    Signs legacy (``gasPrice``) transactions.

    The fee's ``gas_limit`` and ``gas_price`` (wei per gas) map directly onto
    the transaction fields.
    """

    def __init__(self, config: ChainConfig, private_key_hex: Optional[str] = None):
        self._config = config
        try:
            self._account = Account.from_key(private_key_hex or config.private_key.get_secret_value())
        except (ValueError, TypeError) as e:
            raise SigningError(f"Invalid EVM private key for {config.name}", chain=config.name) from e

        if config.signer_address and config.signer_address.lower() != self._account.address.lower():
            raise SigningError(
                f"Configured signer address {config.signer_address} does not match the private key",
                chain=config.name,
            )

    @property
    def address(self) -> str:
        return self._account.address

    def build(self, messages: List[Any], memo: str = "") -> UnsignedTransaction:
        if len(messages) != 1 or not isinstance(messages[0], EvmCall):
            raise ParseError("EVM transactions carry exactly one EvmCall")
        call = messages[0]
        if not is_address(call.to):
            raise ParseError(f"Invalid EVM address {call.to!r}")
        call = EvmCall(to=to_checksum_address(call.to), data=call.data, value=call.value)

        return UnsignedTransaction(
            chain=self._config.name,
            signer_address=self.address,
            messages=[call],
            payload_digest=payload_digest(
                bytes.fromhex(call.to[2:]),
                call.data,
                call.value.to_bytes(32, "big"),
            ),
        )

    async def sign(
        self,
        unsigned: UnsignedTransaction,
        fee: Fee,
        account: AccountState,
        sequence: Optional[int],
    ) -> SignedTransaction:
        if sequence is None:
            raise SigningError("EVM transactions require a nonce", chain=self._config.name)
        try:
            chain_id = int(self._config.chain_id)
        except ValueError as e:
            raise ParseError(f"Invalid EVM chain id {self._config.chain_id!r}", chain=self._config.name) from e

        call: EvmCall = unsigned.messages[0]
        tx = {
            "to": call.to,
            "value": call.value,
            "data": call.data,
            "gas": fee.gas_limit,
            "gasPrice": int(fee.gas_price),
            "nonce": sequence,
            "chainId": chain_id,
        }
        signed = self._account.sign_transaction(tx)
        raw = bytes(signed.raw_transaction)

        return SignedTransaction(
            raw=raw,
            tx_hash="0x" + keccak(raw).hex(),
            fee=fee,
            sequence=sequence,
            payload_digest=unsigned.payload_digest,
        )
