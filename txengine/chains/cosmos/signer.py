"""
secp256k1 signing for Cosmos SDK transactions (``SIGN_MODE_DIRECT``).
"""

import hashlib
from typing import Any, List, Optional

import ecdsa
from bech32 import bech32_decode, bech32_encode, convertbits
from Crypto.Hash import RIPEMD160
from ecdsa.util import sigencode_string_canonize

from ...config import ChainConfig
from ...core.errors import ParseError, SigningError
from ...core.execution.models import (
    AccountState,
    Fee,
    SignedTransaction,
    UnsignedTransaction,
    payload_digest,
)
from . import proto


def cosmos_tx_hash(tx_raw: bytes) -> str:
    return hashlib.sha256(tx_raw).hexdigest().upper()


def cosmos_address(public_key: bytes, prefix: str) -> str:
    """bech32(prefix, ripemd160(sha256(compressed_public_key)))"""
    account_id = RIPEMD160.new(hashlib.sha256(public_key).digest()).digest()
    return bech32_encode(prefix, convertbits(account_id, 8, 5))


def address_prefix(address: str) -> Optional[str]:
    """Human-readable part of a bech32 address, or None if it is not valid bech32."""
    hrp, _ = bech32_decode(address)
    return hrp


class CosmosSigner:
    """
    Signs with a raw secp256k1 key.

    The address is derived from the key with the chain's bech32 prefix. A
    configured address is only a cross-check: it must match the key, and its
    prefix is used when the chain config has none. Mnemonic derivation is a
    wallet concern; the key comes from configuration.
    """

    def __init__(self, config: ChainConfig, private_key_hex: Optional[str] = None, address: Optional[str] = None):
        self._config = config
        key_hex = (private_key_hex or config.private_key.get_secret_value()).removeprefix("0x")
        try:
            self._signing_key = ecdsa.SigningKey.from_string(bytes.fromhex(key_hex), curve=ecdsa.SECP256k1)
        except (ValueError, ecdsa.MalformedPointError) as e:
            raise SigningError(f"Invalid secp256k1 private key for {config.name}", chain=config.name) from e

        expected = address or config.signer_address
        prefix = config.bech32_prefix or (address_prefix(expected) if expected else None)
        if not prefix:
            raise ParseError(f"No bech32 prefix configured for {config.name}", chain=config.name)

        self._address = cosmos_address(self.public_key, prefix)
        if expected and expected != self._address:
            raise SigningError(
                f"Configured signer {expected} does not match key address {self._address} on {config.name}",
                chain=config.name,
            )

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        """33-byte compressed public key."""
        return self._signing_key.get_verifying_key().to_string("compressed")

    def build(self, messages: List[Any], memo: str = "") -> UnsignedTransaction:
        for msg in messages:
            if not isinstance(msg, proto.ProtoAny):
                raise ParseError(f"Cosmos messages must be ProtoAny, got {type(msg).__name__}")
        body_bytes = proto.encode_tx_body(messages, memo)
        return UnsignedTransaction(
            chain=self._config.name,
            signer_address=self._address,
            messages=list(messages),
            memo=memo,
            payload_digest=payload_digest(body_bytes),
            extras={"body_bytes": body_bytes, "public_key": self.public_key},
        )

    def sign_bytes(self, sign_doc: bytes) -> bytes:
        """64-byte ``r || s`` signature over SHA-256 of the sign doc, low-S normalized."""
        return self._signing_key.sign_deterministic(
            sign_doc,
            hashfunc=hashlib.sha256,
            sigencode=sigencode_string_canonize,
        )

    async def sign(
        self,
        unsigned: UnsignedTransaction,
        fee: Fee,
        account: AccountState,
        sequence: Optional[int],
    ) -> SignedTransaction:
        if sequence is None:
            raise SigningError("Cosmos transactions require a sequence", chain=self._config.name)
        if not self._config.chain_id:
            raise ParseError(f"No chain id configured for {self._config.name}", chain=self._config.name)

        body_bytes = unsigned.extras["body_bytes"]
        auth_info_bytes = proto.encode_auth_info(self.public_key, sequence, fee)
        sign_doc = proto.encode_sign_doc(body_bytes, auth_info_bytes, self._config.chain_id, account.account_number)

        signature = self.sign_bytes(sign_doc)
        tx_raw = proto.encode_tx_raw(body_bytes, auth_info_bytes, [signature])

        return SignedTransaction(
            raw=tx_raw,
            tx_hash=cosmos_tx_hash(tx_raw),
            fee=fee,
            sequence=sequence,
            payload_digest=unsigned.payload_digest,
        )
