"""
Protobuf wire encoding for the Cosmos SDK transaction envelope.

Only the envelope needed to sign and broadcast is encoded here (``TxBody``,
``AuthInfo``, ``SignDoc``, ``TxRaw`` and friends) plus the few messages the
clients build themselves. Any other message is passed in already encoded as a
``ProtoAny``. Field numbers follow the ``cosmos.tx.v1beta1`` definitions.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ...core.execution.models import Coin, Fee

SIGN_MODE_DIRECT = 1

SECP256K1_PUBKEY_TYPE_URL = "/cosmos.crypto.secp256k1.PubKey"
MSG_SEND_TYPE_URL = "/cosmos.bank.v1beta1.MsgSend"
MSG_TRANSFER_TYPE_URL = "/ibc.applications.transfer.v1.MsgTransfer"
MSG_EXECUTE_CONTRACT_TYPE_URL = "/cosmwasm.wasm.v1.MsgExecuteContract"
MSG_INSTANTIATE_CONTRACT_TYPE_URL = "/cosmwasm.wasm.v1.MsgInstantiateContract"

_VARINT = 0
_LENGTH_DELIMITED = 2


def encode_varint(value: int) -> bytes:
    if value < 0:
        # int64 negatives are encoded as 10-byte two's complement
        value += 1 << 64
    out = bytearray()
    while True:
        bits = value & 0x7F
        value >>= 7
        if value:
            out.append(bits | 0x80)
        else:
            out.append(bits)
            return bytes(out)


def _key(field_number: int, wire_type: int) -> bytes:
    return encode_varint((field_number << 3) | wire_type)


def uint_field(field_number: int, value: int) -> bytes:
    """Varint field; proto3 omits zero values."""
    if not value:
        return b""
    return _key(field_number, _VARINT) + encode_varint(value)


def bytes_field(field_number: int, value: bytes) -> bytes:
    if not value:
        return b""
    return _key(field_number, _LENGTH_DELIMITED) + encode_varint(len(value)) + value


def string_field(field_number: int, value: Optional[str]) -> bytes:
    return bytes_field(field_number, (value or "").encode("utf-8"))


def message_field(field_number: int, encoded: bytes, always: bool = False) -> bytes:
    """Embedded message; empty messages are kept when ``always`` is set."""
    if not encoded and not always:
        return b""
    return _key(field_number, _LENGTH_DELIMITED) + encode_varint(len(encoded)) + encoded


@dataclass(frozen=True)
class ProtoAny:
    """``google.protobuf.Any``: a type URL plus the encoded message."""
    type_url: str
    value: bytes

    def encode(self) -> bytes:
        return string_field(1, self.type_url) + bytes_field(2, self.value)


def encode_coin(coin: Coin) -> bytes:
    return string_field(1, coin.denom) + string_field(2, str(coin.amount))


def _encode_funds(field_number: int, funds: Sequence[Coin]) -> bytes:
    return b"".join(message_field(field_number, encode_coin(c), always=True) for c in funds)


def encode_tx_body(messages: Sequence[ProtoAny], memo: str = "", timeout_height: int = 0) -> bytes:
    out = b"".join(message_field(1, m.encode(), always=True) for m in messages)
    return out + string_field(2, memo) + uint_field(3, timeout_height)


def encode_secp256k1_pubkey(public_key: bytes) -> ProtoAny:
    return ProtoAny(SECP256K1_PUBKEY_TYPE_URL, bytes_field(1, public_key))


def encode_signer_info(public_key: Optional[bytes], sequence: int) -> bytes:
    mode_info = message_field(1, uint_field(1, SIGN_MODE_DIRECT), always=True)  # ModeInfo.single
    out = b""
    if public_key:
        out += message_field(1, encode_secp256k1_pubkey(public_key).encode())
    return out + message_field(2, mode_info, always=True) + uint_field(3, sequence)


def encode_fee(fee: Fee) -> bytes:
    out = b""
    if fee.amount.amount or fee.amount.denom:
        out += message_field(1, encode_coin(fee.amount), always=True)
    return (
        out
        + uint_field(2, fee.gas_limit)
        + string_field(3, fee.payer)
        + string_field(4, fee.granter)
    )


def encode_auth_info(public_key: Optional[bytes], sequence: int, fee: Fee) -> bytes:
    signer = message_field(1, encode_signer_info(public_key, sequence), always=True)
    return signer + message_field(2, encode_fee(fee), always=True)


def encode_sign_doc(body_bytes: bytes, auth_info_bytes: bytes, chain_id: str, account_number: int) -> bytes:
    return (
        bytes_field(1, body_bytes)
        + bytes_field(2, auth_info_bytes)
        + string_field(3, chain_id)
        + uint_field(4, account_number)
    )


def encode_tx_raw(body_bytes: bytes, auth_info_bytes: bytes, signatures: List[bytes]) -> bytes:
    out = bytes_field(1, body_bytes) + bytes_field(2, auth_info_bytes)
    for signature in signatures:
        # repeated bytes keep empty entries (simulation uses an empty signature)
        out += _key(3, _LENGTH_DELIMITED) + encode_varint(len(signature)) + signature
    return out


def msg_send(from_address: str, to_address: str, amounts: Sequence[Coin]) -> ProtoAny:
    value = string_field(1, from_address) + string_field(2, to_address)
    value += _encode_funds(3, amounts)
    return ProtoAny(MSG_SEND_TYPE_URL, value)


@dataclass(frozen=True)
class IbcHeight:
    revision_number: int = 0
    revision_height: int = 0

    def encode(self) -> bytes:
        return uint_field(1, self.revision_number) + uint_field(2, self.revision_height)


@dataclass(frozen=True)
class MsgTransfer:
    """``ibc.applications.transfer.v1.MsgTransfer``."""
    source_channel: str
    token: Coin
    sender: str
    receiver: str
    timeout_timestamp: int = 0
    timeout_height: IbcHeight = field(default_factory=IbcHeight)
    memo: str = ""
    source_port: str = "transfer"

    def to_any(self) -> ProtoAny:
        value = (
            string_field(1, self.source_port)
            + string_field(2, self.source_channel)
            + message_field(3, encode_coin(self.token), always=True)
            + string_field(4, self.sender)
            + string_field(5, self.receiver)
            + message_field(6, self.timeout_height.encode(), always=True)
            + uint_field(7, self.timeout_timestamp)
            + string_field(8, self.memo)
        )
        return ProtoAny(MSG_TRANSFER_TYPE_URL, value)


def msg_execute_contract(sender: str, contract: str, msg: bytes, funds: Sequence[Coin] = ()) -> ProtoAny:
    """``cosmwasm.wasm.v1.MsgExecuteContract``; ``msg`` is the contract's JSON message."""
    value = string_field(1, sender) + string_field(2, contract) + bytes_field(3, msg)
    value += _encode_funds(5, funds)
    return ProtoAny(MSG_EXECUTE_CONTRACT_TYPE_URL, value)


def msg_instantiate_contract(
    sender: str,
    code_id: int,
    label: str,
    msg: bytes,
    admin: str = "",
    funds: Sequence[Coin] = (),
) -> ProtoAny:
    value = (
        string_field(1, sender)
        + string_field(2, admin)
        + uint_field(3, code_id)
        + string_field(4, label)
        + bytes_field(5, msg)
        + _encode_funds(6, funds)
    )
    return ProtoAny(MSG_INSTANTIATE_CONTRACT_TYPE_URL, value)
