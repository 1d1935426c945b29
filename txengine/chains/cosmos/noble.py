"""
Noble: Circle's CCTP module on a Cosmos-SDK chain.

Builds ``MsgDepositForBurn`` / ``MsgReceiveMessage`` and reads the burn
message back out of the ``MessageSent`` event.
"""

import base64
import binascii
import json
from typing import Any

from ...config import ChainConfig, ChainFamily, ReplayPolicy
from ...core.bridge.models import left_pad_32
from ...core.errors import ParseError
from ...core.execution.models import PendingTransaction, PollOutcome, TransactionOutcome
from ..client import ChainClient
from .proto import ProtoAny, bytes_field, string_field, uint_field

NOBLE_DENOM = "uusdc"
NOBLE_BECH32_PREFIX = "noble"
NOBLE_GAS_PRICE = 0.1
NOBLE_GAS_ADJUSTMENT = 1.5
NOBLE_CCTP_DOMAIN = 4

MSG_DEPOSIT_FOR_BURN_TYPE_URL = "/circle.cctp.v1.MsgDepositForBurn"
MSG_RECEIVE_MESSAGE_TYPE_URL = "/circle.cctp.v1.MsgReceiveMessage"
MESSAGE_SENT_EVENT = "circle.cctp.v1.MessageSent"

NONCE_ALREADY_USED = "nonce already used"


def noble_config(**overrides: Any) -> ChainConfig:
    """``ChainConfig`` with Noble's denom, gas defaults, domain and replay marker."""
    values = {
        "family": ChainFamily.COSMOS,
        "denom": NOBLE_DENOM,
        "bech32_prefix": NOBLE_BECH32_PREFIX,
        "gas_price": NOBLE_GAS_PRICE,
        "gas_adjustment": NOBLE_GAS_ADJUSTMENT,
        "cctp_domain": NOBLE_CCTP_DOMAIN,
        "replay_policy": ReplayPolicy(enabled=True, markers=[NONCE_ALREADY_USED]),
    }
    values.update(overrides)
    return ChainConfig(**values)


def msg_deposit_for_burn(
    sender: str,
    amount: int,
    destination_domain: int,
    mint_recipient: bytes,
    burn_token: str = NOBLE_DENOM,
) -> ProtoAny:
    value = (
        string_field(1, sender)
        + string_field(2, str(amount))
        + uint_field(3, destination_domain)
        + bytes_field(4, left_pad_32(mint_recipient))
        + string_field(5, burn_token)
    )
    return ProtoAny(MSG_DEPOSIT_FOR_BURN_TYPE_URL, value)


def msg_receive_message(sender: str, message: bytes, attestation: bytes) -> ProtoAny:
    value = string_field(1, sender) + bytes_field(2, message) + bytes_field(3, attestation)
    return ProtoAny(MSG_RECEIVE_MESSAGE_TYPE_URL, value)


def extract_message_sent(outcome: TransactionOutcome) -> bytes:
    """
    Burn message bytes from the ``MessageSent`` event.

    Typed events carry their attributes JSON-encoded, so the base64 payload may
    arrive wrapped in quotes.
    """
    for event in outcome.find_events(MESSAGE_SENT_EVENT):
        raw = event.get("message")
        if raw is None:
            continue
        if raw.startswith('"'):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                raise ParseError(f"Malformed MessageSent attribute in {outcome.tx_hash}") from e
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ParseError(f"MessageSent payload in {outcome.tx_hash} is not base64") from e
    raise ParseError(f"No {MESSAGE_SENT_EVENT} event in {outcome.tx_hash}")


class NobleCctp:
    """Noble as a burn source or mint destination for the transfer coordinator."""

    def __init__(self, client: ChainClient, domain: int = NOBLE_CCTP_DOMAIN):
        self.client = client
        self.domain = client.config.cctp_domain if client.config.cctp_domain is not None else domain

    @property
    def chain(self) -> str:
        return self.client.name

    @property
    def replay_policy(self) -> ReplayPolicy:
        return self.client.config.replay_policy

    async def deposit_for_burn(
        self,
        amount: int,
        destination_domain: int,
        mint_recipient: bytes,
        burn_token: str,
    ) -> PendingTransaction:
        message = msg_deposit_for_burn(self.client.address, amount, destination_domain, mint_recipient, burn_token)
        return await self.client.submit([message])

    async def receive_message(self, message: bytes, attestation: bytes) -> PendingTransaction:
        return await self.client.submit([msg_receive_message(self.client.address, message, attestation)])

    async def confirm(self, tx_hash: str) -> PollOutcome[TransactionOutcome]:
        return await self.client.poll_for_tx(tx_hash)

    def extract_message(self, outcome: TransactionOutcome) -> bytes:
        return extract_message_sent(outcome)
