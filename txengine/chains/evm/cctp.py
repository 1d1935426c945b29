"""
CCTP on EVM chains: TokenMessenger / MessageTransmitter calldata and
``MessageSent`` log extraction.
"""

from typing import Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

from ...config import ReplayPolicy
from ...core.bridge.models import left_pad_32
from ...core.errors import ParseError
from ...core.execution.models import PendingTransaction, PollOutcome, TransactionOutcome
from ..client import ChainClient
from .client import hex_to_bytes
from .signer import EvmCall

DEPOSIT_FOR_BURN_SELECTOR = function_signature_to_4byte_selector(
    "depositForBurn(uint256,uint32,bytes32,address)"
)
RECEIVE_MESSAGE_SELECTOR = function_signature_to_4byte_selector("receiveMessage(bytes,bytes)")
MESSAGE_SENT_TOPIC = "0x" + keccak(text="MessageSent(bytes)").hex()

NONCE_ALREADY_USED = "nonce already used"


def encode_deposit_for_burn(amount: int, destination_domain: int, mint_recipient: bytes, burn_token: str) -> bytes:
    return DEPOSIT_FOR_BURN_SELECTOR + encode(
        ["uint256", "uint32", "bytes32", "address"],
        [amount, destination_domain, left_pad_32(mint_recipient), to_checksum_address(burn_token)],
    )


def encode_receive_message(message: bytes, attestation: bytes) -> bytes:
    return RECEIVE_MESSAGE_SELECTOR + encode(["bytes", "bytes"], [message, attestation])


def extract_message_sent(outcome: TransactionOutcome, transmitter: Optional[str] = None) -> bytes:
    """The ABI-decoded payload of the first ``MessageSent(bytes)`` log."""
    for event in outcome.find_events(MESSAGE_SENT_TOPIC):
        if transmitter and event.get("address") != transmitter.lower():
            continue
        try:
            return decode(["bytes"], hex_to_bytes(event.get("data")))[0]
        except DecodingError as e:
            raise ParseError(f"Malformed MessageSent log in {outcome.tx_hash}") from e
    raise ParseError(f"No MessageSent log in {outcome.tx_hash}")


class EvmCctp:
    """An EVM chain as a burn source or mint destination for the transfer coordinator."""

    def __init__(self, client: ChainClient):
        config = client.config
        if config.cctp_domain is None:
            raise ParseError(f"No CCTP domain configured for {config.name}", chain=config.name)
        self.client = client
        self.domain = config.cctp_domain
        self.token_messenger = config.token_messenger_address
        self.message_transmitter = config.message_transmitter_address

    @property
    def chain(self) -> str:
        return self.client.name

    @property
    def replay_policy(self) -> ReplayPolicy:
        """The configured policy, or MessageTransmitter's "Nonce already used" revert when none is set."""
        config = self.client.config
        if "replay_policy" in config.model_fields_set:
            return config.replay_policy
        return ReplayPolicy(enabled=True, markers=[NONCE_ALREADY_USED])

    async def deposit_for_burn(
        self,
        amount: int,
        destination_domain: int,
        mint_recipient: bytes,
        burn_token: str,
    ) -> PendingTransaction:
        if not self.token_messenger:
            raise ParseError(f"No TokenMessenger configured for {self.chain}", chain=self.chain)
        data = encode_deposit_for_burn(amount, destination_domain, mint_recipient, burn_token)
        return await self.client.submit([EvmCall(to=self.token_messenger, data=data)])

    async def receive_message(self, message: bytes, attestation: bytes) -> PendingTransaction:
        if not self.message_transmitter:
            raise ParseError(f"No MessageTransmitter configured for {self.chain}", chain=self.chain)
        data = encode_receive_message(message, attestation)
        return await self.client.submit([EvmCall(to=self.message_transmitter, data=data)])

    async def confirm(self, tx_hash: str) -> PollOutcome[TransactionOutcome]:
        return await self.client.poll_for_tx(tx_hash)

    def extract_message(self, outcome: TransactionOutcome) -> bytes:
        return extract_message_sent(outcome, self.message_transmitter or None)
