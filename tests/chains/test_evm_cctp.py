"""
Tests for CCTP calldata and MessageSent extraction on EVM chains
"""

import pytest
from eth_abi import decode, encode
from eth_utils import keccak
from unittest.mock import AsyncMock, MagicMock

from txengine.chains.evm.cctp import (
    DEPOSIT_FOR_BURN_SELECTOR,
    MESSAGE_SENT_TOPIC,
    RECEIVE_MESSAGE_SELECTOR,
    EvmCctp,
    encode_deposit_for_burn,
    encode_receive_message,
    extract_message_sent,
)
from txengine.chains.evm.signer import EvmCall
from txengine.config import ReplayPolicy
from txengine.core.errors import ParseError
from txengine.core.execution.models import Event, TransactionOutcome


TRANSMITTER = "0x7865fafc2db2093669d92c0f33aeef291086befd"
USDC = "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238"


def message_sent_event(message: bytes, address: str = TRANSMITTER) -> Event:
    return Event(
        type=MESSAGE_SENT_TOPIC,
        attributes=(
            ("address", address),
            ("data", "0x" + encode(["bytes"], [message]).hex()),
            ("topics", MESSAGE_SENT_TOPIC),
        ),
    )


def outcome_with(*events: Event) -> TransactionOutcome:
    return TransactionOutcome(tx_hash="0xburn", height=1, success=True, events=events)


class TestCalldata:
    def test_topic_is_keccak_of_signature(self):
        assert MESSAGE_SENT_TOPIC == "0x" + keccak(text="MessageSent(bytes)").hex()

    def test_deposit_for_burn(self):
        data = encode_deposit_for_burn(1_000_000, 4, b"\x22" * 20, USDC)

        assert data[:4] == DEPOSIT_FOR_BURN_SELECTOR
        amount, domain, recipient, token = decode(["uint256", "uint32", "bytes32", "address"], data[4:])
        assert amount == 1_000_000
        assert domain == 4
        assert recipient == b"\x00" * 12 + b"\x22" * 20
        assert token.lower() == USDC

    def test_receive_message(self):
        data = encode_receive_message(b"message", b"\xaa" * 65)

        assert data[:4] == RECEIVE_MESSAGE_SELECTOR
        assert decode(["bytes", "bytes"], data[4:]) == (b"message", b"\xaa" * 65)


class TestExtractMessageSent:
    def test_decodes_first_matching_log(self):
        outcome = outcome_with(
            Event(type="0xother", attributes=(("address", TRANSMITTER),)),
            message_sent_event(b"burn message"),
        )

        assert extract_message_sent(outcome) == b"burn message"

    def test_filters_by_emitting_contract(self):
        outcome = outcome_with(
            message_sent_event(b"spoofed", address="0x" + "11" * 20),
            message_sent_event(b"genuine"),
        )

        assert extract_message_sent(outcome, transmitter=TRANSMITTER.upper().replace("0X", "0x")) == b"genuine"

    def test_missing_log(self):
        with pytest.raises(ParseError):
            extract_message_sent(outcome_with())

    def test_malformed_log_data(self):
        event = Event(type=MESSAGE_SENT_TOPIC, attributes=(("address", TRANSMITTER), ("data", "0x1234")))

        with pytest.raises(ParseError):
            extract_message_sent(outcome_with(event))


class TestEvmCctp:
    def make_client(self, evm_config):
        client = MagicMock()
        client.config = evm_config
        client.name = evm_config.name
        client.submit = AsyncMock(return_value="pending")
        return client

    @pytest.mark.asyncio
    async def test_burn_targets_token_messenger(self, evm_config):
        client = self.make_client(evm_config)
        cctp = EvmCctp(client)

        await cctp.deposit_for_burn(5, 4, b"\x01" * 32, USDC)

        (call,), = client.submit.await_args.args
        assert isinstance(call, EvmCall)
        assert call.to == evm_config.token_messenger_address
        assert call.data[:4] == DEPOSIT_FOR_BURN_SELECTOR
        assert cctp.domain == 0
        assert cctp.chain == "sepolia"

    @pytest.mark.asyncio
    async def test_receive_targets_transmitter(self, evm_config):
        client = self.make_client(evm_config)

        await EvmCctp(client).receive_message(b"m", b"a")

        (call,), = client.submit.await_args.args
        assert call.to == evm_config.message_transmitter_address
        assert call.data[:4] == RECEIVE_MESSAGE_SELECTOR

    def test_domain_required(self, evm_config):
        client = self.make_client(evm_config.model_copy(update={"cctp_domain": None}))

        with pytest.raises(ParseError):
            EvmCctp(client)

    @pytest.mark.asyncio
    async def test_missing_contract_address(self, evm_config):
        client = self.make_client(evm_config.model_copy(update={"token_messenger_address": ""}))

        with pytest.raises(ParseError):
            await EvmCctp(client).deposit_for_burn(5, 4, b"\x01" * 32, USDC)
        client.submit.assert_not_awaited()

    def test_replay_policy_defaults_to_transmitter_revert(self, evm_config):
        policy = EvmCctp(self.make_client(evm_config)).replay_policy

        assert policy.enabled
        assert policy.matches("execution reverted: Nonce already used")

    def test_configured_replay_policy_wins(self, evm_config):
        config = evm_config.model_copy(update={"replay_policy": ReplayPolicy(enabled=False)})

        policy = EvmCctp(self.make_client(config)).replay_policy

        assert not policy.matches("execution reverted: Nonce already used")
