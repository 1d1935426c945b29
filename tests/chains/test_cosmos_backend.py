"""
Tests for CosmosRestBackend and CosmosChainClient against a mocked LCD gateway
"""

import base64
import json

import httpx
import pytest

from txengine.chains.cosmos import proto
from txengine.chains.cosmos.client import (
    BlockHeader,
    CosmosChainClient,
    CosmosRestBackend,
    parse_timestamp_nanos,
)
from txengine.chains.cosmos.signer import CosmosSigner
from txengine.chains.transport import HttpTransport
from txengine.core.errors import (
    ChainConnectionError,
    ConfirmationTimeoutError,
    NetworkError,
    NotFoundError,
    ParseError,
    SimulationError,
    TransactionError,
)
from txengine.core.execution.models import AccountState, Coin, Fee, SignedTransaction, UnsignedTransaction
from txengine.core.execution.poller import ConfirmationPoller


def lcd_backend(handler) -> CosmosRestBackend:
    transport = HttpTransport(
        "https://lcd.test",
        chain="osmosis",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return CosmosRestBackend("osmosis", "https://lcd.test", denom="uosmo", transport=transport)


def signed_tx(raw: bytes = b"raw", tx_hash: str = "LOCALHASH") -> SignedTransaction:
    return SignedTransaction(raw=raw, tx_hash=tx_hash, fee=Fee(amount=Coin("uosmo", 1), gas_limit=1), sequence=1)


def unsigned_tx() -> UnsignedTransaction:
    return UnsignedTransaction(
        chain="osmosis",
        signer_address="osmo1signer",
        messages=[],
        payload_digest="digest",
        extras={"body_bytes": b"body", "public_key": b"\x02" * 33},
    )


TX_RESPONSE = {
    "tx_response": {
        "height": "1234",
        "txhash": "ABCDEF",
        "code": 0,
        "raw_log": "",
        "gas_wanted": "104000",
        "gas_used": "81234",
        "timestamp": "2024-05-01T12:00:00Z",
        "events": [
            {
                "type": "transfer",
                "attributes": [
                    {"key": "recipient", "value": "osmo1dest", "index": True},
                    {"key": "amount", "value": "10uosmo", "index": True},
                ],
            }
        ],
    }
}


# =============================================================================
# Simulation and broadcast
# =============================================================================

class TestSimulate:
    @pytest.mark.asyncio
    async def test_posts_unsigned_envelope(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"gas_info": {"gas_wanted": "0", "gas_used": "80000"}, "result": {"log": ""}})

        result = await lcd_backend(handler).simulate(unsigned_tx(), AccountState(address="osmo1signer", sequence=4))

        assert result.gas_used == 80_000
        assert result.payload_digest == "digest"
        assert requests[0].url.path == "/cosmos/tx/v1beta1/simulate"

        tx_bytes = base64.b64decode(json.loads(requests[0].content)["tx_bytes"])
        assert tx_bytes.startswith(proto.bytes_field(1, b"body"))
        assert tx_bytes.endswith(b"\x1a\x00")

    @pytest.mark.asyncio
    async def test_node_error_is_simulation_error(self):
        def handler(request):
            return httpx.Response(400, json={"code": 5, "message": "spendable balance 0uosmo is smaller than 10uosmo"})

        with pytest.raises(SimulationError) as exc_info:
            await lcd_backend(handler).simulate(unsigned_tx(), AccountState(address="osmo1signer"))

        assert exc_info.value.code == 5
        assert not exc_info.value.sequence_mismatch

    @pytest.mark.asyncio
    async def test_sequence_mismatch_is_flagged(self):
        def handler(request):
            return httpx.Response(
                500, json={"code": 32, "message": "account sequence mismatch, expected 5, got 4: incorrect account sequence"}
            )

        with pytest.raises(SimulationError) as exc_info:
            await lcd_backend(handler).simulate(unsigned_tx(), AccountState(address="osmo1signer"))

        assert exc_info.value.sequence_mismatch

    @pytest.mark.asyncio
    async def test_body_required(self):
        unsigned = unsigned_tx()
        unsigned.extras.clear()

        with pytest.raises(ParseError):
            await lcd_backend(lambda request: httpx.Response(200, json={})).simulate(
                unsigned, AccountState(address="osmo1signer")
            )


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_accepted(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"tx_response": {"txhash": "ABCDEF", "code": 0, "raw_log": "[]"}})

        ack = await lcd_backend(handler).broadcast(signed_tx(b"signed-bytes"))

        assert ack.tx_hash == "ABCDEF"
        assert not ack.already_known
        assert requests[0] == {"tx_bytes": base64.b64encode(b"signed-bytes").decode(), "mode": "BROADCAST_MODE_SYNC"}

    @pytest.mark.asyncio
    async def test_already_in_mempool_is_accepted(self):
        def handler(request):
            return httpx.Response(200, json={"tx_response": {"txhash": "ABCDEF", "code": 19, "raw_log": "tx already in mempool"}})

        ack = await lcd_backend(handler).broadcast(signed_tx())

        assert ack.already_known
        assert ack.code == 19

    @pytest.mark.asyncio
    async def test_checktx_rejection(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"tx_response": {"txhash": "ABCDEF", "code": 13, "codespace": "sdk", "raw_log": "insufficient fee"}},
            )

        with pytest.raises(TransactionError) as exc_info:
            await lcd_backend(handler).broadcast(signed_tx())

        assert exc_info.value.code == 13
        assert exc_info.value.codespace == "sdk"
        assert exc_info.value.raw_log == "insufficient fee"
        assert not exc_info.value.sequence_mismatch

    @pytest.mark.asyncio
    async def test_wrong_sequence_is_flagged(self):
        def handler(request):
            return httpx.Response(200, json={"tx_response": {"txhash": "ABCDEF", "code": 32, "raw_log": "account sequence mismatch"}})

        with pytest.raises(TransactionError) as exc_info:
            await lcd_backend(handler).broadcast(signed_tx())

        assert exc_info.value.sequence_mismatch

    @pytest.mark.asyncio
    async def test_gateway_down(self):
        with pytest.raises(ChainConnectionError):
            await lcd_backend(lambda request: httpx.Response(502)).broadcast(signed_tx())


# =============================================================================
# Queries
# =============================================================================

class TestLookup:
    @pytest.mark.asyncio
    async def test_included_transaction(self):
        outcome = await lcd_backend(lambda request: httpx.Response(200, json=TX_RESPONSE)).lookup_by_hash("ABCDEF")

        assert outcome.success
        assert outcome.height == 1234
        assert outcome.gas_used == 81_234
        assert outcome.find_events("transfer")[0].get("recipient") == "osmo1dest"

    @pytest.mark.asyncio
    async def test_failed_in_block(self):
        body = {"tx_response": {"height": "5", "txhash": "ABCDEF", "code": 11, "raw_log": "out of gas"}}

        outcome = await lcd_backend(lambda request: httpx.Response(200, json=body)).lookup_by_hash("ABCDEF")

        assert not outcome.success
        assert outcome.code == 11
        assert outcome.raw_log == "out of gas"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,body",
        [
            (404, {"code": 5, "message": "tx not found: ABCDEF"}),
            (400, {"code": 5, "message": "tx not found"}),
            (500, {"code": 2, "message": "tx (ABCDEF) not found"}),
        ],
    )
    async def test_not_yet_visible(self, status, body):
        backend = lcd_backend(lambda request: httpx.Response(status, json=body))

        assert await backend.lookup_by_hash("ABCDEF") is None


class TestAccountQueries:
    @pytest.mark.asyncio
    async def test_base_account(self):
        body = {
            "account": {
                "@type": "/cosmos.auth.v1beta1.BaseAccount",
                "address": "osmo1signer",
                "pub_key": {"@type": "/cosmos.crypto.secp256k1.PubKey", "key": base64.b64encode(b"\x02" * 33).decode()},
                "account_number": "7",
                "sequence": "10",
            }
        }

        state = await lcd_backend(lambda request: httpx.Response(200, json=body)).fetch_account("osmo1signer")

        assert state.account_number == 7
        assert state.sequence == 10
        assert state.public_key == b"\x02" * 33

    @pytest.mark.asyncio
    async def test_vesting_account_is_unwrapped(self):
        body = {
            "account": {
                "@type": "/cosmos.vesting.v1beta1.ContinuousVestingAccount",
                "base_vesting_account": {
                    "base_account": {"address": "osmo1vest", "account_number": "3", "sequence": "1", "pub_key": None}
                },
            }
        }

        state = await lcd_backend(lambda request: httpx.Response(200, json=body)).fetch_account("osmo1vest")

        assert state.account_number == 3
        assert state.sequence == 1
        assert state.public_key is None

    @pytest.mark.asyncio
    async def test_unknown_account(self):
        backend = lcd_backend(lambda request: httpx.Response(404, json={"code": 5, "message": "account not found"}))

        with pytest.raises(NotFoundError):
            await backend.fetch_account("osmo1new")

    @pytest.mark.asyncio
    async def test_balance_by_denom(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"balance": {"denom": "uosmo", "amount": "123456"}})

        assert await lcd_backend(handler).query_balance("osmo1signer", "uosmo") == 123_456
        assert requests[0].url.path == "/cosmos/bank/v1beta1/balances/osmo1signer/by_denom"
        assert requests[0].url.params["denom"] == "uosmo"

    @pytest.mark.asyncio
    async def test_malformed_amount(self):
        backend = lcd_backend(lambda request: httpx.Response(200, json={"balance": {"amount": "lots"}}))

        with pytest.raises(ParseError):
            await backend.query_balance("osmo1signer", "uosmo")


class TestContractQueries:
    @pytest.mark.asyncio
    async def test_smart_query(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"data": {"count": 3}})

        answer = await lcd_backend(handler).query_contract_state("osmo1contract", b'{"get_count":{}}')

        assert answer == {"count": 3}
        encoded = base64.urlsafe_b64encode(b'{"get_count":{}}').decode()
        assert requests[0].url.path == f"/cosmwasm/wasm/v1/contract/osmo1contract/smart/{encoded}"

    @pytest.mark.asyncio
    async def test_unknown_contract(self):
        backend = lcd_backend(lambda request: httpx.Response(404, json={"code": 5, "message": "no such contract"}))

        with pytest.raises(NotFoundError):
            await backend.query_contract_state("osmo1missing", b"{}")

    @pytest.mark.asyncio
    async def test_contract_error(self):
        backend = lcd_backend(
            lambda request: httpx.Response(500, json={"code": 2, "message": "query wasm contract failed"})
        )

        with pytest.raises(NetworkError, match="query wasm contract failed"):
            await backend.query_contract_state("osmo1contract", b"{}")

    @pytest.mark.asyncio
    async def test_answer_without_data(self):
        backend = lcd_backend(lambda request: httpx.Response(200, json={}))

        with pytest.raises(ParseError):
            await backend.query_contract_state("osmo1contract", b"{}")


class TestSuggestGasPrice:
    @pytest.mark.asyncio
    async def test_minimum_gas_price_for_denom(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"minimum_gas_price": "0.100000000000000000uatom,0.002500000000000000uosmo"})

        assert await lcd_backend(handler).suggest_gas_price() == 0.0025
        assert requests[0].url.path == "/cosmos/base/node/v1beta1/config"

    @pytest.mark.asyncio
    async def test_denom_not_advertised(self):
        backend = lcd_backend(lambda request: httpx.Response(200, json={"minimum_gas_price": "0.1uatom"}))

        with pytest.raises(ParseError):
            await backend.suggest_gas_price()

    @pytest.mark.asyncio
    async def test_node_without_config_endpoint(self):
        backend = lcd_backend(lambda request: httpx.Response(501, json={"code": 12, "message": "Not Implemented"}))

        with pytest.raises(NetworkError):
            await backend.suggest_gas_price()


class TestBlockTime:
    def test_nanosecond_timestamp(self):
        assert parse_timestamp_nanos("2024-01-01T00:00:00.123456789Z") == 1_704_067_200_123_456_789

    def test_offset_and_no_fraction(self):
        assert parse_timestamp_nanos("2024-01-01T02:00:00+02:00") == 1_704_067_200_000_000_000

    def test_invalid(self):
        with pytest.raises(ParseError):
            parse_timestamp_nanos("yesterday")

    @pytest.mark.asyncio
    async def test_latest_block_header(self):
        body = {"sdk_block": {"header": {"chain_id": "osmo-test-5", "height": "99", "time": "2024-01-01T00:00:00Z"}}}

        header = await lcd_backend(lambda request: httpx.Response(200, json=body)).latest_block_header()

        assert header == BlockHeader(chain_id="osmo-test-5", height=99, time="2024-01-01T00:00:00Z")
        assert header.timestamp.year == 2024


# =============================================================================
# Client operations
# =============================================================================

class FakeLcd:
    """Routes LCD paths to canned answers and records POST bodies."""

    def __init__(self, lookups=None):
        self.posts = {}
        self.lookups = list(lookups or [TX_RESPONSE])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST":
            self.posts.setdefault(path, []).append(json.loads(request.content))
        if path.startswith("/cosmos/auth/v1beta1/accounts/"):
            return httpx.Response(
                200, json={"account": {"address": "osmo1signer", "account_number": "7", "sequence": "10"}}
            )
        if path == "/cosmos/tx/v1beta1/simulate":
            return httpx.Response(200, json={"gas_info": {"gas_used": "80000"}})
        if path == "/cosmos/tx/v1beta1/txs":
            return httpx.Response(200, json={"tx_response": {"txhash": "ABCDEF", "code": 0}})
        if path.startswith("/cosmos/tx/v1beta1/txs/"):
            answer = self.lookups.pop(0) if len(self.lookups) > 1 else self.lookups[0]
            if answer is None:
                return httpx.Response(404, json={"code": 5, "message": "tx not found"})
            return httpx.Response(200, json=answer)
        if path.startswith("/cosmwasm/wasm/v1/contract/"):
            query = json.loads(base64.urlsafe_b64decode(path.rsplit("/", 1)[1]))
            return httpx.Response(200, json={"data": {"echo": query}})
        if path == "/cosmos/base/tendermint/v1beta1/blocks/latest":
            return httpx.Response(
                200, json={"block": {"header": {"chain_id": "osmo-test-5", "height": "10", "time": "2024-01-01T00:00:00Z"}}}
            )
        return httpx.Response(404, json={"message": "unknown path"})


def cosmos_client(config, lcd: FakeLcd, clock) -> CosmosChainClient:
    transport = HttpTransport(
        config.endpoint_url,
        chain=config.name,
        client=httpx.AsyncClient(transport=httpx.MockTransport(lcd)),
    )
    backend = CosmosRestBackend(config.name, config.endpoint_url, denom=config.denom, transport=transport)
    config = config.model_copy(update={"poll_interval_seconds": 1, "poll_timeout_seconds": 5})
    return CosmosChainClient(config, backend, CosmosSigner(config), poller=ConfirmationPoller(clock))


class TestCosmosChainClient:
    @pytest.mark.asyncio
    async def test_transfer_runs_full_lifecycle(self, cosmos_config, clock):
        lcd = FakeLcd(lookups=[None, TX_RESPONSE])
        client = cosmos_client(cosmos_config, lcd, clock)

        outcome = await client.transfer("osmo1dest", 10)

        assert outcome.tx_hash == "ABCDEF"
        assert len(lcd.posts["/cosmos/tx/v1beta1/simulate"]) == 1
        assert len(lcd.posts["/cosmos/tx/v1beta1/txs"]) == 1
        assert client.tracker.get_state(client.address).sequence == 11

    @pytest.mark.asyncio
    async def test_transfer_failure_raises_with_log(self, cosmos_config, clock):
        failed = {"tx_response": {"height": "5", "txhash": "ABCDEF", "code": 11, "raw_log": "out of gas"}}
        client = cosmos_client(cosmos_config, FakeLcd(lookups=[failed]), clock)

        with pytest.raises(TransactionError) as exc_info:
            await client.transfer("osmo1dest", 10)

        assert exc_info.value.code == 11
        assert exc_info.value.raw_log == "out of gas"

    @pytest.mark.asyncio
    async def test_transfer_never_seen_times_out(self, cosmos_config, clock):
        client = cosmos_client(cosmos_config, FakeLcd(lookups=[None]), clock)

        with pytest.raises(ConfirmationTimeoutError):
            await client.transfer("osmo1dest", 10)

    @pytest.mark.asyncio
    async def test_ibc_timeout_follows_block_time(self, cosmos_config, clock):
        lcd = FakeLcd()
        client = cosmos_client(cosmos_config, lcd, clock)

        await client.ibc_transfer("cosmos1dest", "uosmo", 5, "channel-0", timeout_seconds=600)

        tx_bytes = base64.b64decode(lcd.posts["/cosmos/tx/v1beta1/txs"][0]["tx_bytes"])
        expected = parse_timestamp_nanos("2024-01-01T00:00:00Z") + 600 * 1_000_000_000
        assert b"\x38" + proto.encode_varint(expected) in tx_bytes
        assert b"channel-0" in tx_bytes

    @pytest.mark.asyncio
    async def test_execute_wasm_sends_compact_json_and_funds(self, cosmos_config, clock):
        lcd = FakeLcd()
        client = cosmos_client(cosmos_config, lcd, clock)

        outcome = await client.execute_wasm(
            "osmo1contract", {"swap": {"min_out": "5"}}, funds=[Coin(denom="uosmo", amount=100)]
        )

        assert outcome.tx_hash == "ABCDEF"
        tx_bytes = base64.b64decode(lcd.posts["/cosmos/tx/v1beta1/txs"][0]["tx_bytes"])
        assert b"/cosmwasm.wasm.v1.MsgExecuteContract" in tx_bytes
        assert b'{"swap":{"min_out":"5"}}' in tx_bytes
        assert proto.encode_coin(Coin(denom="uosmo", amount=100)) in tx_bytes

    @pytest.mark.asyncio
    async def test_instantiate_returns_contract_address(self, cosmos_config, clock):
        included = json.loads(json.dumps(TX_RESPONSE))
        included["tx_response"]["events"].append(
            {
                "type": "instantiate",
                "attributes": [
                    {"key": "_contract_address", "value": "osmo1newcontract"},
                    {"key": "code_id", "value": "42"},
                ],
            }
        )
        client = cosmos_client(cosmos_config, FakeLcd(lookups=[included]), clock)

        assert await client.instantiate(42, "pool", {"owner": client.address}) == "osmo1newcontract"

    @pytest.mark.asyncio
    async def test_instantiate_without_address_event(self, cosmos_config, clock):
        client = cosmos_client(cosmos_config, FakeLcd(), clock)

        with pytest.raises(ParseError, match="No contract address"):
            await client.instantiate(42, "pool", {})

    @pytest.mark.asyncio
    async def test_instantiate_needs_label(self, cosmos_config, clock):
        lcd = FakeLcd()
        client = cosmos_client(cosmos_config, lcd, clock)

        with pytest.raises(ParseError):
            await client.instantiate(42, "", {})
        assert lcd.posts == {}

    @pytest.mark.asyncio
    async def test_query_contract_state(self, cosmos_config, clock):
        client = cosmos_client(cosmos_config, FakeLcd(), clock)

        answer = await client.query_contract_state("osmo1contract", {"config": {}})

        assert answer == {"echo": {"config": {}}}
