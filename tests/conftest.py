"""
Shared fixtures: a simulated clock and chain configs.
"""

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from txengine.config import ChainConfig, ChainFamily


class FakeClock:
    """Deterministic clock: ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cosmos_config() -> ChainConfig:
    return ChainConfig(
        name="osmosis",
        family=ChainFamily.COSMOS,
        endpoint_url="https://lcd.example.org",
        chain_id="osmo-test-5",
        denom="uosmo",
        bech32_prefix="osmo",
        gas_price=0.025,
        gas_adjustment=1.3,
        private_key="1" * 64,
    )


@pytest.fixture
def evm_config() -> ChainConfig:
    return ChainConfig(
        name="sepolia",
        family=ChainFamily.EVM,
        endpoint_url="https://rpc.example.org",
        chain_id="11155111",
        private_key="0x" + "4c" * 32,
        cctp_domain=0,
        token_messenger_address="0x9f3b8679c73c2fef8b59b4f3444d4e156fb70aa5",
        message_transmitter_address="0x7865fafc2db2093669d92c0f33aeef291086befd",
    )


def json_rpc_handler(responses: Dict[str, Any], calls: List[Dict[str, Any]]) -> Callable[[httpx.Request], httpx.Response]:
    """
    MockTransport handler answering JSON-RPC by method name.

    A response value that is a dict with an ``error`` key is returned as the
    JSON-RPC error member; a callable receives the params.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        calls.append(payload)
        answer = responses[payload["method"]]
        if callable(answer):
            answer = answer(payload["params"])
        if isinstance(answer, dict) and "error" in answer:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": answer["error"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": answer})

    return handler


@pytest.fixture
def rpc_handler() -> Callable[..., Callable[[httpx.Request], httpx.Response]]:
    return json_rpc_handler
