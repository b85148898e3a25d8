"""
Shared fixtures for Gateway tests.
"""

import json
from typing import Any, Callable, Dict

import httpx
import pytest

from shared.config import GatewayConfig
from service_rpc_gateway.app.adapters.chain_client import ChainClient
from service_rpc_gateway.app.main import GatewayService


ADMIN_SECRET = "test-admin-secret"
START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


class FakeNode:
    """JSON-RPC node double served through httpx.MockTransport."""

    def __init__(self):
        self.results: Dict[str, Any] = {
            "eth_blockNumber": "0x112a880",
            "eth_gasPrice": "0x3b9aca00",
        }
        self.errors: Dict[str, Dict[str, Any]] = {}
        # eth_call return data keyed by 4-byte selector
        self.contract_calls: Dict[str, str] = {}
        self.status_code = 200
        self.requests = []
        self.handler: Callable[[httpx.Request], httpx.Response] = self._answer

    def _answer(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "unavailable"})

        if isinstance(payload, list):
            return httpx.Response(200, json=[self._reply(item) for item in payload])
        return httpx.Response(200, json=self._reply(payload))

    def _reply(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        method = payload["method"]
        if method in self.errors:
            return {"jsonrpc": "2.0", "id": payload.get("id"), "error": self.errors[method]}
        if method == "eth_call":
            selector = payload["params"][0]["data"][:10]
            return {"jsonrpc": "2.0", "id": payload.get("id"), "result": self.contract_calls.get(selector, "0x")}
        return {"jsonrpc": "2.0", "id": payload.get("id"), "result": self.results.get(method)}

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(lambda request: self.handler(request))

    def methods(self):
        return [payload["method"] for payload in self.requests if isinstance(payload, dict)]


def abi_uint(value: int) -> str:
    return "0x" + format(value, "064x")


def abi_string(value: str) -> str:
    data = value.encode("utf-8")
    padded = data.ljust((len(data) + 31) // 32 * 32, b"\x00")
    return "0x" + format(32, "064x") + format(len(data), "064x") + padded.hex()


def build_service(keys_path, clock, chain_client, per_10min=2, **overrides):
    """GatewayService wired to a temporary key file, a fake clock and a fake node."""
    config = GatewayConfig(
        service_name="gateway",
        port=8000,
        admin_secret=ADMIN_SECRET,
        api_keys_file=keys_path,
        rpc_url="http://node.test",
        rate_limit_per_10min=per_10min,
        **overrides
    )
    return GatewayService(config=config, chain_client=chain_client, clock=clock)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def keys_path(tmp_path):
    return str(tmp_path / "data" / "api-keys.json")


@pytest.fixture
def gateway_config(keys_path):
    return GatewayConfig(
        service_name="gateway",
        port=8000,
        admin_secret=ADMIN_SECRET,
        api_keys_file=keys_path,
        rpc_url="http://node.test",
        rate_limit_per_10min=100,
        rate_limit_per_day=10000,
        rate_limit_per_month=300000,
    )


@pytest.fixture
def fake_node():
    return FakeNode()


@pytest.fixture
def chain_client(fake_node):
    return ChainClient("http://node.test", timeout=5.0, transport=fake_node.transport())
