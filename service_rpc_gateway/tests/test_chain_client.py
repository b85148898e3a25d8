"""
Unit tests for the node JSON-RPC client.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from shared.errors import ExternalServiceError, RpcError
from service_rpc_gateway.app.adapters.chain_client import (
    ERC20_SELECTORS,
    ChainClient,
    decode_string,
    decode_uint,
    encode_address_arg,
    format_units,
    hex_to_int,
    is_address,
    is_hash,
    parse_ether,
)

from .conftest import abi_string, abi_uint

ADDRESS = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
TX_HASH = "0x" + "ab" * 32


class TestHelpers:
    """Test cases for unit and format helpers."""

    def test_format_units(self):
        assert format_units(1500000000000000000, 18) == "1.5"
        assert format_units(0, 18) == "0"
        assert format_units(1, 18) == "0.000000000000000001"
        assert format_units(1000000000, 9) == "1"
        assert format_units(42, 0) == "42"

    def test_parse_ether(self):
        assert parse_ether("1.5") == 1500000000000000000
        assert parse_ether("0") == 0
        assert parse_ether(2) == 2000000000000000000

    @pytest.mark.parametrize("value", ["abc", "-1", "0.0000000000000000001", "NaN"])
    def test_parse_ether_rejects(self, value):
        with pytest.raises(ValueError):
            parse_ether(value)

    def test_address_and_hash_validation(self):
        assert is_address(ADDRESS)
        assert not is_address("0x123")
        assert not is_address(None)
        assert is_hash(TX_HASH)
        assert not is_hash(TX_HASH[:-1])

    def test_hex_to_int(self):
        assert hex_to_int("0x1b4") == 436
        assert hex_to_int(None) is None


class TestChainClient:
    """Test cases for ChainClient."""

    @pytest.mark.asyncio
    async def test_call_returns_result(self, chain_client, fake_node):
        assert await chain_client.get_block_number() == 0x112a880
        assert fake_node.requests[0]["jsonrpc"] == "2.0"
        assert fake_node.requests[0]["params"] == []

    @pytest.mark.asyncio
    async def test_rpc_error_is_raised(self, chain_client, fake_node):
        fake_node.errors["eth_estimateGas"] = {"code": 3, "message": "execution reverted"}

        with pytest.raises(RpcError) as exc_info:
            await chain_client.call("eth_estimateGas", [{"to": ADDRESS}])

        assert exc_info.value.rpc_code == 3
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_internal_rpc_error_maps_to_bad_gateway(self, chain_client, fake_node):
        fake_node.errors["eth_blockNumber"] = {"code": -32000, "message": "header not found"}

        with pytest.raises(RpcError) as exc_info:
            await chain_client.get_block_number()

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_non_2xx_raises_external_error(self, chain_client, fake_node):
        fake_node.status_code = 503

        with pytest.raises(ExternalServiceError):
            await chain_client.get_block_number()

    @pytest.mark.asyncio
    async def test_forward_returns_status_and_body(self, chain_client, fake_node):
        fake_node.status_code = 503

        status_code, body = await chain_client.forward({"jsonrpc": "2.0", "id": 1, "method": "eth_chainId"})

        assert status_code == 503
        assert body == {"error": "unavailable"}

    @pytest.mark.asyncio
    async def test_unreachable_node_is_retried_then_reported(self, fake_node):
        attempts = []

        def refuse(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        fake_node.handler = refuse
        client = ChainClient("http://node.test", transport=fake_node.transport())

        with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.get_block_number()

        assert len(attempts) == 2
        assert exc_info.value.status_code == 502
        assert "node unreachable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, fake_node):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake_node.handler = refuse
        client = ChainClient("http://node.test", transport=fake_node.transport())

        with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock):
            for _ in range(client.circuit_breaker.failure_threshold):
                with pytest.raises(ExternalServiceError):
                    await client.get_block_number()

            with pytest.raises(ExternalServiceError) as exc_info:
                await client.get_block_number()

        assert client.circuit_breaker.is_open()
        assert "circuit breaker open" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_get_block_by_number(self, chain_client, fake_node):
        fake_node.results["eth_getBlockByNumber"] = {
            "number": "0x10",
            "hash": "0x" + "11" * 32,
            "timestamp": "0x6553f100",
            "gasUsed": "0x5208",
            "gasLimit": "0x1c9c380",
            "baseFeePerGas": "0x7",
            "transactions": ["0x" + "22" * 32, "0x" + "33" * 32],
            "miner": ADDRESS,
        }

        block = await chain_client.get_block(16)

        assert fake_node.requests[-1]["params"] == ["0x10", False]
        assert block["number"] == "16"
        assert block["gasUsed"] == "21000"
        assert block["baseFeePerGas"] == "7"
        assert block["transactionCount"] == 2

    @pytest.mark.asyncio
    async def test_get_block_by_hash_and_latest(self, chain_client, fake_node):
        await chain_client.get_block("0x" + "11" * 32)
        await chain_client.get_block()

        assert fake_node.methods()[-2:] == ["eth_getBlockByHash", "eth_getBlockByNumber"]
        assert fake_node.requests[-1]["params"] == ["latest", False]

    @pytest.mark.asyncio
    async def test_get_transaction(self, chain_client, fake_node):
        fake_node.results["eth_getTransactionByHash"] = {
            "hash": TX_HASH,
            "from": ADDRESS,
            "to": None,
            "value": "0xde0b6b3a7640000",
            "gasPrice": "0x3b9aca00",
            "gas": "0x5208",
            "nonce": "0x2",
            "blockNumber": None,
            "blockHash": None,
            "input": "0x",
        }

        tx = await chain_client.get_transaction(TX_HASH)

        assert tx["valueEther"] == "1"
        assert tx["nonce"] == 2
        assert tx["blockNumber"] is None

    @pytest.mark.asyncio
    async def test_pending_receipt_is_none(self, chain_client):
        assert await chain_client.get_transaction_receipt(TX_HASH) is None

    @pytest.mark.asyncio
    async def test_receipt_status(self, chain_client, fake_node):
        fake_node.results["eth_getTransactionReceipt"] = {
            "transactionHash": TX_HASH,
            "blockNumber": "0x10",
            "blockHash": "0x" + "11" * 32,
            "from": ADDRESS,
            "to": ADDRESS,
            "status": "0x0",
            "gasUsed": "0x5208",
            "effectiveGasPrice": "0x3b9aca00",
            "logs": [{"address": ADDRESS, "topics": ["0x01"], "data": "0x"}],
        }

        receipt = await chain_client.get_transaction_receipt(TX_HASH)

        assert receipt["status"] == "reverted"
        assert receipt["effectiveGasPrice"] == "1000000000"
        assert receipt["logs"][0]["topics"] == ["0x01"]

    @pytest.mark.asyncio
    async def test_balance_and_gas_price(self, chain_client, fake_node):
        fake_node.results["eth_getBalance"] = "0x14d1120d7b160000"

        assert await chain_client.get_balance(ADDRESS) == {"wei": "1500000000000000000", "ether": "1.5"}
        assert await chain_client.get_gas_price() == {"wei": "1000000000", "gwei": "1"}

    @pytest.mark.asyncio
    async def test_estimate_gas_costs_at_current_price(self, chain_client, fake_node):
        fake_node.results["eth_estimateGas"] = "0x5208"

        estimate = await chain_client.estimate_gas(ADDRESS, from_address=ADDRESS, value="0.5")

        sent = fake_node.requests[0]["params"][0]
        assert sent == {"to": ADDRESS, "from": ADDRESS, "value": hex(500000000000000000)}
        assert estimate == {
            "gas": "21000",
            "estimatedCostWei": "21000000000000",
            "estimatedCostEther": "0.000021",
        }

    @pytest.mark.asyncio
    async def test_fee_history(self, chain_client, fake_node):
        fake_node.results["eth_feeHistory"] = {
            "oldestBlock": "0x10",
            "baseFeePerGas": ["0x1", "0x2"],
            "gasUsedRatio": [0.5],
            "reward": [["0x1", "0x2", "0x3"]],
        }

        history = await chain_client.get_fee_history(1)

        assert fake_node.requests[0]["params"] == ["0x1", "latest", [25, 50, 75]]
        assert history == {
            "baseFeePerGas": ["1", "2"],
            "gasUsedRatio": [0.5],
            "oldestBlock": "16",
            "reward": [["1", "2", "3"]],
        }

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, fake_node):
        metrics = MagicMock()
        client = ChainClient("http://node.test", transport=fake_node.transport(), metrics=metrics)

        await client.get_block_number()

        metrics.time_operation.assert_called_once_with("rpc_request_duration_seconds", method="eth_blockNumber")
        metrics.increment_counter.assert_called_once_with("rpc_requests_total", method="eth_blockNumber", outcome="ok")


class TestErc20:
    """Test cases for the ERC-20 read helpers."""

    TOKEN = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"

    @pytest.fixture
    def token_node(self, fake_node):
        fake_node.contract_calls = {
            ERC20_SELECTORS["name"]: abi_string("USD Coin"),
            ERC20_SELECTORS["symbol"]: abi_string("USDC"),
            ERC20_SELECTORS["decimals"]: abi_uint(6),
            ERC20_SELECTORS["totalSupply"]: abi_uint(25_000_000_500_000),
            ERC20_SELECTORS["balanceOf"]: abi_uint(1_250_000),
        }
        return fake_node

    def test_decode_string_forms(self):
        assert decode_string(abi_string("Wrapped Ether")) == "Wrapped Ether"
        assert decode_string(abi_string("")) == ""
        assert decode_string("0x" + b"MKR".ljust(32, b"\x00").hex()) == "MKR"
        assert decode_string("0x") is None

    def test_decode_uint(self):
        assert decode_uint(abi_uint(18)) == 18
        assert decode_uint("0x") is None
        with pytest.raises(ValueError):
            decode_uint("0x12")

    def test_encode_address_arg(self):
        assert encode_address_arg(ADDRESS) == "0" * 24 + ADDRESS[2:].lower()

    @pytest.mark.asyncio
    async def test_token_info(self, chain_client, token_node):
        info = await chain_client.get_token_info(self.TOKEN)

        assert info == {
            "address": self.TOKEN,
            "name": "USD Coin",
            "symbol": "USDC",
            "decimals": 6,
            "totalSupply": "25000000500000",
            "totalSupplyFormatted": "25000000.5",
        }

    @pytest.mark.asyncio
    async def test_token_balance_encodes_wallet(self, chain_client, token_node):
        balance = await chain_client.get_token_balance(self.TOKEN, ADDRESS)

        assert balance == {"balance": "1250000", "formatted": "1.25", "decimals": 6, "symbol": "USDC", "name": "USD Coin"}
        calls = [payload["params"][0] for payload in token_node.requests if payload["method"] == "eth_call"]
        balance_call = next(call for call in calls if call["data"].startswith(ERC20_SELECTORS["balanceOf"]))
        assert balance_call == {"to": self.TOKEN, "data": ERC20_SELECTORS["balanceOf"] + encode_address_arg(ADDRESS)}

    @pytest.mark.asyncio
    async def test_non_token_address(self, chain_client, fake_node):
        assert await chain_client.get_token_info(ADDRESS) is None
        assert await chain_client.get_token_balance(self.TOKEN, ADDRESS) is None
