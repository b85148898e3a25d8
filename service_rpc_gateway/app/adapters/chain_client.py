"""
JSON-RPC client for the upstream Ethereum node.
"""

import asyncio
import itertools
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError, RpcError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_on_exception


ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

ETHER_DECIMALS = 18
GWEI_DECIMALS = 9
FEE_HISTORY_PERCENTILES = [25, 50, 75]

SERVICE_NAME = "rpc_node"


def is_address(value: Optional[str]) -> bool:
    return bool(value) and ADDRESS_RE.match(value) is not None


def is_hash(value: Optional[str]) -> bool:
    """32-byte hex hash, as used for blocks and transactions."""
    return bool(value) and HASH_RE.match(value) is not None


def hex_to_int(value: Optional[str]) -> Optional[int]:
    """Decode a hex quantity such as ``0x1b4``."""
    if value is None:
        return None
    return int(value, 16)


def format_units(value: int, decimals: int) -> str:
    """Render an integer amount of base units as a decimal string.

    ``format_units(1500000000000000000, 18) == "1.5"``
    """
    negative = value < 0
    digits = str(abs(value)).rjust(decimals + 1, "0")
    whole, fraction = digits[:len(digits) - decimals], digits[len(digits) - decimals:]
    fraction = fraction.rstrip("0")
    text = f"{whole}.{fraction}" if fraction else whole
    return f"-{text}" if negative else text


def format_ether(value: int) -> str:
    return format_units(value, ETHER_DECIMALS)


def parse_ether(value: Union[str, int, float]) -> int:
    """Convert an ether amount to wei. Raises ValueError for bad amounts."""
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid ether amount: {value}")
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Invalid ether amount: {value}")
    wei = amount * (Decimal(10) ** ETHER_DECIMALS)
    if wei != wei.to_integral_value():
        raise ValueError(f"Ether amount has more than {ETHER_DECIMALS} decimals: {value}")
    return int(wei)


# ERC-20 function selectors: first 4 bytes of keccak256 of the signature
ERC20_SELECTORS = {
    "name": "0x06fdde03",
    "symbol": "0x95d89b41",
    "decimals": "0x313ce567",
    "totalSupply": "0x18160ddd",
    "balanceOf": "0x70a08231",
}


def encode_address_arg(address: str) -> str:
    """An address as one left-padded 32-byte ABI word, without 0x."""
    return address[2:].lower().rjust(64, "0")


def _return_bytes(data: Optional[str]) -> bytes:
    if not data or data == "0x":
        return b""
    return bytes.fromhex(data[2:] if data.startswith("0x") else data)


def decode_uint(data: Optional[str]) -> Optional[int]:
    """Decode a uint256 return value. None when the call returned nothing."""
    raw = _return_bytes(data)
    if not raw:
        return None
    if len(raw) < 32:
        raise ValueError("uint256 return data is shorter than one word")
    return int.from_bytes(raw[:32], "big")


def decode_string(data: Optional[str]) -> Optional[str]:
    """Decode a string return value.

    Older tokens return a NUL padded bytes32 instead of an ABI string; both
    forms are accepted.
    """
    raw = _return_bytes(data)
    if not raw:
        return None
    if len(raw) == 32:
        return raw.rstrip(b"\x00").decode("utf-8", errors="replace")
    if len(raw) < 64:
        raise ValueError("string return data is too short")

    offset = int.from_bytes(raw[:32], "big")
    length = int.from_bytes(raw[offset:offset + 32], "big")
    start = offset + 32
    if start + length > len(raw):
        raise ValueError("string return data is truncated")
    return raw[start:start + length].decode("utf-8", errors="replace")


class ChainClient:
    """Async client for the node's JSON-RPC endpoint.

    Transport failures are retried once, then counted by a circuit breaker;
    every failure to get an answer from the node surfaces as
    ExternalServiceError, and JSON-RPC error objects as RpcError.
    """

    def __init__(self,
                 rpc_url: str,
                 timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.transport = transport
        self.metrics = metrics
        self.logger = get_logger("gateway.chain_client")
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name=SERVICE_NAME
        )
        self._ids = itertools.count(1)

    @retry_on_exception(
        (httpx.TransportError,),
        config=RetryConfig(max_attempts=2, base_delay=0.2, max_delay=1.0),
        operation="rpc_node_send",
    )
    async def _send(self, payload: Any) -> Tuple[int, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.rpc_url, json=payload)

        try:
            body = response.json()
        except ValueError:
            body = None
        return response.status_code, body

    async def forward(self, payload: Any) -> Tuple[int, Any]:
        """Send a raw JSON-RPC payload (single or batch) and return the node's
        status code and decoded body unchanged."""
        try:
            return await self.circuit_breaker.call(self._send, payload)
        except CircuitBreakerOpenException as exc:
            self.logger.warning("RPC node circuit open", error=str(exc))
            raise ExternalServiceError(SERVICE_NAME, "circuit breaker open")
        except RetryError as exc:
            self.logger.error("RPC node unreachable", error=str(exc.last_exception))
            raise ExternalServiceError(
                SERVICE_NAME,
                "node unreachable",
                details={"error": str(exc.last_exception)}
            )

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Invoke one JSON-RPC method and return its ``result``."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        outcome = "error"
        try:
            if self.metrics is not None:
                with self.metrics.time_operation("rpc_request_duration_seconds", method=method):
                    status_code, body = await self.forward(payload)
            else:
                status_code, body = await self.forward(payload)

            if status_code < 200 or status_code >= 300 or not isinstance(body, dict):
                self.logger.error("RPC node returned an error status", method=method, status_code=status_code)
                raise ExternalServiceError(
                    SERVICE_NAME,
                    f"unexpected status {status_code}",
                    details={"status_code": status_code}
                )

            error = body.get("error")
            if error:
                outcome = "rpc_error"
                self.logger.info("RPC call returned error", method=method, rpc_code=error.get("code"))
                raise RpcError(error.get("code", -32603), error.get("message", "RPC error"), error.get("data"))

            outcome = "ok"
            return body.get("result")
        finally:
            if self.metrics is not None:
                self.metrics.increment_counter("rpc_requests_total", method=method, outcome=outcome)

    # Blocks

    async def get_block_number(self) -> int:
        return hex_to_int(await self.call("eth_blockNumber"))

    async def get_block(self, block: Optional[Union[int, str]] = None) -> Optional[Dict[str, Any]]:
        """Block summary by number, by hash, or the latest block."""
        if isinstance(block, str):
            raw = await self.call("eth_getBlockByHash", [block, False])
        elif block is None:
            raw = await self.call("eth_getBlockByNumber", ["latest", False])
        else:
            raw = await self.call("eth_getBlockByNumber", [hex(block), False])

        if raw is None:
            return None

        base_fee = hex_to_int(raw.get("baseFeePerGas"))
        return {
            "number": str(hex_to_int(raw.get("number")) or 0),
            "hash": raw.get("hash") or "",
            "timestamp": str(hex_to_int(raw["timestamp"])),
            "gasUsed": str(hex_to_int(raw["gasUsed"])),
            "gasLimit": str(hex_to_int(raw["gasLimit"])),
            "baseFeePerGas": str(base_fee) if base_fee is not None else None,
            "transactionCount": len(raw.get("transactions") or []),
            "miner": raw.get("miner"),
        }

    # Transactions

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        raw = await self.call("eth_getTransactionByHash", [tx_hash])
        if raw is None:
            return None

        value = hex_to_int(raw["value"])
        gas_price = hex_to_int(raw.get("gasPrice"))
        block_number = hex_to_int(raw.get("blockNumber"))
        return {
            "hash": raw["hash"],
            "from": raw["from"],
            "to": raw.get("to"),
            "value": str(value),
            "valueEther": format_ether(value),
            "gasPrice": str(gas_price) if gas_price is not None else None,
            "gas": str(hex_to_int(raw["gas"])),
            "nonce": hex_to_int(raw["nonce"]),
            "blockNumber": str(block_number) if block_number is not None else None,
            "blockHash": raw.get("blockHash"),
            "input": raw.get("input", "0x"),
        }

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt for a mined transaction, None while it is pending."""
        raw = await self.call("eth_getTransactionReceipt", [tx_hash])
        if raw is None:
            return None

        return {
            "transactionHash": raw["transactionHash"],
            "blockNumber": str(hex_to_int(raw["blockNumber"])),
            "blockHash": raw["blockHash"],
            "from": raw["from"],
            "to": raw.get("to"),
            "status": "success" if hex_to_int(raw.get("status")) == 1 else "reverted",
            "gasUsed": str(hex_to_int(raw["gasUsed"])),
            "effectiveGasPrice": str(hex_to_int(raw.get("effectiveGasPrice") or "0x0")),
            "logs": [
                {
                    "address": log["address"],
                    "topics": list(log.get("topics", [])),
                    "data": log.get("data", "0x"),
                }
                for log in raw.get("logs", [])
            ],
        }

    # Accounts

    async def get_balance(self, address: str) -> Dict[str, str]:
        wei = hex_to_int(await self.call("eth_getBalance", [address, "latest"]))
        return {"wei": str(wei), "ether": format_ether(wei)}

    async def get_transaction_count(self, address: str) -> int:
        return hex_to_int(await self.call("eth_getTransactionCount", [address, "latest"]))

    # Gas

    async def get_gas_price(self) -> Dict[str, str]:
        wei = hex_to_int(await self.call("eth_gasPrice"))
        return {"wei": str(wei), "gwei": format_units(wei, GWEI_DECIMALS)}

    async def estimate_gas(self,
                           to: str,
                           from_address: Optional[str] = None,
                           value: Optional[str] = None,
                           data: Optional[str] = None) -> Dict[str, str]:
        """Gas estimate for a call plus its cost at the current gas price.

        ``value`` is an ether amount.
        """
        tx: Dict[str, str] = {"to": to}
        if from_address:
            tx["from"] = from_address
        if value:
            tx["value"] = hex(parse_ether(value))
        if data:
            tx["data"] = data

        gas = hex_to_int(await self.call("eth_estimateGas", [tx]))
        gas_price = hex_to_int(await self.call("eth_gasPrice"))
        cost = gas * gas_price
        return {
            "gas": str(gas),
            "estimatedCostWei": str(cost),
            "estimatedCostEther": format_ether(cost),
        }

    async def get_fee_history(self, block_count: int = 10) -> Dict[str, Any]:
        raw = await self.call("eth_feeHistory", [hex(block_count), "latest", FEE_HISTORY_PERCENTILES])
        history = {
            "baseFeePerGas": [str(hex_to_int(fee)) for fee in raw.get("baseFeePerGas", [])],
            "gasUsedRatio": raw.get("gasUsedRatio", []),
            "oldestBlock": str(hex_to_int(raw["oldestBlock"])),
        }
        if raw.get("reward") is not None:
            history["reward"] = [[str(hex_to_int(value)) for value in row] for row in raw["reward"]]
        return history

    # ERC-20

    async def _erc20_call(self, token: str, function: str, argument: str = "") -> str:
        return await self.call("eth_call", [{"to": token, "data": ERC20_SELECTORS[function] + argument}, "latest"])

    async def get_token_info(self, token: str) -> Optional[Dict[str, Any]]:
        """Name, symbol, decimals and supply of an ERC-20 token.

        Returns None when the address does not answer ``decimals()``, which is
        what a plain account or a non-token contract does.
        """
        name, symbol, decimals, total_supply = await asyncio.gather(
            self._erc20_call(token, "name"),
            self._erc20_call(token, "symbol"),
            self._erc20_call(token, "decimals"),
            self._erc20_call(token, "totalSupply"),
        )
        decimals = decode_uint(decimals)
        if decimals is None:
            return None

        supply = decode_uint(total_supply) or 0
        return {
            "address": token,
            "name": decode_string(name),
            "symbol": decode_string(symbol),
            "decimals": decimals,
            "totalSupply": str(supply),
            "totalSupplyFormatted": format_units(supply, decimals),
        }

    async def get_token_balance(self, token: str, wallet: str) -> Optional[Dict[str, Any]]:
        balance, decimals, symbol, name = await asyncio.gather(
            self._erc20_call(token, "balanceOf", encode_address_arg(wallet)),
            self._erc20_call(token, "decimals"),
            self._erc20_call(token, "symbol"),
            self._erc20_call(token, "name"),
        )
        balance, decimals = decode_uint(balance), decode_uint(decimals)
        if balance is None or decimals is None:
            return None

        return {
            "balance": str(balance),
            "formatted": format_units(balance, decimals),
            "decimals": decimals,
            "symbol": decode_string(symbol),
            "name": decode_string(name),
        }
