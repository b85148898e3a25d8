"""
Chain RPC Gateway service.

Fronts an Ethereum JSON-RPC node with API key authentication, multi-window
rate limiting, an admin API for key management and a small set of
convenience query endpoints.
"""

import functools
from json import JSONDecodeError
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi import Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from shared.base_service import BaseService
from shared.config import GatewayConfig, get_gateway_config
from shared.errors import ExternalServiceError, NotFoundError, ValidationError

from service_rpc_gateway.app.adapters.chain_client import ChainClient, is_address, is_hash
from service_rpc_gateway.app.domain.gatekeeper import Gatekeeper, GatekeeperMiddleware, key_store_writes
from service_rpc_gateway.app.keystore import ApiKeyStore, CustomLimits
from service_rpc_gateway.app.ratelimit import MultiWindowRateLimiter, build_windows, resolve_limits


KEY_WARNING = "Store this API key securely. It will not be shown again in full."


class CreateKeyRequest(BaseModel):
    """Body of POST /api/admin/keys."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    custom_limits: Optional[CustomLimits] = Field(default=None, alias="customLimits")
    metadata: Optional[Dict[str, str]] = None


class UpdateKeyRequest(BaseModel):
    """Body of PATCH /api/admin/keys/{key}."""

    action: Optional[str] = None
    limits: Optional[CustomLimits] = None


class EstimateGasRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_address: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    value: Optional[Union[str, int, float]] = None
    data: Optional[str] = None


def _success(data: Any = None, **extra) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": True}
    if data is not None:
        payload["data"] = data
    payload.update(extra)
    return payload


def _rpc_error(code: int, message: str, request_id: Any = None) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": request_id}


class GatewayService(BaseService):
    """RPC gateway service implementation."""

    def __init__(self,
                 config: Optional[GatewayConfig] = None,
                 chain_client: Optional[ChainClient] = None,
                 clock: Optional[Callable[[], int]] = None):
        config = config or get_gateway_config()
        clock_kwargs = {"clock": clock} if clock is not None else {}

        self.windows = build_windows(config.window_names, config.default_limits)
        self.rate_limiter = MultiWindowRateLimiter(self.windows, **clock_kwargs)
        self.key_store = ApiKeyStore(config.api_keys_path, rate_limiter=self.rate_limiter, **clock_kwargs)

        super().__init__("gateway", config.port, config=config)

        self.chain_client = chain_client or ChainClient(
            config.rpc_url,
            timeout=config.rpc_timeout_seconds,
            metrics=self.metrics,
        )

        self.logger.info(
            "Gateway configured",
            windows=[window.name for window in self.windows],
            default_limits=resolve_limits(self.windows),
            api_keys=self.key_store.count(),
            rpc_url=config.rpc_url,
        )

        self._setup_admin_routes()
        self._setup_usage_routes()
        self._setup_rpc_routes()
        self._setup_chain_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _setup_middleware(self):
        """Install the gatekeeper innermost, under the shared request middleware."""
        self.gatekeeper = Gatekeeper(
            key_store=self.key_store,
            rate_limiter=self.rate_limiter,
            admin_secret=self.config.admin_secret,
            api_prefix=self.config.api_prefix,
            admin_prefix=self.config.admin_prefix,
            health_path=self.config.health_path,
            metrics=self.metrics,
        )
        self.app.add_middleware(GatekeeperMiddleware, gatekeeper=self.gatekeeper)
        super()._setup_middleware()

    async def _check_dependencies(self) -> Dict[str, Any]:
        block_number = await self.chain_client.get_block_number()
        return {"ethereum": {"connected": True, "blockNumber": str(block_number)}}

    def _describe_dependency_failure(self, error: Exception) -> Dict[str, Any]:
        return {"ethereum": {"connected": False, "error": str(error)}}

    def _setup_admin_routes(self):
        """Set up API key management routes."""

        @self.app.get("/api/admin/keys")
        async def list_keys():
            return _success([record.to_masked_dict() for record in self.key_store.list()])

        @self.app.post("/api/admin/keys")
        async def create_key(body: CreateKeyRequest):
            if not body.name or not body.name.strip():
                raise ValidationError("name is required")

            with key_store_writes():
                record = self.key_store.create(body.name, body.custom_limits, body.metadata)
            return _success(record.to_dict(), message=KEY_WARNING)

        @self.app.get("/api/admin/keys/{key}")
        async def get_key(key: str):
            record = self.key_store.get(key)
            if record is None:
                raise NotFoundError("API key not found")

            data = record.to_masked_dict()
            data["usage"] = self.rate_limiter.usage(key)
            data["limits"] = resolve_limits(self.windows, record.overrides())
            return _success(data)

        @self.app.patch("/api/admin/keys/{key}")
        async def update_key(key: str, body: UpdateKeyRequest):
            if body.action == "activate":
                change, message = self.key_store.activate, "API key activated"
            elif body.action == "deactivate":
                change, message = self.key_store.deactivate, "API key deactivated"
            elif body.limits is not None:
                change = functools.partial(self.key_store.update_limits, limits=body.limits)
                message = "API key limits updated"
            else:
                raise ValidationError("Invalid action. Use activate, deactivate, or provide limits")

            with key_store_writes():
                updated = change(key)

            if not updated:
                raise NotFoundError("API key not found")
            return _success(message=message)

        @self.app.delete("/api/admin/keys/{key}")
        async def delete_key(key: str):
            with key_store_writes():
                deleted = self.key_store.delete(key)
            if not deleted:
                raise NotFoundError("API key not found")
            return _success(message="API key deleted")

    def _setup_usage_routes(self):
        """Set up caller self-service routes."""

        @self.app.get("/api/v1/usage")
        async def get_usage(request: Request):
            """Usage and effective limits of the calling key."""
            record = request.state.api_key
            return _success({
                "usage": self.rate_limiter.usage(record.key),
                "limits": resolve_limits(self.windows, record.overrides()),
            })

    def _setup_rpc_routes(self):
        """Set up the JSON-RPC passthrough."""

        @self.app.post("/api/v1/rpc")
        async def rpc_proxy(request: Request):
            """Forward a JSON-RPC request or batch to the node."""
            try:
                body = await request.json()
            except (JSONDecodeError, UnicodeDecodeError):
                return JSONResponse(status_code=400, content=_rpc_error(-32700, "Parse error"))

            is_batch = isinstance(body, list)
            entries: List[Any] = body if is_batch else [body]
            if not entries:
                return JSONResponse(status_code=400, content=_rpc_error(-32600, "Invalid Request: empty batch"))

            for entry in entries:
                if not isinstance(entry, dict):
                    return JSONResponse(status_code=400, content=_rpc_error(-32600, "Invalid Request"))
                if entry.get("jsonrpc") != "2.0":
                    return JSONResponse(
                        status_code=400,
                        content=_rpc_error(-32600, 'Invalid Request: jsonrpc must be "2.0"', entry.get("id")),
                    )
                if not isinstance(entry.get("method"), str) or not entry["method"]:
                    return JSONResponse(
                        status_code=400,
                        content=_rpc_error(-32600, "Invalid Request: method is required", entry.get("id")),
                    )

            try:
                status_code, result = await self.chain_client.forward(body)
            except ExternalServiceError as exc:
                return JSONResponse(status_code=502, content=_rpc_error(-32603, exc.message))

            if status_code < 200 or status_code >= 300 or result is None:
                self.logger.error("RPC node rejected proxied request", status_code=status_code)
                return JSONResponse(
                    status_code=502,
                    content=_rpc_error(-32603, "Internal error: RPC node unavailable"),
                )
            return JSONResponse(content=result)

    def _setup_chain_routes(self):
        """Set up convenience query routes."""

        @self.app.get("/api/v1/block")
        async def get_block(number: Optional[str] = None, block_hash: Optional[str] = Query(None, alias="hash")):
            if not number and not block_hash:
                block_number = await self.chain_client.get_block_number()
                return _success({"latestBlock": str(block_number)})

            if block_hash:
                if not is_hash(block_hash):
                    raise ValidationError("Invalid block hash")
                block = await self.chain_client.get_block(block_hash)
            else:
                try:
                    block_number = int(number)
                except ValueError:
                    raise ValidationError("Invalid block number")
                if block_number < 0:
                    raise ValidationError("Invalid block number")
                block = await self.chain_client.get_block(block_number)

            if block is None:
                raise NotFoundError("Block not found")
            return _success(block)

        @self.app.get("/api/v1/tx/{tx_hash}")
        async def get_transaction(tx_hash: str):
            if not is_hash(tx_hash):
                raise ValidationError("Invalid transaction hash")

            tx = await self.chain_client.get_transaction(tx_hash)
            if tx is None:
                raise NotFoundError("Transaction not found")
            return _success(tx)

        @self.app.get("/api/v1/tx/{tx_hash}/receipt")
        async def get_transaction_receipt(tx_hash: str):
            if not is_hash(tx_hash):
                raise ValidationError("Invalid transaction hash")

            receipt = await self.chain_client.get_transaction_receipt(tx_hash)
            if receipt is None:
                raise NotFoundError("Transaction receipt not found (transaction may be pending)")
            return _success(receipt)

        @self.app.get("/api/v1/gas/price")
        async def get_gas_price():
            return _success(await self.chain_client.get_gas_price())

        @self.app.post("/api/v1/gas/estimate")
        async def estimate_gas(body: EstimateGasRequest):
            if not body.to:
                raise ValidationError("to address is required")
            if not is_address(body.to):
                raise ValidationError("Invalid to address")
            if body.from_address and not is_address(body.from_address):
                raise ValidationError("Invalid from address")

            try:
                estimate = await self.chain_client.estimate_gas(
                    body.to,
                    from_address=body.from_address,
                    value=str(body.value) if body.value is not None else None,
                    data=body.data,
                )
            except ValueError as exc:
                raise ValidationError(str(exc))
            return _success(estimate)

        @self.app.get("/api/v1/gas/history")
        async def get_fee_history(blocks: int = 10):
            if blocks < 1 or blocks > 1024:
                raise ValidationError("blocks must be between 1 and 1024")
            return _success(await self.chain_client.get_fee_history(blocks))

        @self.app.get("/api/v1/wallet/balance/{address}")
        async def get_balance(address: str):
            if not is_address(address):
                raise ValidationError("Invalid Ethereum address")
            balance = await self.chain_client.get_balance(address)
            return _success({"address": address, **balance})

        @self.app.get("/api/v1/wallet/nonce/{address}")
        async def get_nonce(address: str):
            if not is_address(address):
                raise ValidationError("Invalid Ethereum address")
            nonce = await self.chain_client.get_transaction_count(address)
            return _success({"address": address, "nonce": nonce})

        @self.app.get("/api/v1/token/balance")
        async def get_token_balance(token: Optional[str] = None, wallet: Optional[str] = None):
            if not token or not wallet:
                raise ValidationError("Both token and wallet query parameters are required")
            if not is_address(token):
                raise ValidationError("Invalid token address")
            if not is_address(wallet):
                raise ValidationError("Invalid wallet address")

            try:
                balance = await self.chain_client.get_token_balance(token, wallet)
            except ValueError:
                balance = None
            if balance is None:
                raise NotFoundError("No ERC-20 token at this address")
            return _success({"token": token, "wallet": wallet, **balance})

        @self.app.get("/api/v1/token/info/{address}")
        async def get_token_info(address: str):
            if not is_address(address):
                raise ValidationError("Invalid token address")

            try:
                info = await self.chain_client.get_token_info(address)
            except ValueError:
                info = None
            if info is None:
                raise NotFoundError("No ERC-20 token at this address")
            return _success(info)


def create_app(config: Optional[GatewayConfig] = None):
    """Create FastAPI application."""
    service = GatewayService(config=config)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
