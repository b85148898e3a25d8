"""
Gatekeeper middleware for the Gateway.

Sits in front of every ``/api/`` route: admin routes need the shared admin
secret, everything else needs a valid API key with quota left in all rate
limit windows.
"""

import hmac
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.errors import AuthenticationError, GatewayException, RateLimitError, ServiceError
from shared.logging import get_logger, set_api_key_context
from shared.metrics import MetricsCollector

from service_rpc_gateway.app.keystore import ApiKeyRecord, ApiKeyStore
from service_rpc_gateway.app.ratelimit import MultiWindowRateLimiter, RateLimitResult


ADMIN_SECRET_HEADER = "x-admin-secret"
API_KEY_HEADER = "x-api-key"
KEY_STORE_UNAVAILABLE = "KEY_STORE_UNAVAILABLE"


@contextmanager
def key_store_writes():
    """Turn a failed key file write into a 503 the client can retry."""
    try:
        yield
    except OSError as exc:
        get_logger("gateway.keystore").error("API key file write failed", error=str(exc))
        raise ServiceError("API key store is temporarily unavailable", code=KEY_STORE_UNAVAILABLE) from exc


@dataclass
class GateDecision:
    """What the gatekeeper decided for one request."""

    scope: str                                   # "public", "admin" or "key"
    record: Optional[ApiKeyRecord] = None
    rate_limit: Optional[RateLimitResult] = None


class Gatekeeper:
    """Authentication and admission checks, independent of the ASGI plumbing."""

    def __init__(self,
                 key_store: ApiKeyStore,
                 rate_limiter: MultiWindowRateLimiter,
                 admin_secret: str,
                 api_prefix: str = "/api/",
                 admin_prefix: str = "/api/admin/",
                 health_path: str = "/api/health",
                 metrics: Optional[MetricsCollector] = None):
        self.key_store = key_store
        self.rate_limiter = rate_limiter
        self.admin_secret = admin_secret
        self.api_prefix = api_prefix
        self.admin_prefix = admin_prefix
        self.health_path = health_path
        self.metrics = metrics
        self.logger = get_logger("gateway.gatekeeper")

    def is_public(self, path: str) -> bool:
        return not path.startswith(self.api_prefix) or path == self.health_path

    def is_admin(self, path: str) -> bool:
        return path.startswith(self.admin_prefix) or path == self.admin_prefix.rstrip("/")

    def authorize(self, path: str, headers) -> GateDecision:
        """Decide whether a request may proceed.

        Raises AuthenticationError or RateLimitError when it may not, and
        ServiceError when the key file cannot be written.
        """
        if self.is_public(path):
            return GateDecision(scope="public")

        if self.is_admin(path):
            self._check_admin_secret(headers.get(ADMIN_SECRET_HEADER))
            return GateDecision(scope="admin")

        with key_store_writes():
            result = self.key_store.validate(headers.get(API_KEY_HEADER))
        if not result.valid:
            self._count("api_key_validations_total", result=result.error.value.lower())
            self.logger.warning("API key rejected", reason=result.error.value, path=path)
            raise AuthenticationError(result.error.message, code=result.error.value)

        record = result.record
        set_api_key_context(record.masked_key)
        self._count("api_key_validations_total", result="valid")

        rate_limit = self.rate_limiter.check_and_admit(record.key, record.overrides())
        if not rate_limit.allowed:
            self._count("rate_limit_rejections_total", window=rate_limit.limit_exceeded)
            self.logger.warning(
                "Rate limit exceeded",
                window=rate_limit.limit_exceeded,
                retry_after=rate_limit.retry_after,
                path=path,
            )
            raise GatekeeperRateLimitError(rate_limit)

        return GateDecision(scope="key", record=record, rate_limit=rate_limit)

    def _check_admin_secret(self, presented: Optional[str]):
        if not presented or not hmac.compare_digest(
            presented.encode("utf-8"), self.admin_secret.encode("utf-8")
        ):
            self.logger.warning("Admin secret rejected")
            raise AuthenticationError("Invalid admin secret", code="INVALID_ADMIN_SECRET")

    def _count(self, metric_name: str, **labels):
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name, **labels)


class GatekeeperRateLimitError(RateLimitError):
    """RateLimitError that also reports per-window remaining quota headers."""

    def __init__(self, result: RateLimitResult):
        super().__init__(result.limit_exceeded, result.retry_after, result.remaining)
        self.result = result

    def headers(self):
        headers = super().headers()
        for window in self.result.windows:
            headers[f"X-RateLimit-Remaining-{window.header}"] = str(self.result.remaining[window.field])
        return headers


class GatekeeperMiddleware(BaseHTTPMiddleware):
    """Runs the Gatekeeper for each request and renders its rejections."""

    def __init__(self, app, gatekeeper: Gatekeeper):
        super().__init__(app)
        self.gatekeeper = gatekeeper

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            decision = self.gatekeeper.authorize(request.url.path, request.headers)
        except GatewayException as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_payload(),
                headers=exc.headers(),
            )

        if decision.scope != "key":
            return await call_next(request)

        request.state.api_key = decision.record
        request.state.rate_limit = decision.rate_limit

        response = await call_next(request)
        for name, value in decision.rate_limit.headers().items():
            response.headers[name] = value
        return response
