"""
Hosting provider API client

Authenticated REST client for listing, controlling and ordering servers.
Every operation goes through the same pipeline:

    validate input -> client-side throttle -> request with retry -> validate payload

Usage:
    from rdpanel.common.client import HostingClient

    async with HostingClient(api_key="...") as client:
        servers = await client.list_servers()
        await client.power_action(servers[0].id, "stop")

Rate Limits:
    - 60 requests per rolling 60 s window per client instance (fails fast locally)
    - Provider 429 responses surface as RATE_LIMITED and are never retried
    - No-response failures and 5xx are retried with a fixed delay
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from rdpanel.config.constants import (
    API_KEY_PATTERN,
    DEFAULT_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    MAX_RETRIES,
)
from rdpanel.config.settings import Settings, get_settings, mask_secret
from rdpanel.core.errors import ApiError, ErrorKind, validation_error
from rdpanel.core.types import (
    BalanceResponse,
    Distribution,
    Plan,
    PowerAction,
    PowerResponse,
    PurchaseRequest,
    PurchaseResponse,
    Region,
    Server,
    StockInfo,
)
from rdpanel.observability.logger import get_logger
from rdpanel.resilience.rate_limiter import RateLimiter
from rdpanel.resilience.retry import RetryExecutor

logger = get_logger(__name__)

T = TypeVar("T")

_API_KEY_RE = re.compile(API_KEY_PATTERN)
_SERVER_ID_RE = re.compile(r"[A-Za-z0-9_.-]+")


def is_valid_api_key(api_key: Any) -> bool:
    """Check the key format: 32-64 letters, digits, hyphens or underscores."""
    return isinstance(api_key, str) and _API_KEY_RE.fullmatch(api_key) is not None


class ClientConfig(BaseModel):
    """Operational parameters of a client. Immutable once built."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = DEFAULT_BASE_URL
    timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)  # seconds
    max_retries: int = Field(default=MAX_RETRIES, ge=0)
    retry_delay: float = Field(default=DEFAULT_RETRY_DELAY, ge=0)  # seconds


def build_config(overrides: Mapping[str, Any] | None = None) -> ClientConfig:
    """Fill absent fields from defaults and validate once.

    Args:
        overrides: Partial configuration; None values count as absent

    Returns:
        Validated configuration

    Raises:
        ApiError: VALIDATION_ERROR (code INVALID_CONFIG) for bad values
    """
    values = {k: v for k, v in (overrides or {}).items() if v is not None}
    try:
        return ClientConfig(**values)
    except ValidationError as e:
        raise validation_error(
            "Invalid client configuration",
            code="INVALID_CONFIG",
            errors=_error_messages(e),
        ) from e


class HostingClient:
    """Hosting provider API client."""

    # API paths
    SERVERS_PATH = "/servers"
    SERVER_PATH = "/servers/{server_id}"
    POWER_PATH = "/servers/{server_id}/power/{action}"
    BALANCE_PATH = "/billing/balance"
    PLANS_PATH = "/plans"
    STOCK_PATH = "/stock"
    REGIONS_PATH = "/regions"
    DISTROS_PATH = "/distros"
    ORDER_PATH = "/order"

    def __init__(
        self,
        api_key: str,
        config: ClientConfig | Mapping[str, Any] | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            api_key: Provider API key (32-64 chars of A-Z, a-z, 0-9, '-', '_')
            config: ClientConfig or partial overrides of the defaults
            rate_limiter: Throttle to use (a private one is created if omitted)
            transport: httpx transport override (tests use httpx.MockTransport)
            sleep: Delay function used between retries

        Raises:
            ApiError: VALIDATION_ERROR (code INVALID_API_KEY) for a malformed key,
                before any network interaction
        """
        if not is_valid_api_key(api_key):
            raise validation_error("Invalid API key format", code="INVALID_API_KEY")

        self.config = config if isinstance(config, ClientConfig) else build_config(config)
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self._retry = RetryExecutor(
            max_retries=self.config.max_retries,
            delay=self.config.retry_delay,
            sleep=sleep,
        )
        self._http = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            headers={
                "Authorization": api_key,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

        logger.debug(
            "Hosting client initialized",
            extra={"api_key": mask_secret(api_key), "base_url": self.config.base_url},
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self._http.aclose()

    aclose = close

    async def __aenter__(self) -> "HostingClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # ==================== Servers ====================

    async def list_servers(self) -> list[Server]:
        """
        List all servers of the account.

        Returns:
            Servers in provider order. A payload that is not a list yields an
            empty list (logged), so consumers can always iterate.
        """
        response = await self._request("GET", self.SERVERS_PATH, name="list_servers")
        data = self._json(response)

        if not isinstance(data, list):
            logger.warning(
                "Server response was not a list",
                extra={"payload_type": type(data).__name__},
            )
            return []

        return self._validate(TypeAdapter(list[Server]), data, response, "list_servers")

    async def get_server(self, server_id: str) -> Server:
        """Get one server. An unknown id surfaces as API_ERROR (404)."""
        server_id = self._require_server_id(server_id)
        response = await self._request(
            "GET", self.SERVER_PATH.format(server_id=server_id), name="get_server"
        )
        return self._validate(TypeAdapter(Server), self._json(response), response, "get_server")

    async def power_action(self, server_id: str, action: PowerAction | str) -> PowerResponse:
        """
        Start, stop or reset a server.

        Args:
            server_id: Server identifier
            action: One of reset, start, stop

        Returns:
            Provider acknowledgement, e.g. {"status": true}
        """
        server_id = self._require_server_id(server_id)
        action = self._require_action(action)

        response = await self._request(
            "POST",
            self.POWER_PATH.format(server_id=server_id, action=action.value),
            name="power_action",
        )
        return self._validate(
            TypeAdapter(PowerResponse), self._json(response), response, "power_action"
        )

    # ==================== Billing & catalog ====================

    async def get_balance(self) -> BalanceResponse:
        """Get the account balance (validated shape: {"balance": str})."""
        response = await self._request("GET", self.BALANCE_PATH, name="get_balance")
        return self._validate(
            TypeAdapter(BalanceResponse), self._json(response), response, "get_balance"
        )

    async def get_plans(self) -> list[Plan]:
        return await self._get_list(self.PLANS_PATH, Plan, "get_plans")

    async def get_stock(self) -> list[StockInfo]:
        return await self._get_list(self.STOCK_PATH, StockInfo, "get_stock")

    async def get_regions(self) -> list[Region]:
        return await self._get_list(self.REGIONS_PATH, Region, "get_regions")

    async def get_distros(self) -> list[Distribution]:
        return await self._get_list(self.DISTROS_PATH, Distribution, "get_distros")

    async def purchase_server(
        self, request: PurchaseRequest | Mapping[str, Any]
    ) -> PurchaseResponse:
        """
        Order a new server.

        Args:
            request: distro_id, region_id and plan_id, all positive integers

        Returns:
            {"success": bool, "server_id": int}
        """
        if not isinstance(request, PurchaseRequest):
            try:
                request = PurchaseRequest.model_validate(request)
            except ValidationError as e:
                raise validation_error(
                    "Invalid purchase request",
                    errors=_error_messages(e),
                ) from e

        response = await self._request(
            "POST", self.ORDER_PATH, json=request.model_dump(), name="purchase_server"
        )
        return self._validate(
            TypeAdapter(PurchaseResponse), self._json(response), response, "purchase_server"
        )

    # ==================== Internals ====================

    async def _get_list(self, path: str, model: type[T], name: str) -> list[T]:
        response = await self._request("GET", path, name=name)
        return self._validate(TypeAdapter(list[model]), self._json(response), response, name)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        name: str,
    ) -> httpx.Response:
        """Throttle, then send with retries. Only ApiError escapes."""
        self.rate_limiter.check_limit()

        async def attempt() -> httpx.Response:
            response = await self._http.request(method, path, json=json)
            response.raise_for_status()
            return response

        return await self._retry.execute(attempt, name=name)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                ErrorKind.API_ERROR,
                "The server returned a response that is not valid JSON.",
                code="INVALID_RESPONSE",
                status=response.status_code,
            ) from e

    @staticmethod
    def _validate(adapter: TypeAdapter[T], data: Any, response: httpx.Response, name: str) -> T:
        try:
            return adapter.validate_python(data)
        except ValidationError as e:
            logger.warning(
                f"Unexpected response shape from {name}",
                extra={"errors": e.error_count()},
            )
            raise ApiError(
                ErrorKind.API_ERROR,
                "The server returned an unexpected response.",
                code="INVALID_RESPONSE",
                status=response.status_code,
                details={"errors": _error_messages(e)},
            ) from e

    @staticmethod
    def _require_server_id(server_id: Any) -> str:
        if isinstance(server_id, int) and not isinstance(server_id, bool):
            server_id = str(server_id)
        if isinstance(server_id, str):
            server_id = server_id.strip()
        # ids become a single path segment
        if (
            not isinstance(server_id, str)
            or not _SERVER_ID_RE.fullmatch(server_id)
            or server_id in (".", "..")
        ):
            raise validation_error(
                "Invalid server id", field="server_id", value=str(server_id)
            )
        return server_id

    @staticmethod
    def _require_action(action: Any) -> PowerAction:
        try:
            return PowerAction(action)
        except ValueError:
            raise validation_error(
                f"Invalid power action: {action!r}",
                field="action",
                value=str(action),
                allowed=[a.value for a in PowerAction],
            ) from None


def _error_messages(error: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
        for err in error.errors()
    ]


def client_from_settings(
    api_key: str, settings: Settings | None = None, **kwargs: Any
) -> HostingClient:
    """Build a client configured from application settings."""
    settings = settings or get_settings()
    return HostingClient(
        api_key,
        settings.client_overrides(),
        rate_limiter=RateLimiter(
            max_requests=settings.rate_limit_requests, window=settings.rate_limit_window
        ),
        **kwargs,
    )


def limited_client_factory(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[str], HostingClient]:
    """
    Return a factory building short-lived clients that share one throttle per key.

    Web requests and bot commands open a client per call; keeping the limiter
    per API key preserves each account's request budget across those calls.
    """
    settings = settings or get_settings()
    limiters: dict[str, RateLimiter] = {}

    def factory(api_key: str) -> HostingClient:
        limiter = limiters.get(api_key)
        if limiter is None:
            limiter = limiters[api_key] = RateLimiter(
                max_requests=settings.rate_limit_requests, window=settings.rate_limit_window
            )
        return HostingClient(
            api_key, settings.client_overrides(), rate_limiter=limiter, transport=transport
        )

    return factory
