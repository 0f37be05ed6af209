"""Resilient async HTTP layer for the mail REST API.

Every call is classified into an :class:`~tempmail_client.errors.ApiError`
on failure.  Transient failures are retried with exponential backoff; a
401 on a bearer request triggers exactly one token refresh and re-issue,
outside the transient retry budget.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import json
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from .config import HttpConfig, RetryConfig
from .errors import ApiError, AuthExpiredError, TransientNetworkError, classify_error
from .models import ProviderConfig
from .providers import ProviderRegistry
from .retry import SleepFn, with_retry
from .storage import Storage

logger = structlog.get_logger()

PROVIDER_HEADER = "X-API-Provider-Base-URL"

TokenRefresher = Callable[[], Awaitable["str | None"]]


class AuthMode(str, enum.Enum):
    """How a request authenticates.  Bearer and API key are never combined."""

    NONE = "none"
    BEARER = "bearer"
    API_KEY = "api_key"


@dataclasses.dataclass(frozen=True)
class ApiRequest:
    """A single REST call against one provider."""

    method: str
    path: str
    provider_id: str | None = None
    auth: AuthMode = AuthMode.NONE
    token: str | None = None
    json_body: Any = None
    params: dict[str, Any] | None = None
    content_type: str = "application/json"
    headers: dict[str, str] = dataclasses.field(default_factory=dict)
    # Token exchange and account creation are not idempotent
    retry: bool = True
    refresh_on_expiry: bool = True

    def with_token(self, token: str) -> ApiRequest:
        return dataclasses.replace(self, token=token)


def decode_body(response: httpx.Response) -> Any:
    """Best-effort JSON decode; empty or non-JSON bodies yield None."""
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def api_key_header(api_key: str) -> str:
    api_key = api_key.strip()
    return api_key if api_key.startswith("Bearer ") else f"Bearer {api_key}"


class ApiClient:
    """Issues classified, retried requests against the configured providers.

    Call :meth:`start` before use and :meth:`stop` when done, or use the
    client as an async context manager.
    """

    def __init__(
        self,
        http_config: HttpConfig,
        retry_config: RetryConfig,
        registry: ProviderRegistry,
        storage: Storage,
        *,
        api_key: str | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._http_config = http_config
        self._retry_config = retry_config
        self._registry = registry
        self._storage = storage
        self._api_key_override = api_key
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._refresher: TokenRefresher | None = None

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def set_token_refresher(self, refresher: TokenRefresher | None) -> None:
        """Register the callable invoked once when a bearer request gets a 401."""
        self._refresher = refresher

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._http_config.timeout_seconds),
            headers={"User-Agent": self._http_config.user_agent},
        )
        logger.info("api_client_started")

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("api_client_stopped")

    async def __aenter__(self) -> ApiClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def call(self, request: ApiRequest) -> httpx.Response:
        """Send *request*, retrying transient failures and refreshing once on 401.

        Raises the classified :class:`ApiError` when the call ultimately fails.
        """
        try:
            return await self._send_with_retry(request)
        except AuthExpiredError as exc:
            if not self._can_refresh(request):
                raise
            return await self._refresh_and_resend(request, exc)

    def _can_refresh(self, request: ApiRequest) -> bool:
        return (
            request.auth is AuthMode.BEARER
            and request.refresh_on_expiry
            and self._refresher is not None
        )

    async def _refresh_and_resend(
        self,
        request: ApiRequest,
        expired: AuthExpiredError,
    ) -> httpx.Response:
        refresher = self._refresher
        if refresher is None:
            raise expired
        logger.info("auth_expired_refreshing", method=request.method, path=request.path)
        try:
            new_token = await refresher()
        except ApiError as exc:
            logger.warning("token_refresh_failed", path=request.path, status=exc.status)
            raise AuthExpiredError(payload=expired.payload) from exc

        if not new_token:
            raise expired

        # Exactly one re-issue; a second 401 is surfaced, never refreshed again
        try:
            return await self._send_with_retry(request.with_token(new_token))
        except AuthExpiredError as exc:
            logger.warning("auth_expired_after_refresh", path=request.path)
            raise AuthExpiredError(payload=exc.payload) from exc

    async def _send_with_retry(self, request: ApiRequest) -> httpx.Response:
        if not request.retry:
            return await self._send_once(request)

        @with_retry(self._retry_config, sleep=self._sleep)
        async def _send() -> httpx.Response:
            return await self._send_once(request)

        return await _send()

    async def _send_once(self, request: ApiRequest) -> httpx.Response:
        if self._client is None:
            raise AssertionError("Client not started")

        provider = self._registry.resolve_provider(request.provider_id)
        url = f"{provider.base_url.rstrip('/')}{request.path}"
        headers = self._build_headers(request, provider)
        content = None
        if request.json_body is not None:
            content = json.dumps(request.json_body)
            headers["Content-Type"] = request.content_type

        try:
            response = await self._client.request(
                request.method,
                url,
                params=request.params,
                content=content,
                headers=headers,
            )
        except httpx.TransportError as exc:
            logger.warning("request_transport_error", method=request.method, url=url, error=str(exc))
            raise TransientNetworkError.from_exception(exc) from exc

        if response.is_success:
            logger.debug(
                "request_succeeded",
                method=request.method,
                url=url,
                status=response.status_code,
            )
            return response

        error = classify_error(response.status_code, decode_body(response))
        logger.info(
            "request_failed",
            method=request.method,
            url=url,
            status=error.status,
            error_class=type(error).__name__,
            retryable=error.retryable,
        )
        raise error

    def _build_headers(self, request: ApiRequest, provider: ProviderConfig) -> dict[str, str]:
        headers = {**request.headers, PROVIDER_HEADER: provider.base_url}

        if request.auth is AuthMode.BEARER:
            if not request.token:
                raise AuthExpiredError("No bearer token available for this request")
            headers["Authorization"] = f"Bearer {request.token}"
        elif request.auth is AuthMode.API_KEY:
            api_key = self._api_key_override or self._storage.load_api_key()
            if api_key:
                headers["Authorization"] = api_key_header(api_key)
            else:
                logger.debug("api_key_missing", path=request.path)
        return headers
