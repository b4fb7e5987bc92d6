"""
Base payment client implementing shared concerns: http, error classification, retry, logging.

Concrete providers subclass and implement provider-specific request/response mapping.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.ports.payment_gateway import (
    GatewayTerminalError,
    GatewayTransientError,
    GatewayValidationError,
)


logger = get_logger(__name__)

T = TypeVar("T")

# 4xx codes that mean the request body was rejected and may succeed if resubmitted differently
VALIDATION_STATUS_CODES = frozenset({400, 422})
TRANSIENT_STATUS_CODES = frozenset({408, 429})


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        base_url: str,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeouts_cfg = timeouts or {"connect": 3.0, "read": 10.0, "write": 10.0, "total": 15.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._timeouts_cfg["total"],
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
        )

    def default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "Content-Type": "application/json"}

    @property
    def client(self) -> httpx.AsyncClient:
        # Created lazily and kept open for reuse; aclose() releases it.
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self.timeouts,
                headers=self.default_headers(),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """Send one request and classify failures into the gateway error taxonomy."""
        try:
            resp = await self.client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            self._log_error("gateway_timeout", method=method, path=path, error=str(exc))
            raise GatewayTransientError(f"{self.provider} request timed out", provider=self.provider) from exc
        except httpx.TransportError as exc:
            self._log_error("gateway_transport_error", method=method, path=path, error=str(exc))
            raise GatewayTransientError(f"{self.provider} unreachable: {exc}", provider=self.provider) from exc

        body = self._decode(resp)
        if resp.is_success:
            self._log("gateway_response", method=method, path=path, status_code=resp.status_code)
            return body

        message, messages = self._error_message(body, resp)
        status_code = resp.status_code
        if status_code >= 500 or status_code in TRANSIENT_STATUS_CODES:
            self._log_error("gateway_transient_error", method=method, path=path, status_code=status_code)
            raise GatewayTransientError(message, provider=self.provider, status_code=status_code)
        if status_code in VALIDATION_STATUS_CODES:
            logger.warning(
                "gateway_validation_error",
                provider=self.provider,
                method=method,
                path=path,
                status_code=status_code,
                validation_messages=messages,
            )
            raise GatewayValidationError(
                message,
                provider=self.provider,
                status_code=status_code,
                validation_messages=messages,
            )
        self._log_error("gateway_terminal_error", method=method, path=path, status_code=status_code)
        raise GatewayTerminalError(message, provider=self.provider, status_code=status_code, details={"body": body})

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Retry idempotent calls on transient failures only."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(GatewayTransientError),
            reraise=True,
        ):
            with attempt:
                return await fn()

    @staticmethod
    def _decode(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {"raw": resp.text}
        return data if isinstance(data, dict) else {"raw": data}

    def _error_message(self, body: dict[str, Any], resp: httpx.Response) -> tuple[str, dict]:
        """Provider-specific error parsing; returns (message, field messages)."""
        return f"{self.provider} responded with HTTP {resp.status_code}", {}

    # Helpers
    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )

    def _log_error(self, event: str, **kwargs) -> None:
        logger.error(event, provider=self.provider, **kwargs)
