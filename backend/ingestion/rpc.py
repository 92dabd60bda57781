"""Minimal async Ethereum JSON-RPC transport with timeout and bounded retries."""

from __future__ import annotations

import asyncio
import itertools
import random
from typing import Any, Sequence

import httpx
from loguru import logger

_RETRY_MAX_SLEEP_SECONDS = 10.0
_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "limit exceeded", "try again")


class RpcError(Exception):
    """JSON-RPC error object returned by a node."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message

    @property
    def is_rate_limited(self) -> bool:
        lowered = self.message.lower()
        return self.code == 429 or any(marker in lowered for marker in _RATE_LIMIT_MARKERS)


def _should_retry_exception(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS_CODES
    if isinstance(exc, RpcError):
        return exc.is_rate_limited
    return False


def _retry_sleep_seconds(base_delay: float, attempt: int) -> float:
    if base_delay <= 0:
        return 0.0
    backoff = min(base_delay * (2 ** max(attempt - 1, 0)), _RETRY_MAX_SLEEP_SECONDS)
    return backoff + random.uniform(0.0, base_delay / 4)


def to_hex_quantity(value: int) -> str:
    return hex(int(value))


def from_hex_quantity(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise ValueError(f"Unexpected quantity value: {value!r}")


class JsonRpcClient:
    """Thin wrapper around the handful of eth_* methods the log readers need."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 30.0,
        retry_count: int = 3,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = str(rpc_url)
        self.timeout = timeout
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self._ids = itertools.count(1)
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def request(self, method: str, params: Sequence[Any] = ()) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._send(method, payload)
            except Exception as exc:
                if not _should_retry_exception(exc) or attempt > self.retry_count:
                    raise
                delay = _retry_sleep_seconds(self.retry_delay, attempt)
                logger.warning(
                    "RPC {} attempt {}/{} failed: {}; retrying in {:.2f}s",
                    method,
                    attempt,
                    self.retry_count + 1,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)

    async def _send(self, method: str, payload: dict[str, Any]) -> Any:
        response = await self.client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise RpcError(method, None, f"unexpected response body {body!r}")
        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(method, error.get("code"), str(error.get("message", "")))
            raise RpcError(method, None, str(error))
        return body.get("result")

    async def block_number(self) -> int:
        return from_hex_quantity(await self.request("eth_blockNumber"))

    async def get_logs(
        self,
        *,
        address: str,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        params = {
            "address": address,
            "topics": list(topics),
            "fromBlock": to_hex_quantity(from_block),
            "toBlock": to_hex_quantity(to_block),
        }
        result = await self.request("eth_getLogs", [params])
        return list(result or [])

    async def get_block(self, number: int) -> dict[str, Any] | None:
        return await self.request("eth_getBlockByNumber", [to_hex_quantity(number), False])

    async def get_block_timestamp(self, number: int) -> int | None:
        block = await self.get_block(number)
        if not block or block.get("timestamp") is None:
            return None
        return from_hex_quantity(block["timestamp"])

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "JsonRpcClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
