"""NEAR JSON-RPC client for contract view calls.

This module provides a view-call client with:
- Redis caching of view results (1 hour by default)
- Retry logic with exponential backoff on transport errors
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any

import aiohttp
from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30


class RpcError(Exception):
    """Raised when a view call fails or returns an unusable result."""


def _encode_args(args: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(args, separators=(",", ":")).encode()).decode()


class NearRpcClient:
    """Async NEAR RPC client for ``call_function`` views.

    Args:
        rpc_url: JSON-RPC endpoint.
        redis: Optional Redis client used as a view-result cache.
        cache_ttl_seconds: TTL of cached view results.
        max_retries: Attempts per call on transport failure.
        retry_delay_seconds: Initial delay between attempts.
        session: Optional shared aiohttp session.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        session: aiohttp.ClientSession | None = None,
        cache_prefix: str = "near_fanout:view:",
    ) -> None:
        self._rpc_url = rpc_url
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._session = session
        self._owns_session = session is None
        self._cache_prefix = cache_prefix

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT)
            )
            self._owns_session = True
        return self._session

    def _cache_key(self, contract_id: str, method_name: str, args: dict[str, Any]) -> str:
        encoded = json.dumps(args, sort_keys=True, separators=(",", ":"))
        return f"{self._cache_prefix}{contract_id}:{method_name}:{encoded}"

    async def _get_cached(self, key: str) -> str | None:
        """Get value from cache."""
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str) -> None:
        """Set value in cache."""
        if not self._redis or self._cache_ttl <= 0:
            return
        try:
            await self._redis.set(key, value, ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        session = self._get_session()
        last_error: Exception | None = None
        delay = self._retry_delay
        for attempt in range(self._max_retries):
            try:
                async with session.post(self._rpc_url, json=payload) as response:
                    response.raise_for_status()
                    body: dict[str, Any] = await response.json(content_type=None)
                    return body
            except (aiohttp.ClientError, TimeoutError) as e:
                last_error = e
                logger.warning(
                    "RPC request failed (attempt %d/%d): %s",
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
        raise RpcError(f"RPC request failed after all retries: {last_error}")

    async def view_uncached(self, contract_id: str, method_name: str, args: dict[str, Any] | None = None) -> Any:
        """Call a view method and decode its JSON result.

        Raises:
            RpcError: On transport failure, RPC error, or non-JSON result.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": "dontcare",
            "method": "query",
            "params": {
                "request_type": "call_function",
                "finality": "final",
                "account_id": contract_id,
                "method_name": method_name,
                "args_base64": _encode_args(args or {}),
            },
        }
        body = await self._post(payload)
        if "error" in body:
            raise RpcError(f"{contract_id}.{method_name} failed: {body['error']}")

        result = body.get("result") or {}
        raw = result.get("result")
        if not isinstance(raw, list):
            raise RpcError(f"{contract_id}.{method_name} returned no result: {result.get('error', result)}")
        try:
            return json.loads(bytes(raw).decode())
        except (ValueError, UnicodeDecodeError) as e:
            raise RpcError(f"{contract_id}.{method_name} returned invalid JSON: {e}") from e

    async def view(self, contract_id: str, method_name: str, args: dict[str, Any] | None = None) -> Any:
        """Cached variant of ``view_uncached``."""
        key = self._cache_key(contract_id, method_name, args or {})
        cached = await self._get_cached(key)
        if cached is not None:
            return json.loads(cached)

        value = await self.view_uncached(contract_id, method_name, args)
        await self._set_cached(key, json.dumps(value))
        return value

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
