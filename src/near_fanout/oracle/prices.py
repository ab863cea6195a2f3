"""Token price and metadata oracle.

Prices come from a periodically refreshed price list; metadata and total
supply fall back to contract views when a token is not listed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

import aiohttp

from near_fanout.ingestor.models import NATIVE_NEAR, WRAP_NEAR
from near_fanout.oracle.rpc import NearRpcClient, RpcError

logger = logging.getLogger(__name__)

NEAR_DECIMALS = 24
DEFAULT_REFRESH_INTERVAL_SECONDS = 5.0
DEFAULT_REQUEST_TIMEOUT = 30


class OracleError(Exception):
    """Raised when price or metadata for a token cannot be determined."""


@dataclass(frozen=True)
class TokenMetadata:
    name: str
    symbol: str
    decimals: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenMetadata:
        return cls(
            name=str(data["name"]),
            symbol=str(data["symbol"]),
            decimals=int(data["decimals"]),
        )


NEAR_METADATA = TokenMetadata(name="NEAR", symbol="NEAR", decimals=NEAR_DECIMALS)


@dataclass(frozen=True)
class TokenInfo:
    """One entry of the price list."""

    account_id: str
    price_usd: Decimal
    metadata: TokenMetadata
    total_supply: int
    circulating_supply: int

    @classmethod
    def from_dict(cls, account_id: str, data: dict[str, Any]) -> TokenInfo:
        return cls(
            account_id=account_id,
            price_usd=Decimal(str(data["price_usd_hardcoded"])),
            metadata=TokenMetadata.from_dict(data["metadata"]),
            total_supply=int(str(data.get("total_supply", 0))),
            circulating_supply=int(str(data.get("circulating_supply", 0))),
        )


class PriceOracle:
    """In-memory price list with background refresh.

    Args:
        prices_url: Endpoint returning ``{account_id: token_info}``.
        rpc: View client used for tokens missing from the list.
        refresh_interval_seconds: Delay between refreshes.
        session: Optional shared aiohttp session.
    """

    def __init__(
        self,
        prices_url: str,
        *,
        rpc: NearRpcClient | None = None,
        refresh_interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._prices_url = prices_url
        self._rpc = rpc
        self._refresh_interval = refresh_interval_seconds
        self._session = session
        self._owns_session = session is None
        self._tokens: dict[str, TokenInfo] = {}
        self._refresh_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self.refresh_failures = 0

    @property
    def known_tokens(self) -> int:
        return len(self._tokens)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT)
            )
            self._owns_session = True
        return self._session

    def load(self, payload: dict[str, Any]) -> int:
        """Replace the price list from a decoded payload.

        Malformed entries are skipped. ``near`` mirrors ``wrap.near``.
        An empty payload leaves the current list in place.

        Returns:
            Number of tokens loaded.
        """
        tokens: dict[str, TokenInfo] = {}
        for account_id, data in payload.items():
            try:
                tokens[account_id] = TokenInfo.from_dict(account_id, data)
            except (KeyError, TypeError, ValueError, InvalidOperation) as e:
                logger.debug("Skipping malformed price entry %s: %s", account_id, e)
        if not tokens:
            return 0
        if WRAP_NEAR in tokens:
            tokens[NATIVE_NEAR] = tokens[WRAP_NEAR]
        self._tokens = tokens
        return len(tokens)

    async def refresh(self) -> int:
        """Fetch the price list once.

        Raises:
            OracleError: If the list cannot be fetched or decoded.
        """
        session = self._get_session()
        try:
            async with session.get(self._prices_url) as response:
                response.raise_for_status()
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise OracleError(f"Failed to fetch price list: {e}") from e
        if not isinstance(payload, dict):
            raise OracleError("Price list is not an object")
        return self.load(payload)

    async def _run_refresh_loop(self) -> None:
        while self._stop_event and not self._stop_event.is_set():
            try:
                count = await self.refresh()
                logger.debug("Price list refreshed: %d tokens", count)
            except OracleError as e:
                self.refresh_failures += 1
                logger.warning("Failed to refresh prices: %s", e)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._refresh_interval)

    async def start(self) -> None:
        if self._refresh_task is not None:
            return
        self._stop_event = asyncio.Event()
        self._refresh_task = asyncio.create_task(self._run_refresh_loop())

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._refresh_task:
            self._refresh_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._refresh_task
            self._refresh_task = None
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def get_price(self, token_id: str) -> Decimal | None:
        """USD price of one whole token, or None if unknown.

        A listed price of zero is treated as unknown.
        """
        info = self._tokens.get(token_id)
        if info is None or info.price_usd <= 0:
            return None
        return info.price_usd

    async def get_metadata(self, token_id: str) -> TokenMetadata:
        """Name, symbol and decimals of a fungible token.

        Raises:
            OracleError: If the token is unlisted and the view call fails.
        """
        if token_id == NATIVE_NEAR:
            return NEAR_METADATA
        info = self._tokens.get(token_id)
        if info is not None:
            return info.metadata
        if self._rpc is None:
            raise OracleError(f"No metadata for {token_id}")
        try:
            data = await self._rpc.view(token_id, "ft_metadata")
            return TokenMetadata.from_dict(data)
        except (RpcError, KeyError, TypeError, ValueError) as e:
            raise OracleError(f"Failed to get metadata for {token_id}: {e}") from e

    async def get_total_supply(self, token_id: str) -> int:
        """Total supply in raw units.

        Raises:
            OracleError: If the supply cannot be determined.
        """
        info = self._tokens.get(token_id)
        if info is not None and info.total_supply > 0:
            return info.total_supply
        if self._rpc is None or token_id == NATIVE_NEAR:
            raise OracleError(f"No total supply for {token_id}")
        try:
            return int(str(await self._rpc.view(token_id, "ft_total_supply")))
        except (RpcError, ValueError) as e:
            raise OracleError(f"Failed to get total supply for {token_id}: {e}") from e

    async def get_decimals(self, token_id: str) -> int | None:
        """Decimals of a token, or None if unavailable."""
        try:
            return (await self.get_metadata(token_id)).decimals
        except OracleError as e:
            logger.debug("Decimals unavailable for %s: %s", token_id, e)
            return None
