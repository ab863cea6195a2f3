"""Tests for the NEAR RPC view client."""

import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from near_fanout.oracle.rpc import NearRpcClient, RpcError


def _view_result(value: object) -> dict:
    return {"jsonrpc": "2.0", "result": {"result": list(json.dumps(value).encode())}}


class TestViewUncached:
    """Tests for result decoding."""

    @pytest.mark.asyncio
    async def test_decodes_result_bytes(self) -> None:
        client = NearRpcClient("https://rpc.example")
        with patch.object(client, "_post", new=AsyncMock(return_value=_view_result({"decimals": 18}))) as post:
            result = await client.view_uncached("token.near", "ft_metadata")

        assert result == {"decimals": 18}
        params = post.await_args.args[0]["params"]
        assert params["request_type"] == "call_function"
        assert params["account_id"] == "token.near"
        assert params["method_name"] == "ft_metadata"
        assert json.loads(base64.b64decode(params["args_base64"])) == {}

    @pytest.mark.asyncio
    async def test_rpc_error_raises(self) -> None:
        client = NearRpcClient("https://rpc.example")
        with patch.object(client, "_post", new=AsyncMock(return_value={"error": {"name": "HANDLER_ERROR"}})):
            with pytest.raises(RpcError, match="HANDLER_ERROR"):
                await client.view_uncached("token.near", "ft_metadata")

    @pytest.mark.asyncio
    async def test_execution_error_raises(self) -> None:
        client = NearRpcClient("https://rpc.example")
        body = {"result": {"error": "MethodNotFound"}}
        with patch.object(client, "_post", new=AsyncMock(return_value=body)):
            with pytest.raises(RpcError, match="MethodNotFound"):
                await client.view_uncached("token.near", "ft_metadata")


class TestViewCache:
    """Tests for the Redis view cache."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_rpc(self, mock_redis: MagicMock) -> None:
        mock_redis.get = AsyncMock(return_value=b'{"symbol": "SHIT"}')
        client = NearRpcClient("https://rpc.example", redis=mock_redis)

        with patch.object(client, "_post", new=AsyncMock()) as post:
            result = await client.view("shit.near", "ft_metadata")

        assert result == {"symbol": "SHIT"}
        post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cache_miss_stores_result(self, mock_redis: MagicMock) -> None:
        client = NearRpcClient("https://rpc.example", redis=mock_redis, cache_ttl_seconds=60)

        with patch.object(client, "_post", new=AsyncMock(return_value=_view_result("1000"))):
            result = await client.view("shit.near", "ft_total_supply")

        assert result == "1000"
        key, value = mock_redis.set.await_args.args
        assert key == 'near_fanout:view:shit.near:ft_total_supply:{}'
        assert value == '"1000"'
        assert mock_redis.set.await_args.kwargs == {"ex": 60}

    @pytest.mark.asyncio
    async def test_cache_failure_falls_through(self, mock_redis: MagicMock) -> None:
        mock_redis.get = AsyncMock(side_effect=ConnectionError("redis down"))
        client = NearRpcClient("https://rpc.example", redis=mock_redis)

        with patch.object(client, "_post", new=AsyncMock(return_value=_view_result(7))):
            assert await client.view("x.near", "get_number") == 7
