"""Price, metadata and contract view lookups."""

from near_fanout.oracle.prices import (
    NEAR_DECIMALS,
    NEAR_METADATA,
    OracleError,
    PriceOracle,
    TokenInfo,
    TokenMetadata,
)
from near_fanout.oracle.rpc import NearRpcClient, RpcError

__all__ = [
    "NEAR_DECIMALS",
    "NEAR_METADATA",
    "NearRpcClient",
    "OracleError",
    "PriceOracle",
    "RpcError",
    "TokenInfo",
    "TokenMetadata",
]
