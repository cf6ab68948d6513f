"""Read-only JSON-RPC chain client."""
from .arc_client import ArcChainClient
from .base import JsonRpcClient
from .exceptions import ChainRPCError

__all__ = ["ArcChainClient", "JsonRpcClient", "ChainRPCError"]
