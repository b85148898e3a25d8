"""
Adapters package for the Gateway Service.

Contains the HTTP client for the upstream Ethereum node. The adapter
encapsulates:

- The JSON-RPC request shape
- Retry policy and circuit breaker
- Error handling that maps to shared errors
"""

from .chain_client import ChainClient

__all__ = ["ChainClient"]
