"""
RPC Gateway Service package.

The gateway fronts an Ethereum JSON-RPC node, enforcing:
- Authentication: API keys from the durable key store, admin secret for key management
- Rate limiting: per-key counters over 10-minute, daily and monthly windows
- Circuit-breaking and retries for calls to the node

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: JSON-RPC client for the node.
- app.keystore: API key records and their JSON file store.
- app.ratelimit: Multi-window rate limiter.
- app.domain: Gatekeeper middleware.
"""
