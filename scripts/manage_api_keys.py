#!/usr/bin/env python3
"""
Manage gateway API keys from a shell.

    python scripts/manage_api_keys.py create "my dapp" --per-day 5000
    python scripts/manage_api_keys.py list
    python scripts/manage_api_keys.py deactivate eth_...

Edits the key file in place; restart the gateway to pick up changes.
"""

from service_rpc_gateway.app.manage_keys import main


if __name__ == "__main__":
    raise SystemExit(main())
