"""
Operator CLI for the API key file.

Works on the key file directly, for hosts where the admin HTTP API is not
reachable. A running gateway only sees changes made here after a restart.
"""

import argparse
import json
import os
import sys
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from service_rpc_gateway.app.keystore import ApiKeyStore


DONE_MESSAGES = {
    "activate": "API key activated",
    "deactivate": "API key deactivated",
    "delete": "API key deleted",
    "set-limits": "API key limits updated",
}


def _default_keys_file() -> str:
    explicit = os.getenv("GATEWAY_API_KEYS_FILE")
    if explicit:
        return explicit
    data_dir = os.getenv("GATEWAY_DATA_DIR") or os.getenv("DATA_DIR") or "./data"
    return os.path.join(data_dir, "api-keys.json")


def _limits_from_args(args: argparse.Namespace) -> dict:
    limits = {}
    if args.per_10min is not None:
        limits["per10Min"] = args.per_10min
    if args.per_day is not None:
        limits["perDay"] = args.per_day
    if args.per_month is not None:
        limits["perMonth"] = args.per_month
    return limits


def _metadata_from_args(pairs: Optional[List[str]]) -> Optional[dict]:
    if not pairs:
        return None
    metadata = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"metadata must be NAME=VALUE, got {pair!r}")
        metadata[name] = value
    return metadata


def _add_limit_flags(parser: argparse.ArgumentParser):
    parser.add_argument("--per-10min", type=int, default=None, help="Requests per 10 minutes")
    parser.add_argument("--per-day", type=int, default=None, help="Requests per day")
    parser.add_argument("--per-month", type=int, default=None, help="Requests per 30 days")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage gateway API keys in the key file.")
    parser.add_argument("--keys-file", default=_default_keys_file(), help="Path to api-keys.json")
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Issue a new key")
    create.add_argument("name", help="Human readable label")
    create.add_argument("--meta", action="append", metavar="NAME=VALUE", help="Metadata entry (repeatable)")
    _add_limit_flags(create)

    commands.add_parser("list", help="List keys, newest first")

    for name, help_text in (
        ("show", "Show one key"),
        ("activate", "Re-enable a key"),
        ("deactivate", "Disable a key without deleting it"),
        ("delete", "Delete a key"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("key", help="Full API key")

    set_limits = commands.add_parser("set-limits", help="Override limits for a key")
    set_limits.add_argument("key", help="Full API key")
    _add_limit_flags(set_limits)

    return parser


def run(args: argparse.Namespace, out=None) -> int:
    out = out or sys.stdout
    store = ApiKeyStore(args.keys_file)

    if args.command == "create":
        limits = _limits_from_args(args)
        record = store.create(args.name, limits or None, _metadata_from_args(args.meta))
        print(json.dumps(record.to_dict(), indent=2), file=out)
        print("Store this API key securely. It will not be shown again in full.", file=out)
        return 0

    if args.command == "list":
        print(json.dumps([record.to_masked_dict() for record in store.list()], indent=2), file=out)
        return 0

    if args.command == "show":
        record = store.get(args.key)
        if record is None:
            print("API key not found", file=out)
            return 1
        print(json.dumps(record.to_masked_dict(), indent=2), file=out)
        return 0

    if args.command == "set-limits":
        limits = _limits_from_args(args)
        if not limits:
            print("Provide at least one of --per-10min, --per-day, --per-month", file=out)
            return 2
        updated = store.update_limits(args.key, limits)
    elif args.command == "activate":
        updated = store.activate(args.key)
    elif args.command == "deactivate":
        updated = store.deactivate(args.key)
    else:
        updated = store.delete(args.key)

    if not updated:
        print("API key not found", file=out)
        return 1
    print(DONE_MESSAGES[args.command], file=out)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except (ValueError, PydanticValidationError) as exc:
        print(f"[manage-keys] invalid input: {exc}", file=sys.stderr)
        return 2
    except OSError as exc:
        print(f"[manage-keys] failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
