#!/usr/bin/env python3
"""Operator CLI for the secret broker.

Reads settings from the environment (SECRET_PROVIDER, VAULT_ENDPOINT, ...)
and runs one command inside a broker lifespan. Values are never printed in
full: ``get`` reports existence and an 8-character preview.

Examples:
    secrets_admin.py health
    secrets_admin.py list --prefix auth/
    secrets_admin.py set database/password 'N3w-Passw0rd-2026'
    secrets_admin.py generate auth/jwt-secret --kind token --store
    secrets_admin.py rotate encryption/primary-key
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from config.settings import Settings, get_settings
from libs.common.logging import LogContext, configure_logging, get_logger, log_with_context
from libs.secret_broker import (
    SecretBroker,
    SecretKind,
    SecretManagerError,
    broker_lifespan,
    validate_secret_value,
)
from libs.secret_broker.accessors import preview

logger = get_logger(__name__)

Command = Callable[[SecretBroker, argparse.Namespace], Awaitable[int]]


async def cmd_health(broker: SecretBroker, args: argparse.Namespace) -> int:
    report = await broker.health()
    print(f"provider: {report.provider}")
    print(f"status:   {report.status}")
    print(f"cached:   {report.cache_entries}")
    if report.error:
        print(f"error:    {report.error}")
    return 0 if report.is_healthy else 1


async def cmd_get(broker: SecretBroker, args: argparse.Namespace) -> int:
    lookup = await broker.lookup(args.key, actor=args.actor)
    if lookup.value is None:
        suffix = f" ({lookup.error})" if lookup.error else ""
        print(f"{args.key}: missing [{lookup.status.value}]{suffix}")
        return 1
    if isinstance(lookup.value, dict):
        shown = "fields: " + ", ".join(sorted(lookup.value))
    else:
        shown = preview(lookup.value) or ""
    print(f"{args.key}: present [{lookup.status.value}] {shown}")
    return 0


async def cmd_list(broker: SecretBroker, args: argparse.Namespace) -> int:
    for key in await broker.list_secrets(args.prefix):
        print(key)
    return 0


async def cmd_set(broker: SecretBroker, args: argparse.Namespace) -> int:
    if not args.skip_validation and not validate_secret_value(args.key, args.value):
        print(f"Rejected: value does not satisfy the policy for '{args.key}'", file=sys.stderr)
        return 1
    await broker.set_secret(args.key, args.value, actor=args.actor)
    print(f"Stored {args.key}")
    return 0


async def cmd_delete(broker: SecretBroker, args: argparse.Namespace) -> int:
    await broker.delete_secret(args.key, actor=args.actor)
    print(f"Deleted {args.key}")
    return 0


async def cmd_rotate(broker: SecretBroker, args: argparse.Namespace) -> int:
    await broker.rotate_secret(args.key, actor=args.actor)
    print(f"Rotated {args.key}")
    return 0


async def cmd_generate(broker: SecretBroker, args: argparse.Namespace) -> int:
    value = await broker.generate_secret(args.key, args.kind, store=args.store, actor=args.actor)
    if args.store:
        print(f"Generated and stored {args.key} ({args.kind})")
    else:
        print(value)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    if validate_secret_value(args.key, args.value):
        print("valid")
        return 0
    print("invalid")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage secrets through the secret broker")
    parser.add_argument(
        "--actor",
        default=os.getenv("USER", "secrets-admin"),
        help="Identity recorded in audit events",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_health = sub.add_parser("health", help="Check backend store health")
    p_health.set_defaults(func=cmd_health)

    p_get = sub.add_parser("get", help="Show whether a secret exists (preview only)")
    p_get.add_argument("key")
    p_get.set_defaults(func=cmd_get)

    p_list = sub.add_parser("list", help="List secret keys")
    p_list.add_argument("--prefix")
    p_list.set_defaults(func=cmd_list)

    p_set = sub.add_parser("set", help="Create or replace a secret")
    p_set.add_argument("key")
    p_set.add_argument("value")
    p_set.add_argument("--skip-validation", action="store_true", help="Store without policy check")
    p_set.set_defaults(func=cmd_set)

    p_delete = sub.add_parser("delete", help="Delete a secret")
    p_delete.add_argument("key")
    p_delete.set_defaults(func=cmd_delete)

    p_rotate = sub.add_parser("rotate", help="Rotate a secret")
    p_rotate.add_argument("key")
    p_rotate.set_defaults(func=cmd_rotate)

    p_generate = sub.add_parser("generate", help="Generate new secret material")
    p_generate.add_argument("key")
    p_generate.add_argument("--kind", choices=[kind.value for kind in SecretKind], default="password")
    p_generate.add_argument("--store", action="store_true", help="Persist the generated value")
    p_generate.set_defaults(func=cmd_generate)

    p_validate = sub.add_parser("validate", help="Check a value against the key policy")
    p_validate.add_argument("key")
    p_validate.add_argument("value")
    p_validate.set_defaults(func=None)

    return parser


async def run(args: argparse.Namespace, settings: Settings | None = None, **broker_kwargs: Any) -> int:
    """Run one broker command. Extra kwargs are passed to the broker (e.g. backend)."""
    command: Command = args.func
    with LogContext() as trace_id:
        try:
            async with broker_lifespan(settings, **broker_kwargs) as broker:
                return await command(broker, args)
        except SecretManagerError as e:
            log_with_context(
                logger, "ERROR", "Command failed", command=args.command, error=str(e), trace_id=trace_id
            )
            cause = f" (caused by {e.__cause__})" if e.__cause__ else ""
            print(f"Error: {e}{cause}", file=sys.stderr)
            return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "validate":
        return cmd_validate(args)

    settings = get_settings()
    configure_logging(service_name=settings.service_name, log_level=settings.log_level)
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
