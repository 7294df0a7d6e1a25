#!/usr/bin/env python3
"""
orgauth -- Phone-verified accounts, organizations and access rules.

Operator commands that act on the configured database directly, plus a
shortcut to run the API server.

Usage:
  python main.py init-db
  python main.py grant alice admin
  python main.py grant alice worker admin
  python main.py org 3f2c9c1e-5d8a-4c53-9a5b-2f0d7a1c9e11
  python main.py serve --host 0.0.0.0 --port 8000

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the database (default: sqlite:///orgauth.db)
  SECRET_KEY    Token signing key; required unless DEBUG=true
"""

import argparse
import sys

from auth.accounts import OrgDirectory
from auth.rules import DEFAULT_CATALOG, RuleResolver
from auth.store import AuthStore, connect_with_retry
from core.config import get_settings
from core.errors import ServiceError


def _open_store() -> AuthStore:
    settings = get_settings()
    return connect_with_retry(
        settings.database_url,
        retries=settings.db_connect_retries,
        backoff_seconds=settings.db_connect_backoff_seconds,
    )


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create the schema and seed the access rule catalog."""
    store = _open_store()
    try:
        RuleResolver(store, DEFAULT_CATALOG).seed()
    finally:
        store.close()
    print(f"  Database ready. Access rules: {', '.join(DEFAULT_CATALOG)}")
    return 0


def cmd_grant(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        resolver = RuleResolver(store, DEFAULT_CATALOG)
        resolver.seed()
        resolver.grant(args.username, *args.rules)
    finally:
        store.close()
    print(f"  Granted {', '.join(args.rules)} to {args.username}.")
    return 0


def cmd_org(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        org = OrgDirectory(store).get_org(args.org_id)
    finally:
        store.close()
    print(f"  id:     {org.id}")
    print(f"  name:   {org.name}")
    print(f"  owner:  {org.owner_id or '-'}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="orgauth",
        description="Phone-verified accounts, organizations and access rules.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py grant alice admin
  python main.py org 3f2c9c1e-5d8a-4c53-9a5b-2f0d7a1c9e11
  DATABASE_URL=postgresql://orgauth@db/orgauth python main.py serve
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_init = sub.add_parser("init-db", help="Create tables and seed the access rule catalog")
    p_init.set_defaults(func=cmd_init_db)

    p_grant = sub.add_parser("grant", help="Grant access rules to a user")
    p_grant.add_argument("username", help="Username to grant rules to")
    p_grant.add_argument(
        "rules",
        nargs="+",
        metavar="RULE",
        help=f"Rule names to grant ({', '.join(DEFAULT_CATALOG)})",
    )
    p_grant.set_defaults(func=cmd_grant)

    p_org = sub.add_parser("org", help="Show an organization by id")
    p_org.add_argument("org_id", metavar="ORG_ID")
    p_org.set_defaults(func=cmd_org)

    p_serve = sub.add_parser("serve", help="Run the API server with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    p_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except ServiceError as exc:
        print(f"  [!] {exc.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
