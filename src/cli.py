"""
Credit Rail CLI

Commands:
  serve      - Run the credit API server
  status     - Show a user's balance and quota status
  grant      - Add credits to a user
  provision  - Open an account with its starting grant
  catalog    - Show service costs and limits
"""

import argparse
import json
import os
import sys


def _ledger():
    from billing.ledger import CreditLedger, LedgerConfig
    from core.catalog import CostCatalog
    from persistence.database import get_database
    from persistence.repository import AccountRepository

    return CreditLedger(
        store=AccountRepository(get_database()),
        catalog=CostCatalog.from_env(),
        config=LedgerConfig.from_env(),
    )


def _print_snapshot(snapshot):
    print(f"  User: {snapshot.user_id}")
    print(f"  Balance: {snapshot.balance}")
    print(f"  Daily: {snapshot.daily_used}/{snapshot.daily_limit} ({snapshot.daily_remaining} remaining)")
    print(f"  Monthly: {snapshot.monthly_used}/{snapshot.monthly_limit} ({snapshot.monthly_remaining} remaining)")


def cmd_serve(args):
    """Run the credit API server."""
    import uvicorn

    port = args.port or int(os.environ.get("PORT", 8000))
    host = args.host or "0.0.0.0"

    print(f"Starting Credit Rail on {host}:{port}")

    uvicorn.run(
        "api.server:app",
        host=host,
        port=port,
        reload=args.reload,
        workers=args.workers,
    )


def cmd_status(args):
    """Show balance and quota status."""
    from core.errors import LedgerError

    try:
        snapshot = _ledger().status(args.user)
    except LedgerError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("Credit Status")
    print("=" * 40)
    _print_snapshot(snapshot)


def cmd_grant(args):
    """Add credits to a user."""
    from core.errors import LedgerError

    try:
        result = _ledger().grant(args.user, args.amount)
    except LedgerError as e:
        print(f"Error: {e}")
        sys.exit(1)

    action = "Created account" if result.created else "Granted"
    print(f"{action}: {args.amount} credits to {result.user_id}")
    print(f"  New balance: {result.new_balance}")


def cmd_provision(args):
    """Open an account with its starting grant."""
    from core.account import AccountRole
    from core.errors import LedgerError

    role = AccountRole.ADMIN if args.admin else AccountRole.USER

    try:
        result = _ledger().provision(args.user, role)
    except LedgerError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("Account provisioned" if result.created else "Account already exists")
    _print_snapshot(result.snapshot)


def cmd_catalog(args):
    """Show service costs and limits."""
    from core.catalog import CostCatalog
    from core.errors import CatalogConfigError

    try:
        catalog = CostCatalog.from_env()
    except CatalogConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(json.dumps(catalog.to_dict(), indent=2, sort_keys=True))


def main():
    parser = argparse.ArgumentParser(
        description="Credit Rail - Credit accounting for costed operations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")
    serve_parser.add_argument("--workers", type=int, default=1)

    # status
    status_parser = subparsers.add_parser("status", help="Show credit status")
    status_parser.add_argument("user", help="User ID")

    # grant
    grant_parser = subparsers.add_parser("grant", help="Add credits")
    grant_parser.add_argument("user", help="User ID")
    grant_parser.add_argument("amount", type=int, help="Credits to add")

    # provision
    provision_parser = subparsers.add_parser("provision", help="Open an account")
    provision_parser.add_argument("user", help="User ID")
    provision_parser.add_argument("--admin", action="store_true", help="Use the admin starting grant")

    # catalog
    subparsers.add_parser("catalog", help="Show service costs and limits")

    args = parser.parse_args()

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "status":
        cmd_status(args)
    elif args.command == "grant":
        cmd_grant(args)
    elif args.command == "provision":
        cmd_provision(args)
    elif args.command == "catalog":
        cmd_catalog(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
