#!/usr/bin/env python3
"""
FindItNow Management CLI

Commands for operating the service:
- create-admin: Create or promote the administrator account
- hash-password: Generate an Argon2 password hash
- maintenance: Turn maintenance mode on or off
- seed-demo: Seed demo accounts, items and a claim (empty stores only)
- stats: Print the moderation dashboard counters
- health-check: Check store connectivity and configuration

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage create-admin --email admin@example.com
    python -m tools.manage maintenance on --message "Back at 10:00 UTC"
    python -m tools.manage hash-password --password "mysecretpassword"
"""

import argparse
import getpass
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _services():
    from finditnow.web.shared_store import build_services
    return build_services()


def cmd_create_admin(args):
    """Create the administrator account, or promote an existing one."""
    services = _services()

    password = args.password or getpass.getpass("Admin password: ")
    account = services.identity.ensure_admin(args.email, password)

    print("\n[OK] Admin account ready")
    print(f"  Account ID: {account.id}")
    print(f"  Email: {account.email}")
    print(f"  Role: {account.role.value}")


def cmd_hash_password(args):
    """Generate an Argon2 password hash."""
    from finditnow.core import hash_password

    password = args.password or getpass.getpass("Enter password: ")
    print("\nPassword hash:")
    print(hash_password(password))


def cmd_maintenance(args):
    """Toggle maintenance mode."""
    services = _services()
    config = services.maintenance.set(args.state == "on", args.message)

    state = "ON" if config.is_enabled else "OFF"
    print(f"[OK] Maintenance mode {state}")
    print(f"  Message: {config.message}")


def cmd_seed_demo(args):
    """Seed demo data into an empty store."""
    from finditnow.web.shared_store import seed_demo_data

    services = _services()
    result = seed_demo_data(services)
    if not result["items"]:
        print("Store already has items. Nothing seeded.")
        return 0

    print(f"[OK] Seeded {result['items']} items and {result['claims']} claim")
    print("  Demo logins:")
    print("    finder@example.com / finder123")
    print("    owner@example.com / owner123")
    print("    desk@airport.example.com / partner123 (partner)")


def cmd_stats(args):
    """Print dashboard counters."""
    services = _services()
    stats = services.workflow.dashboard_stats()

    print("=== FindItNow Stats ===\n")
    for key, value in stats.items():
        print(f"  {key.replace('_', ' ').capitalize()}: {value}")


def cmd_health_check(args):
    """Run comprehensive health checks."""
    from finditnow.db.config import DatabaseConfig, StoreDriver, get_database_url, get_store_driver
    from finditnow.observability import check_health

    print("=== FindItNow Health Check ===\n")

    print("Database:")
    driver = get_store_driver()
    if driver != StoreDriver.MEMORY:
        db_url = get_database_url()
        config = DatabaseConfig.from_url(db_url) if db_url else DatabaseConfig.from_env()
        print(f"  Type: PostgreSQL ({driver.value})")
        print(f"  Host: {config.host}:{config.port}")
    else:
        print("  Type: In-Memory")

    services = _services()
    status = check_health(store=services.store, matching=services.matching, mailer=services.mailer)
    for name, check in status.checks.items():
        marker = "[OK]" if check["status"] == "healthy" else "[WARN]"
        if check["status"] == "unhealthy":
            marker = "[FAIL]"
        print(f"  {name}: {marker} {check['status']}")

    print("\nEnvironment:")
    session_secret = os.environ.get("FINDITNOW_SESSION_SECRET", "")
    if len(session_secret) >= 16:
        print("  Session secret: [OK] Set")
    else:
        print("  Session secret: [WARN] Using default (development)")

    print("\n=== Health Check Complete ===")
    return 0 if status.healthy else 1


def main():
    parser = argparse.ArgumentParser(
        description="FindItNow Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # create-admin
    p_admin = subparsers.add_parser(
        "create-admin",
        help="Create or promote the administrator account"
    )
    p_admin.add_argument("--email", required=True, help="Admin email")
    p_admin.add_argument("--password", help="Admin password (prompts if not provided)")

    # hash-password
    p_hash = subparsers.add_parser(
        "hash-password",
        help="Generate an Argon2 password hash"
    )
    p_hash.add_argument("--password", help="Password to hash (prompts if not provided)")

    # maintenance
    p_maint = subparsers.add_parser(
        "maintenance",
        help="Turn maintenance mode on or off"
    )
    p_maint.add_argument("state", choices=["on", "off"])
    p_maint.add_argument("--message", help="Notice shown to visitors")

    # seed-demo
    subparsers.add_parser(
        "seed-demo",
        help="Seed demo data into an empty store"
    )

    # stats
    subparsers.add_parser(
        "stats",
        help="Print dashboard counters"
    )

    # health-check
    subparsers.add_parser(
        "health-check",
        help="Run comprehensive health checks"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "create-admin": cmd_create_admin,
        "hash-password": cmd_hash_password,
        "maintenance": cmd_maintenance,
        "seed-demo": cmd_seed_demo,
        "stats": cmd_stats,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
