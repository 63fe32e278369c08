#!/usr/bin/env python3
"""
pcvisor -- administrative command line.

Usage:
  python main.py serve [--host 0.0.0.0] [--port 5000] [--reload]
  python main.py create-admin [--password PASSWORD]
  python main.py create-user USERNAME PASSWORD [--role ROLE]
  python main.py seed
  python main.py fingerprint
  python main.py sign-license --tenant ACME --modules EPM,SERVICE_DESK --expiry 2027-01-01 [--install]

Environment variables:
  DATABASE_URL     Database the commands operate on (default: ./pcvisor.db)
  LICENSE_SECRET   HMAC secret used by sign-license; must match the server's
"""

import argparse
import json
import secrets
import string
import sys
from datetime import datetime, timezone

from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.database import now_iso
from licensing.fingerprint import get_machine_fingerprint, get_machine_fingerprint_details
from licensing.models import LICENSE_MODULES, LicenseInfo, LicensePayload, ValidationStatus
from licensing.store import LicenseStore
from licensing.validator import sign_license_token, verify_license_token

ADMIN_USERNAME = "admin"
ADMIN_ROLE_NAME = "Admin"


def _generate_password(length: int = 16) -> str:
    """Random password that satisfies the default password policy."""
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*"
    required = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice("!@#$%^&*"),
    ]
    rest = [secrets.choice(alphabet) for _ in range(length - len(required))]
    chars = required + rest
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def _user_store() -> UserStore:
    return UserStore(get_settings().database_url)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_create_admin(args: argparse.Namespace) -> int:
    store = _user_store()
    try:
        if store.get_by_username(ADMIN_USERNAME) is not None:
            print("Admin user already exists!")
            return 0
        password = args.password or _generate_password()
        store.create_user(
            User(
                username=ADMIN_USERNAME,
                hashed_password=hash_password(password),
                full_name="System Administrator",
                is_system=True,
            )
        )
    finally:
        store.close()
    print("Admin user created successfully!")
    print(f"  Username: {ADMIN_USERNAME}")
    if not args.password:
        print(f"  Password: {password}")
        print("  Change this password after the first login.")
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    store = _user_store()
    try:
        if store.get_by_username(args.username) is not None:
            print(f"User '{args.username}' already exists.")
            return 0
        role_id = None
        if args.role:
            role = store.get_role_by_name(args.role)
            if role is None:
                print(f"  [!] Role '{args.role}' not found.", file=sys.stderr)
                return 1
            role_id = role.id
        user_id = store.create_user(
            User(username=args.username, hashed_password=hash_password(args.password), role_id=role_id)
        )
    finally:
        store.close()
    print("User created successfully:")
    print(f"  Username: {args.username}")
    print(f"  ID: {user_id}")
    return 0


def cmd_seed(args: argparse.Namespace) -> int:
    """Ensure the Admin role and the master admin exist. Safe to re-run."""
    store = _user_store()
    try:
        if store.get_role_by_name(ADMIN_ROLE_NAME) is None:
            store.create_role(
                Role(name=ADMIN_ROLE_NAME, description="Full administrative access", permissions=["*"])
            )
            print(f"Role '{ADMIN_ROLE_NAME}' created.")

        existing = store.get_by_username(ADMIN_USERNAME)
        if existing is not None:
            if not existing.is_system:
                store.update_user(existing.id, is_system=True)
                print("Admin user updated to system user!")
            else:
                print("Admin system user already exists!")
            return 0

        password = _generate_password()
        store.create_user(
            User(
                username=ADMIN_USERNAME,
                hashed_password=hash_password(password),
                full_name="System Administrator",
                is_system=True,
            )
        )
    finally:
        store.close()
    print("Admin system user created successfully!")
    print(f"  Username: {ADMIN_USERNAME}")
    print(f"  Password: {password}")
    return 0


def cmd_fingerprint(args: argparse.Namespace) -> int:
    print(json.dumps(get_machine_fingerprint_details(), indent=2))
    return 0


def cmd_sign_license(args: argparse.Namespace) -> int:
    modules = [m.strip().upper() for m in args.modules.split(",") if m.strip()]
    unknown = [m for m in modules if m not in LICENSE_MODULES]
    if unknown:
        print(f"  [!] Unknown module(s): {', '.join(unknown)}. Known: {', '.join(LICENSE_MODULES)}", file=sys.stderr)
        return 1
    try:
        expiry = datetime.fromisoformat(args.expiry)
    except ValueError:
        print(f"  [!] '{args.expiry}' is not an ISO 8601 date.", file=sys.stderr)
        return 1
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)

    payload = LicensePayload(
        tenant_id=args.tenant,
        modules=modules,
        expiry=expiry.isoformat(),
        hardware_id=args.hardware_id or get_machine_fingerprint(),
    )
    token = sign_license_token(payload)
    print(token)

    if args.install:
        if verify_license_token(token) is None:
            print("  [!] Token does not verify with the configured LICENSE_SECRET.", file=sys.stderr)
            return 1
        store = LicenseStore(get_settings().database_url)
        try:
            store.save(
                LicenseInfo(
                    license_key=token,
                    license_token=token,
                    tenant_id=payload.tenant_id,
                    hardware_id=payload.hardware_id,
                    modules=payload.modules,
                    expiry=payload.expiry,
                    last_validated_at=now_iso(),
                    last_validation_status=ValidationStatus.OK.value,
                    validation_message="Signed license installed from the command line",
                )
            )
        finally:
            store.close()
        print("  Signed license installed.", file=sys.stderr)
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pcvisor",
        description="pcvisor administrative commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-user jdoe 'S3cure!pass' --role Admin
  python main.py fingerprint
  LICENSE_SECRET=... python main.py sign-license --tenant acme --modules EPM --expiry 2027-01-01 --install
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the API server with uvicorn")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=cmd_serve)

    admin = sub.add_parser("create-admin", help="Create the master admin user")
    admin.add_argument("--password", help="Admin password (default: generate and print one)")
    admin.set_defaults(func=cmd_create_admin)

    user = sub.add_parser("create-user", help="Create a regular user")
    user.add_argument("username")
    user.add_argument("password")
    user.add_argument("--role", metavar="ROLE", help="Name of an existing role to assign")
    user.set_defaults(func=cmd_create_user)

    seed = sub.add_parser("seed", help="Create the Admin role and the master admin if missing")
    seed.set_defaults(func=cmd_seed)

    fp = sub.add_parser("fingerprint", help="Print this machine's license fingerprint")
    fp.set_defaults(func=cmd_fingerprint)

    sign = sub.add_parser("sign-license", help="Mint an offline license token")
    sign.add_argument("--tenant", required=True, metavar="TENANT_ID")
    sign.add_argument("--modules", required=True, metavar="LIST", help="Comma-separated, e.g. EPM,SERVICE_DESK")
    sign.add_argument("--expiry", required=True, metavar="DATE", help="ISO 8601 date or datetime")
    sign.add_argument("--hardware-id", metavar="FINGERPRINT", help="Bind to another machine (default: this one)")
    sign.add_argument("--install", action="store_true", help="Store the token as this server's license")
    sign.set_defaults(func=cmd_sign_license)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
