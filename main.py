#!/usr/bin/env python3
"""
Townzy -- command-line client for the Townzy marketplace API.

Customer and merchant sessions are kept side by side in one local session
file; logging into one never logs out of the other.

Usage:
  python main.py register-customer --username asha --email asha@example.com
  python main.py login-customer --username asha
  python main.py register-merchant --business-name "Acme Tailors" --shop-address "12 High St" --mobile 9876543210
  python main.py login-merchant --merchant-id S4K9Q2ZT
  python main.py login-merchant --mobile 9876543210
  python main.py status
  python main.py categories
  python main.py children 1
  python main.py create-category --name Alterations --parent-id 1
  python main.py update-category 42 --name "Men's Suit Alterations"
  python main.py delete-category 42
  python main.py available
  python main.py logout --domain merchant

Options:
  --base-url      API server (default: TOWNZY_API_URL or http://localhost:8000)
  --session-file  Session storage file (default: ~/.townzy/session.db)

Passwords not given with --password are prompted for.
"""

import argparse
import getpass
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

from client.api import ApiError, SessionExpired, TownzyClient
from client.session import DEFAULT_SESSION_FILE, DOMAINS, SessionManager

DEFAULT_BASE_URL = "http://localhost:8000"

# update-category flags -> request body fields. Only flags actually given are sent.
_UPDATE_FIELDS = ("name", "description", "color", "icon", "sort_order", "image_url", "parent_id")


def _password(args: argparse.Namespace) -> str:
    return args.password if args.password is not None else getpass.getpass("Password: ")


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _session_status(sessions: SessionManager) -> dict[str, Any]:
    status: dict[str, Any] = {}
    for domain in DOMAINS:
        store = sessions.get(domain)
        status[domain] = {
            "logged_in": store.is_valid(),
            "expires_at": store.expires_at.isoformat() if store.expires_at else None,
            "identity": store.identity,
        }
    return status


def _category_fields(args: argparse.Namespace) -> dict[str, Any]:
    return {
        name: getattr(args, name)
        for name in ("description", "color", "icon", "sort_order", "image_url")
        if getattr(args, name, None) is not None
    }


def run(args: argparse.Namespace, client: TownzyClient) -> Any:
    """Dispatch one subcommand and return the data to print."""
    cmd = args.command
    if cmd == "register-customer":
        return client.register_customer(args.username, _password(args), args.email)
    if cmd == "login-customer":
        return client.login_customer(args.username, _password(args))
    if cmd == "register-merchant":
        return client.register_merchant(args.business_name, args.shop_address, args.mobile, _password(args), args.email)
    if cmd == "login-merchant":
        return client.login_merchant(_password(args), merchant_id=args.merchant_id, mobile_number=args.mobile)
    if cmd == "logout":
        if args.domain in ("customer", "all"):
            client.logout_customer()
        if args.domain in ("merchant", "all"):
            client.logout_merchant()
        return {"message": f"Logged out ({args.domain})."}
    if cmd == "status":
        return _session_status(client.sessions)
    if cmd == "categories":
        return client.list_categories()
    if cmd == "children":
        return client.get_category(args.category_id)
    if cmd == "my-categories":
        if args.parent_id is not None:
            return client.my_subcategories(args.parent_id)
        return client.my_categories()
    if cmd == "create-category":
        return client.create_category(args.name, parent_id=args.parent_id, **_category_fields(args))
    if cmd == "update-category":
        fields = {name: getattr(args, name) for name in _UPDATE_FIELDS if getattr(args, name) is not None}
        if args.clear_image:
            fields["image_url"] = None
        return client.update_category(args.category_id, **fields)
    if cmd == "delete-category":
        return client.delete_category(args.category_id)
    if cmd == "available":
        return client.available_categories()
    raise ValueError(f"Unknown command: {cmd}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="townzy",
        description="Command-line client for the Townzy marketplace API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--base-url",
        default=os.environ.get("TOWNZY_API_URL") or DEFAULT_BASE_URL,
        help="API server base URL (default: TOWNZY_API_URL or %(default)s)",
    )
    parser.add_argument(
        "--session-file",
        type=Path,
        default=DEFAULT_SESSION_FILE,
        metavar="PATH",
        help="Where customer and merchant sessions are stored",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("register-customer", help="Create a customer account and log in")
    p.add_argument("--username", required=True)
    p.add_argument("--email")
    p.add_argument("--password")

    p = sub.add_parser("login-customer", help="Log in as a customer")
    p.add_argument("--username", required=True)
    p.add_argument("--password")

    p = sub.add_parser("register-merchant", help="Create a merchant account and log in")
    p.add_argument("--business-name", required=True)
    p.add_argument("--shop-address", required=True)
    p.add_argument("--mobile", required=True, help="10-15 digits")
    p.add_argument("--email")
    p.add_argument("--password")

    p = sub.add_parser("login-merchant", help="Log in as a merchant by identifier or mobile number")
    selector = p.add_mutually_exclusive_group(required=True)
    selector.add_argument("--merchant-id")
    selector.add_argument("--mobile")
    p.add_argument("--password")

    p = sub.add_parser("logout", help="Forget a stored session")
    p.add_argument("--domain", choices=["customer", "merchant", "all"], default="all")

    sub.add_parser("status", help="Show which sessions are held and when they expire")
    sub.add_parser("categories", help="List root categories")

    p = sub.add_parser("children", help="List the children of a category (or the category itself if it is a leaf)")
    p.add_argument("category_id", type=int)

    p = sub.add_parser("my-categories", help="List your own categories (merchant)")
    p.add_argument("--parent-id", type=int, help="List your children of this category instead of your roots")

    p = sub.add_parser("create-category", help="Create a category (merchant)")
    p.add_argument("--name", required=True)
    p.add_argument("--parent-id", type=int)
    p.add_argument("--description")
    p.add_argument("--color")
    p.add_argument("--icon")
    p.add_argument("--sort-order", type=int)
    p.add_argument("--image-url")

    p = sub.add_parser("update-category", help="Update one of your leaf categories (merchant)")
    p.add_argument("category_id", type=int)
    p.add_argument("--name")
    p.add_argument("--parent-id", type=int, help="Move the leaf under another subcategory")
    p.add_argument("--description")
    p.add_argument("--color")
    p.add_argument("--icon")
    p.add_argument("--sort-order", type=int)
    p.add_argument("--image-url")
    p.add_argument("--clear-image", action="store_true", help="Remove the stored image URL")

    p = sub.add_parser("delete-category", help="Delete one of your leaf categories (merchant)")
    p.add_argument("category_id", type=int)

    sub.add_parser("available", help="List roots with their subcategories (merchant)")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    sessions = SessionManager(args.session_file)
    client = TownzyClient(args.base_url, sessions)
    try:
        _print(run(args, client))
    except SessionExpired as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 2
    except ApiError as e:
        print(f"  [!] {e.message} ({e.code}, HTTP {e.status})", file=sys.stderr)
        return 1
    finally:
        sessions.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
