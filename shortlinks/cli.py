"""Console commands for bootstrapping accounts and links.

Usage::

    python -m shortlinks.cli create-user alice alice@example.com --admin
    python -m shortlinks.cli create-link https://example.com --slug docs --owner alice

Both commands go through the same validation as the HTTP API and exit
non-zero on failure.
"""

import argparse
import asyncio
import datetime
import getpass
import logging
import sys

from shortlinks.auth import create_user
from shortlinks.config import get_settings
from shortlinks.database import async_session, close_db, init_db
from shortlinks.exceptions import ShortLinkError
from shortlinks.link_service import ShortLinkService


async def _create_user(args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    async with async_session() as session:
        try:
            user = await create_user(session, args.username, password, args.email, is_admin=args.admin)
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
    print(f"User created: {user.username} (roles: {', '.join(user.roles)})")
    return 0


async def _create_link(args: argparse.Namespace) -> int:
    try:
        expires_at = datetime.datetime.fromisoformat(args.expires_at) if args.expires_at else None
    except ValueError:
        print(f"Error: Invalid --expires-at value '{args.expires_at}', expected ISO-8601", file=sys.stderr)
        return 1
    async with async_session() as session:
        service = ShortLinkService(session, None, get_settings())
        try:
            link = await service.create_link(args.url, args.slug, owner=args.owner, expires_at=expires_at)
        except ShortLinkError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
    print(f"Short link created: {link.slug} -> {link.original_url}")
    if link.expires_at is not None:
        print(f"Expires: {link.expires_at.isoformat()}")
    return 0


async def _run(args: argparse.Namespace) -> int:
    await init_db()
    try:
        return await args.handler(args)
    finally:
        await close_db()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shortlinks", description="Short link administration commands")
    commands = parser.add_subparsers(dest="command", required=True)

    user_parser = commands.add_parser("create-user", help="Create a login account")
    user_parser.add_argument("username")
    user_parser.add_argument("email")
    user_parser.add_argument("--password", help="Prompted for when omitted")
    user_parser.add_argument("--admin", action="store_true", help="Grant the ADMIN role")
    user_parser.set_defaults(handler=_create_user)

    link_parser = commands.add_parser("create-link", help="Create a short link")
    link_parser.add_argument("url")
    link_parser.add_argument("--slug", help="Custom slug (random when omitted)")
    link_parser.add_argument("--owner", help="Username recorded as the link's creator")
    link_parser.add_argument("--expires-at", help="ISO-8601 expiry, e.g. 2030-01-01T00:00:00+00:00")
    link_parser.set_defaults(handler=_create_link)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=get_settings().LOG_LEVEL.upper())
    args = build_parser().parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
