"""CLI admin tool for the worldtree database.

Usage:
    worldtree-admin init-db
    worldtree-admin create-user --username=ada --email=ada@example.org --password=Secret123
    worldtree-admin list-worlds --username=ada
    worldtree-admin repair-spouses --world=<world id>
    worldtree-admin serve --host=0.0.0.0 --port=8000
"""

from __future__ import annotations

import argparse
import json
import logging
import os

from .auth import register_user
from .db import apply_schema, db_conn
from .errors import WorldtreeError
from .people import repair_spouse_links
from .pgstore import PgStore


def cmd_init_db(args: argparse.Namespace) -> None:
    with db_conn() as conn:
        apply_schema(conn)
    print("Schema applied.")


def cmd_create_user(args: argparse.Namespace) -> None:
    with db_conn() as conn:
        user = register_user(PgStore(conn), args.username, args.email, args.password)
    print(f"User '{user.username}' created ({user.id}).")


def cmd_list_worlds(args: argparse.Namespace) -> None:
    with db_conn() as conn:
        store = PgStore(conn)
        user = store.get_user_by_login(args.username)
        if user is None:
            raise SystemExit(f"User '{args.username}' not found.")
        worlds = store.list_worlds(user.id)

    if not worlds:
        print("No worlds.")
        return
    print(f"{'ID':<38} {'Name':<30} {'Created':<20}")
    print("-" * 90)
    for w in worlds:
        print(f"{w.id:<38} {w.name:<30} {str(w.created_at)[:19]:<20}")


def cmd_repair_spouses(args: argparse.Namespace) -> None:
    with db_conn() as conn:
        report = repair_spouse_links(PgStore(conn), args.world)
    print(json.dumps(report.as_dict(), indent=2))
    if report.failures:
        raise SystemExit(1)


def cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run("worldtree.main:app", host=args.host, port=args.port, reload=args.reload)


def main() -> int:
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())

    parser = argparse.ArgumentParser(description="Worldtree admin CLI")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init-db", help="Create tables and indexes (idempotent)")

    p = sub.add_parser("create-user", help="Create a user account")
    p.add_argument("--username", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--password", required=True)

    p = sub.add_parser("list-worlds", help="List the worlds a user owns")
    p.add_argument("--username", required=True, help="Username or email")

    p = sub.add_parser("repair-spouses", help="Restore spouse-link symmetry in a world")
    p.add_argument("--world", required=True, help="World id")

    p = sub.add_parser("serve", help="Run the API with uvicorn")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--reload", action="store_true")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return 1

    dispatch = {
        "init-db": cmd_init_db,
        "create-user": cmd_create_user,
        "list-worlds": cmd_list_worlds,
        "repair-spouses": cmd_repair_spouses,
        "serve": cmd_serve,
    }
    try:
        dispatch[args.command](args)
    except WorldtreeError as e:
        raise SystemExit(e.message) from e
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
