"""Command line entry points for product slugs."""

from __future__ import annotations

import argparse
import json
import os
import sys

from .application import ApplicationError, SlugManagerApp
from .repositories import StorageUnavailableError
from .services import InvalidTokenError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="product-slugs",
        description="Product slug assignment, lookup and migration",
    )
    parser.add_argument("--config", help="Path to configuration file", default=None)
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("backfill", help="Assign slugs to products that lack one")

    resolve = commands.add_parser("resolve", help="Look up a product by id or slug")
    resolve.add_argument("token", help="Product identifier or slug")

    serve = commands.add_parser("serve", help="Run the HTTP lookup/redirect service")
    serve.add_argument("--host", help="Bind address override")
    serve.add_argument("--port", type=int, help="Port override")
    return parser


def _backfill(app: SlugManagerApp) -> int:
    report = app.run_backfill()
    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2, sort_keys=True))
    return 1 if report.failed else 0


def _resolve(app: SlugManagerApp, token: str) -> int:
    product = app.create_service().resolve_token(token)
    if product is None:
        print(f"not found: {token}", file=sys.stderr)
        return 1
    print(json.dumps(product.to_dict(), ensure_ascii=False, indent=2, sort_keys=True))
    return 0


def _serve(app: SlugManagerApp, host: str | None, port: int | None) -> int:
    server = app.config["server"]
    web_app = app.create_web_app()
    web_app.run(host=host or server["host"], port=port or server["port"])
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        os.environ["PRODUCT_SLUGS_ENV"] = "development"

    app = SlugManagerApp()
    try:
        app.initialize(args.config)
        if args.command == "backfill":
            return _backfill(app)
        if args.command == "resolve":
            return _resolve(app, args.token)
        return _serve(app, args.host, args.port)
    except (ApplicationError, InvalidTokenError, StorageUnavailableError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
