"""CLI entry points."""

from __future__ import annotations

import argparse
import asyncio
import json

import uvicorn

from .app import create_app
from .catapi import CatApiClient
from .config import load_settings
from .exceptions import NekoMCPException


async def run_server(args: argparse.Namespace) -> None:
    settings = load_settings(args.config)
    overrides = {key: value for key, value in (("host", args.host), ("port", args.port)) if value is not None}
    if overrides:
        settings = settings.model_copy(update={"server": settings.server.model_copy(update=overrides)})
    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()


async def run_fetch(args: argparse.Namespace) -> None:
    settings = load_settings(args.config)
    client = CatApiClient(settings.cat_api)
    try:
        photos = await asyncio.wait_for(client.fetch_gallery(args.limit), timeout=settings.cat_api.timeout_seconds)
    except (NekoMCPException, asyncio.TimeoutError) as exc:
        print("ERROR:", str(exc) or "Cat API request timed out")
        return
    finally:
        await client.aclose()
    print(json.dumps([photo.to_dict() for photo in photos], ensure_ascii=False, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nekomcp", description="Neko MCP server CLI")
    sub = parser.add_subparsers(dest="command")

    serve_cmd = sub.add_parser("serve", help="Run the MCP server")
    serve_cmd.add_argument("--config")
    serve_cmd.add_argument("--host")
    serve_cmd.add_argument("--port", type=int)

    fetch_cmd = sub.add_parser("fetch", help="Fetch a cat gallery once and print it")
    fetch_cmd.add_argument("--config")
    fetch_cmd.add_argument("--limit", type=int, choices=range(1, 13), default=None, metavar="1-12")

    return parser


def cli_main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "serve":
        asyncio.run(run_server(args))
    elif args.command == "fetch":
        asyncio.run(run_fetch(args))
    else:
        parser.print_help()
