"""Command line entry point.

    asgctl serve [--bind-address :8080]
    asgctl dispatch rebalancing asg_name=web-asg
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from loguru import logger

from .config import ControllerConfig, load_config
from .core import AsgctlError, ConfigurationError
from .module import create_injector
from .observability.logging import LogConfig, setup_logging
from .recommender import RecommenderClient
from .router import EventRouter
from .server import serve
from .types import AlertEvent


def _parse_data(pairs: Sequence[str]) -> dict[str, str]:
    data: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected key=value, got {pair!r}")
        data[key] = value
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="asgctl", description="Auto Scaling group fleet controller")
    parser.add_argument("--config-dir", type=Path, default=None, help="Directory containing asgctl.toml")
    parser.add_argument("--region", type=str, default=None)
    parser.add_argument("--recommender-url", type=str, default=None)
    parser.add_argument("--log-level", type=str, default=None)
    parser.add_argument("--log-file", type=str, default=None)

    commands = parser.add_subparsers(dest="command", required=True)

    serve_cmd = commands.add_parser("serve", help="Run the HTTP alert endpoint")
    serve_cmd.add_argument("--bind-address", type=str, default=None, help="host:port, e.g. :8080")

    dispatch_cmd = commands.add_parser("dispatch", help="Handle a single event and exit")
    dispatch_cmd.add_argument("event_type", type=str)
    dispatch_cmd.add_argument("data", nargs="*", metavar="KEY=VALUE")

    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "region": args.region,
        "recommender_url": args.recommender_url,
        "log_level": args.log_level,
        "log_file": args.log_file,
        "bind_address": getattr(args, "bind_address", None),
    }


async def _run_serve(config: ControllerConfig) -> None:
    injector = create_injector(config)
    try:
        await serve(injector.get(EventRouter), config.bind_host, config.bind_port)
    finally:
        await injector.get(RecommenderClient).close()


async def _run_dispatch(config: ControllerConfig, event: AlertEvent) -> dict[str, str]:
    injector = create_injector(config)
    try:
        result = await injector.get(EventRouter).route(event)
    finally:
        await injector.get(RecommenderClient).close()
    return result.to_dict()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(project_dir=args.config_dir, overrides=_overrides(args))
    except ConfigurationError as e:
        parser.error(str(e))

    setup_logging(LogConfig(level=config.log_level, file=config.log_file))  # type: ignore[arg-type]

    match args.command:
        case "serve":
            try:
                asyncio.run(_run_serve(config))
            except KeyboardInterrupt:
                pass
            return 0

        case "dispatch":
            try:
                event = AlertEvent(args.event_type, _parse_data(args.data))
            except argparse.ArgumentTypeError as e:
                parser.error(str(e))
            try:
                result = asyncio.run(_run_dispatch(config, event))
            except AsgctlError as e:
                logger.bind(component="cli").error(f"{args.event_type} failed: {e}")
                print(json.dumps({"status": "error", "error": type(e).__name__, "message": str(e)}))
                return 1
            print(json.dumps(result))
            return 0

    return 2


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
