"""Command-line entry point.

Usage:
    beepboop status /srv/app
    beepboop claim /srv/app backend-1 -d "Fix login"
    beepboop release /srv/app backend-1 -m "Login fixed"
    beepboop complete /srv/app
    beepboop reclaim /srv/app crashed-agent --new-agent backend-2
    beepboop listen --port 7077
    beepboop mcp            # MCP server on stdin/stdout
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace

from beepboop.config import load_config, validate_config
from beepboop.config.schema import Config
from beepboop.errors import ConfigError, CoordinationError
from beepboop.logging import get_logger, setup_logging
from beepboop.tools import CoordinationTools, ToolResult

log = get_logger()

EXIT_OK = 0
EXIT_TOOL_ERROR = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="beepboop",
        description="Directory work coordination with beep/boop marker files.",
    )
    parser.add_argument("--project-root", help="Directory holding .beepboop/config.yaml")
    parser.add_argument("-v", "--verbose", action="count", default=None, help="More logging")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Show the coordination state of a directory")
    status.add_argument("directory")
    status.add_argument("--max-age-hours", type=float)
    status.add_argument("--auto-clean-stale", action="store_true")
    status.add_argument("--new-agent-id")
    status.add_argument("--json", action="store_true", help="Print the raw status as JSON")

    claim = sub.add_parser("claim", help="Claim a directory (create/update boop)")
    claim.add_argument("directory")
    claim.add_argument("agent_id")
    claim.add_argument("-d", "--description")

    release = sub.add_parser("release", help="End work (boop -> beep)")
    release.add_argument("directory")
    release.add_argument("agent_id")
    release.add_argument("-m", "--message")

    complete = sub.add_parser("complete", help="Mark a directory complete (create beep)")
    complete.add_argument("directory")
    complete.add_argument("-m", "--message")

    reclaim = sub.add_parser("reclaim", help="Remove a stale claim, optionally claiming it")
    reclaim.add_argument("directory")
    reclaim.add_argument("expected_holder")
    reclaim.add_argument("--new-agent")
    reclaim.add_argument("-d", "--description")

    listen = sub.add_parser("listen", help="Run the shared listener")
    listen.add_argument("--host")
    listen.add_argument("--port", type=int)

    sub.add_parser("mcp", help="Run the MCP server over stdio")
    return parser


def _print_result(result: ToolResult) -> int:
    stream = sys.stderr if result.is_error else sys.stdout
    print(result.text, file=stream)
    return EXIT_TOOL_ERROR if result.is_error else EXIT_OK


async def _run_tool(args: argparse.Namespace, config: Config) -> int:
    tools = CoordinationTools.from_config(config)

    if args.command == "status":
        result = await tools.check_status(
            args.directory,
            max_age_hours=args.max_age_hours,
            auto_clean_stale=args.auto_clean_stale,
            new_agent_id=args.new_agent_id,
        )
        if args.json and not result.is_error and "status" in result.meta:
            print(json.dumps(result.meta["status"], indent=2))
            return EXIT_OK
        return _print_result(result)
    if args.command == "claim":
        return _print_result(await tools.update_boop(args.directory, args.agent_id, args.description))
    if args.command == "release":
        return _print_result(await tools.end_work(args.directory, args.agent_id, args.message))
    if args.command == "complete":
        return _print_result(await tools.create_beep(args.directory, args.message))

    # reclaim
    try:
        outcome = tools.coordinator.reclaim_stale(
            args.directory, args.expected_holder, args.new_agent, args.description
        )
    except CoordinationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_TOOL_ERROR
    print(outcome.message)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = validate_config(load_config(project_root=args.project_root))
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if args.verbose is not None:
        config = replace(config, logging=replace(config.logging, verbose=min(args.verbose + 1, 4)))
    setup_logging(config.logging)

    if args.command == "mcp":
        from beepboop.mcp_server import run_stdio

        run_stdio(config)
        return EXIT_OK

    if args.command == "listen":
        from beepboop.listener.server import serve_listener

        listener = config.listener
        if args.host:
            listener = replace(listener, host=args.host)
        if args.port:
            listener = replace(listener, port=args.port)
        try:
            asyncio.run(serve_listener(replace(config, listener=listener)))
        except KeyboardInterrupt:
            log.info("Listener interrupted")
        return EXIT_OK

    return asyncio.run(_run_tool(args, config))


if __name__ == "__main__":
    sys.exit(main())
