"""CLI entry point — serve the HTTP API or run index management operations.

Examples::

    searchsync serve --port 9090
    searchsync --config searchsync-config.yaml import articles
    searchsync refresh --all
    searchsync validate articles --issues
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

CONFIG_ENV_VAR = "SEARCHSYNC_CONFIG_PATH"

INDEX_COMMANDS = {
    "import": "Queue a full import of the index content",
    "flush": "Remove every document from the remote index",
    "refresh": "Rebuild the index, by atomic swap when the engine supports it",
    "status": "Show connection state and document count",
    "validate": "Validate field mappings against sample content (markdown)",
    "redetect": "Re-detect field mappings and save them",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="searchsync",
        description="searchsync — keep content mirrored into pluggable search engines",
    )
    parser.add_argument("--config", "-c", type=str, default=None, help="Path to YAML configuration file")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (overrides config)",
    )
    parser.add_argument("--version", action="version", version=f"searchsync {_get_version()}")

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API server")
    serve.add_argument("--host", type=str, default=None, help="Server bind address (overrides config)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Server port (overrides config)")
    serve.add_argument("--workers", "-w", type=int, default=None, help="Number of worker processes")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    for name, help_text in INDEX_COMMANDS.items():
        command = commands.add_parser(name, help=help_text)
        target = command.add_mutually_exclusive_group(required=True)
        target.add_argument("handle", nargs="?", default=None, help="Index handle")
        target.add_argument("--all", action="store_true", help="Run for every enabled index")
        if name == "validate":
            command.add_argument("--item", type=str, default=None, help="Validate against this item id only")
            command.add_argument("--site", type=str, default=None, help="Site of the item")
            command.add_argument("--issues", action="store_true", help="Only show rows that are not OK")
        if name == "redetect":
            command.add_argument("--fresh", action="store_true", help="Discard current mappings")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    from searchsync.config.settings import Settings
    from searchsync.observability.logging import setup_logging

    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Error: Config file not found: {config_path}", file=sys.stderr)
            sys.exit(1)
        settings = Settings.from_yaml(config_path)
    else:
        settings = Settings()

    if args.log_level:
        settings.observability.log_level = args.log_level
    setup_logging(settings.observability)

    if args.command == "serve":
        _serve(args, settings)
        return

    sys.exit(asyncio.run(run_command(args, settings)))


def _serve(args: argparse.Namespace, settings: Any) -> None:
    if args.host:
        settings.server.host = args.host
    if args.port:
        settings.server.port = args.port
    if args.workers:
        settings.server.workers = args.workers
    if args.config:
        # Worker processes rebuild settings inside the app factory
        os.environ[CONFIG_ENV_VAR] = str(Path(args.config).resolve())

    _check_port(settings.server.host, settings.server.port)

    import uvicorn

    uvicorn.run(
        "searchsync.api.app:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        workers=settings.server.workers if not args.reload else 1,
        reload=args.reload,
        log_level=settings.observability.log_level.lower(),
    )


async def run_command(args: argparse.Namespace, settings: Any, service: Any = None) -> int:
    """Run one management command and print its result. Returns the exit code."""
    from searchsync.core.service import SearchSyncService
    from searchsync.exceptions import SearchSyncError

    svc = service or SearchSyncService(settings)
    await svc.initialize()
    try:
        kwargs: dict[str, Any] = {}
        if args.command == "validate":
            kwargs = {"item_id": args.item, "site": args.site}
        elif args.command == "redetect":
            kwargs = {"fresh": args.fresh}

        if args.all:
            results = await svc.run_for_all(args.command, **kwargs)
        else:
            try:
                results = {args.handle: await svc.perform(args.handle, args.command, **kwargs)}
            except SearchSyncError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1

        if args.command == "validate":
            _print_validation(results, issues_only=args.issues)
        else:
            print(json.dumps(results, indent=2, default=str, ensure_ascii=False))
        return 1 if any("error" in result for result in results.values()) else 0
    finally:
        await svc.shutdown()


def _print_validation(results: dict[str, dict[str, Any]], issues_only: bool) -> None:
    from searchsync.mapping.validator import ValidationReport

    for handle, result in results.items():
        if "error" in result:
            print(f"# {handle}\n\nError: {result['error']}\n")
            continue
        report = ValidationReport.model_validate(result["report"])
        print(report.to_markdown(issues_only=issues_only))


def _check_port(host: str, port: int) -> None:
    """Exit with a message when the port is already taken."""
    import socket

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host if host != "0.0.0.0" else "127.0.0.1", port))
    except OSError:
        print(f"Error: Port {port} is already in use. Run 'lsof -i :{port}' to find the process.", file=sys.stderr)
        sys.exit(1)
    finally:
        sock.close()


def _get_version() -> str:
    from searchsync import __version__

    return __version__


if __name__ == "__main__":
    main()
