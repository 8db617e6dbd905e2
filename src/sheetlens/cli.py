"""Command-line interface for SheetLens."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import uvicorn

from .config import settings


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="SheetLens - Preview and approve AI-proposed spreadsheet edits"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Server command
    server_parser = subparsers.add_parser("serve", help="Start the web server")
    server_parser.add_argument(
        "--host", default=settings.host, help=f"Host to bind to (default: {settings.host})"
    )
    server_parser.add_argument(
        "--port", type=int, default=settings.port, help=f"Port to bind to (default: {settings.port})"
    )
    server_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # Preview command
    preview_parser = subparsers.add_parser(
        "preview", help="Print the diff a batch of operations would produce"
    )
    preview_parser.add_argument(
        "--snapshot", required=True, help="JSON file mapping cell keys to cell snapshots"
    )
    preview_parser.add_argument(
        "--ops", required=True, help="JSON file with a list of operations"
    )
    preview_parser.add_argument(
        "--sheet",
        default=settings.default_active_sheet,
        help=f"Active sheet for unprefixed ranges (default: {settings.default_active_sheet})",
    )

    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "preview":
        sys.exit(asyncio.run(run_preview(Path(args.snapshot), Path(args.ops), args.sheet)))
    else:
        parser.print_help()
        sys.exit(1)


def run_server(host: str, port: int, reload: bool):
    """Run the web server."""
    uvicorn.run(
        "sheetlens.api:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


async def run_preview(snapshot_path: Path, ops_path: Path, active_sheet: str) -> int:
    """Simulate a batch offline and print its hunks as JSON."""
    from .engine import DiffCalculator, OperationSimulator
    from .snapshot import AISuggestedOperation, snapshot_from_dict

    try:
        before = snapshot_from_dict(json.loads(snapshot_path.read_text()))
        operations = [AISuggestedOperation(**op) for op in json.loads(ops_path.read_text())]
    except (OSError, ValueError, TypeError) as e:
        print(f"Could not load input: {e}", file=sys.stderr)
        return 1

    simulation = OperationSimulator().run(before, operations, active_sheet)
    result = await DiffCalculator().calculate_async(before, simulation.snapshot)

    output = {
        "hunks": [hunk.model_dump(mode="json", exclude_none=True) for hunk in result.hunks],
        "counts": result.counts_by_kind(),
        "truncated": result.truncated,
        "skipped": [
            {"index": s.index, "tool": s.tool, "reason": s.reason} for s in simulation.skipped
        ],
    }
    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    main()
