"""
Copy Engine - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the copy-trading pipeline.

- process: one batch pass over pending trades
- detect:  one poll of every leader account
- run:     detect + process loop
- serve:   scheduler API under uvicorn

============================================================
USAGE
============================================================
copy-engine process
copy-engine detect --dry-run
copy-engine run --interval 30
copy-engine serve --port 8000

============================================================
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from .config import CopyEngineConfig
from .factory import create_runtime


logger = logging.getLogger("copy_engine")


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "text") -> None:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="copy-engine",
        description="Copy-trading execution pipeline",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Logging format (default: text)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Route orders to the mock broker gateway",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing database tables on startup",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("process", help="Process all pending trades once")
    commands.add_parser("detect", help="Poll leader accounts once")

    run = commands.add_parser("run", help="Detect and process in a loop")
    run.add_argument(
        "--interval",
        type=int,
        default=30,
        metavar="SECONDS",
        help="Seconds between passes (default: 30)",
    )
    run.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        metavar="N",
        help="Stop after N passes",
    )

    serve = commands.add_parser("serve", help="Serve the scheduler API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def build_config(args: argparse.Namespace) -> CopyEngineConfig:
    """Environment configuration with CLI overrides."""
    config = CopyEngineConfig.from_env()
    if args.dry_run:
        config.dry_run = True
    return config


# ============================================================
# COMMANDS
# ============================================================

async def run_loop(runtime, interval: int, max_cycles: Optional[int] = None) -> None:
    """Detect then process, every interval seconds."""
    cycle = 0
    while max_cycles is None or cycle < max_cycles:
        cycle += 1
        try:
            detected = await runtime.detector.poll_all_leaders()
            stats = await runtime.processor.process_all_pending_trades()
            logger.info(f"Cycle {cycle}: detection={detected} processing={stats.to_dict()}")
        except Exception as e:
            logger.error(f"Cycle {cycle} failed: {e}", exc_info=True)

        if max_cycles is None or cycle < max_cycles:
            await asyncio.sleep(interval)


async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    runtime = await create_runtime(build_config(args), create_tables=args.create_tables)

    try:
        if args.command == "process":
            stats = await runtime.processor.process_all_pending_trades()
            print(json.dumps(stats.to_dict(), indent=2))
        elif args.command == "detect":
            result = await runtime.detector.poll_all_leaders()
            print(json.dumps(result, indent=2))
        elif args.command == "run":
            await run_loop(runtime, args.interval, args.max_cycles)
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        await runtime.close()


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    uvicorn.run(create_app(build_config(args)), host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level, args.log_format)

    if args.command == "serve":
        return serve(args)

    return asyncio.run(async_main(args))


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
