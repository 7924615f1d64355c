"""
Command line entry point.

    python -m tarot_pipeline --demo

Loads .env / .env.local (never overriding variables already exported),
configures logging and runs one reading session.
"""
import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from logging_setup import get_logger, Component, setup_logging
from .config import ReaderConfig, get_config
from .session import ReadingSession


logger = get_logger(Component.CLI)

EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def _load_env_files() -> None:
    root = Path(__file__).parent.parent
    for name in (".env", ".env.local"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tarot_pipeline",
        description="Voice tarot reader with a supervised streaming dialog.",
    )
    parser.add_argument("--demo", action="store_true", help="type instead of speaking; print instead of TTS")
    parser.add_argument("--debug", action="store_true", help="DEBUG level logs")
    parser.add_argument("--no-supervisor", action="store_true", help="skip compliance checks and enhancement")
    parser.add_argument("--no-enhance", action="store_true", help="speak the worker's reading as is")
    parser.add_argument("--scenario", default=None, help="scenario name under tarot_pipeline/scenarios/")
    parser.add_argument("--text-logs", action="store_true", help="human-readable logs instead of JSON")
    return parser


def apply_args(config: ReaderConfig, args: argparse.Namespace) -> ReaderConfig:
    """Command line flags only ever switch features on (demo/debug) or off."""
    return replace(
        config,
        demo_mode=config.demo_mode or args.demo,
        debug=config.debug or args.debug,
        supervisor_enabled=config.supervisor_enabled and not args.no_supervisor,
        enhance_reading=config.enhance_reading and not args.no_enhance,
        scenario=args.scenario or config.scenario,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _load_env_files()

    config = apply_args(get_config(), args)
    setup_logging(level="DEBUG" if config.debug else "INFO", use_json=not args.text_logs)

    logger.info(
        "Tarot reader starting",
        demo_mode=config.demo_mode,
        supervisor_enabled=config.supervisor_enabled,
        worker_available=config.worker_available,
    )

    try:
        asyncio.run(ReadingSession(config).run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except EOFError:
        logger.info("Input closed, ending reading")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Reading failed", error_type=type(e).__name__)
        return EXIT_ERROR
    return 0


if __name__ == "__main__":
    sys.exit(main())
