#!/usr/bin/env python
"""Command-line entry point: run one store command and print its JSON result."""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from promptpad_store import __version__
from promptpad_store.commands import COMMANDS, CommandRouter, format_error
from promptpad_store.config import StoreConfig, config
from promptpad_store.exceptions import ConfigurationError, PromptpadError, ValidationError
from promptpad_store.observability import configure_logging
from promptpad_store.storage.note_repository import NoteRepository


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="promptpad-store", description="Promptpad note store"
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--pool-size",
        help="Maximum number of pooled connections",
        type=int,
        default=None,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for rotating log files (console only if omitted)",
        type=str,
        default=None,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", choices=sorted(COMMANDS), help="Command to run")
    parser.add_argument(
        "args",
        nargs="?",
        default="{}",
        help='Command arguments as a JSON object, e.g. \'{"noteType": "prompt"}\'',
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> StoreConfig:
    """Overlay command line options on the environment-derived config."""
    overrides = {}
    if args.database_path:
        overrides["database_path"] = Path(args.database_path)
    if args.pool_size is not None:
        overrides["pool_size"] = args.pool_size
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_dir:
        overrides["log_dir"] = Path(args.log_dir)
    try:
        return StoreConfig.model_validate({**config.model_dump(), **overrides})
    except PydanticValidationError as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e


def main(argv: Optional[List[str]] = None) -> int:
    """Run a single command against the store and print the result."""
    args = parse_args(argv)

    try:
        store_config = build_config(args)
    except ConfigurationError as e:
        print(json.dumps(format_error(e)), file=sys.stderr)
        return 1

    log_level = getattr(logging, store_config.log_level.upper(), logging.INFO)
    configure_logging(level=log_level, log_dir=store_config.log_dir, console=True)
    logger = logging.getLogger(__name__)

    try:
        command_args = json.loads(args.args)
    except json.JSONDecodeError as e:
        error = ValidationError(f"arguments are not valid JSON: {e}", field="args")
        print(json.dumps(format_error(error)), file=sys.stderr)
        return 1

    try:
        with NoteRepository.open(
            store_config.get_database_path(),
            pool_size=store_config.pool_size,
            pool_timeout=store_config.pool_timeout,
            busy_timeout_ms=store_config.busy_timeout_ms,
        ) as repository:
            result = CommandRouter(repository).invoke(args.command, command_args)
    except PromptpadError as e:
        print(json.dumps(format_error(e)), file=sys.stderr)
        return 1

    logger.debug(f"Command {args.command} completed")
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
