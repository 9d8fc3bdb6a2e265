#!/usr/bin/env python3
"""CLI interface for bookshelf."""

import argparse
from pathlib import Path

from common.constants import EXIT_FATAL, EXIT_OK, EXIT_PARTIAL
from common.env import env
from common.logger import failure, get_logger, setup_logging, success

from .config import ShelfConfig, load_config
from .models import BatchOutcome
from .orchestrator import ShelfOrchestrator
from .types import BookshelfError, ConfigError

logger = get_logger(__name__)


def exit_status(outcome: BatchOutcome, fail_on_source_error: bool) -> int:
    """
    Map a finished run to a process exit status.

    The catalog has already been written from the successful sources at this
    point; failed sources only change the status when the run is strict.

    Returns:
        0 when nothing failed or partial results are accepted,
        2 when a strict run had failed sources
    """
    if outcome.has_failures and fail_on_source_error:
        return EXIT_PARTIAL
    return EXIT_OK


def print_summary(outcome: BatchOutcome) -> None:
    for entry in outcome.entries:
        success(f"{entry.title or entry.repo_url} [dim]({entry.commit_sha[:7]}, {entry.path})[/dim]")
    for item in outcome.failures:
        failure(f"{item.source_id} [dim]({item.stage})[/dim]: {item.reason}")


def build_config(args: argparse.Namespace) -> ShelfConfig:
    """Load the config document and apply command line overrides."""
    config_path = args.config or env.config_path()
    config = load_config(config_path, required=args.config is not None)

    fail_on_source_error = None
    if args.allow_partial:
        fail_on_source_error = False
    elif args.strict:
        fail_on_source_error = True

    return config.with_overrides(
        destination_dir=args.destination_dir,
        templates_dir=args.templates_dir,
        working_dir=args.working_dir,
        workers=args.workers,
        fail_on_source_error=fail_on_source_error,
    ).resolve()


def cmd_build(args: argparse.Namespace) -> int:
    """Build every configured book and render the catalog.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 success, 1 fatal error, 2 some books failed)
    """
    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FATAL

    logger.info(f"Cloning repositories to {config.working_dir}")
    if config.templates_dir is not None:
        logger.info(f"Using templates in {config.templates_dir}")
    else:
        logger.info("No templates dir provided, writing manifest")

    try:
        orchestrator = ShelfOrchestrator(config)
        outcome = orchestrator.run()
    except ValueError as e:
        # Malformed BOOKSHELF_* environment values
        logger.error(f"Configuration error: {e}")
        return EXIT_FATAL
    except BookshelfError as e:
        logger.error(f"Application error: {e}", exc_info=args.log_level == "DEBUG")
        return EXIT_FATAL

    print_summary(outcome)
    return exit_status(outcome, config.fail_on_source_error)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookshelf",
        description="Build EPUBs from a collection of mdbook repositories and publish a catalog",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to the shelf config (default: $BOOKSHELF_CONFIG or ./bookshelf.toml)",
    )
    parser.add_argument(
        "-w",
        "--working-dir",
        "--working_dir",
        dest="working_dir",
        type=Path,
        default=None,
        help="Directory where the book repositories are cloned (default: ./repos)",
    )
    parser.add_argument(
        "-d",
        "--destination-dir",
        "--destination_dir",
        dest="destination_dir",
        type=Path,
        default=None,
        help="Directory receiving the EPUBs and the catalog",
    )
    parser.add_argument(
        "-t",
        "--templates-dir",
        "--templates_dir",
        dest="templates_dir",
        type=Path,
        default=None,
        help="Templates directory (if not set, will generate manifest.json)",
    )
    parser.add_argument(
        "-j",
        "--workers",
        type=int,
        default=None,
        help="Number of books processed in parallel (default: number of CPUs)",
    )
    policy = parser.add_mutually_exclusive_group()
    policy.add_argument(
        "--allow-partial",
        action="store_true",
        help="Exit 0 when some books failed but the catalog was written",
    )
    policy.add_argument(
        "--strict",
        action="store_true",
        help="Exit 2 when any book failed (default unless the config says otherwise)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: $LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file",
    )
    parser.set_defaults(func=cmd_build)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    args.log_level = args.log_level or env.log_level()
    setup_logging(level=args.log_level, log_file=args.log_file)

    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
