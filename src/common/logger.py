"""Logging utilities with rich console output.

Every module asks for its own logger; the CLI configures the root logger once.

Usage:
    from common.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Cloning %s", repo_url)
    logger.error("Build failed for %s", source_id, exc_info=True)
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

from common.env import env

# Global console instance for consistent output
console = Console(stderr=True)


def _rich_handler(show_time: bool = False, show_path: bool = False) -> RichHandler:
    handler = RichHandler(
        console=console,
        show_time=show_time,
        show_path=show_path,
        rich_tracebacks=True,
        markup=True,
    )
    handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%X]"))
    return handler


def get_logger(
    name: str,
    level: str | None = None,
    show_time: bool = False,
    show_path: bool = False,
) -> logging.Logger:
    """Get a configured logger with rich output.

    Args:
        name: Logger name (typically __name__ of the module)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               If None, uses environment variable LOG_LEVEL or defaults to INFO.
        show_time: Show timestamp in log output
        show_path: Show file path in log output

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers if logger already configured
    if logger.handlers:
        return logger

    logger.setLevel((level or env.log_level()).upper())

    logger.addHandler(_rich_handler(show_time=show_time, show_path=show_path))

    # Propagation keeps pytest caplog working
    logger.propagate = True

    return logger


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure the root logger for a bookshelf run.

    Called once by the CLI. Loggers created earlier by get_logger() lose their
    private handler and propagate to the root so that every message goes
    through the same console and optional file.

    Args:
        level: Default logging level for all modules
        log_file: Optional file path to also log to a file
    """
    level = level.upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(_rich_handler(show_time=True))

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)

    for logger in list(logging.Logger.manager.loggerDict.values()):
        if not isinstance(logger, logging.Logger):
            continue
        if logger.name.split(".")[0] in ("bookshelf", "common"):
            logger.handlers.clear()
            logger.setLevel(level)
            logger.propagate = True


def success(message: str) -> None:
    """Print a success line with a green checkmark."""
    console.print(f"[green]✓[/green] {message}")


def failure(message: str) -> None:
    """Print a failure line with a red X."""
    console.print(f"[red]✗[/red] {message}")
