"""Logging setup for the command line."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def log_level(verbose: bool = False, quiet: bool = False) -> int:
    if quiet:
        return logging.WARNING
    if verbose:
        return logging.DEBUG
    return logging.INFO


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Send log records of all modules to stderr through rich."""
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
    )
    logging.basicConfig(
        level=log_level(verbose, quiet),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # Request lines of the HTTP client only with --verbose
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
