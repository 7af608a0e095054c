"""
wallter console utilities

This module provides application-wide access to a Rich Console object for
handling writing to stdout and stderr. Themes are defined here and shared by the
user-facing message helpers and the log handler, so log records emitted by the core
modules render in the same style as command output.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

wallter_theme = Theme(
    {"warning": "orange_red1", "fail": "bold red", "confirm": "green", "describe": ""}
)

console = Console(theme=wallter_theme)
error_console = Console(theme=wallter_theme, stderr=True)

LOG_LEVELS = {"verbose": logging.DEBUG, "normal": logging.INFO, "quiet": logging.WARNING}


"""
Formatting helpers
"""


def warn(msg: str):
    """
    Format msg and print to stderr.
    """

    error_console.print(
        f":exclamation_mark-emoji: [bold]warning: [/] {msg}", style="warning"
    )


def describe(msg: str, **kwargs):
    """
    Format descriptive msg and print to stdout.
    """

    console.print(f"{msg}", style="describe", **kwargs)


def confirm_success(msg: str, **kwargs):
    """
    Format confirmation msg and print to stdout. Accept any additional kwargs that console.print from
    rich module exposes.
    """

    console.print(f"{msg}", style="confirm", **kwargs)


def fail(msg: str):
    """
    Format failure msg and print to stderr.
    """

    error_console.print(f":x-emoji: failed. {msg}", style="fail")


def setup_logging(verbosity: str = "normal") -> None:
    """
    Route the 'wallter' loggers through a RichHandler on stderr. Safe to call more than once;
    the previous handler is replaced.
    """

    logger = logging.getLogger("wallter")
    logger.setLevel(LOG_LEVELS.get(verbosity, logging.INFO))

    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    logger.addHandler(
        RichHandler(
            console=error_console,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    )
