"""
wallter Decorators

Decorators shared by the wallter subcommands. Subcommands stay focused on their own work and
leave error presentation to @catch_errors:

    @click.command(name="sparkle")
    @click.pass_obj
    @catch_errors
    def cli(app):
        '''Make the wallpapers sparkle'''
        ...
"""

import sys
from functools import wraps

from wallter.cache_handler import CacheError
from wallter.color_handler import ColorModeError
from wallter.config import WallterConfigError
from wallter.monitor_handler import NoEligibleWallpaper
from wallter.source_handler import SourceError
from wallter.wallpaper_handler import ApplyFailed
from wallter.cli_utils.console import fail

EXPECTED_ERRORS = (
    WallterConfigError,
    CacheError,
    ColorModeError,
    SourceError,
    NoEligibleWallpaper,
    ApplyFailed,
)


def catch_errors(func):
    """
    Catch and format the errors wallter knows about with the "fail" console template and
    gracefully exit the application with an error code. Anything else is a bug and keeps
    its traceback.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except EXPECTED_ERRORS as error:
            fail(str(error))
            sys.exit(1)

    return wrapper
