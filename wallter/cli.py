"""
wallter

Keep your desktops fresh with wallpapers from Wallhaven: download and cache images, fit them to
every monitor, and rotate them on a schedule.

This module defines the entry point to the wallter CLI. The 'cli' group loads the configuration
and sets up logging; the subcommands live in the wallter.subcommands package and are attached by
main() at startup.
"""

from pathlib import Path

import click

from wallter import config as wallter_config
from wallter.cli_utils.console import setup_logging
from wallter.cli_utils.decorators import catch_errors
from wallter.cli_utils.utils import WallterApp, attach_commands, import_commands


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Use this config.json instead of ~/.config/wallter/config.json.",
)
@click.option(
    "--verbose",
    "verbosity",
    flag_value="verbose",
    help="Show debug output.",
)
@click.option(
    "--quiet",
    "verbosity",
    flag_value="quiet",
    help="Only show warnings and errors.",
)
@click.version_option(package_name="wallter")
@click.pass_context
@catch_errors
def cli(ctx: click.Context, config_path: Path, verbosity):
    """
    Wallter

    Download wallpapers, fit them to your monitors and rotate them on a schedule.


    ====================
    Quickstart
    ====================

    Grab a few wallpapers and start a slideshow that changes every 10 minutes:

        $ wallter download --count 10

        $ wallter slideshow --interval 10 --unit minutes


    ====================
    Usage:
    ====================

    - Search Wallhaven without downloading anything:

            $ wallter search -q "mountains" --limit 5

    - See what is in the cache and mark favorites (favorites are never evicted):

            $ wallter list

            $ wallter favorite <id>

    - Add your own images to the rotation:

            $ wallter add ~/Pictures/holiday.jpg

    - Keep the cache small:

            $ wallter evict --max-count 50

    - Switch the desktop between light and dark:

            $ wallter color --mode dark

            $ wallter color --toggle


    ====================
    Help
    ====================

    To see what's available and for detailed help text add --help to the specified command, e.g.

        $ wallter slideshow --help
    """

    setup_logging(verbosity or "normal")

    config_path = config_path or wallter_config.config_file()
    config = wallter_config.init(config_path)
    config.paths.create_all()

    ctx.obj = WallterApp(config=config, config_path=config_path)


def main():

    commands = import_commands()
    attach_commands(cli, commands)
    cli()


if __name__ == "__main__":
    main()
