"""
wallter color

Switch the desktop between light and dark. Without options the mode from the 'color' section of
the config is applied.
"""

import click

from wallter.color_handler import ColorMode, apply_mode, make_color_setter, toggle_mode
from wallter.cli_utils.console import confirm_success, describe
from wallter.cli_utils.decorators import catch_errors


@click.command(name="color")
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in ColorMode]),
    help="Apply this mode instead of the configured one.",
)
@click.option("--toggle", is_flag=True, help="Flip between light and dark.")
@click.option("--show", is_flag=True, help="Only print the current mode.")
@click.pass_obj
@catch_errors
def cli(app, mode, toggle, show):
    """Set the desktop color mode."""

    setter = make_color_setter()

    if show:
        describe(f"The desktop is {setter.detect().value}")
        return

    if toggle:
        target = toggle_mode(setter)
    else:
        target = apply_mode(mode or app.config.color.mode, setter)

    confirm_success(f":crescent_moon-emoji: 'color' desktop is {target.value}")
