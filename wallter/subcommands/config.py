"""
wallter config

Show the active configuration, or write a fresh default config file.
"""

import click

from wallter.config import WallterConfig, generate_config_json
from wallter.cli_utils.console import confirm_success, console, warn
from wallter.cli_utils.decorators import catch_errors


@click.command(name="config")
@click.option("--reset", is_flag=True, help="Overwrite the config file with the defaults.")
@click.pass_obj
@catch_errors
def cli(app, reset):
    """Print the configuration."""

    if reset:
        warn(f"overwriting {app.config_path}")
        dest = generate_config_json(WallterConfig(), app.config_path)
        confirm_success(f":page_facing_up-emoji: 'config' wrote defaults to {dest}")
        return

    console.print(f"# {app.config_path}", style="describe")
    console.print_json(app.config.to_json())
