"""
wallter monitors

Show the monitors wallter will fill: the ones listed in the config, or the detected ones when the
config has none.
"""

import click
from rich.table import Table

from wallter.cli_utils.console import console
from wallter.cli_utils.decorators import catch_errors


@click.command(name="monitors")
@click.pass_obj
@catch_errors
def cli(app):
    """List monitors."""

    table = Table("id", "name", "resolution", "orientation", "scale", "position", "primary")

    for monitor in app.monitors:
        width, height = monitor.size
        table.add_row(
            monitor.id,
            monitor.name,
            f"{width}x{height}",
            monitor.orientation.value,
            f"{monitor.scale:.1f}x",
            f"({monitor.position[0]}, {monitor.position[1]})",
            "yes" if monitor.primary else "",
        )

    console.print(table)
