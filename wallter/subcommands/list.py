"""
wallter list

Show the wallpapers in the cache.
"""

import click
from rich.table import Table

from wallter.cache_handler import RecordFilter
from wallter.cli_utils.console import console, describe
from wallter.cli_utils.decorators import catch_errors


@click.command(name="list")
@click.option(
    "--filter",
    "record_filter",
    type=click.Choice([f.value for f in RecordFilter]),
    default=RecordFilter.ALL.value,
    show_default=True,
)
@click.pass_obj
@catch_errors
def cli(app, record_filter):
    """List cached wallpapers."""

    records = app.cache.list(RecordFilter(record_filter))

    if not records:
        describe("the cache is empty. Try 'wallter download'.")
        return

    table = Table("id", "size", "favorite", "last set", "file")
    for record in records:
        table.add_row(
            record.id,
            f"{record.width}x{record.height}",
            ":star:" if record.favorite else "",
            record.last_set_at.strftime("%Y-%m-%d %H:%M") if record.last_set_at else "never",
            str(record.path),
        )

    console.print(table)
