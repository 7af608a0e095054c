"""
wallter favorite

Mark or unmark cached wallpapers as favorites. Favorites are never evicted and can be rotated on
their own with 'wallter slideshow --favorites-only'.
"""

import click

from wallter.cli_utils.console import confirm_success
from wallter.cli_utils.decorators import catch_errors


@click.command(name="favorite")
@click.argument("ids", nargs=-1, required=True)
@click.option("--remove", is_flag=True, help="Unmark instead of mark.")
@click.pass_obj
@catch_errors
def cli(app, ids, remove):
    """Mark wallpapers (by id or checksum) as favorites."""

    for id in ids:
        record = app.cache.mark_favorite(id, not remove)
        state = "no longer a favorite" if remove else "is now a favorite"
        confirm_success(f":star-emoji: '{record.id}' {state}")
