"""
wallter add

Add your own images to the rotation. Files stay where they are; wallter only indexes them and
never deletes them.
"""

from pathlib import Path

import click

from wallter.cli_utils.console import confirm_success
from wallter.cli_utils.decorators import catch_errors


@click.command(name="add")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.pass_obj
@catch_errors
def cli(app, files):
    """Add local image files or directories to the wallpaper pool."""

    for file in files:
        records = app.cache.add_local_dir(file) if file.is_dir() else [app.cache.add_local(file)]

        for record in records:
            confirm_success(f":floppy_disk-emoji: 'add' indexed '{record.path.name}' as {record.id}")
