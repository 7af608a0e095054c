"""
wallter download

Fetch new wallpapers from the source into the cache.
"""

import click

from wallter.cli_utils.console import confirm_success, describe
from wallter.cli_utils.decorators import catch_errors


@click.command(name="download")
@click.option("--query", "-q", help="Search terms. Defaults to the configured query.")
@click.option(
    "--count",
    "-n",
    type=int,
    help="Number of new wallpapers to download. Defaults to search.download_count from the config.",
)
@click.option("--evict/--no-evict", default=True, show_default=True, help="Apply the cache bounds afterwards.")
@click.pass_obj
@catch_errors
def cli(app, query, count, evict):
    """Download wallpapers into the cache."""

    count = app.config.search.download_count if count is None else count
    criteria = app.config.search.criteria(**({"query": query} if query is not None else {}))

    describe(f":earth_asia-emoji: 'download' looking for {count} new wallpaper(s) ...")
    records = app.downloader.refresh(criteria, count)

    for record in records:
        confirm_success(f":floppy_disk-emoji: saved '{record.path.name}' ({record.width}x{record.height})")

    policy = app.config.cache.eviction_policy()
    if evict and policy is not None:
        evicted = app.cache.evict(policy)
        if evicted:
            describe(f":wastebasket-emoji: evicted {evicted} old wallpaper(s)")

    confirm_success(f":white_check_mark-emoji: 'download' added {len(records)} wallpaper(s)")
