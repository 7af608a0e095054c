"""
wallter evict

Trim the cache down to a size or count bound. Least recently shown wallpapers go first;
favorites and your own images are never removed.
"""

import click

from wallter.cache_handler import EvictionPolicy
from wallter.cli_utils.console import confirm_success
from wallter.cli_utils.decorators import catch_errors


@click.command(name="evict")
@click.option("--max-count", type=int, help="Keep at most this many downloaded wallpapers.")
@click.option("--max-bytes", type=int, help="Keep the downloads under this many bytes.")
@click.pass_obj
@catch_errors
def cli(app, max_count, max_bytes):
    """Remove old wallpapers from the cache."""

    if max_count is None and max_bytes is None:
        policy = app.config.cache.eviction_policy()
        if policy is None:
            raise click.UsageError("Give --max-count/--max-bytes or set them in the cache config.")
    else:
        policy = EvictionPolicy(max_count=max_count, max_bytes=max_bytes)

    evicted = app.cache.evict(policy)
    confirm_success(f":wastebasket-emoji: 'evict' removed {evicted} wallpaper(s)")
