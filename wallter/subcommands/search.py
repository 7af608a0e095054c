"""
wallter search

Query the wallpaper source and show what it would download, without downloading anything.
"""

from itertools import islice

import click
from rich.table import Table

from wallter.cli_utils.console import console, describe
from wallter.cli_utils.decorators import catch_errors


@click.command(name="search")
@click.option("--query", "-q", help="Search terms, e.g. -q 'mountain lake'. Defaults to the configured query.")
@click.option(
    "--sorting",
    type=click.Choice(["date_added", "relevance", "random", "views", "favorites", "toplist"]),
    help="Result ordering. Defaults to the configured sorting.",
)
@click.option("--page", type=int, default=1, show_default=True, help="First result page to fetch.")
@click.option("--limit", type=int, default=24, show_default=True, help="Maximum number of results to show.")
@click.pass_obj
@catch_errors
def cli(app, query, sorting, page, limit):
    """Search Wallhaven for wallpapers."""

    overrides = {"page": page, "max_pages": max(1, -(-limit // 24))}
    if query is not None:
        overrides["query"] = query
    if sorting is not None:
        overrides["sorting"] = sorting

    criteria = app.config.search.criteria(**overrides)
    results = list(islice(app.source.search(criteria), limit))

    if not results:
        describe(":mag-emoji: 'search' found nothing")
        return

    table = Table("id", "resolution", "url", title=f"{len(results)} result(s)")
    for descriptor in results:
        table.add_row(descriptor.id, f"{descriptor.width}x{descriptor.height}", descriptor.url)

    console.print(table)
