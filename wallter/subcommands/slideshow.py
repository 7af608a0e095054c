"""
wallter slideshow

Rotate wallpapers across all monitors on an interval. Runs in the foreground until interrupted
(Ctrl+C) or until --duration has passed.
"""

import signal
import dataclasses

import click

from wallter.config import Interval, RotationPolicy, Unit
from wallter.slideshow import SlideshowScheduler
from wallter.cli_utils.console import confirm_success, describe
from wallter.cli_utils.decorators import catch_errors


@click.command(name="slideshow")
@click.option("--interval", "-i", type=float, help="Time between wallpaper changes.")
@click.option(
    "--unit",
    "-u",
    type=click.Choice([unit.value for unit in Unit]),
    help="Unit for --interval. Defaults to the configured unit.",
)
@click.option(
    "--rotation",
    type=click.Choice([policy.value for policy in RotationPolicy]),
    help="Show wallpapers in order or shuffled.",
)
@click.option("--favorites-only", is_flag=True, default=None, help="Only rotate favorites.")
@click.option("--duration", type=float, help="Stop after this many seconds.")
@click.option("--once", is_flag=True, help="Change the wallpaper once and exit.")
@click.pass_obj
@catch_errors
def cli(app, interval, unit, rotation, favorites_only, duration, once):
    """Start the wallpaper slideshow."""

    settings = app.config.slideshow
    changes = {}

    if interval is not None or unit is not None:
        changes["interval"] = Interval(
            value=settings.interval.value if interval is None else interval,
            unit=settings.interval.unit if unit is None else Unit(unit),
        )
    if rotation is not None:
        changes["rotation"] = RotationPolicy(rotation)
    if favorites_only:
        changes["favorites_only"] = True

    settings = dataclasses.replace(settings, **changes)

    scheduler = SlideshowScheduler(
        cache=app.cache,
        assigner=app.assigner,
        applier=app.applier,
        monitors=app.monitors,
        downloader=app.downloader,
        criteria=app.config.search.criteria(),
        download_count=app.config.search.download_count,
        eviction=app.config.cache.eviction_policy(),
        local_dir=app.config.paths.wallpaper_dir,
    )
    state = scheduler.start(settings)

    if once:
        result = scheduler.tick()
        scheduler.stop()
        confirm_success(
            f":white_check_mark-emoji: 'slideshow' updated {len(result.applied)} monitor(s)"
        )
        return

    describe(
        f":hourglass_flowing_sand-emoji: 'slideshow' rotating {len(state.order)} wallpaper(s) "
        f"every {settings.interval} (Ctrl+C to stop)"
    )

    previous = signal.signal(signal.SIGTERM, lambda *_: scheduler.stop())
    try:
        scheduler.run(duration=duration)
    except KeyboardInterrupt:
        scheduler.stop()
    finally:
        signal.signal(signal.SIGTERM, previous)

    confirm_success(f":white_check_mark-emoji: 'slideshow' stopped after {state.ticks} change(s)")
