"""
wallter CLI Utilities

This module contains utilities for working across Click subcommands: the WallterApp object that
subcommands receive through the click context, and helpers for importing subcommands from the
subcommands package.
"""

import pkgutil
import importlib
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Optional

import click

import wallter.subcommands

from wallter.cache_handler import CacheStore
from wallter.config import MonitorConfig, WallterConfig
from wallter.downloader import Downloader
from wallter.monitor_handler import MonitorAssigner, detect_monitors
from wallter.source_handler import SourceClient, WallhavenClient
from wallter.wallpaper_handler import WallpaperApplier, make_applier
from wallter.cli_utils.console import warn


@dataclass
class WallterApp:
    """
    Everything a subcommand needs, built lazily from the loaded configuration so a command that
    only prints the config never touches the cache directory or the network.
    """

    config: WallterConfig
    config_path: Optional[Path] = None

    @cached_property
    def cache(self) -> CacheStore:
        return CacheStore(
            self.config.paths.downloads_dir,
            favorites_dir=self.config.paths.favorites_dir,
            verify=self.config.cache.verify,
        )

    @cached_property
    def source(self) -> SourceClient:
        return WallhavenClient(
            api_key=self.config.search.api_key,
            retry_policy=self.config.network.retry_policy(),
            timeout=self.config.network.timeout,
        )

    @cached_property
    def downloader(self) -> Downloader:
        return Downloader(self.source, self.cache, workers=self.config.network.workers)

    @cached_property
    def assigner(self) -> MonitorAssigner:
        return MonitorAssigner()

    @cached_property
    def monitors(self) -> list[MonitorConfig]:
        if self.config.monitors:
            return list(self.config.monitors)

        return detect_monitors()

    @cached_property
    def applier(self) -> WallpaperApplier:
        return make_applier(self.config.slideshow.apply_command, self.monitors)


def import_commands(package=wallter.subcommands) -> list[click.Command]:
    """
    Retrieve the click Commands defined in the modules of package. Default package is the built in
    subcommands package for commands that come pre-installed with Wallter.

    A valid wallter command module defines a "cli" function that is wrapped as a click Command
    object. Set the 'name' keyword argument in the @click.command decorator to set the name of the
    command intended for the end user.
    """

    commands = []

    for module_info in sorted(pkgutil.iter_modules(package.__path__), key=lambda m: m.name):
        module = importlib.import_module(f"{package.__name__}.{module_info.name}")

        try:
            commands.append(getattr(module, "cli"))

        except AttributeError:
            warn(f"Cannot add command {module_info.name}: no 'cli' function found.")

    return commands


def attach_commands(group: click.Group, commands: list[click.Command]):
    """
    Attach each command in a list of click Command objects to a provided group. Useful when
    retrieving a dynamic list of subcommands with import_commands().
    """

    for command in commands:
        group.add_command(command)
