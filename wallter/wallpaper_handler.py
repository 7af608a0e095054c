"""
Wallpaper Handler

This module puts an image on a monitor. The scheduler only knows the WallpaperApplier interface:
apply(monitor_id, path) either succeeds or raises ApplyFailed. Two implementations ship:

GnomeApplier drops into the gsettings CLI to update the org.gnome.desktop.background schema. GNOME
keeps a single background for all monitors, so the monitor id is ignored and the last applied image
wins.

CommandApplier runs a user supplied command template for desktops that have a per-output wallpaper
tool (swww, swaybg, hyprpaper, feh, ...). The template may reference {monitor}, {name} and {path}.

Settings for desktop backgrounds are defined under the schema: org.gnome.desktop.background
More information on this schema can be found at:
https://github.com/GNOME/gsettings-desktop-schemas/blob/master/schemas/org.gnome.desktop.background.gschema.xml.in
"""

import shlex
import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from wallter import image_handler

logger = logging.getLogger(__name__)

GSETTINGS = "/usr/bin/gsettings"
SCHEMA = "org.gnome.desktop.background"


class ApplyFailed(Exception):
    """
    Raised when an attempt to update a monitor's background fails.
    """

    pass


def validate_wallpaper(img_path) -> Path:
    """
    Resolve img_path and make sure it points at an existing image. Accepts file:// URIs as
    well as plain paths. Returns the absolute path.
    """

    try:
        img_path = Path(str(img_path).removeprefix("file://"))
    except TypeError:
        raise ApplyFailed(f"Invalid parameter: {img_path} is not a valid Pathlike object.")

    wallpaper_location = img_path.expanduser().resolve()

    # subsequent operations will fail if path does not exist or is not a file, so catch this.
    if str(img_path) in ("", ".") or not wallpaper_location.is_file():
        raise ApplyFailed(f"Invalid path provided for image location: {img_path} does not exist.")

    try:
        image_handler.validate_image(wallpaper_location)
    except image_handler.InvalidImageError:
        raise ApplyFailed(
            f"Invalid image type provided. {wallpaper_location.name} is not a valid image."
        )

    return wallpaper_location


class WallpaperApplier(ABC):
    @abstractmethod
    def apply(self, monitor_id: str, path: Path) -> None:
        """Show the image at path on the monitor. Raise ApplyFailed on any problem."""


class GnomeApplier(WallpaperApplier):
    def apply(self, monitor_id: str, path: Path) -> None:
        wallpaper_location = validate_wallpaper(path)

        # both keys are set so the wallpaper also shows when the dark style is active
        for key in ("picture-uri", "picture-uri-dark"):
            try:
                subprocess.run(
                    [GSETTINGS, "set", SCHEMA, key, wallpaper_location.as_uri()],
                    check=True,
                    capture_output=True,
                    text=True,
                )

            except (subprocess.CalledProcessError, OSError) as error:
                raise ApplyFailed(f"Could not set desktop background: {error}")

        logger.debug("gsettings %s now points at %s", SCHEMA, wallpaper_location)


class CommandApplier(WallpaperApplier):
    """Apply wallpapers by running a command template, e.g. 'swww img -o {name} {path}'."""

    def __init__(self, template: str, names: Optional[dict] = None, timeout: float = 30.0):
        self.template = template
        self.names = names or {}
        self.timeout = timeout

    def command(self, monitor_id: str, path: Path) -> list[str]:
        return [
            part.format(
                monitor=monitor_id,
                name=self.names.get(monitor_id, monitor_id),
                path=str(path),
            )
            for part in shlex.split(self.template)
        ]

    def apply(self, monitor_id: str, path: Path) -> None:
        wallpaper_location = validate_wallpaper(path)
        command = self.command(monitor_id, wallpaper_location)

        try:
            subprocess.run(
                command, check=True, capture_output=True, text=True, timeout=self.timeout
            )

        except subprocess.CalledProcessError as error:
            raise ApplyFailed(
                f"'{' '.join(command)}' exited with {error.returncode}: {error.stderr.strip()}"
            )

        except subprocess.TimeoutExpired:
            raise ApplyFailed(f"'{' '.join(command)}' timed out after {self.timeout}s")

        except OSError as error:
            raise ApplyFailed(f"Could not run '{command[0]}': {error}")


def get_current_wallpaper() -> Path:
    """
    Retrieve the current wallpaper from the Gnome settings for desktop background. This is done
    by dropping into the gsettings shell command.
    """

    try:
        process = subprocess.run(
            [GSETTINGS, "get", SCHEMA, "picture-uri"],
            check=True,
            capture_output=True,
            text=True,
        )

    except (subprocess.CalledProcessError, OSError) as error:
        raise ApplyFailed(f"Could not retrieve current background: {error}")

    # gsettings prints the value quoted, e.g. 'file:///home/me/wall.jpg'
    return Path(
        process.stdout.strip().removeprefix("'").removesuffix("'").removeprefix("file://")
    )


def make_applier(apply_command: Optional[str] = None, monitors=()) -> WallpaperApplier:
    """Use the configured command template when there is one, gsettings otherwise."""

    if apply_command:
        return CommandApplier(apply_command, names={m.id: m.name for m in monitors})

    return GnomeApplier()
