"""
Color Handler

Switch the desktop between its light and dark style. The configured mode is light, dark or auto;
auto keeps whatever the desktop currently prefers.

The desktop is picked from XDG_CURRENT_DESKTOP. On GNOME the preference lives in the
org.gnome.desktop.interface schema (color-scheme, plus gtk-theme for older GTK3 applications). On
KDE Plasma the color scheme is applied with plasma-apply-colorscheme and also written to
kdeglobals so it survives a new session.

More information on the GNOME schema can be found at:
https://github.com/GNOME/gsettings-desktop-schemas/blob/master/schemas/org.gnome.desktop.interface.gschema.xml.in
"""

import os
import logging
import subprocess
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from wallter.wallpaper_handler import GSETTINGS

logger = logging.getLogger(__name__)

INTERFACE_SCHEMA = "org.gnome.desktop.interface"


class ColorMode(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    AUTO = "auto"

    def opposite(self) -> "ColorMode":
        return ColorMode.LIGHT if self is ColorMode.DARK else ColorMode.DARK


class ColorModeError(Exception):
    """Raised when the desktop color mode can't be read or changed."""

    pass


def run(command: list[str]) -> str:
    """Run a desktop settings tool and return what it printed."""

    try:
        process = subprocess.run(command, check=True, capture_output=True, text=True)

    except subprocess.CalledProcessError as error:
        raise ColorModeError(
            f"'{' '.join(command)}' exited with {error.returncode}: {(error.stderr or '').strip()}"
        )

    except OSError as error:
        raise ColorModeError(f"Could not run '{command[0]}': {error}")

    return process.stdout


class ColorSetter(ABC):
    @abstractmethod
    def detect(self) -> ColorMode:
        """Return the mode the desktop is currently in, LIGHT or DARK."""

    @abstractmethod
    def set(self, mode: ColorMode) -> None:
        """Switch the desktop to mode. Raise ColorModeError on failure."""


class GnomeColorSetter(ColorSetter):
    SCHEMES = {ColorMode.LIGHT: "prefer-light", ColorMode.DARK: "prefer-dark"}
    GTK_THEMES = {ColorMode.LIGHT: "Adwaita", ColorMode.DARK: "Adwaita-dark"}

    def detect(self) -> ColorMode:
        value = run([GSETTINGS, "get", INTERFACE_SCHEMA, "color-scheme"]).strip().strip("'")

        if value == "prefer-light":
            return ColorMode.LIGHT

        # 'prefer-dark', and 'default' where the desktop leaves the choice open
        return ColorMode.DARK

    def set(self, mode: ColorMode) -> None:
        run([GSETTINGS, "set", INTERFACE_SCHEMA, "color-scheme", self.SCHEMES[mode]])

        try:
            run([GSETTINGS, "set", INTERFACE_SCHEMA, "gtk-theme", self.GTK_THEMES[mode]])
        except ColorModeError as error:
            logger.warning("color-scheme is set but the GTK theme is not: %s", error)


class KdeColorSetter(ColorSetter):
    THEMES = {ColorMode.LIGHT: "BreezeLight", ColorMode.DARK: "BreezeDark"}

    def detect(self) -> ColorMode:
        scheme = run(
            ["kreadconfig5", "--file", "kdeglobals", "--group", "General", "--key", "ColorScheme"]
        )

        if scheme.strip() and "dark" not in scheme.lower():
            return ColorMode.LIGHT

        return ColorMode.DARK

    def set(self, mode: ColorMode) -> None:
        theme = self.THEMES[mode]
        run(["plasma-apply-colorscheme", theme])

        try:
            run(
                [
                    "kwriteconfig5",
                    "--file",
                    "kdeglobals",
                    "--group",
                    "General",
                    "--key",
                    "ColorScheme",
                    theme,
                ]
            )
        except ColorModeError as error:
            logger.warning("%s is applied but won't persist: %s", theme, error)


def make_color_setter(desktop: Optional[str] = None) -> ColorSetter:
    """Pick the setter for the running desktop, or the one named by desktop."""

    desktop = desktop if desktop is not None else os.environ.get("XDG_CURRENT_DESKTOP", "")
    name = desktop.lower()

    if "kde" in name:
        return KdeColorSetter()

    if "gnome" in name:
        return GnomeColorSetter()

    raise ColorModeError(
        f"Changing the color mode is not supported on desktop '{desktop or 'unknown'}'."
    )


def apply_mode(mode: ColorMode, setter: ColorSetter) -> ColorMode:
    """
    Bring the desktop to mode and return the mode it ends up in. Auto resolves to the current
    mode, and nothing is written when the desktop already matches.
    """

    mode = ColorMode(mode)
    current = setter.detect()
    target = current if mode is ColorMode.AUTO else mode

    if target is current:
        logger.info("Desktop is already %s", target.value)
        return target

    setter.set(target)
    logger.info("Desktop switched from %s to %s", current.value, target.value)
    return target


def toggle_mode(setter: ColorSetter) -> ColorMode:
    current = setter.detect()
    target = current.opposite()

    setter.set(target)
    logger.info("Desktop switched from %s to %s", current.value, target.value)
    return target
