"""
wallter Configuration Management

This file handles utilities related to generating and loading variables from a configuration file.
WallterConfig should be loaded at startup in some kind of initialization procedure performed before
any attempt at command processing is done. Raise a WallterConfigError for any issues that arise in
processing or retrieving these configuration variables.

The configuration file is "config.json" and is saved at ~/.config/wallter/config.json unless the
WALLTER_CONFIG_DIR environment variable points somewhere else.

Every section is a frozen dataclass built from a deserialized json object. Application code
references the attributes on these dataclasses and never touches brittle dictionary keys. Keys the
loader does not recognize are ignored so that older builds can read newer config files. Once loaded
the configuration is handed to each component at construction and is never mutated during a run.
"""

import json
import os
from enum import Enum
from dataclasses import dataclass, field, fields, asdict, replace
from pathlib import Path, PurePath
from typing import Optional

from wallter.cache_handler import EvictionPolicy
from wallter.color_handler import ColorMode
from wallter.source_handler import RetryPolicy, SearchCriteria

# shortest interval the slideshow will honor, in seconds
MIN_INTERVAL = 1.0

DEFAULT_HOME = Path("~/Pictures/Wallter").expanduser()


class WallterConfigError(Exception):
    """Raise when an issue occurs with handling Wallter configuration."""

    pass


class PathEncoder(json.JSONEncoder):
    """
    custom encoder adds support for serializing pathlib objects and enums as strings
    """

    def default(self, o):
        if isinstance(o, PurePath):
            return str(o)

        if isinstance(o, Enum):
            return o.value

        return json.JSONEncoder.default(self, o)


def _known(cls, data: dict) -> dict:
    """Drop keys that are not fields of the dataclass cls."""

    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}


def _enum(cls, value, section: str):
    try:
        return cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in cls)
        raise WallterConfigError(
            f"Invalid value {value!r} in '{section}'. Expected one of: {choices}."
        )


class Orientation(str, Enum):
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"
    ROTATED = "rotated"
    SQUARE = "square"

    @classmethod
    def from_size(cls, width: int, height: int) -> "Orientation":
        if width > height:
            return cls.LANDSCAPE
        if width < height:
            return cls.PORTRAIT
        return cls.SQUARE


class Unit(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


UNIT_SECONDS = {
    Unit.SECONDS: 1,
    Unit.MINUTES: 60,
    Unit.HOURS: 60 * 60,
    Unit.DAYS: 60 * 60 * 24,
}


class RotationPolicy(str, Enum):
    SEQUENTIAL = "sequential"
    RANDOM = "random"


@dataclass(frozen=True)
class Interval:
    """How often the slideshow changes wallpaper, e.g. Interval(5, Unit.MINUTES)."""

    value: float = 60
    unit: Unit = Unit.SECONDS

    def __post_init__(self):
        object.__setattr__(self, "unit", _enum(Unit, self.unit, "slideshow.interval"))

    @property
    def seconds(self) -> float:
        """
        The interval in seconds, the canonical unit used by the scheduler. Zero, negative and
        sub-second intervals are clamped to MIN_INTERVAL so the timer can never spin.
        """

        return max(MIN_INTERVAL, float(self.value) * UNIT_SECONDS[self.unit])

    def __str__(self) -> str:
        return f"{self.value} {self.unit.value}"


@dataclass(frozen=True)
class MonitorConfig:
    """
    A physical display. width and height are logical pixels as reported by the desktop,
    scale is the DPI scale factor and position is the offset in the virtual screen.
    """

    id: str
    name: str = ""
    width: int = 1920
    height: int = 1080
    orientation: Orientation = None
    scale: float = 1.0
    position: tuple[int, int] = (0, 0)
    primary: bool = False

    def __post_init__(self):
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "name", self.name or f"Monitor {self.id}")
        object.__setattr__(self, "width", int(self.width))
        object.__setattr__(self, "height", int(self.height))
        object.__setattr__(self, "scale", float(self.scale) if self.scale else 1.0)
        object.__setattr__(self, "position", tuple(self.position))

        if self.orientation is None:
            orientation = Orientation.from_size(self.width, self.height)
        else:
            orientation = _enum(Orientation, self.orientation, "monitors.orientation")
        object.__setattr__(self, "orientation", orientation)

        if self.width <= 0 or self.height <= 0:
            raise WallterConfigError(
                f"Monitor {self.id} has invalid size {self.width}x{self.height}."
            )

    @property
    def size(self) -> tuple[int, int]:
        """Effective (width, height) after applying the orientation."""

        width, height = self.width, self.height

        if self.orientation is Orientation.ROTATED:
            return height, width

        if self.orientation is Orientation.PORTRAIT and width > height:
            return height, width

        if self.orientation is Orientation.LANDSCAPE and height > width:
            return height, width

        return width, height

    @property
    def required_size(self) -> tuple[int, int]:
        """Pixels an image needs to cover this monitor without upscaling."""

        width, height = self.size
        return round(width * self.scale), round(height * self.scale)

    @property
    def aspect(self) -> float:
        width, height = self.size
        return width / height

    def __str__(self) -> str:
        width, height = self.size
        return f"{self.name} [{self.id}] {width}x{height} {self.orientation.value} @{self.scale:.1f}x"


@dataclass(frozen=True)
class PathsConfig:
    home_dir: Path = DEFAULT_HOME
    downloads_dir: Path = DEFAULT_HOME / "downloads"
    favorites_dir: Path = DEFAULT_HOME / "favorites"
    wallpaper_dir: Path = DEFAULT_HOME / "wallpaper"

    def __post_init__(self):
        """
        Handle the case where a new PathsConfig is created from JSON, which cannot
        deserialize a str into a Path.
        """

        for f in fields(self):
            object.__setattr__(self, f.name, Path(getattr(self, f.name)).expanduser())

    def create_all(self) -> None:
        """Create the home, downloads, favorites and wallpaper directories."""

        for f in fields(self):
            try:
                getattr(self, f.name).mkdir(parents=True, exist_ok=True)
            except OSError as error:
                raise WallterConfigError(
                    f"Could not create {f.name} at {getattr(self, f.name)}: {error}"
                )


@dataclass(frozen=True)
class SlideshowSettings:
    interval: Interval = field(default_factory=Interval)
    rotation: RotationPolicy = RotationPolicy.SEQUENTIAL
    favorites_only: bool = False
    pre_commands: tuple[str, ...] = ()
    post_commands: tuple[str, ...] = ()
    command_timeout: float = 30.0
    refresh_every: int = 0
    refresh_on_start: bool = False
    checkpoint: Optional[Path] = None
    apply_command: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.interval, dict):
            object.__setattr__(self, "interval", Interval(**_known(Interval, self.interval)))
        elif isinstance(self.interval, (int, float)):
            object.__setattr__(self, "interval", Interval(self.interval))

        object.__setattr__(
            self, "rotation", _enum(RotationPolicy, self.rotation, "slideshow.rotation")
        )
        object.__setattr__(self, "pre_commands", tuple(self.pre_commands))
        object.__setattr__(self, "post_commands", tuple(self.post_commands))

        if self.checkpoint is not None:
            object.__setattr__(self, "checkpoint", Path(self.checkpoint).expanduser())


@dataclass(frozen=True)
class SearchSettings:
    query: str = ""
    categories: tuple[bool, bool, bool] = (True, True, False)
    purity: tuple[bool, bool, bool] = (True, False, False)
    sorting: str = "random"
    order: str = "desc"
    top_range: Optional[str] = None
    atleast: Optional[str] = None
    resolutions: Optional[str] = None
    ratios: Optional[str] = None
    colors: Optional[str] = None
    max_pages: int = 1
    api_key: Optional[str] = None
    download_count: int = 5

    def __post_init__(self):
        object.__setattr__(self, "categories", tuple(bool(c) for c in self.categories))
        object.__setattr__(self, "purity", tuple(bool(p) for p in self.purity))

        if len(self.categories) != 3 or len(self.purity) != 3:
            raise WallterConfigError(
                "search.categories and search.purity each need exactly three flags."
            )

    def criteria(self, **overrides) -> SearchCriteria:
        """Build SearchCriteria for the source client, optionally overriding fields."""

        values = dict(
            query=self.query,
            categories=self.categories,
            purity=self.purity,
            sorting=self.sorting,
            order=self.order,
            top_range=self.top_range,
            atleast=self.atleast,
            resolutions=self.resolutions,
            ratios=self.ratios,
            colors=self.colors,
            max_pages=self.max_pages,
        )
        values.update(overrides)
        return SearchCriteria(**values)


@dataclass(frozen=True)
class CacheSettings:
    max_count: Optional[int] = None
    max_bytes: Optional[int] = None
    verify: bool = True

    def eviction_policy(self) -> Optional[EvictionPolicy]:
        if self.max_count is None and self.max_bytes is None:
            return None

        return EvictionPolicy(max_count=self.max_count, max_bytes=self.max_bytes)


@dataclass(frozen=True)
class NetworkSettings:
    attempts: int = 4
    backoff: float = 1.0
    max_backoff: float = 60.0
    timeout: float = 30.0
    workers: int = 4

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.attempts, backoff=self.backoff, max_backoff=self.max_backoff
        )


@dataclass(frozen=True)
class ColorSettings:
    """Desktop light/dark style applied by 'wallter color'. auto keeps the current style."""

    mode: ColorMode = ColorMode.AUTO

    def __post_init__(self):
        object.__setattr__(self, "mode", _enum(ColorMode, self.mode, "color.mode"))


SECTIONS = {
    "paths": PathsConfig,
    "slideshow": SlideshowSettings,
    "search": SearchSettings,
    "cache": CacheSettings,
    "network": NetworkSettings,
    "color": ColorSettings,
}


@dataclass(frozen=True)
class WallterConfig:
    """
    Top level configuration. Each attribute is one section of config.json; 'monitors' is a list of
    monitor objects and may be empty, in which case monitors are detected at startup.
    """

    paths: PathsConfig = field(default_factory=PathsConfig)
    monitors: tuple[MonitorConfig, ...] = ()
    slideshow: SlideshowSettings = field(default_factory=SlideshowSettings)
    search: SearchSettings = field(default_factory=SearchSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    color: ColorSettings = field(default_factory=ColorSettings)

    @classmethod
    def from_dict(cls, data: dict) -> "WallterConfig":
        if not isinstance(data, dict):
            raise WallterConfigError("The configuration must be a json object.")

        sections = {}

        for name, section_cls in SECTIONS.items():
            section = data.get(name, {})

            if not isinstance(section, dict):
                raise WallterConfigError(f"Section '{name}' must be a json object.")

            try:
                sections[name] = section_cls(**_known(section_cls, section))
            except TypeError as error:
                raise WallterConfigError(f"Invalid '{name}' section: {error}")

        monitors = data.get("monitors", [])

        if not isinstance(monitors, list):
            raise WallterConfigError("'monitors' must be a list.")

        try:
            sections["monitors"] = tuple(
                MonitorConfig(**_known(MonitorConfig, monitor)) for monitor in monitors
            )
        except TypeError as error:
            raise WallterConfigError(f"Invalid monitor entry: {error}")

        ids = [monitor.id for monitor in sections["monitors"]]
        if len(ids) != len(set(ids)):
            raise WallterConfigError(f"Monitor ids must be unique, got {ids}.")

        return cls(**sections)

    def to_json(self) -> str:
        try:
            return json.dumps(asdict(self), sort_keys=True, indent=4, cls=PathEncoder)

        except TypeError as error:
            raise WallterConfigError(
                f"There was an error trying to serialize config data to JSON: {error}"
            )

    def with_monitors(self, monitors) -> "WallterConfig":
        """Return a copy with the monitor list replaced, e.g. by detected monitors."""

        return replace(self, monitors=tuple(monitors))


def config_file() -> Path:
    """Location of config.json, honoring the WALLTER_CONFIG_DIR environment variable."""

    config_dir = os.environ.get("WALLTER_CONFIG_DIR", "~/.config/wallter")
    return Path(config_dir).expanduser() / "config.json"


def generate_config_json(config: WallterConfig, dest_file: Path = None) -> Path:
    """
    Write the WallterConfig to file, serializing to JSON. Returns filepath of written
    config.json file.

    Warning: will overwrite any existing config file for Wallter.
    """

    dest_file = dest_file or config_file()
    to_json = config.to_json()

    try:
        dest_file.parent.mkdir(parents=True, exist_ok=True)
        dest_file.write_text(to_json)

    except OSError as error:
        raise WallterConfigError(
            f"There was an error saving the configuration file: {error}."
        )

    return dest_file


def load_config(src: Path = None) -> WallterConfig:
    """
    Load config.json and instantiate its contents as a WallterConfig dataclass.
    Raise WallterConfigError if a config file can't be found or parsed.
    """

    src = src or config_file()

    try:
        with src.open("r") as file:
            from_json = json.loads(file.read())

    except json.JSONDecodeError as error:
        raise WallterConfigError(f"There was an issue reading the config: {error}")

    except OSError as error:
        raise WallterConfigError(f"There was an issue opening the config: {error}")

    return WallterConfig.from_dict(from_json)


def init(src: Path = None) -> WallterConfig:
    """
    Load the config file, generating a default one if none exists yet. A file that exists
    but cannot be parsed is an error rather than something to silently overwrite.
    """

    src = src or config_file()

    if not src.exists():
        config = WallterConfig()
        generate_config_json(config, src)
        return config

    return load_config(src)
