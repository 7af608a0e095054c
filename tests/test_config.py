"""
Test config

Loading, validating and generating config.json.
"""

import json

import pytest

from wallter import config as wallter_config
from wallter.cache_handler import EvictionPolicy
from wallter.color_handler import ColorMode
from wallter.config import (
    Interval,
    MonitorConfig,
    Orientation,
    RotationPolicy,
    Unit,
    WallterConfig,
    WallterConfigError,
)


@pytest.mark.parametrize(
    "interval, seconds",
    [
        (Interval(30, Unit.SECONDS), 30.0),
        (Interval(5, Unit.MINUTES), 300.0),
        (Interval(2, Unit.HOURS), 7200.0),
        (Interval(1, Unit.DAYS), 86400.0),
        (Interval(0, Unit.SECONDS), 1.0),
        (Interval(-10, Unit.MINUTES), 1.0),
        (Interval(0.2, Unit.SECONDS), 1.0),
    ],
)
def test_interval_seconds(interval, seconds):
    assert interval.seconds == seconds


def test_interval_accepts_unit_string():
    assert Interval(3, "minutes").unit is Unit.MINUTES

    with pytest.raises(WallterConfigError):
        Interval(3, "fortnights")


def test_monitor_orientation_is_derived():
    assert MonitorConfig(id=0, width=1920, height=1080).orientation is Orientation.LANDSCAPE
    assert MonitorConfig(id=1, width=1080, height=1920).orientation is Orientation.PORTRAIT


def test_monitor_size_follows_orientation():
    portrait = MonitorConfig(id="0", width=1920, height=1080, orientation="portrait")
    rotated = MonitorConfig(id="1", width=1080, height=1920, orientation="rotated")

    assert portrait.size == (1080, 1920)
    assert rotated.size == (1920, 1080)
    assert MonitorConfig(id="2", width=1920, height=1080, scale=1.5).required_size == (2880, 1620)


def test_monitor_rejects_bad_size():
    with pytest.raises(WallterConfigError):
        MonitorConfig(id="0", width=0, height=1080)


def test_from_dict_defaults():
    config = WallterConfig.from_dict({})

    assert config == WallterConfig()
    assert config.slideshow.rotation is RotationPolicy.SEQUENTIAL
    assert config.cache.eviction_policy() is None


def test_from_dict_full():
    config = WallterConfig.from_dict(
        {
            "paths": {"home_dir": "/tmp/wallter"},
            "monitors": [
                {"id": "0", "name": "DP-1", "width": 2560, "height": 1440, "scale": 1.25},
                {"id": "1", "name": "HDMI-1", "width": 1920, "height": 1080, "orientation": "rotated"},
            ],
            "slideshow": {
                "interval": {"value": 15, "unit": "minutes"},
                "rotation": "random",
                "post_commands": ["wal -i $WALLTER_WALLPAPER"],
            },
            "search": {"query": "forest", "categories": [1, 0, 0], "api_key": "k"},
            "cache": {"max_count": 100},
            "network": {"attempts": 2},
        }
    )

    assert [m.name for m in config.monitors] == ["DP-1", "HDMI-1"]
    assert config.monitors[1].size == (1080, 1920)
    assert config.slideshow.interval.seconds == 900
    assert config.slideshow.rotation is RotationPolicy.RANDOM
    assert config.slideshow.post_commands == ("wal -i $WALLTER_WALLPAPER",)
    assert config.search.criteria().categories == (True, False, False)
    assert config.search.criteria(query="lake").query == "lake"
    assert config.cache.eviction_policy() == EvictionPolicy(max_count=100)
    assert config.network.retry_policy().attempts == 2


def test_from_dict_ignores_unknown_keys():
    config = WallterConfig.from_dict(
        {
            "theme": "dark",
            "slideshow": {"rotation": "random", "transition": "fade"},
            "monitors": [{"id": "0", "refresh_rate": 144}],
        }
    )

    assert config.slideshow.rotation is RotationPolicy.RANDOM
    assert config.monitors[0].id == "0"


@pytest.mark.parametrize(
    "data",
    [
        [],
        {"slideshow": "fast"},
        {"slideshow": {"rotation": "backwards"}},
        {"monitors": {"id": "0"}},
        {"monitors": [{"width": 100}]},
        {"monitors": [{"id": "0"}, {"id": "0"}]},
        {"search": {"purity": [1, 0]}},
    ],
)
def test_from_dict_invalid(data):
    """
    Verify that invalid configurations raise WallterConfigError:
    - not an object
    - section of the wrong type
    - unknown enum value
    - monitors of the wrong type
    - monitor without an id
    - duplicate monitor ids
    - wrong number of flags
    """

    with pytest.raises(WallterConfigError):
        WallterConfig.from_dict(data)


def test_json_round_trip(tmp_path):
    config = WallterConfig.from_dict(
        {
            "paths": {"home_dir": str(tmp_path)},
            "monitors": [{"id": "0", "width": 3440, "height": 1440}],
            "slideshow": {"interval": {"value": 2, "unit": "hours"}, "checkpoint": str(tmp_path / "state.json")},
        }
    )

    dest = wallter_config.generate_config_json(config, tmp_path / "config.json")

    assert wallter_config.load_config(dest) == config


def test_init_generates_default_file(tmp_path, monkeypatch):
    monkeypatch.setenv("WALLTER_CONFIG_DIR", str(tmp_path / "conf"))

    config = wallter_config.init()

    assert config == WallterConfig()
    assert (tmp_path / "conf" / "config.json").exists()
    assert wallter_config.init() == config


def test_load_config_errors(tmp_path):
    with pytest.raises(WallterConfigError):
        wallter_config.load_config(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{ not json")

    with pytest.raises(WallterConfigError):
        wallter_config.load_config(broken)

    with pytest.raises(WallterConfigError):
        wallter_config.init(broken)


def test_paths_create_all(tmp_path):
    paths = wallter_config.PathsConfig(
        home_dir=tmp_path,
        downloads_dir=tmp_path / "d",
        favorites_dir=tmp_path / "f",
        wallpaper_dir=tmp_path / "w",
    )

    paths.create_all()

    assert all((tmp_path / name).is_dir() for name in "dfw")


def test_to_json_is_valid_json():
    data = json.loads(WallterConfig().to_json())

    assert data["slideshow"]["interval"] == {"value": 60, "unit": "seconds"}
    assert data["slideshow"]["rotation"] == "sequential"


def test_color_section():
    assert WallterConfig().color.mode is ColorMode.AUTO
    assert WallterConfig.from_dict({"color": {"mode": "dark"}}).color.mode is ColorMode.DARK

    with pytest.raises(WallterConfigError):
        WallterConfig.from_dict({"color": {"mode": "sepia"}})

    assert json.loads(WallterConfig().to_json())["color"] == {"mode": "auto"}


def test_with_monitors_keeps_other_sections():
    config = WallterConfig.from_dict({"color": {"mode": "light"}, "cache": {"max_count": 3}})

    updated = config.with_monitors([MonitorConfig(id="0")])

    assert [m.id for m in updated.monitors] == ["0"]
    assert updated.color == config.color
    assert updated.cache == config.cache
