"""
Monitor Handler

Decide which wallpaper goes on which monitor.

Every monitor is scored against every candidate that has not been handed out yet in the current
assignment cycle and gets the lowest scoring one. Scores add up three things:

- how far the image's aspect ratio is from the monitor's
- a penalty when the image is smaller than the monitor's pixel size (after DPI scaling)
- a penalty when a landscape image would go on a portrait monitor or vice versa

None of these exclude a candidate outright; the best available image always wins over no image.
Ties go to the candidate that came first in the input, so the same inputs always produce the
same mapping.
"""

import logging
from typing import Optional

import mss
from mss.exception import ScreenShotError

from wallter.cache_handler import WallpaperRecord
from wallter.config import MonitorConfig, Orientation

logger = logging.getLogger(__name__)

UNKNOWN_ASPECT_DIFFERENCE = 1.0

FALLBACK_MONITOR = MonitorConfig(id="0", name="Monitor 0", width=1920, height=1080, primary=True)


class NoEligibleWallpaper(Exception):
    """Raised when there is nothing in the pool to assign."""

    pass


def _orientations_differ(record: WallpaperRecord, monitor: MonitorConfig) -> bool:
    width, height = monitor.size
    monitor_orientation = Orientation.from_size(width, height)

    if not record.width or not record.height:
        return False

    if Orientation.SQUARE in (monitor_orientation, Orientation(record.orientation)):
        return False

    return Orientation(record.orientation) is not monitor_orientation


class MonitorAssigner:
    def __init__(
        self,
        aspect_weight: float = 1.0,
        resolution_penalty: float = 1.0,
        orientation_penalty: float = 2.0,
    ):
        self.aspect_weight = aspect_weight
        self.resolution_penalty = resolution_penalty
        self.orientation_penalty = orientation_penalty

    def score(self, record: WallpaperRecord, monitor: MonitorConfig) -> float:
        """Lower is better."""

        if record.aspect:
            score = self.aspect_weight * abs(record.aspect - monitor.aspect)
        else:
            score = self.aspect_weight * UNKNOWN_ASPECT_DIFFERENCE

        required_width, required_height = monitor.required_size
        if record.width < required_width or record.height < required_height:
            shortfall = max(
                1 - record.width / required_width,
                1 - record.height / required_height,
            )
            score += self.resolution_penalty * (1 + shortfall)

        if _orientations_differ(record, monitor):
            score += self.orientation_penalty

        return score

    def best(self, pool: list[WallpaperRecord], monitor: MonitorConfig) -> WallpaperRecord:
        """Lowest score in pool; min() keeps the first of equal scores, which is the tie-break."""

        return min(pool, key=lambda record: self.score(record, monitor))

    def assign(
        self, candidates: list[WallpaperRecord], monitors: list[MonitorConfig]
    ) -> dict[str, WallpaperRecord]:
        """
        Map each monitor id to a wallpaper. No image is used twice unless there are fewer
        candidates than monitors, in which case images are reused in the order they were first
        handed out.
        """

        candidates = list(candidates)

        if not candidates:
            raise NoEligibleWallpaper("No wallpapers are available to assign.")

        unassigned = list(candidates)
        handed_out: list[WallpaperRecord] = []
        assignment = {}

        for monitor in monitors:
            if unassigned:
                record = self.best(unassigned, monitor)
                unassigned.remove(record)
            else:
                # pool exhausted: reuse the least recently assigned image
                record = handed_out[len(assignment) % len(handed_out)]

            if record not in handed_out:
                handed_out.append(record)

            assignment[monitor.id] = record
            logger.debug("Assigned %s to %s", record.path.name, monitor.name)

        return assignment

    def eligible(
        self, records: list[WallpaperRecord], min_size: Optional[tuple[int, int]] = None
    ) -> list[WallpaperRecord]:
        """Drop records whose file has gone missing and, with min_size, ones that are too small."""

        eligible = []

        for record in records:
            if not record.path.is_file():
                logger.debug("Skipping %s: file is missing", record.id)
                continue

            if min_size and (record.width < min_size[0] or record.height < min_size[1]):
                continue

            eligible.append(record)

        return eligible


def detect_monitors() -> list[MonitorConfig]:
    """
    Enumerate the attached monitors with mss. The first entry mss reports is the combined virtual
    screen, so it is skipped. Falls back to a single 1920x1080 monitor when detection fails.
    """

    try:
        with mss.mss() as sct:
            found = [
                MonitorConfig(
                    id=str(i - 1),
                    name=f"Monitor {i - 1}",
                    width=monitor["width"],
                    height=monitor["height"],
                    position=(monitor["left"], monitor["top"]),
                    primary=(i == 1),
                )
                for i, monitor in enumerate(sct.monitors)
                if i > 0
            ]

    except (ScreenShotError, OSError) as error:
        logger.warning("Monitor detection failed (%s), assuming one 1920x1080 display", error)
        return [FALLBACK_MONITOR]

    if not found:
        logger.warning("No monitors detected, assuming one 1920x1080 display")
        return [FALLBACK_MONITOR]

    return found
