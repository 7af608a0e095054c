"""
Downloader

Glue between a SourceClient and the CacheStore: search the source, fetch the images we don't have
yet on a small thread pool, and hand the bytes to the cache. The cache's per-checksum locking is what
keeps parallel fetches of the same image from writing it twice.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

from wallter import image_handler
from wallter.cache_handler import CacheStore, CacheIOError, InvalidImageData, SourceMeta, WallpaperRecord
from wallter.source_handler import (
    CandidateDescriptor,
    InvalidResponse,
    SearchCriteria,
    SourceClient,
    SourceUnavailable,
)

logger = logging.getLogger(__name__)


class Downloader:
    def __init__(self, source: SourceClient, cache: CacheStore, workers: int = 4):
        self.source = source
        self.cache = cache
        self.workers = max(1, workers)

    def download(self, descriptor: CandidateDescriptor) -> WallpaperRecord:
        """Fetch one candidate and store it. Errors propagate to the caller."""

        data = self.source.fetch(descriptor)

        return self.cache.put(
            image_handler.checksum(data),
            data,
            SourceMeta(
                id=descriptor.id,
                url=descriptor.url,
                width=descriptor.width,
                height=descriptor.height,
            ),
        )

    def pending(self, criteria: SearchCriteria, count: int) -> list[CandidateDescriptor]:
        """
        Pull up to count candidates from the search that are not cached yet. The search is lazy,
        so no more pages are requested than needed.
        """

        wanted = []
        seen = set()

        for descriptor in self.source.search(criteria):
            if len(wanted) >= count:
                break

            if descriptor.id in seen or self.cache.find_source(descriptor.id) is not None:
                continue

            seen.add(descriptor.id)
            wanted.append(descriptor)

        return wanted

    def refresh(self, criteria: SearchCriteria, count: int) -> list[WallpaperRecord]:
        """
        Download up to count new wallpapers. A failing search raises SourceUnavailable or
        InvalidResponse; a failing individual download is logged and skipped.
        """

        if count <= 0:
            return []

        wanted = self.pending(criteria, count)

        if not wanted:
            logger.info("No new wallpapers found on %s", self.source.name)
            return []

        # keyed by checksum: two remote ids can share the same image content
        records = {}

        with ThreadPoolExecutor(max_workers=min(self.workers, len(wanted))) as pool:
            futures = {pool.submit(self.download, d): d for d in wanted}

            for future in as_completed(futures):
                descriptor = futures[future]

                try:
                    record = future.result()
                    records.setdefault(record.checksum, record)

                except (SourceUnavailable, InvalidResponse) as error:
                    logger.warning("Could not download %s: %s", descriptor.url, error)

                except InvalidImageData as error:
                    logger.warning("Discarded %s: %s", descriptor.url, error)

                except CacheIOError as error:
                    logger.error("Could not store %s: %s", descriptor.url, error)

        logger.info("Downloaded %d of %d wallpapers", len(records), len(wanted))

        # as_completed order is arbitrary; keep the search ranking
        rank = {d.id: i for i, d in enumerate(wanted)}
        return sorted(records.values(), key=lambda record: rank.get(record.source_id, len(rank)))
