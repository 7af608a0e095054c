"""
Cache Handler

Content-addressed local storage for wallpapers. The CacheStore owns every file in the downloads
directory and the index.json that describes them. Nothing else in wallter writes there: the
scheduler and the monitor assigner read WallpaperRecord snapshots and ask the store for any change
(favorite toggling, last-set timestamps).

Records are keyed by content checksum, so downloading the same image twice yields one file and one
index entry. Files are written to a temporary file in the target directory first and renamed into
place only after the write finished and the content hash was verified, so an interrupted download
never leaves a partial file behind under a real name.

The index is checked against the filesystem every time the store is opened: entries whose file is
gone (or whose content no longer matches) are pruned, images that exist on disk without an entry
are re-adopted, and leftover temporary files are removed.

On-disk index format::

    {
        "version": 1,
        "records": {
            "<checksum>": {"id": ..., "path": ..., "favorite": false, ...}
        }
    }
"""

import os
import json
import shutil
import logging
import tempfile
import threading
from enum import Enum
from contextlib import contextmanager
from datetime import datetime, timezone
from dataclasses import dataclass, fields, asdict, replace
from pathlib import Path
from typing import Optional

from wallter import image_handler

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
INDEX_VERSION = 1
TEMP_SUFFIX = ".part"

ORIGIN_DOWNLOAD = "download"
ORIGIN_LOCAL = "local"


class CacheError(Exception):
    """Base class for cache failures."""

    pass


class CacheIOError(CacheError):
    """Raised when the disk refuses a cache operation (disk full, permissions, ...)."""

    pass


class InvalidImageData(CacheError):
    """Raised when data handed to the cache is not an image or does not match its checksum."""

    pass


class NotFound(CacheError):
    """Raised when no record matches the requested id."""

    pass


class RecordFilter(str, Enum):
    ALL = "all"
    FAVORITES = "favorites"
    NON_FAVORITES = "non-favorites"


@dataclass(frozen=True)
class SourceMeta:
    """Where a downloaded image came from."""

    id: Optional[str] = None
    url: Optional[str] = None
    width: int = 0
    height: int = 0


@dataclass(frozen=True)
class EvictionPolicy:
    max_count: Optional[int] = None
    max_bytes: Optional[int] = None


@dataclass(frozen=True)
class WallpaperRecord:
    """
    An image known to the cache. Records are immutable snapshots; the store hands out new
    records whenever metadata changes.
    """

    id: str
    checksum: str
    path: Path
    source_url: Optional[str] = None
    downloaded_at: Optional[datetime] = None
    last_set_at: Optional[datetime] = None
    favorite: bool = False
    width: int = 0
    height: int = 0
    source_id: Optional[str] = None
    origin: str = ORIGIN_DOWNLOAD

    @property
    def aspect(self) -> float:
        if not self.width or not self.height:
            return 0.0
        return self.width / self.height

    @property
    def orientation(self) -> str:
        if self.width > self.height:
            return "landscape"
        if self.width < self.height:
            return "portrait"
        return "square"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["path"] = str(self.path)
        for key in ("downloaded_at", "last_set_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "WallpaperRecord":
        """Build a record from its index entry. Unknown keys are ignored."""

        names = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in names}

        values["path"] = Path(values["path"])
        for key in ("downloaded_at", "last_set_at"):
            if values.get(key):
                values[key] = datetime.fromisoformat(values[key])

        return cls(**values)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _eviction_key(record: WallpaperRecord):
    """
    Least recently used first. A record that was never set counts as used when it was
    downloaded, so a fresh download outlives wallpapers that were shown long ago.
    """

    oldest = datetime.min.replace(tzinfo=timezone.utc)
    return (
        record.last_set_at or record.downloaded_at or oldest,
        record.downloaded_at or oldest,
        record.checksum,
    )


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


class CacheStore:
    """
    The wallpaper cache. Thread safe: writes for the same checksum are serialized by a
    per-checksum lock and every index mutation happens under the index lock.
    """

    def __init__(self, downloads_dir: Path, favorites_dir: Path = None, verify: bool = True):
        self.downloads_dir = Path(downloads_dir).expanduser()
        self.favorites_dir = Path(favorites_dir).expanduser() if favorites_dir else None
        self.index_path = self.downloads_dir / INDEX_FILENAME
        self.verify = verify

        self._index: dict[str, WallpaperRecord] = {}
        self._index_lock = threading.RLock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

        try:
            self.downloads_dir.mkdir(parents=True, exist_ok=True)
            if self.favorites_dir:
                self.favorites_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise CacheIOError(f"Cannot create cache directory {self.downloads_dir}: {error}")

        if not os.access(self.downloads_dir, os.R_OK | os.W_OK | os.X_OK):
            raise CacheIOError(f"Cache directory {self.downloads_dir} is not accessible.")

        self.load()

    """
    Index persistence
    """

    def load(self) -> None:
        """Read index.json and reconcile it with the files actually on disk."""

        with self._index_lock:
            self._index, changed = self._read_index()
            changed = self.reconcile() or changed

            if changed:
                self._write_index()

            logger.info("Loaded cache with %d entries from %s", len(self._index), self.downloads_dir)

    def _read_index(self) -> tuple[dict, bool]:
        """Return (index, needs_rewrite). A missing index is simply empty."""

        if not self.index_path.exists():
            return {}, False

        try:
            raw = json.loads(self.index_path.read_text(encoding="utf-8"))

        except (json.JSONDecodeError, UnicodeDecodeError) as error:
            logger.warning("Cache index is corrupt (%s), rebuilding from %s", error, self.downloads_dir)
            return {}, True

        except OSError as error:
            raise CacheIOError(f"Cannot read cache index {self.index_path}: {error}")

        if not isinstance(raw, dict) or raw.get("version") != INDEX_VERSION:
            logger.warning("Cache index version mismatch, rebuilding from %s", self.downloads_dir)
            return {}, True

        records = raw.get("records")
        if not isinstance(records, dict):
            logger.warning("Cache index has no 'records' mapping, rebuilding")
            return {}, True

        index = {}
        changed = False

        for key, entry in records.items():
            try:
                record = WallpaperRecord.from_dict(entry)
            except (KeyError, TypeError, ValueError) as error:
                logger.warning("Dropping unreadable cache entry %s: %s", key, error)
                changed = True
                continue

            if record.checksum != key:
                logger.warning("Dropping cache entry %s keyed under the wrong checksum", key)
                changed = True
                continue

            index[key] = record

        return index, changed

    def _write_index(self) -> None:
        """Persist the index with the same temp-file-then-rename discipline used for images."""

        envelope = {
            "version": INDEX_VERSION,
            "records": {key: record.to_dict() for key, record in sorted(self._index.items())},
        }

        try:
            self._atomic_write(
                self.index_path, json.dumps(envelope, indent=2).encode("utf-8")
            )
        except OSError as error:
            raise CacheIOError(f"Cannot write cache index {self.index_path}: {error}")

    def _atomic_write(self, dest: Path, data: bytes, checksum: str = None) -> None:
        """
        Write data to a temporary file beside dest, fsync it, optionally verify its content
        hash, then rename it over dest. The temporary file is removed on any failure.
        """

        fd, temp_name = tempfile.mkstemp(
            dir=dest.parent, prefix=f".{dest.name}.", suffix=TEMP_SUFFIX
        )
        temp_path = Path(temp_name)

        try:
            with os.fdopen(fd, "wb") as file:
                file.write(data)
                file.flush()
                os.fsync(file.fileno())

            if checksum is not None and image_handler.file_checksum(temp_path) != checksum:
                raise InvalidImageData(f"Written file does not match checksum {checksum}")

            os.replace(temp_path, dest)

        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

    def reconcile(self) -> bool:
        """
        Make the index and the downloads directory agree. Returns True when the index changed.

        - entries whose file is missing (or whose content hash differs, when verify is on) are pruned
        - leftover temporary files from interrupted writes are deleted
        - image files in downloads_dir with no entry are hashed and re-adopted
        """

        changed = False

        with self._index_lock:
            for key, record in list(self._index.items()):
                if not record.path.is_file():
                    logger.warning("Pruning cache entry %s: %s is missing", record.id, record.path)
                    del self._index[key]
                    changed = True

                elif self.verify and image_handler.file_checksum(record.path) != key:
                    logger.warning("Pruning cache entry %s: %s content changed", record.id, record.path)
                    del self._index[key]
                    changed = True
                    if record.origin == ORIGIN_DOWNLOAD:
                        record.path.unlink(missing_ok=True)

            known = {record.path.resolve() for record in self._index.values()}

            for path in sorted(self.downloads_dir.iterdir()):
                if path.name.endswith(TEMP_SUFFIX):
                    logger.info("Removing interrupted download %s", path.name)
                    path.unlink(missing_ok=True)
                    continue

                if path == self.index_path or not path.is_file() or path.resolve() in known:
                    continue

                if not image_handler.is_image_file(path):
                    continue

                record = self._adopt(path)
                if record is not None:
                    changed = True

        return changed

    def _adopt(self, path: Path) -> Optional[WallpaperRecord]:
        """Index an image found in downloads_dir that the index did not know about."""

        digest = image_handler.file_checksum(path)

        if digest in self._index:
            # a duplicate of content we already hold under another name
            logger.info("Removing duplicate cache file %s", path.name)
            path.unlink(missing_ok=True)
            return None

        try:
            width, height = image_handler.image_size(path)
        except image_handler.InvalidImageError:
            return None

        record = WallpaperRecord(
            id=digest,
            checksum=digest,
            path=path,
            downloaded_at=datetime.fromtimestamp(path.stat().st_mtime, timezone.utc),
            width=width,
            height=height,
        )
        self._index[digest] = record
        logger.info("Re-adopted %s into the cache index", path.name)

        return record

    """
    Writes
    """

    @contextmanager
    def _lock_for(self, checksum: str):
        """
        Hold the lock for checksum. Each lock counts the threads using it and is dropped from
        the table when the last one is done.
        """

        with self._locks_guard:
            lock, users = self._locks.get(checksum, (None, 0))
            lock = lock or threading.Lock()
            self._locks[checksum] = (lock, users + 1)

        try:
            with lock:
                yield

        finally:
            with self._locks_guard:
                lock, users = self._locks[checksum]
                if users == 1:
                    del self._locks[checksum]
                else:
                    self._locks[checksum] = (lock, users - 1)

    def put(self, checksum: str, data: bytes, meta: SourceMeta = None) -> WallpaperRecord:
        """
        Store data under checksum and return its record. If the checksum is already cached the
        existing record is returned unchanged and nothing is written.
        """

        meta = meta or SourceMeta()

        with self._lock_for(checksum):
            with self._index_lock:
                existing = self._index.get(checksum)

            if existing is not None:
                logger.debug("Cache hit for %s", checksum)
                return existing

            if image_handler.checksum(data) != checksum:
                raise InvalidImageData(f"Data does not match checksum {checksum}")

            try:
                format_name = image_handler.validate_image(data)
                width, height = image_handler.image_size(data)
            except image_handler.InvalidImageError as error:
                raise InvalidImageData(f"{meta.url or checksum}: {error}")

            dest = self.downloads_dir / f"{checksum}.{image_handler.extension_for(format_name)}"

            try:
                self._atomic_write(dest, data, checksum=checksum)
            except OSError as error:
                raise CacheIOError(f"Cannot write {dest}: {error}")

            record = WallpaperRecord(
                id=meta.id or checksum,
                checksum=checksum,
                path=dest,
                source_url=meta.url,
                downloaded_at=utcnow(),
                width=width or meta.width,
                height=height or meta.height,
                source_id=meta.id,
            )

            with self._index_lock:
                self._index[checksum] = record
                self._write_index()

            logger.info("Cached %s as %s", meta.url or checksum, dest.name)
            return record

    def add_local(self, path: Path) -> WallpaperRecord:
        """
        Index a user-provided image where it lives. Local records are part of the eligible pool
        but the store never evicts them or deletes their files.
        """

        path = Path(path).expanduser().resolve()

        try:
            image_handler.validate_image(path)
            width, height = image_handler.image_size(path)
            digest = image_handler.file_checksum(path)
        except image_handler.InvalidImageError as error:
            raise InvalidImageData(str(error))
        except OSError as error:
            raise CacheIOError(f"Cannot read {path}: {error}")

        with self._lock_for(digest):
            with self._index_lock:
                existing = self._index.get(digest)
                if existing is not None:
                    return existing

                # the file was edited in place, its old content is gone
                for key, stale in list(self._index.items()):
                    if stale.origin == ORIGIN_LOCAL and stale.path == path:
                        logger.info("%s changed, replacing its cache entry", path.name)
                        del self._index[key]

                record = WallpaperRecord(
                    id=digest,
                    checksum=digest,
                    path=path,
                    downloaded_at=utcnow(),
                    width=width,
                    height=height,
                    origin=ORIGIN_LOCAL,
                )
                self._index[digest] = record
                self._write_index()

        return record

    def add_local_dir(self, directory: Path) -> list[WallpaperRecord]:
        """
        Index every image in directory (recursively). Unreadable files are skipped, and files
        not modified since they were indexed are not read again.
        """

        directory = Path(directory).expanduser()
        records = []

        if not directory.is_dir():
            return records

        with self._index_lock:
            indexed = {r.path: r for r in self._index.values() if r.origin == ORIGIN_LOCAL}

        for path in sorted(directory.rglob("*")):
            if not path.is_file() or not image_handler.is_image_file(path):
                continue

            known = indexed.get(path.resolve())
            if known is not None and known.downloaded_at is not None:
                try:
                    unchanged = path.stat().st_mtime <= known.downloaded_at.timestamp()
                except OSError:
                    unchanged = False

                if unchanged:
                    records.append(known)
                    continue

            try:
                records.append(self.add_local(path))
            except (InvalidImageData, CacheIOError) as error:
                logger.warning("Skipping local image %s: %s", path, error)

        return records

    def _update(self, id: str, **changes) -> WallpaperRecord:
        with self._index_lock:
            record = self.get(id)
            updated = replace(record, **changes)
            self._index[record.checksum] = updated
            self._write_index()

        return updated

    def mark_favorite(self, id: str, favorite: bool = True) -> WallpaperRecord:
        """Toggle the favorite flag. Mirrors favorites into favorites_dir when one is set."""

        record = self._update(id, favorite=favorite)

        if self.favorites_dir is not None:
            self._sync_favorite_link(record)

        return record

    def _sync_favorite_link(self, record: WallpaperRecord) -> None:
        link = self.favorites_dir / record.path.name

        try:
            if record.favorite:
                if not link.exists() and not link.is_symlink():
                    try:
                        link.symlink_to(record.path)
                    except (OSError, NotImplementedError):
                        shutil.copy2(record.path, link)

            elif link.is_symlink() or link.exists():
                link.unlink()

        except OSError as error:
            logger.warning("Could not update favorites link %s: %s", link, error)

    def mark_set(self, id: str, timestamp: datetime = None) -> WallpaperRecord:
        """Record that the wallpaper was just put on a monitor."""

        return self._update(id, last_set_at=timestamp or utcnow())

    def evict(self, policy: EvictionPolicy) -> int:
        """
        Delete least-recently-set, non-favorite downloads until the cache satisfies policy.
        Returns the number of records evicted. Favorites and local images are never touched.
        """

        evicted = 0

        with self._index_lock:
            owned = [r for r in self._index.values() if r.origin == ORIGIN_DOWNLOAD]
            count = len(owned)
            size = sum(_file_size(r.path) for r in owned)

            def over() -> bool:
                if policy.max_count is not None and count > policy.max_count:
                    return True
                return policy.max_bytes is not None and size > policy.max_bytes

            candidates = sorted((r for r in owned if not r.favorite), key=_eviction_key)

            try:
                for record in candidates:
                    if not over():
                        break

                    record_size = _file_size(record.path)

                    try:
                        record.path.unlink(missing_ok=True)
                    except OSError as error:
                        raise CacheIOError(f"Cannot delete {record.path}: {error}")

                    del self._index[record.checksum]
                    count -= 1
                    size -= record_size
                    evicted += 1
                    logger.info("Evicted %s", record.path.name)

            finally:
                if evicted:
                    self._write_index()

        if over():
            logger.warning("Cache is still over its bound; only favorites remain")

        return evicted

    """
    Reads
    """

    def get(self, id: str) -> WallpaperRecord:
        """Look a record up by id or by checksum."""

        with self._index_lock:
            record = self._index.get(id)
            if record is not None:
                return record

            for record in self._index.values():
                if record.id == id:
                    return record

        raise NotFound(f"No wallpaper with id {id}")

    def find_source(self, source_id: str) -> Optional[WallpaperRecord]:
        """Return the record downloaded under a remote source id, if any."""

        with self._index_lock:
            for record in self._index.values():
                if record.source_id == source_id:
                    return record

        return None

    def list(self, filter: RecordFilter = RecordFilter.ALL) -> list[WallpaperRecord]:
        filter = RecordFilter(filter)

        with self._index_lock:
            records = list(self._index.values())

        if filter is RecordFilter.FAVORITES:
            records = [r for r in records if r.favorite]
        elif filter is RecordFilter.NON_FAVORITES:
            records = [r for r in records if not r.favorite]

        oldest = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(records, key=lambda r: (r.downloaded_at or oldest, r.checksum))

    def total_bytes(self) -> int:
        with self._index_lock:
            return sum(
                _file_size(r.path) for r in self._index.values() if r.origin == ORIGIN_DOWNLOAD
            )

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._index)

    def __contains__(self, checksum: str) -> bool:
        with self._index_lock:
            return checksum in self._index
